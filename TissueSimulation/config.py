"""Simulation parameters for the epithelial tissue model.

Parameters are split into a ``general`` block (time grid, friction, basal
geometry) and a table of named cell types. All containers are frozen
dataclasses validated in ``__post_init__``; invalid values raise
``ValueError`` before any simulation step runs.

Partial overrides are merged onto the defaults: a known type name (control,
emt) starts from its own defaults, any new type starts from the control
defaults, and a type mapped to ``None`` is removed.
"""

from __future__ import annotations

import copy
import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

DEFAULT_TYPE = "control"
LOCATION_NAMES = {"top": 1.0, "bottom": 0.0}
UNCONSTRAINED_LOCATIONS = ("", "rest")


def _coerce_int(obj: Any, name: str, minimum: int | None = None) -> None:
    value = getattr(obj, name)
    if isinstance(value, bool) or not float(value).is_integer():
        raise ValueError(f"{name} must be an integer")
    value = int(value)
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    object.__setattr__(obj, name, value)


def _require_bool(obj: Any, name: str) -> None:
    if not isinstance(getattr(obj, name), bool):
        raise ValueError(f"{name} must be boolean")


def parse_location(location: str | float) -> Optional[float]:
    """Normalised slot in [-1, 1] for a location constraint, or None."""
    if isinstance(location, (int, float)) and not isinstance(location, bool):
        value = float(location)
    else:
        key = str(location).strip().lower()
        if key in UNCONSTRAINED_LOCATIONS:
            return None
        if key in LOCATION_NAMES:
            return LOCATION_NAMES[key]
        try:
            value = float(key)
        except ValueError:
            raise ValueError(
                f"location must be 'top', 'bottom', 'rest', empty or a number in [-1, 1]; got {location!r}"
            ) from None
    if not -1.0 <= value <= 1.0:
        raise ValueError(f"location must be within [-1, 1]; got {value}")
    return value


@dataclass(frozen=True)
class EventTimes:
    """Sampling ranges for the scheduled cell events (inf = never)."""
    time_A_start: float = math.inf
    time_A_end: float = math.inf
    time_B_start: float = math.inf
    time_B_end: float = math.inf
    time_S_start: float = math.inf
    time_S_end: float = math.inf
    time_P_start: float = math.inf
    time_P_end: float = math.inf
    time_AC_start: float = math.inf
    time_AC_end: float = math.inf

    def __post_init__(self) -> None:
        for event in ("A", "B", "S", "P", "AC"):
            start = float(getattr(self, f"time_{event}_start"))
            end = float(getattr(self, f"time_{event}_end"))
            if math.isnan(start) or math.isnan(end):
                raise ValueError(f"time_{event} range must not contain NaN")
            if math.isfinite(start) and end < start:
                raise ValueError(f"time_{event}_end must be >= time_{event}_start")
            object.__setattr__(self, f"time_{event}_start", start)
            object.__setattr__(self, f"time_{event}_end", end)


@dataclass(frozen=True)
class CellTypeParams:
    """Mechanical and behavioural parameters of one cell type."""
    N_init: int = 25
    location: str = ""
    R_hard: float = 0.4
    R_hard_div: float = 0.7
    R_soft: float = 1.2
    dur_G2: float = 0.5
    dur_mitosis: float = 0.5
    k_apical_junction: float = 5.0
    k_cytos: float = 5.0
    max_cytoskeleton_length: float = 0.5
    run: float = 0.0
    running_speed: float = 1.0
    running_mode: int = 0
    stiffness_apical_apical: float = 2.0
    stiffness_apical_apical_div: float = 4.0
    stiffness_nuclei_apical: float = 3.0
    stiffness_nuclei_basal: float = 2.0
    stiffness_repulsion: float = 2.0
    stiffness_straightness: float = 5.0
    lifespan_start: float = 5.5
    lifespan_end: float = 6.5
    INM: float = 0.0
    hetero: bool = False
    events: EventTimes = field(default_factory=EventTimes)
    diffusion: float = 0.2
    max_basal_junction_dist: float = 4.0
    apical_junction_init: float = 0.0

    def __post_init__(self) -> None:
        _coerce_int(self, "N_init", minimum=0)
        _coerce_int(self, "running_mode", minimum=0)
        if self.running_mode > 3:
            raise ValueError("running_mode must be in 0..3")
        object.__setattr__(self, "location", "" if self.location is None else self.location)
        parse_location(self.location)
        for name in ("R_hard", "R_hard_div", "R_soft"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for name in ("run", "INM"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")
        for name in (
            "stiffness_apical_apical",
            "stiffness_apical_apical_div",
            "stiffness_nuclei_apical",
            "stiffness_nuclei_basal",
            "stiffness_repulsion",
            "stiffness_straightness",
            "k_apical_junction",
            "k_cytos",
            "dur_G2",
            "dur_mitosis",
            "running_speed",
            "diffusion",
            "max_cytoskeleton_length",
            "apical_junction_init",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.max_basal_junction_dist <= 0:
            raise ValueError("max_basal_junction_dist must be positive")
        if self.lifespan_start <= 0:
            raise ValueError("lifespan_start must be positive")
        if self.lifespan_end < self.lifespan_start:
            raise ValueError("lifespan_end must be >= lifespan_start")
        _require_bool(self, "hetero")
        if isinstance(self.events, Mapping):
            object.__setattr__(self, "events", EventTimes(**self.events))

    @property
    def location_slot(self) -> Optional[float]:
        return parse_location(self.location)

    @property
    def mean_lifespan(self) -> float:
        return 0.5 * (self.lifespan_start + self.lifespan_end)


@dataclass(frozen=True)
class GeneralParams:
    """Run-level parameters: time grid, friction and basal geometry."""
    t_end: float = 48.0
    dt: float = 0.1
    random_seed: int = 0
    full_circle: bool = True
    w_init: float = 80.0
    h_init: float = 5.0
    mu: float = 0.2
    n_substeps: int = 30
    alg_dt: float = 0.01
    p_div_out: float = 1.0
    perimeter: float = 105.0
    aspect_ratio: float = 1.0
    hard_sphere_nuclei: bool = True
    N_init: Optional[int] = None
    geometry_points: int = 360

    def __post_init__(self) -> None:
        for name in ("t_end", "dt", "w_init", "h_init", "mu", "alg_dt", "perimeter"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        _coerce_int(self, "n_substeps", minimum=1)
        _coerce_int(self, "random_seed")
        _coerce_int(self, "geometry_points", minimum=3)
        if self.N_init is not None:
            _coerce_int(self, "N_init", minimum=0)
        if not 0.0 <= self.p_div_out <= 1.0:
            raise ValueError("p_div_out must be within [0, 1]")
        if not math.isfinite(self.aspect_ratio):
            raise ValueError("aspect_ratio must be finite")
        _require_bool(self, "full_circle")
        _require_bool(self, "hard_sphere_nuclei")

    def substep_count(self, dt: float) -> int:
        """Substeps per output step of length dt; alg_dt caps the substep size."""
        return max(self.n_substeps, int(math.ceil(dt / self.alg_dt - 1e-9)))


@dataclass(frozen=True)
class SimulationParams:
    """Complete parameter set of one simulation run."""
    general: GeneralParams = field(default_factory=GeneralParams)
    cell_types: Mapping[str, CellTypeParams] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.cell_types:
            raise ValueError("At least one cell type must be defined")
        for name in self.cell_types:
            if not isinstance(name, str) or not name:
                raise ValueError("Cell type names must be non-empty strings")
        object.__setattr__(self, "cell_types", dict(self.cell_types))

    @property
    def type_names(self) -> list[str]:
        return list(self.cell_types.keys())

    @property
    def fallback_type(self) -> str:
        if DEFAULT_TYPE in self.cell_types:
            return DEFAULT_TYPE
        return next(iter(self.cell_types))

    @property
    def total_initial_cells(self) -> int:
        if self.general.N_init is not None:
            return self.general.N_init
        return sum(ct.N_init for ct in self.cell_types.values())


# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

DEFAULT_CONTROL_CELL = CellTypeParams()

DEFAULT_EMT_CELL = CellTypeParams(
    N_init=5,
    location="bottom",
    k_apical_junction=1.0,
    stiffness_repulsion=4.0,
    stiffness_straightness=2.0,
    hetero=True,
    events=EventTimes(time_A_start=3.0, time_A_end=12.0, time_B_start=3.0, time_B_end=12.0),
)

DEFAULT_CELL_TYPES: dict[str, CellTypeParams] = {
    "control": DEFAULT_CONTROL_CELL,
    "emt": DEFAULT_EMT_CELL,
}


def default_params() -> SimulationParams:
    return SimulationParams(general=GeneralParams(), cell_types=dict(DEFAULT_CELL_TYPES))


# -----------------------------------------------------------------------------
# Building from raw mappings
# -----------------------------------------------------------------------------

_FIELD_NAMES = {
    cls: {f.name for f in dataclasses.fields(cls)}
    for cls in (EventTimes, CellTypeParams, GeneralParams)
}


def _check_keys(raw: Mapping[str, Any], cls: type, section: str) -> None:
    if not isinstance(raw, Mapping):
        raise ValueError(f"{section} must be a mapping")
    unknown = sorted(set(raw) - _FIELD_NAMES[cls])
    if unknown:
        raise ValueError(f"Unknown config field(s) in {section}: {', '.join(unknown)}")


def _merge_cell_type(base: CellTypeParams, raw: Mapping[str, Any], name: str) -> CellTypeParams:
    _check_keys(raw, CellTypeParams, f"cell_types.{name}")
    values = dict(raw)
    events_raw = values.pop("events", None)
    events = base.events
    if events_raw is not None:
        _check_keys(events_raw, EventTimes, f"cell_types.{name}.events")
        events = dataclasses.replace(base.events, **events_raw)
    return dataclasses.replace(base, events=events, **values)


def build_params(raw: Mapping[str, Any] | None = None) -> SimulationParams:
    """Merge a (partial) raw parameter mapping onto the defaults and validate."""
    raw = {} if raw is None else raw
    if not isinstance(raw, Mapping):
        raise ValueError("Parameters must be a mapping")
    unknown = sorted(set(raw) - {"general", "cell_types"})
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(unknown)}")

    general_raw = raw.get("general") or {}
    _check_keys(general_raw, GeneralParams, "general")
    general = dataclasses.replace(GeneralParams(), **general_raw)

    cell_types = dict(DEFAULT_CELL_TYPES)
    types_raw = raw.get("cell_types") or {}
    if not isinstance(types_raw, Mapping):
        raise ValueError("cell_types must be a mapping")
    for name, type_raw in types_raw.items():
        name = str(name)
        if type_raw is None:
            cell_types.pop(name, None)
            continue
        base = cell_types.get(name, DEFAULT_CONTROL_CELL)
        cell_types[name] = _merge_cell_type(base, type_raw, name)
    return SimulationParams(general=general, cell_types=cell_types)


def params_to_dict(params: SimulationParams) -> dict[str, Any]:
    return {
        "general": dataclasses.asdict(params.general),
        "cell_types": {name: dataclasses.asdict(ct) for name, ct in params.cell_types.items()},
    }


def set_nested_value(raw: dict[str, Any], path: str, value: Any) -> None:
    """Set ``raw['a']['b']['c'] = value`` for the dotted path ``a.b.c``."""
    keys = path.split(".")
    node = raw
    for key in keys[:-1]:
        if not isinstance(node.get(key), dict):
            node[key] = {}
        node = node[key]
    node[keys[-1]] = value


def get_nested_value(raw: Mapping[str, Any], path: str) -> Any:
    node: Any = raw
    for key in path.split("."):
        if not isinstance(node, Mapping) or key not in node:
            raise KeyError(f"Unknown parameter path: {path}")
        node = node[key]
    return node


def apply_overrides(params: SimulationParams, overrides: Mapping[str, Any]) -> SimulationParams:
    """Return a new parameter set with dotted-path overrides applied."""
    if not overrides:
        return params
    raw = copy.deepcopy(params_to_dict(params))
    for name in DEFAULT_CELL_TYPES:
        if name not in params.cell_types:
            raw["cell_types"][name] = None
    for path, value in overrides.items():
        set_nested_value(raw, path, value)
    return build_params(raw)

"""I/O utilities for simulation input/output.

Handles loading YAML parameter files, converting states to and from flat
snapshot rows, and reading/writing those rows as CSV.
"""

from __future__ import annotations

import csv
import logging
import math
import pathlib
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np
import yaml

from TissueSimulation.cell import ApicalLink, BasalLink, Cell, CellPhase, get_cell_type
from TissueSimulation.config import SimulationParams, build_params
from TissueSimulation.events import LOST_ADHESION_STIFFNESS_FACTOR, RELAXED_STRAIGHTNESS
from TissueSimulation.geometry import GeometryState, geometry_state_from_shape
from TissueSimulation.state import SimulationState
from TissueSimulation.vector import dist

logger = logging.getLogger(__name__)

NEIGHBOUR_SEPARATOR = ";"


# -----------------------------------------------------------------------------
# Parameter loading
# -----------------------------------------------------------------------------

def load_yaml_mapping(path: str | pathlib.Path) -> dict[str, Any]:
    path = pathlib.Path(path)
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return raw


def load_simulation_params(path: str | pathlib.Path) -> SimulationParams:
    """Load a (partial) parameter file and merge it onto the defaults."""
    return build_params(load_yaml_mapping(path))


# -----------------------------------------------------------------------------
# Snapshots
# -----------------------------------------------------------------------------

SNAPSHOT_FIELDS = [
    "id",
    "type_index",
    "t",
    "step_count",
    "pos_x",
    "pos_y",
    "A_x",
    "A_y",
    "B_x",
    "B_y",
    "has_A",
    "has_B",
    "phase",
    "age",
    "is_running",
    "running_mode",
    "has_inm",
    "eta_A",
    "eta_B",
    "R_soft",
    "R_hard",
    "time_A",
    "time_B",
    "time_S",
    "time_P",
    "time_AC",
    "apical_neighbors",
    "basal_neighbors",
    "apical_right",
    "basal_right",
    "curvature_1",
    "curvature_2",
]


def _neighbour_ids(state: SimulationState, links: Iterable, index: int) -> list[int]:
    ids = []
    for link in links:
        if link.l == index:
            ids.append(state.cells[link.r].id)
        elif link.r == index:
            ids.append(state.cells[link.l].id)
    return ids


def _right_id(state: SimulationState, links: Iterable, index: int) -> str:
    for link in links:
        if link.l == index:
            return str(state.cells[link.r].id)
    return ""


def get_snapshot(state: SimulationState) -> list[dict[str, Any]]:
    """One flat row per cell describing the complete observable state."""
    rows = []
    for index, cell in enumerate(state.cells):
        rows.append(
            {
                "id": cell.id,
                "type_index": cell.type_index,
                "t": state.t,
                "step_count": state.step_count,
                "pos_x": float(cell.pos[0]),
                "pos_y": float(cell.pos[1]),
                "A_x": float(cell.A[0]),
                "A_y": float(cell.A[1]),
                "B_x": float(cell.B[0]),
                "B_y": float(cell.B[1]),
                "has_A": cell.has_A,
                "has_B": cell.has_B,
                "phase": cell.phase.name,
                "age": cell.age(state.t),
                "is_running": cell.is_running,
                "running_mode": cell.running_mode,
                "has_inm": cell.has_inm,
                "eta_A": cell.eta_A,
                "eta_B": cell.eta_B,
                "R_soft": cell.R_soft,
                "R_hard": cell.R_hard,
                "time_A": cell.time_A,
                "time_B": cell.time_B,
                "time_S": cell.time_S,
                "time_P": cell.time_P,
                "time_AC": cell.time_AC,
                "apical_neighbors": NEIGHBOUR_SEPARATOR.join(
                    str(i) for i in _neighbour_ids(state, state.ap_links, index)
                ),
                "basal_neighbors": NEIGHBOUR_SEPARATOR.join(
                    str(i) for i in _neighbour_ids(state, state.ba_links, index)
                ),
                "apical_right": _right_id(state, state.ap_links, index),
                "basal_right": _right_id(state, state.ba_links, index),
                "curvature_1": state.geometry.curvature_1,
                "curvature_2": state.geometry.curvature_2,
            }
        )
    return rows


def _as_bool(value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    key = str(value).strip().lower()
    if key in {"true", "1", "yes"}:
        return True
    if key in {"false", "0", "no", ""}:
        return False
    raise ValueError(f"Cannot interpret {value!r} as a boolean")


def _as_phase(value: Any) -> CellPhase:
    if isinstance(value, CellPhase):
        return value
    key = str(value).strip()
    if key.upper() in CellPhase.__members__:
        return CellPhase[key.upper()]
    return CellPhase(int(float(key)))


def _as_id(value: Any) -> int:
    return int(float(value))


def _parse_ids(value: Any) -> list[int]:
    if value is None:
        return []
    text = str(value).strip()
    if not text:
        return []
    return [_as_id(part) for part in text.split(NEIGHBOUR_SEPARATOR) if part.strip()]


def _link_target(row: Mapping[str, Any], neighbour: int, index_of: Mapping[int, int]) -> Optional[int]:
    other = index_of.get(neighbour)
    if other is None:
        logger.warning("Cell %s links to id %d, which is not in the snapshot; link skipped", row.get("id"), neighbour)
    return other


def _directed_links(rows: Sequence[Mapping[str, Any]], column: str, index_of: Mapping[int, int]) -> Optional[list[tuple[int, int]]]:
    if any(column not in row for row in rows):
        return None
    pairs = []
    for index, row in enumerate(rows):
        right = _parse_ids(row[column])
        if right:
            other = _link_target(row, right[0], index_of)
            if other is not None:
                pairs.append((index, other))
    return pairs


def _undirected_links(rows: Sequence[Mapping[str, Any]], column: str, index_of: Mapping[int, int]) -> list[tuple[int, int]]:
    pairs = []
    for index, row in enumerate(rows):
        for neighbour in _parse_ids(row.get(column)):
            other = _link_target(row, neighbour, index_of)
            if other is not None and other > index:
                pairs.append((index, other))
    return pairs


def load_snapshot(
    rows: Sequence[Mapping[str, Any]],
    params: SimulationParams,
    seed: int | str | None = None,
) -> SimulationState:
    """Rebuild a simulation state from snapshot rows.

    Accepts rows straight from :func:`get_snapshot` or string-valued rows
    read back from CSV. Quantities that are not part of the snapshot are
    re-derived: event-modified stiffnesses from the cell type and the
    adhesion flags, and the division time as birth plus the mean lifespan.
    Apical rest lengths are set to the current apical distances.
    """
    general = params.general
    run_seed = general.random_seed if seed is None else seed
    if not rows:
        return SimulationState(
            geometry=geometry_state_from_shape(general.perimeter, general.aspect_ratio),
            rng_seed=run_seed,
            geometry_points=general.geometry_points,
        )

    first = rows[0]
    t = float(first["t"])
    cells = []
    for row in rows:
        type_name = str(row["type_index"])
        cell_type = get_cell_type(params, type_name)
        has_A = _as_bool(row["has_A"])
        has_B = _as_bool(row["has_B"])
        birth_time = t - float(row["age"])
        time_S = float(row["time_S"])
        cells.append(
            Cell(
                id=_as_id(row["id"]),
                type_index=type_name,
                pos=(float(row["pos_x"]), float(row["pos_y"])),
                A=(float(row["A_x"]), float(row["A_y"])),
                B=(float(row["B_x"]), float(row["B_y"])),
                R_soft=float(row["R_soft"]),
                R_hard=float(row["R_hard"]),
                eta_A=float(row["eta_A"]),
                eta_B=float(row["eta_B"]),
                has_A=has_A,
                has_B=has_B,
                phase=_as_phase(row["phase"]),
                birth_time=birth_time,
                division_time=birth_time + cell_type.mean_lifespan,
                is_running=_as_bool(row["is_running"]),
                running_mode=int(float(row["running_mode"])),
                has_inm=_as_bool(row["has_inm"]),
                time_A=float(row["time_A"]),
                time_B=float(row["time_B"]),
                time_S=time_S,
                time_P=float(row["time_P"]),
                time_AC=float(row["time_AC"]),
                stiffness_apical_apical=cell_type.stiffness_apical_apical,
                stiffness_straightness=(
                    RELAXED_STRAIGHTNESS if time_S < t else cell_type.stiffness_straightness
                ),
                stiffness_nuclei_apical=cell_type.stiffness_nuclei_apical
                * (1.0 if has_A else LOST_ADHESION_STIFFNESS_FACTOR),
                stiffness_nuclei_basal=cell_type.stiffness_nuclei_basal
                * (1.0 if has_B else LOST_ADHESION_STIFFNESS_FACTOR),
            )
        )

    index_of = {cell.id: index for index, cell in enumerate(cells)}
    if len(index_of) != len(cells):
        raise ValueError("Snapshot contains duplicate cell ids")

    apical = _directed_links(rows, "apical_right", index_of)
    if apical is None:
        apical = _undirected_links(rows, "apical_neighbors", index_of)
    basal = _directed_links(rows, "basal_right", index_of)
    if basal is None:
        basal = _undirected_links(rows, "basal_neighbors", index_of)

    return SimulationState(
        cells=cells,
        ap_links=[ApicalLink(l, r, rl=dist(cells[l].A, cells[r].A)) for l, r in apical],
        ba_links=[BasalLink(l, r) for l, r in basal],
        t=t,
        step_count=int(float(first.get("step_count", 0) or 0)),
        geometry=GeometryState(
            curvature_1=float(first["curvature_1"]),
            curvature_2=float(first["curvature_2"]),
        ),
        rng_seed=run_seed,
        geometry_points=general.geometry_points,
    )


def group_snapshot_rows(
    rows: Sequence[Mapping[str, Any]],
) -> dict[tuple[Optional[int], float], list[Mapping[str, Any]]]:
    """Split combined output rows by (run_index, sample time)."""
    groups: dict[tuple[Optional[int], float], list[Mapping[str, Any]]] = {}
    for row in rows:
        run_index = row.get("run_index")
        key = (
            None if run_index in (None, "") else int(float(run_index)),
            float(row.get("time_h", row["t"])),
        )
        groups.setdefault(key, []).append(row)
    return groups


# -----------------------------------------------------------------------------
# CSV
# -----------------------------------------------------------------------------

def _format_value(value: Any) -> Any:
    if isinstance(value, float) and math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return value


def save_rows_csv(rows: Sequence[Mapping[str, object]], path: str | pathlib.Path) -> None:
    """Write rows to CSV using the union of their keys in first-seen order."""
    if not rows:
        raise ValueError("No rows to write")
    fieldnames = list(dict.fromkeys(key for row in rows for key in row))

    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)

    with open(path_obj, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow({key: _format_value(value) for key, value in row.items()})


def save_snapshot_csv(rows: Sequence[Mapping[str, object]], path: str | pathlib.Path) -> None:
    """Save snapshot rows to CSV."""
    save_rows_csv(rows, path)


def load_snapshot_csv(path: str | pathlib.Path) -> list[dict[str, object]]:
    """Load snapshot rows from CSV (values stay strings)."""
    with open(path, "r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = {"id", "type_index", "t"} - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"Missing columns in snapshot CSV: {sorted(missing)}")
        rows = [dict(row) for row in reader]
    if not rows:
        raise ValueError(f"No snapshot rows found in {path}")
    return rows

"""Model registry.

A model bundles the engine entry points a runner needs. The registry is a
plain dict built explicitly by :func:`build_model_registry`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from TissueSimulation import engine
from TissueSimulation.config import SimulationParams
from TissueSimulation.io import get_snapshot, load_snapshot
from TissueSimulation.state import SimulationState
from TissueSimulation.statistics import compute_statistics

DEFAULT_MODEL = "EHT"


@dataclass(frozen=True)
class SimulationModel:
    name: str
    version: str
    init: Callable[[SimulationParams, Optional[int | str]], SimulationState]
    step: Callable[[SimulationState, float, SimulationParams], SimulationState]
    is_complete: Callable[[SimulationState, SimulationParams], bool]
    get_snapshot: Callable[[SimulationState], list[dict[str, Any]]]
    load_snapshot: Callable[[Sequence[Mapping[str, Any]], SimulationParams], SimulationState]
    compute_stats: Callable[[SimulationState, SimulationParams], dict[str, float]]


def build_model_registry() -> dict[str, SimulationModel]:
    eht = SimulationModel(
        name=DEFAULT_MODEL,
        version="1.0.0",
        init=engine.init,
        step=engine.step,
        is_complete=engine.is_complete,
        get_snapshot=get_snapshot,
        load_snapshot=load_snapshot,
        compute_stats=compute_statistics,
    )
    return {eht.name: eht}


def get_model(registry: Mapping[str, SimulationModel], name: str = DEFAULT_MODEL) -> SimulationModel:
    try:
        return registry[name]
    except KeyError:
        raise KeyError(f"Unknown model {name!r}; available: {', '.join(sorted(registry))}") from None

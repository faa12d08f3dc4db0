"""Cell and link records for the tissue simulation.

A cell is a nucleus ``pos`` attached by cytoskeletal springs to an apical
point ``A`` and a basal point ``B``. Cells are never removed: losing
adhesion clears the corresponding flag and rewires the link chains.
Links store array indices into the cell list of the owning state.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional, Sequence

import numpy as np

from TissueSimulation.config import CellTypeParams, SimulationParams
from TissueSimulation.random_stream import RandomStream

logger = logging.getLogger(__name__)

HETERO_KEEP_PROBABILITY = 0.7
_warned_types: set[str] = set()


class CellPhase(IntEnum):
    G1 = 0
    G2 = 1
    MITOSIS = 2
    DIVISION = 3


@dataclass
class Cell:
    """Mutable per-cell state."""
    id: int
    type_index: str
    pos: np.ndarray
    A: np.ndarray
    B: np.ndarray
    R_soft: float
    R_hard: float
    eta_A: float
    eta_B: float
    has_A: bool = True
    has_B: bool = True
    phase: CellPhase = CellPhase.G1
    birth_time: float = 0.0
    division_time: float = math.inf
    is_running: bool = False
    running_mode: int = 0
    has_inm: bool = False
    time_A: float = math.inf
    time_B: float = math.inf
    time_S: float = math.inf
    time_P: float = math.inf
    time_AC: float = math.inf
    stiffness_apical_apical: float = 0.0
    stiffness_straightness: float = 0.0
    stiffness_nuclei_apical: float = 0.0
    stiffness_nuclei_basal: float = 0.0

    def __post_init__(self) -> None:
        self.pos = np.array(self.pos, dtype=np.float64)
        self.A = np.array(self.A, dtype=np.float64)
        self.B = np.array(self.B, dtype=np.float64)

    def age(self, t: float) -> float:
        return t - self.birth_time

    def copy(self) -> "Cell":
        return Cell(**{**self.__dict__, "pos": self.pos.copy(), "A": self.A.copy(), "B": self.B.copy()})


@dataclass
class ApicalLink:
    l: int
    r: int
    rl: float = 0.0


@dataclass
class BasalLink:
    l: int
    r: int


def get_cell_type(params: SimulationParams, type_name: str) -> CellTypeParams:
    """Look up a cell type, falling back to the default type when missing."""
    cell_type = params.cell_types.get(type_name)
    if cell_type is None:
        fallback = params.fallback_type
        if type_name not in _warned_types:
            _warned_types.add(type_name)
            logger.warning("Unknown cell type %r; using %r parameters", type_name, fallback)
        cell_type = params.cell_types[fallback]
    return cell_type


def next_cell_id(cells: Sequence[Cell]) -> int:
    return max((c.id for c in cells), default=-1) + 1


def update_cell_phase(cell: Cell, cell_type: CellTypeParams, t: float) -> None:
    """Derive the cell-cycle phase from the time left until division."""
    mitosis_start = cell.division_time - cell_type.dur_mitosis
    g2_start = mitosis_start - cell_type.dur_G2
    if t < g2_start:
        cell.phase = CellPhase.G1
    elif t < mitosis_start:
        cell.phase = CellPhase.G2
    elif t < cell.division_time:
        cell.phase = CellPhase.MITOSIS
    else:
        cell.phase = CellPhase.DIVISION


def create_cell(
    params: SimulationParams,
    rng: RandomStream,
    *,
    cell_id: int,
    t: float,
    type_name: str,
    pos: np.ndarray,
    A: np.ndarray,
    B: np.ndarray,
    parent: Optional[Cell] = None,
) -> Cell:
    """Create a cell either from scratch or as the renewal/offspring of ``parent``.

    New cells get a random age within their lifespan and freshly sampled
    event times. Offspring inherit adhesion, running state, event times,
    cytoskeleton offsets and the event-modified stiffnesses, and start a new
    cycle at ``t``.
    """
    cell_type = get_cell_type(params, type_name)
    lifespan = rng.uniform(cell_type.lifespan_start, cell_type.lifespan_end)

    if parent is None:
        birth_time = t - rng.uniform(0.0, lifespan)
        events = cell_type.events
        time_A = rng.uniform(events.time_A_start, events.time_A_end)
        time_B = rng.uniform(events.time_B_start, events.time_B_end)
        time_S = rng.uniform(events.time_S_start, events.time_S_end)
        time_AC = rng.uniform(events.time_AC_start, events.time_AC_end)
        time_P = time_B if rng.random() <= cell_type.run else math.inf
        if cell_type.hetero:
            if rng.random() > HETERO_KEEP_PROBABILITY:
                time_A = math.inf
            if rng.random() > HETERO_KEEP_PROBABILITY:
                time_B = math.inf
            if rng.random() > HETERO_KEEP_PROBABILITY:
                time_S = math.inf
            if rng.random() > HETERO_KEEP_PROBABILITY:
                time_AC = math.inf
        half_height = 0.5 * params.general.h_init
        return Cell(
            id=cell_id,
            type_index=type_name,
            pos=pos,
            A=A,
            B=B,
            R_soft=cell_type.R_soft,
            R_hard=cell_type.R_hard,
            eta_A=half_height,
            eta_B=half_height,
            birth_time=birth_time,
            division_time=birth_time + lifespan,
            running_mode=cell_type.running_mode,
            has_inm=rng.random() <= cell_type.INM,
            time_A=time_A,
            time_B=time_B,
            time_S=time_S,
            time_P=time_P,
            time_AC=time_AC,
            stiffness_apical_apical=cell_type.stiffness_apical_apical,
            stiffness_straightness=cell_type.stiffness_straightness,
            stiffness_nuclei_apical=cell_type.stiffness_nuclei_apical,
            stiffness_nuclei_basal=cell_type.stiffness_nuclei_basal,
        )

    return Cell(
        id=cell_id,
        type_index=type_name,
        pos=pos,
        A=A,
        B=B,
        R_soft=cell_type.R_soft,
        R_hard=cell_type.R_hard,
        eta_A=parent.eta_A,
        eta_B=parent.eta_B,
        has_A=parent.has_A,
        has_B=parent.has_B,
        birth_time=t,
        division_time=t + lifespan,
        is_running=parent.is_running,
        running_mode=parent.running_mode,
        has_inm=parent.has_inm,
        time_A=parent.time_A,
        time_B=parent.time_B,
        time_S=parent.time_S,
        time_P=parent.time_P,
        time_AC=parent.time_AC,
        stiffness_apical_apical=cell_type.stiffness_apical_apical,
        stiffness_straightness=parent.stiffness_straightness,
        stiffness_nuclei_apical=parent.stiffness_nuclei_apical,
        stiffness_nuclei_basal=parent.stiffness_nuclei_basal,
    )

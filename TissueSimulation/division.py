"""Cell division.

Cells reaching the DIVISION phase start a new cycle. EMT cells, and other
cells with probability ``p_div_out``, renew in place (one offspring keeping
the parent id). Otherwise the cell splits in two: the renewed parent stays
at its index, the second daughter is appended with a fresh id, both are
nudged apart along x, and the daughter takes over the parent's right-hand
links before a new parent->daughter link closes the gap.
"""

from __future__ import annotations

from TissueSimulation.cell import (
    ApicalLink,
    BasalLink,
    Cell,
    CellPhase,
    create_cell,
    get_cell_type,
    next_cell_id,
)
from TissueSimulation.config import SimulationParams
from TissueSimulation.random_stream import RandomStream
from TissueSimulation.state import SimulationState

EMT_TYPE = "emt"
DAUGHTER_OFFSET_FRACTION = 0.05


def _renew(params: SimulationParams, state: SimulationState, rng: RandomStream, cell: Cell) -> Cell:
    return create_cell(
        params,
        rng,
        cell_id=cell.id,
        t=state.t,
        type_name=cell.type_index,
        pos=cell.pos.copy(),
        A=cell.A.copy(),
        B=cell.B.copy(),
        parent=cell,
    )


def _rewire_links(state: SimulationState, params: SimulationParams, original: int, daughter: int) -> None:
    for link in state.ap_links:
        if link.l == original:
            link.l = daughter
    for link in state.ba_links:
        if link.l == original:
            link.l = daughter
    rest = get_cell_type(params, state.cells[original].type_index).apical_junction_init
    state.ap_links.append(ApicalLink(original, daughter, rl=rest))
    state.ba_links.append(BasalLink(original, daughter))


def process_divisions(state: SimulationState, params: SimulationParams, rng: RandomStream) -> int:
    """Handle every cell in the DIVISION phase; return the number of splits."""
    splits = 0
    for index in range(len(state.cells)):
        cell = state.cells[index]
        if cell.phase != CellPhase.DIVISION:
            continue
        if cell.type_index == EMT_TYPE:
            state.cells[index] = _renew(params, state, rng, cell)
            continue
        if rng.random() < params.general.p_div_out:
            state.cells[index] = _renew(params, state, rng, cell)
            continue

        first = _renew(params, state, rng, cell)
        state.cells[index] = first
        second = create_cell(
            params,
            rng,
            cell_id=next_cell_id(state.cells),
            t=state.t,
            type_name=first.type_index,
            pos=first.pos.copy(),
            A=first.A.copy(),
            B=first.B.copy(),
            parent=first,
        )
        offset = DAUGHTER_OFFSET_FRACTION * first.R_soft
        for point in (first.pos, first.A, first.B):
            point[0] -= offset
        for point in (second.pos, second.A, second.B):
            point[0] += offset
        state.cells.append(second)
        _rewire_links(state, params, index, len(state.cells) - 1)
        splits += 1
    return splits

"""Scheduled EMT events.

Each cell carries sampled event times (inf = never). An event fires during
the output step whose window ``[t, t + dt)`` contains its time:

    time_A  lose apical adhesion    apical chain spliced, k_nuclei_apical / 10
    time_B  lose basal adhesion     basal chain spliced, k_nuclei_basal / 10
    time_S  lose straightness       stiffness_straightness = 1
    time_P  start running           running_mode = 3 (or at time_B when
                                    time_P <= time_B)

Adhesion loss is irreversible.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from TissueSimulation.cell import ApicalLink, BasalLink, Cell
from TissueSimulation.state import SimulationState
from TissueSimulation.vector import dist

logger = logging.getLogger(__name__)

LOST_ADHESION_STIFFNESS_FACTOR = 0.1
RELAXED_STRAIGHTNESS = 1.0
RUNNING_FLOOR = -2.0
IMMEDIATE_RUNNING = 3


def in_window(time: float, t: float, dt: float) -> bool:
    return t <= time < t + dt


def _splice_neighbours(links: Sequence, index: int) -> Optional[tuple[int, int]]:
    """Former left/right neighbours of ``index`` in a two-link chain position."""
    left = next((link.l for link in links if link.r == index), None)
    right = next((link.r for link in links if link.l == index), None)
    if left is None or right is None:
        ends = [link.r if link.l == index else link.l for link in links]
        left, right = ends[0], ends[1]
    if left == right:
        return None
    return left, right


def _remove_from_chain(
    links: list,
    index: int,
    make_link: Callable[[int, int], object],
) -> None:
    attached = [link for link in links if link.l == index or link.r == index]
    if len(attached) == 1:
        links.remove(attached[0])
    elif len(attached) == 2:
        neighbours = _splice_neighbours(attached, index)
        for link in attached:
            links.remove(link)
        if neighbours is not None:
            links.append(make_link(*neighbours))
    elif attached:
        logger.warning("Cell index %d has %d links; detaching all", index, len(attached))
        for link in attached:
            links.remove(link)


def lose_apical_adhesion(state: SimulationState, index: int) -> None:
    cell = state.cells[index]
    cell.has_A = False
    cell.stiffness_nuclei_apical *= LOST_ADHESION_STIFFNESS_FACTOR

    def bridge(left: int, right: int) -> ApicalLink:
        return ApicalLink(left, right, rl=dist(state.cells[left].A, state.cells[right].A))

    _remove_from_chain(state.ap_links, index, bridge)


def lose_basal_adhesion(state: SimulationState, index: int) -> None:
    cell = state.cells[index]
    cell.has_B = False
    cell.stiffness_nuclei_basal *= LOST_ADHESION_STIFFNESS_FACTOR
    _remove_from_chain(state.ba_links, index, BasalLink)


def lose_straightness(cell: Cell) -> None:
    cell.stiffness_straightness = RELAXED_STRAIGHTNESS


def should_start_running(cell: Cell, t: float, dt: float) -> bool:
    if cell.time_P > cell.time_B:
        return in_window(cell.time_P, t, dt)
    return in_window(cell.time_B, t, dt)


def update_running_state(cell: Cell) -> None:
    """Running needs a detached basal point above the floor and an active mode."""
    by = float(cell.B[1])
    cell.is_running = (
        not cell.has_B
        and by > RUNNING_FLOOR
        and (cell.running_mode >= IMMEDIATE_RUNNING or (by < 0 and cell.running_mode >= 1))
    )


def process_events(state: SimulationState, dt: float) -> None:
    """Fire all events scheduled in ``[t, t + dt)`` and refresh running state."""
    t = state.t
    for index, cell in enumerate(state.cells):
        if cell.has_A and in_window(cell.time_A, t, dt):
            lose_apical_adhesion(state, index)
            logger.debug("Cell %d lost apical adhesion at t=%.3f", cell.id, t)
        if cell.has_B and in_window(cell.time_B, t, dt):
            lose_basal_adhesion(state, index)
            logger.debug("Cell %d lost basal adhesion at t=%.3f", cell.id, t)
        if in_window(cell.time_S, t, dt):
            lose_straightness(cell)
        if should_start_running(cell, t, dt):
            cell.running_mode = IMMEDIATE_RUNNING
    for cell in state.cells:
        update_running_state(cell)

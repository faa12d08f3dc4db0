"""Initial tissue layout.

The initial cells occupy evenly spaced normalised slots u in [-1, 1] along
the basal curve (u = 0 is the arc-length origin, u = +-1 the far ends, which
coincide on a closed ring). Cell types with a location constraint claim the
free slots closest to their target first; the remaining slots are filled
round-robin by the unconstrained types in declaration order.

Slots map to arc length as ``u * span / 2`` where the span is the ring
perimeter for a closed tissue (``full_circle`` on a closed curve) and ``w_init`` otherwise. Only a closed
tissue gets the extra last->first link that turns the chains into rings.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from TissueSimulation.cell import ApicalLink, BasalLink, create_cell, get_cell_type
from TissueSimulation.config import SimulationParams
from TissueSimulation.geometry import BasalGeometry, geometry_state_from_shape
from TissueSimulation.random_stream import RandomStream
from TissueSimulation.state import SimulationState

logger = logging.getLogger(__name__)


def slot_positions(n_slots: int) -> np.ndarray:
    """Evenly spaced slot centres on [-1, 1]."""
    return -1.0 + (2.0 * np.arange(n_slots) + 1.0) / max(n_slots, 1)


def slot_distance(u: float, v: float, wraparound: bool) -> float:
    d = abs(u - v)
    if wraparound:
        d = min(d, 2.0 - d)
    return d


def assign_cell_types(params: SimulationParams, n_slots: int, wraparound: bool) -> list[str]:
    """Type name for each slot, in slot order."""
    slots = slot_positions(n_slots)
    assigned: list[Optional[str]] = [None] * n_slots
    override = params.general.N_init is not None

    for name, cell_type in params.cell_types.items():
        target = cell_type.location_slot
        if target is None:
            continue
        for _ in range(cell_type.N_init):
            free = [k for k in range(n_slots) if assigned[k] is None]
            if not free:
                break
            best = min(free, key=lambda k: (slot_distance(slots[k], target, wraparound), k))
            assigned[best] = name

    unconstrained = [name for name, ct in params.cell_types.items() if ct.location_slot is None]
    if not unconstrained:
        unconstrained = params.type_names
        override = True
    quotas = {name: params.cell_types[name].N_init for name in unconstrained}
    cursor = 0
    for k in range(n_slots):
        if assigned[k] is not None:
            continue
        for _ in range(len(unconstrained)):
            name = unconstrained[cursor % len(unconstrained)]
            cursor += 1
            if override or quotas[name] > 0:
                quotas[name] -= 1
                assigned[k] = name
                break
        if assigned[k] is None:
            assigned[k] = params.fallback_type
    return [name for name in assigned if name is not None]


def _layout_span(params: SimulationParams, geometry: BasalGeometry) -> tuple[float, bool]:
    general = params.general
    if general.full_circle and geometry.is_closed:
        return geometry.perimeter, True
    if geometry.is_closed:
        return min(general.w_init, geometry.perimeter), False
    return general.w_init, False


def initialize_state(params: SimulationParams, seed: int | str | None = None) -> SimulationState:
    """Build the initial geometry, cells and link chains."""
    general = params.general
    run_seed = general.random_seed if seed is None else seed
    state = SimulationState(
        geometry=geometry_state_from_shape(general.perimeter, general.aspect_ratio),
        rng_seed=run_seed,
        geometry_points=general.geometry_points,
    )
    geometry = state.basal_geometry
    rng = RandomStream.for_init(run_seed)

    n_cells = params.total_initial_cells
    span, wraparound = _layout_span(params, geometry)
    types = assign_cell_types(params, n_cells, wraparound)
    h = general.h_init

    for cell_id, (u, type_name) in enumerate(zip(slot_positions(n_cells), types)):
        length = float(u) * 0.5 * span
        height = rng.uniform(h / 3.0, 2.0 * h / 3.0)
        state.cells.append(
            create_cell(
                params,
                rng,
                cell_id=cell_id,
                t=state.t,
                type_name=type_name,
                pos=geometry.curved_to_cartesian(length, height),
                A=geometry.curved_to_cartesian(length, h),
                B=geometry.point_at_arc_length(length),
            )
        )

    pairs = [(k, k + 1) for k in range(n_cells - 1)]
    if wraparound and n_cells > 2:
        pairs.append((n_cells - 1, 0))
    for left, right in pairs:
        rest = 0.5 * (
            get_cell_type(params, types[left]).apical_junction_init
            + get_cell_type(params, types[right]).apical_junction_init
        )
        state.ap_links.append(ApicalLink(left, right, rl=rest))
        state.ba_links.append(BasalLink(left, right))

    logger.info(
        "Initialised %d cells on a %s membrane (types: %s)",
        n_cells,
        geometry.kind,
        ", ".join(f"{name}={types.count(name)}" for name in params.type_names),
    )
    return state

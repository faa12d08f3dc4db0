"""Simulation engine: one output step of the tissue model.

An output step of length dt runs

    1. cell-cycle phase update
    2. divisions
    3. scheduled events in [t, t + dt)
    4. cytoskeleton rest-length relaxation
    5. apical junction rest-length decay
    6. physics substeps: forces -> overdamped integration -> constraints

Integration is overdamped: dx = F dt_sub / mu, with Brownian noise of
amplitude ``diffusion * sqrt(dt_sub)`` on the nuclei. Each step draws its
random numbers from a stream derived from (run seed, step_count), so a run
restarted from any recorded step continues identically.
"""

from __future__ import annotations

import logging
import math

from TissueSimulation.cell import CellPhase, get_cell_type, update_cell_phase
from TissueSimulation.config import SimulationParams
from TissueSimulation.constraints import apply_constraints
from TissueSimulation.division import process_divisions
from TissueSimulation.events import process_events
from TissueSimulation.forces import CellForces, compute_forces
from TissueSimulation.initialization import initialize_state
from TissueSimulation.random_stream import RandomStream
from TissueSimulation.state import SimulationState
from TissueSimulation.vector import dist, normalize

logger = logging.getLogger(__name__)

RUNNING_REACH = 5.0
TIME_TOLERANCE = 1e-9


def update_cytoskeleton(state: SimulationState, params: SimulationParams, dt: float) -> None:
    """Relax the apical/basal rest-length offsets towards their targets."""
    for cell in state.cells:
        cell_type = get_cell_type(params, cell.type_index)
        dist_ax = dist(cell.pos, cell.A)
        dist_bx = dist(cell.pos, cell.B)

        if cell.has_inm and cell.phase in (CellPhase.G2, CellPhase.MITOSIS):
            apical_target = 0.0
            basal_target = max(0.0, dist(cell.A, cell.B) - 2.0 * cell.R_soft)
        else:
            apical_target = max(0.0, dist_ax - cell.R_soft)
            basal_target = max(0.0, dist_bx - cell.R_soft)

        if cell.phase == CellPhase.G2:
            cell.stiffness_apical_apical = cell_type.stiffness_apical_apical_div
        if cell.phase == CellPhase.MITOSIS:
            cell.R_hard = cell_type.R_hard_div

        if not cell.has_A:
            apical_target = 0.0
        if not cell.has_B:
            basal_target = 0.0

        decay = math.exp(-dt * cell_type.k_cytos)
        cell.eta_A = decay * (cell.eta_A - apical_target) + apical_target
        if not cell.has_B and cell.running_mode >= 2 and cell.B[1] > 0:
            cell.eta_B = max(0.0, dist_bx - cell.R_soft)
        else:
            cell.eta_B = decay * (cell.eta_B - basal_target) + basal_target

        if not cell.is_running or cell.has_B:
            max_len = cell_type.max_cytoskeleton_length
            total = cell.eta_A + cell.eta_B
            if max_len > 0 and total - max_len > 1:
                target_a = cell.eta_A * max_len / total
                target_b = cell.eta_B * max_len / total
                cell.eta_A = decay * (cell.eta_A - target_a) + target_a
                cell.eta_B = decay * (cell.eta_B - target_b) + target_b


def update_apical_junctions(state: SimulationState, params: SimulationParams, dt: float) -> None:
    """Exponential decay of apical junction rest lengths."""
    for link in state.ap_links:
        k_left = get_cell_type(params, state.cells[link.l].type_index).k_apical_junction
        k_right = get_cell_type(params, state.cells[link.r].type_index).k_apical_junction
        link.rl *= math.exp(-dt * 0.5 * (k_left + k_right))


def integrate(
    state: SimulationState,
    params: SimulationParams,
    forces: CellForces,
    rng: RandomStream,
    dt: float,
) -> None:
    """Overdamped position update for one substep."""
    n = len(state.cells)
    if n == 0:
        return
    mu = params.general.mu
    noise = rng.gaussian((n, 2)) * math.sqrt(dt)
    for index, cell in enumerate(state.cells):
        cell_type = get_cell_type(params, cell.type_index)
        cell.pos += noise[index] * cell_type.diffusion
        cell.pos += forces.nucleus[index] * (dt / mu)
        cell.A += forces.apical[index] * (dt / mu)
        if cell.is_running:
            if dist(cell.B, cell.pos) < RUNNING_REACH:
                cell.B += normalize(cell.B - cell.pos) * (dt * cell_type.running_speed)
        else:
            cell.B += forces.basal[index] * (dt / mu)
            if not cell.has_B:
                cell.B[1] += dt * forces.basal[index, 1] / mu


def perform_timestep(
    state: SimulationState,
    params: SimulationParams,
    rng: RandomStream,
    dt: float | None = None,
) -> int:
    """Advance ``state`` in place by one output step; return the number of splits."""
    general = params.general
    full_dt = general.dt if dt is None else dt
    if full_dt <= 0:
        raise ValueError("dt must be positive")

    for cell in state.cells:
        update_cell_phase(cell, get_cell_type(params, cell.type_index), state.t)
    splits = process_divisions(state, params, rng)
    process_events(state, full_dt)
    update_cytoskeleton(state, params, full_dt)
    update_apical_junctions(state, params, full_dt)

    n_substeps = general.substep_count(full_dt)
    sub_dt = full_dt / n_substeps
    for _ in range(n_substeps):
        state.t += sub_dt
        forces = compute_forces(state, params)
        integrate(state, params, forces, rng, sub_dt)
        apply_constraints(state, params)

    state.step_count += 1
    if splits:
        logger.debug("Step %d: %d divisions, %d cells", state.step_count, splits, len(state.cells))
    return splits


# -----------------------------------------------------------------------------
# Engine interface
# -----------------------------------------------------------------------------

def init(params: SimulationParams, seed: int | str | None = None) -> SimulationState:
    """Build the initial state; deterministic for a given (params, seed)."""
    return initialize_state(params, seed)


def step(state: SimulationState, dt: float, params: SimulationParams) -> SimulationState:
    """Advance one output step using the stream for the current step count."""
    rng = RandomStream.for_step(state.rng_seed, state.step_count)
    perform_timestep(state, params, rng, dt)
    return state


def is_complete(state: SimulationState, params: SimulationParams) -> bool:
    return state.t >= params.general.t_end - TIME_TOLERANCE


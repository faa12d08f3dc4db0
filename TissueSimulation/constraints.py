"""Position-based constraint projection.

Applied after every physics substep, in this order:

1. hard-sphere separation of nuclei
2. left-to-right ordering of basal points along each basal link
3. maximum basal junction length
4. re-projection of adherent basal points onto the basal curve

The curve projection runs last so that the earlier corrections end up
back on the membrane.
"""

from __future__ import annotations

import math

import numpy as np
from scipy.spatial import cKDTree

from TissueSimulation.cell import get_cell_type
from TissueSimulation.config import SimulationParams
from TissueSimulation.state import SimulationState
from TissueSimulation.vector import EPS

ORDERING_EPSILON = 1e-6
OVERLAP_TOLERANCE = 1e-9
HARD_SPHERE_PASSES = 8


def _candidate_pairs(pos: np.ndarray, cutoff: float) -> list[tuple[int, int]]:
    """Index pairs (i, j), j < i, closer than ``cutoff``, in loop order."""
    if pos.shape[0] < 2 or cutoff <= 0:
        return []
    pairs = cKDTree(pos).query_pairs(cutoff, output_type="ndarray")
    if pairs.size == 0:
        return []
    ordered = np.column_stack([pairs[:, 1], pairs[:, 0]])
    ordered = ordered[np.lexsort((ordered[:, 1], ordered[:, 0]))]
    return [(int(i), int(j)) for i, j in ordered]


def project_hard_sphere(state: SimulationState, max_passes: int = HARD_SPHERE_PASSES) -> int:
    """Push overlapping nuclei apart by half the overlap each.

    Pairs are corrected sequentially (Gauss-Seidel). Candidate pairs are
    rebuilt before every pass, and passes repeat until no overlap is left or
    ``max_passes`` is reached. Coincident nuclei are separated along x, the
    lower index to the left. Returns the number of corrections applied.
    """
    cells = state.cells
    if len(cells) < 2:
        return 0
    radii = [c.R_hard for c in cells]
    xs = [float(c.pos[0]) for c in cells]
    ys = [float(c.pos[1]) for c in cells]
    corrections = 0
    for _ in range(max(1, max_passes)):
        pos = np.column_stack([xs, ys])
        pass_corrections = 0
        for i, j in _candidate_pairs(pos, 2.0 * max(radii) + EPS):
            dx = xs[i] - xs[j]
            dy = ys[i] - ys[j]
            dist = math.hypot(dx, dy)
            rij = radii[i] + radii[j]
            if dist >= rij - OVERLAP_TOLERANCE:
                continue
            if dist < EPS:
                # j < i, so i goes right
                dx, dy, dist = 1.0, 0.0, 1.0
                xs[i] = xs[j] = 0.5 * (xs[i] + xs[j])
                ys[i] = ys[j] = 0.5 * (ys[i] + ys[j])
                overlap = rij
            else:
                overlap = rij - dist
            scale = 0.5 * overlap / dist
            xs[i] += dx * scale
            ys[i] += dy * scale
            xs[j] -= dx * scale
            ys[j] -= dy * scale
            pass_corrections += 1
        corrections += pass_corrections
        if pass_corrections == 0:
            break
    for cell, x, y in zip(cells, xs, ys):
        cell.pos[0] = x
        cell.pos[1] = y
    return corrections


def project_basal_ordering(state: SimulationState) -> None:
    """Keep the left endpoint of each basal link before the right one.

    Order is measured along the local tangent T = (N.y, -N.x) at the link
    midpoint; a violation moves both points apart along T.
    """
    geometry = state.basal_geometry
    cells = state.cells
    for link in state.ba_links:
        left, right = cells[link.l], cells[link.r]
        if not (left.has_B and right.has_B):
            continue
        mid = 0.5 * (left.B + right.B)
        normal = geometry.normal(geometry.project_point(mid))
        tangent = np.array([normal[1], -normal[0]])
        proj_left = float(np.dot(left.B - mid, tangent))
        proj_right = float(np.dot(right.B - mid, tangent))
        if proj_left >= proj_right:
            corr = 0.5 * (proj_left - proj_right) + ORDERING_EPSILON
            left.B -= corr * tangent
            right.B += corr * tangent


def project_max_basal_distance(state: SimulationState, params: SimulationParams) -> None:
    """Limit the length of every basal junction to the type-averaged maximum."""
    cells = state.cells
    for link in state.ba_links:
        left, right = cells[link.l], cells[link.r]
        max_dist = 0.5 * (
            get_cell_type(params, left.type_index).max_basal_junction_dist
            + get_cell_type(params, right.type_index).max_basal_junction_dist
        )
        delta = right.B - left.B
        dist = math.hypot(float(delta[0]), float(delta[1]))
        if dist > max_dist:
            shift = delta * (0.5 * (dist - max_dist) / dist)
            left.B += shift
            right.B -= shift


def project_basal_curve(state: SimulationState) -> None:
    """Snap the basal points of adherent cells onto the basal curve."""
    adherent = [c for c in state.cells if c.has_B]
    if not adherent:
        return
    points = np.array([c.B for c in adherent])
    projected = state.basal_geometry.project_points(points)
    for cell, point in zip(adherent, projected):
        cell.B[:] = point


def apply_constraints(state: SimulationState, params: SimulationParams) -> None:
    project_hard_sphere(state)
    project_basal_ordering(state)
    project_max_basal_distance(state, params)
    project_basal_curve(state)

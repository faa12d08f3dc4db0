"""Force computation for the overdamped cell mechanics.

Every cell receives three force accumulators: on the nucleus, on the
apical point and on the basal point. Five contributions are summed:

    repulsion           soft-sphere push between nuclei, for Rij/20 < d < Rij
                        |F| = (s_i + s_j) (Rij - d) / Rij^2
    apical spring       nucleus <-> A, rest length max(eta_A, 0) + R
    basal spring        nucleus <-> B, rest length max(eta_B, 0) + R
                        F = 2k (len - rl) / rl^2 along the arm
    straightness        penalises the angle between the arms A->X and B->X
    apical junctions    per apical link, 0.25 * mean(k_aa) (d - rl)

R is R_hard when ``hard_sphere_nuclei`` is set, R_soft otherwise. Pairwise
terms are applied with opposite signs so momentum is conserved. Degenerate
geometry (coincident points) zeroes the affected term.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.spatial import cKDTree

from TissueSimulation.cell import ApicalLink, get_cell_type
from TissueSimulation.config import SimulationParams
from TissueSimulation.state import SimulationState
from TissueSimulation.vector import EPS, rows_norm

logger = logging.getLogger(__name__)

JUNCTION_MIN_DISTANCE = 1e-6
REPULSION_INNER_FRACTION = 1.0 / 20.0


@dataclass
class CellForces:
    """Per-cell force accumulators, each of shape (n_cells, 2)."""
    nucleus: np.ndarray
    apical: np.ndarray
    basal: np.ndarray

    @classmethod
    def zeros(cls, n_cells: int) -> "CellForces":
        return cls(
            nucleus=np.zeros((n_cells, 2)),
            apical=np.zeros((n_cells, 2)),
            basal=np.zeros((n_cells, 2)),
        )


# -----------------------------------------------------------------------------
# Individual contributions
# -----------------------------------------------------------------------------

def repulsion_forces(
    pos: np.ndarray,
    radii: np.ndarray,
    stiffness: np.ndarray,
    out: np.ndarray,
) -> None:
    """Accumulate soft-sphere repulsion between nuclei into ``out``."""
    n = pos.shape[0]
    if n < 2:
        return
    cutoff = 2.0 * float(radii.max())
    pairs = cKDTree(pos).query_pairs(cutoff, output_type="ndarray")
    if pairs.size == 0:
        return
    i, j = pairs[:, 0], pairs[:, 1]
    xixj = pos[j] - pos[i]
    d = rows_norm(xixj)
    rij = radii[i] + radii[j]
    active = (d > rij * REPULSION_INNER_FRACTION) & (d < rij)
    if not np.any(active):
        return
    i, j, xixj, d, rij = i[active], j[active], xixj[active], d[active], rij[active]
    coef = -(stiffness[i] + stiffness[j]) * (rij - d) / (d * rij ** 2)
    force = xixj * coef[:, None]
    np.add.at(out, i, force)
    np.add.at(out, j, -force)


def nucleus_spring_forces(
    pos: np.ndarray,
    anchor: np.ndarray,
    rest_length: np.ndarray,
    stiffness: np.ndarray,
    out_nucleus: np.ndarray,
    out_anchor: np.ndarray,
) -> None:
    """Spring between each nucleus and one of its anchor points (A or B)."""
    arm = pos - anchor
    length = rows_norm(arm)
    ok = (length > EPS) & (rest_length > EPS)
    coef = np.zeros_like(length)
    coef[ok] = 2.0 * stiffness[ok] * (length[ok] - rest_length[ok]) / (length[ok] * rest_length[ok] ** 2)
    force = arm * coef[:, None]
    out_nucleus -= force
    out_anchor += force


def straightness_forces(
    pos: np.ndarray,
    apical: np.ndarray,
    basal: np.ndarray,
    stiffness: np.ndarray,
    forces: CellForces,
) -> None:
    """Penalty pulling the nucleus onto the A-B segment."""
    ax = pos - apical
    bx = pos - basal
    al = rows_norm(ax)
    bl = rows_norm(bx)
    ab = (ax * bx).sum(axis=1)
    ok = (ab != 0.0) & (al > EPS) & (bl > EPS)
    if not np.any(ok):
        return
    ax, bx, al, bl, ab, k = ax[ok], bx[ok], al[ok], bl[ok], ab[ok], stiffness[ok]
    f = k / (al * bl)
    d_r = (-bx + ax * (ab / al ** 2)[:, None]) * f[:, None]
    d_s = (-ax + bx * (ab / bl ** 2)[:, None]) * f[:, None]
    forces.apical[ok] -= d_r
    forces.nucleus[ok] += d_r + d_s
    forces.basal[ok] -= d_s


def apical_junction_forces(
    apical: np.ndarray,
    links: Sequence[ApicalLink],
    stiffness: np.ndarray,
    out: np.ndarray,
) -> None:
    """Springs between the apical points of linked cells."""
    if not links:
        return
    left = np.fromiter((link.l for link in links), dtype=np.int64, count=len(links))
    right = np.fromiter((link.r for link in links), dtype=np.int64, count=len(links))
    rest = np.fromiter((link.rl for link in links), dtype=np.float64, count=len(links))
    aiaj = apical[left] - apical[right]
    d = rows_norm(aiaj)
    ok = d > JUNCTION_MIN_DISTANCE
    if not np.any(ok):
        return
    left, right, aiaj, d, rest = left[ok], right[ok], aiaj[ok], d[ok], rest[ok]
    k_avg = 0.5 * (stiffness[left] + stiffness[right])
    force = aiaj * (0.25 * k_avg * (d - rest) / d)[:, None]
    np.add.at(out, left, -force)
    np.add.at(out, right, force)


# -----------------------------------------------------------------------------
# Total force
# -----------------------------------------------------------------------------

def compute_forces(state: SimulationState, params: SimulationParams) -> CellForces:
    """Sum all force contributions for the current state (state is not modified)."""
    cells = state.cells
    n = len(cells)
    forces = CellForces.zeros(n)
    if n == 0:
        return forces

    pos = state.positions()
    apical = state.apical_points()
    basal = state.basal_points()
    r_soft = np.array([c.R_soft for c in cells])
    if params.general.hard_sphere_nuclei:
        radius = np.array([c.R_hard for c in cells])
    else:
        radius = r_soft
    repulsion = np.array([get_cell_type(params, c.type_index).stiffness_repulsion for c in cells])

    repulsion_forces(pos, r_soft, repulsion, forces.nucleus)
    nucleus_spring_forces(
        pos,
        apical,
        np.maximum([c.eta_A for c in cells], 0.0) + radius,
        np.array([c.stiffness_nuclei_apical for c in cells]),
        forces.nucleus,
        forces.apical,
    )
    nucleus_spring_forces(
        pos,
        basal,
        np.maximum([c.eta_B for c in cells], 0.0) + radius,
        np.array([c.stiffness_nuclei_basal for c in cells]),
        forces.nucleus,
        forces.basal,
    )
    straightness_forces(
        pos,
        apical,
        basal,
        np.array([c.stiffness_straightness for c in cells]),
        forces,
    )
    apical_junction_forces(
        apical,
        state.ap_links,
        np.array([c.stiffness_apical_apical for c in cells]),
        forces.apical,
    )
    if not (np.all(np.isfinite(forces.nucleus)) and np.all(np.isfinite(forces.apical))
            and np.all(np.isfinite(forces.basal))):
        logger.warning("Non-finite forces at t=%.4f; zeroing affected entries", state.t)
        for arr in (forces.nucleus, forces.apical, forces.basal):
            arr[~np.isfinite(arr)] = 0.0
    return forces

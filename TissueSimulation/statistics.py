"""Tissue statistics.

Per-cell quantities are aggregated as means over groups ("all" and each
cell type) into ``{metric}_{group}`` entries. The depth coordinate of a
nucleus X is measured between two projections:

    b = projection of X onto the basal curve
    a = projection of X onto the apical strip (one segment per apical
        link, so it follows the chain or ring of apical junctions)
    x = (X - b) . (a - b) / |a - b|^2

so x = 0 on the basal membrane and x = 1 on the apical surface. A metric
that fails is logged and reported as NaN without affecting the others.
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import Callable, Optional, Sequence

import numpy as np

from TissueSimulation.cell import ApicalLink
from TissueSimulation.config import SimulationParams
from TissueSimulation.state import SimulationState
from TissueSimulation.vector import rows_norm

logger = logging.getLogger(__name__)

ALL_GROUP = "all"
DEGENERATE_LENGTH_SQ = 1e-10


def project_onto_segments(points: np.ndarray, starts: np.ndarray, ends: np.ndarray) -> np.ndarray:
    """Closest point on any of the segments [starts[k], ends[k]] for each point."""
    seg = ends - starts
    len2 = (seg ** 2).sum(axis=1)
    rel = points[:, None, :] - starts[None, :, :]
    safe = np.where(len2 < DEGENERATE_LENGTH_SQ, 1.0, len2)
    t = np.clip((rel * seg[None, :, :]).sum(axis=2) / safe[None, :], 0.0, 1.0)
    t[:, len2 < DEGENERATE_LENGTH_SQ] = 0.0
    proj = starts[None, :, :] + t[:, :, None] * seg[None, :, :]
    d2 = ((points[:, None, :] - proj) ** 2).sum(axis=2)
    best = d2.argmin(axis=1)
    return proj[np.arange(points.shape[0]), best]


def project_onto_apical_strip(
    points: np.ndarray,
    apical: np.ndarray,
    links: Optional[Sequence[ApicalLink]] = None,
) -> np.ndarray:
    """Project points onto the apical surface.

    With ``links`` the surface is one segment per apical link, so it follows
    the tissue chain whatever the array order. Without links it is the
    polyline through ``apical`` in order, closed when there are > 2 points.
    An empty link list leaves only the apical points themselves.
    """
    points = np.atleast_2d(points)
    if apical.shape[0] == 0:
        return points.copy()
    if links is not None:
        if not links:
            return project_onto_segments(points, apical, apical)
        left = np.array([link.l for link in links])
        right = np.array([link.r for link in links])
        return project_onto_segments(points, apical[left], apical[right])
    if apical.shape[0] == 1:
        return np.repeat(apical[:1], points.shape[0], axis=0)
    starts = apical[:-1]
    ends = apical[1:]
    if apical.shape[0] > 2:
        starts = np.vstack([starts, apical[-1:]])
        ends = np.vstack([ends, apical[:1]])
    return project_onto_segments(points, starts, ends)


class TissueProjection:
    """Lazily computed per-cell geometric quantities of one state."""

    def __init__(self, state: SimulationState) -> None:
        self.state = state
        self.nuclei = state.positions()
        self.apical = state.apical_points()
        self.basal = state.basal_points()

    @cached_property
    def basal_projection(self) -> np.ndarray:
        if self.nuclei.shape[0] == 0:
            return self.nuclei.copy()
        return self.state.basal_geometry.project_points(self.nuclei)

    @cached_property
    def apical_projection(self) -> np.ndarray:
        return project_onto_apical_strip(self.nuclei, self.apical, self.state.ap_links)

    @cached_property
    def height(self) -> np.ndarray:
        """Signed distance of each nucleus above the basal curve."""
        b = self.basal_projection
        if b.shape[0] == 0:
            return np.zeros(0)
        normals = self.state.basal_geometry.normals(b)
        return ((self.nuclei - b) * normals).sum(axis=1)

    @cached_property
    def depth(self) -> np.ndarray:
        b = self.basal_projection
        ab = self.apical_projection - b
        len2 = (ab ** 2).sum(axis=1)
        x = np.zeros(len2.shape[0])
        ok = len2 > DEGENERATE_LENGTH_SQ
        x[ok] = ((self.nuclei[ok] - b[ok]) * ab[ok]).sum(axis=1) / len2[ok]
        return x

    def below_neighbours(self) -> np.ndarray:
        n = len(self.state.cells)
        neighbours: list[list[int]] = [[] for _ in range(n)]
        for link in self.state.ap_links:
            neighbours[link.l].append(link.r)
            neighbours[link.r].append(link.l)
        height = self.height
        out = np.zeros(n)
        for i, linked in enumerate(neighbours):
            if linked and height[i] < min(height[j] for j in linked):
                out[i] = 1.0
        return out


METRICS: dict[str, Callable[[TissueProjection], np.ndarray]] = {
    "ab_distance": lambda p: rows_norm(p.apical - p.basal),
    "AX": lambda p: rows_norm(p.apical - p.nuclei),
    "BX": lambda p: rows_norm(p.basal - p.nuclei),
    "ax": lambda p: rows_norm(p.apical_projection - p.nuclei),
    "bx": lambda p: rows_norm(p.basal_projection - p.nuclei),
    "x": lambda p: p.depth,
    "below_basal": lambda p: (p.height < 0).astype(float),
    "above_apical": lambda p: (p.depth > 1).astype(float),
    "below_neighbours": lambda p: p.below_neighbours(),
    "has_A": lambda p: np.array([float(c.has_A) for c in p.state.cells]),
    "has_B": lambda p: np.array([float(c.has_B) for c in p.state.cells]),
}


def _mean(values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    return float(np.mean(values))


def statistic_groups(state: SimulationState, params: Optional[SimulationParams] = None) -> list[str]:
    if params is not None:
        types = params.type_names
    else:
        types = list(dict.fromkeys(c.type_index for c in state.cells))
    return [ALL_GROUP] + types


def statistic_ids(params: SimulationParams) -> list[str]:
    return [f"{metric}_{group}" for metric in METRICS for group in [ALL_GROUP] + params.type_names]


def compute_statistics(state: SimulationState, params: Optional[SimulationParams] = None) -> dict[str, float]:
    """Group means of every metric; failing metrics are reported as NaN."""
    groups = statistic_groups(state, params)
    type_of = np.array([c.type_index for c in state.cells], dtype=object)
    projection = TissueProjection(state)
    result: dict[str, float] = {}
    for metric, compute in METRICS.items():
        try:
            values = np.asarray(compute(projection), dtype=np.float64)
        except Exception:
            logger.exception("Failed to compute statistic %s", metric)
            for group in groups:
                result[f"{metric}_{group}"] = float("nan")
            continue
        for group in groups:
            mask = np.ones(len(values), dtype=bool) if group == ALL_GROUP else type_of == group
            result[f"{metric}_{group}"] = _mean(values[mask])
    return result


def cell_metrics(state: SimulationState) -> list[dict[str, object]]:
    """Per-cell metric rows (one row per cell)."""
    projection = TissueProjection(state)
    columns = {metric: np.asarray(compute(projection), dtype=np.float64) for metric, compute in METRICS.items()}
    rows = []
    for index, cell in enumerate(state.cells):
        row: dict[str, object] = {"id": cell.id, "type_index": cell.type_index, "t": state.t}
        for metric, values in columns.items():
            row[metric] = float(values[index])
        rows.append(row)
    return rows

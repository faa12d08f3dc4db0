"""Mutable simulation state owned by one stepping loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from TissueSimulation.cell import ApicalLink, BasalLink, Cell
from TissueSimulation.geometry import BasalGeometry, GeometryState, geometry_from_state


@dataclass
class SimulationState:
    """Cells, link chains, clock and basal geometry of a running simulation.

    ``geometry`` is the serializable curve description; ``basal_geometry``
    is rebuilt from it whenever it is missing (e.g. after unpickling).
    """
    cells: list[Cell] = field(default_factory=list)
    ap_links: list[ApicalLink] = field(default_factory=list)
    ba_links: list[BasalLink] = field(default_factory=list)
    t: float = 0.0
    step_count: int = 0
    geometry: GeometryState = field(default_factory=GeometryState)
    rng_seed: int | str = 0
    geometry_points: int = 360
    basal_geometry: Optional[BasalGeometry] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.basal_geometry is None:
            self.basal_geometry = geometry_from_state(self.geometry, self.geometry_points)

    def __getstate__(self) -> dict:
        data = dict(self.__dict__)
        data["basal_geometry"] = None
        return data

    def __setstate__(self, data: dict) -> None:
        self.__dict__.update(data)
        self.basal_geometry = geometry_from_state(self.geometry, self.geometry_points)

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    def positions(self) -> np.ndarray:
        return np.array([c.pos for c in self.cells], dtype=np.float64).reshape(-1, 2)

    def apical_points(self) -> np.ndarray:
        return np.array([c.A for c in self.cells], dtype=np.float64).reshape(-1, 2)

    def basal_points(self) -> np.ndarray:
        return np.array([c.B for c in self.cells], dtype=np.float64).reshape(-1, 2)

    def copy(self) -> "SimulationState":
        """Deep copy for consumers that keep the state across a step."""
        return SimulationState(
            cells=[c.copy() for c in self.cells],
            ap_links=[ApicalLink(link.l, link.r, link.rl) for link in self.ap_links],
            ba_links=[BasalLink(link.l, link.r) for link in self.ba_links],
            t=self.t,
            step_count=self.step_count,
            geometry=self.geometry,
            rng_seed=self.rng_seed,
            geometry_points=self.geometry_points,
            basal_geometry=self.basal_geometry,
        )

"""Basal membrane geometry.

The basal membrane is a 1-D curve that basal points are confined to:
an infinite straight line (y = 0), a circle, or an ellipse. Every curve
passes through the origin, which is also the arc-length origin. Arc length
increases towards +x at the origin, matching the left-to-right order of
the link chains.

The curve shape is stored as a plain ``GeometryState`` (two curvatures) and
the behaviour is rebuilt from it with ``create_basal_geometry``; nothing
relies on a geometry object surviving pickling or copying.

Ellipse sizing uses Ramanujan's second approximation of the perimeter:
    P ~ pi (a + b) (1 + 3h / (10 + sqrt(4 - 3h))),   h = ((a - b) / (a + b))^2
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy import special

from TissueSimulation.vector import EPS, rows_norm

logger = logging.getLogger(__name__)

CIRCLE_TOLERANCE = 1e-10
DEFAULT_NUM_POINTS = 360


# -----------------------------------------------------------------------------
# Perimeter helpers
# -----------------------------------------------------------------------------

def ramanujan_perimeter(a: float, b: float) -> float:
    """Ramanujan's approximation of the perimeter of an ellipse."""
    if a == 0 and b == 0:
        return 0.0
    if a == b:
        return 2.0 * math.pi * a
    h = ((a - b) / (a + b)) ** 2
    return math.pi * (a + b) * (1.0 + 3.0 * h / (10.0 + math.sqrt(4.0 - 3.0 * h)))


def exact_ellipse_perimeter(a: float, b: float) -> float:
    """Perimeter from the complete elliptic integral of the second kind."""
    major, minor = max(a, b), min(a, b)
    if major == 0:
        return 0.0
    m = 1.0 - (minor / major) ** 2
    return 4.0 * major * float(special.ellipe(m))


@dataclass(frozen=True)
class EllipseShape:
    """Semi-axes and signed curvatures of the basal ellipse."""
    a: float
    b: float
    curvature_1: float
    curvature_2: float


def ellipse_from_perimeter(perimeter: float, aspect_ratio: float) -> EllipseShape:
    """Solve the semi-axes (a, b) with b/a = |aspect_ratio| for a given perimeter.

    aspect_ratio == 0 means a straight line (infinite semi-axes, zero
    curvature). A negative aspect ratio flips the sign of both curvatures.
    """
    if aspect_ratio == 0:
        return EllipseShape(a=math.inf, b=math.inf, curvature_1=0.0, curvature_2=0.0)
    if perimeter <= 0:
        raise ValueError("perimeter must be positive for a curved basal membrane")
    sign = 1.0 if aspect_ratio > 0 else -1.0
    ratio = abs(aspect_ratio)
    scale = perimeter / ramanujan_perimeter(1.0, ratio)
    a = scale
    b = scale * ratio
    return EllipseShape(a=a, b=b, curvature_1=sign / a, curvature_2=sign / b)


@dataclass(frozen=True)
class GeometryState:
    """Serializable description of the basal curve."""
    curvature_1: float = 0.0
    curvature_2: float = 0.0


def geometry_state_from_shape(perimeter: float, aspect_ratio: float) -> GeometryState:
    shape = ellipse_from_perimeter(perimeter, aspect_ratio)
    return GeometryState(curvature_1=shape.curvature_1, curvature_2=shape.curvature_2)


# -----------------------------------------------------------------------------
# Geometry variants
# -----------------------------------------------------------------------------

class BasalGeometry:
    """Common interface of the basal curve variants."""

    kind = "base"
    curvature_1 = 0.0
    curvature_2 = 0.0
    perimeter = math.inf

    @property
    def is_closed(self) -> bool:
        return math.isfinite(self.perimeter)

    @property
    def state(self) -> GeometryState:
        return GeometryState(curvature_1=self.curvature_1, curvature_2=self.curvature_2)

    def project_points(self, points: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def arc_lengths(self, points: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def normals(self, points: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def point_at_arc_length(self, length: float) -> np.ndarray:
        raise NotImplementedError

    def project_point(self, point: np.ndarray) -> np.ndarray:
        return self.project_points(np.asarray(point, dtype=np.float64)[None, :])[0]

    def arc_length(self, point: np.ndarray) -> float:
        return float(self.arc_lengths(np.asarray(point, dtype=np.float64)[None, :])[0])

    def normal(self, point: np.ndarray) -> np.ndarray:
        return self.normals(np.asarray(point, dtype=np.float64)[None, :])[0]

    def curved_to_cartesian(self, length: float, height: float) -> np.ndarray:
        base = self.point_at_arc_length(length)
        return base + self.normal(base) * height

    def wrap_arc_length(self, length: float) -> float:
        """Map an arc length into [-P/2, P/2) on closed curves."""
        if not self.is_closed:
            return float(length)
        half = 0.5 * self.perimeter
        return float((length + half) % self.perimeter - half)


class StraightLineGeometry(BasalGeometry):
    """Infinite straight membrane along y = 0."""

    kind = "line"

    def project_points(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        out = points.copy()
        out[:, 1] = 0.0
        return out

    def arc_lengths(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        return points[:, 0].copy()

    def normals(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        out = np.zeros_like(points)
        out[:, 1] = 1.0
        return out

    def point_at_arc_length(self, length: float) -> np.ndarray:
        return np.array([length, 0.0], dtype=np.float64)


class CircularGeometry(BasalGeometry):
    """Circle of radius |1/c| centred at (0, 1/c)."""

    kind = "circle"

    def __init__(self, curvature_1: float, curvature_2: float) -> None:
        self.curvature_1 = float(curvature_1)
        self.curvature_2 = float(curvature_2)
        self.radius = abs(1.0 / self.curvature_1)
        self.perimeter = 2.0 * math.pi * self.radius
        self.dir = -math.copysign(1.0, self.curvature_2)
        self.center = np.array([0.0, 1.0 / self.curvature_2], dtype=np.float64)

    def project_points(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        rel = points - self.center
        length = rows_norm(rel)
        out = np.empty_like(points)
        ok = length > EPS
        out[ok] = self.center + rel[ok] * (self.radius / length[ok])[:, None]
        # The centre is equidistant from the whole curve; use the origin.
        out[~ok] = self.point_at_arc_length(0.0)
        return out

    def arc_lengths(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        rel = points - self.center
        return np.arctan2(rel[:, 0], self.dir * rel[:, 1]) * self.radius

    def normals(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        toward = self.center - points
        length = rows_norm(toward)
        sign = math.copysign(1.0, self.curvature_2)
        out = np.zeros_like(points)
        ok = length > EPS
        out[ok] = toward[ok] * (sign / length[ok])[:, None]
        out[~ok] = np.array([0.0, 1.0])
        return out

    def point_at_arc_length(self, length: float) -> np.ndarray:
        theta = length / self.radius
        return np.array(
            [
                self.center[0] + self.radius * math.sin(theta),
                self.center[1] + self.dir * self.radius * math.cos(theta),
            ],
            dtype=np.float64,
        )


class EllipticalGeometry(BasalGeometry):
    """Ellipse with semi-axes a = |1/c1| (x) and b = |1/c2| (y).

    The curve is discretised into ``num_points`` samples of the parametric
    angle theta with position center + (a sin(theta), dir * b cos(theta)).
    Each sample stores its cumulative chord arc length and unit normal;
    lookups search the samples and interpolate along the chords.
    """

    kind = "ellipse"

    def __init__(self, curvature_1: float, curvature_2: float, num_points: int = DEFAULT_NUM_POINTS) -> None:
        if num_points < 3:
            raise ValueError("num_points must be at least 3")
        self.curvature_1 = float(curvature_1)
        self.curvature_2 = float(curvature_2)
        self.a = abs(1.0 / self.curvature_1)
        self.b = abs(1.0 / self.curvature_2)
        self.dir = -math.copysign(1.0, self.curvature_2)
        self.center = np.array([0.0, 1.0 / self.curvature_2], dtype=np.float64)
        self.num_points = int(num_points)

        theta = np.linspace(0.0, 2.0 * np.pi, self.num_points + 1)
        rel = np.column_stack([self.a * np.sin(theta), self.dir * self.b * np.cos(theta)])
        rel[-1] = rel[0]
        self._points = self.center + rel
        seg = np.diff(self._points, axis=0)
        self._seg_len = rows_norm(seg)
        self._arc = np.concatenate([[0.0], np.cumsum(self._seg_len)])
        self.perimeter = float(self._arc[-1])

        grad = np.column_stack([rel[:, 0] / self.a ** 2, rel[:, 1] / self.b ** 2])
        self._normals = self.dir * grad / rows_norm(grad)[:, None]

    def _locate(self, points: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Closest curve point, its segment index and chord parameter."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        samples = self._points[:-1]
        d2 = ((points[:, None, :] - samples[None, :, :]) ** 2).sum(axis=2)
        nearest = d2.argmin(axis=1)

        best_d = np.full(points.shape[0], np.inf)
        best_pt = np.empty_like(points)
        best_seg = np.zeros(points.shape[0], dtype=np.int64)
        best_t = np.zeros(points.shape[0])
        for offset in (-1, 0):
            seg_idx = (nearest + offset) % self.num_points
            p0 = self._points[seg_idx]
            chord = self._points[seg_idx + 1] - p0
            len2 = np.maximum((chord ** 2).sum(axis=1), EPS)
            t = np.clip(((points - p0) * chord).sum(axis=1) / len2, 0.0, 1.0)
            proj = p0 + chord * t[:, None]
            d = ((points - proj) ** 2).sum(axis=1)
            better = d < best_d
            best_d[better] = d[better]
            best_pt[better] = proj[better]
            best_seg[better] = seg_idx[better]
            best_t[better] = t[better]
        return best_pt, best_seg, best_t, best_d

    def project_points(self, points: np.ndarray) -> np.ndarray:
        return self._locate(points)[0]

    def arc_lengths(self, points: np.ndarray) -> np.ndarray:
        _, seg, t, _ = self._locate(points)
        raw = self._arc[seg] + t * self._seg_len[seg]
        half = 0.5 * self.perimeter
        return (raw + half) % self.perimeter - half

    def normals(self, points: np.ndarray) -> np.ndarray:
        _, seg, t, _ = self._locate(points)
        blend = self._normals[seg] * (1.0 - t)[:, None] + self._normals[seg + 1] * t[:, None]
        return blend / np.maximum(rows_norm(blend), EPS)[:, None]

    def point_at_arc_length(self, length: float) -> np.ndarray:
        wrapped = float(length) % self.perimeter
        idx = int(np.searchsorted(self._arc, wrapped, side="right")) - 1
        idx = min(max(idx, 0), self.num_points - 1)
        seg_len = self._seg_len[idx]
        t = 0.0 if seg_len < EPS else (wrapped - self._arc[idx]) / seg_len
        return self._points[idx] + (self._points[idx + 1] - self._points[idx]) * t


def create_basal_geometry(
    curvature_1: float,
    curvature_2: float,
    num_points: int = DEFAULT_NUM_POINTS,
) -> BasalGeometry:
    """Rebuild the geometry behaviour from its two curvatures."""
    if curvature_1 == 0 or curvature_2 == 0:
        if curvature_1 != curvature_2:
            logger.warning(
                "Degenerate basal curvature (%s, %s); using a straight membrane",
                curvature_1,
                curvature_2,
            )
        return StraightLineGeometry()
    if abs(curvature_1 - curvature_2) < CIRCLE_TOLERANCE:
        return CircularGeometry(curvature_1, curvature_2)
    return EllipticalGeometry(curvature_1, curvature_2, num_points)


def geometry_from_state(state: GeometryState, num_points: int = DEFAULT_NUM_POINTS) -> BasalGeometry:
    return create_basal_geometry(state.curvature_1, state.curvature_2, num_points)

import math

import numpy as np
import pytest

from TissueSimulation.geometry import (
    CircularGeometry,
    EllipticalGeometry,
    StraightLineGeometry,
    create_basal_geometry,
    ellipse_from_perimeter,
    exact_ellipse_perimeter,
    geometry_state_from_shape,
    ramanujan_perimeter,
)


def test_ramanujan_circle_and_symmetry():
    assert ramanujan_perimeter(3.0, 3.0) == pytest.approx(2 * math.pi * 3.0, abs=1e-10)
    assert ramanujan_perimeter(2.0, 5.0) == pytest.approx(ramanujan_perimeter(5.0, 2.0))
    values = [ramanujan_perimeter(a, 1.0) for a in (1.0, 1.5, 2.0, 4.0, 8.0)]
    assert all(b > a for a, b in zip(values, values[1:]))


def test_ramanujan_close_to_exact():
    for a, b in [(1.0, 2.0), (3.0, 1.0), (10.0, 4.0)]:
        assert ramanujan_perimeter(a, b) == pytest.approx(exact_ellipse_perimeter(a, b), rel=1e-6)


@pytest.mark.parametrize("perimeter", [30.0, 50.0, 40.0, 60.0])
@pytest.mark.parametrize("aspect", [1.0, 2.0, 0.5, 3.0])
def test_ellipse_from_perimeter_round_trip(perimeter, aspect):
    shape = ellipse_from_perimeter(perimeter, aspect)
    assert shape.b / shape.a == pytest.approx(aspect)
    geometry = create_basal_geometry(shape.curvature_1, shape.curvature_2)
    assert geometry.perimeter == pytest.approx(perimeter, rel=0.01)


def test_zero_aspect_is_straight_line():
    shape = ellipse_from_perimeter(50.0, 0.0)
    assert shape.curvature_1 == 0.0 and shape.curvature_2 == 0.0
    assert math.isinf(shape.a) and math.isinf(shape.b)
    state = geometry_state_from_shape(50.0, 0.0)
    assert isinstance(create_basal_geometry(state.curvature_1, state.curvature_2), StraightLineGeometry)


def test_negative_aspect_flips_sign():
    pos = ellipse_from_perimeter(40.0, 2.0)
    neg = ellipse_from_perimeter(40.0, -2.0)
    assert neg.curvature_1 == pytest.approx(-pos.curvature_1)
    assert neg.curvature_2 == pytest.approx(-pos.curvature_2)
    assert abs(neg.b / neg.a) == pytest.approx(2.0)


def test_non_positive_perimeter_rejected():
    with pytest.raises(ValueError):
        ellipse_from_perimeter(0.0, 1.0)


def test_single_zero_curvature_degrades_to_line(caplog):
    geometry = create_basal_geometry(0.0, 0.1)
    assert isinstance(geometry, StraightLineGeometry)
    assert "Degenerate" in caplog.text


def test_line_projection_and_normal():
    line = StraightLineGeometry()
    assert np.allclose(line.project_point(np.array([3.0, 4.0])), [3.0, 0.0])
    assert line.arc_length(np.array([3.0, 4.0])) == pytest.approx(3.0)
    assert np.allclose(line.curved_to_cartesian(2.0, 5.0), [2.0, 5.0])
    assert not line.is_closed


@pytest.mark.parametrize("curvature", [0.1, -0.1])
def test_circle_passes_through_origin_and_round_trips(curvature):
    circle = create_basal_geometry(curvature, curvature)
    assert isinstance(circle, CircularGeometry)
    assert np.allclose(circle.point_at_arc_length(0.0), [0.0, 0.0])
    for length in (-12.0, -3.0, 0.5, 7.0, 20.0):
        point = circle.point_at_arc_length(length)
        assert circle.arc_length(point) == pytest.approx(length, abs=1e-9)
    # arc length grows towards +x at the origin
    assert circle.point_at_arc_length(0.5)[0] > 0


@pytest.mark.parametrize("curvature", [0.1, -0.1])
def test_circle_parametrisation(curvature):
    circle = CircularGeometry(curvature, curvature)
    radius, direction = 10.0, -np.sign(curvature)
    theta = 0.3
    expected = [radius * np.sin(theta), 1.0 / curvature + direction * radius * np.cos(theta)]
    assert np.allclose(circle.point_at_arc_length(theta * radius), expected)
    assert circle.arc_length(np.array(expected)) == pytest.approx(theta * radius)


def test_circle_projection_lands_on_curve():
    circle = CircularGeometry(0.1, 0.1)
    points = np.array([[3.0, 2.0], [-4.0, 15.0], [0.0, 25.0]])
    projected = circle.project_points(points)
    radii = np.hypot(projected[:, 0] - circle.center[0], projected[:, 1] - circle.center[1])
    assert np.allclose(radii, circle.radius)


def test_circle_normal_points_to_apical_side():
    circle = CircularGeometry(0.1, 0.1)
    assert np.allclose(circle.normal(np.array([0.0, 0.0])), [0.0, 1.0])
    assert np.allclose(circle.normal(circle.point_at_arc_length(5.0)), (circle.center - circle.point_at_arc_length(5.0)) / 10.0)
    inverted = CircularGeometry(-0.1, -0.1)
    assert np.allclose(inverted.normal(np.array([0.0, 0.0])), [0.0, 1.0])


@pytest.mark.parametrize("sign", [1.0, -1.0])
def test_ellipse_round_trip_and_normals(sign):
    shape = ellipse_from_perimeter(60.0, sign * 2.0)
    ellipse = create_basal_geometry(shape.curvature_1, shape.curvature_2)
    assert isinstance(ellipse, EllipticalGeometry)
    assert np.allclose(ellipse.point_at_arc_length(0.0), [0.0, 0.0], atol=1e-9)
    for length in (-10.0, 0.0, 4.0, 15.0):
        point = ellipse.point_at_arc_length(length)
        assert ellipse.arc_length(point) == pytest.approx(length, abs=1e-6)
    normal = ellipse.normal(np.array([0.0, 0.0]))
    assert np.allclose(normal, [0.0, 1.0], atol=1e-6)


def test_ellipse_projection_is_idempotent():
    ellipse = EllipticalGeometry(1 / 8.0, 1 / 4.0)
    points = np.array([[1.0, 1.0], [5.0, 6.0], [-3.0, -1.0]])
    once = ellipse.project_points(points)
    twice = ellipse.project_points(once)
    assert np.allclose(once, twice, atol=1e-9)


def test_wrap_arc_length():
    circle = CircularGeometry(0.1, 0.1)
    half = circle.perimeter / 2
    assert circle.wrap_arc_length(half + 1.0) == pytest.approx(-half + 1.0)
    assert StraightLineGeometry().wrap_arc_length(1e6) == 1e6

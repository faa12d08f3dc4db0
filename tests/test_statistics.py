import math

import numpy as np
import pytest

from TissueSimulation import statistics
from TissueSimulation.cell import ApicalLink
from TissueSimulation.config import build_params
from TissueSimulation.engine import init
from TissueSimulation.state import SimulationState
from TissueSimulation.statistics import (
    METRICS,
    cell_metrics,
    compute_statistics,
    project_onto_apical_strip,
    statistic_ids,
)


@pytest.fixture
def params():
    return build_params({"general": {"aspect_ratio": 0}})


def test_statistic_ids(params):
    ids = statistic_ids(params)
    assert len(ids) == len(METRICS) * 3
    assert "x_all" in ids and "x_emt" in ids and "has_A_control" in ids


def test_depth_halfway_between_layers(chain_state, params):
    for cell in chain_state.cells:
        cell.pos[1] = 5.0
        cell.A[1] = 10.0
    stats = compute_statistics(chain_state, params)
    assert stats["x_all"] == pytest.approx(0.5)
    assert stats["x_control"] == pytest.approx(0.5)
    assert stats["bx_all"] == pytest.approx(5.0)
    assert stats["ab_distance_all"] == pytest.approx(10.0)
    assert stats["above_apical_all"] == 0.0
    assert stats["below_basal_all"] == 0.0


def test_single_cell_uses_its_own_apical_point(make_cell, params):
    cell = make_cell(0, 3.0, y=6.0)
    cell.A[1] = 10.0
    stats = compute_statistics(SimulationState(cells=[cell]), params)
    assert stats["x_all"] == pytest.approx(0.6)


def test_above_apical_and_below_basal(make_cell, params):
    above = make_cell(0, 0.0, y=12.0)
    above.A[1] = 10.0
    below = make_cell(1, 5.0, y=-1.0)
    below.A[1] = 10.0
    stats = compute_statistics(SimulationState(cells=[above, below]), params)
    assert stats["above_apical_all"] == pytest.approx(0.5)
    assert stats["below_basal_all"] == pytest.approx(0.5)
    per_cell = cell_metrics(SimulationState(cells=[above, below]))
    assert per_cell[0]["x"] == pytest.approx(1.2)
    assert per_cell[0]["above_apical"] == 1.0
    assert per_cell[1]["below_basal"] == 1.0


def test_empty_group_mean_is_zero(chain_state, params):
    stats = compute_statistics(chain_state, params)
    assert stats["x_emt"] == 0.0
    assert stats["has_A_emt"] == 0.0
    assert stats["has_A_all"] == 1.0


def test_adhesion_fractions(chain_state, params):
    chain_state.cells[0].has_A = False
    chain_state.cells[1].has_B = False
    stats = compute_statistics(chain_state, params)
    assert stats["has_A_all"] == pytest.approx(0.8)
    assert stats["has_B_all"] == pytest.approx(0.8)


def test_below_neighbours(chain_state, params):
    chain_state.cells[2].pos[1] = 0.5
    chain_state.cells[0].pos[1] = 0.5
    stats = compute_statistics(chain_state, params)
    # cell 0 is lower than its only neighbour; cell 2 is lower than both
    assert stats["below_neighbours_all"] == pytest.approx(2 / 5)


def test_cells_without_neighbours_are_not_below(make_cell, params):
    state = SimulationState(cells=[make_cell(0, 0.0, y=0.1), make_cell(1, 5.0)])
    assert compute_statistics(state, params)["below_neighbours_all"] == 0.0
    state.ap_links.append(ApicalLink(0, 1))
    assert compute_statistics(state, params)["below_neighbours_all"] == pytest.approx(0.5)


def test_failing_metric_reported_as_nan(chain_state, params, monkeypatch, caplog):
    def broken(projection):
        raise RuntimeError("boom")

    monkeypatch.setitem(statistics.METRICS, "ax", broken)
    stats = compute_statistics(chain_state, params)
    assert math.isnan(stats["ax_all"])
    assert math.isnan(stats["ax_emt"])
    assert stats["bx_all"] == pytest.approx(2.5)
    assert "Failed to compute statistic ax" in caplog.text


def test_apical_strip_projection_closes_ring():
    apical = np.array([[0.0, 0.0], [4.0, 0.0], [4.0, 4.0]])
    projected = project_onto_apical_strip(np.array([[1.0, 2.0]]), apical)
    # the closing segment (4,4)->(0,0) is the nearest
    assert np.allclose(projected, [[1.5, 1.5]])
    two = project_onto_apical_strip(np.array([[1.0, 2.0]]), apical[:2])
    assert np.allclose(two, [[1.0, 0.0]])


def test_stats_on_initial_ring(ring_params):
    state = init(ring_params)
    stats = compute_statistics(state, ring_params)
    assert set(stats) == set(statistic_ids(ring_params))
    assert all(np.isfinite(v) for v in stats.values())
    assert 0.0 < stats["x_all"] < 1.0
    assert stats["has_A_all"] == 1.0


def test_apical_strip_follows_links_not_array_order(make_cell):
    # the daughter at index 2 sits between cells 0 and 1 in the chain
    cells = [make_cell(0, 0.0, y=5.0), make_cell(1, 8.0, y=5.0), make_cell(2, 4.0, y=9.0)]
    cells[0].A[:] = (0.0, 10.0)
    cells[1].A[:] = (8.0, 10.0)
    cells[2].A[:] = (4.0, 6.0)
    links = [ApicalLink(0, 2), ApicalLink(2, 1)]
    state = SimulationState(cells=cells, ap_links=links)

    nucleus = np.array([[4.0, 9.0]])
    apical = state.apical_points()
    assert np.allclose(project_onto_apical_strip(nucleus, apical), [[4.0, 10.0]])
    assert np.allclose(project_onto_apical_strip(nucleus, apical, links), [[2.5, 7.5]])

    per_cell = cell_metrics(state)
    assert per_cell[2]["x"] == pytest.approx(67.5 / 58.5)
    assert per_cell[2]["above_apical"] == 1.0


def test_apical_strip_without_links_uses_apical_points():
    apical = np.array([[0.0, 10.0], [8.0, 10.0]])
    projected = project_onto_apical_strip(np.array([[3.0, 4.0]]), apical, [])
    assert np.allclose(projected, [[0.0, 10.0]])

import numpy as np
import pytest

from TissueSimulation.config import build_params
from TissueSimulation.initialization import assign_cell_types, initialize_state, slot_positions


def test_slot_positions():
    assert np.allclose(slot_positions(4), [-0.75, -0.25, 0.25, 0.75])


def test_constrained_type_takes_closest_slots():
    params = build_params({"cell_types": {"control": {"N_init": 6}, "emt": {"N_init": 2, "location": "bottom"}}})
    types = assign_cell_types(params, 8, wraparound=True)
    assert types == ["control"] * 3 + ["emt"] * 2 + ["control"] * 3


def test_top_location_wraps_around_on_ring():
    params = build_params({"cell_types": {"control": {"N_init": 4}, "emt": {"N_init": 2, "location": "top"}}})
    types = assign_cell_types(params, 6, wraparound=True)
    assert types[0] == "emt" and types[-1] == "emt"
    assert types.count("control") == 4


def test_round_robin_between_unconstrained_types():
    params = build_params(
        {"cell_types": {"emt": None, "control": {"N_init": 2}, "other": {"N_init": 2}}}
    )
    assert assign_cell_types(params, 4, wraparound=False) == ["control", "other", "control", "other"]


def test_global_count_override():
    params = build_params({"general": {"N_init": 10}})
    types = assign_cell_types(params, params.total_initial_cells, wraparound=True)
    assert len(types) == 10
    assert types.count("emt") == 5
    assert types.count("control") == 5


def test_initial_state_on_ring(ring_params):
    state = initialize_state(ring_params)
    assert len(state.cells) == 15
    assert [c.id for c in state.cells] == list(range(15))
    geometry = state.basal_geometry
    assert geometry.kind == "circle"
    for cell in state.cells:
        assert np.linalg.norm(cell.B - geometry.project_point(cell.B)) < 1e-9
        height = np.dot(cell.pos - cell.B, geometry.normal(cell.B))
        assert 5.0 / 3 - 1e-9 <= height <= 10.0 / 3 + 1e-9
    assert len(state.ap_links) == 15
    assert (14, 0) in [(link.l, link.r) for link in state.ap_links]
    emt = [i for i, c in enumerate(state.cells) if c.type_index == "emt"]
    assert emt == [6, 7, 8]


def test_initial_state_on_line(line_params):
    state = initialize_state(line_params)
    assert len(state.cells) == 10
    assert all(cell.B[1] == 0.0 and cell.A[1] == pytest.approx(5.0) for cell in state.cells)
    xs = [cell.B[0] for cell in state.cells]
    assert xs == sorted(xs)
    assert len(state.ap_links) == 9
    assert len(state.ba_links) == 9


def test_initialization_is_deterministic(ring_params):
    a = initialize_state(ring_params)
    b = initialize_state(ring_params)
    assert np.array_equal(a.positions(), b.positions())
    c = initialize_state(ring_params, seed=99)
    assert not np.array_equal(a.positions(), c.positions())

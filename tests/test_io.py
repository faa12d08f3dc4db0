import math

import numpy as np
import pytest

from TissueSimulation import engine
from TissueSimulation.config import build_params
from TissueSimulation.io import (
    get_snapshot,
    group_snapshot_rows,
    load_simulation_params,
    load_snapshot,
    load_snapshot_csv,
    save_snapshot_csv,
)
from TissueSimulation.statistics import compute_statistics


def _advanced_ring(params, steps=2):
    state = engine.init(params)
    for _ in range(steps):
        engine.step(state, params.general.dt, params)
    return state


def test_load_simulation_params(tmp_path):
    path = tmp_path / "params.yaml"
    path.write_text(
        "general:\n  t_end: 12\n  aspect_ratio: 0\n"
        "cell_types:\n  emt:\n    events:\n      time_S_start: .inf\n",
        encoding="utf-8",
    )
    params = load_simulation_params(path)
    assert params.general.t_end == 12
    assert math.isinf(params.cell_types["emt"].events.time_S_start)


def test_load_simulation_params_rejects_non_mapping(tmp_path):
    path = tmp_path / "params.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_simulation_params(path)


def test_snapshot_fields(ring_params):
    state = _advanced_ring(ring_params)
    rows = get_snapshot(state)
    assert len(rows) == 15
    first = rows[0]
    assert first["id"] == 0
    assert first["phase"] in {"G1", "G2", "MITOSIS", "DIVISION"}
    assert first["t"] == pytest.approx(0.2)
    neighbours = [int(i) for i in first["apical_neighbors"].split(";")]
    assert sorted(neighbours) == [1, 14]
    assert first["apical_right"] == "1"
    assert rows[14]["apical_right"] == "0"


def test_snapshot_round_trip(ring_params):
    state = _advanced_ring(ring_params)
    state.cells[3].has_A = False
    restored = load_snapshot(get_snapshot(state), ring_params)

    assert len(restored.cells) == len(state.cells)
    assert np.allclose(restored.positions(), state.positions())
    assert np.allclose(restored.apical_points(), state.apical_points())
    assert [c.has_A for c in restored.cells] == [c.has_A for c in state.cells]
    assert restored.t == state.t
    assert restored.step_count == state.step_count
    assert restored.geometry == state.geometry
    assert sorted((l.l, l.r) for l in restored.ap_links) == sorted((l.l, l.r) for l in state.ap_links)
    assert restored.cells[3].stiffness_nuclei_apical == pytest.approx(
        0.1 * ring_params.cell_types[state.cells[3].type_index].stiffness_nuclei_apical
    )

    original = compute_statistics(state, ring_params)
    reloaded = compute_statistics(restored, ring_params)
    for key, value in original.items():
        assert reloaded[key] == pytest.approx(value)


def test_snapshot_reconstruction_is_lossy(ring_params):
    state = _advanced_ring(ring_params)
    restored = load_snapshot(get_snapshot(state), ring_params)
    lifespan = ring_params.cell_types["control"].mean_lifespan
    for cell in restored.cells:
        if cell.type_index == "control":
            assert cell.division_time == pytest.approx(cell.birth_time + lifespan)
    for link in restored.ap_links:
        assert link.rl == pytest.approx(np.linalg.norm(restored.cells[link.l].A - restored.cells[link.r].A))


def test_undirected_neighbour_lists_fallback(ring_params):
    state = _advanced_ring(ring_params, steps=0)
    rows = get_snapshot(state)
    for row in rows:
        del row["apical_right"]
        del row["basal_right"]
    restored = load_snapshot(rows, ring_params)
    assert len(restored.ap_links) == len(state.ap_links)
    assert all(link.l < link.r for link in restored.ap_links)


def test_empty_snapshot_gives_empty_state(ring_params):
    state = load_snapshot([], ring_params)
    assert state.cells == []
    assert state.basal_geometry.kind == "circle"


def test_csv_round_trip(tmp_path, ring_params):
    state = _advanced_ring(ring_params)
    state.cells[0].has_B = False
    rows = get_snapshot(state)
    path = tmp_path / "out" / "snap.csv"
    save_snapshot_csv(rows, path)
    loaded = load_snapshot_csv(path)
    assert len(loaded) == len(rows)
    assert loaded[0]["time_A"] in {"inf", str(rows[0]["time_A"])}

    restored = load_snapshot(loaded, ring_params)
    assert np.allclose(restored.positions(), state.positions())
    assert restored.cells[0].has_B is False
    assert restored.cells[1].has_B is True
    assert [c.phase for c in restored.cells] == [c.phase for c in state.cells]
    assert sorted((l.l, l.r) for l in restored.ba_links) == sorted((l.l, l.r) for l in state.ba_links)


def test_load_snapshot_csv_rejects_empty(tmp_path):
    path = tmp_path / "empty.csv"
    path.write_text("id,type_index,t\n", encoding="utf-8")
    with pytest.raises(ValueError, match="No snapshot rows"):
        load_snapshot_csv(path)


def test_save_snapshot_csv_rejects_no_rows(tmp_path):
    with pytest.raises(ValueError):
        save_snapshot_csv([], tmp_path / "x.csv")


def test_group_snapshot_rows():
    rows = [
        {"run_index": "0", "time_h": "0.0", "t": "0.0"},
        {"run_index": "0", "time_h": "0.0", "t": "0.0"},
        {"run_index": "1", "time_h": "0.0", "t": "0.0"},
        {"run_index": "1", "time_h": "1.0", "t": "1.0"},
    ]
    groups = group_snapshot_rows(rows)
    assert sorted(groups) == [(0, 0.0), (1, 0.0), (1, 1.0)]
    assert len(groups[(0, 0.0)]) == 2


def test_unknown_type_in_snapshot_falls_back(ring_params, caplog):
    state = _advanced_ring(ring_params, steps=0)
    rows = get_snapshot(state)
    rows[0]["type_index"] = "mystery"
    params = build_params({"general": {"perimeter": 60.0}})
    restored = load_snapshot(rows, params)
    assert restored.cells[0].type_index == "mystery"
    assert restored.cells[0].stiffness_straightness == params.cell_types["control"].stiffness_straightness


def test_links_to_missing_cells_are_skipped(ring_params, caplog):
    state = engine.init(ring_params)
    rows = get_snapshot(state)[:-1]
    restored = load_snapshot(rows, ring_params)
    # the ring loses both links of the dropped cell
    assert len(restored.ap_links) == len(state.ap_links) - 2
    assert len(restored.ba_links) == len(state.ba_links) - 2
    assert "not in the snapshot" in caplog.text

    for row in rows:
        del row["apical_right"]
        del row["basal_right"]
    restored = load_snapshot(rows, ring_params)
    assert len(restored.ap_links) == len(state.ap_links) - 2

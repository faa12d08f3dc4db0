import pytest

from TissueSimulation.config import build_params


@pytest.fixture
def line_params():
    """Ten cells on a straight membrane with a short time horizon."""
    return build_params(
        {
            "general": {"aspect_ratio": 0, "t_end": 0.3, "N_init": 10, "random_seed": 7},
        }
    )


@pytest.fixture
def ring_params():
    return build_params(
        {
            "general": {"perimeter": 60.0, "aspect_ratio": 1.0, "t_end": 0.3, "random_seed": 3},
            "cell_types": {"control": {"N_init": 12}, "emt": {"N_init": 3}},
        }
    )


@pytest.fixture
def make_cell():
    """Factory for hand-placed cells on a straight membrane."""
    from TissueSimulation.cell import Cell

    def factory(cell_id, x, y=2.5, type_index="control", **kwargs):
        values = {
            "R_soft": 1.2,
            "R_hard": 0.4,
            "eta_A": 2.5,
            "eta_B": 2.5,
            "stiffness_apical_apical": 2.0,
            "stiffness_straightness": 5.0,
            "stiffness_nuclei_apical": 3.0,
            "stiffness_nuclei_basal": 2.0,
            "division_time": 100.0,
        }
        values.update(kwargs)
        return Cell(
            id=cell_id,
            type_index=type_index,
            pos=(x, y),
            A=(x, 5.0),
            B=(x, 0.0),
            **values,
        )

    return factory


@pytest.fixture
def chain_state(make_cell):
    """Five cells on a line linked left to right."""
    from TissueSimulation.cell import ApicalLink, BasalLink
    from TissueSimulation.state import SimulationState

    cells = [make_cell(i, 2.0 * i) for i in range(5)]
    return SimulationState(
        cells=cells,
        ap_links=[ApicalLink(i, i + 1, rl=2.0) for i in range(4)],
        ba_links=[BasalLink(i, i + 1) for i in range(4)],
    )

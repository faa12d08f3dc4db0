"""Biomechanical simulation of an epithelial tissue undergoing EMT.

Cells are nuclei tied by cytoskeletal springs to apical and basal points
on a curved basal membrane. Scheduled events detach cells from the
apical and basal layers, after which they may migrate out of the tissue.

Main entry points:
- TissueSimulation.engine: init / step / is_complete
- TissueSimulation.io: parameter loading and snapshot (de)serialization
- TissueSimulation.statistics: per-group tissue metrics
- TissueSimulation.batch: sampled runs and parameter sweeps
- TissueSimulation.models: model registry used by the runners
"""

from TissueSimulation.batch import (
    BatchConfig,
    ParameterRange,
    SnapshotRecord,
    generate_parameter_grid,
    generate_time_samples,
    load_batch_config,
    records_to_rows,
    run_batch,
    run_simulation,
    statistics_rows,
)
from TissueSimulation.cell import ApicalLink, BasalLink, Cell, CellPhase
from TissueSimulation.config import (
    CellTypeParams,
    EventTimes,
    GeneralParams,
    SimulationParams,
    apply_overrides,
    build_params,
    default_params,
)
from TissueSimulation.engine import init, is_complete, step
from TissueSimulation.geometry import (
    BasalGeometry,
    GeometryState,
    create_basal_geometry,
    ellipse_from_perimeter,
    ramanujan_perimeter,
)
from TissueSimulation.io import (
    get_snapshot,
    load_simulation_params,
    load_snapshot,
    load_snapshot_csv,
    save_snapshot_csv,
)
from TissueSimulation.models import SimulationModel, build_model_registry, get_model
from TissueSimulation.random_stream import RandomStream
from TissueSimulation.state import SimulationState
from TissueSimulation.statistics import cell_metrics, compute_statistics, statistic_ids

__all__ = [
    # Core classes
    "ApicalLink",
    "BasalLink",
    "BasalGeometry",
    "BatchConfig",
    "Cell",
    "CellPhase",
    "CellTypeParams",
    "EventTimes",
    "GeneralParams",
    "GeometryState",
    "ParameterRange",
    "RandomStream",
    "SimulationModel",
    "SimulationParams",
    "SimulationState",
    "SnapshotRecord",
    # Engine
    "init",
    "step",
    "is_complete",
    # Functions
    "apply_overrides",
    "build_model_registry",
    "build_params",
    "cell_metrics",
    "compute_statistics",
    "create_basal_geometry",
    "default_params",
    "ellipse_from_perimeter",
    "generate_parameter_grid",
    "generate_time_samples",
    "get_model",
    "get_snapshot",
    "load_batch_config",
    "load_simulation_params",
    "load_snapshot",
    "load_snapshot_csv",
    "ramanujan_perimeter",
    "records_to_rows",
    "run_batch",
    "run_simulation",
    "save_snapshot_csv",
    "statistic_ids",
    "statistics_rows",
]

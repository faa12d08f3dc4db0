"""Sampled runs and parameter sweeps.

A run is stepped until every requested sample time has been reached and
records the full snapshot at each sample. A batch runs every parameter
configuration of a sweep for ``seeds_per_config`` seeds; run ``i`` uses
seed ``base_seed + i`` regardless of its configuration. Runs are
independent and may be spread over a process pool.
"""

from __future__ import annotations

import itertools
import logging
import math
import multiprocessing
import pathlib
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from TissueSimulation.config import SimulationParams, apply_overrides, build_params
from TissueSimulation.io import load_yaml_mapping
from TissueSimulation.models import DEFAULT_MODEL, SimulationModel, build_model_registry, get_model
from TissueSimulation.statistics import METRICS, statistic_groups

logger = logging.getLogger(__name__)

SAMPLE_TOLERANCE = 1e-9
SAMPLING_MODES = ("grid", "random")


# -----------------------------------------------------------------------------
# Sweep description
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterRange:
    """Values swept for one dotted parameter path.

    Either an explicit ``values`` list or ``steps`` evenly spaced values on
    ``[min, max]``.
    """
    path: str
    values: tuple = ()
    min: Optional[float] = None
    max: Optional[float] = None
    steps: int = 1

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("Parameter range needs a path")
        object.__setattr__(self, "values", tuple(self.values))
        if not self.values:
            if self.min is None or self.max is None:
                raise ValueError(f"Parameter range {self.path} needs values or min/max")
            if int(self.steps) < 1:
                raise ValueError(f"Parameter range {self.path} needs steps >= 1")
            object.__setattr__(self, "steps", int(self.steps))

    def grid_values(self) -> list:
        if self.values:
            return list(self.values)
        if self.steps == 1:
            return [float(self.min)]
        return [float(v) for v in np.linspace(self.min, self.max, self.steps)]

    def bounds(self) -> tuple[float, float]:
        if self.values:
            return float(min(self.values)), float(max(self.values))
        return float(self.min), float(self.max)


@dataclass(frozen=True)
class TimeSampling:
    start: float = 0.0
    end: float = 48.0
    step: float = 1.0


@dataclass(frozen=True)
class BatchConfig:
    """Everything needed to run a sweep."""
    params: SimulationParams
    parameter_ranges: tuple[ParameterRange, ...] = ()
    time_samples: TimeSampling = field(default_factory=TimeSampling)
    seeds_per_config: int = 1
    sampling_mode: str = "grid"
    random_sample_count: int = 10
    processes: Optional[int] = None
    model: str = DEFAULT_MODEL

    def __post_init__(self) -> None:
        if int(self.seeds_per_config) < 1:
            raise ValueError("seeds_per_config must be >= 1")
        if self.sampling_mode not in SAMPLING_MODES:
            raise ValueError(f"sampling_mode must be one of {SAMPLING_MODES}")
        if int(self.random_sample_count) < 1:
            raise ValueError("random_sample_count must be >= 1")


def generate_time_samples(start: float, end: float, step: float) -> list[float]:
    """Sample times from ``start`` to ``end`` inclusive."""
    if step <= 0:
        raise ValueError("Time sample step must be positive")
    if end < start:
        return []
    count = int(math.floor((end - start) / step + SAMPLE_TOLERANCE)) + 1
    return [start + i * step for i in range(count)]


def generate_parameter_grid(ranges: Sequence[ParameterRange]) -> list[dict[str, Any]]:
    """Cartesian product of all range values; one empty config for no ranges."""
    if not ranges:
        return [{}]
    paths = [r.path for r in ranges]
    return [dict(zip(paths, combo)) for combo in itertools.product(*(r.grid_values() for r in ranges))]


def generate_random_configs(
    ranges: Sequence[ParameterRange],
    count: int,
    seed: int = 0,
) -> list[dict[str, Any]]:
    """``count`` configurations drawn uniformly within each range's bounds."""
    if not ranges:
        return [{}]
    rng = np.random.default_rng(seed)
    configs = []
    for _ in range(count):
        configs.append({r.path: float(rng.uniform(*r.bounds())) for r in ranges})
    return configs


def parse_parameter_ranges(raw: Any) -> tuple[ParameterRange, ...]:
    if raw is None:
        return ()
    if isinstance(raw, Mapping):
        raw = [{"path": path, **(spec if isinstance(spec, Mapping) else {"values": spec})} for path, spec in raw.items()]
    if not isinstance(raw, list):
        raise ValueError("parameter_ranges must be a list or a mapping")
    ranges = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise ValueError("Each parameter range must be a mapping")
        ranges.append(ParameterRange(**entry))
    return tuple(ranges)


def load_batch_config(path: str | pathlib.Path) -> BatchConfig:
    """Load a sweep description from YAML.

    Parameters come from an inline ``params`` mapping and/or a
    ``params_path`` file (resolved relative to the batch file); the inline
    mapping is merged last.
    """
    path = pathlib.Path(path)
    raw = load_yaml_mapping(path)
    known = {
        "params",
        "params_path",
        "parameter_ranges",
        "time_samples",
        "seeds_per_config",
        "sampling_mode",
        "random_sample_count",
        "processes",
        "model",
    }
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown batch config field(s): {', '.join(unknown)}")

    params_raw: dict[str, Any] = {}
    if raw.get("params_path") is not None:
        params_path = pathlib.Path(str(raw["params_path"]))
        if not params_path.is_absolute():
            params_path = path.resolve().parent / params_path
        params_raw = load_yaml_mapping(params_path)
    inline = raw.get("params") or {}
    if not isinstance(inline, Mapping):
        raise ValueError("params must be a mapping")
    for section in ("general", "cell_types"):
        if section in inline:
            merged = dict(params_raw.get(section) or {})
            merged.update(inline[section] or {})
            params_raw[section] = merged
    params = build_params(params_raw)

    samples_raw = raw.get("time_samples") or {}
    if not isinstance(samples_raw, Mapping):
        raise ValueError("time_samples must be a mapping with start, end and step")
    time_samples = TimeSampling(
        start=float(samples_raw.get("start", 0.0)),
        end=float(samples_raw.get("end", params.general.t_end)),
        step=float(samples_raw.get("step", 1.0)),
    )
    processes = raw.get("processes")
    return BatchConfig(
        params=params,
        parameter_ranges=parse_parameter_ranges(raw.get("parameter_ranges")),
        time_samples=time_samples,
        seeds_per_config=int(raw.get("seeds_per_config", 1)),
        sampling_mode=str(raw.get("sampling_mode", "grid")),
        random_sample_count=int(raw.get("random_sample_count", 10)),
        processes=None if processes is None else int(processes),
        model=str(raw.get("model", DEFAULT_MODEL)),
    )


# -----------------------------------------------------------------------------
# Running
# -----------------------------------------------------------------------------

@dataclass
class SnapshotRecord:
    """Snapshot rows of one run at one sample time."""
    run_index: int
    seed: int
    time_h: float
    overrides: dict[str, Any]
    rows: list[dict[str, Any]]


def run_simulation(
    params: SimulationParams,
    seed: Optional[int],
    time_samples: Sequence[float],
    model: Optional[SimulationModel] = None,
    *,
    run_index: int = 0,
    overrides: Optional[Mapping[str, Any]] = None,
) -> list[SnapshotRecord]:
    """Run one simulation and record a snapshot at each sample time.

    A sample is taken on the first step whose time reaches it. The last step
    is shortened so the run ends exactly at ``t_end``.
    """
    model = model or get_model(build_model_registry())
    seed = params.general.random_seed if seed is None else seed
    overrides = dict(overrides or {})
    samples = sorted(time_samples)
    state = model.init(params, seed)
    records: list[SnapshotRecord] = []

    def record(time_h: float) -> None:
        records.append(SnapshotRecord(run_index, seed, time_h, overrides, model.get_snapshot(state)))

    next_index = 0
    if samples and samples[0] <= 0:
        record(0.0)
        next_index = 1

    t_end = params.general.t_end
    last_hour = -1
    while not model.is_complete(state, params) and next_index < len(samples):
        dt = min(params.general.dt, t_end - state.t)
        state = model.step(state, dt, params)
        if int(state.t) > last_hour:
            last_hour = int(state.t)
            logger.debug("Run %d: t=%.1fh / %.1fh, %d cells", run_index, state.t, t_end, len(state.cells))
        while next_index < len(samples) and state.t >= samples[next_index] - SAMPLE_TOLERANCE:
            record(samples[next_index])
            next_index += 1

    if next_index < len(samples):
        logger.warning(
            "Run %d ended at t=%.3f before %d sample time(s) up to %.3f",
            run_index,
            state.t,
            len(samples) - next_index,
            samples[-1],
        )
    return records


@dataclass(frozen=True)
class BatchJob:
    run_index: int
    seed: int
    overrides: dict[str, Any]
    params: SimulationParams
    time_samples: tuple[float, ...]
    model: str = DEFAULT_MODEL


def _run_job(job: BatchJob) -> list[SnapshotRecord]:
    logger.info("Starting run %d (seed=%d) %s", job.run_index, job.seed, job.overrides or "")
    model = get_model(build_model_registry(), job.model)
    return run_simulation(
        job.params,
        job.seed,
        job.time_samples,
        model,
        run_index=job.run_index,
        overrides=job.overrides,
    )


def build_jobs(config: BatchConfig) -> list[BatchJob]:
    base = config.params
    if config.sampling_mode == "random":
        configs = generate_random_configs(
            config.parameter_ranges,
            config.random_sample_count,
            seed=base.general.random_seed,
        )
    else:
        configs = generate_parameter_grid(config.parameter_ranges)
    samples = tuple(
        generate_time_samples(config.time_samples.start, config.time_samples.end, config.time_samples.step)
    )

    jobs = []
    run_index = 0
    for overrides in configs:
        for _ in range(config.seeds_per_config):
            seed = base.general.random_seed + run_index
            params = apply_overrides(base, {**overrides, "general.random_seed": seed})
            jobs.append(BatchJob(run_index, seed, dict(overrides), params, samples, config.model))
            run_index += 1
    return jobs


def run_batch(config: BatchConfig) -> list[SnapshotRecord]:
    """Run every job of the sweep, in parallel when ``processes`` > 1."""
    jobs = build_jobs(config)
    logger.info(
        "Batch: %d configuration(s) x %d seed(s) = %d run(s)",
        len(jobs) // config.seeds_per_config,
        config.seeds_per_config,
        len(jobs),
    )
    if config.processes and config.processes > 1 and len(jobs) > 1:
        with multiprocessing.Pool(min(config.processes, len(jobs))) as pool:
            results = pool.map(_run_job, jobs)
    else:
        results = [_run_job(job) for job in jobs]
    records = [record for result in results for record in result]
    logger.info("Batch complete: %d snapshot(s) from %d run(s)", len(records), len(jobs))
    return records


# -----------------------------------------------------------------------------
# Flattening
# -----------------------------------------------------------------------------

def records_to_rows(records: Sequence[SnapshotRecord]) -> list[dict[str, Any]]:
    """One row per cell per snapshot, prefixed with the run columns."""
    rows = []
    for record in records:
        prefix = {
            **{path: record.overrides[path] for path in sorted(record.overrides)},
            "run_index": record.run_index,
            "seed": record.seed,
            "time_h": record.time_h,
        }
        for row in record.rows:
            rows.append({**prefix, **row})
    return rows


def statistics_rows(
    records: Sequence[SnapshotRecord],
    params: SimulationParams,
    model: Optional[SimulationModel] = None,
) -> list[dict[str, Any]]:
    """One row per (snapshot, cell group) with every metric as a column."""
    model = model or get_model(build_model_registry())
    rows = []
    for record in records:
        run_params = apply_overrides(params, record.overrides)
        state = model.load_snapshot(record.rows, run_params)
        stats = model.compute_stats(state, run_params)
        for group in statistic_groups(state, run_params):
            row: dict[str, Any] = {path: record.overrides[path] for path in sorted(record.overrides)}
            row.update(
                {
                    "run_index": record.run_index,
                    "seed": record.seed,
                    "time_h": record.time_h,
                    "cell_group": group,
                }
            )
            for metric in METRICS:
                row[metric] = stats.get(f"{metric}_{group}", 0.0)
            rows.append(row)
    return rows

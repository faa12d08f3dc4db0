from __future__ import annotations

import argparse
import dataclasses
import logging
import pathlib
from typing import Any, Sequence

import yaml

from TissueSimulation.batch import (
    SnapshotRecord,
    generate_time_samples,
    load_batch_config,
    records_to_rows,
    run_batch,
    run_simulation,
    statistics_rows,
)
from TissueSimulation.config import apply_overrides, default_params
from TissueSimulation.io import (
    group_snapshot_rows,
    load_simulation_params,
    load_snapshot_csv,
    save_rows_csv,
    save_snapshot_csv,
)
from TissueSimulation.models import DEFAULT_MODEL, build_model_registry, get_model
from TissueSimulation.statistics import METRICS, statistic_ids

DEFAULT_SAMPLE_STEP = 12.0


def parse_override(text: str) -> tuple[str, Any]:
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"Override must look like path=value; got {text!r}")
    path, value = text.split("=", 1)
    parsed = yaml.safe_load(value)
    if isinstance(parsed, str):
        try:
            parsed = float(parsed)
        except ValueError:
            pass
    return path.strip(), parsed


def parse_times(text: str) -> tuple[float, float, float]:
    parts = text.split(",")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Times must look like start,end,step; got {text!r}")
    try:
        start, end, step = (float(p) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Times must be numbers; got {text!r}") from None
    return start, end, step


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run epithelial tissue (EHT/EMT) simulations.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a single simulation")
    run.add_argument("-c", "--config", help="Parameter YAML file (default: built-in parameters)")
    run.add_argument("-o", "--output", default="output/snapshots.csv", help="Snapshot CSV path")
    run.add_argument("--seed", type=int, help="Override the random seed")
    run.add_argument(
        "--set",
        dest="overrides",
        type=parse_override,
        action="append",
        default=[],
        metavar="PATH=VALUE",
        help="Override a parameter by dotted path (repeatable)",
    )
    run.add_argument("--times", type=parse_times, help="Sample times as start,end,step in hours")
    run.add_argument("--stats", action="store_true", help="Also write <output>_statistics.csv")
    run.add_argument("--model", default=DEFAULT_MODEL)

    batch = sub.add_parser("batch", help="Run a parameter sweep")
    batch.add_argument("-c", "--config", required=True, help="Batch YAML file")
    batch.add_argument("-o", "--output", default="output/batch.csv", help="Snapshot CSV path")
    batch.add_argument("-j", "--processes", type=int, help="Worker processes (overrides the config)")
    batch.add_argument("--no-stats", action="store_true", help="Skip the statistics CSV")

    stats = sub.add_parser("stats", help="List statistics or compute them for a snapshot CSV")
    stats.add_argument("-i", "--input", help="Snapshot CSV written by run or batch")
    stats.add_argument("-c", "--config", help="Parameter YAML file used for the snapshots")
    stats.add_argument("-o", "--output", help="Statistics CSV path (default: <input>_statistics.csv)")
    return parser.parse_args(argv)


def statistics_path(output: str | pathlib.Path) -> pathlib.Path:
    path = pathlib.Path(output)
    return path.with_name(path.stem + "_statistics" + (path.suffix or ".csv"))


def _load_params(config: str | None):
    if config:
        return load_simulation_params(config)
    return default_params()


def run_command(args: argparse.Namespace) -> None:
    params = _load_params(args.config)
    overrides = dict(args.overrides)
    if args.seed is not None:
        overrides["general.random_seed"] = args.seed
    params = apply_overrides(params, overrides)

    start, end, step = args.times or (0.0, params.general.t_end, DEFAULT_SAMPLE_STEP)
    samples = generate_time_samples(start, end, step)
    model = get_model(build_model_registry(), args.model)
    records = run_simulation(params, params.general.random_seed, samples, model)

    rows = records_to_rows(records)
    save_snapshot_csv(rows, args.output)
    print(f"Wrote {len(records)} snapshots ({len(rows)} rows) to {args.output}")

    if args.stats:
        stats_path = statistics_path(args.output)
        save_rows_csv(statistics_rows(records, params, model), stats_path)
        print(f"Wrote statistics to {stats_path}")


def batch_command(args: argparse.Namespace) -> None:
    config = load_batch_config(args.config)
    if args.processes is not None:
        config = dataclasses.replace(config, processes=args.processes)
    records = run_batch(config)

    rows = records_to_rows(records)
    save_snapshot_csv(rows, args.output)
    print(f"Wrote {len(records)} snapshots ({len(rows)} rows) to {args.output}")

    if not args.no_stats:
        stats_path = statistics_path(args.output)
        model = get_model(build_model_registry(), config.model)
        save_rows_csv(statistics_rows(records, config.params, model), stats_path)
        print(f"Wrote statistics to {stats_path}")


def stats_command(args: argparse.Namespace) -> None:
    params = _load_params(args.config)
    if not args.input:
        for stat_id in statistic_ids(params):
            print(stat_id)
        print(f"Total: {len(METRICS)} metrics x {len(params.type_names) + 1} groups")
        return

    rows = load_snapshot_csv(args.input)
    override_columns = [key for key in rows[0] if "." in key]
    records = []
    for (run_index, time_h), group in group_snapshot_rows(rows).items():
        overrides = {key: parse_override(f"{key}={group[0][key]}")[1] for key in override_columns}
        seed = group[0].get("seed")
        records.append(
            SnapshotRecord(
                run_index=0 if run_index is None else run_index,
                seed=int(float(seed)) if seed not in (None, "") else params.general.random_seed,
                time_h=time_h,
                overrides=overrides,
                rows=group,
            )
        )
    output = args.output or statistics_path(args.input)
    save_rows_csv(statistics_rows(records, params), output)
    print(f"Wrote statistics for {len(records)} snapshots to {output}")


COMMANDS = {
    "run": run_command,
    "batch": batch_command,
    "stats": stats_command,
}


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    COMMANDS[args.command](args)


if __name__ == "__main__":
    main()

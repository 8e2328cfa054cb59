from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .calendar_utils import TIME_RANGE_MONTHS
from .errors import EngineError, UpstreamUnavailableError
from .financial import GOALS, PROFIT
from .io_utils import CONFIG_FILE, ensure_directory, load_config, load_snapshot, write_csv, write_json
from .matching import PROJECT_TO_RESOURCES
from .models import EngineConfig, Snapshot
from .service import AllocationIntelligence, load_snapshot_with_fallback

Table = Tuple[str, pd.DataFrame]


def _parse_date(value: str) -> date:
    try:
        return dateparser.isoparse(value).date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: {value}") from exc


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--project-dir",
        help="Project directory containing input/ and output/ subfolders",
    )
    common.add_argument("--config", help="Path to configuration JSON file (overrides project-dir default)")
    common.add_argument("--start", type=_parse_date, help="Start of the analysis window (YYYY-MM-DD)")
    common.add_argument("--end", type=_parse_date, help="End of the analysis window (YYYY-MM-DD)")
    common.add_argument(
        "--time-range",
        choices=sorted(TIME_RANGE_MONTHS),
        help="Named horizon used for missing --start/--end (default: 3months)",
    )
    common.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated files (default: <project-dir>/output)",
    )
    common.add_argument(
        "--fallback-dir",
        help="Directory with sample input files used when the primary input cannot be read",
    )
    common.add_argument(
        "--dry-run",
        action="store_true",
        help="Analyze and print a summary without writing output files",
    )

    parser = argparse.ArgumentParser(
        description="Allocation intelligence batch tool (JSON/CSV in, JSON/CSV out, no UI)."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    match = sub.add_parser("match", parents=[common], help="Rank resource/project matches")
    match.add_argument("--project", help="Project id to staff")
    match.add_argument("--resource", help="Resource id to place")
    match.add_argument("--limit", type=int, help="Maximum number of matches to return")

    forecast = sub.add_parser("forecast", parents=[common], help="Forecast utilization")
    forecast.add_argument("--resource", help="Forecast a single resource instead of the organization")
    forecast.add_argument(
        "--strict",
        action="store_true",
        help="Fail if any resource cannot be forecast",
    )

    bottlenecks = sub.add_parser(
        "bottlenecks", parents=[common], help="Find weeks with several over-allocated resources"
    )
    bottlenecks.add_argument("--strict", action="store_true", help="Fail if any resource cannot be evaluated")

    bench = sub.add_parser("bench", parents=[common], help="Predict bench time")
    bench.add_argument("--resource", help="Predict a single resource instead of the organization")
    bench.add_argument("--strict", action="store_true", help="Fail if any resource cannot be evaluated")

    sub.add_parser("rebalance", parents=[common], help="Suggest utilization rebalancing")

    optimize = sub.add_parser("optimize", parents=[common], help="Optimize allocations for a financial goal")
    optimize.add_argument("--goal", choices=GOALS, default=PROFIT, help="Optimization goal (default: profit)")

    sub.add_parser("scenarios", parents=[common], help="Compare every optimization goal")
    return parser.parse_args(argv)


def _resolve_paths(args: argparse.Namespace) -> Tuple[Path, Optional[Path], Optional[Path], Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir is None:
        raise ValueError("missing required input path: --project-dir")
    if not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input"

    config_path: Optional[Path] = Path(args.config) if args.config else input_dir / CONFIG_FILE
    if args.config and not config_path.exists():
        raise ValueError(f"config file not found at {config_path}")
    if not config_path.exists():
        config_path = None

    fallback_dir = Path(args.fallback_dir) if args.fallback_dir else None
    if fallback_dir and not fallback_dir.exists():
        raise ValueError(f"fallback directory not found: {fallback_dir}")

    if args.outdir:
        outdir = Path(args.outdir)
    else:
        outdir = project_dir / "output"
    return input_dir, config_path, fallback_dir, outdir


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _load(input_dir: Path, fallback_dir: Optional[Path]) -> Snapshot:
    fallback = (lambda: load_snapshot(fallback_dir)) if fallback_dir else None
    return load_snapshot_with_fallback(lambda: load_snapshot(input_dir), fallback)


def _frame(
    records: List[Dict[str, object]],
    columns: Sequence[str],
    record_path: Optional[str] = None,
    meta: Optional[List[str]] = None,
) -> pd.DataFrame:
    if not records:
        return pd.DataFrame(columns=list(columns))
    df = pd.json_normalize(records, record_path=record_path, meta=meta)
    return df.reindex(columns=list(columns))


def _run(
    command: str, args: argparse.Namespace, intel: AllocationIntelligence
) -> Tuple[str, Dict[str, object], List[Table]]:
    window = {"start": args.start, "end": args.end}
    ranged = dict(window, time_range=args.time_range)

    if command == "match":
        payload = intel.find_best_matches(args.project, args.resource, limit=args.limit, **window)
        tables: List[Table] = []
        if "matches" in payload:
            columns = [
                "resource_id",
                "resource_name",
                "project_id",
                "project_name",
                "skills_match_score",
                "availability_score",
                "experience_score",
                "team_compatibility_score",
                "score",
            ]
            tables.append(("matches.csv", _frame(payload["matches"], columns)))
        return "matches.json", payload, tables

    if command == "forecast":
        if args.resource:
            payload = intel.forecast_resource(args.resource, **ranged)
            columns = ["resource_id", "start_date", "end_date", "utilization", "status"]
            weekly = _frame(payload.get("weekly_breakdown", []), columns)
            return "resource_forecast.json", payload, [("weekly_utilization.csv", weekly)]
        payload = intel.forecast_organization(strict=args.strict, **ranged)
        columns = ["start_date", "end_date", "resource_id", "resource_name", "utilization", "status"]
        weekly = _frame(
            payload.get("weekly_breakdown", []), columns, record_path="resources", meta=["start_date", "end_date"]
        )
        return "organization_forecast.json", payload, [("weekly_utilization.csv", weekly)]

    if command == "bottlenecks":
        payload = intel.predict_bottlenecks(strict=args.strict, **ranged)
        columns = ["start_date", "end_date", "severity", "resource_id", "resource_name", "role", "utilization"]
        table = _frame(
            payload["bottlenecks"],
            columns,
            record_path="over_allocated_resources",
            meta=["start_date", "end_date", "severity"],
        )
        return "bottlenecks.json", payload, [("bottlenecks.csv", table)]

    if command == "bench":
        payload = intel.predict_bench_time(args.resource, strict=args.strict, **ranged)
        columns = ["resource_id", "resource_name", "start_date", "end_date", "days"]
        records = [payload] if args.resource else payload["resources"]
        table = _frame(records, columns, record_path="bench_periods", meta=["resource_id", "resource_name"])
        return "bench_prediction.json", payload, [("bench_periods.csv", table)]

    if command == "rebalance":
        payload = intel.suggest_rebalancing(**ranged)
        columns = [
            "type",
            "allocation_id",
            "project_id",
            "project_name",
            "utilization_amount",
            "from_resource.resource_id",
            "to_resource.resource_id",
            "resource.resource_id",
            "suggested_reduction",
            "impact.from_resource_new_utilization",
            "impact.to_resource_new_utilization",
            "impact.new_utilization",
        ]
        return "rebalancing.json", payload, [("rebalancing_suggestions.csv", _frame(payload["suggestions"], columns))]

    if command == "optimize":
        payload = intel.optimize_financials(args.goal, **ranged)
        change_columns = [
            "allocation_id",
            "resource_id",
            "project_id",
            "change_type",
            "previous_percentage",
            "new_percentage",
            "change",
        ]
        allocation_columns = ["id", "resource_id", "project_id", "start_date", "end_date", "percentage", "notes"]
        return (
            "financial_optimization.json",
            payload,
            [
                ("allocation_changes.csv", _frame(payload["changes"], change_columns)),
                ("optimized_allocations.csv", _frame(payload["optimized_allocations"], allocation_columns)),
            ],
        )

    payload = intel.optimization_scenarios(**ranged)
    columns = [
        "goal",
        "financial_impact.revenue_change",
        "financial_impact.cost_change",
        "financial_impact.profit_change",
        "financial_impact.utilization_change",
    ]
    return "optimization_scenarios.json", payload, [("scenarios.csv", _frame(payload["scenarios"], columns))]


def _print_summary(command: str, payload: Dict[str, object]) -> None:
    if payload.get("notice"):
        print(f"Note: {payload['notice']}")
    if command == "match":
        matches = payload.get("matches")
        if matches is None:
            print(
                f"{payload['resource_name']} on {payload['project_name']}: score {payload['score']:.2f}"
            )
        elif not matches:
            print("No matches found.")
        else:
            print(f"Matches for {payload['subject_name']}:")
            for item in matches:
                label = item["resource_name"] if payload["mode"] == PROJECT_TO_RESOURCES else item["project_name"]
                print(f"- {label}: {item['score']:.2f}")
    elif command == "forecast":
        if "summary" in payload:
            summary = payload["summary"]
            print(f"Resources: {summary['total_resources']}")
            for key in ("over_allocated", "under_allocated", "optimally_allocated"):
                bucket = summary[key]
                print(f"- {key.replace('_', ' ')}: {bucket['count']} ({bucket['percentage']:.1f}%)")
            print(f"Potential bottlenecks: {len(payload['potential_bottlenecks'])}")
        else:
            print(
                f"{payload['resource_name']}: {payload['average_utilization']:.1f}% "
                f"({payload['utilization_status']}), {len(payload['peak_periods'])} peak periods"
            )
    elif command == "bottlenecks":
        if not payload["bottlenecks"]:
            print("No bottlenecks found.")
        for item in payload["bottlenecks"]:
            print(f"- {item['start_date']} → {item['end_date']}: {item['severity']} resources over 100%")
    elif command == "bench":
        for item in payload.get("resources", [payload]):
            print(f"- {item['resource_name'] or item['resource_id']}: {item['total_bench_days']} bench days")
    elif command == "rebalance":
        print(payload["message"])
        for item in payload["suggestions"]:
            if item["type"] == "transfer":
                print(
                    f"- transfer {item['allocation_id']} from {item['from_resource']['name']} "
                    f"to {item['to_resource']['name']}"
                )
            else:
                print(f"- reduce {item['allocation_id']} by {item['suggested_reduction']:.1f} points")
    elif command == "optimize":
        impact = payload["financial_impact"]
        print(f"Goal: {payload['optimization_goal']}, {len(payload['changes'])} changes")
        print(f"Profit change: {impact['profit_change']:.2f}")
        for item in payload["recommendations"]:
            print(f"- [{item['priority']}] {item['description']}")
    else:
        for scenario in payload["scenarios"]:
            impact = scenario["financial_impact"]
            print(f"- {scenario['goal']}: profit change {impact['profit_change']:.2f}")
    for failure in payload.get("failures", []):
        print(f"Skipped {failure['resource_id']}: {failure['reason']}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        input_dir, config_path, fallback_dir, outdir = _resolve_paths(args)
        cfg = load_config(config_path) if config_path else EngineConfig()
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    _configure_logging(cfg.logging_level)

    try:
        snapshot = _load(input_dir, fallback_dir)
    except UpstreamUnavailableError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    intel = AllocationIntelligence(snapshot, cfg)
    try:
        output_name, payload, tables = _run(args.command, args, intel)
    except (EngineError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        _print_summary(args.command, payload)
        return

    outdir_path = ensure_directory(outdir)
    json_path = outdir_path / output_name
    write_json(payload, json_path)
    print(f"Wrote {json_path}")
    for name, df in tables:
        table_path = outdir_path / name
        write_csv(df, table_path)
        print(f"Wrote {table_path}")


if __name__ == "__main__":
    main()

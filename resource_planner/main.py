from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .capacity import with_defaults
from .cost import COST_COLUMNS, cost_frame, node_cost_summary
from .errors import CycleDetectedError, PlannerError, ValidationError
from .io_utils import ensure_directory, load_config, load_graph, save_graph, write_csv
from .models import MemberAllocationReport, PlanningConfig
from .rollup import recalculate_rollup
from .store import InMemoryGraphStore
from .weekly import availability_frame, member_conflicts


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Allocation and rollup batch tool (JSON graph in, CSV reports out)."
    )
    parser.add_argument(
        "--project-dir",
        help="Project directory containing input/ and output/ subfolders",
    )
    parser.add_argument("--graph", help="Path to graph JSON input (overrides project-dir default)")
    parser.add_argument("--config", help="Path to configuration JSON file (overrides project-dir default)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated CSV files (default: <project-dir>/output or ./out)",
    )
    parser.add_argument(
        "--recalculate",
        metavar="TYPE:ID",
        help="Recompute rollups from this node up to the root and save the graph",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and print summary without writing any files",
    )
    return parser.parse_args(argv)


def _resolve_io_paths(args: argparse.Namespace) -> Tuple[Path, Optional[Path], Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir and not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input" if project_dir else None

    if args.graph:
        graph_path = Path(args.graph)
    elif input_dir:
        graph_path = input_dir / "graph.json"
    else:
        raise ValueError("missing required input path: --graph (or provide --project-dir)")
    if not graph_path.exists():
        raise ValueError(f"graph file not found at {graph_path}")

    config_path: Optional[Path] = None
    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            raise ValueError(f"config file not found at {config_path}")
    elif input_dir and (input_dir / "config.json").exists():
        config_path = input_dir / "config.json"

    if args.outdir:
        outdir = Path(args.outdir)
    elif project_dir:
        outdir = project_dir / "output"
    else:
        outdir = Path("out")

    return graph_path, config_path, outdir


def _parse_target(value: str) -> Tuple[str, str]:
    node_type, sep, node_id = value.partition(":")
    if not sep or not node_type or not node_id:
        raise ValueError(f"--recalculate expects TYPE:ID, got {value!r}")
    return node_type, node_id


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def build_reports(
    store: InMemoryGraphStore, cfg: PlanningConfig
) -> Tuple[List[MemberAllocationReport], pd.DataFrame, pd.DataFrame]:
    """Per-member weekly availability and per-node cost lines for the whole graph."""
    nodes = store.list_nodes()
    roster = {member.id: with_defaults(member, cfg) for member in store.list_members()}
    reports = [member_conflicts(member, nodes) for member in roster.values()]
    cost_frames = []
    for node in nodes:
        frame = cost_frame(node_cost_summary(node, roster, cfg.default_duration_days))
        if frame.empty:
            continue
        frame.insert(0, "node_id", node.id)
        cost_frames.append(frame)
    if cost_frames:
        costs = pd.concat(cost_frames, ignore_index=True)
    else:
        costs = pd.DataFrame(columns=["node_id", *COST_COLUMNS])
    return reports, availability_frame(reports), costs


def _print_dry_run_summary(reports: List[MemberAllocationReport], costs: pd.DataFrame) -> None:
    if not reports:
        print("No team members.")
    else:
        print("Team members:")
        for report in reports:
            over_weeks = [week.week_id for week in report.weeks if week.over_allocated]
            status = f"over-allocated in {', '.join(over_weeks)}" if over_weeks else "within capacity"
            print(f"- {report.member_id} {report.name}: {report.effective_capacity:.2f} h/week, {status}")
            for failure in report.failures:
                print(f"  ! {failure.node_id}: {failure.reason}")
    total = float(costs["cost"].sum()) if not costs.empty else 0.0
    print(f"\nTotal allocated cost: {total:.2f}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        graph_path, config_path, outdir = _resolve_io_paths(args)
        target = _parse_target(args.recalculate) if args.recalculate else None
        cfg = load_config(config_path) if config_path else PlanningConfig()
        store = load_graph(graph_path)
    except (ValueError, PlannerError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    _configure_logging(cfg.logging_level)

    if target is not None:
        deadline = (
            time.monotonic() + cfg.recalculation_timeout_seconds
            if cfg.recalculation_timeout_seconds
            else None
        )
        roster = {member.id: with_defaults(member, cfg) for member in store.list_members()}
        try:
            result = recalculate_rollup(store, *target, members=roster, deadline=deadline)
        except CycleDetectedError as exc:
            print(str(exc), file=sys.stderr)
            sys.exit(1)
        except ValidationError as exc:
            print(str(exc), file=sys.stderr)
            sys.exit(2)
        print(f"Recalculation {result.status.value}: updated {', '.join(result.updated_ids) or 'nothing'}")
        if not result.ok:
            print(f"Stopped at {result.failed_at_id}: {result.error or 'cancelled'}", file=sys.stderr)
            if not args.dry_run:
                save_graph(store, graph_path)
            sys.exit(1)
        if not args.dry_run:
            save_graph(store, graph_path)
            print(f"Wrote {graph_path}")

    try:
        reports, availability_df, cost_df = build_reports(store, cfg)
    except ValidationError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    if args.dry_run:
        _print_dry_run_summary(reports, cost_df)
        return

    outdir_path = ensure_directory(outdir)
    availability_path = Path(outdir_path) / "weekly_availability.csv"
    cost_path = Path(outdir_path) / "cost_summary.csv"
    write_csv(availability_df, availability_path)
    write_csv(cost_df, cost_path)
    print(f"Wrote {availability_path}")
    print(f"Wrote {cost_path}")
    over = [report for report in reports if report.is_over_allocated]
    if over:
        print("Over-allocated members:")
        for report in over:
            print(f"- {report.member_id} {report.name}")


if __name__ == "__main__":
    main()

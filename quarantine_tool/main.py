"""Quarantine management tool for scenario flake tracking.

Provides list, add, remove, status, flaky, clear, and migrate subcommands
operating on the flake detector data (``<output>/.flake-data.json``) and
the legacy quarantine list (``<output>/.quarantine``).
"""

from __future__ import annotations

import argparse
import datetime
import json
import sys
from pathlib import Path
from typing import Any

from scenario_orchestrator.batch.quarantine_store import QuarantineStore
from scenario_orchestrator.batch.runner import FLAKE_DATA_FILE, LEGACY_QUARANTINE_FILE
from scenario_orchestrator.flake.config import OrchestratorConfig
from scenario_orchestrator.flake.detector import Detector, FlakeMetrics, FlakeStorageError
from scenario_orchestrator.flake.history import OUTCOME_ERROR, OUTCOME_FAIL, OUTCOME_SKIP

MIGRATED_NOTE = "Migrated from legacy quarantine list"
RULE = "─" * 60


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Manage quarantined and flaky scenarios"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Results directory holding flake data (default: from config, test-results)",
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=Path(".scenario_config"),
        help="Path to the .scenario_config JSON file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print machine-readable JSON",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("list", help="List quarantined scenarios")

    add_parser = subparsers.add_parser("add", help="Manually quarantine a scenario")
    add_parser.add_argument("scenario", help="Scenario name")
    add_parser.add_argument(
        "--reason",
        required=True,
        help="Why the scenario is quarantined",
    )
    add_parser.add_argument(
        "--notes",
        default="",
        help="Free-form notes stored with the entry",
    )

    remove_parser = subparsers.add_parser("remove", help="Release a scenario from quarantine")
    remove_parser.add_argument("scenario", help="Scenario name")

    status_parser = subparsers.add_parser(
        "status",
        help="Show flake metrics for one scenario or all tracked scenarios",
    )
    status_parser.add_argument(
        "scenario",
        nargs="?",
        default=None,
        help="Scenario name (if omitted, shows flaky and quarantined scenarios)",
    )
    status_parser.add_argument(
        "--all",
        action="store_true",
        default=False,
        help="Show every tracked scenario, including stable ones",
    )

    subparsers.add_parser("flaky", help="List flaky scenarios not yet quarantined")

    clear_parser = subparsers.add_parser("clear", help="Delete a scenario's run history")
    clear_parser.add_argument("scenario", help="Scenario name")

    subparsers.add_parser(
        "migrate",
        help="Move legacy .quarantine entries into the flake detector",
    )

    return parser.parse_args(argv)


def _output_dir(args: argparse.Namespace) -> Path:
    if args.output is not None:
        return args.output
    return OrchestratorConfig(args.config_file).output_dir


def _open_detector(args: argparse.Namespace) -> Detector:
    config = OrchestratorConfig(args.config_file)
    return Detector(_output_dir(args) / FLAKE_DATA_FILE, config.flake)


def _open_legacy_store(args: argparse.Namespace) -> QuarantineStore:
    return QuarantineStore(_output_dir(args) / LEGACY_QUARANTINE_FILE)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def _fmt_time(value: datetime.datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def _fmt_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


def _print_metrics_summary(m: FlakeMetrics, quarantined: bool) -> None:
    tag = ""
    if quarantined:
        tag = " [QUARANTINED]"
    elif m.is_flaky:
        tag = " [FLAKY]"
    print(f"  {m.scenario}{tag}")
    print(
        f"    Flake rate: {m.flake_rate:.0%} | Success: {m.success_rate:.0%} "
        f"| Runs: {m.window_runs}"
    )
    if m.consecutive_failures > 0:
        print(f"    Consecutive failures: {m.consecutive_failures}")
    print()


def cmd_list(args: argparse.Namespace) -> int:
    """Handle list subcommand.

    Returns:
        Exit code (0 for success).
    """
    detector = _open_detector(args)
    legacy = [
        e for e in _open_legacy_store(args).list_entries()
        if not detector.is_quarantined(e["scenario"])
    ]
    entries = detector.list_quarantined()

    if args.json:
        _print_json({
            "quarantined": [e.to_dict() for e in entries],
            "legacy": legacy,
        })
        return 0

    if not entries and not legacy:
        print("No quarantined scenarios")
        return 0

    print(f"Quarantined Scenarios ({len(entries) + len(legacy)})")
    print(RULE)
    for entry in entries:
        tags = ""
        if entry.auto_quarantined:
            tags += " [auto]"
        if entry.review_required:
            tags += " [review required]"
        print(f"  {entry.scenario}{tags}")
        print(f"    Quarantined: {_fmt_time(entry.quarantined_at)}")
        print(f"    Reason: {entry.reason}")
        if entry.flake_rate > 0:
            print(f"    Flake rate: {entry.flake_rate:.0%}")
        if entry.notes:
            print(f"    Notes: {entry.notes}")
        print()
    for entry in legacy:
        print(f"  {entry['scenario']} [legacy]")
        print(f"    Reason: {entry.get('reason', '')}")
        print()
    if legacy:
        print("Legacy entries can be moved into the flake detector with 'migrate'.")
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    """Handle add subcommand.

    Returns:
        Exit code (0 for success, 1 if already quarantined).
    """
    detector = _open_detector(args)
    if detector.is_quarantined(args.scenario):
        print(f"Error: {args.scenario} is already quarantined", file=sys.stderr)
        return 1

    detector.quarantine(args.scenario, args.reason, notes=args.notes)

    if args.json:
        entry = detector.get_quarantine_entry(args.scenario)
        _print_json(entry.to_dict() if entry else {})
        return 0

    print(f"Quarantined: {args.scenario}")
    print(f"  Reason: {args.reason}")
    print()
    print("This scenario will be skipped in batch runs. Use 'remove' to release it.")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    """Handle remove subcommand.

    Releases the scenario from both the detector and the legacy list.

    Returns:
        Exit code (0 for success, 1 if not quarantined).
    """
    detector = _open_detector(args)
    legacy = _open_legacy_store(args)
    in_detector = detector.is_quarantined(args.scenario)
    in_legacy = legacy.is_quarantined(args.scenario)
    if not in_detector and not in_legacy:
        print(f"Error: {args.scenario} is not quarantined", file=sys.stderr)
        return 1

    if in_detector:
        detector.unquarantine(args.scenario)
    if in_legacy:
        legacy.unquarantine(args.scenario)

    if args.json:
        _print_json({"scenario": args.scenario, "unquarantined": True})
        return 0

    print(f"Unquarantined: {args.scenario}")
    print()
    print("This scenario will now run in batch executions.")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Handle status subcommand.

    Returns:
        Exit code (0 for success).
    """
    detector = _open_detector(args)
    if args.scenario:
        return _show_scenario_status(args, detector, args.scenario)

    metrics = detector.get_all_metrics()
    if not args.all:
        metrics = [
            m for m in metrics
            if m.is_flaky or detector.is_quarantined(m.scenario)
        ]

    if args.json:
        _print_json([m.to_dict() for m in metrics])
        return 0

    if not detector.get_all_metrics():
        print("No scenario history tracked yet")
        return 0
    if not metrics:
        print("All tracked scenarios are stable. Use --all to see all metrics.")
        return 0

    print(f"Flake Status ({len(metrics)} scenarios)")
    print(RULE)
    for m in metrics:
        _print_metrics_summary(m, detector.is_quarantined(m.scenario))
    return 0


def _show_scenario_status(args: argparse.Namespace, detector: Detector, scenario: str) -> int:
    metrics = detector.get_metrics(scenario)
    history = detector.get_history(scenario)
    entry = detector.get_quarantine_entry(scenario)

    if args.json:
        _print_json({
            "metrics": metrics.to_dict(),
            "history": history.to_dict() if history else None,
            "quarantine": entry.to_dict() if entry else None,
        })
        return 0

    print(f"Scenario: {scenario}")
    print("─" * 40)

    if history is None:
        print("No run history")
        if entry is not None:
            print(f"Status: QUARANTINED ({entry.reason})")
        return 0

    if entry is not None:
        print("Status: QUARANTINED")
        print(f"  Quarantined: {_fmt_time(entry.quarantined_at)}")
        print(f"  Reason: {entry.reason}")
        print(f"  Type: {'Auto-quarantined' if entry.auto_quarantined else 'Manually quarantined'}")
        if entry.review_required:
            print("  Review: Required")
    elif metrics.is_flaky:
        print("Status: FLAKY (not quarantined)")
    else:
        print("Status: Stable")
    print()

    print("Window Metrics:")
    print(
        f"  Flake rate: {metrics.flake_rate:.0%} "
        f"({metrics.window_failures + metrics.window_errors}/{metrics.window_runs} failed)"
    )
    print(
        f"  Success rate: {metrics.success_rate:.0%} "
        f"({metrics.window_passes}/{metrics.window_runs} passed)"
    )
    print(f"  Average retries: {metrics.average_retries:.1f}")
    if metrics.average_duration > 0:
        print(f"  Average duration: {_fmt_duration(metrics.average_duration)}")
    print()

    print("Current Streak:")
    if metrics.consecutive_failures > 0:
        print(f"  {metrics.consecutive_failures} consecutive failures")
    elif metrics.consecutive_passes > 0:
        print(f"  {metrics.consecutive_passes} consecutive passes")
    print(f"  Last outcome: {metrics.last_outcome or '-'}")
    print()

    def pct(n: int) -> str:
        return f"{n / history.total_runs:.0%}" if history.total_runs else "0%"

    print("All-Time Stats:")
    print(f"  Total runs: {history.total_runs}")
    print(f"  Passes: {history.total_passes} ({pct(history.total_passes)})")
    print(f"  Failures: {history.total_failures} ({pct(history.total_failures)})")
    print(f"  Errors: {history.total_errors} ({pct(history.total_errors)})")
    print(f"  First run: {_fmt_time(history.first_run)}")
    print(f"  Last run: {_fmt_time(history.last_run)}")
    print()

    print("Recent Runs:")
    for run in history.runs[:5]:
        mark = "✓"
        if run.outcome in (OUTCOME_FAIL, OUTCOME_ERROR):
            mark = "✗"
        elif run.outcome == OUTCOME_SKIP:
            mark = "○"
        line = f"  {mark} {run.timestamp.strftime('%m-%d %H:%M')} {run.outcome}"
        if run.retry_count > 0:
            line += f" (retry {run.retry_count})"
        if run.duration > 0:
            line += f" [{_fmt_duration(run.duration)}]"
        print(line)
    return 0


def cmd_flaky(args: argparse.Namespace) -> int:
    """Handle flaky subcommand: flaky scenarios that are not quarantined.

    Returns:
        Exit code (0 for success).
    """
    detector = _open_detector(args)
    candidates = [
        m for m in detector.get_flaky_scenarios()
        if not detector.is_quarantined(m.scenario)
    ]

    if args.json:
        _print_json([m.to_dict() for m in candidates])
        return 0

    if not candidates:
        print("No flaky scenarios detected (that aren't already quarantined)")
        return 0

    print(f"Flaky Scenarios - Quarantine Candidates ({len(candidates)})")
    print(RULE)
    print("These scenarios fail above the flake threshold but aren't quarantined yet.")
    print()
    for m in candidates:
        _print_metrics_summary(m, False)
    print("To quarantine a scenario:")
    print('  scenario-quarantine add <scenario> --reason "description"')
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    """Handle clear subcommand.

    Returns:
        Exit code (0 for success, 1 if the scenario has no history).
    """
    detector = _open_detector(args)
    history = detector.get_history(args.scenario)
    if history is None:
        print(f"Error: no history found for scenario '{args.scenario}'", file=sys.stderr)
        return 1

    detector.clear_history(args.scenario)

    if args.json:
        _print_json({"scenario": args.scenario, "deleted_runs": history.total_runs})
        return 0

    print(f"Cleared history for: {args.scenario}")
    print(f"  Deleted {history.total_runs} run records")
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    """Handle migrate subcommand.

    Each legacy entry becomes a manual quarantine in the detector (unless
    the detector already holds one) and is removed from the legacy list.

    Returns:
        Exit code (0 for success).
    """
    detector = _open_detector(args)
    legacy = _open_legacy_store(args)

    migrated = []
    for entry in legacy.list_entries():
        name = entry["scenario"]
        if not detector.is_quarantined(name):
            detector.quarantine(
                name,
                entry.get("reason") or "quarantined",
                notes=MIGRATED_NOTE,
            )
            migrated.append(name)
        legacy.unquarantine(name)

    if args.json:
        _print_json({"migrated": migrated})
        return 0

    if not migrated:
        print("No legacy quarantine entries to migrate")
        return 0
    print(f"Migrated {len(migrated)} scenario(s) into the flake detector:")
    for name in migrated:
        print(f"  {name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return 1

    handlers = {
        "list": cmd_list,
        "add": cmd_add,
        "remove": cmd_remove,
        "status": cmd_status,
        "flaky": cmd_flaky,
        "clear": cmd_clear,
        "migrate": cmd_migrate,
    }
    handler = handlers.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (ValueError, FlakeStorageError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""Entry point for batch scenario runs.

Discovers scenarios matching a glob pattern, runs them through the
configured executor with flake tracking and quarantine, and prints a
summary. Exit code is 0 when every executed scenario passed, 1 when any
failed or errored (or on usage errors), and 4 when preflight checks fail.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

from scenario_orchestrator.batch.executor import SubprocessScenarioExecutor
from scenario_orchestrator.batch.infra import InfraErrorClassifier
from scenario_orchestrator.batch.preflight import PreflightError
from scenario_orchestrator.batch.runner import BatchRunner
from scenario_orchestrator.batch.types import STATUS_SKIPPED, BatchConfig, BatchResult
from scenario_orchestrator.flake.config import OrchestratorConfig
from scenario_orchestrator.reporting.manifest import MANIFEST_NAME, write_yaml_report

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_PREFLIGHT = 4


def _split_tags(value: str | None) -> list[str]:
    if not value:
        return []
    return [t.strip() for t in value.split(",") if t.strip()]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a batch of scenarios with flake detection and quarantine"
    )
    parser.add_argument(
        "pattern",
        help="Glob pattern for scenario files (e.g. 'scenarios/**/*.yaml')",
    )
    parser.add_argument(
        "--parallel",
        type=int,
        default=None,
        help="Number of scenarios to run at once (default: from config, 1)",
    )
    parser.add_argument(
        "--stop-on-fail",
        action="store_true",
        default=False,
        help="Stop dispatching scenarios after the first failure",
    )
    parser.add_argument(
        "--label",
        type=str,
        default="",
        help="Free-form label recorded in the manifest",
    )
    parser.add_argument(
        "--model",
        type=str,
        default="",
        help="Model override passed to the executor",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Target environment (default: from config, staging)",
    )
    parser.add_argument(
        "--filter",
        type=str,
        default=None,
        help="Comma-separated tags; only scenarios with at least one are run",
    )
    parser.add_argument(
        "--exclude",
        type=str,
        default=None,
        help="Comma-separated tags; scenarios with any of them are dropped",
    )
    parser.add_argument(
        "--include-quarantined",
        action="store_true",
        default=False,
        help="Run quarantined scenarios instead of skipping them",
    )
    parser.add_argument(
        "--compare-to",
        type=str,
        default="",
        help="Baseline batch id, directory name, or manifest.json path",
    )
    parser.add_argument(
        "--skip-preflight",
        action="store_true",
        default=False,
        help="Skip preflight checks",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Results directory (default: from config, test-results)",
    )
    parser.add_argument(
        "--executor-cmd",
        type=str,
        default=None,
        help="Command run per scenario; '{path}' is replaced with the scenario "
             "file (appended when absent)",
    )
    parser.add_argument(
        "--scenario-timeout",
        type=float,
        default=300.0,
        help="Per-scenario timeout in seconds (default: 300)",
    )
    parser.add_argument(
        "--timeout-minutes",
        type=float,
        default=None,
        help="Whole-batch deadline in minutes (default: from config, 30)",
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=Path(".scenario_config"),
        help="Path to the .scenario_config JSON file",
    )
    parser.add_argument(
        "--report-yaml",
        type=Path,
        default=None,
        help="Also write a condensed YAML report to this path",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print the full batch result as JSON",
    )
    return parser.parse_args(argv)


def build_batch_config(args: argparse.Namespace, config: OrchestratorConfig) -> BatchConfig:
    """Merge CLI flags over config-file defaults."""
    return BatchConfig(
        pattern=args.pattern,
        parallel=args.parallel if args.parallel is not None else config.parallel,
        stop_on_fail=args.stop_on_fail,
        label=args.label,
        model=args.model,
        environment=args.env or config.environment,
        filter_tags=_split_tags(args.filter),
        exclude_tags=_split_tags(args.exclude),
        include_quarantined=args.include_quarantined,
        compare_to=args.compare_to,
        skip_preflight=args.skip_preflight,
        output_dir=str(args.output if args.output is not None else config.output_dir),
        timeout_minutes=(
            args.timeout_minutes
            if args.timeout_minutes is not None
            else config.timeout_minutes
        ),
    )


def print_preflight_failure(err: PreflightError) -> None:
    """Print failed preflight checks with their suggested fixes."""
    print("Preflight checks failed:", file=sys.stderr)
    for check in err.result.checks:
        if check.passed:
            continue
        line = f"  ✗ {check.name}: {check.message}"
        if check.error:
            line += f" ({check.error})"
        print(line, file=sys.stderr)
        if check.fix:
            print(f"    fix: {check.fix}", file=sys.stderr)
    print("Use --skip-preflight to bypass these checks.", file=sys.stderr)


def print_summary(result: BatchResult) -> None:
    """Print a human-readable batch summary."""
    summary = result.summary
    label = f" ({result.config.label})" if result.config.label else ""
    print(f"Batch {result.id}{label}")
    print(
        f"  Scenarios: {result.scenarios_found} found, "
        f"{result.scenarios_run} run, {result.scenarios_skipped} skipped (quarantined)"
    )
    print(
        f"  Results:   {summary.passed} passed, {summary.failed} failed, "
        f"{summary.errors} errors, {summary.skipped} skipped"
    )
    print(f"  Flake rate: {summary.flake_rate:.1%}")
    if summary.total_retries:
        print(f"  Retries:   {summary.total_retries}")
    if summary.total_observations:
        obs = ", ".join(
            f"{sev}: {count}" for sev, count in sorted(summary.total_observations.items())
        )
        print(f"  Observations: {obs}")
    print(f"  Duration:  {result.total_duration:.1f}s")

    failing = [r for r in result.results if r.is_failing]
    if failing:
        print()
        print("Failed scenarios:")
        for r in failing:
            detail = f": {r.error}" if r.error else ""
            print(f"  ✗ {r.scenario} [{r.status}]{detail}")

    not_run = [
        r for r in result.results
        if r.status == STATUS_SKIPPED and not r.quarantined and r.skip_reason
    ]
    if not_run:
        print()
        print("Not run:")
        for r in not_run:
            print(f"  - {r.scenario}: {r.skip_reason}")

    stability = [
        ("Auto-quarantined", summary.auto_quarantined),
        ("Auto-unquarantined", summary.auto_unquarantined),
        ("Flagged as flaky", summary.flaky_scenarios),
        ("New quarantine candidates", summary.new_quarantine_candidates),
    ]
    if any(names for _, names in stability):
        print()
        print("Stability:")
        for title, names in stability:
            if names:
                print(f"  {title}: {', '.join(names)}")

    if result.comparison is not None:
        comp = result.comparison
        print()
        print(f"Comparison with batch {comp.baseline_id}:")
        print(
            f"  {len(comp.fixed)} fixed, {len(comp.new_issues)} new, "
            f"{len(comp.recurring)} recurring (score {comp.regression_score:+d})"
        )
        for item in comp.new_issues:
            print(f"  + [{item.severity}] {item.scenario}: {item.description}")
        for item in comp.fixed:
            print(f"  - [{item.severity}] {item.scenario}: {item.description}")

    print()
    print(f"Manifest: {Path(result.output_dir) / MANIFEST_NAME}")


def _install_cancel_handlers(cancel: threading.Event) -> dict[int, object]:
    """Route SIGINT/SIGTERM to the cancel event. Returns previous handlers."""

    def handler(signum, frame):
        if not cancel.is_set():
            print("batch: interrupted, skipping remaining scenarios", file=sys.stderr)
        cancel.set()

    previous: dict[int, object] = {}
    if threading.current_thread() is not threading.main_thread():
        return previous
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if not args.executor_cmd:
        print("Error: --executor-cmd is required", file=sys.stderr)
        return EXIT_FAILURES

    config = OrchestratorConfig(args.config_file)
    batch_config = build_batch_config(args, config)

    try:
        executor = SubprocessScenarioExecutor(
            args.executor_cmd, timeout=args.scenario_timeout
        )
        runner = BatchRunner(
            batch_config,
            executor,
            is_infra_error=InfraErrorClassifier(config.infra_error_markers),
            flake_config=config.flake,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURES

    cancel = threading.Event()
    previous = _install_cancel_handlers(cancel)
    try:
        result = runner.run(cancel_event=cancel)
    except PreflightError as e:
        print_preflight_failure(e)
        return EXIT_PREFLIGHT
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURES
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if args.report_yaml:
        write_yaml_report(result, args.report_yaml)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_summary(result)

    if result.summary.failed or result.summary.errors:
        return EXIT_FAILURES
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

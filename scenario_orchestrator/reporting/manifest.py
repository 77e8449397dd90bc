"""Batch manifest files and reports.

Every batch writes its full result to
``<output>/<YYYY-MM-DD>/batch-<id>/manifest.json``. Manifests are later
loaded back as comparison baselines. A condensed YAML report can also be
written for humans and CI artifacts.
"""

from __future__ import annotations

import datetime
import glob
import json
from pathlib import Path
from typing import Any

import yaml

from scenario_orchestrator.batch.types import BatchResult

MANIFEST_NAME = "manifest.json"


def batch_dir(output_dir: str | Path, batch_id: str, day: datetime.date | None = None) -> Path:
    """Directory holding one batch's manifest."""
    day = day or datetime.date.today()
    return Path(output_dir) / day.isoformat() / f"batch-{batch_id}"


def save_manifest(result: BatchResult) -> Path:
    """Write the batch result to manifest.json in result.output_dir.

    Returns:
        Path of the written manifest.
    """
    path = Path(result.output_dir) / MANIFEST_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(result.to_dict(), f, indent=2)
        f.write("\n")
    return path


def load_manifest(path: str | Path) -> BatchResult:
    """Load a batch result from a manifest file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a valid manifest.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in manifest {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Invalid manifest {path}: expected an object")
    try:
        return BatchResult.from_dict(data)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid manifest {path}: {e}") from e


def find_baseline(output_dir: str | Path, batch_ref: str) -> Path:
    """Locate a baseline manifest.

    ``batch_ref`` may be a path ending in manifest.json, a batch id
    (``<output>/*/batch-<id>/manifest.json``), or a batch directory name
    (``<output>/*/<ref>/manifest.json``). The latest date wins when several
    match.

    Raises:
        FileNotFoundError: If no manifest matches.
    """
    if batch_ref.endswith(MANIFEST_NAME):
        return Path(batch_ref)

    root = glob.escape(str(output_dir))
    ref = glob.escape(batch_ref)
    matches = glob.glob(str(Path(root) / "*" / f"batch-{ref}" / MANIFEST_NAME))
    if not matches:
        matches = glob.glob(str(Path(root) / "*" / ref / MANIFEST_NAME))
    if not matches:
        raise FileNotFoundError(f"Baseline batch '{batch_ref}' not found in {output_dir}")
    return Path(sorted(matches)[-1])


def generate_report(result: BatchResult) -> dict[str, Any]:
    """Condensed report structure for YAML output."""
    summary = result.summary
    report: dict[str, Any] = {
        "batch": {
            "id": result.id,
            "pattern": result.config.pattern,
            "started_at": result.started_at.isoformat(),
            "duration_seconds": round(result.total_duration, 3),
            "scenarios_found": result.scenarios_found,
            "scenarios_run": result.scenarios_run,
            "scenarios_skipped": result.scenarios_skipped,
        },
        "summary": {
            "passed": summary.passed,
            "failed": summary.failed,
            "errors": summary.errors,
            "skipped": summary.skipped,
            "flake_rate": round(summary.flake_rate, 4),
            "total_retries": summary.total_retries,
            "total_observations": dict(summary.total_observations),
        },
        "scenarios": {},
    }
    for r in result.results:
        entry: dict[str, Any] = {
            "status": r.status,
            "duration_seconds": round(r.duration, 3),
        }
        if r.observations:
            entry["observations"] = dict(r.observations)
        if r.error:
            entry["error"] = r.error
        if r.skip_reason:
            entry["skip_reason"] = r.skip_reason
        report["scenarios"][r.scenario] = entry

    stability = {
        "auto_quarantined": summary.auto_quarantined,
        "auto_unquarantined": summary.auto_unquarantined,
        "flaky_scenarios": summary.flaky_scenarios,
        "new_quarantine_candidates": summary.new_quarantine_candidates,
    }
    stability = {k: v for k, v in stability.items() if v}
    if stability:
        report["stability"] = stability

    if result.comparison is not None:
        report["comparison"] = result.comparison.to_dict()
    return report


def write_yaml_report(result: BatchResult, path: Path) -> None:
    """Write the condensed YAML report."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(
            generate_report(result),
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

"""Unit tests for the scenario-batch entry point."""

from __future__ import annotations

import json
import os
import stat
import tempfile
from pathlib import Path
from unittest.mock import patch

import yaml

from scenario_orchestrator.batch.types import PreflightCheck, PreflightResult
from scenario_orchestrator.flake.config import OrchestratorConfig
from scenario_orchestrator.main import build_batch_config, main, parse_args


def _make_script(directory: Path, content: str) -> str:
    """Create an executable script and return its path."""
    path = directory / "runner.sh"
    path.write_text(content)
    os.chmod(path, stat.S_IRWXU)
    return str(path)


def _setup(tmpdir: str, exit_codes: dict[str, int]) -> tuple[Path, str, str]:
    """Write scenarios plus a runner script exiting with the given codes."""
    root = Path(tmpdir)
    scenario_dir = root / "scenarios"
    scenario_dir.mkdir()
    cases = []
    for name, code in exit_codes.items():
        (scenario_dir / f"{name}.yaml").write_text(f"name: {name}\ntags: [smoke]\n")
        cases.append(f'  *{name}.yaml) exit {code} ;;')
    script = _make_script(
        root,
        "#!/bin/bash\ncase \"$1\" in\n" + "\n".join(cases) + "\nesac\nexit 0\n",
    )
    return root, str(scenario_dir / "*.yaml"), script


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Unset flags defer to the config file."""
        args = parse_args(["scenarios/*.yaml"])
        assert args.pattern == "scenarios/*.yaml"
        assert args.parallel is None
        assert args.output is None
        assert args.env is None
        assert not args.stop_on_fail
        assert not args.json
        assert args.config_file == Path(".scenario_config")

    def test_all_flags(self):
        """Every flag is parsed."""
        args = parse_args([
            "s/*.yaml", "--parallel", "4", "--stop-on-fail", "--label", "nightly",
            "--model", "m", "--env", "prod", "--filter", "smoke, checkout",
            "--exclude", "slow", "--include-quarantined", "--compare-to", "abc",
            "--skip-preflight", "--output", "/tmp/out", "--executor-cmd", "run {path}",
            "--scenario-timeout", "60", "--timeout-minutes", "5", "--json",
        ])
        assert args.parallel == 4
        assert args.filter == "smoke, checkout"
        assert args.output == Path("/tmp/out")
        assert args.scenario_timeout == 60.0
        assert args.timeout_minutes == 5.0

    def test_flags_override_config(self):
        """CLI flags win over config values; unset flags fall back."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / ".scenario_config"
            path.write_text(json.dumps({"parallel": 3, "environment": "qa"}))
            config = OrchestratorConfig(path)

            cfg = build_batch_config(parse_args(["p", "--filter", "a,,b "]), config)
            assert cfg.parallel == 3
            assert cfg.environment == "qa"
            assert cfg.filter_tags == ["a", "b"]
            assert cfg.output_dir == "test-results"
            assert cfg.timeout_minutes == 30

            cfg = build_batch_config(parse_args(["p", "--parallel", "1", "--env", "prod"]), config)
            assert cfg.parallel == 1
            assert cfg.environment == "prod"


class TestMain:
    """Tests for running batches from the command line."""

    def test_all_pass_exit_zero(self, capsys):
        """A fully passing batch exits 0 and prints a summary."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root, pattern, script = _setup(tmpdir, {"checkout": 0, "search": 0})
            code = main([
                pattern, "--executor-cmd", script, "--output", str(root / "out"),
                "--skip-preflight", "--config-file", str(root / "none"),
            ])
            assert code == 0
            out = capsys.readouterr().out
            assert "2 passed, 0 failed" in out
            assert "manifest.json" in out

    def test_failure_exit_one(self, capsys):
        """Any failed scenario makes the exit code 1."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root, pattern, script = _setup(tmpdir, {"checkout": 1, "search": 0})
            code = main([
                pattern, "--executor-cmd", script, "--output", str(root / "out"),
                "--skip-preflight", "--config-file", str(root / "none"),
            ])
            assert code == 1
            assert "✗ checkout [failed]" in capsys.readouterr().out

    def test_json_output(self, capsys):
        """--json prints the full batch result."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root, pattern, script = _setup(tmpdir, {"checkout": 0})
            code = main([
                pattern, "--executor-cmd", script, "--output", str(root / "out"),
                "--skip-preflight", "--json", "--label", "ci",
                "--config-file", str(root / "none"),
            ])
            assert code == 0
            data = json.loads(capsys.readouterr().out)
            assert data["scenarios_found"] == 1
            assert data["config"]["label"] == "ci"
            assert data["results"][0]["status"] == "passed"

    def test_yaml_report(self):
        """--report-yaml writes the condensed report."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root, pattern, script = _setup(tmpdir, {"checkout": 1})
            report_path = root / "report.yaml"
            main([
                pattern, "--executor-cmd", script, "--output", str(root / "out"),
                "--skip-preflight", "--report-yaml", str(report_path),
                "--config-file", str(root / "none"),
            ])
            report = yaml.safe_load(report_path.read_text())
            assert report["summary"]["failed"] == 1
            assert report["scenarios"]["checkout"]["status"] == "failed"

    def test_preflight_failure_exit_four(self, capsys):
        """A failed preflight exits 4 without running scenarios."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root, pattern, script = _setup(tmpdir, {"checkout": 0})
            failing = PreflightResult(passed=False, checks=[
                PreflightCheck(name="disk_space", passed=False,
                               message="Only 1 MiB free", fix="Free up disk space"),
            ])
            with patch("scenario_orchestrator.batch.runner.OutputDirPreflight") as cls:
                cls.return_value.check.return_value = failing
                code = main([
                    pattern, "--executor-cmd", script, "--output", str(root / "out"),
                    "--config-file", str(root / "none"),
                ])
            assert code == 4
            err = capsys.readouterr().err
            assert "disk_space" in err
            assert "Free up disk space" in err

    def test_missing_executor_cmd(self, capsys):
        """Running without --executor-cmd is a usage error."""
        assert main(["scenarios/*.yaml"]) == 1
        assert "--executor-cmd" in capsys.readouterr().err

    def test_corrupt_detector_data(self, capsys):
        """Corrupt flake data is reported as an error."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root, pattern, script = _setup(tmpdir, {"checkout": 0})
            out = root / "out"
            out.mkdir()
            (out / ".flake-data.json").write_text("{ broken")
            code = main([
                pattern, "--executor-cmd", script, "--output", str(out),
                "--skip-preflight", "--config-file", str(root / "none"),
            ])
            assert code == 1
            assert "Failed to parse flake data" in capsys.readouterr().err

    def test_quarantined_scenario_reported_skipped(self, capsys):
        """Quarantined scenarios are skipped and counted in the summary."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root, pattern, script = _setup(tmpdir, {"checkout": 1, "search": 0})
            out = root / "out"
            for _ in range(3):
                main([
                    pattern, "--executor-cmd", script, "--output", str(out),
                    "--skip-preflight", "--config-file", str(root / "none"),
                ])
            capsys.readouterr()
            code = main([
                pattern, "--executor-cmd", script, "--output", str(out),
                "--skip-preflight", "--json", "--config-file", str(root / "none"),
            ])
            data = json.loads(capsys.readouterr().out)
            assert code == 0
            assert data["scenarios_skipped"] == 1
            skipped = [r for r in data["results"] if r["status"] == "skipped"]
            assert skipped[0]["scenario"] == "checkout"
            assert skipped[0]["skip_reason"].startswith("quarantined: Auto-quarantined")

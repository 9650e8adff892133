"""End-to-end tests for the typer CLI in dry-run mode."""

from __future__ import annotations

import json
import typing as typ

import pytest
from typer.testing import CliRunner

from chart_matrix.cli import app

if typ.TYPE_CHECKING:
    from pathlib import Path

MATRIX = """\
settings:
  concurrency_limit: 2
  poll_interval: 1
entries:
  - cluster_version: v1.28
    create_test_resources: true
  - cluster_version: v1.28
    scenario: upgrade
    upgrade_from: stable
  - cluster_version: v1.27
    scenario: upgrade
    upgrade_from: dev
    upgrade_from_values:
      hub.db.type: sqlite-pvc
"""


@pytest.fixture
def cli() -> CliRunner:
    return CliRunner()


@pytest.fixture
def matrix_file(tmp_path: Path) -> Path:
    path = tmp_path / "matrix.yaml"
    path.write_text(MATRIX)
    return path


class TestRunCommand:
    def test_dry_run_passes_every_entry(self, cli: CliRunner, matrix_file: Path, tmp_path: Path) -> None:
        """Should exit 0 and report every entry passed with its diagnostics."""
        report = tmp_path / "report.json"
        result = cli.invoke(app, [
            "run", str(matrix_file), "--dry-run",
            "--diagnostics-dir", str(tmp_path / "diag"),
            "--report", str(report),
        ])
        assert result.exit_code == 0, result.output

        data = json.loads(report.read_text())
        assert data["exit_code"] == 0
        assert {run["id"] for run in data["runs"]} == {
            "install-v1-28", "upgrade-v1-28-from-stable", "upgrade-v1-27-from-dev",
        }
        assert all(run["verdict"] == "passed" for run in data["runs"])
        assert all(run["stages"][-1]["name"] == "collect-diagnostics" for run in data["runs"])
        assert (tmp_path / "diag" / "install-v1-28").is_dir()

    def test_only_selects_entries(self, cli: CliRunner, matrix_file: Path, tmp_path: Path) -> None:
        """Should run only the requested entries."""
        report = tmp_path / "report.json"
        result = cli.invoke(app, [
            "run", str(matrix_file), "--dry-run", "--only", "install-v1-28",
            "--diagnostics-dir", str(tmp_path / "diag"), "--report", str(report),
        ])
        assert result.exit_code == 0, result.output
        assert [run["id"] for run in json.loads(report.read_text())["runs"]] == ["install-v1-28"]

    def test_unknown_entry_id(self, cli: CliRunner, matrix_file: Path) -> None:
        """Should exit 1 for an --only id missing from the matrix."""
        result = cli.invoke(app, ["run", str(matrix_file), "--dry-run", "--only", "nope"])
        assert result.exit_code == 1

    def test_invalid_matrix(self, cli: CliRunner, tmp_path: Path) -> None:
        """Should exit 1 when an upgrade entry lacks its source."""
        path = tmp_path / "matrix.yaml"
        path.write_text("entries:\n  - cluster_version: v1.28\n    scenario: upgrade\n")
        result = cli.invoke(app, ["run", str(path), "--dry-run"])
        assert result.exit_code == 1

    def test_missing_matrix(self, cli: CliRunner, tmp_path: Path) -> None:
        """Should exit 1 when the matrix file does not exist."""
        result = cli.invoke(app, ["run", str(tmp_path / "missing.yaml"), "--dry-run"])
        assert result.exit_code == 1


class TestShowCommand:
    def test_show_plan(self, cli: CliRunner, matrix_file: Path) -> None:
        """Should print the stage plan and exit 0."""
        result = cli.invoke(app, ["show", str(matrix_file)])
        assert result.exit_code == 0, result.output
        assert "Stage plan" in result.output


class TestLintCommand:
    def test_dry_run_lint(self, cli: CliRunner, tmp_path: Path) -> None:
        """Should exit 0 and report the synthetic lint entry."""
        report = tmp_path / "lint.json"
        result = cli.invoke(app, ["lint", "--dry-run", "--report", str(report)])
        assert result.exit_code == 0, result.output
        data = json.loads(report.read_text())
        assert data["runs"][0]["id"] == "lint"
        assert [stage["name"] for stage in data["runs"][0]["stages"]] == [
            "lint", "lint-strict", "lint-values", "lint-values-strict",
        ]

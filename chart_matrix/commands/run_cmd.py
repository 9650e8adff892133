# /*
# Copyright 2026 The Chart Matrix Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""The ``run`` subcommand: execute the matrix and report verdicts."""

from __future__ import annotations

from pathlib import Path

import typer

from chart_matrix import console
from chart_matrix.config import display_config, load_matrix, resolve_settings, select_entries
from chart_matrix.errors import ChartMatrixError
from chart_matrix.orchestrator import run_matrix


def run(
    matrix_file: Path = typer.Argument(Path("matrix.yaml"), help="YAML matrix file"),
    only: list[str] | None = typer.Option(
        None, "--only", help="Run only this entry id (repeatable)"),
    concurrency: int | None = typer.Option(
        None, "--concurrency", help="Maximum parallel pipelines (overrides CHART_MATRIX_CONCURRENCY_LIMIT)"),
    deadline: float | None = typer.Option(
        None, "--deadline", help="Overall deadline in seconds"),
    readiness_deadline: float | None = typer.Option(
        None, "--readiness-deadline", help="Seconds each readiness gate may wait"),
    max_restarts: int | None = typer.Option(
        None, "--max-restarts", help="Restarts tolerated per workload"),
    chart_path: str | None = typer.Option(
        None, "--chart-path", help="Path to the local chart"),
    diagnostics_dir: Path | None = typer.Option(
        None, "--diagnostics-dir", help="Directory for per-entry diagnostics"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Record commands without running them"),
    provision: bool = typer.Option(
        False, "--provision", help="Create a k3d cluster per entry"),
    report: Path | None = typer.Option(
        None, "--report", help="Write a JSON report to this path"),
) -> None:
    """Run every matrix entry and exit non-zero if any failed.

    Exit code 1 means at least one entry failed; 2 means none failed but
    some were cancelled by the overall deadline.
    """
    try:
        file_settings, entries = load_matrix(matrix_file)
        settings = resolve_settings(
            file_settings,
            concurrency_limit=concurrency,
            overall_deadline=deadline,
            readiness_deadline=readiness_deadline,
            max_restarts=max_restarts,
            chart_path=chart_path,
            diagnostics_dir=diagnostics_dir,
        )
        entries = select_entries(entries, only)
        display_config(settings, entries)
        code = run_matrix(settings, entries, dry_run=dry_run, provision=provision, report_path=report)
    except ChartMatrixError as e:
        console.print(f"[red]\u274c {e}[/red]")
        raise typer.Exit(code=1) from e
    raise typer.Exit(code=code)

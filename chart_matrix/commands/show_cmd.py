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

"""The ``show`` subcommand: print resolved settings and the stage plan."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from chart_matrix import console
from chart_matrix.backends import ApiValidator, HelmChart, PinnedReleaseSource, TestSuiteRunner
from chart_matrix.config import MatrixEntry, display_config, load_matrix, resolve_settings, select_entries
from chart_matrix.errors import ChartMatrixError
from chart_matrix.models import Stage
from chart_matrix.pipeline import build_stages


def plan_table(stages: list[Stage], entries: list[MatrixEntry]) -> Table:
    """One row per stage, one column per entry; cells say whether the guard admits it."""
    table = Table(title="Stage plan")
    table.add_column("stage", style="cyan")
    for entry in entries:
        table.add_column(entry.id)
    for stage in stages:
        table.add_row(stage.name, *("run" if stage.guard(e) else "[dim]skip[/dim]" for e in entries))
    return table


def show(
    matrix_file: Path = typer.Argument(Path("matrix.yaml"), help="YAML matrix file"),
    only: list[str] | None = typer.Option(
        None, "--only", help="Show only this entry id (repeatable)"),
) -> None:
    """Show resolved settings, matrix entries, and which stages each entry runs."""
    try:
        file_settings, entries = load_matrix(matrix_file)
        settings = resolve_settings(file_settings)
        entries = select_entries(entries, only)
    except ChartMatrixError as e:
        console.print(f"[red]\u274c {e}[/red]")
        raise typer.Exit(code=1) from e

    display_config(settings, entries)
    stages = build_stages(
        settings,
        HelmChart(settings),
        ApiValidator(settings),
        TestSuiteRunner(settings),
        PinnedReleaseSource({}),
    )
    console.print(plan_table(stages, entries))

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

"""The ``lint`` subcommand."""

from __future__ import annotations

from pathlib import Path

import typer

from chart_matrix import console
from chart_matrix.config import resolve_settings
from chart_matrix.errors import ChartMatrixError
from chart_matrix.lint import run_lint
from chart_matrix.report import exit_code, render_report, write_json_report
from chart_matrix.runner import CommandRunner, DryRunCommandRunner, ShellCommandRunner
from chart_matrix.utils import require_command


def lint(
    chart_path: str | None = typer.Option(
        None, "--chart-path", help="Path to the local chart"),
    lint_values_file: str | None = typer.Option(
        None, "--lint-values-file", help="Values file used for the second lint pass"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Record commands without running them"),
    report: Path | None = typer.Option(
        None, "--report", help="Write a JSON report to this path"),
) -> None:
    """Lint the chart; strict-mode findings are reported but tolerated."""
    try:
        settings = resolve_settings({}, chart_path=chart_path, lint_values_file=lint_values_file)
    except ChartMatrixError as e:
        console.print(f"[red]\u274c {e}[/red]")
        raise typer.Exit(code=1) from e

    if dry_run:
        runner: CommandRunner = DryRunCommandRunner()
    else:
        require_command("helm")
        runner = ShellCommandRunner()

    result = run_lint(settings, runner)
    render_report([result])
    if report is not None:
        write_json_report([result], report)
    raise typer.Exit(code=exit_code([result]))

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

"""Final report: summary table, JSON document, and aggregate exit code."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from rich.panel import Panel
from rich.table import Table

from chart_matrix import __version__, console
from chart_matrix.constants import EXIT_CANCELLED, EXIT_FAILED, EXIT_OK
from chart_matrix.models import PipelineRun, Verdict

_VERDICT_STYLES = {
    Verdict.PASSED: "green",
    Verdict.FAILED: "red",
    Verdict.FAILED_TOLERATED: "yellow",
    Verdict.CANCELLED: "magenta",
}


def exit_code(runs: Iterable[PipelineRun]) -> int:
    """Aggregate exit status for a matrix run.

    Returns:
        1 if any run failed, 2 if none failed but some were cancelled, else 0.
    """
    verdicts = {run.verdict for run in runs}
    if Verdict.FAILED in verdicts:
        return EXIT_FAILED
    if Verdict.CANCELLED in verdicts:
        return EXIT_CANCELLED
    return EXIT_OK


def render_report(runs: Iterable[PipelineRun]) -> None:
    """Print one row per run with its verdict, first fatal stage, and diagnostics."""
    runs = sorted(runs, key=lambda r: r.entry.id)
    console.print(Panel.fit("Matrix report", style="bold blue"))
    table = Table()
    table.add_column("id", style="cyan")
    table.add_column("k8s")
    table.add_column("scenario")
    table.add_column("verdict")
    table.add_column("first fatal stage")
    table.add_column("duration", justify="right")
    table.add_column("diagnostics")
    for run in runs:
        verdict = run.verdict.value if run.verdict else "unknown"
        style = _VERDICT_STYLES.get(run.verdict, "red")
        scenario = run.entry.scenario.value
        if run.entry.upgrade_from:
            scenario += f" ({run.entry.upgrade_from})"
        table.add_row(
            run.entry.id,
            run.entry.cluster_version,
            scenario,
            f"[{style}]{verdict}[/{style}]",
            run.first_fatal_stage or "-",
            f"{run.duration:.0f}s",
            str(run.diagnostics.directory) if run.diagnostics else "-",
        )
    console.print(table)

    for run in runs:
        if run.error:
            console.print(f"[red]{run.entry.id}: {run.error}[/red]")

    counts = {verdict: sum(1 for r in runs if r.verdict is verdict) for verdict in Verdict}
    summary = ", ".join(f"{n} {verdict.value}" for verdict, n in counts.items() if n)
    console.print(f"[bold]{len(runs)} entries: {summary or 'none'}[/bold]")


def build_report(runs: Iterable[PipelineRun]) -> dict:
    runs = sorted(runs, key=lambda r: r.entry.id)
    return {
        "version": __version__,
        "exit_code": exit_code(runs),
        "runs": [run.summary() for run in runs],
    }


def write_json_report(runs: Iterable[PipelineRun], path: Path) -> None:
    """Write the machine-readable report to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(build_report(runs), f, indent=2)
        f.write("\n")
    console.print(f"[green]\u2705 Report written to {path}[/green]")

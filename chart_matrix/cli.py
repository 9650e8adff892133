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

"""
cli.py - Helm chart install/upgrade test matrix.

Subcommands:
    run    Run every matrix entry (install and upgrade scenarios)
    show   Show resolved settings and the per-entry stage plan
    lint   Lint the chart (strict findings are tolerated)

Examples:
    # Run the whole matrix against the current kube context
    chart-matrix run matrix.yaml

    # Run two entries, each on its own k3d cluster, and keep a JSON report
    chart-matrix run matrix.yaml --only install-v1-28 --only upgrade-v1-28-from-stable \\
        --provision --report report.json

    # Print the commands a run would issue
    chart-matrix run matrix.yaml --dry-run

Environment Variables:
    Every setting can be overridden via CHART_MATRIX_* environment variables,
    e.g. CHART_MATRIX_CONCURRENCY_LIMIT, CHART_MATRIX_OVERALL_DEADLINE,
    CHART_MATRIX_READINESS_DEADLINE, CHART_MATRIX_MAX_RESTARTS.
"""

from __future__ import annotations

import logging
import sys

import typer

from chart_matrix import console
from chart_matrix.commands import lint_cmd, run_cmd, show_cmd

app = typer.Typer(
    help="Test a Helm chart across a matrix of Kubernetes versions and upgrade paths.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command("run")(run_cmd.run)
app.command("show")(show_cmd.show)
app.command("lint")(lint_cmd.lint)


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()

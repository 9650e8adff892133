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

"""Chart lint job.

Plain ``helm lint`` checks are fatal. The ``--strict`` variants only report
warnings the chart has accepted so far, so they run as tolerant stages: a
strict failure turns the verdict into ``failed-tolerated`` but never
``failed``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from rich.panel import Panel

from chart_matrix import console
from chart_matrix.backends import HelmChart, StaticReadinessOracle
from chart_matrix.config import MatrixEntry, OrchestratorSettings
from chart_matrix.executor import StageExecutor, skipped
from chart_matrix.models import CancelScope, FailurePolicy, PipelineContext, PipelineRun, Stage, StageKind
from chart_matrix.pipeline import compute_verdict
from chart_matrix.runner import CommandRunner
from chart_matrix.waiter import ResourceWaiter

LINT_ENTRY_ID = "lint"


def build_lint_stages(settings: OrchestratorSettings, chart: HelmChart) -> list[Stage]:
    """Lint with default values, then with the lint values file; each plain then strict."""

    def lint(values_file: str | None, strict: bool):
        return lambda ctx: chart.lint_action(values_file, strict=strict)

    return [
        Stage("lint", StageKind.LINT_VALIDATE, action=lint(None, False)),
        Stage("lint-strict", StageKind.LINT_VALIDATE, policy=FailurePolicy.TOLERANT, action=lint(None, True)),
        Stage("lint-values", StageKind.LINT_VALIDATE, action=lint(settings.lint_values_file, False)),
        Stage("lint-values-strict", StageKind.LINT_VALIDATE, policy=FailurePolicy.TOLERANT,
              action=lint(settings.lint_values_file, True)),
    ]


def run_lint(settings: OrchestratorSettings, runner: CommandRunner, chart: HelmChart | None = None) -> PipelineRun:
    """Run the lint stages in order, halting on the first fatal failure.

    Args:
        settings: Supplies the chart path and lint values file.
        runner: Runs the helm commands.
        chart: Helm action builder; defaults to one built from ``settings``.

    Returns:
        A PipelineRun for the synthetic ``lint`` entry.
    """
    chart = chart or HelmChart(settings)
    entry = MatrixEntry(id=LINT_ENTRY_ID, cluster_version="none")
    ctx = PipelineContext(entry=entry, namespace="", release_name=settings.release_name, cancel=CancelScope())
    executor = StageExecutor(runner, ResourceWaiter(StaticReadinessOracle()))
    run = PipelineRun(entry=entry, namespace="", started_at=datetime.now(timezone.utc))

    console.print(Panel.fit(f"Linting {chart.chart_dir}", style="bold blue"))
    halted = False
    for stage in build_lint_stages(settings, chart):
        if halted:
            run.results.append(skipped(stage, "halted"))
            continue
        result, ctx = executor.execute(stage, ctx)
        run.results.append(result)
        halted = result.fatal_failure

    run.verdict = compute_verdict(run.results)
    run.finished_at = datetime.now(timezone.utc)
    return run

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

"""Scenario pipeline: the canonical stage list and the verdict rule.

Install and upgrade entries share one ordered stage list. The upgrade head
(install the prior release, diff it against the local chart, await it) is
guarded on the entry's scenario, so install entries record those stages as
skipped instead of omitting them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import datetime, timezone

from rich.panel import Panel

from chart_matrix import console, logger
from chart_matrix.backends import ApiValidator, HelmChart, ReleaseSource, TestSuiteRunner, fixture_action
from chart_matrix.config import MatrixEntry, OrchestratorSettings, derive_namespace, derive_release_name
from chart_matrix.constants import (
    STAGE_APPLY_FIXTURES,
    STAGE_AWAIT_LOCAL_CERT,
    STAGE_AWAIT_LOCAL_READY,
    STAGE_AWAIT_PRIOR_CERT,
    STAGE_AWAIT_PRIOR_READY,
    STAGE_COLLECT_DIAGNOSTICS,
    STAGE_DIFF,
    STAGE_INSTALL_LOCAL,
    STAGE_INSTALL_PRIOR,
    STAGE_RENDER,
    STAGE_RUN_TESTS,
    STAGE_VALIDATE,
)
from chart_matrix.diagnostics import DiagnosticsCollector
from chart_matrix.executor import StageExecutor, skipped
from chart_matrix.models import (
    CancelScope,
    FailurePolicy,
    PipelineContext,
    PipelineRun,
    ReadinessTarget,
    Stage,
    StageKind,
    StageResult,
    StageStatus,
    Verdict,
)
from chart_matrix.utils import read_chart_version


# ============================================================================
# Stage list
# ============================================================================

def build_stages(
    settings: OrchestratorSettings,
    chart: HelmChart,
    validator: ApiValidator,
    test_runner: TestSuiteRunner,
    release_source: ReleaseSource,
) -> list[Stage]:
    """Build the canonical stage list shared by every scenario.

    Args:
        settings: Global settings supplying deadlines, limits, and paths.
        chart: Builder for helm render/install/upgrade/diff actions.
        validator: Builder for the API validation action.
        test_runner: Builder for the test-suite action.
        release_source: Resolves the prior release version for upgrades.

    Returns:
        Stages in execution order. Diagnostics are not part of the list;
        ScenarioPipeline collects them after the verdict is fixed.
    """

    def is_upgrade(entry: MatrixEntry) -> bool:
        return entry.is_upgrade

    def wants_fixtures(entry: MatrixEntry) -> bool:
        return entry.create_test_resources

    def checks_cert(entry: MatrixEntry) -> bool:
        return bool(settings.cert_secret)

    def prior_cert_check(entry: MatrixEntry) -> bool:
        return entry.is_upgrade and checks_cert(entry)

    def resolve_versions(ctx: PipelineContext) -> PipelineContext:
        return ctx.evolve(
            prior_version=release_source.resolve_version(ctx.entry.upgrade_from),
            local_chart_version=read_chart_version(chart.chart_dir),
        )

    def workloads_ready(label: str):
        def build(ctx: PipelineContext) -> ReadinessTarget:
            return ReadinessTarget(
                name=f"{label} workloads in {ctx.namespace}",
                namespace=ctx.namespace,
                workloads=(),
                deadline=settings.readiness_deadline,
                max_restarts=settings.max_restarts,
                stable_window=settings.stable_window,
                poll_interval=settings.poll_interval,
            )
        return build

    def cert_acquired(label: str):
        def build(ctx: PipelineContext) -> ReadinessTarget:
            return ReadinessTarget(
                name=f"{label} certificate secret/{settings.cert_secret}",
                namespace=ctx.namespace,
                workloads=(f"secret/{settings.cert_secret}",),
                deadline=settings.cert_deadline,
                max_restarts=settings.max_restarts,
                poll_interval=settings.poll_interval,
            )
        return build

    return [
        Stage(STAGE_RENDER, StageKind.RENDER, action=chart.render_action),
        Stage(STAGE_VALIDATE, StageKind.LINT_VALIDATE, action=validator.validate_action),
        Stage(STAGE_INSTALL_PRIOR, StageKind.INSTALL_PRIOR_RELEASE, guard=is_upgrade,
              action=chart.install_action, resolve=resolve_versions),
        Stage(STAGE_DIFF, StageKind.DIFF, guard=is_upgrade, action=chart.diff_action),
        Stage(STAGE_AWAIT_PRIOR_READY, StageKind.AWAIT_READY, guard=is_upgrade,
              target=workloads_ready("prior release")),
        Stage(STAGE_AWAIT_PRIOR_CERT, StageKind.AWAIT_CERT, guard=prior_cert_check,
              target=cert_acquired("prior release")),
        Stage(STAGE_APPLY_FIXTURES, StageKind.APPLY_FIXTURE, guard=wants_fixtures,
              action=lambda ctx: fixture_action(settings, ctx)),
        Stage(STAGE_INSTALL_LOCAL, StageKind.INSTALL_LOCAL, action=chart.upgrade_action),
        Stage(STAGE_AWAIT_LOCAL_READY, StageKind.AWAIT_READY, target=workloads_ready("local chart")),
        Stage(STAGE_AWAIT_LOCAL_CERT, StageKind.AWAIT_CERT, guard=checks_cert,
              target=cert_acquired("local chart")),
        Stage(STAGE_RUN_TESTS, StageKind.RUN_TESTS, action=test_runner.run_action),
    ]


def _policy_for(stage: Stage, entry: MatrixEntry) -> Stage:
    """Relax the test-suite stage for entries that accept a failing suite."""
    if stage.kind is StageKind.RUN_TESTS and entry.accept_failure:
        return replace(stage, policy=FailurePolicy.TOLERANT)
    return stage


# ============================================================================
# Verdict
# ============================================================================

def compute_verdict(results: Iterable[StageResult], cancelled: bool = False) -> Verdict:
    """Reduce stage results to a pipeline verdict.

    ``cancelled`` wins over everything; otherwise any fatal failure means
    ``failed`` and a failure of only tolerant stages means ``failed-tolerated``.
    Diagnostics results are ignored.
    """
    if cancelled:
        return Verdict.CANCELLED
    relevant = [r for r in results if r.kind is not StageKind.COLLECT_DIAGNOSTICS]
    if any(r.fatal_failure for r in relevant):
        return Verdict.FAILED
    if any(r.failed for r in relevant):
        return Verdict.FAILED_TOLERATED
    return Verdict.PASSED


def make_context(
    settings: OrchestratorSettings,
    entry: MatrixEntry,
    cancel: CancelScope | None = None,
    env: Mapping[str, str] | None = None,
) -> PipelineContext:
    """Build the initial context for ``entry`` with its derived namespace and release."""
    return PipelineContext(
        entry=entry,
        namespace=derive_namespace(settings.namespace_prefix, entry.id),
        release_name=derive_release_name(settings.release_name, entry.id),
        env=dict(env or {}),
        cancel=cancel or CancelScope(),
    )


# ============================================================================
# Pipeline
# ============================================================================

class ScenarioPipeline:
    """Runs the stage list for one matrix entry, then collects diagnostics.

    Args:
        stages: Ordered stages, without the diagnostics stage.
        executor: Executes a single stage.
        diagnostics: Collects the post-run snapshot.
        settings: Global settings; supplies the diagnostics budgets.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        executor: StageExecutor,
        diagnostics: DiagnosticsCollector,
        settings: OrchestratorSettings,
    ) -> None:
        self._stages = list(stages)
        self._executor = executor
        self._diagnostics = diagnostics
        self._settings = settings

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    def run(self, ctx: PipelineContext, diagnostics_budget: float | None = None) -> PipelineRun:
        """Execute every stage in order for ``ctx.entry``.

        After a fatal failure the remaining stages are recorded as skipped
        with reason ``halted``; once the cancel scope fires they are skipped
        with reason ``cancelled``. Diagnostics are collected exactly once,
        after the verdict is fixed.

        Args:
            ctx: Initial context for the entry.
            diagnostics_budget: Seconds allowed for diagnostics; defaults to
                the grace budget once cancelled and no limit otherwise.

        Returns:
            The completed PipelineRun.
        """
        entry = ctx.entry
        run = PipelineRun(entry=entry, namespace=ctx.namespace, started_at=datetime.now(timezone.utc))
        title = f"{entry.id}: {entry.scenario.value} on {entry.cluster_version}"
        if entry.upgrade_from:
            title += f" (from {entry.upgrade_from})"
        console.print(Panel.fit(title, style="bold blue"))

        halted = False
        cancelled = False
        for stage in self._stages:
            stage = _policy_for(stage, entry)
            if not cancelled and ctx.cancel.cancelled:
                cancelled = True
            if cancelled:
                run.results.append(skipped(stage, "cancelled"))
                continue
            if halted:
                run.results.append(skipped(stage, "halted"))
                continue
            result, ctx = self._executor.execute(stage, ctx)
            run.results.append(result)
            if result.failed and ctx.cancel.cancelled:
                cancelled = True
            elif result.fatal_failure:
                halted = True

        run.verdict = compute_verdict(run.results, cancelled)
        budget = diagnostics_budget
        if budget is None and cancelled:
            budget = self._settings.diagnostics_grace
        run.diagnostics = self._diagnostics.collect(run, budget, env=ctx.env)
        run.results.append(_diagnostics_result(run))
        run.finished_at = datetime.now(timezone.utc)

        style = {
            Verdict.PASSED: "green",
            Verdict.FAILED_TOLERATED: "yellow",
            Verdict.CANCELLED: "magenta",
        }.get(run.verdict, "red")
        console.print(f"[{style}]{entry.id}: {run.verdict.value}[/{style}]")
        logger.info("%s finished: %s (first fatal stage: %s)", entry.id, run.verdict.value, run.first_fatal_stage)
        return run


def _diagnostics_result(run: PipelineRun) -> StageResult:
    bundle = run.diagnostics
    errors = bundle.errors if bundle else ()
    return StageResult(
        stage=STAGE_COLLECT_DIAGNOSTICS,
        kind=StageKind.COLLECT_DIAGNOSTICS,
        status=StageStatus.FAILED if errors else StageStatus.OK,
        policy=FailurePolicy.TOLERANT,
        output=str(bundle.directory) if bundle else "",
        error="; ".join(errors),
    )


def create_pipeline(
    settings: OrchestratorSettings,
    executor: StageExecutor,
    diagnostics: DiagnosticsCollector,
    release_source: ReleaseSource,
) -> ScenarioPipeline:
    """Wire the helm, validator, and test-suite builders into a pipeline."""
    stages = build_stages(
        settings,
        HelmChart(settings),
        ApiValidator(settings),
        TestSuiteRunner(settings),
        release_source,
    )
    return ScenarioPipeline(stages, executor, diagnostics, settings)

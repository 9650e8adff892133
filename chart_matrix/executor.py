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

"""Single-stage execution: guard, dispatch, and failure classification."""

from __future__ import annotations

import time

from chart_matrix import console, logger
from chart_matrix.errors import (
    ChartMatrixError,
    ExecutionError,
    PipelineCancelledError,
    ReadinessTimeoutError,
    RestartLimitError,
    ValidationError,
)
from chart_matrix.models import (
    FailurePolicy,
    PipelineContext,
    Stage,
    StageKind,
    StageResult,
    StageStatus,
)
from chart_matrix.runner import CommandRunner
from chart_matrix.waiter import ResourceWaiter

# Stages whose stdout is worth showing in the pipeline log.
_ECHO_OUTPUT_KINDS = (StageKind.DIFF, StageKind.RUN_TESTS)


def skipped(stage: Stage, reason: str) -> StageResult:
    """Build the result for a stage that did not run."""
    return StageResult(
        stage=stage.name,
        kind=stage.kind,
        status=StageStatus.SKIPPED,
        policy=stage.policy,
        skip_reason=reason,
    )


class StageExecutor:
    """Runs one stage through the CommandRunner or the ResourceWaiter.

    Args:
        runner: Boundary for action stages.
        waiter: Boundary for await stages.
    """

    def __init__(self, runner: CommandRunner, waiter: ResourceWaiter) -> None:
        self._runner = runner
        self._waiter = waiter

    def execute(self, stage: Stage, ctx: PipelineContext) -> tuple[StageResult, PipelineContext]:
        """Execute ``stage`` for the entry in ``ctx``.

        A stage whose guard rejects the entry is skipped without touching
        either boundary. Any orchestration error becomes a ``failed`` result;
        whether that halts the pipeline is decided by the stage's policy.

        Args:
            stage: Stage to run.
            ctx: Context produced by the previous stage.

        Returns:
            Tuple of (result, context for the next stage).
        """
        if not stage.guard(ctx.entry):
            logger.debug("%s: skipping %s (guard)", ctx.entry.id, stage.name)
            return skipped(stage, "guard"), ctx

        policy_note = " [dim](tolerant)[/dim]" if stage.policy is FailurePolicy.TOLERANT else ""
        console.print(f"[bold blue]\u25b6 {stage.name}[/bold blue]{policy_note}")
        start = time.monotonic()
        output = ""
        attempts = 0
        try:
            if stage.resolve is not None:
                ctx = stage.resolve(ctx)
            if stage.action is not None:
                output = self._run_action(stage, ctx)
            else:
                target = stage.target(ctx)
                attempts = self._waiter.wait(target, ctx.cancel)
        except ExecutionError as err:
            if stage.kind is StageKind.LINT_VALIDATE and not isinstance(err, ValidationError):
                err = ValidationError(err.action, err.exit_code, err.stdout, err.stderr, err.duration)
            return self._failed(stage, ctx, err, start, output=err.stdout + err.stderr), ctx
        except (ReadinessTimeoutError, RestartLimitError) as err:
            return self._failed(stage, ctx, err, start, attempts=err.attempts), ctx
        except ChartMatrixError as err:
            return self._failed(stage, ctx, err, start), ctx
        except Exception as err:
            logger.exception("%s: unexpected error in stage %s", ctx.entry.id, stage.name)
            return self._failed(stage, ctx, err, start), ctx

        elapsed = time.monotonic() - start
        if output and stage.kind in _ECHO_OUTPUT_KINDS:
            console.print(output, markup=False, highlight=False)
        console.print(f"[green]\u2705 {stage.name} ({elapsed:.1f}s)[/green]")
        result = StageResult(
            stage=stage.name,
            kind=stage.kind,
            status=StageStatus.OK,
            policy=stage.policy,
            output=output,
            duration=elapsed,
            attempts=attempts,
        )
        return result, ctx

    def _run_action(self, stage: Stage, ctx: PipelineContext) -> str:
        action = stage.action(ctx)
        timeout = ctx.cancel.clip(action.timeout)
        if ctx.cancel.cancelled or timeout == 0:
            raise PipelineCancelledError(f"Cancelled before {stage.name}")
        return self._runner.run(action.with_timeout(timeout)).stdout

    def _failed(
        self,
        stage: Stage,
        ctx: PipelineContext,
        err: Exception,
        start: float,
        *,
        output: str = "",
        attempts: int = 0,
    ) -> StageResult:
        elapsed = time.monotonic() - start
        label = type(err).__name__
        if stage.policy is FailurePolicy.TOLERANT:
            console.print(f"[yellow]\u26a0\ufe0f  {stage.name} failed, continuing: {label}: {err}[/yellow]")
        else:
            console.print(f"[red]\u274c {stage.name} failed: {label}: {err}[/red]")
        logger.info("%s: stage %s failed after %.1fs: %s", ctx.entry.id, stage.name, elapsed, err)
        return StageResult(
            stage=stage.name,
            kind=stage.kind,
            status=StageStatus.FAILED,
            policy=stage.policy,
            output=output,
            error=f"{label}: {err}",
            duration=elapsed,
            attempts=attempts,
        )

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

"""Stages, actions, results, and pipeline run records."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chart_matrix.config import MatrixEntry


# ============================================================================
# Enumerations
# ============================================================================

class Scenario(str, Enum):
    """Test path applied to a matrix entry."""

    INSTALL = "install"
    UPGRADE = "upgrade"


class StageKind(str, Enum):
    """Fixed vocabulary of stage kinds."""

    RENDER = "render"
    LINT_VALIDATE = "lint-validate"
    INSTALL_PRIOR_RELEASE = "install-prior-release"
    DIFF = "diff"
    AWAIT_READY = "await-ready"
    AWAIT_CERT = "await-cert"
    APPLY_FIXTURE = "apply-fixture"
    INSTALL_LOCAL = "install-local"
    RUN_TESTS = "run-tests"
    COLLECT_DIAGNOSTICS = "collect-diagnostics"


class FailurePolicy(str, Enum):
    """Whether a stage failure halts its pipeline."""

    FATAL = "fatal"
    TOLERANT = "tolerant"


class StageStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


class Verdict(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    FAILED_TOLERATED = "failed-tolerated"
    CANCELLED = "cancelled"


# ============================================================================
# External operations
# ============================================================================

@dataclass(frozen=True)
class Action:
    """An opaque external operation for the CommandRunner.

    Attributes:
        name: Short label used in logs and errors.
        argv: Program and arguments.
        cwd: Working directory, or None for the current one.
        env: Extra environment variables layered over the process environment.
        timeout: Maximum seconds the command may run, or None for no limit.
    """

    name: str
    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None

    def with_timeout(self, timeout: float | None) -> Action:
        return replace(self, timeout=timeout)

    def display(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class ActionOutput:
    """Captured result of a successful action."""

    exit_code: int
    stdout: str
    stderr: str
    duration: float


@dataclass(frozen=True)
class ReadinessTarget:
    """A named set of workloads to await.

    Attributes:
        name: Label for logs.
        namespace: Namespace holding the workloads.
        workloads: ``kind/name`` references; empty means every workload in the namespace.
        deadline: Seconds to wait before giving up.
        max_restarts: Highest restart count tolerated per workload.
        stable_window: Seconds readiness must hold before it counts.
        poll_interval: Seconds between polls.
    """

    name: str
    namespace: str
    workloads: tuple[str, ...]
    deadline: float
    max_restarts: int
    stable_window: float = 0.0
    poll_interval: float = 5.0


@dataclass(frozen=True)
class WorkloadStatus:
    """Snapshot returned by a readiness oracle."""

    ready: bool
    restart_counts: Mapping[str, int] = field(default_factory=dict)
    detail: str = ""


@dataclass(frozen=True)
class ClusterHandle:
    """A provisioned cluster and the environment that targets it."""

    name: str
    version: str
    env: Mapping[str, str] = field(default_factory=dict)


# ============================================================================
# Cancellation
# ============================================================================

@dataclass(frozen=True)
class CancelScope:
    """Shared cancellation signal with an optional absolute deadline.

    Attributes:
        event: Set when the matrix run is cancelled.
        deadline: ``time.monotonic()`` value after which work is cancelled, or None.
    """

    event: threading.Event = field(default_factory=threading.Event)
    deadline: float | None = None

    @property
    def cancelled(self) -> bool:
        if self.event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.event.set()
            return True
        return False

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def clip(self, timeout: float | None) -> float | None:
        """Shorten a timeout so it never runs past the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def sleep(self, seconds: float) -> None:
        """Sleep that wakes early when the scope is cancelled."""
        self.event.wait(seconds)


# ============================================================================
# Pipeline context and stages
# ============================================================================

@dataclass(frozen=True)
class PipelineContext:
    """Entry-scoped identifiers threaded from stage to stage.

    Attributes:
        entry: The matrix entry under test.
        namespace: Namespace derived for this entry.
        release_name: Helm release name inside ``namespace``.
        env: Environment targeting the entry's cluster (e.g. ``KUBECONFIG``).
        cancel: Cancellation scope shared with the matrix run.
        prior_version: Resolved chart version installed before an upgrade.
        local_chart_version: Version declared by the local chart.
    """

    entry: MatrixEntry
    namespace: str
    release_name: str
    env: Mapping[str, str] = field(default_factory=dict)
    cancel: CancelScope = field(default_factory=CancelScope)
    prior_version: str | None = None
    local_chart_version: str | None = None

    def evolve(self, **changes: Any) -> PipelineContext:
        return replace(self, **changes)


Guard = Callable[["MatrixEntry"], bool]
ActionBuilder = Callable[[PipelineContext], Action]
TargetBuilder = Callable[[PipelineContext], ReadinessTarget]
ContextResolver = Callable[[PipelineContext], PipelineContext]


def always(_entry: MatrixEntry) -> bool:
    return True


@dataclass(frozen=True)
class Stage:
    """One guarded, ordered unit of work.

    Exactly one of ``action`` and ``target`` is set: action stages run through
    the CommandRunner, await stages through the ResourceWaiter. ``resolve``
    runs first and may enrich the context for this and later stages.
    """

    name: str
    kind: StageKind
    guard: Guard = always
    policy: FailurePolicy = FailurePolicy.FATAL
    action: ActionBuilder | None = None
    target: TargetBuilder | None = None
    resolve: ContextResolver | None = None

    def __post_init__(self) -> None:
        if (self.action is None) == (self.target is None):
            raise ValueError(f"Stage '{self.name}' needs exactly one of action or target")


# ============================================================================
# Results
# ============================================================================

@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage execution."""

    stage: str
    kind: StageKind
    status: StageStatus
    policy: FailurePolicy = FailurePolicy.FATAL
    output: str = ""
    error: str = ""
    duration: float = 0.0
    attempts: int = 0
    skip_reason: str | None = None

    @property
    def failed(self) -> bool:
        return self.status is StageStatus.FAILED

    @property
    def fatal_failure(self) -> bool:
        return self.failed and self.policy is FailurePolicy.FATAL


@dataclass(frozen=True)
class DiagnosticsBundle:
    """Files gathered after a pipeline run.

    Attributes:
        directory: Directory holding the collected reports.
        files: Report files written, in collection order.
        errors: Collection steps that failed, as ``name: message``.
        debug_marker: Marker file enabling an interactive session, or None.
    """

    directory: Path
    files: tuple[Path, ...] = ()
    errors: tuple[str, ...] = ()
    debug_marker: Path | None = None


@dataclass
class PipelineRun:
    """One execution of a scenario pipeline against one matrix entry."""

    entry: MatrixEntry
    namespace: str
    results: list[StageResult] = field(default_factory=list)
    verdict: Verdict | None = None
    diagnostics: DiagnosticsBundle | None = None
    log: str = ""
    error: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def first_fatal_stage(self) -> str | None:
        for result in self.results:
            if result.fatal_failure:
                return result.stage
        return None

    @property
    def failed(self) -> bool:
        return self.verdict is Verdict.FAILED

    @property
    def duration(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def executed_stages(self) -> list[str]:
        """Names of stages that actually ran, in order."""
        return [r.stage for r in self.results if r.status is not StageStatus.SKIPPED]

    def result_for(self, stage: str) -> StageResult | None:
        return next((r for r in self.results if r.stage == stage), None)

    def summary(self) -> dict[str, Any]:
        """Serializable summary for the JSON report."""
        return {
            "id": self.entry.id,
            "cluster_version": self.entry.cluster_version,
            "scenario": self.entry.scenario.value,
            "upgrade_from": self.entry.upgrade_from,
            "namespace": self.namespace,
            "verdict": self.verdict.value if self.verdict else None,
            "first_fatal_stage": self.first_fatal_stage,
            "duration": round(self.duration, 3),
            "diagnostics": str(self.diagnostics.directory) if self.diagnostics else None,
            "error": self.error or None,
            "stages": [
                {
                    "name": r.stage,
                    "kind": r.kind.value,
                    "status": r.status.value,
                    "policy": r.policy.value,
                    "duration": round(r.duration, 3),
                    "attempts": r.attempts,
                    "skip_reason": r.skip_reason,
                    "error": r.error or None,
                }
                for r in self.results
            ],
        }

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

"""Readiness gates: poll an oracle until workloads are stably ready."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, stop_after_delay, wait_fixed

from chart_matrix import console, logger
from chart_matrix.errors import (
    ExecutionError,
    PipelineCancelledError,
    ReadinessTimeoutError,
    RestartLimitError,
)
from chart_matrix.models import CancelScope, ReadinessTarget, WorkloadStatus


class ReadinessOracle(Protocol):
    """Reports whether a set of workloads is ready and how often it restarted."""

    def status(self, namespace: str, workloads: tuple[str, ...]) -> WorkloadStatus: ...


class _NotReady(Exception):
    """Internal signal that another poll is needed."""


@dataclass
class _PollState:
    attempts: int = 0
    ready_since: float | None = None
    detail: str = ""


class ResourceWaiter:
    """Polls a readiness oracle at a fixed interval.

    Args:
        oracle: Source of workload readiness and restart counts.
        clock: Monotonic clock used for the stable window.
        sleep: Sleep function between polls; defaults to the cancel scope's
            interruptible sleep.
    """

    def __init__(
        self,
        oracle: ReadinessOracle,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._oracle = oracle
        self._clock = clock
        self._sleep = sleep

    def wait(self, target: ReadinessTarget, cancel: CancelScope | None = None) -> int:
        """Block until ``target`` is stably ready.

        Readiness is all-or-nothing across the named workloads and must hold
        for ``target.stable_window`` seconds. The restart limit is checked on
        every poll before readiness, so a crash-looping workload fails even if
        it happens to report ready.

        Args:
            target: Workloads, deadline, and restart limit to await.
            cancel: Cancellation scope; a cancelled scope aborts the wait.

        Returns:
            Number of polls used.

        Raises:
            RestartLimitError: If a workload exceeds ``target.max_restarts``.
            ReadinessTimeoutError: If the deadline elapses first.
            PipelineCancelledError: If ``cancel`` fires while waiting.
        """
        cancel = cancel or CancelScope()
        state = _PollState()
        max_attempts = max(1, math.floor(target.deadline / target.poll_interval) + 1)
        retrying = Retrying(
            stop=stop_after_attempt(max_attempts) | stop_after_delay(target.deadline),
            wait=wait_fixed(target.poll_interval),
            retry=retry_if_exception_type(_NotReady),
            sleep=self._sleep or cancel.sleep,
        )
        console.print(f"[yellow]\u2139\ufe0f  Waiting for {target.name} (timeout {target.deadline:g}s)...[/yellow]")
        try:
            for attempt in retrying:
                with attempt:
                    state.attempts = attempt.retry_state.attempt_number
                    self._poll(target, cancel, state)
        except RetryError as err:
            raise ReadinessTimeoutError(
                f"{target.name} not ready after {target.deadline:g}s ({state.detail or 'no status'})",
                state.attempts,
            ) from err
        console.print(f"[green]\u2705 {target.name} ready after {state.attempts} poll(s)[/green]")
        return state.attempts

    def _poll(self, target: ReadinessTarget, cancel: CancelScope, state: _PollState) -> None:
        if cancel.cancelled:
            raise PipelineCancelledError(f"Cancelled while waiting for {target.name}")
        try:
            status = self._oracle.status(target.namespace, target.workloads)
        except ExecutionError as err:
            state.ready_since = None
            state.detail = str(err)
            logger.debug("%s poll %d failed: %s", target.name, state.attempts, err)
            raise _NotReady(state.detail) from err

        for workload, restarts in status.restart_counts.items():
            if restarts > target.max_restarts:
                raise RestartLimitError(workload, restarts, target.max_restarts, state.attempts)

        state.detail = status.detail
        if not status.ready:
            state.ready_since = None
            raise _NotReady(status.detail)

        now = self._clock()
        if state.ready_since is None:
            state.ready_since = now
        if now - state.ready_since < target.stable_window:
            raise _NotReady(f"ready for {now - state.ready_since:g}s of {target.stable_window:g}s")

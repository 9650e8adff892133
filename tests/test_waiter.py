"""Tests for readiness polling."""

from __future__ import annotations

import pytest

from chart_matrix.errors import ExecutionError, PipelineCancelledError, ReadinessTimeoutError, RestartLimitError
from chart_matrix.models import CancelScope, ReadinessTarget, WorkloadStatus
from chart_matrix.waiter import ResourceWaiter

from tests.fakes import FakeClock, FakeOracle

READY = WorkloadStatus(ready=True, detail="all ready")
NOT_READY = WorkloadStatus(ready=False, detail="waiting for deploy/hub")


def _target(**overrides) -> ReadinessTarget:
    values = dict(
        name="hub",
        namespace="ct-test",
        workloads=("deploy/hub",),
        deadline=5,
        max_restarts=1,
        stable_window=0,
        poll_interval=1,
    )
    values.update(overrides)
    return ReadinessTarget(**values)


def _waiter(oracle: FakeOracle, clock: FakeClock) -> ResourceWaiter:
    return ResourceWaiter(oracle, clock=clock.monotonic, sleep=clock.sleep)


class TestResourceWaiter:
    def test_returns_after_first_ready_poll(self, clock: FakeClock) -> None:
        """Should return one attempt when the first poll is ready."""
        oracle = FakeOracle([READY])
        assert _waiter(oracle, clock).wait(_target()) == 1
        assert oracle.calls == [("ct-test", ("deploy/hub",))]
        assert clock.sleeps == []

    def test_polls_until_ready(self, clock: FakeClock) -> None:
        """Should keep polling at the fixed interval until ready."""
        oracle = FakeOracle([NOT_READY, NOT_READY, READY])
        assert _waiter(oracle, clock).wait(_target()) == 3
        assert clock.sleeps == [1, 1]

    def test_times_out_when_never_ready(self, clock: FakeClock) -> None:
        """Should raise ReadinessTimeoutError once the deadline's polls are used up."""
        oracle = FakeOracle([NOT_READY])
        with pytest.raises(ReadinessTimeoutError) as excinfo:
            _waiter(oracle, clock).wait(_target(deadline=5, poll_interval=1))
        assert excinfo.value.attempts == 6
        assert "waiting for deploy/hub" in str(excinfo.value)

    def test_restart_limit_takes_precedence_over_readiness(self, clock: FakeClock) -> None:
        """Should raise RestartLimitError even when the workload reports ready."""
        oracle = FakeOracle([WorkloadStatus(ready=True, restart_counts={"pod/hub-abc": 2})])
        with pytest.raises(RestartLimitError) as excinfo:
            _waiter(oracle, clock).wait(_target(max_restarts=1))
        assert excinfo.value.workload == "pod/hub-abc"
        assert excinfo.value.restarts == 2
        assert excinfo.value.attempts == 1

    def test_restarts_at_limit_are_tolerated(self, clock: FakeClock) -> None:
        """Should pass when the restart count equals the limit."""
        oracle = FakeOracle([WorkloadStatus(ready=True, restart_counts={"pod/hub-abc": 1})])
        assert _waiter(oracle, clock).wait(_target(max_restarts=1)) == 1

    def test_readiness_must_hold_for_stable_window(self, clock: FakeClock) -> None:
        """Should only pass once readiness has held for the stable window."""
        oracle = FakeOracle([READY])
        assert _waiter(oracle, clock).wait(_target(stable_window=3)) == 4

    def test_flapping_readiness_restarts_stable_window(self, clock: FakeClock) -> None:
        """Should restart the stable window when readiness drops."""
        oracle = FakeOracle([READY, NOT_READY, READY])
        assert _waiter(oracle, clock).wait(_target(stable_window=2)) == 5

    def test_oracle_errors_count_as_not_ready(self, clock: FakeClock) -> None:
        """Should treat a failing status query as not ready and keep polling."""
        oracle = FakeOracle([ExecutionError("kubectl-get", 1, stderr="connection refused"), READY])
        assert _waiter(oracle, clock).wait(_target()) == 2

    def test_cancelled_scope_aborts_wait(self, clock: FakeClock) -> None:
        """Should raise PipelineCancelledError when the scope is already cancelled."""
        cancel = CancelScope()
        cancel.event.set()
        with pytest.raises(PipelineCancelledError):
            _waiter(FakeOracle([READY]), clock).wait(_target(), cancel)

    def test_cancellation_during_polling(self, clock: FakeClock) -> None:
        """Should stop polling at the next attempt after cancellation."""
        cancel = CancelScope()
        clock.on_sleep = cancel.event.set
        oracle = FakeOracle([NOT_READY])
        with pytest.raises(PipelineCancelledError):
            _waiter(oracle, clock).wait(_target(), cancel)
        assert len(oracle.calls) == 1

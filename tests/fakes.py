"""In-memory fakes for the command runner, readiness oracle, and clock."""

from __future__ import annotations

import threading
import typing as typ
from collections.abc import Callable, Iterable

from chart_matrix.diagnostics import DiagnosticsCollector
from chart_matrix.errors import ExecutionError
from chart_matrix.models import Action, ActionOutput, DiagnosticsBundle, PipelineRun, WorkloadStatus

if typ.TYPE_CHECKING:
    from collections.abc import Mapping


class FakeCommandRunner:
    """Records actions and fails those matched by ``fail``."""

    def __init__(
        self,
        fail: Callable[[Action], bool] | None = None,
        outputs: Mapping[str, str] | None = None,
        on_run: Callable[[Action], None] | None = None,
    ) -> None:
        self.fail = fail or (lambda action: False)
        self.outputs = dict(outputs or {})
        self.on_run = on_run
        self.actions: list[Action] = []
        self._lock = threading.Lock()

    def run(self, action: Action) -> ActionOutput:
        with self._lock:
            self.actions.append(action)
        if self.on_run is not None:
            self.on_run(action)
        if self.fail(action):
            raise ExecutionError(action.name, 1, stdout="", stderr=f"{action.name} failed\n")
        return ActionOutput(exit_code=0, stdout=self.outputs.get(action.name, ""), stderr="", duration=0.0)

    def names(self) -> list[str]:
        with self._lock:
            return [a.name for a in self.actions]


def failing(*names: str, namespace: str | None = None) -> Callable[[Action], bool]:
    """Predicate failing actions by name, optionally only for one namespace."""

    def predicate(action: Action) -> bool:
        if action.name not in names:
            return False
        return namespace is None or namespace in action.argv or namespace in " ".join(action.argv)

    return predicate


class FakeOracle:
    """Returns scripted statuses in order, repeating the last one."""

    def __init__(self, statuses: Iterable[WorkloadStatus | Exception] | None = None) -> None:
        self.statuses = list(statuses or [WorkloadStatus(ready=True)])
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self._lock = threading.Lock()

    def status(self, namespace: str, workloads: tuple[str, ...]) -> WorkloadStatus:
        with self._lock:
            self.calls.append((namespace, workloads))
            index = min(len(self.calls), len(self.statuses)) - 1
        item = self.statuses[index]
        if isinstance(item, Exception):
            raise item
        return item


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep: Callable[[], None] | None = None

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep()


class SpyDiagnostics(DiagnosticsCollector):
    """DiagnosticsCollector that records each call."""

    def __init__(self, *args: typ.Any, **kwargs: typ.Any) -> None:
        super().__init__(*args, **kwargs)
        self.calls: list[tuple[str, float | None]] = []

    def collect(self, run: PipelineRun, budget: float | None = None, env=None) -> DiagnosticsBundle:
        self.calls.append((run.entry.id, budget))
        return super().collect(run, budget, env)



"""Shared fixtures for orchestrator tests."""

from __future__ import annotations

import typing as typ
from collections.abc import Callable

import pytest

from chart_matrix.backends import ApiValidator, HelmChart, PinnedReleaseSource, TestSuiteRunner
from chart_matrix.config import MatrixEntry, OrchestratorSettings
from chart_matrix.executor import StageExecutor
from chart_matrix.pipeline import ScenarioPipeline, build_stages
from chart_matrix.waiter import ResourceWaiter
from tests.fakes import FakeClock, FakeCommandRunner, FakeOracle, SpyDiagnostics

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def settings(tmp_path: Path) -> OrchestratorSettings:
    return OrchestratorSettings(
        diagnostics_dir=tmp_path / "diagnostics",
        chart_path=str(tmp_path / "chart"),
        poll_interval=1,
        readiness_deadline=5,
        cert_deadline=3,
        stable_window=0,
        max_restarts=1,
        diagnostics_grace=7,
        concurrency_limit=2,
    )


@pytest.fixture
def runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def waiter(oracle: FakeOracle, clock: FakeClock) -> ResourceWaiter:
    return ResourceWaiter(oracle, clock=clock.monotonic, sleep=clock.sleep)


@pytest.fixture
def release_source() -> PinnedReleaseSource:
    return PinnedReleaseSource({"stable": "3.3.8", "dev": "4.0.0-0.dev.git.7001.h7a1c4b2"})


@pytest.fixture
def make_pipeline(
    settings: OrchestratorSettings,
    release_source: PinnedReleaseSource,
    tmp_path: Path,
) -> Callable[..., tuple[ScenarioPipeline, SpyDiagnostics]]:
    """Build a real pipeline over the given fake runner and waiter."""

    def build(runner: FakeCommandRunner, waiter: ResourceWaiter) -> tuple[ScenarioPipeline, SpyDiagnostics]:
        stages = build_stages(
            settings,
            HelmChart(settings, base_dir=tmp_path),
            ApiValidator(settings, base_dir=tmp_path),
            TestSuiteRunner(settings),
            release_source,
        )
        diagnostics = SpyDiagnostics(runner, settings)
        return ScenarioPipeline(stages, StageExecutor(runner, waiter), diagnostics, settings), diagnostics

    return build


@pytest.fixture
def install_entry() -> MatrixEntry:
    return MatrixEntry(cluster_version="v1.28", scenario="install")


@pytest.fixture
def upgrade_entry() -> MatrixEntry:
    return MatrixEntry(cluster_version="v1.28", scenario="upgrade", upgrade_from="stable")

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

"""Wires runners, oracles, and pipelines together for the CLI commands."""

from __future__ import annotations

from pathlib import Path

from chart_matrix import console
from chart_matrix.backends import (
    K3dProvisioner,
    KubectlReadinessOracle,
    PinnedReleaseSource,
    ReleaseMetadataSource,
    ReleaseSource,
    StaticReadinessOracle,
    require_helm_plugin,
)
from chart_matrix.config import MatrixEntry, OrchestratorSettings, check_unique_names
from chart_matrix.constants import UPGRADE_CHANNELS
from chart_matrix.diagnostics import DiagnosticsCollector
from chart_matrix.executor import StageExecutor
from chart_matrix.matrix import MatrixRunner, PipelineFactory
from chart_matrix.models import ClusterHandle, PipelineRun, Scenario
from chart_matrix.pipeline import ScenarioPipeline, create_pipeline
from chart_matrix.report import exit_code, render_report, write_json_report
from chart_matrix.runner import CommandRunner, DryRunCommandRunner, ShellCommandRunner
from chart_matrix.utils import require_command
from chart_matrix.waiter import ResourceWaiter

DRY_RUN_VERSION = "0.0.0-dry-run"


def make_pipeline_factory(
    settings: OrchestratorSettings,
    runner: CommandRunner,
    release_source: ReleaseSource,
    *,
    dry_run: bool = False,
) -> PipelineFactory:
    """Return a factory building one pipeline per entry and cluster.

    Each pipeline gets its own readiness oracle so kubectl targets the
    cluster provisioned for that entry.
    """

    def factory(entry: MatrixEntry, handle: ClusterHandle | None) -> ScenarioPipeline:
        env = dict(handle.env) if handle else {}
        oracle = StaticReadinessOracle() if dry_run else KubectlReadinessOracle(runner, env)
        executor = StageExecutor(runner, ResourceWaiter(oracle))
        return create_pipeline(settings, executor, DiagnosticsCollector(runner, settings), release_source)

    return factory


def _check_prerequisites(runner: CommandRunner, entries: list[MatrixEntry], provision: bool) -> None:
    """Check required CLI tools, and the helm diff plugin when upgrades will run."""
    for cmd in ("helm", "kubectl", *(("k3d",) if provision else ())):
        require_command(cmd)
    if any(entry.scenario is Scenario.UPGRADE for entry in entries):
        require_helm_plugin(runner, "diff")


def run_matrix(
    settings: OrchestratorSettings,
    entries: list[MatrixEntry],
    *,
    dry_run: bool = False,
    provision: bool = False,
    report_path: Path | None = None,
) -> int:
    """Run the matrix, print the report, and return the aggregate exit code.

    Args:
        settings: Resolved settings.
        entries: Entries to run.
        dry_run: Record commands instead of running them; readiness always passes.
        provision: Create a k3d cluster per entry instead of using the current context.
        report_path: Where to write the JSON report, or None to skip it.

    Returns:
        Exit code per :func:`chart_matrix.report.exit_code`.

    Raises:
        MatrixConfigError: If two entries would share a namespace or release.
        RuntimeError: If a required command or helm plugin is missing.
    """
    check_unique_names(entries, settings)
    if dry_run:
        # Readiness is static in dry runs; a stable window would only sleep.
        settings = settings.model_copy(update={"stable_window": 0})
        runner: CommandRunner = DryRunCommandRunner()
        release_source: ReleaseSource = PinnedReleaseSource({c: DRY_RUN_VERSION for c in UPGRADE_CHANNELS})
        if provision:
            console.print("[yellow]\u26a0\ufe0f  --provision is ignored in dry-run mode[/yellow]")
            provision = False
    else:
        runner = ShellCommandRunner()
        _check_prerequisites(runner, entries, provision)
        release_source = ReleaseMetadataSource(settings.release_info_url, settings.chart_name)

    matrix = MatrixRunner(
        settings,
        make_pipeline_factory(settings, runner, release_source, dry_run=dry_run),
        provisioner=K3dProvisioner() if provision else None,
    )
    runs: list[PipelineRun] = list(matrix.iter_runs(entries))

    render_report(runs)
    if report_path is not None:
        write_json_report(runs, report_path)
    return exit_code(runs)

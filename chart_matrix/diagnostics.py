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

"""Post-run namespace snapshots and the debug-on-failure marker."""

from __future__ import annotations

import time
from collections.abc import Mapping
from pathlib import Path

from chart_matrix import console, logger
from chart_matrix.config import OrchestratorSettings
from chart_matrix.constants import DEBUG_MARKER_NAME
from chart_matrix.errors import ExecutionError
from chart_matrix.models import Action, DiagnosticsBundle, PipelineRun, Verdict
from chart_matrix.runner import CommandRunner

_LOG_TAIL_LINES = 500


def _report_name(name: str) -> str:
    return name.replace("/", "-") + ".txt"


class DiagnosticsCollector:
    """Writes a snapshot of an entry's namespace after its pipeline ends.

    Reports are written for every verdict so passing and failing runs can be
    compared. Nothing here raises: command failures and filesystem errors
    are recorded in the returned bundle.

    Args:
        runner: Runs the kubectl and helm commands.
        settings: Supplies the diagnostics directory, important workloads,
            and the per-command timeout.
    """

    def __init__(self, runner: CommandRunner, settings: OrchestratorSettings) -> None:
        self._runner = runner
        self._settings = settings

    def _commands(self, namespace: str) -> list[tuple[str, tuple[str, ...]]]:
        commands = [
            ("get-all", ("kubectl", "get", "all", "--namespace", namespace, "-o", "wide")),
            ("events", ("kubectl", "get", "events", "--namespace", namespace, "--sort-by=.lastTimestamp")),
        ]
        for workload in self._settings.important_workloads:
            commands.append((f"describe-{workload}", ("kubectl", "describe", workload, "--namespace", namespace)))
            commands.append((
                f"logs-{workload}",
                ("kubectl", "logs", workload, "--namespace", namespace, "--all-containers",
                 f"--tail={_LOG_TAIL_LINES}"),
            ))
        commands.append(("helm-list", ("helm", "list", "--namespace", namespace, "--all")))
        return commands

    def collect(
        self,
        run: PipelineRun,
        budget: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> DiagnosticsBundle:
        """Collect the namespace report for ``run``.

        Args:
            run: Pipeline run whose verdict is already fixed.
            budget: Total seconds for the whole collection, or None for no
                limit beyond the per-command timeout. Cancelled runs pass the
                shortened grace budget here.
            env: Environment targeting the entry's cluster.

        Returns:
            Bundle describing the files written and any collection errors.
        """
        directory = Path(self._settings.diagnostics_dir) / run.entry.id
        files: list[Path] = []
        errors: list[str] = []
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            logger.warning("Cannot create diagnostics directory %s: %s", directory, err)
            return DiagnosticsBundle(directory=directory, errors=(f"mkdir: {err}",))

        deadline = time.monotonic() + budget if budget is not None else None
        for name, argv in self._commands(run.namespace):
            timeout: float | None = self._settings.command_timeout
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    errors.append(f"{name}: diagnostics budget exhausted")
                    continue
                timeout = min(timeout, remaining)
            action = Action(name=f"diagnostics-{name}", argv=argv, env=dict(env or {}), timeout=timeout)
            try:
                output = self._runner.run(action).stdout
            except ExecutionError as err:
                errors.append(f"{name}: {err}")
                output = err.stdout + err.stderr
                if not output:
                    continue
            try:
                path = directory / _report_name(name)
                path.write_text(output)
                files.append(path)
            except OSError as err:
                errors.append(f"{name}: {err}")

        marker = None
        if run.verdict is Verdict.FAILED and run.entry.debuggable:
            try:
                marker = self._write_debug_marker(directory, run, env or {})
            except OSError as err:
                errors.append(f"debug-marker: {err}")

        if errors:
            console.print(f"[yellow]\u26a0\ufe0f  Diagnostics for {run.entry.id} incomplete "
                          f"({len(errors)} error(s))[/yellow]")
        console.print(f"[yellow]\u2139\ufe0f  Diagnostics for {run.entry.id} written to {directory}[/yellow]")
        return DiagnosticsBundle(directory=directory, files=tuple(files), errors=tuple(errors), debug_marker=marker)

    def _write_debug_marker(self, directory: Path, run: PipelineRun, env: Mapping[str, str]) -> Path:
        """Leave instructions for opening an interactive session on the failed entry."""
        lines = [
            f"entry: {run.entry.id}",
            f"namespace: {run.namespace}",
            f"first_fatal_stage: {run.first_fatal_stage}",
        ]
        kubeconfig = env.get("KUBECONFIG")
        if kubeconfig:
            lines.append(f"export KUBECONFIG={kubeconfig}")
        lines += [
            f"kubectl config set-context --current --namespace={run.namespace}",
            "kubectl get pods",
            f"helm list --namespace {run.namespace}",
        ]
        marker = directory / DEBUG_MARKER_NAME
        marker.write_text("\n".join(lines) + "\n")
        console.print(f"[yellow]\u2139\ufe0f  Debug session marker left at {marker}[/yellow]")
        return marker

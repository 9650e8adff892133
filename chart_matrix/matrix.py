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

"""Matrix runner: bounded-parallel, isolated execution of every entry."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone

from rich.panel import Panel

from chart_matrix import console, logger
from chart_matrix.backends import ClusterProvisioner
from chart_matrix.config import MatrixEntry, OrchestratorSettings, derive_namespace
from chart_matrix.models import CancelScope, ClusterHandle, PipelineRun, Verdict
from chart_matrix.pipeline import ScenarioPipeline, make_context

PipelineFactory = Callable[[MatrixEntry, "ClusterHandle | None"], ScenarioPipeline]


class MatrixRunner:
    """Runs one ScenarioPipeline per entry on a bounded thread pool.

    A failure or crash in one entry never reaches its siblings. The overall
    deadline sets a shared cancel event: in-flight pipelines stop at their
    next poll or command, and entries that have not started are reported
    ``cancelled``.

    Args:
        settings: Supplies the concurrency limit and overall deadline.
        pipeline_factory: Builds the pipeline for an entry, given the cluster
            provisioned for it (None when clusters are not provisioned).
        provisioner: Creates one cluster per entry and tears it down after
            the run, or None to use the ambient cluster.
    """

    def __init__(
        self,
        settings: OrchestratorSettings,
        pipeline_factory: PipelineFactory,
        provisioner: ClusterProvisioner | None = None,
    ) -> None:
        self._settings = settings
        self._factory = pipeline_factory
        self._provisioner = provisioner
        self._event = threading.Event()

    def cancel(self) -> None:
        """Cancel the current matrix run as if its deadline had expired."""
        self._event.set()

    def iter_runs(self, entries: Iterable[MatrixEntry]) -> Iterator[PipelineRun]:
        """Yield completed runs lazily, in completion order.

        Each pipeline's console output is buffered on its worker thread and
        printed as one block when the pipeline completes.

        Args:
            entries: Entries to run; ids must be unique.

        Yields:
            One PipelineRun per entry.
        """
        entries = list(entries)
        self._event = threading.Event()
        cancel = CancelScope(event=self._event, deadline=time.monotonic() + self._settings.overall_deadline)
        timer = threading.Timer(self._settings.overall_deadline, self._event.set)
        timer.daemon = True
        timer.start()

        console.print(Panel.fit(
            f"Running {len(entries)} entries (concurrency {self._settings.concurrency_limit})",
            style="bold blue",
        ))
        try:
            with ThreadPoolExecutor(max_workers=self._settings.concurrency_limit) as executor:
                futures = {executor.submit(self._run_buffered, entry, cancel): entry for entry in entries}
                try:
                    for future in as_completed(futures):
                        run = future.result()
                        if run.log:
                            console.print(run.log, end="")
                        yield run
                except KeyboardInterrupt:
                    console.print("[yellow]\u26a0\ufe0f  Interrupted, cancelling remaining pipelines...[/yellow]")
                    self._event.set()
                    raise
        finally:
            timer.cancel()

    def run_all(self, entries: Iterable[MatrixEntry]) -> dict[str, PipelineRun]:
        """Run every entry to completion.

        Returns:
            Mapping of entry id to its PipelineRun, in completion order.
        """
        return {run.entry.id: run for run in self.iter_runs(entries)}

    def _run_buffered(self, entry: MatrixEntry, cancel: CancelScope) -> PipelineRun:
        with console.buffered() as buf:
            run = self._run_entry(entry, cancel)
        run.log = buf.getvalue()
        return run

    def _run_entry(self, entry: MatrixEntry, cancel: CancelScope) -> PipelineRun:
        handle: ClusterHandle | None = None
        run: PipelineRun | None = None
        try:
            if cancel.cancelled:
                return self._not_started(entry, cancel)
            if self._provisioner is not None:
                handle = self._provisioner.provision(entry.cluster_version)
            pipeline = self._factory(entry, handle)
            ctx = make_context(self._settings, entry, cancel, env=handle.env if handle else None)
            run = pipeline.run(ctx)
        except Exception as err:
            logger.exception("Pipeline for %s crashed", entry.id)
            console.print(f"[red]\u274c {entry.id} crashed: {err}[/red]")
            run = self._crashed(entry, err)
        finally:
            if handle is not None:
                try:
                    self._provisioner.teardown(handle)
                except Exception as err:
                    logger.warning("Teardown of %s for %s failed: %s", handle.name, entry.id, err)
                    if run is not None:
                        run.error = run.error or f"teardown failed: {err}"
        return run

    def _namespace(self, entry: MatrixEntry) -> str:
        return derive_namespace(self._settings.namespace_prefix, entry.id)

    def _crashed(self, entry: MatrixEntry, err: Exception) -> PipelineRun:
        now = datetime.now(timezone.utc)
        return PipelineRun(
            entry=entry,
            namespace=self._namespace(entry),
            verdict=Verdict.FAILED,
            error=f"{type(err).__name__}: {err}",
            started_at=now,
            finished_at=now,
        )

    def _not_started(self, entry: MatrixEntry, cancel: CancelScope) -> PipelineRun:
        # Stages are all skipped as cancelled; diagnostics get a zero budget.
        console.print(f"[magenta]{entry.id}: cancelled before it started[/magenta]")
        pipeline = self._factory(entry, None)
        run = pipeline.run(make_context(self._settings, entry, cancel), diagnostics_budget=0)
        run.error = "not started before the overall deadline"
        return run

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

"""Exception taxonomy for stage, pipeline, and matrix failures."""

from __future__ import annotations


class ChartMatrixError(Exception):
    """Base class for all orchestration errors."""


class MatrixConfigError(ChartMatrixError):
    """The matrix file or an entry in it is invalid."""


class ExecutionError(ChartMatrixError):
    """An external command exited non-zero, timed out, or could not start.

    Attributes:
        action: Name of the action that failed.
        exit_code: Process exit code (124 for timeouts, 127 for missing commands).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration: Seconds spent before the failure.
    """

    def __init__(
        self,
        action: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        duration: float = 0.0,
    ) -> None:
        self.action = action
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.duration = duration
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr"
        super().__init__(f"{action} exited with code {exit_code}: {detail}")


class ValidationError(ExecutionError):
    """Rendered manifests were rejected by linting or API validation."""


class ReadinessTimeoutError(ChartMatrixError):
    """Workloads did not become stably ready before the deadline.

    Attributes:
        attempts: Number of polls made before giving up.
    """

    def __init__(self, message: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(message)


class RestartLimitError(ChartMatrixError):
    """A workload restarted more often than allowed while becoming ready.

    Attributes:
        workload: Name of the offending workload.
        restarts: Observed restart count.
        attempts: Number of polls made before the limit tripped.
    """

    def __init__(self, workload: str, restarts: int, limit: int, attempts: int) -> None:
        self.workload = workload
        self.restarts = restarts
        self.attempts = attempts
        super().__init__(f"{workload} restarted {restarts} times (limit {limit})")


class PipelineCancelledError(ChartMatrixError):
    """The overall deadline expired or the matrix run was cancelled."""


class ReleaseMetadataError(ChartMatrixError):
    """The published release metadata could not be read or lacks a channel."""

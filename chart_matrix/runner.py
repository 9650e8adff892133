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

"""Command runners: the single boundary to external tools."""

from __future__ import annotations

import os
import threading
import time
from typing import Protocol

import sh

from chart_matrix import logger
from chart_matrix.constants import EXIT_NOT_FOUND, EXIT_TIMEOUT
from chart_matrix.errors import ExecutionError
from chart_matrix.models import Action, ActionOutput


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


class CommandRunner(Protocol):
    """Runs one external action and reports its captured output.

    Implementations convert every non-zero exit, timeout, or launch failure
    into :class:`ExecutionError`; nothing else may escape.
    """

    def run(self, action: Action) -> ActionOutput: ...


class ShellCommandRunner:
    """CommandRunner backed by ``sh``."""

    def run(self, action: Action) -> ActionOutput:
        """Run ``action`` and capture its output.

        Args:
            action: Action to execute.

        Returns:
            Captured output of a zero-exit run.

        Raises:
            ExecutionError: On non-zero exit, timeout, or a missing executable.
        """
        program, *args = action.argv
        env = {**os.environ, **action.env}
        logger.debug("Running %s: %s", action.name, action.display())
        start = time.monotonic()
        try:
            command = sh.Command(program)
            result = command(
                *args,
                _cwd=action.cwd,
                _env=env,
                _timeout=action.timeout,
                _return_cmd=True,
            )
        except sh.CommandNotFound as err:
            raise ExecutionError(
                action.name, EXIT_NOT_FOUND, stderr=f"command not found: {err}",
                duration=time.monotonic() - start,
            ) from err
        except sh.TimeoutException as err:
            raise ExecutionError(
                action.name, EXIT_TIMEOUT, stderr=f"timed out after {action.timeout:g}s",
                duration=time.monotonic() - start,
            ) from err
        except sh.ErrorReturnCode as err:
            raise ExecutionError(
                action.name, err.exit_code, _decode(err.stdout), _decode(err.stderr),
                duration=time.monotonic() - start,
            ) from err
        return ActionOutput(
            exit_code=result.exit_code,
            stdout=_decode(result.stdout),
            stderr=_decode(result.stderr),
            duration=time.monotonic() - start,
        )


class DryRunCommandRunner:
    """CommandRunner that records actions and succeeds without running them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.actions: list[Action] = []

    def run(self, action: Action) -> ActionOutput:
        with self._lock:
            self.actions.append(action)
        logger.info("[dry-run] %s: %s", action.name, action.display())
        return ActionOutput(exit_code=0, stdout="", stderr="", duration=0.0)

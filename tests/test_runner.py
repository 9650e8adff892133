"""Tests for the command runners."""

from __future__ import annotations

import pytest

from chart_matrix.constants import EXIT_NOT_FOUND, EXIT_TIMEOUT
from chart_matrix.errors import ExecutionError
from chart_matrix.models import Action
from chart_matrix.runner import DryRunCommandRunner, ShellCommandRunner


class TestShellCommandRunner:
    def test_captures_stdout(self) -> None:
        """Should return the command's output on success."""
        output = ShellCommandRunner().run(Action(name="echo", argv=("echo", "hello")))
        assert output.exit_code == 0
        assert output.stdout == "hello\n"

    def test_layers_env_over_process_env(self) -> None:
        """Should expose the action's env to the command."""
        action = Action(name="env", argv=("sh", "-c", "echo $CHART_MATRIX_MARKER"), env={"CHART_MATRIX_MARKER": "k3d"})
        assert ShellCommandRunner().run(action).stdout.strip() == "k3d"

    def test_runs_in_cwd(self, tmp_path) -> None:
        """Should run the command in the action's working directory."""
        output = ShellCommandRunner().run(Action(name="pwd", argv=("pwd",), cwd=str(tmp_path)))
        assert output.stdout.strip() == str(tmp_path.resolve())

    def test_nonzero_exit(self) -> None:
        """Should raise ExecutionError with the exit code and stderr."""
        action = Action(name="fail", argv=("sh", "-c", "echo broken >&2; exit 3"))
        with pytest.raises(ExecutionError) as exc_info:
            ShellCommandRunner().run(action)
        assert exc_info.value.exit_code == 3
        assert exc_info.value.action == "fail"
        assert "broken" in exc_info.value.stderr
        assert str(exc_info.value) == "fail exited with code 3: broken"

    def test_missing_command(self) -> None:
        """Should map a missing executable to exit code 127."""
        with pytest.raises(ExecutionError) as exc_info:
            ShellCommandRunner().run(Action(name="ghost", argv=("chart-matrix-no-such-binary",)))
        assert exc_info.value.exit_code == EXIT_NOT_FOUND

    def test_timeout(self) -> None:
        """Should map a timed-out command to exit code 124."""
        with pytest.raises(ExecutionError) as exc_info:
            ShellCommandRunner().run(Action(name="slow", argv=("sleep", "5"), timeout=0.2))
        assert exc_info.value.exit_code == EXIT_TIMEOUT
        assert "timed out" in str(exc_info.value)


class TestDryRunCommandRunner:
    def test_records_without_running(self) -> None:
        """Should record each action and report success."""
        runner = DryRunCommandRunner()
        output = runner.run(Action(name="ghost", argv=("chart-matrix-no-such-binary",)))
        assert output.exit_code == 0
        assert [a.name for a in runner.actions] == ["ghost"]

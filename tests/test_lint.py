"""Tests for the chart lint job."""

from __future__ import annotations

from chart_matrix.backends import HelmChart
from chart_matrix.lint import LINT_ENTRY_ID, run_lint
from chart_matrix.models import StageStatus, Verdict

from tests.fakes import FakeCommandRunner, failing


class TestRunLint:
    def test_all_checks_pass(self, settings, tmp_path) -> None:
        """Should run plain and strict lint with and without the values file."""
        runner = FakeCommandRunner()
        run = run_lint(settings, runner, HelmChart(settings, base_dir=tmp_path))
        assert run.entry.id == LINT_ENTRY_ID
        assert run.verdict is Verdict.PASSED
        assert runner.names() == ["helm-lint", "helm-lint-strict", "helm-lint", "helm-lint-strict"]

    def test_strict_failure_is_tolerated(self, settings, tmp_path) -> None:
        """Should report failed-tolerated when only strict lint fails."""
        runner = FakeCommandRunner(fail=failing("helm-lint-strict"))
        run = run_lint(settings, runner, HelmChart(settings, base_dir=tmp_path))
        assert run.verdict is Verdict.FAILED_TOLERATED
        assert run.first_fatal_stage is None
        assert len(runner.actions) == 4

    def test_plain_failure_halts(self, settings, tmp_path) -> None:
        """Should fail and skip the remaining checks when plain lint fails."""
        runner = FakeCommandRunner(fail=failing("helm-lint"))
        run = run_lint(settings, runner, HelmChart(settings, base_dir=tmp_path))
        assert run.verdict is Verdict.FAILED
        assert run.first_fatal_stage == "lint"
        assert run.results[0].error.startswith("ValidationError:")
        assert [r.status for r in run.results[1:]] == [StageStatus.SKIPPED] * 3
        assert all(r.skip_reason == "halted" for r in run.results[1:])
        assert runner.names() == ["helm-lint"]

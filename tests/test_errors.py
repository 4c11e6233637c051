"""Error type tests."""

from __future__ import annotations

import subprocess

import pytest

from procwatch.errors import (
    AggregateError,
    ExitError,
    SetupError,
    StartError,
    StderrLine,
    SupervisorError,
)
from procwatch.types import TerminationReason


class TestSupervisorError:
    """Test message rendering and cause chaining."""

    def test_without_cause(self):
        err = SetupError("Failed to get stdout")
        assert str(err) == "Failed to get stdout"
        assert err.__cause__ is None

    def test_with_cause(self):
        cause = FileNotFoundError(2, "No such file or directory")
        err = StartError("Failed to run command", cause)

        assert str(err) == f"Failed to run command: {cause}"
        assert err.cause is cause
        assert err.__cause__ is cause

    def test_hierarchy(self):
        for cls in (SetupError, StartError, ExitError, StderrLine):
            assert issubclass(cls, SupervisorError)


class TestExitError:
    """Test exit error attributes."""

    def test_failed_exit(self):
        cause = subprocess.CalledProcessError(3, ["prog"])
        err = ExitError("Failed to finish process", cause, returncode=3)

        assert err.returncode == 3
        assert err.reason is None
        assert err.timed_out is False
        assert "exit status 3" in str(err)

    def test_timed_out(self):
        cause = subprocess.TimeoutExpired(["prog"], 1.5)
        err = ExitError(
            "Process timed out", cause, returncode=-15, reason=TerminationReason.TIMEOUT
        )

        assert err.timed_out is True
        assert str(err).startswith("Process timed out: ")


class TestAggregateError:
    """Test folding several failures into one."""

    def test_message_joins_with_semicolons(self):
        errors = [StderrLine("warning: a"), StderrLine("warning: b")]
        agg = AggregateError(errors)

        assert str(agg) == "warning: a; warning: b"
        assert list(agg.exceptions) == errors

    def test_is_exception_group(self):
        agg = AggregateError([StderrLine("x"), SetupError("y")])
        assert isinstance(agg, ExceptionGroup)

    def test_split_keeps_type(self):
        exit_err = ExitError("Failed to finish process", returncode=1)
        agg = AggregateError([exit_err, StderrLine("boom")])

        matched, rest = agg.split(ExitError)

        assert isinstance(matched, AggregateError)
        assert list(matched.exceptions) == [exit_err]
        assert str(rest) == "boom"

    def test_except_star(self):
        caught = []
        with pytest.raises(ExceptionGroup):
            try:
                raise AggregateError([StderrLine("a"), SetupError("b")])
            except* StderrLine as group:
                caught.extend(group.exceptions)

        assert [str(e) for e in caught] == ["a"]

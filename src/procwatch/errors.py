"""Errors reported by the process supervisor.

Failures that happen while a child runs are never raised into the event
loop. They are delivered as values on the ``failures`` channel and folded
by ``Supervisor.wait()``. Only caller mistakes (running twice, waiting on
an idle supervisor) are raised synchronously.
"""

from __future__ import annotations

from collections.abc import Sequence

from .types import TerminationReason

__all__ = [
    "AggregateError",
    "AlreadyStartedError",
    "ExitError",
    "NotStartedError",
    "SetupError",
    "StartError",
    "StderrLine",
    "SupervisorError",
]


class SupervisorError(Exception):
    """Base class for failures delivered on the ``failures`` channel.

    Attributes:
        message: Human-readable description of the failed stage
        cause: Underlying error, also exposed as ``__cause__``
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)
        self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}: {self.cause}"


class SetupError(SupervisorError):
    """A standard stream of the child could not be attached."""
    pass


class StartError(SupervisorError):
    """The child could not be spawned (missing executable, permissions...)."""
    pass


class ExitError(SupervisorError):
    """The child ran but finished abnormally.

    Attributes:
        returncode: Exit status; negative values are signal numbers
        reason: Set when the termination controller stopped the child
    """

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        *,
        returncode: int | None = None,
        reason: TerminationReason | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.returncode = returncode
        self.reason = reason

    @property
    def timed_out(self) -> bool:
        return self.reason is TerminationReason.TIMEOUT


class StderrLine(SupervisorError):
    """A stderr line collected as a failure by ``wait(collect_stderr=True)``."""
    pass


class AggregateError(ExceptionGroup):
    """Several failures from one run.

    Keeps every underlying error for ``except*`` / ``.exceptions`` and
    renders as the messages joined with ``"; "``.
    """

    def __new__(cls, errors: Sequence[Exception]) -> AggregateError:
        errors = list(errors)
        return super().__new__(cls, _join_messages(errors), errors)

    def __init__(self, errors: Sequence[Exception]) -> None:
        errors = list(errors)
        super().__init__(_join_messages(errors), errors)

    def __str__(self) -> str:
        return self.message

    def derive(self, excs: Sequence[Exception]) -> AggregateError:
        return AggregateError(excs)


def _join_messages(errors: Sequence[Exception]) -> str:
    return "; ".join(str(err) for err in errors)


class AlreadyStartedError(RuntimeError):
    """``run()`` was called on a supervisor that is not idle."""
    pass


class NotStartedError(RuntimeError):
    """An operation needs a started supervisor."""
    pass

"""procwatch - asynchronous external-process supervisor.

Environment variables:
    PROCWATCH_TIMEOUT: default run ceiling in seconds
    PROCWATCH_CANCEL_SENTINEL: quit line written to stdin on cancel
    PROCWATCH_LOG_DEBUG: debug logging to a temp file

Usage:
    procwatch --timeout 30 -- make test
"""

__version__ = "0.1.0"

from .errors import (
    AggregateError,
    AlreadyStartedError,
    ExitError,
    NotStartedError,
    SetupError,
    StartError,
    StderrLine,
    SupervisorError,
)
from .runtime import CommandSpec, Supervisor
from .types import SupervisorState, TerminationReason
from .utils import quote

__all__ = [
    "__version__",
    "AggregateError",
    "AlreadyStartedError",
    "CommandSpec",
    "ExitError",
    "NotStartedError",
    "SetupError",
    "StartError",
    "StderrLine",
    "Supervisor",
    "SupervisorError",
    "SupervisorState",
    "TerminationReason",
    "quote",
]

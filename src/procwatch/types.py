"""Shared enums for the supervisor runtime."""

from __future__ import annotations

from enum import Enum

__all__ = ["SupervisorState", "TerminationReason"]


class SupervisorState(Enum):
    """Lifecycle of a Supervisor instance.

    - IDLE: constructed, nothing spawned yet
    - RUNNING: ``run()`` accepted, background tasks alive
    - FINISHED: the completion signal has fired
    """

    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


class TerminationReason(Enum):
    """Why the termination controller stopped a child early."""

    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

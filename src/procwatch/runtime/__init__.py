"""Runtime module for subprocess supervision and line streaming.

This module provides one-shot process supervision with live stdout/stderr
streaming, failure reporting over channels and reliable termination.
"""

from __future__ import annotations

from .child import ChildProcess, spawn_child
from .line_streamer import iter_lines, stream_lines
from .supervisor import CommandSpec, Supervisor
from .termination import TerminationController, terminate_process

__all__ = [
    "ChildProcess",
    "CommandSpec",
    "Supervisor",
    "TerminationController",
    "iter_lines",
    "spawn_child",
    "stream_lines",
    "terminate_process",
]

"""Termination controller: bound a run by timeout or explicit cancellation.

Termination strategies:
- Forced: SIGTERM -> term_timeout -> SIGKILL -> kill_timeout, sent to the
  child's process group on POSIX (used on timeout, and on cancel when no
  sentinel is configured)
- Sentinel: write a quit line such as ``b"q\\n"`` to the child's stdin,
  close stdin, give the child ``grace_period`` seconds, then fall back to
  the forced strategy so a child that ignores the hint still exits

Whatever fires, the lifecycle coordinator observes the exit the same way;
the controller only records why it intervened.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass

import anyio

from ..types import TerminationReason
from .child import IS_WINDOWS, ChildProcess

__all__ = ["TerminationController", "terminate_process"]

logger = logging.getLogger(__name__)


def _signal_group(child: ChildProcess, sig: signal.Signals) -> None:
    """Send *sig* to the child's process group, or to the child alone.

    The child leads its own session, so its pid is also its process group
    id and stays valid while any member of the group is alive.

    Raises:
        ProcessLookupError: Nothing is left to signal
    """
    if IS_WINDOWS:
        if sig == signal.SIGTERM:
            child.process.terminate()
        else:
            child.process.kill()
        return
    try:
        os.killpg(child.pid, sig)
        logger.debug(f"Sent {sig.name} to process group pgid={child.pid}")
    except PermissionError as e:
        logger.debug(f"killpg failed, falling back to the child alone: {e}")
        child.process.send_signal(sig)


async def terminate_process(
    child: ChildProcess,
    *,
    term_timeout: float,
    kill_timeout: float,
) -> None:
    """Terminate *child* gracefully, then forcefully if needed.

    1. Send SIGTERM to the process group (TerminateProcess on Windows)
    2. Wait up to term_timeout for the child to exit
    3. If still running, send SIGKILL to the process group
    4. Wait up to kill_timeout for forced exit

    Args:
        child: The child to terminate
        term_timeout: Seconds to wait after SIGTERM
        kill_timeout: Seconds to wait after SIGKILL
    """
    pid = child.pid
    if child.exited.is_set():
        return

    logger.debug(f"Terminating subprocess pid={pid}")
    try:
        _signal_group(child, signal.SIGTERM)
        try:
            await asyncio.wait_for(child.wait(), timeout=term_timeout)
            logger.debug(
                f"Subprocess terminated gracefully pid={pid} "
                f"returncode={child.returncode}"
            )
            return
        except asyncio.TimeoutError:
            pass

        logger.debug(f"Force killing subprocess pid={pid}")
        _signal_group(child, signal.SIGKILL)
        try:
            await asyncio.wait_for(child.wait(), timeout=kill_timeout)
            logger.debug(
                f"Subprocess killed pid={pid} returncode={child.returncode}"
            )
        except asyncio.TimeoutError:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")
    except ProcessLookupError:
        logger.debug(f"Subprocess already exited pid={pid}")


@dataclass
class TerminationController:
    """Watches one run and stops the child when its time is up.

    The supervisor sets ``wakeup`` when cancel() is called and again once
    the child has exited, so ``watch()`` always returns.

    Attributes:
        timeout: Run ceiling in seconds (None = unbounded)
        sentinel: Quit line for graceful cancel (None = forced cancel)
        grace_period: Seconds the child gets to honor the sentinel
        term_timeout: Seconds to wait after SIGTERM
        kill_timeout: Seconds to wait after SIGKILL
    """

    timeout: float | None
    sentinel: bytes | None
    grace_period: float
    term_timeout: float
    kill_timeout: float

    def __post_init__(self) -> None:
        self.wakeup = asyncio.Event()
        self.reason: TerminationReason | None = None
        self._force = False

    def request_cancel(self, *, force: bool = False) -> None:
        """Ask for early termination; ``force`` skips the sentinel."""
        self._force = self._force or force
        self.wakeup.set()

    async def watch(self, child: ChildProcess) -> TerminationReason | None:
        """Wait for a deadline or cancel request and stop *child*.

        Returns:
            The reason the child was stopped, or None if it exited on its own
        """
        with anyio.move_on_after(self.timeout) as deadline:
            await self.wakeup.wait()

        if child.exited.is_set():
            return None

        if deadline.cancelled_caught:
            self.reason = TerminationReason.TIMEOUT
            logger.info(f"Timeout of {self.timeout}s reached, stopping pid={child.pid}")
        else:
            self.reason = TerminationReason.CANCELLED
            logger.info(f"Cancel requested, stopping pid={child.pid}")

        if self.reason is TerminationReason.CANCELLED and self.sentinel and not self._force:
            if await self._send_sentinel(child):
                return self.reason

        await terminate_process(
            child,
            term_timeout=self.term_timeout,
            kill_timeout=self.kill_timeout,
        )
        return self.reason

    async def _send_sentinel(self, child: ChildProcess) -> bool:
        """Write the quit sentinel and wait for the child to honor it.

        Returns:
            True if the child exited within the grace period
        """
        stdin = child.stdin
        if stdin is not None and not stdin.is_closing():
            try:
                stdin.write(self.sentinel)
                await stdin.drain()
                stdin.close()
                logger.debug(f"Sent cancel sentinel to pid={child.pid}")
            except (BrokenPipeError, ConnectionResetError) as e:
                logger.debug(f"Could not write cancel sentinel: {e}")

        try:
            await asyncio.wait_for(child.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logger.info(
                f"Child ignored cancel sentinel for {self.grace_period}s, "
                f"falling back to termination pid={child.pid}"
            )
            return False
        return True

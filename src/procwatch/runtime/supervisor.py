"""Process supervisor: run one child and stream its output over channels.

This module provides:
- One-shot start semantics guarded by an explicit state machine
- Live stdout/stderr streaming, one line per channel item
- A single completion signal that fires once the child has exited (or
  could not be started)
- Failure reporting as values on a channel instead of raised exceptions
- Early termination by timeout or cancel()

Channel contract:
- stdout/stderr are unbuffered by default. A consumer that never reads them
  stalls the corresponding streamer, and a child that keeps writing into a
  stalled pipe stalls with it. Read every stream you expose until it closes,
  or close it (``aclose()`` / ``async with``) to have it discarded.
- done fires when the child exits. stdout/stderr close when their pipe
  reaches end of stream, which can be later if a backgrounded grandchild
  inherited it. aclose() closes the pipes.
- failures holds the single failure of a run, so the completion signal
  never waits on a failure consumer.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import subprocess
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream

from ..config import get_config
from ..errors import (
    AggregateError,
    AlreadyStartedError,
    ExitError,
    NotStartedError,
    SetupError,
    StartError,
    StderrLine,
    SupervisorError,
)
from ..types import SupervisorState, TerminationReason
from .child import ChildProcess, spawn_child
from .line_streamer import stream_lines
from .termination import TerminationController, terminate_process

__all__ = [
    "CommandSpec",
    "Supervisor",
]

logger = logging.getLogger(__name__)

_PIPE_EXHAUSTION = frozenset({errno.EMFILE, errno.ENFILE})

# How long wait(collect_stderr=True) keeps draining stderr once done fires
STDERR_DRAIN_GRACE = 0.5


@dataclass(frozen=True)
class CommandSpec:
    """Specification of the child to run.

    Attributes:
        argv: Executable followed by its arguments
        cwd: Working directory (None = inherit)
        env: Environment variables (None = inherit parent)
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.argv, (str, bytes)):
            raise TypeError("argv must be a sequence of arguments, not a single string")
        argv = tuple(self.argv)
        if not argv:
            raise ValueError("argv must name an executable")
        object.__setattr__(self, "argv", argv)

    @property
    def executable(self) -> str:
        return self.argv[0]


class Supervisor:
    """Runs one child process and exposes its output as channels.

    Example:
        async with Supervisor(["make", "test"]) as sup:
            sup.set_timeout(60)
            sup.run()
            done, stdout, stderr, failures = sup.stream_output()

            async def show(stream):
                async for line in stream:
                    print(line, end="")

            await asyncio.gather(show(stdout), show(stderr))
            error = await sup.wait()

    A supervisor runs at most once; build a new one for the next run.
    """

    def __init__(
        self,
        argv: Sequence[str] | CommandSpec,
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel_sentinel: bytes | None = None,
        grace_period: float | None = None,
        term_timeout: float | None = None,
        kill_timeout: float | None = None,
        buffer_size: int | None = None,
    ) -> None:
        """Build an idle supervisor. No I/O happens here.

        Args:
            argv: Executable and arguments, or a ready CommandSpec
            cwd: Working directory for the child
            env: Environment for the child (None = inherit)
            timeout: Run ceiling in seconds (default from config)
            cancel_sentinel: Bytes written to stdin on cancel() (default from config)
            grace_period: Seconds the child gets to honor the sentinel
            term_timeout: Seconds to wait after SIGTERM
            kill_timeout: Seconds to wait after SIGKILL
            buffer_size: Lines buffered per output channel (0 = unbuffered)
        """
        if isinstance(argv, CommandSpec):
            self.command = argv
        else:
            self.command = CommandSpec(
                argv=argv,
                cwd=Path(cwd) if cwd is not None else None,
                env=env,
            )

        config = get_config()
        self.timeout = timeout if timeout is not None else config.timeout
        self.cancel_sentinel = (
            cancel_sentinel if cancel_sentinel is not None else config.cancel_sentinel
        )
        self.grace_period = grace_period if grace_period is not None else config.grace_period
        self.term_timeout = term_timeout if term_timeout is not None else config.term_timeout
        self.kill_timeout = kill_timeout if kill_timeout is not None else config.kill_timeout
        size = buffer_size if buffer_size is not None else config.buffer_size

        self._stdout_send, self._stdout = anyio.create_memory_object_stream[str](size)
        self._stderr_send, self._stderr = anyio.create_memory_object_stream[str](size)
        self._failures_send, self._failures = anyio.create_memory_object_stream[Exception](1)
        self._done = asyncio.Event()

        self._state = SupervisorState.IDLE
        self._state_lock = threading.Lock()
        self._child: ChildProcess | None = None
        self._controller: TerminationController | None = None
        self._task: asyncio.Task[None] | None = None
        self._streamers: list[asyncio.Task[int]] = []
        self._seen_failures: list[Exception] = []

    def __repr__(self) -> str:
        return (
            f"Supervisor(argv={list(self.command.argv)!r}, "
            f"state={self._state.value}, "
            f"timeout={self.timeout})"
        )

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._child.pid if self._child else None

    @property
    def returncode(self) -> int | None:
        return self._child.returncode if self._child else None

    def set_timeout(self, seconds: float) -> None:
        """Bound the total run time. Only allowed before run()."""
        if seconds <= 0:
            raise ValueError(f"timeout must be positive, got {seconds}")
        with self._state_lock:
            if self._state is not SupervisorState.IDLE:
                raise AlreadyStartedError("Cannot change the timeout of a started supervisor")
            self.timeout = seconds

    def stream_output(
        self,
    ) -> tuple[
        asyncio.Event,
        MemoryObjectReceiveStream[str],
        MemoryObjectReceiveStream[str],
        MemoryObjectReceiveStream[Exception],
    ]:
        """Return the ``(done, stdout, stderr, failures)`` channels."""
        return self._done, self._stdout, self._stderr, self._failures

    def run(self) -> None:
        """Start the child in the background and return immediately.

        Must be called from a running event loop. Spawning, streaming and
        failure reporting all happen asynchronously; watch the channels.

        The child is not tied to the calling task: cancelling the caller
        leaves it running. Use ``async with`` (or call ``aclose()`` from a
        ``finally``) so a cancelled caller still stops the child, or call
        cancel() explicitly.

        Raises:
            AlreadyStartedError: The supervisor was started before
            RuntimeError: No running event loop
        """
        loop = asyncio.get_running_loop()
        with self._state_lock:
            if self._state is not SupervisorState.IDLE:
                raise AlreadyStartedError("Supervisor was already started")
            self._state = SupervisorState.RUNNING

        self._controller = TerminationController(
            timeout=self.timeout,
            sentinel=self.cancel_sentinel,
            grace_period=self.grace_period,
            term_timeout=self.term_timeout,
            kill_timeout=self.kill_timeout,
        )
        self._task = loop.create_task(
            self._supervise(), name=f"supervise:{self.command.executable}"
        )

    def cancel(self) -> None:
        """Ask the child to stop early. No-op unless running.

        With a cancel sentinel configured the child is first asked to quit
        through its stdin; otherwise it is terminated.
        """
        if self._state is not SupervisorState.RUNNING or self._controller is None:
            return
        logger.debug(f"cancel() requested for {self.command.executable}")
        self._controller.request_cancel()

    async def wait(self, *, collect_stderr: bool = False) -> Exception | None:
        """Drain failures until the run completes and fold them into one error.

        Must not run alongside other consumers of the same channels.

        Args:
            collect_stderr: Also drain stderr, each line becoming a StderrLine

        Returns:
            None when nothing failed, the failure itself when there is one,
            otherwise an AggregateError holding all of them

        Raises:
            NotStartedError: run() has not been called
        """
        if self._state is SupervisorState.IDLE:
            raise NotStartedError("Supervisor has not been started")

        errors: list[Exception] = []
        stderr_scope = anyio.CancelScope()

        async def _collect_failures() -> None:
            try:
                async for failure in self._failures:
                    self._seen_failures.append(failure)
            except anyio.ClosedResourceError:
                pass  # closed by aclose(), cached failures still apply

        async def _collect_stderr() -> None:
            with stderr_scope:
                try:
                    async for line in self._stderr:
                        errors.append(StderrLine(line.rstrip("\r\n")))
                except anyio.ClosedResourceError:
                    pass

        async with anyio.create_task_group() as tg:
            tg.start_soon(_collect_failures)
            if collect_stderr:
                tg.start_soon(_collect_stderr)
            await self._done.wait()
            # stderr may be held open by a grandchild after the child exits
            stderr_scope.deadline = anyio.current_time() + STDERR_DRAIN_GRACE

        return _fold([*self._seen_failures, *errors])

    async def aclose(self) -> None:
        """Close the consumer side and make sure the child is gone.

        Unread output is discarded. A child still running is terminated
        without the cancel sentinel. Pipes still held open by a backgrounded
        grandchild are closed.
        """
        self._stdout.close()
        self._stderr.close()
        self._failures.close()

        if self._task is None:
            return
        if not self._done.is_set() and self._controller is not None:
            self._controller.request_cancel(force=True)

        await asyncio.shield(self._task)
        if self._child is not None:
            self._child.close()
        if self._streamers:
            await asyncio.gather(*self._streamers, return_exceptions=True)

    async def __aenter__(self) -> Supervisor:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _supervise(self) -> None:
        """Spawn, coordinate and report; always ends with done set."""
        failure: Exception | None = None
        try:
            try:
                child = await self._spawn()
            except SupervisorError as exc:
                failure = exc
                self._stdout_send.close()
                self._stderr_send.close()
                return
            failure = await self._coordinate(child)
        finally:
            self._finish(failure)

    async def _spawn(self) -> ChildProcess:
        """Start the child with all three standard streams piped.

        Raises:
            SetupError: A standard stream could not be attached
            StartError: The child could not be spawned
        """
        spec = self.command
        try:
            child = await spawn_child(spec.argv, cwd=spec.cwd, env=spec.env)
        except OSError as exc:
            if exc.errno in _PIPE_EXHAUSTION:
                raise SetupError("Failed to attach standard streams", exc) from exc
            raise StartError("Failed to run command", exc) from exc
        except ValueError as exc:
            raise StartError("Failed to run command", exc) from exc

        self._child = child
        logger.debug(f"Started subprocess pid={child.pid} argv={spec.executable}")

        for name, stream in (
            ("stdout", child.stdout),
            ("stderr", child.stderr),
            ("stdin", child.stdin),
        ):
            if stream is None:
                await asyncio.shield(
                    terminate_process(
                        child,
                        term_timeout=self.term_timeout,
                        kill_timeout=self.kill_timeout,
                    )
                )
                child.close()
                raise SetupError(f"Failed to get {name}")
        return child

    async def _coordinate(self, child: ChildProcess) -> ExitError | None:
        """Stream output, wait for exit and turn the outcome into a failure."""
        assert self._controller is not None
        assert child.stdout is not None and child.stderr is not None
        controller = self._controller

        # stdin only matters for the cancel sentinel
        if self.cancel_sentinel is None:
            _close_stdin(child)

        self._streamers = [
            asyncio.create_task(
                stream_lines(child.stdout, self._stdout_send, name="stdout"),
                name=f"stdout:{child.pid}",
            ),
            asyncio.create_task(
                stream_lines(child.stderr, self._stderr_send, name="stderr"),
                name=f"stderr:{child.pid}",
            ),
        ]
        watcher = asyncio.create_task(controller.watch(child), name=f"terminate:{child.pid}")

        try:
            returncode = await child.wait()
        except asyncio.CancelledError:
            watcher.cancel()
            await asyncio.shield(
                terminate_process(
                    child,
                    term_timeout=self.term_timeout,
                    kill_timeout=self.kill_timeout,
                )
            )
            raise
        finally:
            controller.wakeup.set()
            _close_stdin(child)

        reason = await watcher
        logger.debug(
            f"Subprocess completed pid={child.pid} returncode={returncode} "
            f"reason={reason.value if reason else None}"
        )
        return self._exit_failure(returncode, reason)

    def _exit_failure(
        self, returncode: int, reason: TerminationReason | None
    ) -> ExitError | None:
        argv = list(self.command.argv)
        if reason is TerminationReason.TIMEOUT:
            return ExitError(
                "Process timed out",
                subprocess.TimeoutExpired(argv, self.timeout or 0),
                returncode=returncode,
                reason=reason,
            )
        if returncode == 0:
            return None
        message = (
            "Process was cancelled"
            if reason is TerminationReason.CANCELLED
            else "Failed to finish process"
        )
        return ExitError(
            message,
            subprocess.CalledProcessError(returncode, argv),
            returncode=returncode,
            reason=reason,
        )

    def _finish(self, failure: Exception | None) -> None:
        """Push the run's failure (if any), then signal completion."""
        if failure is not None:
            logger.debug(f"Run of {self.command.executable} failed: {failure}")
            try:
                self._failures_send.send_nowait(failure)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                logger.debug("Failure consumer is gone, failure dropped")
            except anyio.WouldBlock:
                logger.warning(f"Failure channel full, dropped: {failure}")

        with self._state_lock:
            self._state = SupervisorState.FINISHED
        self._done.set()
        self._failures_send.close()


def _close_stdin(child: ChildProcess) -> None:
    if child.stdin is not None and not child.stdin.is_closing():
        child.stdin.close()


def _fold(errors: list[Exception]) -> Exception | None:
    if not errors:
        return None
    if len(errors) == 1:
        return errors[0]
    return AggregateError(errors)

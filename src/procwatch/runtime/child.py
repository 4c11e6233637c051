"""Child process handle with exit detection independent of its pipes.

``asyncio.subprocess.Process.wait()`` only returns once every pipe of the
child has reached end of stream. A backgrounded grandchild that inherited
stdout or stderr keeps it from returning long after the child itself has
exited. The handle here reports the exit as soon as the child is reaped.

Key design points:
- POSIX: start_new_session=True so the child leads its own process group,
  and termination signals reach anything it left running in the background
- The pipes stay open until they reach end of stream or close() is called
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

__all__ = ["ChildProcess", "spawn_child"]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_LINE_LIMIT = 2**16


class _ExitWatchingProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that flags the child's exit before the pipes close."""

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited = asyncio.Event()

    def process_exited(self) -> None:
        super().process_exited()
        self.exited.set()


@dataclass
class ChildProcess:
    """A spawned child, its transport and its exit flag.

    Attributes:
        process: The asyncio process object (stdin/stdout/stderr streams)
        transport: Subprocess transport owning the pipes
        exited: Set as soon as the child has been reaped
    """

    process: asyncio.subprocess.Process
    transport: asyncio.SubprocessTransport
    exited: asyncio.Event

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def stdin(self) -> asyncio.StreamWriter | None:
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.process.stderr

    async def wait(self) -> int:
        """Wait for the child to exit, whatever holds its pipes."""
        await self.exited.wait()
        returncode = self.process.returncode
        assert returncode is not None
        return returncode

    def close(self) -> None:
        """Close the pipes; the child is killed if it is still running."""
        self.transport.close()


def _build_subprocess_kwargs(
    cwd: Path | None, env: Mapping[str, str] | None
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if cwd is not None:
        kwargs["cwd"] = cwd
    if env is not None:
        kwargs["env"] = dict(env)
    if not IS_WINDOWS:
        # POSIX: start_new_session (equivalent to setsid)
        kwargs["start_new_session"] = True
    return kwargs


async def spawn_child(
    argv: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    limit: int = DEFAULT_LINE_LIMIT,
) -> ChildProcess:
    """Start *argv* with stdin, stdout and stderr piped.

    Args:
        argv: Executable followed by its arguments
        cwd: Working directory (None = inherit)
        env: Environment variables (None = inherit parent)
        limit: Buffer limit of the stdout/stderr readers

    Raises:
        OSError: The child could not be spawned
        ValueError: Invalid arguments for the platform
    """
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.subprocess_exec(
        lambda: _ExitWatchingProtocol(limit=limit, loop=loop),
        *argv,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **_build_subprocess_kwargs(cwd, env),
    )
    process = asyncio.subprocess.Process(transport, protocol, loop)
    logger.debug(f"Spawned pid={process.pid} argv0={argv[0]}")
    return ChildProcess(process=process, transport=transport, exited=protocol.exited)

"""Line streaming from a child's output pipes.

A Line Streamer reads one pipe incrementally and forwards each complete line
to its channel, in arrival order. The last line is forwarded even when the
child does not terminate it with a newline.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

import anyio
from anyio.streams.memory import MemoryObjectSendStream

__all__ = ["iter_lines", "stream_lines"]

logger = logging.getLogger(__name__)

_NEWLINE = b"\n"


async def iter_lines(reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """Yield lines from *reader*, terminators included.

    Lines longer than the reader's buffer limit are reassembled rather than
    rejected. At end of stream any unterminated remainder is yielded as the
    final line.

    Args:
        reader: Pipe reader of the child process

    Yields:
        Raw lines as bytes
    """
    pending = bytearray()
    while True:
        try:
            chunk = await reader.readuntil(_NEWLINE)
        except asyncio.IncompleteReadError as exc:
            # EOF: exc.partial holds whatever followed the last newline
            pending += exc.partial
            if pending:
                yield bytes(pending)
            return
        except asyncio.LimitOverrunError as exc:
            # No newline within the limit; take what is buffered and keep going
            pending += await reader.readexactly(exc.consumed)
            continue
        pending += chunk
        yield bytes(pending)
        pending.clear()


async def stream_lines(
    reader: asyncio.StreamReader,
    channel: MemoryObjectSendStream[str],
    *,
    name: str = "stdout",
    encoding: str = "utf-8",
) -> int:
    """Forward decoded lines from *reader* to *channel* until the pipe ends.

    The channel is closed when the pipe reports end of stream or a read
    error. If the consumer closes its side first, the remaining output is
    read and discarded so the pipe still drains to end of stream.

    Args:
        reader: Pipe reader of the child process
        channel: Send side of the output channel, owned by this streamer
        name: Stream label used in log messages
        encoding: Text encoding; undecodable bytes are replaced

    Returns:
        Number of lines delivered to the consumer
    """
    delivered = 0
    async with channel:
        lines = iter_lines(reader)
        try:
            async for raw in lines:
                text = raw.decode(encoding, errors="replace")
                try:
                    await channel.send(text)
                except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                    logger.debug(f"{name} consumer went away, discarding remaining output")
                    async for _ in lines:
                        pass
                    break
                delivered += 1
        except OSError as e:
            logger.warning(f"Error reading {name}: {e}")
        finally:
            await lines.aclose()

    logger.debug(f"{name} streamer finished after {delivered} line(s)")
    return delivered

"""procwatch command-line entry point.

Runs one command under a Supervisor, echoes its output live and exits with
the child's status:
- the child's return code when it ran to completion
- 128 + N when it was killed by signal N
- 124 when the timeout stopped it
- 1 when it could not be started
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Callable, Iterator, Sequence
from typing import TextIO

from anyio.streams.memory import MemoryObjectReceiveStream

from . import __version__
from .config import get_config
from .errors import AggregateError, ExitError
from .runtime import Supervisor

__all__ = ["main", "run_command"]

logger = logging.getLogger(__name__)

EXIT_NOT_STARTED = 1
EXIT_TIMEOUT = 124


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procwatch",
        description="Run a command, stream its output and report failures.",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Run ceiling in seconds")
    parser.add_argument(
        "--sentinel",
        type=str,
        default=None,
        help="Line written to the child's stdin on Ctrl+C instead of terminating it",
    )
    parser.add_argument(
        "--collect-stderr",
        action="store_true",
        help="Treat stderr lines as failures and report them at the end",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")
    return parser


def _iter_errors(error: BaseException | None) -> Iterator[BaseException]:
    if error is None:
        return
    if isinstance(error, AggregateError):
        for inner in error.exceptions:
            yield from _iter_errors(inner)
    else:
        yield error


def exit_code_for(returncode: int | None, error: Exception | None) -> int:
    """Map a finished run to a process exit status."""
    if any(isinstance(e, ExitError) and e.timed_out for e in _iter_errors(error)):
        return EXIT_TIMEOUT
    if returncode is None:
        return EXIT_NOT_STARTED if error is not None else 0
    if returncode < 0:
        return 128 - returncode
    if returncode == 0 and error is not None:
        return 1
    return returncode


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, on_signal: Callable[[], None]
) -> list[signal.Signals]:
    """Route SIGINT/SIGTERM to *on_signal* (POSIX only)."""
    if sys.platform == "win32":
        return []
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, on_signal)
        installed.append(sig)
    logger.debug(f"Signal handlers installed: {[s.name for s in installed]}")
    return installed


def _remove_signal_handlers(
    loop: asyncio.AbstractEventLoop, installed: list[signal.Signals]
) -> None:
    for sig in installed:
        loop.remove_signal_handler(sig)


async def _echo(stream: MemoryObjectReceiveStream[str], target: TextIO) -> None:
    async for line in stream:
        target.write(line)
        target.flush()


async def run_command(
    argv: Sequence[str],
    *,
    timeout: float | None = None,
    sentinel: bytes | None = None,
    collect_stderr: bool = False,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Run *argv* to completion, echoing its output.

    Args:
        argv: Command and arguments
        timeout: Run ceiling in seconds
        sentinel: Quit line sent on SIGINT/SIGTERM instead of terminating
        collect_stderr: Report stderr lines as failures instead of echoing them
        stdout: Where child stdout goes (default sys.stdout)
        stderr: Where child stderr and the final error go (default sys.stderr)

    Returns:
        Exit status for this process
    """
    out = stdout or sys.stdout
    err = stderr or sys.stderr
    loop = asyncio.get_running_loop()

    async with Supervisor(argv, timeout=timeout, cancel_sentinel=sentinel) as supervisor:
        supervisor.run()
        _, out_lines, err_lines, _ = supervisor.stream_output()
        installed = _install_signal_handlers(loop, supervisor.cancel)
        try:
            consumers = [_echo(out_lines, out)]
            if not collect_stderr:
                consumers.append(_echo(err_lines, err))
            error, *_ = await asyncio.gather(
                supervisor.wait(collect_stderr=collect_stderr), *consumers
            )
        finally:
            _remove_signal_handlers(loop, installed)

    if error is not None:
        err.write(f"procwatch: {error}\n")
        err.flush()
    return exit_code_for(supervisor.returncode, error)


def _configure_logging() -> None:
    """Configure handlers: stderr at INFO, or a temp file at DEBUG."""
    config = get_config()
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(log_format))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Root logger (third-party libraries) stays at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("procwatch").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("no command given")

    _configure_logging()
    config = get_config()
    logger.debug(f"Starting procwatch: {config}")

    sentinel = args.sentinel.encode("utf-8") + b"\n" if args.sentinel else None
    code = asyncio.run(
        run_command(
            command,
            timeout=args.timeout,
            sentinel=sentinel,
            collect_stderr=args.collect_stderr,
        )
    )
    sys.exit(code)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Fake child process for supervisor tests.

This script writes numbered lines to stdout/stderr, optionally sleeps,
and optionally listens on stdin for a quit line.

Usage:
    python fake_child.py [--lines N] [--stderr-lines N] [--partial TEXT]
                         [--duration SECONDS] [--interval SECONDS]
                         [--quit-on LINE] [--ignore-term] [--exit-code CODE]

Arguments:
    --lines: stdout lines to write, "out1\\n" .. "outN\\n" (default: 0)
    --stderr-lines: stderr lines to write, "err1\\n" .. "errN\\n" (default: 0)
    --partial: text written to stdout last, without a trailing newline
    --duration: keep running this long before exiting (default: 0)
    --interval: delay between stdout lines (default: 0)
    --quit-on: exit 0 as soon as this line is read from stdin
    --ignore-term: ignore SIGTERM so only SIGKILL stops the process
    --exit-code: exit status (default: 0)
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from typing import NoReturn


def _watch_stdin(quit_line: str, stop: threading.Event) -> None:
    for line in sys.stdin:
        if line.rstrip("\r\n") == quit_line:
            stop.set()
            return


def main() -> NoReturn:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Fake child for testing")
    parser.add_argument("--lines", type=int, default=0)
    parser.add_argument("--stderr-lines", type=int, default=0)
    parser.add_argument("--partial", type=str, default=None)
    parser.add_argument("--duration", type=float, default=0.0)
    parser.add_argument("--interval", type=float, default=0.0)
    parser.add_argument("--quit-on", type=str, default=None)
    parser.add_argument("--ignore-term", action="store_true")
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args()

    if args.ignore_term:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    stop = threading.Event()
    if args.quit_on is not None:
        threading.Thread(
            target=_watch_stdin, args=(args.quit_on, stop), daemon=True
        ).start()

    for i in range(1, args.lines + 1):
        sys.stdout.write(f"out{i}\n")
        sys.stdout.flush()
        if args.interval:
            time.sleep(args.interval)

    for i in range(1, args.stderr_lines + 1):
        sys.stderr.write(f"err{i}\n")
        sys.stderr.flush()

    if args.partial is not None:
        sys.stdout.write(args.partial)
        sys.stdout.flush()

    if stop.wait(args.duration):
        sys.exit(0)

    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()

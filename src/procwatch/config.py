"""procwatch environment configuration.

Environment variables:
    PROCWATCH_TIMEOUT: default ceiling on a run, in seconds
        - unset/empty = no timeout
        - non-positive or invalid values are ignored

    PROCWATCH_CANCEL_SENTINEL: text written to the child's stdin on cancel()
        - unset/empty = cancel() terminates the child forcibly
        - backslash escapes are decoded, e.g. "q\\n"

    PROCWATCH_GRACE_PERIOD: seconds a child gets to honor the sentinel
        - default 2.0, clamped to 0.1-60

    PROCWATCH_TERM_TIMEOUT: seconds to wait after SIGTERM before SIGKILL
        - default 2.0, clamped to 0.1-60

    PROCWATCH_KILL_TIMEOUT: seconds to wait after SIGKILL
        - default 1.0, clamped to 0.1-60

    PROCWATCH_BUFFER_SIZE: lines buffered per output channel
        - default 0 (unbuffered, producers block until a consumer receives)

    PROCWATCH_LOG_DEBUG: debug logging
        - true/1/yes = on (DEBUG log written to a temp file)
        - false/0/no = off (default, INFO to stderr)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_GRACE_PERIOD = 2.0
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0

_MIN_WAIT = 0.1
_MAX_WAIT = 60.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean env var."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None) -> float | None:
    if not value or not value.strip():
        return None
    try:
        timeout = float(value)
    except ValueError:
        return None
    return timeout if timeout > 0 else None


def _parse_wait(value: str | None, default: float) -> float:
    """Parse a wait duration, clamped to a sane range."""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return max(_MIN_WAIT, min(seconds, _MAX_WAIT))


def _parse_sentinel(value: str | None) -> bytes | None:
    """Decode the cancel sentinel, honoring backslash escapes."""
    if not value:
        return None
    try:
        text = codecs.decode(value, "unicode_escape")
    except UnicodeDecodeError:
        text = value
    return text.encode("utf-8")


def _parse_buffer_size(value: str | None) -> int:
    if not value:
        return 0
    try:
        return max(0, int(value))
    except ValueError:
        return 0


def _generate_log_file_path() -> str:
    """Return a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "procwatch"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procwatch_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """procwatch configuration.

    Attributes:
        timeout: Default run ceiling in seconds (None = unbounded)
        cancel_sentinel: Bytes written to stdin on cancel (None = forced cancel)
        grace_period: Seconds a child gets to honor the sentinel
        term_timeout: Seconds to wait after SIGTERM
        kill_timeout: Seconds to wait after SIGKILL
        buffer_size: Lines buffered per output channel
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug is on)
    """

    timeout: float | None = None
    cancel_sentinel: bytes | None = None
    grace_period: float = DEFAULT_GRACE_PERIOD
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    buffer_size: int = 0
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(timeout={self.timeout}, "
            f"cancel_sentinel={self.cancel_sentinel!r}, "
            f"grace_period={self.grace_period}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"buffer_size={self.buffer_size}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("PROCWATCH_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        timeout=_parse_timeout(os.environ.get("PROCWATCH_TIMEOUT")),
        cancel_sentinel=_parse_sentinel(os.environ.get("PROCWATCH_CANCEL_SENTINEL")),
        grace_period=_parse_wait(
            os.environ.get("PROCWATCH_GRACE_PERIOD"), DEFAULT_GRACE_PERIOD
        ),
        term_timeout=_parse_wait(
            os.environ.get("PROCWATCH_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_wait(
            os.environ.get("PROCWATCH_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        buffer_size=_parse_buffer_size(os.environ.get("PROCWATCH_BUFFER_SIZE")),
        log_debug=log_debug,
        log_file=log_file,
    )


# Lazily loaded global instance
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config

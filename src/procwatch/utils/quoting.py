"""Command-line quoting helper."""

from __future__ import annotations

__all__ = ["quote"]


def quote(text: str) -> str:
    """Wrap *text* in double quotes.

    Nothing inside is escaped; use shlex.quote when the result goes to a shell.
    """
    return f'"{text}"'

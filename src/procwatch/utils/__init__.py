"""Utility functions."""

from .quoting import quote

__all__ = ["quote"]

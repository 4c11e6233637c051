"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Make src importable without an install
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_CHILD = FIXTURES_DIR / "fake_child.py"

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture(autouse=True)
def clean_config():
    """Run every test against the default configuration."""
    from procwatch.config import reload_config

    env = {k: v for k, v in os.environ.items() if not k.startswith("PROCWATCH_")}
    with mock.patch.dict(os.environ, env, clear=True):
        reload_config()
        yield
    reload_config()


@pytest.fixture
def fake_child() -> list[str]:
    """argv prefix that runs the fake child script."""
    return [sys.executable, str(FAKE_CHILD)]

"""Config module tests.

Covers PROCWATCH_* environment parsing and the global config instance.
"""

from __future__ import annotations

import os
from unittest import mock

import pytest

from procwatch.config import (
    DEFAULT_GRACE_PERIOD,
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_TERM_TIMEOUT,
    Config,
    get_config,
    load_config,
    reload_config,
)


class TestDefaults:
    """Test values with no environment set."""

    def test_defaults(self):
        config = load_config()
        assert config.timeout is None
        assert config.cancel_sentinel is None
        assert config.grace_period == DEFAULT_GRACE_PERIOD
        assert config.term_timeout == DEFAULT_TERM_TIMEOUT
        assert config.kill_timeout == DEFAULT_KILL_TIMEOUT
        assert config.buffer_size == 0
        assert config.log_debug is False
        assert config.log_file is None


class TestParseTimeout:
    """Test PROCWATCH_TIMEOUT."""

    @pytest.mark.parametrize(("value", "expected"), [("5", 5.0), ("0.25", 0.25), (" 3 ", 3.0)])
    def test_valid(self, value: str, expected: float):
        with mock.patch.dict(os.environ, {"PROCWATCH_TIMEOUT": value}):
            assert load_config().timeout == expected

    @pytest.mark.parametrize("value", ["", "   ", "0", "-1", "soon"])
    def test_ignored(self, value: str):
        """Empty, non-positive and invalid values mean no timeout."""
        with mock.patch.dict(os.environ, {"PROCWATCH_TIMEOUT": value}):
            assert load_config().timeout is None


class TestParseSentinel:
    """Test PROCWATCH_CANCEL_SENTINEL."""

    def test_plain_text(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_CANCEL_SENTINEL": "q"}):
            assert load_config().cancel_sentinel == b"q"

    def test_escapes_are_decoded(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_CANCEL_SENTINEL": "quit\\n"}):
            assert load_config().cancel_sentinel == b"quit\n"

    def test_empty_means_forced_cancel(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_CANCEL_SENTINEL": ""}):
            assert load_config().cancel_sentinel is None


class TestParseWait:
    """Test the grace/term/kill durations."""

    def test_custom_values(self):
        with mock.patch.dict(
            os.environ,
            {
                "PROCWATCH_GRACE_PERIOD": "5",
                "PROCWATCH_TERM_TIMEOUT": "3.5",
                "PROCWATCH_KILL_TIMEOUT": "0.5",
            },
        ):
            config = load_config()
            assert config.grace_period == 5.0
            assert config.term_timeout == 3.5
            assert config.kill_timeout == 0.5

    def test_clamped(self):
        with mock.patch.dict(
            os.environ,
            {"PROCWATCH_GRACE_PERIOD": "0", "PROCWATCH_TERM_TIMEOUT": "1000"},
        ):
            config = load_config()
            assert config.grace_period == 0.1
            assert config.term_timeout == 60.0

    def test_invalid_falls_back_to_default(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_KILL_TIMEOUT": "abc"}):
            assert load_config().kill_timeout == DEFAULT_KILL_TIMEOUT


class TestParseBufferSize:
    """Test PROCWATCH_BUFFER_SIZE."""

    @pytest.mark.parametrize(("value", "expected"), [("16", 16), ("0", 0), ("-4", 0), ("many", 0)])
    def test_values(self, value: str, expected: int):
        with mock.patch.dict(os.environ, {"PROCWATCH_BUFFER_SIZE": value}):
            assert load_config().buffer_size == expected


class TestParseBool:
    """Test boolean parsing via PROCWATCH_LOG_DEBUG."""

    @pytest.mark.parametrize("value", ["true", "True", "TRUE", "1", "yes", "on"])
    def test_truthy_values(self, value: str):
        with mock.patch.dict(os.environ, {"PROCWATCH_LOG_DEBUG": value}):
            config = load_config()
            assert config.log_debug is True
            assert config.log_file is not None
            assert config.log_file.endswith(".log")

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", ""])
    def test_falsy_values(self, value: str):
        with mock.patch.dict(os.environ, {"PROCWATCH_LOG_DEBUG": value}):
            config = load_config()
            assert config.log_debug is False
            assert config.log_file is None


class TestConfigMethods:
    """Test Config methods."""

    def test_repr(self):
        config = Config(timeout=5.0, cancel_sentinel=b"q\n", buffer_size=4)
        repr_str = repr(config)
        assert "timeout=5.0" in repr_str
        assert "cancel_sentinel=b'q\\n'" in repr_str
        assert "buffer_size=4" in repr_str


class TestGlobalConfig:
    """Test the global config instance."""

    def test_get_config_returns_same_instance(self):
        reload_config()
        assert get_config() is get_config()

    def test_reload_config_creates_new_instance(self):
        config1 = get_config()
        config2 = reload_config()
        assert config1 is not config2

    def test_reload_picks_up_environment(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_TIMEOUT": "7"}):
            assert reload_config().timeout == 7.0
            assert get_config().timeout == 7.0

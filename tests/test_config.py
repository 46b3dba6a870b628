"""Tests for src.config — settings parsing and validation."""

import os

import pytest
from unittest.mock import patch

from src.config import Settings, _load_settings


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.SYNC_TIMEOUT_SECONDS == 15.0
        assert s.SYNC_MAX_ATTEMPTS == 0
        assert s.NOTIFIER_PROVIDER == "log"
        assert s.HASH_PASSWORDS is True

    def test_base_url_trailing_slash_stripped(self):
        assert Settings(SYNC_API_BASE_URL="http://api.test/ ").SYNC_API_BASE_URL == "http://api.test"

    def test_terminal_on_reject_defaults_off(self):
        assert Settings().SYNC_TERMINAL_ON_REJECT is False
        assert Settings(SYNC_TERMINAL_ON_REJECT="true").SYNC_TERMINAL_ON_REJECT is True

    def test_empty_ints_become_zero(self):
        s = Settings(SYNC_MAX_ATTEMPTS="", TELEGRAM_CHAT_ID=" ")
        assert (s.SYNC_MAX_ATTEMPTS, s.TELEGRAM_CHAT_ID) == (0, 0)

    @pytest.mark.parametrize("raw,expected", [("false", False), ("0", False), ("Off", False), ("yes", True)])
    def test_hash_passwords_flag(self, raw, expected):
        assert Settings(HASH_PASSWORDS=raw).HASH_PASSWORDS is expected


class TestLoadSettings:
    def test_reads_environment(self):
        env = {"SYNC_API_BASE_URL": "https://api.test/", "SYNC_MAX_ATTEMPTS": "5", "NOTIFIER_PROVIDER": "log"}
        with patch.dict(os.environ, env):
            s = _load_settings()
        assert s.SYNC_API_BASE_URL == "https://api.test"
        assert s.SYNC_MAX_ATTEMPTS == 5

    def test_unknown_provider_exits(self):
        with patch.dict(os.environ, {"NOTIFIER_PROVIDER": "pigeon"}):
            with pytest.raises(SystemExit):
                _load_settings()

    def test_telegram_without_token_exits(self):
        with patch.dict(os.environ, {"NOTIFIER_PROVIDER": "telegram", "TELEGRAM_BOT_TOKEN": ""}):
            with pytest.raises(SystemExit):
                _load_settings()

    def test_non_http_url_exits(self):
        with patch.dict(os.environ, {"NOTIFIER_PROVIDER": "log", "SYNC_API_BASE_URL": "ftp://api.test"}):
            with pytest.raises(SystemExit):
                _load_settings()

"""
配置模块测试
"""

import dataclasses

import pytest

from hazel.config import (
    DEFAULT_GAME_PORT,
    PROTOCOL_VERSION,
    HazelConfig,
    get_config,
    reset_config,
)


class TestHazelConfig:
    """HazelConfig 测试"""

    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_defaults(self):
        config = HazelConfig()
        assert config.game_port == DEFAULT_GAME_PORT == 22023
        assert config.announce_port == 22024
        assert config.protocol_version == PROTOCOL_VERSION
        assert config.max_retries == 8

    def test_frozen(self):
        config = HazelConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.max_retries = 1

    def test_resend_delay_backoff_capped(self):
        config = HazelConfig(resend_interval=0.3, resend_backoff=2.0, max_resend_interval=1.0)
        assert config.resend_delay(0) == pytest.approx(0.3)
        assert config.resend_delay(1) == pytest.approx(0.6)
        assert config.resend_delay(2) == pytest.approx(1.0)
        assert config.resend_delay(10) == pytest.approx(1.0)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("HAZEL_MAX_RETRIES", "3")
        monkeypatch.setenv("HAZEL_RESEND_INTERVAL", "0.1")
        config = HazelConfig.from_env()
        assert config.max_retries == 3
        assert config.resend_interval == pytest.approx(0.1)

    def test_invalid_env_falls_back(self, monkeypatch):
        monkeypatch.setenv("HAZEL_GAME_PORT", "not-a-port")
        assert HazelConfig().game_port == DEFAULT_GAME_PORT

    def test_global_singleton(self, monkeypatch):
        first = get_config()
        assert get_config() is first
        monkeypatch.setenv("HAZEL_MAX_RETRIES", "2")
        reset_config()
        assert get_config().max_retries == 2

    def test_env_keys(self):
        keys = HazelConfig.env_keys()
        assert "HAZEL_MAX_RETRIES" in keys
        assert "HAZEL_RECEIVE_HISTORY_SIZE" in keys

    @pytest.mark.parametrize("overrides", [
        {"resend_interval": 0},
        {"resend_backoff": 0.5},
        {"max_retries": 0},
        {"receive_history_size": 4},
    ])
    def test_rejects_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            HazelConfig(**overrides)

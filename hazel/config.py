"""传输层配置

Hazel 的端口、重传节奏、心跳和接收窗口都在这里，每一项都能用
HAZEL_<字段名大写> 环境变量覆盖，例如 HAZEL_MAX_RETRIES=3。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields

logger = logging.getLogger(__name__)

# 客户端协议版本
PROTOCOL_VERSION = 50_51_65_50

DEFAULT_GAME_PORT = 22023
DEFAULT_ANNOUNCE_PORT = 22024

# UDP 单个数据报的最大负载
MAX_DATAGRAM_SIZE = 65_507

ENV_PREFIX = "HAZEL_"


def _env(name: str, default):
    """读取 HAZEL_<NAME>，按默认值的类型转换；无法转换时保留默认值"""
    key = ENV_PREFIX + name.upper()
    raw = os.environ.get(key)
    if raw is None:
        return default
    try:
        return type(default)(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %r", key, raw, default)
        return default


def _setting(name: str, default):
    return field(default_factory=lambda: _env(name, default))


@dataclass(frozen=True)
class HazelConfig:
    """传输层配置 (不可变)

    重传节奏：第 n 次重传前等待 resend_interval * resend_backoff ** n 秒，
    不超过 max_resend_interval；重传 max_retries 次仍未确认即判定超时。
    """

    # ==================== 端口与版本 ====================
    game_port: int = _setting("game_port", DEFAULT_GAME_PORT)
    announce_port: int = _setting("announce_port", DEFAULT_ANNOUNCE_PORT)
    protocol_version: int = _setting("protocol_version", PROTOCOL_VERSION)

    # ==================== 重传 ====================
    resend_interval: float = _setting("resend_interval", 0.3)
    resend_backoff: float = _setting("resend_backoff", 2.0)
    max_resend_interval: float = _setting("max_resend_interval", 1.0)
    max_retries: int = _setting("max_retries", 8)
    resend_tick: float = _setting("resend_tick", 0.05)

    # ==================== 心跳与接收 ====================
    keep_alive_interval: float = _setting("keep_alive_interval", 1.5)
    receive_history_size: int = _setting("receive_history_size", 1024)
    receive_buffer_size: int = _setting("receive_buffer_size", MAX_DATAGRAM_SIZE)

    def __post_init__(self):
        for name in ("resend_interval", "max_resend_interval", "resend_tick", "keep_alive_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.resend_backoff < 1:
            raise ValueError("resend_backoff must be >= 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.receive_history_size < 8:
            raise ValueError("receive_history_size must cover the 8-packet ack window")

    @classmethod
    def from_env(cls) -> HazelConfig:
        return cls()

    @classmethod
    def env_keys(cls) -> list[str]:
        """所有可用的环境变量名"""
        return [ENV_PREFIX + f.name.upper() for f in fields(cls)]

    def resend_delay(self, retry_count: int) -> float:
        """第 retry_count 次重传前的等待时间"""
        delay = self.resend_interval * (self.resend_backoff ** retry_count)
        return min(delay, self.max_resend_interval)


_config: HazelConfig | None = None


def get_config() -> HazelConfig:
    """全局配置（首次调用时读取环境变量）"""
    global _config
    if _config is None:
        _config = HazelConfig.from_env()
    return _config


def reset_config() -> None:
    global _config
    _config = None

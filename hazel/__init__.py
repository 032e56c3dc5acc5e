"""
Hazel 传输层模块
包含线格式编解码、Hazel 包、连接状态机和 asyncio UDP 端点
"""

from .client import HazelClient
from .codec import PacketReader, PacketWriter, Vector2
from .config import HazelConfig, get_config, reset_config
from .connection import CloseReason, Connection, ConnectionState, ReceiveHistory
from .exceptions import (
    ConnectionTimedOutError,
    DecodeError,
    HazelConnectionError,
    HazelError,
    InvalidUtf8Error,
    MalformedVarintError,
    NotConnectedError,
    TruncatedInputError,
    UnknownDisconnectReasonError,
    UnknownPacketTypeError,
)
from .packets import (
    Acknowledge,
    Disconnect,
    Hello,
    KeepAlive,
    PacketType,
    Reliable,
    Unreliable,
    decode_packet,
    encode_packet,
)
from .server import HazelServer

__all__ = [
    # 编解码
    "PacketReader", "PacketWriter", "Vector2",
    # 配置
    "HazelConfig", "get_config", "reset_config",
    # 连接
    "Connection", "ConnectionState", "CloseReason", "ReceiveHistory",
    "HazelClient", "HazelServer",
    # 包
    "PacketType", "Unreliable", "Reliable", "Hello", "Disconnect",
    "Acknowledge", "KeepAlive", "decode_packet", "encode_packet",
    # 异常
    "HazelError", "DecodeError", "MalformedVarintError", "TruncatedInputError",
    "InvalidUtf8Error", "UnknownPacketTypeError", "UnknownDisconnectReasonError",
    "HazelConnectionError", "ConnectionTimedOutError", "NotConnectedError",
]

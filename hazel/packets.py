"""Hazel 包格式

首字节为包类型，其后按类型不同：
- Unreliable: 负载
- Reliable:   u16 大端 ack_id + 负载
- Hello:      u16 大端 ack_id + 保留字节 + u32 版本 + 用户名
- Disconnect: (可选负载，忽略)
- Acknowledge: u16 大端 ack_id + u8 ack_flags
- KeepAlive:  u16 大端 ack_id
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Union

from .codec import PacketReader, PacketWriter
from .config import PROTOCOL_VERSION
from .exceptions import DecodeError, UnknownPacketTypeError


class PacketType(IntEnum):
    """Hazel 包类型"""
    UNRELIABLE = 0x00
    RELIABLE = 0x01
    HELLO = 0x08
    DISCONNECT = 0x09
    ACKNOWLEDGE = 0x0A
    KEEP_ALIVE = 0x0C


# ==================== 包定义 ====================

@dataclass
class Unreliable:
    """不可靠包，无需确认"""
    data: bytes = b""

    packet_type: ClassVar[PacketType] = PacketType.UNRELIABLE

    def to_bytes(self) -> bytes:
        w = PacketWriter().write_u8(self.packet_type)
        return w.write_bytes(self.data).to_bytes()


@dataclass
class Reliable:
    """可靠包，接收方须回复 Acknowledge"""
    ack_id: int
    data: bytes = b""

    packet_type: ClassVar[PacketType] = PacketType.RELIABLE

    def to_bytes(self) -> bytes:
        w = PacketWriter().write_u8(self.packet_type).write_u16_be(self.ack_id)
        return w.write_bytes(self.data).to_bytes()


@dataclass
class Hello:
    """握手包，同样需要确认"""
    ack_id: int
    username: str = ""
    version: int = PROTOCOL_VERSION

    packet_type: ClassVar[PacketType] = PacketType.HELLO

    def to_bytes(self) -> bytes:
        w = PacketWriter().write_u8(self.packet_type).write_u16_be(self.ack_id)
        w.write_u8(0)  # 保留
        w.write_u32(self.version)
        return w.write_string(self.username).to_bytes()


@dataclass
class Disconnect:
    """断开连接"""
    data: bytes = b""

    packet_type: ClassVar[PacketType] = PacketType.DISCONNECT

    def to_bytes(self) -> bytes:
        w = PacketWriter().write_u8(self.packet_type)
        return w.write_bytes(self.data).to_bytes()


@dataclass
class Acknowledge:
    """确认包

    ack_flags 第 i 位 (0 ≤ i ≤ 7) 置位表示 ack_id - i - 1 也已收到
    """
    ack_id: int
    ack_flags: int = 0

    packet_type: ClassVar[PacketType] = PacketType.ACKNOWLEDGE

    def to_bytes(self) -> bytes:
        w = PacketWriter().write_u8(self.packet_type).write_u16_be(self.ack_id)
        return w.write_u8(self.ack_flags).to_bytes()

    def acked_ids(self) -> list[int]:
        """本确认包覆盖的全部 ack_id (含自身)"""
        ids = [self.ack_id]
        for bit in range(8):
            if self.ack_flags & (1 << bit):
                ids.append((self.ack_id - bit - 1) & 0xFFFF)
        return ids


@dataclass
class KeepAlive:
    """心跳包，需要确认"""
    ack_id: int

    packet_type: ClassVar[PacketType] = PacketType.KEEP_ALIVE

    def to_bytes(self) -> bytes:
        w = PacketWriter().write_u8(self.packet_type)
        return w.write_u16_be(self.ack_id).to_bytes()


HazelPacket = Union[Unreliable, Reliable, Hello, Disconnect, Acknowledge, KeepAlive]

# 需要确认的包类型
RELIABLE_TYPES = (Reliable, Hello, KeepAlive)


# ==================== 解码 ====================

def _decode_unreliable(r: PacketReader) -> Unreliable:
    return Unreliable(data=r.remaining_bytes())


def _decode_reliable(r: PacketReader) -> Reliable:
    ack_id = r.read_u16_be()
    return Reliable(ack_id=ack_id, data=r.remaining_bytes())


def _decode_hello(r: PacketReader) -> Hello:
    ack_id = r.read_u16_be()
    r.read_u8()  # 保留
    version = r.read_u32()
    username = r.read_string()
    return Hello(ack_id=ack_id, username=username, version=version)


def _decode_disconnect(r: PacketReader) -> Disconnect:
    return Disconnect(data=r.remaining_bytes())


def _decode_acknowledge(r: PacketReader) -> Acknowledge:
    ack_id = r.read_u16_be()
    # 旧实现不带标志字节
    ack_flags = r.read_u8() if r.remaining > 0 else 0
    return Acknowledge(ack_id=ack_id, ack_flags=ack_flags)


def _decode_keep_alive(r: PacketReader) -> KeepAlive:
    return KeepAlive(ack_id=r.read_u16_be())


_DECODERS: dict[PacketType, Callable[[PacketReader], HazelPacket]] = {
    PacketType.UNRELIABLE: _decode_unreliable,
    PacketType.RELIABLE: _decode_reliable,
    PacketType.HELLO: _decode_hello,
    PacketType.DISCONNECT: _decode_disconnect,
    PacketType.ACKNOWLEDGE: _decode_acknowledge,
    PacketType.KEEP_ALIVE: _decode_keep_alive,
}


def decode_packet(data: bytes) -> HazelPacket:
    """解码一个 UDP 数据报

    Raises:
        UnknownPacketTypeError: 首字节不是已知包类型
        DecodeError: 包头截断或字段非法
    """
    r = PacketReader(data)
    try:
        raw_type = r.read_u8()
    except DecodeError as e:
        raise e.with_context("HazelPacket")
    try:
        packet_type = PacketType(raw_type)
    except ValueError:
        raise UnknownPacketTypeError(raw_type) from None
    try:
        return _DECODERS[packet_type](r)
    except DecodeError as e:
        raise e.with_context(packet_type.name)


def encode_packet(packet: HazelPacket) -> bytes:
    return packet.to_bytes()

"""线格式编解码

PacketReader / PacketWriter 负责基础类型与线上字节之间的无损转换：
- 定长整数 (小端，仅 ack_id 为大端)
- LEB128 变长整数 (packed u32 / packed i32)
- 长度前缀 UTF-8 字符串
- 量化二维向量 Vector2
- 嵌套消息 (u16 长度 + u8 标签 + 消息体)
"""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .exceptions import (
    DecodeError,
    InvalidUtf8Error,
    MalformedVarintError,
    raise_if_truncated,
)

T = TypeVar("T")

# packed u32 最多占用 5 个字节
MAX_VARINT_BYTES = 5

# Vector2 坐标范围 [-40, 40]，量化到 u16
VECTOR_RANGE = 80.0
VECTOR_MIN = -40.0
VECTOR_MAX = 40.0
U16_MAX = 0xFFFF

# 单个量化步长，往返误差上限
VECTOR_STEP = VECTOR_RANGE / U16_MAX


# ==================== Vector2 ====================


@dataclass(frozen=True)
class Vector2:
    """二维坐标，线上为两个 u16 量化值"""

    x: float = 0.0
    y: float = 0.0

    @staticmethod
    def quantize(value: float) -> int:
        """浮点坐标 → 最近的 u16 量化值"""
        ratio = (value - VECTOR_MIN) / VECTOR_RANGE
        ratio = max(0.0, min(1.0, ratio))
        return int(round(ratio * U16_MAX))

    @staticmethod
    def dequantize(raw: int) -> float:
        """u16 量化值 → [-40, 40] 浮点坐标"""
        ratio = max(0.0, min(1.0, raw / U16_MAX))
        return ratio * VECTOR_RANGE + VECTOR_MIN

    @classmethod
    def from_raw(cls, raw_x: int, raw_y: int) -> Vector2:
        return cls(cls.dequantize(raw_x), cls.dequantize(raw_y))

    def to_raw(self) -> tuple[int, int]:
        return self.quantize(self.x), self.quantize(self.y)


Vector2.ZERO = Vector2(0.0, 0.0)


# ==================== 读取器 ====================


class PacketReader:
    """按偏移读取字节流

    每次读取都会检查剩余长度，不足时抛出 TruncatedInputError。
    base_offset 为该读取器在最外层数据包中的起始偏移，
    嵌套消息的子读取器据此报告绝对偏移 (供 dissector 使用)。
    """

    def __init__(self, data: bytes | bytearray | memoryview, base_offset: int = 0):
        self._data = bytes(data)
        self._pos = 0
        self.base_offset = base_offset

    # ---------- 位置 ----------

    @property
    def position(self) -> int:
        """读取器内部位置"""
        return self._pos

    @property
    def offset(self) -> int:
        """最外层数据包中的绝对偏移"""
        return self.base_offset + self._pos

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def __len__(self) -> int:
        return len(self._data)

    def _take(self, count: int) -> bytes:
        raise_if_truncated(count, self.remaining, self.offset)
        chunk = self._data[self._pos:self._pos + count]
        self._pos += count
        return chunk

    def _unpack(self, fmt: str, size: int):
        return struct.unpack(fmt, self._take(size))[0]

    # ---------- 定长整数 ----------

    def read_u8(self) -> int:
        return self._unpack("<B", 1)

    def read_i8(self) -> int:
        return self._unpack("<b", 1)

    def read_u16(self) -> int:
        return self._unpack("<H", 2)

    def read_u16_be(self) -> int:
        return self._unpack(">H", 2)

    def read_i16(self) -> int:
        return self._unpack("<h", 2)

    def read_u32(self) -> int:
        return self._unpack("<I", 4)

    def read_i32(self) -> int:
        return self._unpack("<i", 4)

    def read_f32(self) -> float:
        return self._unpack("<f", 4)

    def read_bool(self) -> bool:
        start = self.offset
        value = self.read_u8()
        if value not in (0, 1):
            raise DecodeError(f"Invalid bool byte: {value}", offset=start)
        return value == 1

    def peek_i32(self) -> int:
        """读取 i32 但不移动位置"""
        raise_if_truncated(4, self.remaining, self.offset)
        return struct.unpack_from("<i", self._data, self._pos)[0]

    # ---------- 变长整数 ----------

    def read_packed_u32(self) -> int:
        """LEB128 解码，最多 5 字节"""
        start = self.offset
        value = 0
        for index in range(MAX_VARINT_BYTES):
            byte = self.read_u8()
            if index == MAX_VARINT_BYTES - 1:
                # 第 5 字节只剩 4 个有效位，且不能再带续位
                if byte & 0x80 or byte > 0x0F:
                    raise MalformedVarintError(offset=start)
            value |= (byte & 0x7F) << (7 * index)
            if not byte & 0x80:
                return value
        raise MalformedVarintError(offset=start)

    def read_packed_i32(self) -> int:
        value = self.read_packed_u32()
        if value & 0x80000000:
            value -= 1 << 32
        return value

    # ---------- 复合类型 ----------

    def read_bytes(self, count: int) -> bytes:
        return self._take(count)

    def read_string(self) -> str:
        length = self.read_packed_u32()
        start = self.offset
        raw = self._take(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidUtf8Error(str(e), offset=start) from e

    def read_vector2(self) -> Vector2:
        raw_x = self.read_u16()
        raw_y = self.read_u16()
        return Vector2.from_raw(raw_x, raw_y)

    def read_array(self, read_item: Callable[[PacketReader], T],
                   count: int | None = None) -> list[T]:
        """读取数组

        count 为 None 时先读取 packed u32 元素个数；
        任意元素解码失败都会中止整个数组。
        """
        if count is None:
            count = self.read_packed_u32()
        return [read_item(self) for _ in range(count)]

    def read_message(self) -> tuple[int, PacketReader]:
        """读取嵌套消息，返回 (tag, 子读取器)

        子读取器只覆盖声明的消息体长度，
        消息体内的解码错误不会影响外层读取位置。
        """
        length = self.read_u16()
        tag = self.read_u8()
        body_offset = self.offset
        body = self._take(length)
        return tag, PacketReader(body, base_offset=body_offset)

    def read_all(self, read_item: Callable[[PacketReader], T]) -> list[T]:
        """循环读取直到数据耗尽"""
        items = []
        while self.remaining > 0:
            items.append(read_item(self))
        return items

    def remaining_bytes(self) -> bytes:
        return self._take(self.remaining)


# ==================== 写入器 ====================


class PacketWriter:
    """字节流写入器，与 PacketReader 对称

    start_message / end_message 支持嵌套，
    end_message 回填 u16 消息长度。
    """

    def __init__(self):
        self._buf = bytearray()
        self._message_starts: list[int] = []

    def __len__(self) -> int:
        return len(self._buf)

    def to_bytes(self) -> bytes:
        if self._message_starts:
            raise ValueError("Unclosed message in writer")
        return bytes(self._buf)

    def _pack(self, fmt: str, value) -> PacketWriter:
        self._buf += struct.pack(fmt, value)
        return self

    # ---------- 定长整数 ----------

    def write_u8(self, value: int) -> PacketWriter:
        return self._pack("<B", value)

    def write_i8(self, value: int) -> PacketWriter:
        return self._pack("<b", value)

    def write_u16(self, value: int) -> PacketWriter:
        return self._pack("<H", value)

    def write_u16_be(self, value: int) -> PacketWriter:
        return self._pack(">H", value)

    def write_i16(self, value: int) -> PacketWriter:
        return self._pack("<h", value)

    def write_u32(self, value: int) -> PacketWriter:
        return self._pack("<I", value)

    def write_i32(self, value: int) -> PacketWriter:
        return self._pack("<i", value)

    def write_f32(self, value: float) -> PacketWriter:
        return self._pack("<f", value)

    def write_bool(self, value: bool) -> PacketWriter:
        return self.write_u8(1 if value else 0)

    # ---------- 变长整数 ----------

    def write_packed_u32(self, value: int) -> PacketWriter:
        if not 0 <= value <= 0xFFFFFFFF:
            raise ValueError(f"packed u32 out of range: {value}")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(byte | 0x80)
            else:
                self._buf.append(byte)
                return self

    def write_packed_i32(self, value: int) -> PacketWriter:
        if not -0x80000000 <= value <= 0x7FFFFFFF:
            raise ValueError(f"packed i32 out of range: {value}")
        return self.write_packed_u32(value & 0xFFFFFFFF)

    # ---------- 复合类型 ----------

    def write_bytes(self, data: bytes) -> PacketWriter:
        self._buf += data
        return self

    def write_string(self, value: str) -> PacketWriter:
        raw = value.encode("utf-8")
        self.write_packed_u32(len(raw))
        return self.write_bytes(raw)

    def write_vector2(self, value: Vector2) -> PacketWriter:
        raw_x, raw_y = value.to_raw()
        self.write_u16(raw_x)
        return self.write_u16(raw_y)

    def start_message(self, tag: int) -> PacketWriter:
        self._message_starts.append(len(self._buf))
        self.write_u16(0)
        return self.write_u8(tag)

    def end_message(self) -> PacketWriter:
        if not self._message_starts:
            raise ValueError("end_message without start_message")
        start = self._message_starts.pop()
        length = len(self._buf) - start - 3
        if length > U16_MAX:
            raise ValueError(f"Message too long: {length}")
        struct.pack_into("<H", self._buf, start, length)
        return self

    def write_message(self, tag: int, body: bytes) -> PacketWriter:
        """写入一个完整的嵌套消息"""
        self.start_message(tag)
        self.write_bytes(body)
        return self.end_message()


# ==================== 工具函数 ====================


def encode_packed_u32(value: int) -> bytes:
    return PacketWriter().write_packed_u32(value).to_bytes()


def decode_packed_u32(data: bytes) -> int:
    return PacketReader(data).read_packed_u32()


def encode_vector2(value: Vector2) -> bytes:
    return PacketWriter().write_vector2(value).to_bytes()


def decode_vector2(data: bytes) -> Vector2:
    return PacketReader(data).read_vector2()

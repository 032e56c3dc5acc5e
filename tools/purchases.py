"""已购项目文件读写

客户端本地保存的已购列表：一串 Hazel 字符串，以空字符串结尾，
整个文件逐字节与 (下标 % 212) 异或。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from hazel.codec import PacketReader, PacketWriter

logger = logging.getLogger(__name__)

XOR_PERIOD = 212


def xor_mask(data: bytes) -> bytes:
    """异或掩码；同一函数既用于编码也用于解码"""
    return bytes(b ^ (i % XOR_PERIOD) for i, b in enumerate(data))


def decode_purchases(data: bytes) -> list[str]:
    """
    解码文件内容

    Raises:
        DecodeError: 缺少结尾空字符串或字符串损坏
    """
    r = PacketReader(xor_mask(data))
    values = []
    while True:
        value = r.read_string()
        if not value:
            break
        values.append(value)
    if r.remaining:
        logger.debug("Ignoring %d trailing bytes after purchase list", r.remaining)
    return values


def encode_purchases(values: Iterable[str]) -> bytes:
    w = PacketWriter()
    for value in values:
        if not value:
            raise ValueError("Purchase ids must not be empty")
        w.write_string(value)
    w.write_string("")
    return xor_mask(w.to_bytes())


def read_purchase_file(path: str | Path) -> list[str]:
    values = decode_purchases(Path(path).read_bytes())
    logger.info("Read %d purchases from %s", len(values), path)
    return values


def write_purchase_file(path: str | Path, values: Iterable[str]) -> None:
    data = encode_purchases(values)
    Path(path).write_bytes(data)
    logger.info("Wrote purchase file %s (%d bytes)", path, len(data))

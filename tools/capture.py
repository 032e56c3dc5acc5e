"""抓包文本读取

读取 tshark 导出的字段文本，每行 "源端口 十六进制负载"：
    tshark -r dump.pcapng -Y 'udp.port == 22023' -T fields -e udp.srcport -e data.data > dump.txt

源端口为游戏端口时方向为服务端→客户端，否则为客户端→服务端。
数据报原样交给解码入口，不做任何修改。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from hazel.config import DEFAULT_GAME_PORT

logger = logging.getLogger(__name__)


class Direction(Enum):
    TO_SERVER = "to_server"
    TO_CLIENT = "to_client"


@dataclass(frozen=True)
class CapturedDatagram:
    direction: Direction
    data: bytes
    line: int = 0

    @property
    def to_server(self) -> bool:
        return self.direction is Direction.TO_SERVER


def parse_capture_line(line: str, game_port: int = DEFAULT_GAME_PORT) -> tuple[Direction, bytes] | None:
    """解析一行；空行返回 None

    Raises:
        ValueError: 端口或十六进制数据非法
    """
    parts = line.split()
    if not parts:
        return None
    if len(parts) != 2:
        raise ValueError(f"Expected '<srcport> <hex>', got {line.strip()!r}")
    port = int(parts[0], 10)
    # tshark 对多段数据可能输出冒号分隔
    data = bytes.fromhex(parts[1].replace(":", ""))
    direction = Direction.TO_CLIENT if port == game_port else Direction.TO_SERVER
    return direction, data


def read_capture_lines(lines: Iterable[str], game_port: int = DEFAULT_GAME_PORT,
                       strict: bool = False) -> Iterator[CapturedDatagram]:
    """逐行解析抓包文本

    strict 为 False 时跳过非法行并记录警告
    """
    for number, line in enumerate(lines, start=1):
        try:
            parsed = parse_capture_line(line, game_port)
        except ValueError as e:
            if strict:
                raise ValueError(f"line {number}: {e}") from e
            logger.warning("Skipping capture line %d: %s", number, e)
            continue
        if parsed is None:
            continue
        direction, data = parsed
        yield CapturedDatagram(direction, data, number)


def read_capture_file(path: str | Path, **kwargs) -> list[CapturedDatagram]:
    with open(path, encoding="utf-8") as f:
        return list(read_capture_lines(f, **kwargs))

# -*- coding: utf-8 -*-
"""
Hazel 游戏协议客户端 - 命令行入口

使用方法:
    python main.py scan [--server EUROPE] [--max-requests 10]
    python main.py join ABCDEF [--server EUROPE] [--name client]
    python main.py dissect 0100010a00...
    python main.py dissect --capture dump.txt
    python main.py purchases secureNew

依赖:
    - pydantic (设置校验)
    - rich (终端输出)
"""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from game.client import GameClient
from game.events import EventType, GameEvent
from game.models import ClientSettings, ScanSettings
from game.objects import GameListing, MainServer
from hazel.exceptions import HazelError
from logging_config import setup_logging
from tools.capture import read_capture_file
from tools.dissect import dissect, render
from tools.purchases import read_purchase_file

logger = logging.getLogger(__name__)

console = Console(highlight=False)


def _server_address(value: str) -> tuple[str, int]:
    """服务器参数：主服务器名 (EUROPE/NORTH_AMERICA/ASIA) 或 host[:port]"""
    if value.upper() in MainServer.__members__:
        return MainServer[value.upper()].address
    host, _, port = value.partition(":")
    return host, int(port) if port else MainServer.EUROPE.address[1]


# ==================== scan ====================

def _listings_table(listings: list[GameListing]) -> Table:
    table = Table(title="Games")
    table.add_column("Code")
    table.add_column("Host")
    table.add_column("Players", justify="right")
    table.add_column("Map")
    table.add_column("Imposters", justify="right")
    table.add_column("Server")
    for listing in listings:
        table.add_row(
            str(listing.game_id),
            escape(listing.host_username),
            f"{listing.player_count}/{listing.max_players}",
            listing.map_name,
            str(listing.num_imposters),
            str(listing.address),
        )
    return table


async def cmd_scan(args) -> int:
    settings = ScanSettings(
        server=args.server,
        connect_username=args.name,
        max_requests=args.max_requests,
        cache_size=args.cache_size,
        num_imposters=args.imposters,
    )
    seen: set[int] = set()

    def on_batch(listings: list[GameListing]) -> bool:
        fresh = [g for g in listings if g.game_id.id not in seen]
        seen.update(g.game_id.id for g in fresh)
        if fresh:
            console.print(_listings_table(fresh))
        return True

    total = await GameClient.scan_games(settings, on_batch)
    console.print(f"{total} listings received, {len(seen)} unique")
    return 0


# ==================== join ====================

def _print_event(event: GameEvent) -> None:
    if event.event_type == EventType.CHAT_MESSAGE:
        console.print(f"[bold]{event.player_id}[/bold]: {escape(event.message)}")
    elif event.event_type == EventType.DECODE_FAILED:
        console.print(f"[red]decode failed[/red] {escape(str(event.data.get('error')))}")
    elif event.event_type in (EventType.JOINED_GAME, EventType.PLAYER_JOINED,
                              EventType.PLAYER_LEFT, EventType.GAME_STARTED,
                              EventType.DISCONNECTED, EventType.CHANGE_SERVER):
        console.print(f"[cyan]{event.event_type.name}[/cyan] {escape(str(event.data))}")


async def cmd_join(args) -> int:
    settings = ClientSettings(
        connect_username=args.name,
        game_username=args.game_name or args.name,
        initial_color=args.color,
    )
    client = GameClient(_server_address(args.server), settings)
    client.event_bus.subscribe_all(_print_event)
    try:
        await client.run(args.code, timeout=args.timeout)
    finally:
        await client.disconnect()
    return 0


# ==================== purchases ====================

def cmd_purchases(args) -> int:
    values = read_purchase_file(args.path)
    table = Table(title=escape(f"{args.path} ({len(values)})"))
    table.add_column("#", justify="right")
    table.add_column("id")
    for index, value in enumerate(values):
        table.add_row(str(index), escape(value))
    console.print(table)
    return 0


# ==================== dissect ====================

def cmd_dissect(args) -> int:
    if args.capture:
        for datagram in read_capture_file(args.capture):
            arrow = "C->S" if datagram.to_server else "S->C"
            console.rule(f"line {datagram.line} {arrow}")
            render(dissect(datagram.data, to_server=datagram.to_server), console)
        return 0
    if not args.hex:
        console.print("[red]dissect needs HEX or --capture FILE[/red]")
        return 2
    render(dissect(bytes.fromhex(args.hex), to_server=args.to_server), console)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hazel 游戏协议客户端")
    parser.add_argument("-v", "--verbose", action="store_true", help="在终端输出调试日志")
    parser.add_argument("--trace", action="store_true", help="记录每个收发的数据报")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="扫描房间列表")
    scan.add_argument("--server", default="EUROPE", help="主服务器名")
    scan.add_argument("--name", default="client", help="连接用户名")
    scan.add_argument("--max-requests", type=int, default=10)
    scan.add_argument("--cache-size", type=int, default=200)
    scan.add_argument("--imposters", type=int, default=0, help="0 表示任意")

    join = sub.add_parser("join", help="加入房间")
    join.add_argument("code", help="房间码 (4 或 6 个字符)")
    join.add_argument("--server", default="EUROPE", help="主服务器名或 host[:port]")
    join.add_argument("--name", default="client", help="连接用户名")
    join.add_argument("--game-name", default=None, help="房间内用户名 (默认同连接用户名)")
    join.add_argument("--color", type=int, default=0)
    join.add_argument("--timeout", type=float, default=10.0, help="握手超时秒数")

    dis = sub.add_parser("dissect", help="解析数据报")
    dis.add_argument("hex", nargs="?", help="十六进制数据报")
    dis.add_argument("--capture", help="tshark 字段导出文件")
    dis.add_argument("--to-server", action="store_true", help="HEX 为客户端发出的数据报")

    pur = sub.add_parser("purchases", help="列出已购项目文件内容")
    pur.add_argument("path", help="已购项目文件路径")
    return parser


def main(argv: list[str] | None = None) -> int:
    """程序入口"""
    args = build_parser().parse_args(argv)
    setup_logging(enable_console=args.verbose, console_level="DEBUG", packet_trace=args.trace)

    try:
        if args.command == "scan":
            return asyncio.run(cmd_scan(args))
        if args.command == "join":
            return asyncio.run(cmd_join(args))
        if args.command == "purchases":
            return cmd_purchases(args)
        return cmd_dissect(args)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt - exiting")
        return 0
    except ValidationError as e:
        console.print(f"[red]Invalid settings[/red]\n{escape(str(e))}")
        return 2
    except (HazelError, OSError, ValueError, asyncio.TimeoutError) as e:
        logger.exception("Command failed")
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

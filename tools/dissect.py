"""无状态数据报解析器

把一个原始数据报解析成字段树 (偏移、长度、字段名、值)，
覆盖 Hazel 包头、根消息和 GameInfo 子项。不依赖任何会话状态。

用法:
    from tools.dissect import dissect, render
    tree = dissect(bytes.fromhex("0100010a00..."), to_server=False)
    render(tree)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

from game.objects import Address, GameId, GameListing, GameOptions, ServerInfo
from game.protocol import (
    DISCONNECT_SNIFF_MAX,
    DISCONNECT_SNIFF_MIN,
    DisconnectReason,
    GameInfoTag,
    RootTag,
)
from hazel.codec import PacketReader
from hazel.exceptions import DecodeError
from hazel.packets import PacketType


@dataclass
class FieldNode:
    """字段树节点"""
    name: str
    offset: int
    length: int = 0
    value: Any = None
    children: list[FieldNode] = field(default_factory=list)
    error: str | None = None

    def add(self, node: FieldNode) -> FieldNode:
        self.children.append(node)
        return node

    def find(self, name: str) -> FieldNode | None:
        """深度优先查找第一个同名节点"""
        for child in self.children:
            if child.name == name:
                return child
            found = child.find(name)
            if found is not None:
                return found
        return None

    def label(self) -> str:
        text = f"[{self.offset}:{self.offset + self.length}] {self.name}"
        if self.value is not None:
            text += f" = {self.value}"
        if self.error:
            text += f" !! {self.error}"
        return text


def _field(parent: FieldNode, r: PacketReader, name: str,
           read: Callable[[PacketReader], Any], show: Callable[[Any], Any] | None = None) -> Any:
    """读取一个字段并挂到 parent 下"""
    start = r.offset
    value = read(r)
    parent.add(FieldNode(name, start, r.offset - start, show(value) if show else value))
    return value


def _game_id(parent: FieldNode, r: PacketReader) -> None:
    _field(parent, r, "game_id", GameId.decode, str)


def _rest(parent: FieldNode, r: PacketReader, name: str) -> None:
    if r.remaining:
        _field(parent, r, name, PacketReader.remaining_bytes, bytes.hex)


def _nested(parent: FieldNode, r: PacketReader, names: Callable[[int], str],
            body: Callable[[int, FieldNode, PacketReader], None]) -> None:
    """读取一个嵌套消息；消息体内的错误只记录在该节点上"""
    start = r.offset
    tag, sub = r.read_message()
    node = parent.add(FieldNode(names(tag), start, r.offset - start, tag))
    node.add(FieldNode("length", start, 2, len(sub)))
    node.add(FieldNode("tag", start + 2, 1, tag))
    try:
        body(tag, node, sub)
    except DecodeError as e:
        node.error = e.message


# ==================== GameInfo 子项 ====================

def _game_info_name(tag: int) -> str:
    try:
        return GameInfoTag(tag).name
    except ValueError:
        return f"UNKNOWN_ITEM({tag})"


def _spawn_child(node: FieldNode, r: PacketReader) -> None:
    child = node.add(FieldNode("child", r.offset))
    start = r.offset
    _field(child, r, "net_id", PacketReader.read_packed_u32)
    _nested(child, r, lambda t: "init", lambda t, n, sub: _rest(n, sub, "data"))
    child.length = r.offset - start


def _game_info_item(tag: int, node: FieldNode, r: PacketReader) -> None:
    if tag == GameInfoTag.UPDATE_DATA:
        _field(node, r, "net_id", PacketReader.read_packed_u32)
        _rest(node, r, "data")
    elif tag == GameInfoTag.RPC:
        _field(node, r, "net_id", PacketReader.read_packed_u32)
        _field(node, r, "call_id", PacketReader.read_u8)
        _rest(node, r, "args")
    elif tag == GameInfoTag.SPAWN:
        _field(node, r, "prefab_id", PacketReader.read_packed_u32)
        _field(node, r, "owner_id", PacketReader.read_packed_i32)
        _field(node, r, "spawn_flags", PacketReader.read_u8)
        count = _field(node, r, "child_count", PacketReader.read_packed_u32)
        for _ in range(count):
            _spawn_child(node, r)
    elif tag == GameInfoTag.DESTROY:
        _field(node, r, "net_id", PacketReader.read_packed_u32)
    elif tag == GameInfoTag.CHANGE_SCENE:
        _field(node, r, "client_id", PacketReader.read_packed_i32)
        _field(node, r, "scene", PacketReader.read_string)
    elif tag == GameInfoTag.CLIENT_READY:
        _field(node, r, "client_id", PacketReader.read_packed_i32)
    else:
        _rest(node, r, "data")


def _game_info_items(node: FieldNode, r: PacketReader) -> None:
    while r.remaining:
        _nested(node, r, _game_info_name, _game_info_item)


# ==================== 根消息 ====================

def _root_name(tag: int) -> str:
    try:
        return RootTag(tag).name
    except ValueError:
        return f"UNKNOWN({tag})"


def _join_disconnect(node: FieldNode, r: PacketReader) -> None:
    first = r.peek_i32()
    if DISCONNECT_SNIFF_MIN <= first <= DISCONNECT_SNIFF_MAX:
        reason = _field(node, r, "reason", PacketReader.read_i32, _reason_name)
        if reason == DisconnectReason.CUSTOM and r.remaining:
            _field(node, r, "message", PacketReader.read_string)
    else:
        _game_id(node, r)
        _field(node, r, "player_id", PacketReader.read_i32)
        _field(node, r, "host_id", PacketReader.read_i32)


def _reason_name(value: int) -> str:
    try:
        return DisconnectReason(value).name
    except ValueError:
        return f"UNKNOWN({value})"


def _server_to_client(tag: int, node: FieldNode, r: PacketReader) -> None:
    if tag == RootTag.HOSTING_GAME:
        _game_id(node, r)
    elif tag == RootTag.GAME_JOIN_DISCONNECT:
        _join_disconnect(node, r)
    elif tag == RootTag.GAME_STARTED:
        if r.remaining:
            _game_id(node, r)
    elif tag == RootTag.PLAYER_LEFT:
        _game_id(node, r)
        _field(node, r, "player_id", PacketReader.read_i32)
        _field(node, r, "host_id", PacketReader.read_i32)
        if r.remaining:
            _field(node, r, "reason", PacketReader.read_u8)
    elif tag == RootTag.JOINED_GAME:
        _game_id(node, r)
        _field(node, r, "client_id", PacketReader.read_i32)
        _field(node, r, "host_id", PacketReader.read_i32)
        _field(node, r, "player_ids", lambda rr: rr.read_array(PacketReader.read_packed_i32))
    elif tag == RootTag.ALTER_GAME_INFO:
        _game_id(node, r)
        _field(node, r, "alter_tag", PacketReader.read_u8)
        _field(node, r, "is_public", PacketReader.read_bool)
    elif tag == RootTag.KICK_PLAYER:
        _game_id(node, r)
        _field(node, r, "player_id", PacketReader.read_packed_i32)
        _field(node, r, "ban", PacketReader.read_bool)
    elif tag == RootTag.CHANGE_SERVER:
        _field(node, r, "address", Address.decode, str)
    elif tag == RootTag.SERVER_LIST:
        _field(node, r, "unknown", PacketReader.read_u8)
        count = _field(node, r, "server_count", PacketReader.read_packed_u32)
        for _ in range(count):
            _nested(node, r, lambda t: "server",
                    lambda t, n, sub: _field(n, sub, "info", ServerInfo.decode, _server_label))
    elif tag == RootTag.GAME_LIST:
        _nested(node, r, lambda t: "listings", _listings)
    elif tag in (RootTag.GAME_INFO, RootTag.GAME_INFO_TO):
        _game_info_root(tag, node, r)
    else:
        _rest(node, r, "data")


def _game_info_root(tag: int, node: FieldNode, r: PacketReader) -> None:
    _game_id(node, r)
    if tag == RootTag.GAME_INFO_TO:
        _field(node, r, "target_id", PacketReader.read_packed_i32)
    _game_info_items(node, r)


def _server_label(info: ServerInfo) -> str:
    return f"{info.name} @ {info.address} (failures={info.connection_failures})"


def _listing_label(listing: GameListing) -> str:
    return (f"{listing.game_id} {listing.host_username!r} {listing.player_count}/"
            f"{listing.max_players} {listing.map_name} @ {listing.address}")


def _listings(tag: int, node: FieldNode, r: PacketReader) -> None:
    while r.remaining:
        _nested(node, r, lambda t: "listing",
                lambda t, n, sub: _field(n, sub, "game", GameListing.decode, _listing_label))


def _client_to_server(tag: int, node: FieldNode, r: PacketReader) -> None:
    if tag == RootTag.GAME_JOIN_DISCONNECT:
        _game_id(node, r)
        _field(node, r, "maps_owned", PacketReader.read_u8)
    elif tag == RootTag.GAME_LIST:
        _field(node, r, "unknown", PacketReader.read_u8)
        length = _field(node, r, "options_length", PacketReader.read_packed_u32)
        start = r.offset
        options = GameOptions.decode(PacketReader(r.read_bytes(length), start))
        node.add(FieldNode("options", start, length, options))
    elif tag in (RootTag.GAME_INFO, RootTag.GAME_INFO_TO):
        _game_info_root(tag, node, r)
    else:
        _rest(node, r, "data")


# ==================== 入口 ====================

def dissect(data: bytes, to_server: bool = False) -> FieldNode:
    """
    解析一个数据报

    Args:
        data: 原始数据报
        to_server: 方向 (客户端→服务端为 True)

    Returns:
        根节点；解析失败的位置记录在对应节点的 error 上
    """
    root = FieldNode("Hazel", 0, len(data))
    r = PacketReader(data)
    try:
        packet_type = _field(root, r, "packet_type", PacketReader.read_u8)
        try:
            kind = PacketType(packet_type)
        except ValueError:
            root.error = f"Unknown packet type 0x{packet_type:02x}"
            return root
        root.value = kind.name

        if kind in (PacketType.RELIABLE, PacketType.HELLO, PacketType.KEEP_ALIVE,
                    PacketType.ACKNOWLEDGE):
            _field(root, r, "ack_id", PacketReader.read_u16_be)

        if kind == PacketType.HELLO:
            _field(root, r, "reserved", PacketReader.read_u8)
            _field(root, r, "version", PacketReader.read_u32)
            _field(root, r, "username", PacketReader.read_string)
        elif kind == PacketType.ACKNOWLEDGE:
            if r.remaining:
                _field(root, r, "ack_flags", PacketReader.read_u8, lambda v: f"{v:08b}")
        elif kind in (PacketType.RELIABLE, PacketType.UNRELIABLE):
            body = _client_to_server if to_server else _server_to_client
            while r.remaining:
                _nested(root, r, _root_name, body)
        elif kind == PacketType.DISCONNECT:
            _rest(root, r, "data")
    except DecodeError as e:
        # 长度前缀本身损坏，无法继续切分
        root.error = e.message
    return root


def to_rich_tree(node: FieldNode, tree: Tree | None = None) -> Tree:
    """转换为 rich Tree"""
    options = {"style": "bold red"} if node.error else {}
    # 用户名、聊天内容等来自线上，不能当作 markup 解析
    label = escape(node.label())
    if tree is None:
        branch = Tree(label, **options)
    else:
        branch = tree.add(label, **options)
    for child in node.children:
        to_rich_tree(child, branch)
    return branch


def render(node: FieldNode, console: Console | None = None) -> None:
    (console or Console(highlight=False)).print(to_rich_tree(node))

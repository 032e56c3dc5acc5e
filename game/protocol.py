"""应用层协议

Hazel 负载由若干嵌套消息组成 (u16 长度 + u8 标签 + 消息体)，
本模块定义根消息标签、GameInfo 子项标签、断开原因，
以及各消息的解码函数和发送用的构造函数。
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, ClassVar

from hazel.codec import PacketReader, PacketWriter
from hazel.exceptions import DecodeError, UnknownDisconnectReasonError

from .objects import Address, GameId, GameListing, GameOptions, ServerInfo

# JoinGame 请求中声明拥有的地图位掩码
MAPS_OWNED_ALL = 7


class RootTag(IntEnum):
    """根消息标签"""
    HOSTING_GAME = 0x00
    GAME_JOIN_DISCONNECT = 0x01
    GAME_STARTED = 0x02
    PLAYER_LEFT = 0x04
    GAME_INFO = 0x05
    GAME_INFO_TO = 0x06
    JOINED_GAME = 0x07
    ALTER_GAME_INFO = 0x0A
    KICK_PLAYER = 0x0B
    CHANGE_SERVER = 0x0D
    SERVER_LIST = 0x0E
    GAME_LIST = 0x10


class GameInfoTag(IntEnum):
    """GameInfo 子项标签"""
    UPDATE_DATA = 1
    RPC = 2
    SPAWN = 4
    DESTROY = 5
    CHANGE_SCENE = 6
    CLIENT_READY = 7


class DisconnectReason(IntEnum):
    """服务端断开原因"""
    EXIT_GAME = 0
    GAME_FULL = 1
    GAME_STARTED = 2
    GAME_NOT_FOUND = 3
    INCORRECT_VERSION = 5
    BANNED = 6
    KICKED = 7
    CUSTOM = 8
    DESTROY = 16
    ERROR = 17
    INCORRECT_GAME = 18
    SERVER_REQUEST = 19
    SERVER_FULL = 20
    FOCUS_LOST_BACKGROUND = 207
    INTENTIONAL_LEAVING = 208
    FOCUS_LOST = 209
    NEW_CONNECTION = 210


# GameJoinDisconnect 首个 i32 落在此区间时为断开分支
DISCONNECT_SNIFF_MIN = -1
DISCONNECT_SNIFF_MAX = 255

# 出生消息中子对象初始化数据的嵌套标签
SPAWN_INIT_TAG = 1


# ==================== 通用嵌套消息 ====================

@dataclass
class RawMessage:
    """尚未解码的嵌套消息"""
    tag: int
    body: bytes
    offset: int = 0  # 消息体在数据包中的绝对偏移

    def reader(self) -> PacketReader:
        return PacketReader(self.body, base_offset=self.offset)

    def encode(self, w: PacketWriter) -> None:
        w.write_message(self.tag, self.body)


def read_raw_message(r: PacketReader) -> RawMessage:
    tag, body = r.read_message()
    return RawMessage(tag=tag, body=body.remaining_bytes(), offset=body.base_offset)


def read_raw_messages(r: PacketReader) -> list[RawMessage]:
    """把剩余数据切分成嵌套消息序列"""
    return r.read_all(read_raw_message)


def _expect_tag(actual: int, expected: int, context: str, offset: int) -> None:
    if actual != expected:
        raise DecodeError(
            f"Unexpected nested tag {actual}, expected {expected}",
            context=context,
            offset=offset,
        )


# ==================== GameInfo 子项 ====================

@dataclass
class UpdateData:
    net_id: int
    data: bytes = b""
    offset: int = field(default=0, compare=False)  # data 在数据包中的绝对偏移

    tag: ClassVar[GameInfoTag] = GameInfoTag.UPDATE_DATA

    def encode(self, w: PacketWriter) -> None:
        w.start_message(self.tag)
        w.write_packed_u32(self.net_id)
        w.write_bytes(self.data)
        w.end_message()


@dataclass
class RpcCall:
    net_id: int
    call_id: int
    data: bytes = b""
    offset: int = field(default=0, compare=False)

    tag: ClassVar[GameInfoTag] = GameInfoTag.RPC

    def encode(self, w: PacketWriter) -> None:
        w.start_message(self.tag)
        w.write_packed_u32(self.net_id)
        w.write_u8(self.call_id)
        w.write_bytes(self.data)
        w.end_message()


@dataclass
class SpawnChild:
    """出生消息中的单个子对象"""
    net_id: int
    data: bytes = b""
    offset: int = 0


@dataclass
class Spawn:
    """CreateFromPrefab"""
    prefab_id: int
    owner_id: int
    spawn_flags: int = 0
    children: list[SpawnChild] = field(default_factory=list)

    tag: ClassVar[GameInfoTag] = GameInfoTag.SPAWN

    def encode(self, w: PacketWriter) -> None:
        w.start_message(self.tag)
        w.write_packed_u32(self.prefab_id)
        w.write_packed_i32(self.owner_id)
        w.write_u8(self.spawn_flags)
        w.write_packed_u32(len(self.children))
        for child in self.children:
            w.write_packed_u32(child.net_id)
            w.write_message(SPAWN_INIT_TAG, child.data)
        w.end_message()


@dataclass
class Destroy:
    net_id: int

    tag: ClassVar[GameInfoTag] = GameInfoTag.DESTROY

    def encode(self, w: PacketWriter) -> None:
        w.start_message(self.tag)
        w.write_packed_u32(self.net_id)
        w.end_message()


@dataclass
class ChangeScene:
    client_id: int
    scene: str

    tag: ClassVar[GameInfoTag] = GameInfoTag.CHANGE_SCENE

    def encode(self, w: PacketWriter) -> None:
        w.start_message(self.tag)
        w.write_packed_i32(self.client_id)
        w.write_string(self.scene)
        w.end_message()


@dataclass
class ClientReady:
    client_id: int

    tag: ClassVar[GameInfoTag] = GameInfoTag.CLIENT_READY

    def encode(self, w: PacketWriter) -> None:
        w.start_message(self.tag)
        w.write_packed_i32(self.client_id)
        w.end_message()


def _decode_update_data(r: PacketReader) -> UpdateData:
    net_id = r.read_packed_u32()
    return UpdateData(net_id=net_id, offset=r.offset, data=r.remaining_bytes())


def _decode_rpc(r: PacketReader) -> RpcCall:
    net_id = r.read_packed_u32()
    call_id = r.read_u8()
    return RpcCall(net_id=net_id, call_id=call_id, offset=r.offset, data=r.remaining_bytes())


def _decode_spawn(r: PacketReader) -> Spawn:
    prefab_id = r.read_packed_u32()
    owner_id = r.read_packed_i32()
    spawn_flags = r.read_u8()
    count = r.read_packed_u32()
    children = []
    for _ in range(count):
        net_id = r.read_packed_u32()
        start = r.offset
        tag, body = r.read_message()
        _expect_tag(tag, SPAWN_INIT_TAG, "Spawn", start)
        children.append(SpawnChild(
            net_id=net_id, data=body.remaining_bytes(), offset=body.base_offset
        ))
    return Spawn(prefab_id=prefab_id, owner_id=owner_id,
                 spawn_flags=spawn_flags, children=children)


def _decode_destroy(r: PacketReader) -> Destroy:
    return Destroy(net_id=r.read_packed_u32())


def _decode_change_scene(r: PacketReader) -> ChangeScene:
    client_id = r.read_packed_i32()
    return ChangeScene(client_id=client_id, scene=r.read_string())


def _decode_client_ready(r: PacketReader) -> ClientReady:
    return ClientReady(client_id=r.read_packed_i32())


GAME_INFO_DECODERS: dict[GameInfoTag, Callable[[PacketReader], Any]] = {
    GameInfoTag.UPDATE_DATA: _decode_update_data,
    GameInfoTag.RPC: _decode_rpc,
    GameInfoTag.SPAWN: _decode_spawn,
    GameInfoTag.DESTROY: _decode_destroy,
    GameInfoTag.CHANGE_SCENE: _decode_change_scene,
    GameInfoTag.CLIENT_READY: _decode_client_ready,
}


def decode_game_info_item(raw: RawMessage):
    """解码单个 GameInfo 子项；未知标签返回 None"""
    try:
        tag = GameInfoTag(raw.tag)
    except ValueError:
        return None
    try:
        return GAME_INFO_DECODERS[tag](raw.reader())
    except DecodeError as e:
        raise e.with_context(f"GameInfo/{tag.name}")


# ==================== 根消息 ====================

@dataclass
class HostingGame:
    game_id: GameId

    tag: ClassVar[RootTag] = RootTag.HOSTING_GAME

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)


@dataclass
class Disconnected:
    """GameJoinDisconnect 的断开分支"""
    reason: DisconnectReason
    message: str | None = None

    tag: ClassVar[RootTag] = RootTag.GAME_JOIN_DISCONNECT

    def encode_body(self, w: PacketWriter) -> None:
        w.write_i32(self.reason)
        if self.reason == DisconnectReason.CUSTOM:
            w.write_string(self.message or "")


@dataclass
class PlayerJoined:
    """GameJoinDisconnect 的加入分支"""
    game_id: GameId
    player_id: int
    host_id: int

    tag: ClassVar[RootTag] = RootTag.GAME_JOIN_DISCONNECT

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        w.write_i32(self.player_id)
        w.write_i32(self.host_id)


@dataclass
class GameStarted:
    game_id: GameId | None = None

    tag: ClassVar[RootTag] = RootTag.GAME_STARTED

    def encode_body(self, w: PacketWriter) -> None:
        if self.game_id is not None:
            self.game_id.encode(w)


@dataclass
class PlayerLeft:
    game_id: GameId
    player_id: int
    host_id: int
    reason: int | None = None

    tag: ClassVar[RootTag] = RootTag.PLAYER_LEFT

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        w.write_i32(self.player_id)
        w.write_i32(self.host_id)
        if self.reason is not None:
            w.write_u8(self.reason)


@dataclass
class GameInfo:
    """广播给房间内所有人的 GameInfo

    解码时 items 为 RawMessage 列表，由分发器逐项解码，
    以保证单个子项失败不影响其余子项。
    """
    game_id: GameId
    items: list = field(default_factory=list)

    tag: ClassVar[RootTag] = RootTag.GAME_INFO

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        for item in self.items:
            item.encode(w)


@dataclass
class GameInfoTo:
    """发给指定客户端的 GameInfo"""
    game_id: GameId
    target_id: int
    items: list = field(default_factory=list)

    tag: ClassVar[RootTag] = RootTag.GAME_INFO_TO

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        w.write_packed_i32(self.target_id)
        for item in self.items:
            item.encode(w)


@dataclass
class JoinedGame:
    game_id: GameId
    client_id: int
    host_id: int
    player_ids: list[int] = field(default_factory=list)

    tag: ClassVar[RootTag] = RootTag.JOINED_GAME

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        w.write_i32(self.client_id)
        w.write_i32(self.host_id)
        w.write_packed_u32(len(self.player_ids))
        for player_id in self.player_ids:
            w.write_packed_i32(player_id)


ALTER_PRIVACY = 1


@dataclass
class GameAltered:
    game_id: GameId
    is_public: bool

    tag: ClassVar[RootTag] = RootTag.ALTER_GAME_INFO

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        w.write_u8(ALTER_PRIVACY)
        w.write_bool(self.is_public)


@dataclass
class KickPlayer:
    game_id: GameId
    player_id: int
    ban: bool = False

    tag: ClassVar[RootTag] = RootTag.KICK_PLAYER

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        w.write_packed_i32(self.player_id)
        w.write_bool(self.ban)


@dataclass
class ChangeServer:
    address: Address

    tag: ClassVar[RootTag] = RootTag.CHANGE_SERVER

    def encode_body(self, w: PacketWriter) -> None:
        self.address.encode(w)


@dataclass
class ServerList:
    servers: list[ServerInfo] = field(default_factory=list)

    tag: ClassVar[RootTag] = RootTag.SERVER_LIST

    def encode_body(self, w: PacketWriter) -> None:
        w.write_u8(1)
        w.write_packed_u32(len(self.servers))
        for server in self.servers:
            w.start_message(0)
            server.encode(w)
            w.end_message()


@dataclass
class GameList:
    games: list[GameListing] = field(default_factory=list)

    tag: ClassVar[RootTag] = RootTag.GAME_LIST

    def encode_body(self, w: PacketWriter) -> None:
        w.start_message(0)
        for game in self.games:
            w.start_message(0)
            game.encode(w)
            w.end_message()
        w.end_message()


def decode_game_join_disconnect(r: PacketReader) -> Disconnected | PlayerJoined:
    """按首个 i32 的取值选择 GameJoinDisconnect 的变体

    约定: 先 peek 首个 i32 (不消费)，再分支消费：
    - 取值在 [-1, 255]: 断开分支，消费原因 i32，原因为 CUSTOM 时再消费一个字符串；
      原因不在枚举中时抛出 UnknownDisconnectReasonError
    - 否则: 加入分支，依次消费 game_id、player_id、host_id 三个 i32
    """
    value = r.peek_i32()
    if DISCONNECT_SNIFF_MIN <= value <= DISCONNECT_SNIFF_MAX:
        start = r.offset
        r.read_i32()
        try:
            reason = DisconnectReason(value)
        except ValueError:
            raise UnknownDisconnectReasonError(value, offset=start) from None
        message = r.read_string() if reason == DisconnectReason.CUSTOM else None
        return Disconnected(reason=reason, message=message)
    game_id = GameId.decode(r)
    player_id = r.read_i32()
    host_id = r.read_i32()
    return PlayerJoined(game_id=game_id, player_id=player_id, host_id=host_id)


def _decode_hosting_game(r: PacketReader) -> HostingGame:
    return HostingGame(game_id=GameId.decode(r))


def _decode_game_started(r: PacketReader) -> GameStarted:
    game_id = GameId.decode(r) if r.remaining >= 4 else None
    return GameStarted(game_id=game_id)


def _decode_player_left(r: PacketReader) -> PlayerLeft:
    game_id = GameId.decode(r)
    player_id = r.read_i32()
    host_id = r.read_i32()
    reason = r.read_u8() if r.remaining > 0 else None
    return PlayerLeft(game_id=game_id, player_id=player_id, host_id=host_id, reason=reason)


def _decode_game_info(r: PacketReader) -> GameInfo:
    game_id = GameId.decode(r)
    return GameInfo(game_id=game_id, items=read_raw_messages(r))


def _decode_game_info_to(r: PacketReader) -> GameInfoTo:
    game_id = GameId.decode(r)
    target_id = r.read_packed_i32()
    return GameInfoTo(game_id=game_id, target_id=target_id, items=read_raw_messages(r))


def _decode_joined_game(r: PacketReader) -> JoinedGame:
    game_id = GameId.decode(r)
    client_id = r.read_i32()
    host_id = r.read_i32()
    player_ids = r.read_array(PacketReader.read_packed_i32)
    return JoinedGame(game_id=game_id, client_id=client_id,
                      host_id=host_id, player_ids=player_ids)


def _decode_alter_game_info(r: PacketReader) -> GameAltered:
    game_id = GameId.decode(r)
    start = r.offset
    alter_tag = r.read_u8()
    if alter_tag != ALTER_PRIVACY:
        raise DecodeError(f"Unsupported alter tag {alter_tag}", offset=start)
    return GameAltered(game_id=game_id, is_public=r.read_bool())


def _decode_kick_player(r: PacketReader) -> KickPlayer:
    game_id = GameId.decode(r)
    player_id = r.read_packed_i32()
    return KickPlayer(game_id=game_id, player_id=player_id, ban=r.read_bool())


def _decode_change_server(r: PacketReader) -> ChangeServer:
    return ChangeServer(address=Address.decode(r))


def _decode_server_list(r: PacketReader) -> ServerList:
    start = r.offset
    marker = r.read_u8()
    if marker != 1:
        raise DecodeError(f"Unexpected server list marker {marker}", offset=start)
    servers = []
    for _ in range(r.read_packed_u32()):
        start = r.offset
        tag, body = r.read_message()
        _expect_tag(tag, 0, "ServerList", start)
        servers.append(ServerInfo.decode(body))
    return ServerList(servers=servers)


def _decode_game_list(r: PacketReader) -> GameList:
    start = r.offset
    tag, inner = r.read_message()
    _expect_tag(tag, 0, "GameList", start)
    games = []
    while inner.remaining > 0:
        start = inner.offset
        tag, body = inner.read_message()
        _expect_tag(tag, 0, "GameList", start)
        games.append(GameListing.decode(body))
    return GameList(games=games)


ROOT_DECODERS: dict[RootTag, Callable[[PacketReader], Any]] = {
    RootTag.HOSTING_GAME: _decode_hosting_game,
    RootTag.GAME_JOIN_DISCONNECT: decode_game_join_disconnect,
    RootTag.GAME_STARTED: _decode_game_started,
    RootTag.PLAYER_LEFT: _decode_player_left,
    RootTag.GAME_INFO: _decode_game_info,
    RootTag.GAME_INFO_TO: _decode_game_info_to,
    RootTag.JOINED_GAME: _decode_joined_game,
    RootTag.ALTER_GAME_INFO: _decode_alter_game_info,
    RootTag.KICK_PLAYER: _decode_kick_player,
    RootTag.CHANGE_SERVER: _decode_change_server,
    RootTag.SERVER_LIST: _decode_server_list,
    RootTag.GAME_LIST: _decode_game_list,
}


def decode_root_message(raw: RawMessage):
    """解码服务端发来的根消息；未知标签返回 None"""
    try:
        tag = RootTag(raw.tag)
    except ValueError:
        return None
    try:
        return ROOT_DECODERS[tag](raw.reader())
    except DecodeError as e:
        raise e.with_context(tag.name)


# ==================== 客户端请求 ====================

@dataclass
class JoinGameRequest:
    game_id: GameId
    maps_owned: int = MAPS_OWNED_ALL

    tag: ClassVar[RootTag] = RootTag.GAME_JOIN_DISCONNECT

    def encode_body(self, w: PacketWriter) -> None:
        self.game_id.encode(w)
        w.write_u8(self.maps_owned)


@dataclass
class GameListRequest:
    options: GameOptions = field(default_factory=GameOptions)

    tag: ClassVar[RootTag] = RootTag.GAME_LIST

    def encode_body(self, w: PacketWriter) -> None:
        w.write_u8(0)
        options = self.options.to_bytes()
        w.write_packed_u32(len(options))
        w.write_bytes(options)


def _decode_join_request(r: PacketReader) -> JoinGameRequest:
    game_id = GameId.decode(r)
    return JoinGameRequest(game_id=game_id, maps_owned=r.read_u8())


def _decode_game_list_request(r: PacketReader) -> GameListRequest:
    r.read_u8()
    length = r.read_packed_u32()
    body = PacketReader(r.read_bytes(length), base_offset=r.offset - length)
    return GameListRequest(options=GameOptions.decode(body))


CLIENT_DECODERS: dict[RootTag, Callable[[PacketReader], Any]] = {
    RootTag.GAME_JOIN_DISCONNECT: _decode_join_request,
    RootTag.GAME_INFO: _decode_game_info,
    RootTag.GAME_INFO_TO: _decode_game_info_to,
    RootTag.GAME_LIST: _decode_game_list_request,
}


def decode_client_message(raw: RawMessage):
    """解码客户端发出的根消息；未知标签返回 None"""
    try:
        tag = RootTag(raw.tag)
    except ValueError:
        return None
    decoder = CLIENT_DECODERS.get(tag)
    if decoder is None:
        return None
    try:
        return decoder(raw.reader())
    except DecodeError as e:
        raise e.with_context(tag.name)


# ==================== 构造函数 ====================

def encode_message(message) -> bytes:
    """把带 tag/encode_body 的消息编码为一个嵌套消息"""
    w = PacketWriter()
    w.start_message(message.tag)
    message.encode_body(w)
    w.end_message()
    return w.to_bytes()


def encode_messages(*messages) -> bytes:
    """多个根消息拼接为一个传输负载"""
    return b"".join(encode_message(m) for m in messages)


def build_join_game(game_id: GameId, maps_owned: int = MAPS_OWNED_ALL) -> bytes:
    return encode_message(JoinGameRequest(game_id=game_id, maps_owned=maps_owned))


def build_request_game_list(options: GameOptions | None = None) -> bytes:
    return encode_message(GameListRequest(options=options or GameOptions()))


def build_game_info(game_id: GameId, *items) -> bytes:
    return encode_message(GameInfo(game_id=game_id, items=list(items)))


def build_game_info_to(game_id: GameId, target_id: int, *items) -> bytes:
    return encode_message(GameInfoTo(game_id=game_id, target_id=target_id, items=list(items)))

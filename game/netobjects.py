"""网络对象 (NetObject)

每种对象类型提供：
- initialize(net_id, owner_id, reader): 解码出生时的初始化数据
- update(reader): 解码增量数据并原地修改
- encode_init(writer): 与 initialize 对称，用于构造出生消息

RPC 分发通过 (对象类型, call_id) 查表完成，
使用 @rpc_handler 装饰器注册到全局 RPC 表。
未注册的组合是明确的空操作，而不是错误。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import ClassVar

from hazel.codec import PacketReader, PacketWriter, Vector2

from .objects import PlayerData
from .protocol import RpcCall

logger = logging.getLogger(__name__)

DOOR_COUNT = 13


class NetObjectType(Enum):
    """网络对象类型"""
    WORLD = "world"
    LOBBY = "lobby"
    GAME_DATA = "game_data"
    VOTE_BAN_SYSTEM = "vote_ban_system"
    PLAYER_CONTROL = "player_control"
    PLAYER_PHYSICS = "player_physics"
    PLAYER_TRANSFORM = "player_transform"


class PlayerControlRpc(IntEnum):
    PLAY_ANIMATION = 0
    COMPLETE_TASK = 1
    SET_GAME_OPTIONS = 2
    SET_INFECTED = 3
    EXILE = 4
    CHECK_NAME = 5
    SET_NAME = 6
    CHECK_COLOR = 7
    SET_COLOR = 8
    SET_HAT = 9
    SET_SKIN = 10
    REPORT_BODY = 11
    MURDER_PLAYER = 12
    SEND_CHAT = 13
    START_MEETING = 14
    SET_SCANNER = 15
    ADD_CHAT_NOTE = 16
    SET_PET = 17
    SET_START_COUNTER = 18


class PlayerPhysicsRpc(IntEnum):
    ENTER_VENT = 0x13
    EXIT_VENT = 0x14


class PlayerTransformRpc(IntEnum):
    SNAP_TO = 0x15


class WorldRpc(IntEnum):
    CLOSE_DOORS = 0
    REPAIR_SYSTEM = 1


class GameDataRpc(IntEnum):
    SET_TASKS = 0x1D
    UPDATE_PLAYER_INFO = 0x1E


class VoteBanRpc(IntEnum):
    ADD_VOTE = 26


# ==================== RPC 结果 ====================

@dataclass
class ChatMessage:
    """SendChat RPC 的结果，携带发送者 (对象所有者)"""
    owner_id: int
    message: str


# ==================== 基类 ====================

@dataclass
class NetObject:
    """网络对象基类

    owner_id 仅记录，不做权限校验
    """
    net_id: int
    owner_id: int

    object_type: ClassVar[NetObjectType]

    @classmethod
    def initialize(cls, net_id: int, owner_id: int, r: PacketReader) -> NetObject:
        return cls(net_id=net_id, owner_id=owner_id)

    def update(self, r: PacketReader) -> None:
        """默认没有增量数据"""

    def encode_init(self, w: PacketWriter) -> None:
        """默认没有初始化数据"""

    def init_bytes(self) -> bytes:
        w = PacketWriter()
        self.encode_init(w)
        return w.to_bytes()

    def _rpc(self, call_id: int, w: PacketWriter | None = None) -> RpcCall:
        return RpcCall(net_id=self.net_id, call_id=call_id,
                       data=w.to_bytes() if w is not None else b"")


# ==================== 玩家对象 ====================

@dataclass
class PlayerControl(NetObject):
    """玩家控制对象"""
    player_id: int = 0
    is_new: bool = False
    name: str | None = None
    requested_name: str | None = None
    color: int | None = None
    requested_color: int | None = None
    hat_id: int | None = None
    skin_id: int | None = None
    pet_id: int | None = None
    infected: list[int] = field(default_factory=list)
    last_animation: int | None = None

    object_type: ClassVar[NetObjectType] = NetObjectType.PLAYER_CONTROL

    @classmethod
    def initialize(cls, net_id: int, owner_id: int, r: PacketReader) -> PlayerControl:
        is_new = r.read_bool()
        return cls(net_id=net_id, owner_id=owner_id, is_new=is_new, player_id=r.read_u8())

    def update(self, r: PacketReader) -> None:
        self.player_id = r.read_u8()

    def encode_init(self, w: PacketWriter) -> None:
        w.write_bool(self.is_new)
        w.write_u8(self.player_id)

    # ---------- 发送用 RPC ----------

    def rpc_check_name(self, name: str) -> RpcCall:
        return self._rpc(PlayerControlRpc.CHECK_NAME, PacketWriter().write_string(name))

    def rpc_set_name(self, name: str) -> RpcCall:
        return self._rpc(PlayerControlRpc.SET_NAME, PacketWriter().write_string(name))

    def rpc_check_color(self, color: int) -> RpcCall:
        return self._rpc(PlayerControlRpc.CHECK_COLOR, PacketWriter().write_u8(color))

    def rpc_set_color(self, color: int) -> RpcCall:
        return self._rpc(PlayerControlRpc.SET_COLOR, PacketWriter().write_u8(color))

    def rpc_set_hat(self, hat_id: int) -> RpcCall:
        return self._rpc(PlayerControlRpc.SET_HAT, PacketWriter().write_packed_u32(hat_id))

    def rpc_set_skin(self, skin_id: int) -> RpcCall:
        return self._rpc(PlayerControlRpc.SET_SKIN, PacketWriter().write_packed_u32(skin_id))

    def rpc_set_pet(self, pet_id: int) -> RpcCall:
        return self._rpc(PlayerControlRpc.SET_PET, PacketWriter().write_packed_u32(pet_id))

    def rpc_send_chat(self, message: str) -> RpcCall:
        return self._rpc(PlayerControlRpc.SEND_CHAT, PacketWriter().write_string(message))


@dataclass
class PlayerPhysics(NetObject):
    """玩家物理对象，只关心管道进出"""
    vent_id: int | None = None

    object_type: ClassVar[NetObjectType] = NetObjectType.PLAYER_PHYSICS

    def rpc_enter_vent(self, vent_id: int) -> RpcCall:
        return self._rpc(PlayerPhysicsRpc.ENTER_VENT, PacketWriter().write_packed_u32(vent_id))

    def rpc_exit_vent(self, vent_id: int) -> RpcCall:
        return self._rpc(PlayerPhysicsRpc.EXIT_VENT, PacketWriter().write_packed_u32(vent_id))


@dataclass
class PlayerTransform(NetObject):
    """玩家位置同步"""
    last_seq_id: int = 0
    target_position: Vector2 = Vector2.ZERO
    velocity: Vector2 = Vector2.ZERO

    object_type: ClassVar[NetObjectType] = NetObjectType.PLAYER_TRANSFORM

    # SnapTo 序号相对当前序号的偏移
    SNAP_SEQ_STEP: ClassVar[int] = 5

    @classmethod
    def initialize(cls, net_id: int, owner_id: int, r: PacketReader) -> PlayerTransform:
        obj = cls(net_id=net_id, owner_id=owner_id)
        obj.update(r)
        return obj

    def update(self, r: PacketReader) -> None:
        self.last_seq_id = r.read_u16()
        self.target_position = r.read_vector2()
        self.velocity = r.read_vector2()

    def encode_init(self, w: PacketWriter) -> None:
        w.write_u16(self.last_seq_id)
        w.write_vector2(self.target_position)
        w.write_vector2(self.velocity)

    def rpc_snap_to(self, position: Vector2) -> RpcCall:
        w = PacketWriter().write_vector2(position)
        w.write_u16((self.last_seq_id + self.SNAP_SEQ_STEP) & 0xFFFF)
        return self._rpc(PlayerTransformRpc.SNAP_TO, w)


# ==================== 场景对象 ====================

# World 增量数据的存在位
WORLD_REACTOR = 1 << 3
WORLD_SWITCH = 1 << 7
WORLD_LIFE_SUPPORT = 1 << 8
WORLD_MED_SCAN = 1 << 10
WORLD_CAMERAS = 1 << 11
WORLD_COMMS = 1 << 14
WORLD_DOORS = 1 << 16
WORLD_SABOTAGE = 1 << 17


@dataclass
class World(NetObject):
    """游戏地图 (飞船状态)"""
    # 反应堆
    reactor_countdown: float = 0.0
    user_console_pairs: list[tuple[int, int]] = field(default_factory=list)
    # 电力
    expected_switches: int = 0
    actual_switches: int = 0
    elec_value: int = 0
    # 氧气
    life_support_countdown: float = 0.0
    completed_consoles: list[int] = field(default_factory=list)
    # 医疗扫描
    med_scan_users: list[int] = field(default_factory=list)
    # 监控
    camera_in_use: bool = False
    # 通讯
    comms_active: bool = False
    # 门
    door_open: list[bool] = field(default_factory=lambda: [False] * DOOR_COUNT)
    # 破坏
    sabotage_timer: float = 0.0
    # RPC 记录
    closed_rooms: list[int] = field(default_factory=list)
    system_repairs: dict[int, tuple[int, int]] = field(default_factory=dict)

    object_type: ClassVar[NetObjectType] = NetObjectType.WORLD

    # ---------- 各子系统读写 ----------

    def _read_reactor(self, r: PacketReader) -> None:
        self.reactor_countdown = r.read_f32()
        self.user_console_pairs = r.read_array(lambda rr: (rr.read_u8(), rr.read_u8()))

    def _read_switch(self, r: PacketReader) -> None:
        self.expected_switches = r.read_u8()
        self.actual_switches = r.read_u8()
        self.elec_value = r.read_u8()

    def _read_life_support(self, r: PacketReader) -> None:
        self.life_support_countdown = r.read_f32()
        self.completed_consoles = r.read_array(PacketReader.read_packed_u32)

    def _read_med_scan(self, r: PacketReader) -> None:
        self.med_scan_users = r.read_array(PacketReader.read_i8)

    @classmethod
    def initialize(cls, net_id: int, owner_id: int, r: PacketReader) -> World:
        obj = cls(net_id=net_id, owner_id=owner_id)
        obj._read_reactor(r)
        obj._read_switch(r)
        obj._read_life_support(r)
        obj._read_med_scan(r)
        obj.camera_in_use = r.read_bool()
        obj.comms_active = r.read_bool()
        obj.door_open = r.read_array(PacketReader.read_bool, DOOR_COUNT)
        obj.sabotage_timer = r.read_f32()
        return obj

    def update(self, r: PacketReader) -> None:
        """按存在位掩码合并：只有置位的字段被读取和覆盖"""
        mask = r.read_packed_u32()
        if mask & WORLD_REACTOR:
            self._read_reactor(r)
        if mask & WORLD_SWITCH:
            self._read_switch(r)
        if mask & WORLD_LIFE_SUPPORT:
            self._read_life_support(r)
        if mask & WORLD_MED_SCAN:
            self._read_med_scan(r)
        if mask & WORLD_CAMERAS:
            self.camera_in_use = r.read_bool()
        if mask & WORLD_COMMS:
            self.comms_active = r.read_bool()
        if mask & WORLD_DOORS:
            door_mask = r.read_packed_u32()
            for i in range(DOOR_COUNT):
                if door_mask & (1 << i):
                    self.door_open[i] = r.read_bool()
        if mask & WORLD_SABOTAGE:
            self.sabotage_timer = r.read_f32()

    def encode_init(self, w: PacketWriter) -> None:
        w.write_f32(self.reactor_countdown)
        w.write_packed_u32(len(self.user_console_pairs))
        for user, console in self.user_console_pairs:
            w.write_u8(user)
            w.write_u8(console)
        w.write_u8(self.expected_switches)
        w.write_u8(self.actual_switches)
        w.write_u8(self.elec_value)
        w.write_f32(self.life_support_countdown)
        w.write_packed_u32(len(self.completed_consoles))
        for console in self.completed_consoles:
            w.write_packed_u32(console)
        w.write_packed_u32(len(self.med_scan_users))
        for user in self.med_scan_users:
            w.write_i8(user)
        w.write_bool(self.camera_in_use)
        w.write_bool(self.comms_active)
        for is_open in self.door_open:
            w.write_bool(is_open)
        w.write_f32(self.sabotage_timer)


@dataclass
class Lobby(NetObject):
    """大厅，无状态"""

    object_type: ClassVar[NetObjectType] = NetObjectType.LOBBY


@dataclass
class GameData(NetObject):
    """全体玩家信息表: player_id → PlayerData"""
    players: dict[int, PlayerData] = field(default_factory=dict)

    object_type: ClassVar[NetObjectType] = NetObjectType.GAME_DATA

    @staticmethod
    def _read_entry(r: PacketReader) -> tuple[int, PlayerData]:
        player_id = r.read_u8()
        return player_id, PlayerData.decode(r)

    @classmethod
    def initialize(cls, net_id: int, owner_id: int, r: PacketReader) -> GameData:
        entries = r.read_array(cls._read_entry)
        return cls(net_id=net_id, owner_id=owner_id, players=dict(entries))

    def update(self, r: PacketReader) -> None:
        for player_id, data in r.read_array(self._read_entry, r.read_u8()):
            self.players[player_id] = data

    def encode_init(self, w: PacketWriter) -> None:
        w.write_packed_u32(len(self.players))
        for player_id, data in self.players.items():
            w.write_u8(player_id)
            data.encode(w)

    def rpc_update_player_info(self, player_ids: list[int] | None = None) -> RpcCall:
        w = PacketWriter()
        for player_id, data in self.players.items():
            if player_ids is None or player_id in player_ids:
                w.start_message(player_id)
                data.encode(w)
                w.end_message()
        return self._rpc(GameDataRpc.UPDATE_PLAYER_INFO, w)


@dataclass
class VoteBanSystem(NetObject):
    """踢人投票: 被投票者 client_id → 投票者 client_id 列表 (最多 3 个)"""
    votes: dict[int, list[int]] = field(default_factory=dict)

    object_type: ClassVar[NetObjectType] = NetObjectType.VOTE_BAN_SYSTEM

    VOTES_PER_PLAYER: ClassVar[int] = 3

    @classmethod
    def initialize(cls, net_id: int, owner_id: int, r: PacketReader) -> VoteBanSystem:
        obj = cls(net_id=net_id, owner_id=owner_id)
        obj.update(r)
        return obj

    def update(self, r: PacketReader) -> None:
        votes = {}
        for _ in range(r.read_u8()):
            client_id = r.read_i32()
            votes[client_id] = r.read_array(PacketReader.read_packed_i32, self.VOTES_PER_PLAYER)
        self.votes = votes

    def encode_init(self, w: PacketWriter) -> None:
        w.write_u8(len(self.votes))
        for client_id, voters in self.votes.items():
            w.write_i32(client_id)
            padded = (list(voters) + [0] * self.VOTES_PER_PLAYER)[:self.VOTES_PER_PLAYER]
            for voter in padded:
                w.write_packed_i32(voter)


# ==================== RPC 表 ====================

RpcHandler = Callable[[NetObject, PacketReader], "ChatMessage | None"]

# (对象类型, call_id) → handler
_RPC_TABLE: dict[tuple[NetObjectType, int], RpcHandler] = {}


def rpc_handler(object_type: NetObjectType, call_id: int) -> Callable[[RpcHandler], RpcHandler]:
    """装饰器：注册 RPC 处理函数。

    用法：
        @rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_NAME)
        def _set_name(obj, r): ...
    """
    def _decorator(fn: RpcHandler) -> RpcHandler:
        key = (object_type, int(call_id))
        if key in _RPC_TABLE:
            logger.warning("RPC handler for %s/%d duplicated, overriding", object_type.name, call_id)
        _RPC_TABLE[key] = fn
        return fn
    return _decorator


def get_rpc_handler(object_type: NetObjectType, call_id: int) -> RpcHandler | None:
    return _RPC_TABLE.get((object_type, call_id))


def get_rpc_table() -> dict[tuple[NetObjectType, int], RpcHandler]:
    """获取 RPC 表（浅拷贝，避免外部修改）。"""
    return dict(_RPC_TABLE)


# ---------- PlayerControl ----------

@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.PLAY_ANIMATION)
def _play_animation(obj: PlayerControl, r: PacketReader) -> None:
    obj.last_animation = r.read_u8()
    logger.debug("Player %d plays animation %d", obj.player_id, obj.last_animation)


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_INFECTED)
def _set_infected(obj: PlayerControl, r: PacketReader) -> None:
    obj.infected = r.read_array(PacketReader.read_u8)


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.CHECK_NAME)
def _check_name(obj: PlayerControl, r: PacketReader) -> None:
    obj.requested_name = r.read_string()


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_NAME)
def _set_name(obj: PlayerControl, r: PacketReader) -> None:
    obj.name = r.read_string()


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.CHECK_COLOR)
def _check_color(obj: PlayerControl, r: PacketReader) -> None:
    obj.requested_color = r.read_u8()


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_COLOR)
def _set_color(obj: PlayerControl, r: PacketReader) -> None:
    obj.color = r.read_u8()


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_HAT)
def _set_hat(obj: PlayerControl, r: PacketReader) -> None:
    obj.hat_id = r.read_packed_u32()


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_SKIN)
def _set_skin(obj: PlayerControl, r: PacketReader) -> None:
    obj.skin_id = r.read_packed_u32()


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_PET)
def _set_pet(obj: PlayerControl, r: PacketReader) -> None:
    obj.pet_id = r.read_packed_u32()


@rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SEND_CHAT)
def _send_chat(obj: PlayerControl, r: PacketReader) -> ChatMessage:
    return ChatMessage(owner_id=obj.owner_id, message=r.read_string())


# ---------- PlayerPhysics ----------

@rpc_handler(NetObjectType.PLAYER_PHYSICS, PlayerPhysicsRpc.ENTER_VENT)
def _enter_vent(obj: PlayerPhysics, r: PacketReader) -> None:
    obj.vent_id = r.read_packed_u32()
    logger.info("Owner %d entered vent %d", obj.owner_id, obj.vent_id)


@rpc_handler(NetObjectType.PLAYER_PHYSICS, PlayerPhysicsRpc.EXIT_VENT)
def _exit_vent(obj: PlayerPhysics, r: PacketReader) -> None:
    vent_id = r.read_packed_u32()
    obj.vent_id = None
    logger.info("Owner %d exited vent %d", obj.owner_id, vent_id)


# ---------- PlayerTransform ----------

@rpc_handler(NetObjectType.PLAYER_TRANSFORM, PlayerTransformRpc.SNAP_TO)
def _snap_to(obj: PlayerTransform, r: PacketReader) -> None:
    obj.target_position = r.read_vector2()
    obj.last_seq_id = r.read_u16()
    obj.velocity = Vector2.ZERO


# ---------- World ----------

@rpc_handler(NetObjectType.WORLD, WorldRpc.CLOSE_DOORS)
def _close_doors(obj: World, r: PacketReader) -> None:
    obj.closed_rooms.append(r.read_u8())


@rpc_handler(NetObjectType.WORLD, WorldRpc.REPAIR_SYSTEM)
def _repair_system(obj: World, r: PacketReader) -> None:
    system = r.read_u8()
    player_net_id = r.read_packed_u32()
    amount = r.read_u8()
    obj.system_repairs[system] = (player_net_id, amount)


# ---------- GameData ----------

@rpc_handler(NetObjectType.GAME_DATA, GameDataRpc.UPDATE_PLAYER_INFO)
def _update_player_info(obj: GameData, r: PacketReader) -> None:
    while r.remaining > 0:
        player_id, body = r.read_message()
        obj.players[player_id] = PlayerData.decode(body)


# ---------- VoteBanSystem ----------

@rpc_handler(NetObjectType.VOTE_BAN_SYSTEM, VoteBanRpc.ADD_VOTE)
def _add_vote(obj: VoteBanSystem, r: PacketReader) -> None:
    voter = r.read_i32()
    target = r.read_i32()
    voters = obj.votes.setdefault(target, [])
    if voter not in voters and len(voters) < obj.VOTES_PER_PLAYER:
        voters.append(voter)


def dispatch_rpc(obj: NetObject, call_id: int, r: PacketReader) -> ChatMessage | None:
    """按 (对象类型, call_id) 查表执行 RPC；未注册的组合为空操作"""
    handler = get_rpc_handler(obj.object_type, call_id)
    if handler is None:
        logger.debug("No RPC handler for %s call %d", obj.object_type.name, call_id)
        return None
    return handler(obj, r)

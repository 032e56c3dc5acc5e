"""游戏数据结构

协议消息中复用的值对象：房间码、地址、房间列表项、服务器信息、
游戏选项与玩家数据。每个类型提供 decode(reader) / encode(writer)。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag

from hazel.codec import PacketReader, PacketWriter
from hazel.config import DEFAULT_GAME_PORT

INT32_MIN = -0x80000000

# V2 房间码字符表，下标即编码值
CHAR_LOOKUP = "QWXRTYLPESDFGHUJKZOCVBINMA"
_CHAR_INDEX = {c: i for i, c in enumerate(CHAR_LOOKUP)}


# ==================== 枚举 ====================

class Languages(IntFlag):
    """房间语言位标志"""
    ALL = 0x0
    OTHER = 0x1
    SPANISH = 0x2
    KOREAN = 0x4
    RUSSIAN = 0x8
    PORTUGUESE = 0x10
    ARABIC = 0x20
    FILIPINO = 0x40
    POLISH = 0x80
    ENGLISH = 0x100


class MapId(IntEnum):
    """房间列表中的地图编号"""
    SKELD = 0
    POLUS = 1
    MIRA_HQ = 2


class MapFlags(IntFlag):
    """查询房间时的地图位掩码"""
    SKELD = 0x1
    POLUS = 0x2
    MIRA_HQ = 0x4
    ALL = 0x7


class MainServer(Enum):
    """官方主服务器"""
    EUROPE = "172.105.251.170"
    NORTH_AMERICA = "66.175.220.120"
    ASIA = "139.162.111.196"

    @property
    def address(self) -> tuple[str, int]:
        return self.value, DEFAULT_GAME_PORT


# ==================== 房间码 ====================

@dataclass(frozen=True)
class GameId:
    """房间码

    线上为 i32：
    - V1: 4 个 ASCII 字符，逐字节小端拼接
    - V2: 6 个大写字母，值为负数
    """

    id: int

    @classmethod
    def from_chars(cls, code: str) -> GameId:
        """房间码字符串 → GameId

        Raises:
            ValueError: 长度不是 4/6，或包含非法字符
        """
        if len(code) == 6:
            try:
                idx = [_CHAR_INDEX[c] for c in code]
            except KeyError as e:
                raise ValueError(f"Invalid character in game code: {code!r}") from e
            lower = idx[0] + idx[1] * 26
            upper = idx[2] + 26 * (idx[3] + 26 * (idx[4] + 26 * idx[5]))
            return cls(lower | (upper << 10) | INT32_MIN)
        if len(code) == 4:
            value = 0
            for i, c in enumerate(code):
                if not 0 < ord(c) < 0x80:
                    raise ValueError(f"Invalid character in game code: {code!r}")
                value |= ord(c) << (8 * i)
            return cls(value)
        raise ValueError(f"Game code must be 4 or 6 characters: {code!r}")

    @property
    def is_v2(self) -> bool:
        return self.id < -1

    def __str__(self) -> str:
        if self.is_v2:
            lower = self.id & 0x3FF
            upper = (self.id >> 10) & 0xFFFFF
            indexes = [
                lower % 26,
                (lower // 26) % 26,
                upper % 26,
                (upper // 26) % 26,
                (upper // 676) % 26,
                (upper // 17576) % 26,
            ]
            return "".join(CHAR_LOOKUP[i] for i in indexes)
        return "".join(chr((self.id >> (8 * i)) & 0xFF) for i in range(4))

    @classmethod
    def decode(cls, r: PacketReader) -> GameId:
        return cls(r.read_i32())

    def encode(self, w: PacketWriter) -> None:
        w.write_i32(self.id)


# ==================== 地址与列表 ====================

@dataclass(frozen=True)
class Address:
    """IPv4 地址 + 端口"""

    ip: bytes
    port: int

    @classmethod
    def from_host(cls, host: str, port: int) -> Address:
        return cls(bytes(int(part) for part in host.split(".")), port)

    @property
    def host(self) -> str:
        return ".".join(str(b) for b in self.ip)

    def to_tuple(self) -> tuple[str, int]:
        return self.host, self.port

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def decode(cls, r: PacketReader) -> Address:
        ip = r.read_bytes(4)
        return cls(ip, r.read_u16())

    def encode(self, w: PacketWriter) -> None:
        w.write_bytes(self.ip)
        w.write_u16(self.port)


@dataclass
class GameListing:
    """房间列表项"""

    address: Address
    game_id: GameId
    host_username: str
    player_count: int
    age: int
    map_id: int
    num_imposters: int
    max_players: int

    @property
    def map_name(self) -> str:
        try:
            return MapId(self.map_id).name
        except ValueError:
            return f"UNKNOWN({self.map_id})"

    @classmethod
    def decode(cls, r: PacketReader) -> GameListing:
        return cls(
            address=Address.decode(r),
            game_id=GameId.decode(r),
            host_username=r.read_string(),
            player_count=r.read_u8(),
            age=r.read_packed_u32(),
            map_id=r.read_u8(),
            num_imposters=r.read_u8(),
            max_players=r.read_u8(),
        )

    def encode(self, w: PacketWriter) -> None:
        self.address.encode(w)
        self.game_id.encode(w)
        w.write_string(self.host_username)
        w.write_u8(self.player_count)
        w.write_packed_u32(self.age)
        w.write_u8(self.map_id)
        w.write_u8(self.num_imposters)
        w.write_u8(self.max_players)


@dataclass
class ServerInfo:
    """区域服务器信息"""

    name: str
    address: Address
    connection_failures: int = 0

    @classmethod
    def decode(cls, r: PacketReader) -> ServerInfo:
        name = r.read_string()
        address = Address.decode(r)
        return cls(name=name, address=address, connection_failures=r.read_packed_u32())

    def encode(self, w: PacketWriter) -> None:
        w.write_string(self.name)
        self.address.encode(w)
        w.write_packed_u32(self.connection_failures)


# ==================== 游戏选项 ====================

@dataclass
class GameOptions:
    """游戏选项，查询房间列表时作为过滤条件发送"""

    version: int = 2
    max_players: int = 10
    language: Languages = Languages.ENGLISH
    map_id: int = 0
    player_speed: float = 1.0
    crew_light: float = 1.0
    imposter_light: float = 1.5
    kill_cooldown: float = 15.0
    num_common_tasks: int = 1
    num_long_tasks: int = 2
    num_short_tasks: int = 1
    num_emergency_meetings: int = 1
    num_imposters: int = 0  # 0 表示任意
    kill_distance: int = 1
    discussion_time: int = 15
    voting_time: int = 120
    is_defaults: int = 1
    emergency_cooldown: int = 15

    @classmethod
    def decode(cls, r: PacketReader) -> GameOptions:
        return cls(
            version=r.read_u8(),
            max_players=r.read_u8(),
            language=Languages(r.read_u32()),
            map_id=r.read_u8(),
            player_speed=r.read_f32(),
            crew_light=r.read_f32(),
            imposter_light=r.read_f32(),
            kill_cooldown=r.read_f32(),
            num_common_tasks=r.read_u8(),
            num_long_tasks=r.read_u8(),
            num_short_tasks=r.read_u8(),
            num_emergency_meetings=r.read_i32(),
            num_imposters=r.read_i8(),
            kill_distance=r.read_i8(),
            discussion_time=r.read_i32(),
            voting_time=r.read_i32(),
            is_defaults=r.read_u8(),
            emergency_cooldown=r.read_u8(),
        )

    def encode(self, w: PacketWriter) -> None:
        w.write_u8(self.version)
        w.write_u8(self.max_players)
        w.write_u32(int(self.language))
        w.write_u8(self.map_id)
        w.write_f32(self.player_speed)
        w.write_f32(self.crew_light)
        w.write_f32(self.imposter_light)
        w.write_f32(self.kill_cooldown)
        w.write_u8(self.num_common_tasks)
        w.write_u8(self.num_long_tasks)
        w.write_u8(self.num_short_tasks)
        w.write_i32(self.num_emergency_meetings)
        w.write_i8(self.num_imposters)
        w.write_i8(self.kill_distance)
        w.write_i32(self.discussion_time)
        w.write_i32(self.voting_time)
        w.write_u8(self.is_defaults)
        w.write_u8(self.emergency_cooldown)

    def to_bytes(self) -> bytes:
        w = PacketWriter()
        self.encode(w)
        return w.to_bytes()


# ==================== 玩家数据 ====================

PLAYER_DISCONNECTED = 0x1
PLAYER_IMPOSTER = 0x2
PLAYER_DEAD = 0x4


@dataclass
class TaskInfo:
    """任务进度"""

    task_id: int
    complete: bool = False

    @classmethod
    def decode(cls, r: PacketReader) -> TaskInfo:
        return cls(task_id=r.read_packed_u32(), complete=r.read_bool())

    def encode(self, w: PacketWriter) -> None:
        w.write_packed_u32(self.task_id)
        w.write_bool(self.complete)


@dataclass
class PlayerData:
    """GameData 中的玩家信息"""

    name: str = ""
    color: int = 0
    hat_id: int = 0
    skin_id: int = 0
    pet_id: int = 0
    disconnected: bool = False
    is_imposter: bool = False
    is_dead: bool = False
    tasks: list[TaskInfo] = field(default_factory=list)

    @property
    def flags(self) -> int:
        value = 0
        if self.disconnected:
            value |= PLAYER_DISCONNECTED
        if self.is_imposter:
            value |= PLAYER_IMPOSTER
        if self.is_dead:
            value |= PLAYER_DEAD
        return value

    @classmethod
    def decode(cls, r: PacketReader) -> PlayerData:
        name = r.read_string()
        color = r.read_u8()
        hat_id = r.read_packed_u32()
        skin_id = r.read_packed_u32()
        pet_id = r.read_packed_u32()
        flags = r.read_u8()
        tasks = r.read_array(TaskInfo.decode, r.read_u8())
        return cls(
            name=name,
            color=color,
            hat_id=hat_id,
            skin_id=skin_id,
            pet_id=pet_id,
            disconnected=bool(flags & PLAYER_DISCONNECTED),
            is_imposter=bool(flags & PLAYER_IMPOSTER),
            is_dead=bool(flags & PLAYER_DEAD),
            tasks=tasks,
        )

    def encode(self, w: PacketWriter) -> None:
        w.write_string(self.name)
        w.write_u8(self.color)
        w.write_packed_u32(self.hat_id)
        w.write_packed_u32(self.skin_id)
        w.write_packed_u32(self.pet_id)
        w.write_u8(self.flags)
        w.write_u8(len(self.tasks))
        for task in self.tasks:
            task.encode(w)

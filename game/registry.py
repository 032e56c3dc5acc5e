"""
网络对象注册表
持有一个会话内所有存活的网络对象，负责出生/更新/RPC/销毁
"""

from __future__ import annotations

import copy
import logging
from enum import IntEnum

from hazel.codec import PacketReader
from hazel.exceptions import DecodeError

from .exceptions import SpawnError
from .netobjects import (
    ChatMessage,
    GameData,
    Lobby,
    NetObject,
    NetObjectType,
    PlayerControl,
    PlayerPhysics,
    PlayerTransform,
    VoteBanSystem,
    World,
    dispatch_rpc,
)
from .protocol import Spawn

logger = logging.getLogger(__name__)


class PrefabType(IntEnum):
    """预制体编号"""
    WORLD = 0
    MEETING_HUB = 1
    LOBBY = 2
    GAME_DATA = 3
    PLAYER = 4
    HEAD_QUARTERS = 5


# 预制体 → 子对象类型 (按位置对应)
# MeetingHub / HeadQuarters 没有对应的对象定义，不在表中
PREFAB_CHILDREN: dict[PrefabType, tuple[type[NetObject], ...]] = {
    PrefabType.WORLD: (World,),
    PrefabType.LOBBY: (Lobby,),
    PrefabType.GAME_DATA: (GameData, VoteBanSystem),
    PrefabType.PLAYER: (PlayerControl, PlayerPhysics, PlayerTransform),
}


def prefab_children(prefab_id: int) -> tuple[type[NetObject], ...] | None:
    """查询预制体的子对象类型，不支持的预制体返回 None"""
    try:
        return PREFAB_CHILDREN.get(PrefabType(prefab_id))
    except ValueError:
        return None


class NetObjectRegistry:
    """
    网络对象注册表

    - 出生是原子的：任一子对象失败则整体不注册
    - 更新与 RPC 在副本上执行，完整解码后才提交
    - 对不存在的 net_id 的更新/RPC/销毁都是空操作
    """

    def __init__(self):
        self._objects: dict[int, NetObject] = {}

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, net_id: int) -> bool:
        return net_id in self._objects

    def __iter__(self):
        return iter(list(self._objects.values()))

    def get(self, net_id: int) -> NetObject | None:
        return self._objects.get(net_id)

    def find_owned(self, object_type: NetObjectType, owner_id: int) -> NetObject | None:
        """按类型与所有者查找对象"""
        for obj in self._objects.values():
            if obj.object_type is object_type and obj.owner_id == owner_id:
                return obj
        return None

    def clear(self) -> None:
        self._objects.clear()

    # ==================== 出生 ====================

    def spawn(self, spawn: Spawn) -> list[NetObject]:
        """
        按预制体创建子对象

        Returns:
            新注册的对象列表，顺序与预制体定义一致

        Raises:
            SpawnError: 预制体不受支持、子对象数量不符或初始化数据解码失败
        """
        types = prefab_children(spawn.prefab_id)
        if types is None:
            raise SpawnError(
                f"Unsupported prefab {spawn.prefab_id}", prefab_id=spawn.prefab_id
            )
        if len(types) != len(spawn.children):
            raise SpawnError(
                f"Prefab {spawn.prefab_id} expects {len(types)} children, got {len(spawn.children)}",
                prefab_id=spawn.prefab_id,
                expected=len(types),
                actual=len(spawn.children),
            )

        created: list[NetObject] = []
        for obj_type, child in zip(types, spawn.children):
            try:
                created.append(obj_type.initialize(
                    child.net_id, spawn.owner_id, PacketReader(child.data, child.offset)
                ))
            except DecodeError as e:
                error = SpawnError(
                    f"Init of {obj_type.__name__} #{child.net_id} failed: {e.message}",
                    prefab_id=spawn.prefab_id,
                )
                error.with_context(f"Spawn/{obj_type.__name__}")
                raise error from e

        for obj in created:
            if obj.net_id in self._objects:
                logger.debug("Net id %d re-spawned, replacing", obj.net_id)
            self._objects[obj.net_id] = obj
        logger.info(
            "Spawned prefab %d for owner %d: %s",
            spawn.prefab_id,
            spawn.owner_id,
            ", ".join(f"{o.object_type.name}#{o.net_id}" for o in created),
        )
        return created

    # ==================== 更新 / RPC ====================

    def update(self, net_id: int, data: bytes, offset: int = 0) -> bool:
        """
        应用增量数据

        Returns:
            对象存在并已更新时为 True；不存在时为 False

        Raises:
            DecodeError: 数据解码失败 (对象保持原状)
        """
        obj = self._objects.get(net_id)
        if obj is None:
            logger.debug("Update for absent net id %d ignored", net_id)
            return False
        working = copy.deepcopy(obj)
        try:
            working.update(PacketReader(data, offset))
        except DecodeError as e:
            raise e.with_context(f"Update/{obj.object_type.name}")
        self._objects[net_id] = working
        return True

    def rpc(self, net_id: int, call_id: int, data: bytes, offset: int = 0) -> ChatMessage | None:
        """
        执行 RPC

        Returns:
            RPC 产生的结果 (如聊天消息)，否则 None

        Raises:
            DecodeError: 参数解码失败 (对象保持原状)
        """
        obj = self._objects.get(net_id)
        if obj is None:
            logger.debug("RPC %d for absent net id %d ignored", call_id, net_id)
            return None
        working = copy.deepcopy(obj)
        try:
            outcome = dispatch_rpc(working, call_id, PacketReader(data, offset))
        except DecodeError as e:
            raise e.with_context(f"RPC/{obj.object_type.name}/{call_id}")
        self._objects[net_id] = working
        return outcome

    # ==================== 销毁 ====================

    def destroy(self, net_id: int) -> NetObject | None:
        """移除对象（不级联），返回被移除的对象"""
        obj = self._objects.pop(net_id, None)
        if obj is None:
            logger.debug("Destroy for absent net id %d ignored", net_id)
        return obj

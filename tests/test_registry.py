"""
网络对象注册表测试
"""

import pytest

from game.exceptions import SpawnError
from game.netobjects import (
    ChatMessage,
    NetObjectType,
    PlayerControl,
    PlayerControlRpc,
    PlayerPhysics,
    PlayerTransform,
)
from game.protocol import Spawn, SpawnChild
from game.registry import NetObjectRegistry, PrefabType, prefab_children
from hazel.codec import PacketWriter
from hazel.exceptions import DecodeError


def player_spawn(owner_id: int = 7, base_net_id: int = 10, player_id: int = 3) -> Spawn:
    transform = PacketWriter().write_u16(0).write_u16(0).write_u16(0).write_u16(0).write_u16(0)
    return Spawn(
        prefab_id=PrefabType.PLAYER,
        owner_id=owner_id,
        children=[
            SpawnChild(base_net_id, bytes([1, player_id])),
            SpawnChild(base_net_id + 1, b""),
            SpawnChild(base_net_id + 2, transform.to_bytes()),
        ],
    )


class TestPrefabs:
    def test_children(self):
        assert prefab_children(PrefabType.PLAYER) == (PlayerControl, PlayerPhysics, PlayerTransform)
        assert prefab_children(PrefabType.MEETING_HUB) is None
        assert prefab_children(200) is None


class TestNetObjectRegistry:
    """NetObjectRegistry 测试"""

    def setup_method(self):
        self.registry = NetObjectRegistry()

    # ---------- 出生 ----------

    def test_player_spawn_creates_children_in_order(self):
        created = self.registry.spawn(player_spawn())
        assert [type(o) for o in created] == [PlayerControl, PlayerPhysics, PlayerTransform]
        assert [o.net_id for o in created] == [10, 11, 12]
        assert all(o.owner_id == 7 for o in created)
        assert len(self.registry) == 3
        assert self.registry.get(10).player_id == 3

    def test_unsupported_prefab(self):
        with pytest.raises(SpawnError) as exc_info:
            self.registry.spawn(Spawn(prefab_id=PrefabType.HEAD_QUARTERS, owner_id=-2))
        assert exc_info.value.prefab_id == PrefabType.HEAD_QUARTERS
        assert len(self.registry) == 0

    def test_child_count_mismatch(self):
        spawn = player_spawn()
        spawn.children.pop()
        with pytest.raises(SpawnError) as exc_info:
            self.registry.spawn(spawn)
        assert (exc_info.value.expected, exc_info.value.actual) == (3, 2)
        assert len(self.registry) == 0

    def test_spawn_is_atomic(self):
        spawn = player_spawn()
        spawn.children[2] = SpawnChild(12, b"\x00")  # 截断的 PlayerTransform
        with pytest.raises(SpawnError) as exc_info:
            self.registry.spawn(spawn)
        assert exc_info.value.context == "Spawn/PlayerTransform"
        assert 10 not in self.registry
        assert 11 not in self.registry

    def test_find_owned(self):
        self.registry.spawn(player_spawn(owner_id=7, base_net_id=10))
        self.registry.spawn(player_spawn(owner_id=8, base_net_id=20))
        found = self.registry.find_owned(NetObjectType.PLAYER_CONTROL, 8)
        assert found.net_id == 20
        assert self.registry.find_owned(NetObjectType.PLAYER_CONTROL, 99) is None

    # ---------- 更新 ----------

    def test_update(self):
        self.registry.spawn(player_spawn())
        assert self.registry.update(10, b"\x05") is True
        assert self.registry.get(10).player_id == 5

    def test_update_absent_is_noop(self):
        assert self.registry.update(999, b"\x05") is False
        assert len(self.registry) == 0

    def test_failed_update_leaves_object_unchanged(self):
        self.registry.spawn(player_spawn())
        before = self.registry.get(12)
        with pytest.raises(DecodeError) as exc_info:
            self.registry.update(12, b"\x01\x00\x02")
        assert exc_info.value.context == "Update/PLAYER_TRANSFORM"
        assert self.registry.get(12) == before
        assert self.registry.get(12).last_seq_id == 0

    # ---------- RPC ----------

    def test_rpc_returns_chat(self):
        self.registry.spawn(player_spawn())
        call = self.registry.get(10).rpc_send_chat("hi")
        outcome = self.registry.rpc(10, call.call_id, call.data)
        assert outcome == ChatMessage(owner_id=7, message="hi")

    def test_rpc_absent_is_noop(self):
        assert self.registry.rpc(999, PlayerControlRpc.SET_NAME, b"\x01a") is None

    def test_failed_rpc_leaves_object_unchanged(self):
        self.registry.spawn(player_spawn())
        with pytest.raises(DecodeError):
            self.registry.rpc(10, PlayerControlRpc.SET_NAME, b"\x05ab")
        assert self.registry.get(10).name is None

    # ---------- 销毁 ----------

    def test_destroy_does_not_cascade(self):
        self.registry.spawn(player_spawn())
        removed = self.registry.destroy(10)
        assert isinstance(removed, PlayerControl)
        assert 11 in self.registry
        assert self.registry.destroy(10) is None

    def test_respawn_replaces(self):
        self.registry.spawn(player_spawn(player_id=1))
        self.registry.spawn(player_spawn(player_id=2))
        assert len(self.registry) == 3
        assert self.registry.get(10).player_id == 2

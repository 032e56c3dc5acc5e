"""
网络对象与 RPC 表测试
"""

import pytest

from game.netobjects import (
    DOOR_COUNT,
    WORLD_CAMERAS,
    WORLD_DOORS,
    WORLD_SWITCH,
    ChatMessage,
    GameData,
    GameDataRpc,
    Lobby,
    NetObjectType,
    PlayerControl,
    PlayerControlRpc,
    PlayerPhysics,
    PlayerPhysicsRpc,
    PlayerTransform,
    PlayerTransformRpc,
    VoteBanRpc,
    VoteBanSystem,
    World,
    WorldRpc,
    dispatch_rpc,
    get_rpc_handler,
    get_rpc_table,
)
from game.objects import PlayerData
from hazel.codec import PacketReader, PacketWriter, Vector2
from hazel.exceptions import DecodeError


def reader(w: PacketWriter) -> PacketReader:
    return PacketReader(w.to_bytes())


class TestPlayerControl:
    """PlayerControl 测试"""

    def test_initialize(self):
        obj = PlayerControl.initialize(10, 7, PacketReader(b"\x01\x03"))
        assert obj.net_id == 10
        assert obj.owner_id == 7
        assert obj.is_new is True
        assert obj.player_id == 3

    def test_init_bytes_symmetry(self):
        obj = PlayerControl(net_id=10, owner_id=7, is_new=False, player_id=9)
        assert obj.init_bytes() == b"\x00\x09"

    def test_update(self):
        obj = PlayerControl(net_id=10, owner_id=7)
        obj.update(PacketReader(b"\x04"))
        assert obj.player_id == 4

    def test_rpc_builders(self):
        obj = PlayerControl(net_id=10, owner_id=7)
        call = obj.rpc_set_name("alice")
        assert call.net_id == 10
        assert call.call_id == PlayerControlRpc.SET_NAME
        assert call.data == b"\x05alice"
        assert obj.rpc_check_color(4).data == b"\x04"
        assert obj.rpc_set_pet(200).data == b"\xc8\x01"

    def test_rpc_handlers(self):
        obj = PlayerControl(net_id=10, owner_id=7)
        for call in (obj.rpc_check_name("bob"), obj.rpc_set_color(2),
                     obj.rpc_set_hat(5), obj.rpc_set_skin(6)):
            dispatch_rpc(obj, call.call_id, PacketReader(call.data))
        assert obj.requested_name == "bob"
        assert obj.color == 2
        assert obj.hat_id == 5
        assert obj.skin_id == 6

    def test_send_chat_returns_message(self):
        obj = PlayerControl(net_id=10, owner_id=7)
        call = obj.rpc_send_chat("hello")
        outcome = dispatch_rpc(obj, call.call_id, PacketReader(call.data))
        assert outcome == ChatMessage(owner_id=7, message="hello")

    def test_set_infected(self):
        obj = PlayerControl(net_id=10, owner_id=7)
        dispatch_rpc(obj, PlayerControlRpc.SET_INFECTED, PacketReader(b"\x02\x01\x04"))
        assert obj.infected == [1, 4]


class TestPlayerPhysics:
    def test_vents(self):
        obj = PlayerPhysics(net_id=11, owner_id=7)
        enter = obj.rpc_enter_vent(3)
        assert enter.call_id == PlayerPhysicsRpc.ENTER_VENT
        dispatch_rpc(obj, enter.call_id, PacketReader(enter.data))
        assert obj.vent_id == 3
        exit_call = obj.rpc_exit_vent(3)
        dispatch_rpc(obj, exit_call.call_id, PacketReader(exit_call.data))
        assert obj.vent_id is None


class TestPlayerTransform:
    """PlayerTransform 测试"""

    def test_initialize(self):
        data = PacketWriter().write_u16(12).write_u16(0).write_u16(0xFFFF).write_u16(0).write_u16(0)
        obj = PlayerTransform.initialize(12, 7, reader(data))
        assert obj.last_seq_id == 12
        assert obj.target_position == Vector2(-40.0, 40.0)
        assert obj.velocity == Vector2(-40.0, -40.0)

    def test_snap_to_sequence(self):
        obj = PlayerTransform(net_id=12, owner_id=7, last_seq_id=0xFFFE)
        call = obj.rpc_snap_to(Vector2(1.0, 2.0))
        assert call.call_id == PlayerTransformRpc.SNAP_TO
        r = PacketReader(call.data)
        r.read_vector2()
        assert r.read_u16() == 3

    def test_snap_to_handler_resets_velocity(self):
        obj = PlayerTransform(net_id=12, owner_id=7, velocity=Vector2(5.0, 5.0))
        call = obj.rpc_snap_to(Vector2(-40.0, 40.0))
        dispatch_rpc(obj, call.call_id, PacketReader(call.data))
        assert obj.target_position == Vector2(-40.0, 40.0)
        assert obj.last_seq_id == 5
        assert obj.velocity == Vector2.ZERO


class TestWorld:
    """World 测试"""

    def make_world(self) -> World:
        return World.initialize(1, -2, PacketReader(World(net_id=1, owner_id=-2).init_bytes()))

    def test_initialize_defaults(self):
        world = self.make_world()
        assert world.door_open == [False] * DOOR_COUNT
        assert world.user_console_pairs == []

    def test_update_merges_only_flagged_fields(self):
        world = self.make_world()
        world.comms_active = True
        w = PacketWriter().write_packed_u32(WORLD_SWITCH | WORLD_CAMERAS)
        w.write_u8(1).write_u8(2).write_u8(3)
        w.write_bool(True)
        world.update(reader(w))
        assert (world.expected_switches, world.actual_switches, world.elec_value) == (1, 2, 3)
        assert world.camera_in_use is True
        assert world.comms_active is True

    def test_update_doors(self):
        world = self.make_world()
        w = PacketWriter().write_packed_u32(WORLD_DOORS)
        w.write_packed_u32(0b101)
        w.write_bool(True).write_bool(True)
        world.update(reader(w))
        assert world.door_open[0] is True
        assert world.door_open[1] is False
        assert world.door_open[2] is True

    def test_update_truncated(self):
        world = self.make_world()
        with pytest.raises(DecodeError):
            world.update(PacketReader(PacketWriter().write_packed_u32(WORLD_SWITCH).to_bytes()))

    def test_rpcs(self):
        world = self.make_world()
        dispatch_rpc(world, WorldRpc.CLOSE_DOORS, PacketReader(b"\x04"))
        w = PacketWriter().write_u8(7).write_packed_u32(300).write_u8(16)
        dispatch_rpc(world, WorldRpc.REPAIR_SYSTEM, reader(w))
        assert world.closed_rooms == [4]
        assert world.system_repairs == {7: (300, 16)}


class TestGameData:
    """GameData 测试"""

    def test_initialize_and_update(self):
        source = GameData(net_id=2, owner_id=-2, players={0: PlayerData(name="a"), 1: PlayerData(name="b")})
        obj = GameData.initialize(2, -2, PacketReader(source.init_bytes()))
        assert obj.players == source.players

        w = PacketWriter().write_u8(1).write_u8(1)
        PlayerData(name="renamed").encode(w)
        obj.update(reader(w))
        assert obj.players[1].name == "renamed"
        assert obj.players[0].name == "a"

    def test_update_player_info_rpc(self):
        source = GameData(net_id=2, owner_id=-2, players={0: PlayerData(name="a"), 5: PlayerData(name="e")})
        call = source.rpc_update_player_info([5])
        assert call.call_id == GameDataRpc.UPDATE_PLAYER_INFO

        target = GameData(net_id=2, owner_id=-2)
        dispatch_rpc(target, call.call_id, PacketReader(call.data))
        assert list(target.players) == [5]
        assert target.players[5].name == "e"


class TestVoteBanSystem:
    """VoteBanSystem 测试"""

    def test_initialize_pads_votes(self):
        source = VoteBanSystem(net_id=3, owner_id=-2, votes={9: [1]})
        obj = VoteBanSystem.initialize(3, -2, PacketReader(source.init_bytes()))
        assert obj.votes == {9: [1, 0, 0]}

    def test_add_vote(self):
        obj = VoteBanSystem(net_id=3, owner_id=-2)
        for voter in (1, 2, 2, 3, 4):
            w = PacketWriter().write_i32(voter).write_i32(9)
            dispatch_rpc(obj, VoteBanRpc.ADD_VOTE, reader(w))
        assert obj.votes == {9: [1, 2, 3]}


class TestRpcTable:
    """RPC 表测试"""

    def test_table_keys(self):
        table = get_rpc_table()
        assert (NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SEND_CHAT) in table
        assert (NetObjectType.WORLD, WorldRpc.REPAIR_SYSTEM) in table

    def test_table_is_copy(self):
        table = get_rpc_table()
        table.clear()
        assert get_rpc_handler(NetObjectType.PLAYER_CONTROL, PlayerControlRpc.SET_NAME) is not None

    def test_unregistered_combination_is_noop(self):
        obj = Lobby(net_id=4, owner_id=-2)
        assert dispatch_rpc(obj, 99, PacketReader(b"\xff")) is None

    def test_same_call_id_differs_by_type(self):
        # call_id 0 对 World 是 CloseDoors，对 PlayerControl 是 PlayAnimation
        world = World(net_id=1, owner_id=-2)
        player = PlayerControl(net_id=10, owner_id=7)
        dispatch_rpc(world, 0, PacketReader(b"\x02"))
        dispatch_rpc(player, 0, PacketReader(b"\x02"))
        assert world.closed_rooms == [2]
        assert player.last_animation == 2

"""
游戏数据结构测试
"""

import pytest

from game.objects import (
    Address,
    GameId,
    GameListing,
    GameOptions,
    Languages,
    MainServer,
    PlayerData,
    ServerInfo,
    TaskInfo,
)
from hazel.codec import PacketReader, PacketWriter
from hazel.exceptions import TruncatedInputError


def encode(value) -> bytes:
    w = PacketWriter()
    value.encode(w)
    return w.to_bytes()


class TestGameId:
    """房间码测试"""

    def test_v2_known_vector(self):
        game_id = GameId.from_chars("AQNKQQ")
        assert encode(game_id) == bytes([0x19, 0xDC, 0x06, 0x80])
        assert game_id.is_v2
        assert str(game_id) == "AQNKQQ"

    def test_v1_code(self):
        game_id = GameId.from_chars("ABCD")
        assert game_id.id == 0x44434241
        assert not game_id.is_v2
        assert str(game_id) == "ABCD"

    def test_decode(self):
        game_id = GameId.decode(PacketReader(bytes([0x19, 0xDC, 0x06, 0x80])))
        assert str(game_id) == "AQNKQQ"

    @pytest.mark.parametrize("code", ["ABC", "ABCDEFG", "abcdef", "ABCDE1"])
    def test_invalid_codes(self, code):
        with pytest.raises(ValueError):
            GameId.from_chars(code)


class TestAddress:
    """地址测试"""

    def test_from_host(self):
        address = Address.from_host("172.105.251.170", 22023)
        assert address.ip == bytes([172, 105, 251, 170])
        assert address.to_tuple() == ("172.105.251.170", 22023)
        assert str(address) == "172.105.251.170:22023"

    def test_wire_layout(self):
        address = Address.from_host("10.0.0.1", 0x1234)
        assert encode(address) == b"\x0a\x00\x00\x01\x34\x12"
        assert Address.decode(PacketReader(encode(address))) == address

    def test_main_server_address(self):
        assert MainServer.EUROPE.address == ("172.105.251.170", 22023)


class TestGameListing:
    """房间列表项测试"""

    def make_listing(self, **overrides) -> GameListing:
        values = dict(
            address=Address.from_host("127.0.0.1", 22023),
            game_id=GameId.from_chars("AQNKQQ"),
            host_username="host",
            player_count=4,
            age=300,
            map_id=1,
            num_imposters=2,
            max_players=10,
        )
        values.update(overrides)
        return GameListing(**values)

    def test_decode_inverts_encode(self):
        listing = self.make_listing()
        assert GameListing.decode(PacketReader(encode(listing))) == listing

    def test_map_name(self):
        assert self.make_listing(map_id=1).map_name == "POLUS"
        assert self.make_listing(map_id=9).map_name == "UNKNOWN(9)"


class TestServerInfo:
    def test_decode(self):
        info = ServerInfo("Europe-1", Address.from_host("1.2.3.4", 22023), 2)
        assert ServerInfo.decode(PacketReader(encode(info))) == info


class TestGameOptions:
    """游戏选项测试"""

    def test_wire_size(self):
        # 2 u8 + u32 + u8 + 4 f32 + 3 u8 + i32 + 2 i8 + 2 i32 + 2 u8
        assert len(GameOptions().to_bytes()) == 2 + 4 + 1 + 16 + 3 + 4 + 2 + 8 + 2

    def test_decode_inverts_encode(self):
        options = GameOptions(language=Languages.ALL, map_id=7, num_imposters=2)
        assert GameOptions.decode(PacketReader(options.to_bytes())) == options


class TestPlayerData:
    """玩家数据测试"""

    def test_flags(self):
        data = PlayerData(is_imposter=True, is_dead=True)
        assert data.flags == 0x6

    def test_decode_with_tasks(self):
        data = PlayerData(
            name="alice", color=3, hat_id=5, skin_id=1, pet_id=200,
            disconnected=True, tasks=[TaskInfo(4, True), TaskInfo(300)],
        )
        raw = encode(data)
        decoded = PlayerData.decode(PacketReader(raw))
        assert decoded == data
        assert decoded.tasks[1].complete is False

    def test_truncated_task_list(self):
        raw = encode(PlayerData(name="bob", tasks=[TaskInfo(1)]))
        with pytest.raises(TruncatedInputError):
            PlayerData.decode(PacketReader(raw[:-1]))

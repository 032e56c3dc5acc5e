"""
无状态解析器测试
"""

import io

from rich.console import Console
from rich.tree import Tree

from game.objects import Address, GameId, GameListing
from game.protocol import (
    Disconnected,
    DisconnectReason,
    GameList,
    JoinedGame,
    RootTag,
    Spawn,
    SpawnChild,
    build_game_info,
    build_join_game,
    encode_message,
)
from hazel.codec import PacketWriter
from hazel.packets import Acknowledge, Hello, Reliable, Unreliable
from tools.dissect import FieldNode, dissect, render, to_rich_tree

GAME = GameId.from_chars("AQNKQQ")


class TestDissect:
    """dissect 测试"""

    def test_joined_game(self):
        data = Reliable(ack_id=3, data=encode_message(JoinedGame(GAME, 7, 1, [1, 2]))).to_bytes()
        root = dissect(data)
        assert root.name == "Hazel"
        assert root.value == "RELIABLE"
        assert root.length == len(data)
        assert root.find("ack_id").value == 3
        node = root.find("JOINED_GAME")
        assert node is not None
        assert node.find("game_id").value == "AQNKQQ"
        assert node.find("client_id").value == 7
        assert node.find("player_ids").value == [1, 2]
        assert root.error is None

    def test_field_offsets(self):
        data = Reliable(ack_id=3, data=encode_message(JoinedGame(GAME, 7, 1))).to_bytes()
        root = dissect(data)
        # 包类型 1 + ack_id 2 + 消息头 3
        assert root.find("game_id").offset == 6
        assert root.find("game_id").length == 4

    def test_hello(self):
        root = dissect(Hello(ack_id=1, username="bob").to_bytes())
        assert root.value == "HELLO"
        assert root.find("username").value == "bob"

    def test_ack_flags_binary(self):
        root = dissect(Acknowledge(ack_id=5, ack_flags=3).to_bytes())
        assert root.find("ack_flags").value == "00000011"

    def test_disconnect_reason_named(self):
        data = Reliable(1, encode_message(Disconnected(DisconnectReason.GAME_FULL))).to_bytes()
        assert dissect(data).find("reason").value == "GAME_FULL"

    def test_game_info_items(self):
        spawn = Spawn(prefab_id=4, owner_id=7, children=[SpawnChild(10, b"\x01\x03")])
        root = dissect(Reliable(1, build_game_info(GAME, spawn)).to_bytes())
        node = root.find("SPAWN")
        assert node.find("prefab_id").value == 4
        assert node.find("child").find("net_id").value == 10
        assert node.find("init").find("data").value == "0103"

    def test_game_list(self):
        listing = GameListing(Address.from_host("1.2.3.4", 22023), GAME, "host", 3, 0, 1, 2, 10)
        root = dissect(Reliable(1, encode_message(GameList([listing]))).to_bytes())
        assert "POLUS" in root.find("game").value

    def test_client_to_server_direction(self):
        data = Reliable(1, build_join_game(GAME)).to_bytes()
        node = dissect(data, to_server=True).find("GAME_JOIN_DISCONNECT")
        assert node.find("maps_owned").value == 7
        assert node.find("player_id") is None

    def test_body_error_stays_on_message(self):
        data = Reliable(1, PacketWriter().write_message(RootTag.HOSTING_GAME, b"\x01").to_bytes()
                        + encode_message(JoinedGame(GAME, 7, 1))).to_bytes()
        root = dissect(data)
        assert root.find("HOSTING_GAME").error is not None
        assert root.find("JOINED_GAME").error is None
        assert root.error is None

    def test_broken_framing_sets_root_error(self):
        root = dissect(Unreliable(b"\x10\x00\x05").to_bytes())
        assert root.error is not None

    def test_unknown_packet_type(self):
        root = dissect(b"\x42\x00")
        assert root.error == "Unknown packet type 0x42"

    def test_empty_datagram(self):
        assert dissect(b"").error is not None

    def test_unknown_root_tag(self):
        data = Reliable(1, PacketWriter().write_message(0x30, b"\xaa").to_bytes()).to_bytes()
        node = dissect(data).find("UNKNOWN(48)")
        assert node.find("data").value == "aa"


class TestRender:
    """rich 输出测试"""

    def test_label(self):
        node = FieldNode("x", 2, 4, 9, error="bad")
        assert node.label() == "[2:6] x = 9 !! bad"

    def test_rich_tree(self):
        root = dissect(Hello(ack_id=1, username="bob").to_bytes())
        tree = to_rich_tree(root)
        assert isinstance(tree, Tree)
        assert len(tree.children) == len(root.children)

    def test_render(self):
        buffer = io.StringIO()
        console = Console(file=buffer, width=120, color_system=None)
        render(dissect(Hello(ack_id=1, username="bob").to_bytes()), console)
        assert "username = bob" in buffer.getvalue()

    def test_render_keeps_brackets_literal(self):
        buffer = io.StringIO()
        console = Console(file=buffer, width=120, color_system=None)
        for name in ("[/]", "[bold]eve"):
            render(dissect(Hello(ack_id=1, username=name).to_bytes()), console)
        out = buffer.getvalue()
        assert "username = [/]" in out
        assert "username = [bold]eve" in out

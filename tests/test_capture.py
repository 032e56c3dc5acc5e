"""
抓包读取测试
"""

import pytest

from tools.capture import (
    CapturedDatagram,
    Direction,
    parse_capture_line,
    read_capture_file,
    read_capture_lines,
)


class TestParseCaptureLine:
    def test_direction_by_source_port(self):
        assert parse_capture_line("22023 0100") == (Direction.TO_CLIENT, b"\x01\x00")
        assert parse_capture_line("51234 0800") == (Direction.TO_SERVER, b"\x08\x00")

    def test_colon_separated_hex(self):
        assert parse_capture_line("22023 01:00:02")[1] == b"\x01\x00\x02"

    def test_blank_line(self):
        assert parse_capture_line("   \n") is None

    @pytest.mark.parametrize("line", ["22023", "22023 01 02", "port 0100", "22023 zz"])
    def test_invalid(self, line):
        with pytest.raises(ValueError):
            parse_capture_line(line)


class TestReadCapture:
    def test_skips_bad_lines(self):
        lines = ["22023 0100", "garbage", "", "5000 0c0001"]
        datagrams = list(read_capture_lines(lines))
        assert datagrams == [
            CapturedDatagram(Direction.TO_CLIENT, b"\x01\x00", 1),
            CapturedDatagram(Direction.TO_SERVER, b"\x0c\x00\x01", 4),
        ]
        assert datagrams[1].to_server

    def test_strict(self):
        with pytest.raises(ValueError, match="line 2"):
            list(read_capture_lines(["22023 00", "bad"], strict=True))

    def test_custom_game_port(self):
        [datagram] = read_capture_lines(["30000 00"], game_port=30000)
        assert datagram.direction is Direction.TO_CLIENT

    def test_read_file(self, tmp_path):
        path = tmp_path / "dump.txt"
        path.write_text("22023 0a000103\n51000 00\n", encoding="utf-8")
        datagrams = read_capture_file(path)
        assert [d.data for d in datagrams] == [b"\x0a\x00\x01\x03", b"\x00"]

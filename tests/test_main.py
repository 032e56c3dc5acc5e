"""
命令行入口测试
"""

import logging

import pytest

import main
from game.events import EventType, GameEvent
from game.objects import MainServer
from tools.purchases import write_purchase_file


@pytest.fixture(autouse=True)
def log_to_tmp(tmp_path, monkeypatch):
    monkeypatch.setenv("HAZEL_LOG_FILE", str(tmp_path / "cli.log"))
    root = logging.getLogger()
    saved = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in saved:
            root.removeHandler(handler)
            handler.close()


class TestServerAddress:
    def test_main_server_name(self):
        assert main._server_address("europe") == MainServer.EUROPE.address

    def test_host_port(self):
        assert main._server_address("10.0.0.1:30000") == ("10.0.0.1", 30000)
        assert main._server_address("10.0.0.1") == ("10.0.0.1", 22023)


class TestDissectCommand:
    """dissect 子命令测试"""

    def test_hex(self, capsys):
        assert main.main(["dissect", "0c0001"]) == 0
        assert "KEEP_ALIVE" in capsys.readouterr().out

    def test_missing_input(self):
        assert main.main(["dissect"]) == 2

    def test_bad_hex(self):
        assert main.main(["dissect", "zz"]) == 1

    def test_capture_file(self, tmp_path, capsys):
        path = tmp_path / "dump.txt"
        path.write_text("22023 0c0001\n51000 0a000100\n", encoding="utf-8")
        assert main.main(["dissect", "--capture", str(path)]) == 0
        out = capsys.readouterr().out
        assert "S->C" in out
        assert "C->S" in out


class TestScanCommand:
    def test_invalid_settings(self):
        assert main.main(["scan", "--max-requests", "0"]) == 2


class TestPurchasesCommand:
    def test_lists_ids(self, tmp_path, capsys):
        path = tmp_path / "secureNew"
        write_purchase_file(path, ["hat_[bold]", "pet_ufo"])
        assert main.main(["purchases", str(path)]) == 0
        out = capsys.readouterr().out
        assert "hat_[bold]" in out
        assert "pet_ufo" in out

    def test_missing_file(self, tmp_path):
        assert main.main(["purchases", str(tmp_path / "absent")]) == 1


class TestPrintEvent:
    def test_chat_text_printed_literally(self, capsys):
        main._print_event(GameEvent(EventType.CHAT_MESSAGE, {"player_id": 3, "message": "[/]hi"}))
        assert "[/]hi" in capsys.readouterr().out

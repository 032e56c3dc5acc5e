"""
会话状态
一个房间内的 game_id / host_id / client_id / 玩家列表，
只由分发器产生的事件修改
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .objects import GameId
from .protocol import (
    GameAltered,
    GameStarted,
    HostingGame,
    JoinedGame,
    PlayerJoined,
    PlayerLeft,
)

logger = logging.getLogger(__name__)


@dataclass
class GameSession:
    """房间会话状态"""
    game_id: GameId | None = None
    host_id: int | None = None
    client_id: int | None = None
    player_ids: list[int] = field(default_factory=list)
    is_public: bool | None = None
    started: bool = False

    @property
    def is_host(self) -> bool:
        return self.client_id is not None and self.client_id == self.host_id

    @property
    def in_game(self) -> bool:
        return self.game_id is not None and self.client_id is not None

    def accepts(self, game_id: GameId) -> bool:
        """该房间的消息是否属于本会话（尚未加入时全部接受）"""
        return self.game_id is None or self.game_id == game_id

    def reset(self) -> None:
        """离开房间后清空"""
        self.game_id = None
        self.host_id = None
        self.client_id = None
        self.player_ids = []
        self.is_public = None
        self.started = False

    # ==================== 事件应用 ====================

    def apply_hosting_game(self, msg: HostingGame) -> None:
        self.game_id = msg.game_id

    def apply_joined_game(self, msg: JoinedGame) -> None:
        self.game_id = msg.game_id
        self.client_id = msg.client_id
        self.host_id = msg.host_id
        self.player_ids = list(msg.player_ids)
        self.started = False
        logger.info(
            "Joined %s as client %d (host %d, %d others)",
            msg.game_id, msg.client_id, msg.host_id, len(msg.player_ids),
        )

    def apply_player_joined(self, msg: PlayerJoined) -> None:
        if not self.accepts(msg.game_id):
            return
        self.host_id = msg.host_id
        if msg.player_id not in self.player_ids and msg.player_id != self.client_id:
            self.player_ids.append(msg.player_id)

    def apply_player_left(self, msg: PlayerLeft) -> None:
        if not self.accepts(msg.game_id):
            return
        self.host_id = msg.host_id
        if msg.player_id in self.player_ids:
            self.player_ids.remove(msg.player_id)

    def apply_game_started(self, msg: GameStarted) -> None:
        if msg.game_id is None or self.accepts(msg.game_id):
            self.started = True

    def apply_game_altered(self, msg: GameAltered) -> None:
        if self.accepts(msg.game_id):
            self.is_public = msg.is_public

"""
消息分发器
把传输层交上来的负载切分为根消息，按类型路由到会话状态或网络对象注册表，
并把结果以只读事件的形式发布到事件总线

解码失败的作用域：
- 外层切分失败 (长度前缀越界)：丢弃该负载剩余部分
- 单个根消息解码失败：跳过该消息，继续后续消息
- 单个 GameInfo 子项失败：跳过该子项，继续后续子项
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from hazel.codec import PacketReader
from hazel.exceptions import DecodeError

from .events import EventBus, EventEmitter, EventType
from .netobjects import ChatMessage
from .protocol import (
    ChangeScene,
    ChangeServer,
    ClientReady,
    Destroy,
    Disconnected,
    GameAltered,
    GameInfo,
    GameInfoTo,
    GameList,
    GameStarted,
    HostingGame,
    JoinedGame,
    KickPlayer,
    PlayerJoined,
    PlayerLeft,
    RawMessage,
    RpcCall,
    ServerList,
    Spawn,
    UpdateData,
    decode_game_info_item,
    decode_root_message,
    read_raw_message,
)
from .registry import NetObjectRegistry
from .session import GameSession

logger = logging.getLogger(__name__)


class MessageDispatcher(EventEmitter):
    """
    消息分发器

    只持有处理表；状态修改全部委托给 GameSession 与 NetObjectRegistry
    """

    def __init__(
        self,
        session: GameSession,
        registry: NetObjectRegistry,
        event_bus: EventBus | None = None,
    ):
        super().__init__()
        self.session = session
        self.registry = registry
        if event_bus is not None:
            self.set_event_bus(event_bus)

        self._root_handlers: dict[type, Callable[[Any], None]] = {
            HostingGame: self._on_hosting_game,
            Disconnected: self._on_disconnected,
            PlayerJoined: self._on_player_joined,
            GameStarted: self._on_game_started,
            PlayerLeft: self._on_player_left,
            GameInfo: self._on_game_info,
            GameInfoTo: self._on_game_info_to,
            JoinedGame: self._on_joined_game,
            GameAltered: self._on_game_altered,
            KickPlayer: self._on_kick_player,
            ChangeServer: self._on_change_server,
            ServerList: self._on_server_list,
            GameList: self._on_game_list,
        }
        self._item_handlers: dict[type, Callable[[Any], None]] = {
            UpdateData: self._on_update_data,
            RpcCall: self._on_rpc,
            Spawn: self._on_spawn,
            Destroy: self._on_destroy,
            ChangeScene: self._on_change_scene,
            ClientReady: self._on_client_ready,
        }

    # ==================== 入口 ====================

    def dispatch(self, payload: bytes) -> None:
        """处理一个传输层负载（若干根消息）"""
        r = PacketReader(payload)
        while r.remaining > 0:
            try:
                raw = read_raw_message(r)
            except DecodeError as e:
                self._report(e.with_context("Payload"))
                return
            self.dispatch_message(raw)

    def dispatch_message(self, raw: RawMessage) -> None:
        """解码并路由单个根消息"""
        try:
            message = decode_root_message(raw)
        except DecodeError as e:
            self._report(e)
            return
        if message is None:
            logger.debug("Ignoring unknown root tag 0x%02x", raw.tag)
            return
        self._root_handlers[type(message)](message)

    def dispatch_items(self, items: list[RawMessage]) -> None:
        """逐个解码并路由 GameInfo 子项"""
        for raw in items:
            try:
                item = decode_game_info_item(raw)
                if item is None:
                    logger.debug("Ignoring unknown game info tag %d", raw.tag)
                    continue
                self._item_handlers[type(item)](item)
            except DecodeError as e:
                self._report(e)

    def _report(self, error: DecodeError) -> None:
        logger.warning("Decode failed: %s", error)
        self.emit(EventType.DECODE_FAILED, error=error, context=error.context, offset=error.offset)

    # ==================== 根消息 ====================

    def _on_hosting_game(self, msg: HostingGame) -> None:
        self.session.apply_hosting_game(msg)
        self.emit(EventType.HOSTING_GAME, game_id=msg.game_id)

    def _on_disconnected(self, msg: Disconnected) -> None:
        logger.info("Server disconnected us: %s %s", msg.reason.name, msg.message or "")
        self.emit(EventType.DISCONNECTED, source="server", reason=msg.reason, message=msg.message or "")

    def _on_player_joined(self, msg: PlayerJoined) -> None:
        self.session.apply_player_joined(msg)
        self.emit(EventType.PLAYER_JOINED, game_id=msg.game_id,
                  player_id=msg.player_id, host_id=msg.host_id)

    def _on_game_started(self, msg: GameStarted) -> None:
        self.session.apply_game_started(msg)
        self.emit(EventType.GAME_STARTED, game_id=msg.game_id)

    def _on_player_left(self, msg: PlayerLeft) -> None:
        self.session.apply_player_left(msg)
        self.emit(EventType.PLAYER_LEFT, game_id=msg.game_id, player_id=msg.player_id,
                  host_id=msg.host_id, reason=msg.reason)

    def _on_game_info(self, msg: GameInfo) -> None:
        if not self.session.accepts(msg.game_id):
            logger.debug("Ignoring game info for other game %s", msg.game_id)
            return
        self.dispatch_items(msg.items)

    def _on_game_info_to(self, msg: GameInfoTo) -> None:
        if not self.session.accepts(msg.game_id):
            logger.debug("Ignoring game info for other game %s", msg.game_id)
            return
        if self.session.client_id is not None and msg.target_id != self.session.client_id:
            logger.debug("Ignoring game info addressed to client %d", msg.target_id)
            return
        self.dispatch_items(msg.items)

    def _on_joined_game(self, msg: JoinedGame) -> None:
        self.session.apply_joined_game(msg)
        self.emit(EventType.JOINED_GAME, game_id=msg.game_id, client_id=msg.client_id,
                  host_id=msg.host_id, player_ids=list(msg.player_ids))

    def _on_game_altered(self, msg: GameAltered) -> None:
        self.session.apply_game_altered(msg)
        self.emit(EventType.GAME_ALTERED, game_id=msg.game_id, is_public=msg.is_public)

    def _on_kick_player(self, msg: KickPlayer) -> None:
        self.emit(EventType.KICK_PLAYER, game_id=msg.game_id, player_id=msg.player_id, ban=msg.ban)

    def _on_change_server(self, msg: ChangeServer) -> None:
        self.emit(EventType.CHANGE_SERVER, address=msg.address)

    def _on_server_list(self, msg: ServerList) -> None:
        self.emit(EventType.SERVER_LIST, servers=list(msg.servers))

    def _on_game_list(self, msg: GameList) -> None:
        self.emit(EventType.GAME_LIST, games=list(msg.games))

    # ==================== GameInfo 子项 ====================

    def _on_update_data(self, item: UpdateData) -> None:
        self.registry.update(item.net_id, item.data, offset=item.offset)

    def _on_rpc(self, item: RpcCall) -> None:
        outcome = self.registry.rpc(item.net_id, item.call_id, item.data, offset=item.offset)
        if isinstance(outcome, ChatMessage):
            self.emit(EventType.CHAT_MESSAGE, player_id=outcome.owner_id, message=outcome.message)

    def _on_spawn(self, item: Spawn) -> None:
        objects = self.registry.spawn(item)
        self.emit(EventType.OBJECT_SPAWNED, prefab_id=item.prefab_id,
                  owner_id=item.owner_id, objects=objects)

    def _on_destroy(self, item: Destroy) -> None:
        obj = self.registry.destroy(item.net_id)
        if obj is not None:
            self.emit(EventType.OBJECT_DESTROYED, net_id=item.net_id, object=obj)

    def _on_change_scene(self, item: ChangeScene) -> None:
        self.emit(EventType.SCENE_CHANGED, player_id=item.client_id, scene=item.scene)

    def _on_client_ready(self, item: ClientReady) -> None:
        self.emit(EventType.CLIENT_READY, player_id=item.client_id)

"""会话客户端

在 HazelClient 之上驱动一个房间会话：
- 发送 Hello 并按房间码或房间列表项加入
- 订阅分发器事件，按会话流程自动回应
  (JoinedGame 后切换场景、非房主在开局时发送 ClientReady、
  自己的玩家对象出生后发送初始外观)
- ChangeServer 时重连新服务器，非主动断开时重新加入
- 提供聊天、改名、移动、管道等动作

房间列表扫描见 GameClient.scan_games
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from hazel.client import HazelClient
from hazel.codec import Vector2
from hazel.config import HazelConfig, get_config
from hazel.connection import CloseReason
from hazel.exceptions import HazelError

from .dispatcher import MessageDispatcher
from .events import EventBus, EventType, GameEvent
from .exceptions import GameClientError
from .models import ClientSettings, ScanSettings
from .netobjects import (
    GameData,
    NetObject,
    NetObjectType,
    PlayerControl,
    PlayerPhysics,
    PlayerTransform,
)
from .objects import GameId, GameListing
from .protocol import (
    ChangeScene,
    ClientReady,
    Destroy,
    RpcCall,
    build_game_info,
    build_game_info_to,
    build_join_game,
    build_request_game_list,
)
from .registry import NetObjectRegistry, PrefabType
from .session import GameSession

logger = logging.getLogger(__name__)

Address = tuple[str, int]


class GameClient:
    """
    房间会话客户端

    Args:
        address: 服务器 (host, port)
        settings: 客户端设置
        event_bus: 事件总线 (不传则新建)
        config: 传输层配置
        max_rejoins: 服务器主动断开后最多重新加入的次数
    """

    def __init__(
        self,
        address: Address,
        settings: ClientSettings | None = None,
        *,
        event_bus: EventBus | None = None,
        config: HazelConfig | None = None,
        max_rejoins: int = 3,
    ):
        self.address = address
        self.settings = settings or ClientSettings()
        self.config = config or get_config()
        self.event_bus = event_bus or EventBus()
        self.max_rejoins = max_rejoins

        self.session = GameSession()
        self.registry = NetObjectRegistry()
        self.dispatcher = MessageDispatcher(self.session, self.registry, self.event_bus)

        self.hazel: HazelClient | None = None
        self._target_game: GameId | None = None
        self._should_disconnect = False
        self._rejoins = 0
        self._finished = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

        self.event_bus.subscribe(EventType.JOINED_GAME, self._on_joined_game, priority=10)
        self.event_bus.subscribe(EventType.GAME_STARTED, self._on_game_started, priority=10)
        self.event_bus.subscribe(EventType.OBJECT_SPAWNED, self._on_object_spawned, priority=10)
        self.event_bus.subscribe(EventType.CHANGE_SERVER, self._on_change_server, priority=10)

    @classmethod
    def for_listing(cls, listing: GameListing, settings: ClientSettings | None = None,
                    **kwargs) -> GameClient:
        """直连房间列表项所在的服务器"""
        return cls(listing.address.to_tuple(), settings, **kwargs)

    # ==================== 连接 ====================

    @property
    def is_connected(self) -> bool:
        return self.hazel is not None and self.hazel.is_connected

    async def connect(self, timeout: float | None = None) -> None:
        """打开到 address 的连接并完成 Hello 握手"""
        self._finished.clear()

        def on_disconnect(reason: CloseReason) -> None:
            self._on_transport_disconnect(hazel, reason)

        hazel = HazelClient(
            self.address,
            on_payload=self.dispatcher.dispatch,
            on_disconnect=on_disconnect,
            config=self.config,
        )
        self.hazel = hazel
        await hazel.connect(self.settings.connect_username, timeout)
        logger.info("Connected to %s:%d as %s", *self.address, self.settings.connect_username)
        self.event_bus.emit(EventType.CONNECTED, address=self.address)

    async def join(self, game: str | GameId | GameListing) -> None:
        """加入房间 (房间码、GameId 或房间列表项)"""
        if isinstance(game, GameListing):
            game = game.game_id
        elif isinstance(game, str):
            game = GameId.from_chars(game)
        self._target_game = game
        self._send(build_join_game(game))
        logger.info("Joining game %s", game)

    async def run(self, game: str | GameId | GameListing, timeout: float | None = None) -> None:
        """连接、加入，并等待会话结束"""
        await self.connect(timeout)
        await self.join(game)
        await self.wait_closed()

    async def wait_closed(self) -> None:
        await self._finished.wait()

    async def disconnect(self) -> None:
        """主动离开：发送 Disconnect，不再重连"""
        self._should_disconnect = True
        hazel = self.hazel
        if hazel is not None:
            # 回调触发时 self.hazel 仍指向该连接，DISCONNECTED 照常发布
            await hazel.disconnect()
        self.hazel = None
        for task in list(self._tasks):
            task.cancel()
        self._finish(CloseReason.LOCAL)

    def request_game_list(self, settings: ScanSettings | None = None) -> None:
        options = (settings or ScanSettings()).game_options()
        self._send(build_request_game_list(options))

    # ==================== 发送工具 ====================

    def _send(self, payload: bytes) -> None:
        if self.hazel is None:
            raise GameClientError("Not connected", action="send")
        self.hazel.send_reliable(payload)

    def _require_game(self, action: str) -> tuple[GameId, int]:
        if not self.session.in_game:
            raise GameClientError("Not in a game", action=action)
        return self.session.game_id, self.session.client_id

    def _send_game_info(self, *items) -> None:
        game_id, _ = self._require_game("game_info")
        self._send(build_game_info(game_id, *items))

    def _send_to_host(self, *items) -> None:
        """非房主的请求发给房主；房主直接广播"""
        game_id, _ = self._require_game("game_info_to")
        if self.session.is_host:
            self._send(build_game_info(game_id, *items))
        else:
            self._send(build_game_info_to(game_id, self.session.host_id, *items))

    def _own(self, object_type: NetObjectType, action: str) -> NetObject:
        _, client_id = self._require_game(action)
        obj = self.registry.find_owned(object_type, client_id)
        if obj is None:
            raise GameClientError(f"No {object_type.name} owned by client {client_id}", action=action)
        return obj

    # ==================== 动作 ====================

    def set_name(self, name: str) -> None:
        control: PlayerControl = self._own(NetObjectType.PLAYER_CONTROL, "set_name")
        if self.session.is_host:
            self._send_game_info(control.rpc_set_name(name))
        else:
            self._send_to_host(control.rpc_check_name(name))

    def set_color(self, color: int) -> None:
        control: PlayerControl = self._own(NetObjectType.PLAYER_CONTROL, "set_color")
        if self.session.is_host:
            self._send_game_info(control.rpc_set_color(color))
        else:
            self._send_to_host(control.rpc_check_color(color))

    def set_skin(self, skin_id: int) -> None:
        control: PlayerControl = self._own(NetObjectType.PLAYER_CONTROL, "set_skin")
        self._send_to_host(control.rpc_set_skin(skin_id))

    def set_hat(self, hat_id: int) -> None:
        control: PlayerControl = self._own(NetObjectType.PLAYER_CONTROL, "set_hat")
        self._send_to_host(control.rpc_set_hat(hat_id))

    def set_pet(self, pet_id: int) -> None:
        control: PlayerControl = self._own(NetObjectType.PLAYER_CONTROL, "set_pet")
        self._send_to_host(control.rpc_set_pet(pet_id))

    def send_chat(self, message: str) -> None:
        control: PlayerControl = self._own(NetObjectType.PLAYER_CONTROL, "send_chat")
        self._send_game_info(control.rpc_send_chat(message))

    def snap_to(self, position: Vector2) -> None:
        transform: PlayerTransform = self._own(NetObjectType.PLAYER_TRANSFORM, "snap_to")
        self._send_to_host(transform.rpc_snap_to(position))

    def enter_vent(self, vent_id: int) -> None:
        physics: PlayerPhysics = self._own(NetObjectType.PLAYER_PHYSICS, "enter_vent")
        self._send_game_info(physics.rpc_enter_vent(vent_id))

    def exit_vent(self, vent_id: int) -> None:
        physics: PlayerPhysics = self._own(NetObjectType.PLAYER_PHYSICS, "exit_vent")
        self._send_game_info(physics.rpc_exit_vent(vent_id))

    def destroy_object(self, net_id: int) -> None:
        self._send_game_info(Destroy(net_id=net_id))

    def update_game_data(self) -> None:
        """房主广播全体玩家信息"""
        if not self.session.is_host:
            raise GameClientError("Only the host sends player info", action="update_game_data")
        game_data = next((o for o in self.registry if isinstance(o, GameData)), None)
        if game_data is None:
            raise GameClientError("No GameData spawned", action="update_game_data")
        self._send_game_info(game_data.rpc_update_player_info())

    def send_rpc(self, call: RpcCall, to_host: bool = False) -> None:
        """发送任意 RPC"""
        if to_host:
            self._send_to_host(call)
        else:
            self._send_game_info(call)

    # ==================== 事件回应 ====================

    def _on_joined_game(self, event: GameEvent) -> None:
        self._rejoins = 0
        if self.settings.send_scene:
            self._send_game_info(ChangeScene(client_id=self.session.client_id,
                                             scene=self.settings.game_scene))

    def _on_game_started(self, event: GameEvent) -> None:
        if self.session.in_game and not self.session.is_host:
            self._send_game_info(ClientReady(client_id=self.session.client_id))

    def _on_object_spawned(self, event: GameEvent) -> None:
        if event.data.get("prefab_id") != PrefabType.PLAYER:
            return
        if event.data.get("owner_id") != self.session.client_id:
            return
        logger.info("Own player spawned")
        if self.settings.send_initial_info:
            self.set_name(self.settings.game_username)
            self.set_color(self.settings.initial_color)
            self.set_skin(self.settings.initial_skin)
            self.set_hat(self.settings.initial_hat)
            self.set_pet(self.settings.initial_pet)

    def _on_change_server(self, event: GameEvent) -> None:
        address = event.data["address"].to_tuple()
        logger.info("Server redirect to %s:%d", *address)
        self._spawn(self._reconnect(address))

    def _on_transport_disconnect(self, hazel: HazelClient, reason: CloseReason) -> None:
        if hazel is not self.hazel:
            # 已被替换的旧连接
            return
        self.event_bus.emit(EventType.DISCONNECTED, source="transport", reason=reason)
        if self._should_disconnect or reason is CloseReason.LOCAL:
            self._finish(reason)
        elif reason is CloseReason.REMOTE and self._target_game is not None \
                and self._rejoins < self.max_rejoins:
            self._rejoins += 1
            logger.info("Disconnected by server, rejoining (%d/%d)", self._rejoins, self.max_rejoins)
            self._spawn(self._reconnect(self.address))
        else:
            logger.warning("Connection to %s:%d lost: %s", *self.address, reason.value)
            self._finish(reason)

    # ==================== 重连 ====================

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reconnect(self, address: Address) -> None:
        """通知旧服务器断开，连到 address 后重新加入目标房间"""
        old, self.hazel = self.hazel, None
        if old is not None:
            await old.disconnect()
        self.address = address
        self.session.reset()
        self.registry.clear()
        try:
            await self.connect()
            if self._target_game is not None:
                await self.join(self._target_game)
        except (HazelError, OSError, asyncio.TimeoutError) as e:
            logger.error("Reconnect to %s:%d failed: %s", *address, e)
            self._finish(CloseReason.TIMED_OUT)

    def _finish(self, reason: CloseReason) -> None:
        if not self._finished.is_set():
            logger.info("Game client finished (%s)", reason.value)
            self._finished.set()

    # ==================== 房间列表扫描 ====================

    @classmethod
    async def scan_games(
        cls,
        settings: ScanSettings,
        callback: Callable[[list[GameListing]], bool],
        *,
        config: HazelConfig | None = None,
        poll_interval: float = 0.2,
        idle_timeout: float = 5.0,
        address: Address | None = None,
    ) -> int:
        """
        反复请求房间列表，把新到的列表项批量交给 callback

        callback 返回 False 时停止；请求预算用完且没有待回复的请求
        (或超过 idle_timeout 秒没有新数据) 时也会停止

        Returns:
            交给 callback 的列表项总数
        """
        bus = EventBus()
        client = cls(address or settings.server.address,
                     ClientSettings(connect_username=settings.connect_username),
                     event_bus=bus, config=config)
        cache: list[GameListing] = []
        outstanding = 0
        sent_total = 0
        delivered = 0
        closed = False

        def on_game_list(event: GameEvent) -> None:
            nonlocal outstanding
            outstanding = max(outstanding - 1, 0)
            cache.extend(event.data["games"])

        def on_disconnected(event: GameEvent) -> None:
            nonlocal closed
            logger.warning("Scan disconnected: %s", event.reason)
            closed = True

        bus.subscribe(EventType.GAME_LIST, on_game_list)
        bus.subscribe(EventType.DISCONNECTED, on_disconnected)

        loop = asyncio.get_running_loop()
        try:
            await client.connect()
            last_data = loop.time()
            while not closed:
                count = settings.requests_to_make(outstanding, len(cache), sent_total)
                for _ in range(count):
                    client.request_game_list(settings)
                outstanding += count
                sent_total += count

                await asyncio.sleep(poll_interval)

                if cache:
                    last_data = loop.time()
                    batch, cache[:] = list(cache), []
                    delivered += len(batch)
                    if callback(batch) is False:
                        break
                elif sent_total >= settings.max_requests and (
                    outstanding == 0 or loop.time() - last_data > idle_timeout
                ):
                    logger.info("Scan budget spent after %d requests", sent_total)
                    break
        finally:
            await client.disconnect()
        return delivered

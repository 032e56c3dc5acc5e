"""Hazel UDP 服务端端点

一个 UDP 套接字承载多个对端连接：
- 按对端地址维护独立的 Connection
- 首个数据报必须是 Hello 才会建立连接
- 对端断开或超时后移除其连接
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .config import HazelConfig, get_config
from .connection import CloseReason, Connection
from .exceptions import NotConnectedError
from .packets import PacketType

logger = logging.getLogger(__name__)

Address = tuple[str, int]


class _ServerProtocol(asyncio.DatagramProtocol):
    """把套接字事件转交给 HazelServer"""

    def __init__(self, owner: HazelServer):
        self._owner = owner

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._owner._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._owner._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning("UDP server error: %s", exc)


class HazelServer:
    """多连接 Hazel 服务端

    Args:
        host: 监听地址
        port: 监听端口 (0 表示随机端口)
        on_payload: 收到负载时回调 (address, payload)
        on_connect: 对端握手成功时回调 (address)
        on_disconnect: 对端连接关闭时回调 (address, reason)
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int | None = None,
        *,
        on_payload: Callable[[Address, bytes], None] | None = None,
        on_connect: Callable[[Address], None] | None = None,
        on_disconnect: Callable[[Address, CloseReason], None] | None = None,
        config: HazelConfig | None = None,
    ):
        self.config = config or get_config()
        self.host = host
        self.port = self.config.game_port if port is None else port
        self._on_payload = on_payload
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect

        self.connections: dict[Address, Connection] = {}
        self._transport: asyncio.DatagramTransport | None = None
        self._tick_task: asyncio.Task | None = None
        self._running = False

    @property
    def local_address(self) -> Address | None:
        """实际绑定的地址"""
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[:2]

    # ==================== 生命周期 ====================

    async def start(self) -> None:
        """绑定端口并启动后台定时任务"""
        loop = asyncio.get_running_loop()
        await loop.create_datagram_endpoint(
            lambda: _ServerProtocol(self), local_addr=(self.host, self.port)
        )
        self._running = True
        self._tick_task = asyncio.create_task(self._tick_loop())
        logger.info("Hazel server listening on %s", self.local_address)

    async def stop(self) -> None:
        """通知所有对端断开并关闭套接字"""
        self._running = False
        for connection in list(self.connections.values()):
            connection.send_disconnect()
        self.connections.clear()
        if self._tick_task and not self._tick_task.done():
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
        self._tick_task = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        logger.info("Hazel server stopped")

    # ==================== 连接管理 ====================

    def _create_connection(self, addr: Address) -> Connection:
        def send(data: bytes) -> None:
            if self._transport is None:
                raise NotConnectedError(address=addr)
            self._transport.sendto(data, addr)

        connection = Connection(
            send,
            config=self.config,
            address=addr,
            on_connected=lambda: self._handle_connected(addr),
            on_disconnect=lambda reason: self._handle_disconnect(addr, reason),
        )
        self.connections[addr] = connection
        return connection

    def _handle_connected(self, addr: Address) -> None:
        logger.info("Peer connected: %s", addr)
        if self._on_connect:
            self._on_connect(addr)

    def _handle_disconnect(self, addr: Address, reason: CloseReason) -> None:
        self.connections.pop(addr, None)
        logger.info("Peer dropped: %s (%s)", addr, reason.value)
        if self._on_disconnect:
            self._on_disconnect(addr, reason)

    def _on_datagram(self, data: bytes, addr: Address) -> None:
        connection = self.connections.get(addr)
        if connection is None:
            if not data or data[0] != PacketType.HELLO:
                logger.debug("Ignoring non-hello datagram from unknown peer %s", addr)
                return
            connection = self._create_connection(addr)
        payload = connection.datagram_received(data)
        if payload is not None and self._on_payload:
            self._on_payload(addr, payload)

    # ==================== 发送 ====================

    def _require(self, addr: Address) -> Connection:
        connection = self.connections.get(addr)
        if connection is None:
            raise NotConnectedError(address=addr)
        return connection

    def send_reliable(self, addr: Address, data: bytes) -> int:
        return self._require(addr).send_reliable(data)

    def send_unreliable(self, addr: Address, data: bytes) -> None:
        self._require(addr).send_unreliable(data)

    def broadcast_reliable(self, data: bytes, exclude: Address | None = None) -> None:
        """向所有已连接对端发送可靠负载"""
        for addr, connection in list(self.connections.items()):
            if addr != exclude and connection.is_connected:
                connection.send_reliable(data)

    def disconnect(self, addr: Address) -> None:
        connection = self.connections.get(addr)
        if connection is not None:
            connection.send_disconnect()

    async def _tick_loop(self) -> None:
        """后台任务: 驱动每个连接的重传与心跳"""
        while self._running:
            await asyncio.sleep(self.config.resend_tick)
            for connection in list(self.connections.values()):
                connection.tick()

"""Hazel UDP 客户端端点

基于 asyncio DatagramProtocol，维护一个到服务端的 Connection：
- 收到的负载通过回调交给上层
- 后台任务负责重传与心跳
- 连接断开 (对端断开/超时/本端关闭) 时通知上层
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .config import HazelConfig, get_config
from .connection import CloseReason, Connection, ConnectionState
from .exceptions import NotConnectedError

logger = logging.getLogger(__name__)


class _ClientProtocol(asyncio.DatagramProtocol):
    """把套接字事件转交给 HazelClient"""

    def __init__(self, owner: HazelClient):
        self._owner = owner

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._owner._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._owner._on_datagram(data)

    def error_received(self, exc: Exception) -> None:
        logger.warning("UDP error from %s: %s", self._owner.address, exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.warning("UDP socket lost: %s", exc)


class HazelClient:
    """单连接 Hazel 客户端

    Args:
        address: 服务端 (host, port)
        on_payload: 收到上层负载时回调
        on_disconnect: 连接进入 DISCONNECTED 时回调
        config: 传输层配置
    """

    def __init__(
        self,
        address: tuple[str, int],
        *,
        on_payload: Callable[[bytes], None] | None = None,
        on_disconnect: Callable[[CloseReason], None] | None = None,
        config: HazelConfig | None = None,
    ):
        self.address = address
        self.config = config or get_config()
        self._on_payload = on_payload
        self._on_disconnect = on_disconnect

        self._transport: asyncio.DatagramTransport | None = None
        self.connection: Connection | None = None
        self._tick_task: asyncio.Task | None = None
        self._state_changed = asyncio.Event()

    # ==================== 状态 ====================

    @property
    def state(self) -> ConnectionState:
        if self.connection is None:
            return ConnectionState.DISCONNECTED
        return self.connection.state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    # ==================== 生命周期 ====================

    async def open(self) -> None:
        """创建 UDP 端点并启动后台定时任务"""
        if self.connection is not None:
            return
        loop = asyncio.get_running_loop()
        await loop.create_datagram_endpoint(
            lambda: _ClientProtocol(self), remote_addr=self.address
        )
        self.connection = Connection(
            self._send_datagram,
            config=self.config,
            address=self.address,
            on_connected=self._handle_connected,
            on_disconnect=self._handle_disconnect,
        )
        self._tick_task = asyncio.create_task(self._tick_loop())
        logger.info("UDP endpoint opened to %s:%d", *self.address)

    async def connect(self, username: str, timeout: float | None = None) -> None:
        """发送 Hello 并等待确认

        Raises:
            ConnectionTimedOutError: 重传耗尽仍未确认
            NotConnectedError: 等待期间连接被关闭
            asyncio.TimeoutError: 超过 timeout 秒
        """
        await self.open()
        self.send_hello(username)
        await asyncio.wait_for(self.wait_connected(), timeout)

    async def wait_connected(self) -> None:
        while self.state == ConnectionState.CONNECTING:
            self._state_changed.clear()
            await self._state_changed.wait()
        if self.state == ConnectionState.DISCONNECTED:
            error = self.connection.close_error if self.connection else None
            raise error or NotConnectedError(address=self.address)

    async def disconnect(self) -> None:
        """发送 Disconnect 后关闭端点"""
        if self.connection is not None:
            self.connection.send_disconnect()
        await self.close()

    async def close(self) -> None:
        """关闭端点：取消定时任务、丢弃待确认包"""
        if self._tick_task and not self._tick_task.done():
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
        self._tick_task = None
        if self.connection is not None:
            self.connection.close()
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    # ==================== 发送 ====================

    def _require_connection(self) -> Connection:
        if self.connection is None:
            raise NotConnectedError(address=self.address)
        return self.connection

    def send_hello(self, username: str) -> int:
        return self._require_connection().send_hello(username)

    def send_reliable(self, data: bytes) -> int:
        return self._require_connection().send_reliable(data)

    def send_unreliable(self, data: bytes) -> None:
        self._require_connection().send_unreliable(data)

    def _send_datagram(self, data: bytes) -> None:
        if self._transport is None:
            raise NotConnectedError(address=self.address)
        self._transport.sendto(data)

    # ==================== 接收与回调 ====================

    def _on_datagram(self, data: bytes) -> None:
        if self.connection is None:
            return
        payload = self.connection.datagram_received(data)
        if payload is not None and self._on_payload:
            self._on_payload(payload)

    def _handle_connected(self) -> None:
        self._state_changed.set()

    def _handle_disconnect(self, reason: CloseReason) -> None:
        self._state_changed.set()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        if self._on_disconnect:
            self._on_disconnect(reason)

    async def _tick_loop(self) -> None:
        """后台任务: 重传到期包并在空闲时发送心跳"""
        connection = self.connection
        while connection is not None and not connection.is_closed:
            await asyncio.sleep(self.config.resend_tick)
            connection.tick()

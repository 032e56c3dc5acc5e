"""Hazel 连接状态机

Connection 不直接持有套接字：发送通过 send_datagram 回调完成，
时间通过 clock 注入，因此可以在 asyncio 端点中驱动，也可以在测试中单步驱动。

状态: CONNECTING → CONNECTED → DISCONNECTED (终态)
- 发送 Hello 进入 CONNECTING，收到对应 Acknowledge 后进入 CONNECTED
- 收到 Disconnect 或重传次数耗尽进入 DISCONNECTED
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .config import HazelConfig, get_config
from .exceptions import (
    ConnectionTimedOutError,
    DecodeError,
    HazelConnectionError,
    NotConnectedError,
)
from .packets import (
    Acknowledge,
    Disconnect,
    Hello,
    KeepAlive,
    Reliable,
    Unreliable,
    decode_packet,
)

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """连接状态"""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class CloseReason(Enum):
    """连接关闭原因"""
    LOCAL = "local"                  # 本端主动断开
    REMOTE = "remote"                # 收到对端 Disconnect
    TIMED_OUT = "connection_timed_out"  # 重传耗尽


# ==================== 数据模型 ====================

@dataclass
class PendingAck:
    """等待确认的已发送包"""
    ack_id: int
    datagram: bytes
    send_time: float
    next_resend: float
    retry_count: int = 0


class ReceiveHistory:
    """最近收到的 ack_id 集合

    用于过滤重复的可靠包，并计算 Acknowledge 的 ack_flags。
    只保留最近 size 个 ack_id。
    """

    def __init__(self, size: int = 1024):
        self._size = size
        self._seen: set[int] = set()
        self._order: deque[int] = deque()

    def __contains__(self, ack_id: int) -> bool:
        return ack_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def add(self, ack_id: int) -> bool:
        """记录 ack_id，首次出现返回 True"""
        if ack_id in self._seen:
            return False
        self._seen.add(ack_id)
        self._order.append(ack_id)
        while len(self._order) > self._size:
            self._seen.discard(self._order.popleft())
        return True

    def ack_flags(self, ack_id: int) -> int:
        """第 i 位置位 ⇔ ack_id - i - 1 已收到"""
        flags = 0
        for bit in range(8):
            if (ack_id - bit - 1) & 0xFFFF in self._seen:
                flags |= 1 << bit
        return flags


# ==================== 连接 ====================

class Connection:
    """单个 Hazel 连接

    每个连接独占自己的 ack_id 计数器、待确认表和接收历史，
    不同连接之间不共享任何状态。

    Args:
        send_datagram: 发送原始数据报的回调
        config: 传输层配置，默认使用全局配置
        clock: 单调时钟
        address: 对端地址，仅用于日志和异常详情
        on_connected: 进入 CONNECTED 时回调
        on_disconnect: 进入 DISCONNECTED 时回调，参数为关闭原因
    """

    def __init__(
        self,
        send_datagram: Callable[[bytes], None],
        *,
        config: HazelConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        address: tuple | None = None,
        on_connected: Callable[[], None] | None = None,
        on_disconnect: Callable[[CloseReason], None] | None = None,
    ):
        self._send_datagram = send_datagram
        self.config = config or get_config()
        self._clock = clock
        self.address = address
        self._on_connected = on_connected
        self._on_disconnect = on_disconnect

        self.state = ConnectionState.CONNECTING
        self.close_reason: CloseReason | None = None
        self.close_error: HazelConnectionError | None = None

        # 发送侧
        self._next_ack_id = 1
        self.pending: dict[int, PendingAck] = {}
        self._hello_ack_id: int | None = None

        # 接收侧
        self.history = ReceiveHistory(self.config.receive_history_size)
        self.remote_hello: Hello | None = None

        now = self._clock()
        self.last_send_time = now
        self.last_receive_time = now

    # ==================== 状态 ====================

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.DISCONNECTED

    def _set_connected(self) -> None:
        if self.state != ConnectionState.CONNECTING:
            return
        self.state = ConnectionState.CONNECTED
        logger.info("Connection established: %s", self.address)
        if self._on_connected:
            self._on_connected()

    def _close(self, reason: CloseReason) -> None:
        if self.state == ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        self.close_reason = reason
        self.pending.clear()
        logger.info("Connection closed: %s (%s)", self.address, reason.value)
        if self._on_disconnect:
            self._on_disconnect(reason)

    def close(self) -> None:
        """拆除连接，不发送 Disconnect，丢弃所有待确认包"""
        self._close(CloseReason.LOCAL)

    # ==================== 发送 ====================

    def _allocate_ack_id(self) -> int:
        ack_id = self._next_ack_id
        self._next_ack_id = (ack_id + 1) & 0xFFFF
        return ack_id

    def _ensure_open(self) -> None:
        if self.state == ConnectionState.DISCONNECTED:
            raise NotConnectedError(address=self.address)

    def _transmit(self, datagram: bytes) -> None:
        self._send_datagram(datagram)
        self.last_send_time = self._clock()

    def _send_tracked(self, ack_id: int, datagram: bytes) -> int:
        now = self._clock()
        self.pending[ack_id] = PendingAck(
            ack_id=ack_id,
            datagram=datagram,
            send_time=now,
            next_resend=now + self.config.resend_delay(0),
        )
        self._transmit(datagram)
        return ack_id

    def send_hello(self, username: str, version: int | None = None) -> int:
        """发送握手包，返回其 ack_id"""
        self._ensure_open()
        ack_id = self._allocate_ack_id()
        packet = Hello(
            ack_id=ack_id,
            username=username,
            version=self.config.protocol_version if version is None else version,
        )
        self.state = ConnectionState.CONNECTING
        self._hello_ack_id = ack_id
        logger.debug("Sending hello ack_id=%d to %s", ack_id, self.address)
        return self._send_tracked(ack_id, packet.to_bytes())

    def send_reliable(self, data: bytes) -> int:
        """发送可靠负载，返回其 ack_id"""
        self._ensure_open()
        ack_id = self._allocate_ack_id()
        logger.debug("Sending reliable ack_id=%d (%d bytes)", ack_id, len(data))
        return self._send_tracked(ack_id, Reliable(ack_id=ack_id, data=data).to_bytes())

    def send_unreliable(self, data: bytes) -> None:
        self._ensure_open()
        logger.debug("Sending unreliable (%d bytes)", len(data))
        self._transmit(Unreliable(data=data).to_bytes())

    def send_keep_alive(self) -> int:
        self._ensure_open()
        ack_id = self._allocate_ack_id()
        logger.debug("Sending keep-alive ack_id=%d", ack_id)
        return self._send_tracked(ack_id, KeepAlive(ack_id=ack_id).to_bytes())

    def send_disconnect(self) -> None:
        """通知对端并关闭连接"""
        if self.state == ConnectionState.DISCONNECTED:
            return
        self._transmit(Disconnect().to_bytes())
        self._close(CloseReason.LOCAL)

    def _acknowledge(self, ack_id: int) -> None:
        flags = self.history.ack_flags(ack_id)
        self._transmit(Acknowledge(ack_id=ack_id, ack_flags=flags).to_bytes())

    # ==================== 接收 ====================

    def datagram_received(self, data: bytes) -> bytes | None:
        """处理一个收到的数据报

        Returns:
            需要交给上层的负载；确认包、心跳、重复包等返回 None
        """
        if self.state == ConnectionState.DISCONNECTED:
            logger.debug("Ignoring datagram on closed connection %s", self.address)
            return None

        try:
            packet = decode_packet(data)
        except DecodeError as e:
            logger.warning("Dropping malformed datagram from %s: %s", self.address, e)
            return None

        self.last_receive_time = self._clock()

        if isinstance(packet, Unreliable):
            return packet.data

        if isinstance(packet, Reliable):
            is_new = self.history.add(packet.ack_id)
            self._acknowledge(packet.ack_id)
            if not is_new:
                logger.debug("Duplicate reliable ack_id=%d dropped", packet.ack_id)
                return None
            return packet.data

        if isinstance(packet, Hello):
            is_new = self.history.add(packet.ack_id)
            self._acknowledge(packet.ack_id)
            if is_new:
                self.remote_hello = packet
                logger.debug("Hello from %s: user=%s version=%d",
                             self.address, packet.username, packet.version)
                if self._hello_ack_id is None:
                    # 被动端收到握手即视为已连接
                    self._set_connected()
            return None

        if isinstance(packet, KeepAlive):
            self.history.add(packet.ack_id)
            self._acknowledge(packet.ack_id)
            return None

        if isinstance(packet, Acknowledge):
            self._handle_acknowledge(packet)
            return None

        if isinstance(packet, Disconnect):
            logger.info("Remote disconnect from %s", self.address)
            self._close(CloseReason.REMOTE)
            return None

        return None

    def _handle_acknowledge(self, packet: Acknowledge) -> None:
        for ack_id in packet.acked_ids():
            entry = self.pending.pop(ack_id, None)
            if entry is None:
                continue
            logger.debug("Ack received ack_id=%d after %d retries", ack_id, entry.retry_count)
            if ack_id == self._hello_ack_id:
                self._set_connected()

    # ==================== 定时任务 ====================

    def check_resends(self, now: float | None = None) -> None:
        """重传到期的待确认包；重传耗尽时以超时关闭连接"""
        if self.state == ConnectionState.DISCONNECTED:
            return
        if now is None:
            now = self._clock()
        for entry in sorted(self.pending.values(), key=lambda e: e.next_resend):
            if entry.next_resend > now:
                continue
            if entry.retry_count >= self.config.max_retries:
                self.close_error = ConnectionTimedOutError(
                    address=self.address,
                    ack_id=entry.ack_id,
                    retries=entry.retry_count,
                )
                logger.warning("%s", self.close_error)
                self._close(CloseReason.TIMED_OUT)
                return
            entry.retry_count += 1
            entry.next_resend = now + self.config.resend_delay(entry.retry_count)
            logger.debug("Resending ack_id=%d (retry %d)", entry.ack_id, entry.retry_count)
            self._transmit(entry.datagram)

    def keep_alive_due(self, now: float | None = None) -> bool:
        """已连接且空闲超过心跳间隔"""
        if self.state != ConnectionState.CONNECTED:
            return False
        if now is None:
            now = self._clock()
        return now - self.last_send_time >= self.config.keep_alive_interval

    def tick(self, now: float | None = None) -> None:
        """一次定时驱动：重传 + 心跳"""
        if now is None:
            now = self._clock()
        self.check_resends(now)
        if self.keep_alive_due(now):
            self.send_keep_alive()

# -*- coding: utf-8 -*-
"""
会话事件总线

分发器和客户端把解码后的结果作为只读事件发布出去，
客户端逻辑、CLI 和检查工具都只是观察者，不能借事件修改注册表或会话。
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """会话事件类型"""
    # 传输
    CONNECTED = auto()
    DISCONNECTED = auto()

    # 房间
    HOSTING_GAME = auto()
    JOINED_GAME = auto()
    PLAYER_JOINED = auto()
    PLAYER_LEFT = auto()
    GAME_STARTED = auto()
    GAME_ALTERED = auto()
    KICK_PLAYER = auto()

    # 服务器
    GAME_LIST = auto()
    SERVER_LIST = auto()
    CHANGE_SERVER = auto()

    # 网络对象
    OBJECT_SPAWNED = auto()
    OBJECT_DESTROYED = auto()
    SCENE_CHANGED = auto()
    CLIENT_READY = auto()
    CHAT_MESSAGE = auto()

    # 诊断
    DECODE_FAILED = auto()


@dataclass(frozen=True)
class GameEvent:
    """一条会话事件，data 中的字段随事件类型而定"""
    event_type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def game_id(self):
        return self.data.get('game_id')

    @property
    def player_id(self) -> int | None:
        return self.data.get('player_id')

    @property
    def net_id(self) -> int | None:
        return self.data.get('net_id')

    @property
    def message(self) -> str:
        return self.data.get('message', '')

    @property
    def reason(self):
        return self.data.get('reason')


EventHandler = Callable[[GameEvent], None]


@dataclass
class _Subscription:
    handler: EventHandler
    priority: int
    event_type: EventType | None    # None 表示监听全部事件


class EventBus:
    """
    事件总线

    监听全部事件的订阅者先于按类型订阅者执行；同一组内优先级高的先执行，
    优先级相同按订阅顺序。处理器抛出的异常只记日志，不会传给发布方。
    """

    def __init__(self, max_history: int = 100):
        self._subscriptions: list[_Subscription] = []
        self._history: deque[GameEvent] = deque(maxlen=max_history)

    def _add(self, sub: _Subscription) -> None:
        self._subscriptions.append(sub)
        # sort 是稳定的，同优先级保持订阅顺序
        self._subscriptions.sort(key=lambda s: (s.event_type is not None, -s.priority))

    def subscribe(self, event_type: EventType, handler: EventHandler,
                  priority: int = 0) -> None:
        self._add(_Subscription(handler, priority, event_type))

    def subscribe_all(self, handler: EventHandler, priority: int = 0) -> None:
        self._add(_Subscription(handler, priority, None))

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._subscriptions = [
            s for s in self._subscriptions
            if not (s.event_type is event_type and s.handler == handler)
        ]

    def unsubscribe_all(self, handler: EventHandler) -> None:
        """移除该处理器的全部订阅（包括按类型的）"""
        self._subscriptions = [s for s in self._subscriptions if s.handler != handler]

    def publish(self, event: GameEvent) -> GameEvent:
        self._history.append(event)
        for sub in list(self._subscriptions):
            if sub.event_type is not None and sub.event_type is not event.event_type:
                continue
            try:
                sub.handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type.name)
        return event

    def emit(self, event_type: EventType, **data) -> GameEvent:
        return self.publish(GameEvent(event_type, data))

    def clear(self) -> None:
        self._subscriptions.clear()

    def get_history(self, count: int = 10) -> list[GameEvent]:
        """最近 count 条事件，旧的在前"""
        if count <= 0:
            return []
        return list(self._history)[-count:]


class EventEmitter:
    """混入类：持有可选的事件总线，没有总线时 emit 什么也不做"""

    def __init__(self):
        self._event_bus: EventBus | None = None

    def set_event_bus(self, event_bus: EventBus | None) -> None:
        self._event_bus = event_bus

    def emit(self, event_type: EventType, **data) -> GameEvent | None:
        if self._event_bus is None:
            return None
        return self._event_bus.emit(event_type, **data)

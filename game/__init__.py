# -*- coding: utf-8 -*-
"""
应用层协议模块
包含消息定义、网络对象、对象注册表、消息分发器、会话状态、事件系统和会话客户端
"""

from .client import GameClient
from .dispatcher import MessageDispatcher
from .events import EventBus, EventEmitter, EventType, GameEvent
from .exceptions import GameClientError, SpawnError
from .models import ClientSettings, ScanSettings
from .netobjects import (
    ChatMessage, GameData, Lobby, NetObject, NetObjectType, PlayerControl,
    PlayerPhysics, PlayerTransform, VoteBanSystem, World, get_rpc_table, rpc_handler,
)
from .objects import (
    Address, GameId, GameListing, GameOptions, Languages, MainServer, MapFlags,
    MapId, PlayerData, ServerInfo, TaskInfo,
)
from .protocol import DisconnectReason, GameInfoTag, RootTag
from .registry import NetObjectRegistry, PrefabType
from .session import GameSession

__all__ = [
    # 数据结构
    'Address', 'GameId', 'GameListing', 'GameOptions', 'Languages', 'MainServer',
    'MapFlags', 'MapId', 'PlayerData', 'ServerInfo', 'TaskInfo',
    # 协议
    'RootTag', 'GameInfoTag', 'DisconnectReason',
    # 网络对象
    'NetObject', 'NetObjectType', 'World', 'Lobby', 'GameData', 'VoteBanSystem',
    'PlayerControl', 'PlayerPhysics', 'PlayerTransform', 'ChatMessage',
    'rpc_handler', 'get_rpc_table',
    # 注册表与分发
    'NetObjectRegistry', 'PrefabType', 'MessageDispatcher', 'GameSession',
    # 事件系统
    'EventBus', 'EventType', 'GameEvent', 'EventEmitter',
    # 客户端
    'GameClient', 'ClientSettings', 'ScanSettings',
    # 异常
    'SpawnError', 'GameClientError',
]

__version__ = '0.1.0'

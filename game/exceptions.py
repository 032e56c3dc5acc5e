"""游戏层异常模块
定义应用层 (出生、会话驱动) 的异常类型，基于 hazel 异常体系
"""

from hazel.exceptions import DecodeError, HazelError


class SpawnError(DecodeError):
    """出生失败异常

    当预制体不受支持、子对象数量不符或子对象初始化数据解码失败时抛出。
    出生是原子的：抛出此异常时没有任何子对象被注册。
    """

    def __init__(
        self,
        message: str | None = None,
        prefab_id: int | None = None,
        expected: int | None = None,
        actual: int | None = None,
    ):
        if message is None:
            message = "Spawn failed"
        super().__init__(message)
        if prefab_id is not None:
            self.details["prefab_id"] = prefab_id
        if expected is not None:
            self.details["expected"] = expected
        if actual is not None:
            self.details["actual"] = actual
        self.prefab_id = prefab_id
        self.expected = expected
        self.actual = actual


class GameClientError(HazelError):
    """会话客户端异常

    当客户端动作的前置条件不满足时抛出（例如尚未加入房间、自己的玩家对象尚未出生）
    """

    def __init__(self, message: str | None = None, action: str | None = None):
        if message is None:
            message = "Game client action not possible"
        details = {}
        if action:
            details["action"] = action
        super().__init__(message, details)
        self.action = action

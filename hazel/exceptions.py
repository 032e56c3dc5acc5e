"""Hazel 异常模块
定义编解码与连接层的各类异常，提供明确的错误类型和上下文信息
"""


class HazelError(Exception):
    """Hazel 异常基类

    所有协议栈相关的异常都应该继承此类，
    提供统一的异常处理接口。
    """

    def __init__(self, message: str, details: dict | None = None):
        """初始化异常

        Args:
            message: 错误消息
            details: 额外的错误详情（可选）
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ==================== 解码相关异常 ====================


class DecodeError(HazelError):
    """解码失败

    context 描述失败发生的位置（如 "GameInfo/RPC"），
    offset 为失败时读取器的字节偏移
    """

    def __init__(
        self,
        message: str | None = None,
        context: str | None = None,
        offset: int | None = None,
    ):
        if message is None:
            message = "Decode failure"
        details = {}
        if context:
            details["context"] = context
        if offset is not None:
            details["offset"] = offset
        super().__init__(message, details)
        self.context = context
        self.offset = offset

    def with_context(self, context: str) -> "DecodeError":
        """附加外层上下文，返回自身以便 raise"""
        if self.context:
            self.context = f"{context}/{self.context}"
        else:
            self.context = context
        self.details["context"] = self.context
        return self


class MalformedVarintError(DecodeError):
    """变长整数超过 5 字节或在长度上限处仍带续位"""

    def __init__(self, message: str | None = None, offset: int | None = None):
        super().__init__(message or "Malformed packed integer", offset=offset)


class TruncatedInputError(DecodeError):
    """剩余字节数不足"""

    def __init__(
        self,
        message: str | None = None,
        required: int = 0,
        available: int = 0,
        offset: int | None = None,
    ):
        super().__init__(message or "Truncated input", offset=offset)
        self.details["required"] = required
        self.details["available"] = available
        self.required = required
        self.available = available


class InvalidUtf8Error(DecodeError):
    """字符串不是合法的 UTF-8"""

    def __init__(self, message: str | None = None, offset: int | None = None):
        super().__init__(message or "Invalid UTF-8 string", offset=offset)


class UnknownPacketTypeError(DecodeError):
    """未知的 Hazel 包类型字节"""

    def __init__(self, packet_type: int):
        super().__init__(f"Unknown Hazel packet type: {packet_type:#04x}", offset=0)
        self.details["packet_type"] = packet_type
        self.packet_type = packet_type


class UnknownDisconnectReasonError(DecodeError):
    """断开原因不在已知枚举中"""

    def __init__(self, value: int, offset: int | None = None):
        super().__init__(f"Unknown disconnect reason: {value}", offset=offset)
        self.details["value"] = value
        self.value = value


# ==================== 连接相关异常 ====================


class HazelConnectionError(HazelError):
    """连接异常基类"""

    def __init__(self, message: str | None = None, address: tuple | None = None):
        details = {}
        if address is not None:
            details["address"] = address
        super().__init__(message or "Connection error", details)
        self.address = address


class ConnectionTimedOutError(HazelConnectionError):
    """重传次数耗尽，连接超时"""

    def __init__(
        self,
        message: str | None = None,
        address: tuple | None = None,
        ack_id: int | None = None,
        retries: int = 0,
    ):
        super().__init__(message or "Connection timed out", address)
        if ack_id is not None:
            self.details["ack_id"] = ack_id
        self.details["retries"] = retries
        self.ack_id = ack_id
        self.retries = retries


class NotConnectedError(HazelConnectionError):
    """连接已断开后仍尝试发送"""

    def __init__(self, message: str | None = None, address: tuple | None = None):
        super().__init__(message or "Connection is disconnected", address)


# ==================== 辅助函数 ====================


def raise_if_truncated(required: int, available: int, offset: int) -> None:
    """剩余字节不足时抛出 TruncatedInputError"""
    if available < required:
        raise TruncatedInputError(
            required=required, available=available, offset=offset
        )

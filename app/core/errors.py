"""
app.core.errors
~~~~~~~~~~~~~~~

业务异常体系。

所有可恢复的、面向用户的错误都继承 ``LiveError``，携带稳定的错误码
``code`` 与对应的 HTTP 状态码 ``status_code``：

- HTTP 接口由 ``app.main`` 的全局异常处理器转换为 ``ApiResponse.fail()``；
- WebSocket 通道由 ``LiveHub`` 转换为发给发送者的 ``error`` 事件。
"""
from __future__ import annotations

from typing import ClassVar


class LiveError(Exception):
    """业务异常基类。"""

    code: ClassVar[str] = "LiveError"
    status_code: ClassVar[int] = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class CapabilityDisabled(LiveError):
    """功能开关禁止了该操作（例如关闭了点歌或投票）。"""

    code = "CapabilityDisabled"
    status_code = 403


class QueueFull(LiveError):
    code = "QueueFull"
    status_code = 400


class QueueEmpty(LiveError):
    code = "QueueEmpty"
    status_code = 400


class NotFound(LiveError):
    """未知的房间、频道或曲目下标。"""

    code = "NotFound"
    status_code = 404


class Unauthorized(LiveError):
    """缺少身份信息，或非所有者尝试执行受限操作。"""

    code = "Unauthorized"
    status_code = 401


class InvalidMessage(LiveError):
    """客户端发来的实时消息无法解析或字段不合法。"""

    code = "InvalidMessage"
    status_code = 400


class RateLimited(LiveError):
    code = "RateLimited"
    status_code = 429


class StorageUnavailable(LiveError):
    """存储层在多次重试后仍不可用。"""

    code = "StorageUnavailable"
    status_code = 503

"""
app.services.signaling
~~~~~~~~~~~~~~~~~~~~~~

WebRTC 信令中继：在两个连接之间转发 offer / answer / ice-candidate。

服务端不解析 payload，也不参与媒体传输。目标连接不在线时消息被静默丢弃，
不重试，也不通知发送者。
"""
from __future__ import annotations

from typing import Any

from app.core.logging import get_logger
from app.schemas.realtime import ServerEvent
from app.services.connection import ConnectionRegistry

logger = get_logger(__name__)


class SignalingRelay:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def forward(self, kind: str, sender_id: str, target_id: str, payload: Any) -> bool:
        """把信令投递到目标连接的发件箱。

        Args:
            kind: 出站事件类型，``offer`` / ``answer`` / ``ice-candidate``。
            sender_id: 发送者连接 ID，作为 ``from_id`` 告知接收方。
            target_id: 目标连接 ID。
            payload: 不透明的信令内容。

        Returns:
            是否已投递。目标不存在时返回 ``False``。
        """
        target = self.registry.get(target_id)
        if target is None:
            logger.debug("信令目标不在线，丢弃 | kind=%s | from=%s | to=%s", kind, sender_id, target_id)
            return False
        return target.deliver(ServerEvent(type=kind, data={"from_id": sender_id, "payload": payload}))

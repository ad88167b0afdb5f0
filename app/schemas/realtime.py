"""
app.schemas.realtime
~~~~~~~~~~~~~~~~~~~~

WebSocket 实时通道的消息模型。

客户端与服务端之间的每一帧都是 JSON 文本 ``{"type": ..., "data": {...}}``。
入站消息先由 ``ClientMessage`` 校验外层结构，再由 ``LiveHub`` 按 ``type``
选择对应的 ``*Data`` 模型校验 ``data``。
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

ClientMessageType = Literal[
    "join-room",
    "leave-room",
    "send-offer",
    "send-answer",
    "send-ice-candidate",
    "send-chat",
    "send-reaction",
    "request-viewer-count",
    "channel-go-live",
    "channel-stop-live",
    "join-channel",
    "leave-channel",
    "send-channel-message",
    "ping",
]

# 入站信令类型 → 出站事件类型
SIGNAL_EVENTS: dict[str, str] = {
    "send-offer": "offer",
    "send-answer": "answer",
    "send-ice-candidate": "ice-candidate",
}


class ClientMessage(BaseModel):
    """客户端发来的一帧消息。"""

    type: ClientMessageType
    data: dict[str, Any] = Field(default_factory=dict)


class JoinRoomData(BaseModel):
    room_id: str = Field(..., min_length=1, max_length=128)
    display_name: str | None = Field(default=None, min_length=1, max_length=64)


class RoomRef(BaseModel):
    room_id: str = Field(..., min_length=1, max_length=128)


class ChannelRef(BaseModel):
    channel_id: str = Field(..., min_length=1, max_length=128)


class SignalData(BaseModel):
    """WebRTC 信令。``payload`` 对服务端不透明，原样转发。"""

    target_id: str = Field(..., min_length=1)
    payload: Any = None


class ChatData(RoomRef):
    text: str = Field(..., min_length=1)


class ChannelChatData(ChannelRef):
    text: str = Field(..., min_length=1)


class ReactionData(RoomRef):
    emoji: str = Field(..., min_length=1, max_length=16)
    display_name: str | None = Field(default=None, max_length=64)


class ServerEvent(BaseModel):
    """服务端推送给客户端的一帧事件。"""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def member_entry(connection_id: str, display_name: str) -> dict[str, str]:
    return {"connection_id": connection_id, "display_name": display_name}

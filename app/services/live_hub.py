"""
app.services.live_hub
~~~~~~~~~~~~~~~~~~~~~

实时中枢：持有连接注册表、房间成员关系、频道订阅、信令中继与广播总线，
负责解析客户端消息并分派到对应的处理函数。

在 FastAPI lifespan 中创建唯一实例并挂载于 ``app.state.live_hub``。

除 ``handle()`` / ``publish_dj_state()`` 外所有方法都是同步的：
一次成员变更及其引发的全部通知在同一次调用中完成入队，中间不会让出事件循环。
"""
from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from app.core.errors import InvalidMessage, LiveError, NotFound
from app.core.logging import get_logger
from app.core.settings import settings
from app.schemas.dj import DJSession
from app.schemas.realtime import (
    SIGNAL_EVENTS,
    ChannelChatData,
    ChannelRef,
    ChatData,
    ClientMessage,
    JoinRoomData,
    ReactionData,
    RoomRef,
    ServerEvent,
    SignalData,
    member_entry,
)
from app.schemas.rooms import MemberData, RoomInfoData
from app.services.activity import ActivityRecorder
from app.services.connection import Connection, ConnectionRegistry
from app.services.presence import ChannelSubscriptions, PresenceStore
from app.services.room_broadcaster import RoomBroadcaster
from app.services.signaling import SignalingRelay

logger = get_logger(__name__)

Handler = Callable[[Connection, ClientMessage], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        field = ".".join(str(p) for p in errors[0]["loc"]) if errors and errors[0]["loc"] else "data"
        raise InvalidMessage(f"字段不合法: {field}") from e


class LiveHub:
    """实时中枢。

    Attributes:
        presence: 房间成员关系存储。
        channels: 频道订阅关系，与房间成员关系相互独立。
        registry: 在线连接注册表。
        relay: WebRTC 信令中继。
        bus: 房间广播总线。
        recorder: 平台动态记录器。
    """

    def __init__(
        self,
        recorder: ActivityRecorder,
        presence: PresenceStore | None = None,
        registry: ConnectionRegistry | None = None,
        *,
        outbox_size: int | None = None,
        chat_max_length: int | None = None,
    ) -> None:
        self.presence = presence if presence is not None else PresenceStore()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.relay = SignalingRelay(self.registry)
        self.channels = ChannelSubscriptions()
        self.bus = RoomBroadcaster(self.presence, self.registry, self.channels)
        self.recorder = recorder
        self.outbox_size = outbox_size or settings.WS_OUTBOX_SIZE
        self.chat_max_length = chat_max_length or settings.CHAT_MAX_LENGTH
        # channel_id → 开播时间（毫秒）
        self._live_channels: dict[str, int] = {}

        self._handlers: dict[str, Handler] = {
            "join-room": self._join_room,
            "leave-room": self._leave_room,
            "send-offer": self._forward_signal,
            "send-answer": self._forward_signal,
            "send-ice-candidate": self._forward_signal,
            "send-chat": self._send_chat,
            "send-reaction": self._send_reaction,
            "request-viewer-count": self._request_viewer_count,
            "channel-go-live": self._go_live,
            "channel-stop-live": self._stop_live,
            "join-channel": self._join_channel,
            "leave-channel": self._leave_channel,
            "send-channel-message": self._send_channel_message,
            "ping": self._ping,
        }

    # ── 连接生命周期 ──────────────────────────────────────────

    def connect(self, display_name: str, user_id: str | None = None) -> Connection:
        """登记新连接，并向其投递 ``connected`` 事件。未提供名称时使用 ``guest-xxxxxx``。"""
        conn = Connection(display_name, user_id, max_pending=self.outbox_size)
        if not display_name:
            conn.display_name = f"guest-{conn.connection_id[:6]}"
        self.registry.register(conn)
        conn.deliver(ServerEvent(
            type="connected",
            data={"connection_id": conn.connection_id, "display_name": conn.display_name},
        ))
        logger.info(
            "连接建立 | conn=%s | name=%s | 在线: %d",
            conn.connection_id, conn.display_name, self.registry.online_count,
        )
        return conn

    def disconnect(self, conn: Connection) -> None:
        """连接断开：离开所在房间并通知剩余成员，退订全部频道，注销连接并关闭发件箱。"""
        self._leave_current(conn)
        self.channels.drop(conn.connection_id)
        self.registry.unregister(conn.connection_id)
        conn.close()
        logger.info(
            "连接断开 | conn=%s | 在线: %d", conn.connection_id, self.registry.online_count,
        )

    # ── 消息分派 ──────────────────────────────────────────────

    async def handle(self, conn: Connection, raw: str | dict[str, Any]) -> None:
        """处理一帧客户端消息。

        业务错误与格式错误都转换为发给发送者的 ``error`` 事件，连接保持打开。

        Args:
            conn: 发送者连接。
            raw: JSON 文本或已解析的字典。
        """
        try:
            if isinstance(raw, str):
                try:
                    raw = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise InvalidMessage("消息不是合法的 JSON") from e
            if not isinstance(raw, dict):
                raise InvalidMessage("消息必须是 JSON 对象")
            message: ClientMessage = _parse(ClientMessage, raw)
            self._handlers[message.type](conn, message)
        except LiveError as e:
            logger.info("消息处理失败 | conn=%s | code=%s | msg=%s", conn.connection_id, e.code, e.message)
            self.send_error(conn, e)

    def send_error(self, conn: Connection, error: LiveError) -> None:
        conn.deliver(ServerEvent(type="error", data=error.to_dict()))

    # ── 房间 ──────────────────────────────────────────────────

    def _join_room(self, conn: Connection, message: ClientMessage) -> None:
        req: JoinRoomData = _parse(JoinRoomData, message.data)
        name = req.display_name or conn.display_name
        current = self.presence.room_of(conn.connection_id)

        if current == req.room_id:
            conn.display_name = name
            self.presence.join(conn.connection_id, req.room_id, name)
            self._send_member_list(conn, req.room_id)
            return

        # 先离开原房间，原房间成员会收到 member-left 与新的人数
        if current is not None:
            self._leave_current(conn)

        conn.display_name = name
        self.presence.join(conn.connection_id, req.room_id, conn.display_name)
        self._send_member_list(conn, req.room_id)
        self.bus.publish(
            req.room_id,
            ServerEvent(type="member-joined", data=member_entry(conn.connection_id, conn.display_name)),
            exclude={conn.connection_id},
        )
        self.bus.publish_viewer_count(req.room_id)
        logger.info(
            "加入房间 | room=%s | conn=%s | 人数: %d",
            req.room_id, conn.connection_id, self.presence.count_of(req.room_id),
        )
        self.recorder.fire("room_joined", conn.display_name, {"room_id": req.room_id})

    def _send_member_list(self, conn: Connection, room_id: str) -> None:
        members = [
            member_entry(cid, name)
            for cid, name in self.presence.members_of(room_id)
            if cid != conn.connection_id
        ]
        conn.deliver(ServerEvent(type="member-list", data={"room_id": room_id, "members": members}))

    def _leave_room(self, conn: Connection, message: ClientMessage) -> None:
        self._leave_current(conn)

    def _leave_current(self, conn: Connection) -> str | None:
        room_id = self.presence.leave(conn.connection_id)
        if room_id is None:
            return None
        if room_id in self.presence:
            self.bus.publish(
                room_id,
                ServerEvent(type="member-left", data=member_entry(conn.connection_id, conn.display_name)),
            )
            self.bus.publish_viewer_count(room_id)
        logger.info(
            "离开房间 | room=%s | conn=%s | 人数: %d",
            room_id, conn.connection_id, self.presence.count_of(room_id),
        )
        return room_id

    def _require_member(self, conn: Connection, room_id: str) -> None:
        if self.presence.room_of(conn.connection_id) != room_id:
            raise NotFound(f"未加入房间: {room_id}")

    # ── 信令 ──────────────────────────────────────────────────

    def _forward_signal(self, conn: Connection, message: ClientMessage) -> None:
        kind = SIGNAL_EVENTS[message.type]
        req: SignalData = _parse(SignalData, message.data)
        self.relay.forward(kind, conn.connection_id, req.target_id, req.payload)

    # ── 聊天与互动 ────────────────────────────────────────────

    def _check_length(self, text: str) -> None:
        if len(text) > self.chat_max_length:
            raise InvalidMessage(f"消息过长，最多 {self.chat_max_length} 个字符")

    def _send_chat(self, conn: Connection, message: ClientMessage) -> None:
        req: ChatData = _parse(ChatData, message.data)
        self._check_length(req.text)
        self._require_member(conn, req.room_id)
        self.bus.publish(req.room_id, ServerEvent(type="chat", data={
            "room_id": req.room_id,
            "display_name": conn.display_name,
            "text": req.text,
            "timestamp": _now_ms(),
        }))
        self.recorder.fire(
            "message_sent", conn.display_name, {"room_id": req.room_id, "text": req.text},
        )

    def _send_reaction(self, conn: Connection, message: ClientMessage) -> None:
        req: ReactionData = _parse(ReactionData, message.data)
        self._require_member(conn, req.room_id)
        self.bus.publish(req.room_id, ServerEvent(type="reaction", data={
            "room_id": req.room_id,
            "emoji": req.emoji,
            "display_name": req.display_name or conn.display_name,
        }))

    def _request_viewer_count(self, conn: Connection, message: ClientMessage) -> None:
        req: RoomRef = _parse(RoomRef, message.data)
        self.bus.publish_viewer_count(req.room_id)
        # 请求者不在该房间时单独回复
        if self.presence.room_of(conn.connection_id) != req.room_id:
            conn.deliver(self.bus.viewer_count_event(req.room_id))

    def _ping(self, conn: Connection, message: ClientMessage) -> None:
        conn.deliver(ServerEvent(type="pong", data={"timestamp": _now_ms()}))

    # ── 频道开播状态 ──────────────────────────────────────────

    def _go_live(self, conn: Connection, message: ClientMessage) -> None:
        req: ChannelRef = _parse(ChannelRef, message.data)
        if self.is_live(req.channel_id):
            logger.debug("频道已在直播中，忽略 | channel=%s", req.channel_id)
            return
        self._live_channels[req.channel_id] = _now_ms()
        self._publish_channel_status(req.channel_id, True)
        logger.info("频道开播 | channel=%s | by=%s", req.channel_id, conn.connection_id)
        self.recorder.fire("stream_started", conn.display_name, {"channel_id": req.channel_id})

    def _stop_live(self, conn: Connection, message: ClientMessage) -> None:
        req: ChannelRef = _parse(ChannelRef, message.data)
        if self._live_channels.pop(req.channel_id, None) is None:
            logger.debug("频道未在直播，忽略 | channel=%s", req.channel_id)
            return
        self._publish_channel_status(req.channel_id, False)
        logger.info("频道下播 | channel=%s | by=%s", req.channel_id, conn.connection_id)
        self.recorder.fire("stream_ended", conn.display_name, {"channel_id": req.channel_id})

    def _publish_channel_status(self, channel_id: str, is_live: bool) -> None:
        self.bus.broadcast_all(ServerEvent(
            type="channel-status-change",
            data={"channel_id": channel_id, "is_live": is_live},
        ))

    # ── 频道聊天 ──────────────────────────────────────────────

    def _join_channel(self, conn: Connection, message: ClientMessage) -> None:
        req: ChannelRef = _parse(ChannelRef, message.data)
        if self.channels.subscribe(conn.connection_id, req.channel_id):
            logger.info("订阅频道 | channel=%s | conn=%s", req.channel_id, conn.connection_id)

    def _leave_channel(self, conn: Connection, message: ClientMessage) -> None:
        req: ChannelRef = _parse(ChannelRef, message.data)
        if self.channels.unsubscribe(conn.connection_id, req.channel_id):
            logger.info("退订频道 | channel=%s | conn=%s", req.channel_id, conn.connection_id)

    def _send_channel_message(self, conn: Connection, message: ClientMessage) -> None:
        req: ChannelChatData = _parse(ChannelChatData, message.data)
        self._check_length(req.text)
        if not self.channels.is_subscribed(conn.connection_id, req.channel_id):
            raise NotFound(f"未订阅频道: {req.channel_id}")
        self.bus.publish_channel(req.channel_id, ServerEvent(type="channel-message", data={
            "channel_id": req.channel_id,
            "display_name": conn.display_name,
            "text": req.text,
            "timestamp": _now_ms(),
        }))

    # ── DJ 状态推送 ───────────────────────────────────────────

    async def publish_dj_state(self, session: DJSession) -> None:
        """把 DJ 会话快照推送给与频道同名房间内的所有成员。"""
        delivered = self.bus.publish(session.channel_id, ServerEvent(
            type="dj-state",
            data={"channel_id": session.channel_id, "session": session.model_dump(mode="json")},
        ))
        logger.debug(
            "DJ 状态已推送 | channel=%s | revision=%d | delivered=%d",
            session.channel_id, session.revision, delivered,
        )

    # ── 查询 ──────────────────────────────────────────────────

    def room_info(self, room_id: str) -> RoomInfoData:
        return RoomInfoData(
            room_id=room_id,
            viewer_count=self.presence.count_of(room_id),
            members=[
                MemberData(connection_id=cid, display_name=name)
                for cid, name in self.presence.members_of(room_id)
            ],
        )

    def list_rooms(self) -> list[RoomInfoData]:
        return [self.room_info(room_id) for room_id in self.presence.rooms()]

    def live_channels(self) -> list[str]:
        return list(self._live_channels)

    def is_live(self, channel_id: str) -> bool:
        return channel_id in self._live_channels

    def stats(self) -> dict[str, int]:
        return {
            "online": self.registry.online_count,
            "rooms": len(self.presence.rooms()),
            "live_channels": len(self._live_channels),
        }

"""
app.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间广播总线：把事件扇出到某个房间的所有成员，或全平台所有连接。

广播在一次同步调用中完成对所有接收者发件箱的入队，
之后由各连接自己的写协程异步写出，慢连接不会拖慢其他成员。
"""
from __future__ import annotations

from collections.abc import Container, Iterable

from app.core.logging import get_logger
from app.schemas.realtime import ServerEvent
from app.services.connection import ConnectionRegistry
from app.services.presence import ChannelSubscriptions, PresenceStore

logger = get_logger(__name__)


class RoomBroadcaster:
    """房间广播器。

    成员关系以 ``PresenceStore`` 与 ``ChannelSubscriptions`` 为准，
    投递目标在 ``ConnectionRegistry`` 中查找。

    Attributes:
        presence: 房间成员关系存储。
        registry: 在线连接注册表。
        channels: 频道订阅关系。
    """

    def __init__(
        self,
        presence: PresenceStore,
        registry: ConnectionRegistry,
        channels: ChannelSubscriptions | None = None,
    ) -> None:
        self.presence = presence
        self.registry = registry
        self.channels = channels if channels is not None else ChannelSubscriptions()

    def publish(
        self,
        room_id: str,
        event: ServerEvent,
        exclude: Container[str] = (),
    ) -> int:
        """向房间内所有成员投递事件。

        Args:
            room_id: 房间 ID。
            event: 待投递事件。
            exclude: 不接收本事件的连接 ID。

        Returns:
            成功投递的连接数。
        """
        members = (cid for cid, _ in self.presence.members_of(room_id))
        return self.deliver_to(members, event, exclude)

    def publish_channel(self, channel_id: str, event: ServerEvent) -> int:
        """向频道的所有订阅者投递事件，返回成功投递数。"""
        return self.deliver_to(self.channels.subscribers_of(channel_id), event)

    def deliver_to(
        self,
        connection_ids: Iterable[str],
        event: ServerEvent,
        exclude: Container[str] = (),
    ) -> int:
        delivered = 0
        for connection_id in connection_ids:
            if connection_id in exclude:
                continue
            conn = self.registry.get(connection_id)
            if conn is None:
                logger.warning("接收者不在连接注册表中 | type=%s | conn=%s", event.type, connection_id)
                continue
            if conn.deliver(event):
                delivered += 1
        return delivered

    def viewer_count_event(self, room_id: str) -> ServerEvent:
        return ServerEvent(
            type="viewer-count",
            data={"room_id": room_id, "count": self.presence.count_of(room_id)},
        )

    def publish_viewer_count(self, room_id: str) -> int:
        """重新计算房间人数并推送给房间内所有成员。"""
        return self.publish(room_id, self.viewer_count_event(room_id))

    def broadcast_all(self, event: ServerEvent) -> int:
        """全平台广播，不区分房间。"""
        delivered = self.registry.broadcast_all(event)
        logger.debug("全平台广播 | type=%s | delivered=%d", event.type, delivered)
        return delivered
"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

房间成员关系存储。

维护两张互为反向的映射：``连接 → 房间`` 与 ``房间 → 有序成员表``。
所有方法都是同步的，调用期间不会让出事件循环，两张表始终保持一致：
一个房间的成员集合恰好等于所有记录在该房间的连接。

房间在第一个成员加入时创建，最后一个成员离开时删除。
"""
from __future__ import annotations

from app.core.logging import get_logger

logger = get_logger(__name__)


class PresenceStore:
    """进程内的房间成员关系存储。"""

    def __init__(self) -> None:
        # dict 保持插入顺序，即成员加入顺序
        self._members: dict[str, dict[str, str]] = {}
        self._room_of: dict[str, str] = {}

    def join(self, connection_id: str, room_id: str, display_name: str) -> str | None:
        """登记成员关系。

        连接若已在其他房间，先从原房间移除（原房间为空则删除）。
        重复加入同一房间只刷新展示名称，成员顺序不变。

        Args:
            connection_id: 连接 ID。
            room_id: 目标房间 ID。
            display_name: 展示名称。

        Returns:
            加入前所在的房间 ID，之前不在任何房间时为 ``None``。
        """
        previous = self._room_of.get(connection_id)
        if previous is not None and previous != room_id:
            self._remove(connection_id, previous)

        members = self._members.get(room_id)
        if members is None:
            members = self._members[room_id] = {}
            logger.debug("房间已创建 | room=%s", room_id)
        members[connection_id] = display_name
        self._room_of[connection_id] = room_id
        return previous

    def leave(self, connection_id: str) -> str | None:
        """移除连接的成员关系，返回离开的房间 ID；不在任何房间时返回 ``None``。"""
        room_id = self._room_of.get(connection_id)
        if room_id is None:
            return None
        self._remove(connection_id, room_id)
        return room_id

    def _remove(self, connection_id: str, room_id: str) -> None:
        self._room_of.pop(connection_id, None)
        members = self._members.get(room_id)
        if members is None:
            return
        members.pop(connection_id, None)
        if not members:
            del self._members[room_id]
            logger.debug("房间已清空并删除 | room=%s", room_id)

    def members_of(self, room_id: str) -> list[tuple[str, str]]:
        """房间成员快照 ``[(connection_id, display_name), ...]``，按加入顺序。"""
        return list(self._members.get(room_id, {}).items())

    def count_of(self, room_id: str) -> int:
        return len(self._members.get(room_id, ()))

    def room_of(self, connection_id: str) -> str | None:
        return self._room_of.get(connection_id)

    def display_name_of(self, connection_id: str) -> str | None:
        room_id = self._room_of.get(connection_id)
        if room_id is None:
            return None
        return self._members[room_id].get(connection_id)

    def rooms(self) -> list[str]:
        return list(self._members)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._members


class ChannelSubscriptions:
    """频道订阅关系，与房间成员关系相互独立。

    一个连接同一时刻只在一个房间，但可以同时订阅任意多个频道。
    频道在第一个订阅者加入时创建，最后一个订阅者离开时删除。
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[str, None]] = {}
        self._channels_of: dict[str, dict[str, None]] = {}

    def subscribe(self, connection_id: str, channel_id: str) -> bool:
        """订阅频道，返回是否为新订阅（重复订阅不改变顺序）。"""
        subscribers = self._subscribers.setdefault(channel_id, {})
        if connection_id in subscribers:
            return False
        subscribers[connection_id] = None
        self._channels_of.setdefault(connection_id, {})[channel_id] = None
        return True

    def unsubscribe(self, connection_id: str, channel_id: str) -> bool:
        channels = self._channels_of.get(connection_id)
        if channels is None or channel_id not in channels:
            return False
        del channels[channel_id]
        if not channels:
            del self._channels_of[connection_id]
        subscribers = self._subscribers[channel_id]
        del subscribers[connection_id]
        if not subscribers:
            del self._subscribers[channel_id]
        return True

    def drop(self, connection_id: str) -> list[str]:
        """移除连接的全部订阅，返回原先订阅的频道。"""
        channels = list(self._channels_of.get(connection_id, ()))
        for channel_id in channels:
            self.unsubscribe(connection_id, channel_id)
        return channels

    def subscribers_of(self, channel_id: str) -> list[str]:
        """订阅者快照，按订阅顺序。"""
        return list(self._subscribers.get(channel_id, ()))

    def channels_of(self, connection_id: str) -> list[str]:
        return list(self._channels_of.get(connection_id, ()))

    def is_subscribed(self, connection_id: str, channel_id: str) -> bool:
        return channel_id in self._channels_of.get(connection_id, ())

"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

实时连接与连接注册表。

每个 WebSocket 连接对应一个 ``Connection``，持有一个有界 FIFO 发件箱。
业务层投递消息只做 ``put_nowait``，从不 await；由该连接专属的写协程
``pump()`` 把发件箱中的消息依次写入 socket。

因此，一次广播在同一个同步调用里完成对所有成员的入队，
房间内的消息顺序、同一对连接之间的信令顺序都由发件箱的 FIFO 保证。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Iterator
from typing import Any

from app.core.logging import get_logger
from app.schemas.realtime import ServerEvent

logger = get_logger(__name__)

SendFunc = Callable[[dict[str, Any]], Awaitable[None]]


def new_connection_id() -> str:
    return uuid.uuid4().hex[:12]


class Connection:
    """一个客户端的实时连接。

    Attributes:
        connection_id: 服务端分配的连接 ID。
        display_name: 当前展示名称（加入房间时可更新）。
        user_id: 身份层提供的用户 ID，匿名连接为 ``None``。
        closed: 是否已关闭，关闭后不再接收投递。
        dropped: 因发件箱已满而丢弃的消息数。
    """

    def __init__(
        self,
        display_name: str,
        user_id: str | None = None,
        *,
        connection_id: str | None = None,
        max_pending: int = 256,
    ) -> None:
        self.connection_id = connection_id or new_connection_id()
        self.display_name = display_name
        self.user_id = user_id
        self.closed = False
        self.dropped = 0
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=max_pending)

    def deliver(self, event: ServerEvent) -> bool:
        """把事件放入发件箱（非阻塞）。

        Returns:
            是否成功入队。连接已关闭或发件箱已满时返回 ``False``。
        """
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(event.to_wire())
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "发件箱已满，丢弃消息 | conn=%s | type=%s | dropped=%d",
                self.connection_id, event.type, self.dropped,
            )
            return False
        return True

    def drain_pending(self) -> list[dict[str, Any]]:
        """取出发件箱中所有尚未写出的消息（不含结束标记）。"""
        items: list[dict[str, Any]] = []
        while not self._outbox.empty():
            item = self._outbox.get_nowait()
            if item is not None:
                items.append(item)
        return items

    async def pump(self, send: SendFunc) -> None:
        """写协程：按 FIFO 顺序把发件箱中的消息写入 socket，遇到结束标记退出。"""
        while True:
            message = await self._outbox.get()
            if message is None:
                break
            try:
                await send(message)
            except Exception as e:
                # 对端已断开，后续消息无处可写
                logger.info("连接写出失败，停止发送 | conn=%s | err=%s", self.connection_id, e)
                self.closed = True
                break

    def close(self) -> None:
        """关闭连接：拒绝后续投递，并通知写协程在写完已入队消息后退出。"""
        if self.closed:
            return
        self.closed = True
        if self._outbox.full():
            self._outbox.get_nowait()
            self.dropped += 1
        self._outbox.put_nowait(None)


class ConnectionRegistry:
    """当前所有在线连接，按连接 ID 索引。"""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def register(self, conn: Connection) -> None:
        self._connections[conn.connection_id] = conn

    def unregister(self, connection_id: str) -> Connection | None:
        return self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)

    def broadcast_all(self, event: ServerEvent) -> int:
        """向全平台所有在线连接投递事件，返回成功投递数。"""
        return sum(1 for conn in self if conn.deliver(event))

    @property
    def online_count(self) -> int:
        return len(self._connections)

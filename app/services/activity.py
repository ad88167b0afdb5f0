"""
app.services.activity
~~~~~~~~~~~~~~~~~~~~~

平台动态记录。

``ActivityLogger`` 是外部协作者接口（生产环境由 ``app.db.activity_repository``
写入 MongoDB）。实时路径上不直接 await 它，而是通过 ``ActivityRecorder``
以后台任务的方式尽力记录：失败只打印警告，不影响广播。
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from app.core.logging import get_logger

logger = get_logger(__name__)


class ActivityLogger(Protocol):
    async def record(self, event_type: str, actor_name: str, details: dict[str, Any]) -> None: ...


class NullActivityLogger:
    """不做任何记录的实现，用于关闭动态记录或测试。"""

    async def record(self, event_type: str, actor_name: str, details: dict[str, Any]) -> None:
        return None


class ActivityRecorder:
    """以后台任务方式调用 ``ActivityLogger``。

    持有所有未完成任务的引用，防止任务被垃圾回收；
    关闭时可通过 ``drain()`` 等待它们完成。
    """

    def __init__(self, sink: ActivityLogger) -> None:
        self.sink = sink
        self._tasks: set[asyncio.Task[None]] = set()

    def fire(self, event_type: str, actor_name: str, details: dict[str, Any] | None = None) -> None:
        """提交一条动态记录，立即返回。必须在事件循环中调用。"""
        task = asyncio.create_task(self._record(event_type, actor_name, details or {}))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _record(self, event_type: str, actor_name: str, details: dict[str, Any]) -> None:
        try:
            await self.sink.record(event_type, actor_name, details)
        except Exception as e:
            logger.warning("动态记录失败 | type=%s | actor=%s | err=%s", event_type, actor_name, e)

    async def drain(self) -> None:
        """等待所有尚未完成的记录任务。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

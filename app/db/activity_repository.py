"""
app.db.activity_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~

平台动态持久化仓库：封装 MongoDB ``activities`` 集合的写入。

实现 ``app.services.activity.ActivityLogger`` 接口。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, TypedDict

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.logging import get_logger

logger = get_logger(__name__)

_COLLECTION_NAME = "activities"


class ActivityDoc(TypedDict):
    """代表 MongoDB 中 activities 集合的单条记录"""
    type: str
    username: str
    details: dict[str, Any]
    timestamp: datetime


class ActivityRepository:
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("type", 1), ("timestamp", -1)],
            name="idx_type_time",
        )
        self._indexes_created = True
        logger.debug("activities 索引已就绪")

    async def record(self, event_type: str, actor_name: str, details: dict[str, Any]) -> None:
        """写入一条动态记录。

        Args:
            event_type: 动态类型，如 ``room_joined``、``stream_started``。
            actor_name: 触发者展示名称。
            details: 附加信息。
        """
        await self._ensure_indexes()
        doc: ActivityDoc = {
            "type": event_type,
            "username": actor_name,
            "details": details,
            "timestamp": datetime.now(timezone.utc),
        }
        await self._collection.insert_one(doc)

"""
app.db.dj_repository
~~~~~~~~~~~~~~~~~~~~

DJ 会话持久化仓库：封装 MongoDB ``stream_dj_sessions`` 集合的读写。

每个频道一个文档，以 ``channel_id`` 唯一索引；每次变更整体覆盖保存。
网络抖动等瞬时故障（``ConnectionFailure`` 家族）按指数退避重试，
重试耗尽后抛出 ``StorageUnavailable``。

另提供 ``InMemoryDJSessionRepository``，用于本地开发与测试。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.core.errors import StorageUnavailable
from app.core.logging import get_logger
from app.schemas.dj import DJSession

logger = get_logger(__name__)

# 集合名称
_COLLECTION_NAME = "stream_dj_sessions"

R = TypeVar("R")


class DJSessionRepository(Protocol):
    async def load(self, channel_id: str) -> DJSession | None: ...

    async def save(self, session: DJSession) -> None: ...


class MongoDJSessionRepository:
    """基于 MongoDB 的 DJ 会话仓库。

    Attributes:
        db: MongoDB 数据库实例。
        attempts: 单次操作最多尝试次数（含首次）。
        wait_initial: 首次重试前的等待秒数。
        wait_max: 重试等待上限（秒）。
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        *,
        attempts: int = 3,
        wait_initial: float = 0.2,
        wait_max: float = 2.0,
    ) -> None:
        self.db = db
        self.attempts = attempts
        self.wait_initial = wait_initial
        self.wait_max = wait_max
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._collection.create_index("channel_id", unique=True, name="uniq_channel")
        self._indexes_created = True
        logger.debug("stream_dj_sessions 索引已就绪")

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "MongoDB 暂时不可用，准备重试 | attempt=%d/%d | err=%s",
            retry_state.attempt_number, self.attempts, exc,
        )

    async def _with_retry(self, op: str, fn: Callable[[], Awaitable[R]]) -> R:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential_jitter(
                initial=self.wait_initial, max=self.wait_max, jitter=self.wait_initial,
            ),
            retry=retry_if_exception_type(ConnectionFailure),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await fn()
        except ConnectionFailure as e:
            logger.error("MongoDB 重试耗尽 | op=%s | err=%s", op, e)
            raise StorageUnavailable("存储服务暂时不可用，请稍后重试") from e
        raise AssertionError("unreachable")

    async def load(self, channel_id: str) -> DJSession | None:
        """读取频道的 DJ 会话，不存在时返回 ``None``。"""
        async def _load() -> dict | None:
            await self._ensure_indexes()
            return await self._collection.find_one({"channel_id": channel_id}, {"_id": 0})

        doc = await self._with_retry("load", _load)
        return DJSession.model_validate(doc) if doc is not None else None

    async def save(self, session: DJSession) -> None:
        """整体覆盖保存会话快照（不存在则插入）。"""
        doc = session.to_document()

        async def _save() -> None:
            await self._ensure_indexes()
            await self._collection.replace_one(
                {"channel_id": session.channel_id}, doc, upsert=True,
            )

        await self._with_retry("save", _save)


class InMemoryDJSessionRepository:
    """进程内实现。读写都做深拷贝，调用方拿到的快照互不影响。"""

    def __init__(self) -> None:
        self._sessions: dict[str, DJSession] = {}

    async def load(self, channel_id: str) -> DJSession | None:
        session = self._sessions.get(channel_id)
        return session.model_copy(deep=True) if session is not None else None

    async def save(self, session: DJSession) -> None:
        self._sessions[session.channel_id] = session.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._sessions)

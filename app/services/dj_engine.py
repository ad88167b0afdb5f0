"""
app.services.dj_engine
~~~~~~~~~~~~~~~~~~~~~~

Stream DJ 点歌队列引擎。

每个频道一个 DJ 会话：待播队列按票数降序排列（同票保持先来后到），
``play_next`` / ``skip`` 把当前曲目移入历史并从队首取下一首。

所有变更都是「加锁 → 读取 → 修改 → 保存 → 通知」，同一频道的变更
通过 ``KeyedLock`` 串行执行，不同频道互不阻塞。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable

from app.core.errors import CapabilityDisabled, NotFound, QueueEmpty, QueueFull
from app.core.locks import KeyedLock
from app.core.logging import get_logger
from app.db.dj_repository import DJSessionRepository
from app.schemas.dj import (
    DJSession,
    DJSettings,
    DJSettingsUpdate,
    Identity,
    PlayedTrack,
    Track,
    TrackRequest,
    utcnow,
)

logger = get_logger(__name__)

ChangeListener = Callable[[DJSession], Awaitable[None]]
Mutation = Callable[[DJSession], None]


class DJQueueEngine:
    """DJ 队列引擎。

    Attributes:
        repo: DJ 会话持久化仓库。
        default_settings: 新会话的默认设置。
        on_change: 每次变更保存后调用的回调（例如推送给房间），失败只记录日志。
    """

    def __init__(
        self,
        repo: DJSessionRepository,
        default_settings: DJSettings | None = None,
        on_change: ChangeListener | None = None,
    ) -> None:
        self.repo = repo
        self.default_settings = default_settings or DJSettings()
        self.on_change = on_change
        self._locks = KeyedLock()

    # ── 内部工具 ──────────────────────────────────────────────

    async def _load(self, channel_id: str) -> DJSession:
        session = await self.repo.load(channel_id)
        if session is None:
            raise NotFound(f"频道尚未初始化 DJ: {channel_id}")
        return session

    async def _commit(self, session: DJSession) -> None:
        session.revision += 1
        session.updated_at = utcnow()
        await self.repo.save(session)
        await self._notify(session)

    async def _notify(self, session: DJSession) -> None:
        if self.on_change is None:
            return
        try:
            await self.on_change(session)
        except Exception as e:
            logger.warning("DJ 状态推送失败 | channel=%s | err=%s", session.channel_id, e)

    async def _mutate(self, channel_id: str, op: str, mutation: Mutation) -> DJSession:
        async with self._locks.hold(channel_id):
            session = await self._load(channel_id)
            mutation(session)
            await self._commit(session)
        logger.info(
            "DJ 变更 | channel=%s | op=%s | revision=%d | queue=%d | state=%s",
            channel_id, op, session.revision, len(session.queue), session.state,
        )
        return session

    @staticmethod
    def _check_index(session: DJSession, index: int) -> None:
        if index < 0 or index >= len(session.queue):
            raise NotFound(f"队列中不存在下标 {index}")

    @staticmethod
    def _archive_current(session: DJSession) -> None:
        if session.current_track is not None:
            session.history.append(
                PlayedTrack(**session.current_track.model_dump(), played_at=utcnow()),
            )
            session.current_track = None

    # ── 公开操作 ──────────────────────────────────────────────

    async def initialize(self, channel_id: str) -> DJSession:
        """为频道创建 DJ 会话（已存在则原样返回）。"""
        async with self._locks.hold(channel_id):
            session = await self.repo.load(channel_id)
            if session is not None:
                return session
            session = DJSession(
                channel_id=channel_id,
                settings=self.default_settings.model_copy(),
            )
            await self._commit(session)
        logger.info("DJ 会话已创建 | channel=%s", channel_id)
        return session

    async def get_state(self, channel_id: str) -> DJSession:
        return await self._load(channel_id)

    async def enqueue(self, channel_id: str, request: TrackRequest, submitter: Identity) -> DJSession:
        """点歌：追加到队尾，初始零票。

        Raises:
            CapabilityDisabled: 关闭了观众点歌（优先检查）。
            QueueFull: 队列长度已达上限。
        """
        def mutation(session: DJSession) -> None:
            if not session.settings.allow_viewer_requests:
                raise CapabilityDisabled("当前频道未开放点歌")
            if len(session.queue) >= session.settings.max_queue_size:
                raise QueueFull(f"队列已满（上限 {session.settings.max_queue_size} 首）")
            session.queue.append(Track(
                title=request.title,
                artist=request.artist,
                url=request.url,
                added_by=submitter.user_id,
                added_by_name=submitter.display_name,
            ))

        return await self._mutate(channel_id, "enqueue", mutation)

    async def vote(self, channel_id: str, index: int, voter_id: str) -> DJSession:
        """为队列中第 ``index`` 首投票；已投过则撤销。之后按票数稳定重排。

        Raises:
            CapabilityDisabled: 关闭了投票。
            NotFound: 下标越界（含负数）。
        """
        def mutation(session: DJSession) -> None:
            if not session.settings.voting_enabled:
                raise CapabilityDisabled("当前频道未开放投票")
            self._check_index(session, index)
            track = session.queue[index]
            if voter_id in track.voters:
                track.voters.remove(voter_id)
            else:
                track.voters.append(voter_id)
            track.votes = len(track.voters)
            # list.sort 是稳定排序，reverse=True 时同票曲目仍保持原有相对顺序
            session.queue.sort(key=lambda t: t.votes, reverse=True)

        return await self._mutate(channel_id, "vote", mutation)

    async def play_next(self, channel_id: str) -> DJSession:
        """播放下一首：当前曲目进入历史，队首成为当前曲目。

        Raises:
            QueueEmpty: 队列为空。
        """
        def mutation(session: DJSession) -> None:
            if not session.queue:
                raise QueueEmpty("队列为空")
            self._archive_current(session)
            session.current_track = session.queue.pop(0)

        return await self._mutate(channel_id, "play_next", mutation)

    async def skip(self, channel_id: str) -> DJSession:
        """跳过当前曲目。队列为空时进入空闲状态，不报错。"""
        def mutation(session: DJSession) -> None:
            self._archive_current(session)
            if session.queue:
                session.current_track = session.queue.pop(0)

        return await self._mutate(channel_id, "skip", mutation)

    async def remove_track(self, channel_id: str, index: int) -> DJSession:
        def mutation(session: DJSession) -> None:
            self._check_index(session, index)
            session.queue.pop(index)

        return await self._mutate(channel_id, "remove_track", mutation)

    async def clear_queue(self, channel_id: str) -> DJSession:
        """清空待播队列，当前曲目与历史不变。"""
        def mutation(session: DJSession) -> None:
            session.queue.clear()

        return await self._mutate(channel_id, "clear_queue", mutation)

    async def update_settings(self, channel_id: str, update: DJSettingsUpdate) -> DJSession:
        """合并设置，只覆盖请求中提供的字段。"""
        changes = update.model_dump(exclude_unset=True, exclude_none=True)

        def mutation(session: DJSession) -> None:
            session.settings = session.settings.model_copy(update=changes)

        return await self._mutate(channel_id, "update_settings", mutation)

"""
app.schemas.dj
~~~~~~~~~~~~~~

Stream DJ 相关的 Pydantic 模型：曲目、播放历史、会话设置与完整会话快照。

``DJSession`` 既是 MongoDB ``stream_dj_sessions`` 集合中的文档结构，
也是 HTTP 接口与 ``dj-state`` 推送事件返回给客户端的完整快照。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, computed_field

DJState = Literal["idle", "playing"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Identity(BaseModel):
    """身份层提供的已验证用户信息，核心逻辑直接信任。"""

    user_id: str = Field(..., min_length=1, description="用户唯一标识")
    display_name: str = Field(..., min_length=1, description="展示名称")


class TrackRequest(BaseModel):
    """点歌请求体。"""

    title: str = Field(..., min_length=1, max_length=200, description="曲名")
    artist: str = Field(default="", max_length=200, description="艺人")
    url: str = Field(..., min_length=1, max_length=2048, description="音源地址")


class Track(BaseModel):
    """队列中的一首曲目。

    不变式：``votes == len(voters)``，``voters`` 中没有重复项。
    """

    title: str
    artist: str = ""
    url: str
    added_by: str = Field(..., description="点歌用户 ID")
    added_by_name: str = Field(..., description="点歌用户展示名称")
    votes: int = Field(default=0, ge=0)
    voters: list[str] = Field(default_factory=list)
    added_at: datetime = Field(default_factory=utcnow)


class PlayedTrack(Track):
    """已播放曲目，只存在于历史记录中，不可再投票或移除。"""

    played_at: datetime = Field(default_factory=utcnow)


class DJSettings(BaseModel):
    allow_viewer_requests: bool = Field(default=True, description="是否允许观众点歌")
    max_queue_size: int = Field(default=20, ge=1, description="队列最大长度")
    voting_enabled: bool = Field(default=True, description="是否允许投票")
    auto_play: bool = Field(default=True, description="播放器是否自动连播")


class DJSettingsUpdate(BaseModel):
    """设置的局部更新，未提供的字段保持原值。"""

    allow_viewer_requests: bool | None = None
    max_queue_size: int | None = Field(default=None, ge=1, le=500)
    voting_enabled: bool | None = None
    auto_play: bool | None = None


class DJSession(BaseModel):
    """单个频道的 DJ 会话完整快照。"""

    channel_id: str
    current_track: Track | None = None
    queue: list[Track] = Field(default_factory=list)
    history: list[PlayedTrack] = Field(default_factory=list)
    settings: DJSettings = Field(default_factory=DJSettings)
    revision: int = Field(default=0, ge=0, description="每次持久化变更递增")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def state(self) -> DJState:
        return "playing" if self.current_track is not None else "idle"

    def to_document(self) -> dict:
        """转换为 MongoDB 文档（不含派生字段）。"""
        return self.model_dump(exclude={"state"})

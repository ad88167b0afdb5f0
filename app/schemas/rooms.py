"""
app.schemas.rooms
~~~~~~~~~~~~~~~~~

房间与频道浏览接口的响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class MemberData(BaseModel):
    connection_id: str = Field(..., description="连接 ID")
    display_name: str = Field(..., description="展示名称")


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    room_id: str = Field(..., description="房间唯一标识")
    viewer_count: int = Field(..., description="当前在线人数")
    members: list[MemberData] = Field(default_factory=list, description="按加入顺序排列的成员")


class LiveChannelsData(BaseModel):
    channel_ids: list[str] = Field(default_factory=list, description="正在直播的频道")
    total: int = Field(..., description="直播中的频道数")


class HealthData(BaseModel):
    status: str = Field(default="ok")
    environment: str
    online: int = Field(..., description="当前 WebSocket 连接数")
    rooms: int = Field(..., description="活跃房间数")
    live_channels: int = Field(..., description="直播中的频道数")

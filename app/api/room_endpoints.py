"""
app.api.room_endpoints
~~~~~~~~~~~~~~~~~~~~~~

房间与频道浏览接口（只读）。

端点:
  - ``GET /rooms``            → 获取活跃房间列表
  - ``GET /rooms/{room_id}``  → 获取房间人数与成员
  - ``GET /channels/live``    → 获取正在直播的频道
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_live_hub
from app.schemas.api_response import ApiResponse
from app.schemas.rooms import LiveChannelsData, RoomInfoData
from app.services.live_hub import LiveHub

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomInfoData]])
async def list_rooms(hub: LiveHub = Depends(get_live_hub)):
    """返回所有至少有一名成员的房间。"""
    return ApiResponse.ok(data=hub.list_rooms())


@router.get("/rooms/{room_id}", summary="获取房间详情", response_model=ApiResponse[RoomInfoData])
async def room_info(room_id: str, hub: LiveHub = Depends(get_live_hub)):
    """返回指定房间的在线人数与成员列表。

    房间不存在时人数为 0，成员为空。
    """
    return ApiResponse.ok(data=hub.room_info(room_id))


@router.get("/channels/live", summary="获取直播中的频道", response_model=ApiResponse[LiveChannelsData])
async def live_channels(hub: LiveHub = Depends(get_live_hub)):
    channel_ids = hub.live_channels()
    return ApiResponse.ok(data=LiveChannelsData(channel_ids=channel_ids, total=len(channel_ids)))

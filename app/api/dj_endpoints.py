"""
app.api.dj_endpoints
~~~~~~~~~~~~~~~~~~~~

Stream DJ REST 接口。

路由前缀 ``/api/dj``，所有操作均返回完整的 DJ 会话快照 ``ApiResponse[DJSession]``，
客户端可通过轮询 ``GET /dj/{channel_id}`` 并比较 ``revision`` 感知变化。

端点:
  - ``POST   /dj/{channel_id}/init``          → 初始化会话（幂等）
  - ``GET    /dj/{channel_id}``               → 获取会话快照
  - ``POST   /dj/{channel_id}/queue``         → 点歌
  - ``POST   /dj/{channel_id}/vote/{index}``  → 投票 / 撤销投票
  - ``POST   /dj/{channel_id}/next``          → 播放下一首
  - ``POST   /dj/{channel_id}/skip``          → 跳过当前曲目
  - ``DELETE /dj/{channel_id}/queue/{index}`` → 移除曲目
  - ``DELETE /dj/{channel_id}/queue``         → 清空队列
  - ``PUT    /dj/{channel_id}/settings``      → 更新设置
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_current_identity, get_dj_engine
from app.schemas.api_response import ApiResponse
from app.schemas.dj import DJSession, DJSettingsUpdate, Identity, TrackRequest
from app.services.dj_engine import DJQueueEngine

router: APIRouter = APIRouter(prefix="/dj")


@router.post("/{channel_id}/init", summary="初始化 DJ 会话", response_model=ApiResponse[DJSession])
async def init_session(
    channel_id: str,
    _: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    """为频道创建 DJ 会话，已存在时直接返回现有会话。"""
    session = await engine.initialize(channel_id)
    return ApiResponse.ok(data=session)


@router.get("/{channel_id}", summary="获取 DJ 会话", response_model=ApiResponse[DJSession])
async def get_session(channel_id: str, engine: DJQueueEngine = Depends(get_dj_engine)):
    session = await engine.get_state(channel_id)
    return ApiResponse.ok(data=session)


@router.post("/{channel_id}/queue", summary="点歌", response_model=ApiResponse[DJSession])
async def enqueue_track(
    channel_id: str,
    track: TrackRequest,
    identity: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    """把曲目加入队尾。

    Args:
        channel_id: 频道 ID。
        track: 曲目信息。
        identity: 点歌用户（来自身份请求头）。
    """
    session = await engine.enqueue(channel_id, track, identity)
    return ApiResponse.ok(data=session, msg="点歌成功")


@router.post("/{channel_id}/vote/{index}", summary="投票 / 撤销投票", response_model=ApiResponse[DJSession])
async def vote_track(
    channel_id: str,
    index: int,
    identity: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    session = await engine.vote(channel_id, index, identity.user_id)
    return ApiResponse.ok(data=session)


@router.post("/{channel_id}/next", summary="播放下一首", response_model=ApiResponse[DJSession])
async def play_next(
    channel_id: str,
    _: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    session = await engine.play_next(channel_id)
    return ApiResponse.ok(data=session)


@router.post("/{channel_id}/skip", summary="跳过当前曲目", response_model=ApiResponse[DJSession])
async def skip_track(
    channel_id: str,
    _: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    session = await engine.skip(channel_id)
    return ApiResponse.ok(data=session)


@router.delete("/{channel_id}/queue/{index}", summary="移除曲目", response_model=ApiResponse[DJSession])
async def remove_track(
    channel_id: str,
    index: int,
    _: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    session = await engine.remove_track(channel_id, index)
    return ApiResponse.ok(data=session)


@router.delete("/{channel_id}/queue", summary="清空队列", response_model=ApiResponse[DJSession])
async def clear_queue(
    channel_id: str,
    _: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    session = await engine.clear_queue(channel_id)
    return ApiResponse.ok(data=session)


@router.put("/{channel_id}/settings", summary="更新 DJ 设置", response_model=ApiResponse[DJSession])
async def update_settings(
    channel_id: str,
    update: DJSettingsUpdate,
    _: Identity = Depends(get_current_identity),
    engine: DJQueueEngine = Depends(get_dj_engine),
):
    """合并更新设置，未提供的字段保持不变。"""
    session = await engine.update_settings(channel_id, update)
    return ApiResponse.ok(data=session, msg="设置已更新")

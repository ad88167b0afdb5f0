"""
app.api.realtime_ws
~~~~~~~~~~~~~~~~~~~

WebSocket 实时通道：房间成员、聊天、互动、WebRTC 信令、频道开播状态。

提供 ``/ws/live`` 端点。客户端连接后首先收到 ``connected`` 事件（包含服务端
分配的连接 ID），之后双方以 JSON 文本帧 ``{"type": ..., "data": {...}}`` 交互。
"""
from __future__ import annotations

import asyncio
import json
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.core.errors import InvalidMessage, RateLimited
from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.settings import settings
from app.services.live_hub import LiveHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()

# 受限流约束的消息类型；信令、房间与订阅操作不限流
_RATE_LIMITED_TYPES = frozenset({"send-chat", "send-reaction", "send-channel-message"})


def _resolve_hub(websocket: WebSocket) -> LiveHub:
    return websocket.app.state.live_hub


@router.websocket("/ws/live")
async def websocket_live_endpoint(
    websocket: WebSocket,
    display_name: str = Query(default="", max_length=64),
    user_id: str | None = Query(default=None),
) -> None:
    """WebSocket 实时通道端点。

    接收与发送分离：接收协程解析消息并交给 ``LiveHub`` 处理（只入队不等待），
    写协程 ``Connection.pump()`` 按 FIFO 顺序把发件箱写入 socket。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        display_name: 展示名称，缺省为 ``guest-<连接ID前缀>``。
        user_id: 身份层提供的用户 ID（可选）。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(ws_req_id)

    try:
        hub = _resolve_hub(websocket)
        await websocket.accept()
        conn = hub.connect(display_name, user_id)

        # 每个连接专用的限流器，按 settings 中的间隔限制聊天与互动的频率
        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)

        async def receive_loop() -> None:
            try:
                while True:
                    raw: str = await websocket.receive_text()
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError:
                        hub.send_error(conn, InvalidMessage("消息不是合法的 JSON"))
                        continue
                    # 限流检查：按实际到达时间，只约束聊天与互动
                    if (
                        isinstance(payload, dict)
                        and payload.get("type") in _RATE_LIMITED_TYPES
                        and not ws_limiter.is_allowed(conn.connection_id)
                    ):
                        hub.send_error(conn, RateLimited("发送速度太快啦，请慢一点~"))
                        continue
                    await hub.handle(conn, payload)
            except WebSocketDisconnect:
                pass  # 正常断开
            except Exception as e:
                logger.error("WebSocket 接收异常: %s | conn=%s", e, conn.connection_id, exc_info=True)
            finally:
                # 离开房间、注销连接并关闭发件箱，写协程随之退出
                hub.disconnect(conn)
                ws_limiter.remove_client(conn.connection_id)

        await asyncio.gather(receive_loop(), conn.pump(websocket.send_json))
    finally:
        request_id_ctx_var.reset(token)

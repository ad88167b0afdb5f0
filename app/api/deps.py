"""
app.api.deps
~~~~~~~~~~~~

路由依赖：从 ``app.state`` 取出 lifespan 中创建的服务实例，
以及从可信请求头解析调用者身份。
"""
from __future__ import annotations

from fastapi import Header, Request

from app.core.errors import Unauthorized
from app.schemas.dj import Identity
from app.services.dj_engine import DJQueueEngine
from app.services.live_hub import LiveHub


def get_live_hub(request: Request) -> LiveHub:
    return request.app.state.live_hub


def get_dj_engine(request: Request) -> DJQueueEngine:
    return request.app.state.dj_engine


def get_current_identity(
    x_user_id: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
) -> Identity:
    """读取身份层注入的 ``X-User-Id`` / ``X-User-Name`` 请求头。

    Raises:
        Unauthorized: 缺少用户 ID。
    """
    if not x_user_id:
        raise Unauthorized("缺少身份信息")
    return Identity(user_id=x_user_id, display_name=x_user_name or x_user_id)

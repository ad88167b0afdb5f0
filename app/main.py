"""
app.main
~~~~~~~~

FastAPI 应用入口：注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.api import dj_endpoints, realtime_ws, room_endpoints
from app.core.errors import LiveError
from app.core.logging import get_logger, request_id_ctx_var, setup_logging
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.db import close_mongo, connect_mongo
from app.db.activity_repository import ActivityRepository
from app.db.dj_repository import (
    DJSessionRepository,
    InMemoryDJSessionRepository,
    MongoDJSessionRepository,
)
from app.schemas.api_response import ApiResponse
from app.schemas.dj import DJSettings
from app.schemas.rooms import HealthData
from app.services.activity import ActivityLogger, ActivityRecorder, NullActivityLogger
from app.services.dj_engine import DJQueueEngine
from app.services.live_hub import LiveHub

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    repo: DJSessionRepository
    sink: ActivityLogger
    if settings.STORAGE_BACKEND == "mongo":
        db = await connect_mongo()
        repo = MongoDJSessionRepository(
            db,
            attempts=settings.STORAGE_RETRY_ATTEMPTS,
            wait_initial=settings.STORAGE_RETRY_WAIT_INITIAL,
            wait_max=settings.STORAGE_RETRY_WAIT_MAX,
        )
        sink = ActivityRepository(db)
    else:
        repo = InMemoryDJSessionRepository()
        sink = NullActivityLogger()

    recorder = ActivityRecorder(sink)
    hub = LiveHub(recorder)
    engine = DJQueueEngine(
        repo,
        default_settings=DJSettings(max_queue_size=settings.DJ_MAX_QUEUE_SIZE),
        on_change=hub.publish_dj_state if settings.DJ_PUSH_UPDATES else None,
    )
    app.state.activity_recorder = recorder
    app.state.live_hub = hub
    app.state.dj_engine = engine

    logger.info(
        "🚀 应用已启动 | env=%s | storage=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.STORAGE_BACKEND,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await recorder.drain()
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="Streamfy 实时核心：房间、信令、广播与 Stream DJ",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# ── 限流（对所有 HTTP 路由生效，WebSocket 由连接内限流器负责）────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个 HTTP 请求生成 request_id，写入日志上下文与响应头。"""
    req_id = request.headers.get("X-Request-Id") or f"http-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(req_id)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx_var.reset(token)
    response.headers["X-Request-Id"] = req_id
    return response


# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(dj_endpoints.router, prefix="/api", tags=["Stream DJ"])
app.include_router(room_endpoints.router, prefix="/api", tags=["Rooms & Channels"])
app.include_router(realtime_ws.router, tags=["WebSocket Live"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(LiveError)
async def live_error_handler(request: Request, exc: LiveError) -> JSONResponse:
    """业务异常 → 对应 HTTP 状态码 + ``ApiResponse.fail()``，``data.error`` 为稳定错误码。"""
    logger.info("业务异常: %s %s -> %s | %s", request.method, request.url.path, exc.code, exc.message)
    response = ApiResponse.fail(msg=exc.message, code=exc.status_code, data={"error": exc.code})
    return JSONResponse(status_code=exc.status_code, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。

    避免 FastAPI 默认返回 HTML 错误页面，保持 JSON 响应一致性。
    """
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(status_code=500, content=response.model_dump())


@app.get("/health", tags=["System"], response_model=ApiResponse[HealthData])
async def health_check(request: Request):
    """验证服务是否正常运行，并返回实时连接概况。"""
    hub: LiveHub | None = getattr(request.app.state, "live_hub", None)
    stats = hub.stats() if hub is not None else {"online": 0, "rooms": 0, "live_channels": 0}
    return ApiResponse.ok(data=HealthData(environment=settings.ENVIRONMENT, **stats))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )

"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures：使用内存存储与记录型动态桩，
使单元测试无需 MongoDB 即可快速运行。
"""
from __future__ import annotations

import os
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置
os.environ.setdefault("STORAGE_BACKEND", "memory")

from app.db.dj_repository import InMemoryDJSessionRepository  # noqa: E402
from app.services.activity import ActivityRecorder  # noqa: E402
from app.services.connection import Connection  # noqa: E402
from app.services.dj_engine import DJQueueEngine  # noqa: E402
from app.services.live_hub import LiveHub  # noqa: E402


class RecordingActivityLogger:
    """把每条动态记录到列表中的 ActivityLogger 桩。"""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    async def record(self, event_type: str, actor_name: str, details: dict[str, Any]) -> None:
        self.records.append((event_type, actor_name, details))


def drain(conn: Connection) -> list[dict[str, Any]]:
    """取出连接发件箱中尚未写出的全部事件。"""
    return conn.drain_pending()


def of_type(events: list[dict[str, Any]], event_type: str) -> list[dict[str, Any]]:
    return [e["data"] for e in events if e["type"] == event_type]


@pytest.fixture()
def activity_sink() -> RecordingActivityLogger:
    return RecordingActivityLogger()


@pytest.fixture()
def recorder(activity_sink: RecordingActivityLogger) -> ActivityRecorder:
    return ActivityRecorder(activity_sink)


@pytest.fixture()
def hub(recorder: ActivityRecorder) -> LiveHub:
    return LiveHub(recorder, outbox_size=64, chat_max_length=500)


@pytest.fixture()
def dj_repo() -> InMemoryDJSessionRepository:
    return InMemoryDJSessionRepository()


@pytest.fixture()
def dj_engine(dj_repo: InMemoryDJSessionRepository) -> DJQueueEngine:
    return DJQueueEngine(dj_repo)

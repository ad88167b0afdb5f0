"""
app.core.settings
~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 项目根目录（app/ 的上一级）
PROJECT_ROOT: Path = Path(__file__).resolve().parents[2]

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Streamfy Live Core", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3002, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── 存储 ──────────────────────────────────────────────────────────
    STORAGE_BACKEND: Literal["mongo", "memory"] = Field(
        default="mongo",
        description="DJ 会话与活动日志的存储后端：mongo / memory（本地调试用）",
    )
    MONGO_URI: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB 连接串",
    )
    MONGO_DB_NAME: str = Field(default="streamfy", description="MongoDB 数据库名")
    STORAGE_RETRY_ATTEMPTS: int = Field(
        default=3, ge=1, description="存储层瞬时故障的最大尝试次数",
    )
    STORAGE_RETRY_WAIT_INITIAL: float = Field(
        default=0.2, ge=0, description="重试退避的初始等待秒数",
    )
    STORAGE_RETRY_WAIT_MAX: float = Field(
        default=2.0, ge=0, description="重试退避的最大等待秒数",
    )

    # ── Stream DJ ─────────────────────────────────────────────────────
    DJ_MAX_QUEUE_SIZE: int = Field(
        default=20, ge=1, description="新建 DJ 会话的默认队列上限",
    )
    DJ_PUSH_UPDATES: bool = Field(
        default=True,
        description="DJ 状态变更后是否向同名房间推送 dj-state 事件",
    )

    # ── 实时通道 ──────────────────────────────────────────────────────
    WS_OUTBOX_SIZE: int = Field(
        default=256, ge=1, description="单个连接的待发送消息队列上限",
    )
    WS_RATE_LIMIT_INTERVAL: float = Field(
        default=0.5, ge=0, description="同一连接两次聊天/表情之间的最小间隔（秒）",
    )
    CHAT_MAX_LENGTH: int = Field(default=500, ge=1, description="单条聊天消息最大长度")

    # ── HTTP 限流 ─────────────────────────────────────────────────────
    HTTP_RATE_LIMIT: str = Field(
        default="120/minute", description="slowapi 格式的 HTTP 默认限流规则",
    )

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """实际生效的日志级别。

        显式设置的 ``LOG_LEVEL`` 环境变量优先；否则 test 环境输出 DEBUG
        以便排查失败用例，prod 只保留 WARNING 以上，dev 为 INFO。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()

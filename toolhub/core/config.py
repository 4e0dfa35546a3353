"""
应用配置

使用 pydantic-settings 管理环境变量配置
"""

from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置类"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # 基础配置
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # 服务配置
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # 数据库配置（DATABASE_URL 非空时优先使用）
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "toolhub"
    POSTGRES_PASSWORD: str = "toolhub"
    POSTGRES_DB: str = "toolhub"

    # 数据库连接池配置
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 分钟

    # Redis 配置（同步锁使用 redis 后端时）
    REDIS_URL: str = "redis://localhost:6379/0"

    # CORS 配置
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # MCP Server 默认端点（仅在调用方未传入端点时使用）
    MCP_SERVER_URL: str = "http://localhost:8080"
    MCP_DISCOVERY_TIMEOUT_SECONDS: float = 10.0
    MCP_SCHEMA_PROBE_TIMEOUT_SECONDS: float = 5.0

    # 完整同步时的工具处理策略：replace（删除后重建）/ merge（三方合并）
    MCP_SYNC_TOOL_STRATEGY: str = "replace"

    # 同步互斥锁：memory（进程内）/ redis（跨进程）
    MCP_SYNC_LOCK_BACKEND: str = "memory"
    MCP_SYNC_LOCK_TIMEOUT_SECONDS: float = 30.0
    MCP_SYNC_LOCK_TTL_SECONDS: int = 300

    # 工具名称别名（标准化后的调用名 -> 注册表中的工具名）
    MCP_TOOL_NAME_ALIASES: Dict[str, str] = {
        "create-box-plot": "create_boxplot",
    }

    @property
    def database_url(self) -> str:
        """异步数据库连接 URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()


settings = get_settings()

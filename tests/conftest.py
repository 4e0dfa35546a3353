"""
测试配置和 fixtures
"""

import copy
import os
from typing import Any, AsyncGenerator, Dict

# 必须在导入 toolhub 之前设置，引擎在导入时创建
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["MCP_SYNC_LOCK_BACKEND"] = "memory"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from toolhub.core.locks import SyncLockManager, get_sync_lock_manager
from toolhub.database.base import Base
from toolhub.database.engine import get_db
from toolhub.main import app
from toolhub.services.discovery import McpDiscoveryClient, get_discovery_client

MCP_BASE_URL = "http://mcp.test"

HR_TOOLS = [
    {
        "name": "get_employee",
        "description": "查詢員工資料",
        "version": "1.2.0",
        "inputSchema": {
            "type": "object",
            "properties": {"employee_id": {"type": "string"}},
            "required": ["employee_id"],
        },
        "cacheable": True,
        "cacheTTL": 60,
        "stats": {"calls": 10},
    },
    {
        "name": "list_departments",
        "description": "列出部門",
        "inputSchema": {"type": "object", "properties": {}},
    },
]

# 旧格式工具 perform_ttest 的 schema 由 /api/stats/tools 提供
STATS_TOOLS_RESPONSE = {
    "module": "stats",
    "tools": [
        {
            "name": "perform_ttest",
            "description": "T 檢定",
            "inputSchema": {"type": "object", "properties": {"sample": {"type": "array"}}},
        }
    ],
}


def build_manifest() -> Dict[str, Any]:
    return {
        "version": "2.1.0",
        "toolsRegistered": 4,
        "modules": {
            "hr": {
                "endpoint": "/api/hr/:toolName",
                "description": "人資模組",
                "tools": copy.deepcopy(HR_TOOLS),
            },
            "stats": {
                "endpoint": "/api/stats/:toolName",
                "tools": [
                    {
                        "name": "create_boxplot",
                        "description": "繪製盒鬚圖",
                        "schema": {"type": "object", "properties": {"data": {"type": "array"}}},
                    },
                    "perform_ttest",
                ],
            },
        },
    }


def mock_transport(routes: Dict[str, Any]) -> httpx.MockTransport:
    """
    按请求路径返回预置响应

    值为异常时抛出，为 httpx.Response 时原样返回，其它值作为 JSON 返回；
    未登记的路径返回 404。routes 在请求时读取，测试中可以随时修改。
    """

    def handler(request: httpx.Request) -> httpx.Response:
        value = routes.get(request.url.path)
        if value is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(value, Exception):
            raise value
        if isinstance(value, httpx.Response):
            return value
        return httpx.Response(200, json=value)

    return httpx.MockTransport(handler)


@pytest.fixture
def mcp_routes() -> Dict[str, Any]:
    """MCP Server 的模拟路由"""
    return {
        "/": build_manifest(),
        "/api/stats/tools": copy.deepcopy(STATS_TOOLS_RESPONSE),
    }


@pytest.fixture
def discovery_client(mcp_routes: Dict[str, Any]) -> McpDiscoveryClient:
    return McpDiscoveryClient(transport=mock_transport(mcp_routes))


@pytest.fixture
def lock_manager() -> SyncLockManager:
    return SyncLockManager(backend="memory", timeout_seconds=0.1)


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """每个测试一个 SQLite 文件数据库"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'toolhub_test.db'}",
        poolclass=NullPool,
    )

    # 由 SQLAlchemy 显式发出 BEGIN，SAVEPOINT 才能正常工作
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """创建测试数据库会话"""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(
    session_maker: async_sessionmaker,
    discovery_client: McpDiscoveryClient,
    lock_manager: SyncLockManager,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """创建测试客户端"""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_discovery_client] = lambda: discovery_client
    app.dependency_overrides[get_sync_lock_manager] = lambda: lock_manager

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

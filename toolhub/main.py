"""
Toolhub 主入口

职责:
- MCP Server 服务发现
- 注册表比较与完整同步
- 服务 / 工具的选择性启用与停用
- 调用时工具名称解析
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from toolhub import __version__
from toolhub.api import router as api_router
from toolhub.core.config import settings
from toolhub.core.errors import RegistryError, RegistryErrorType
from toolhub.core.logging import setup_logging
from toolhub.database.engine import close_db

ERROR_STATUS_CODES = {
    RegistryErrorType.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RegistryErrorType.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RegistryErrorType.TOOL_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RegistryErrorType.REGISTRY_CONSTRAINT_VIOLATION: status.HTTP_409_CONFLICT,
    RegistryErrorType.SYNC_IN_PROGRESS: status.HTTP_409_CONFLICT,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    setup_logging()
    yield
    await close_db()


async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(exc.error_type, status.HTTP_400_BAD_REQUEST),
        content=exc.to_dict(),
    )


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Toolhub - MCP 服務註冊中心",
        description="MCP 服務發現、註冊表同步與工具名稱解析",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RegistryError, registry_error_handler)
    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health_check() -> dict:
        """健康检查端点"""
        return {"status": "healthy", "service": "toolhub", "version": __version__}

    return app


app = create_app()

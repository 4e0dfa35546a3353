"""
API 路由模块

统一注册所有 API 路由
"""

from fastapi import APIRouter

from toolhub.api.v1 import (
    mcp_registry,
    mcp_services,
    mcp_tools,
)

router = APIRouter()

# 发现 / 比较 / 同步 / 启用
router.include_router(mcp_registry.router, prefix="/v1/mcp", tags=["MCP注册表"])

# 服务与工具管理
router.include_router(mcp_services.router, prefix="/v1/mcp/services", tags=["MCP服务"])
router.include_router(mcp_tools.router, prefix="/v1/mcp/tools", tags=["MCP工具"])

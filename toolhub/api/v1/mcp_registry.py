"""
MCP 注册表管理 API

发现、比较、完整同步、选择性启用与停用。
这些接口总是返回结构化结果（success / message / errors），
发现或同步失败时仍然返回 200。
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import AliasChoices, BaseModel, Field

from toolhub.api.deps import Admin
from toolhub.schemas.catalog import (
    DiscoveredService,
    ToolDescriptor,
    service_description_for,
    tool_description_for,
)

router = APIRouter()


class SyncRequest(BaseModel):
    """完整同步请求"""

    endpoint: Optional[str] = Field(None, description="MCP Server 基础 URL，默认使用 MCP_SERVER_URL")


class ToolSelection(BaseModel):
    """选中的工具"""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    # 未提供 schema 时启用不会覆盖注册表中已有的 schema
    schema_: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("schema", "inputSchema", "input_schema"),
    )
    version: Optional[str] = None
    cacheable: bool = False
    cache_ttl: int = Field(0, validation_alias=AliasChoices("cache_ttl", "cacheTTL"))


class ServiceSelection(BaseModel):
    """选中的服务"""

    name: str = Field(..., min_length=1, max_length=200)
    endpoint: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    module_key: Optional[str] = None
    tools: List[ToolSelection] = Field(default_factory=list)

    def to_discovered(self) -> DiscoveredService:
        tools = [
            ToolDescriptor(
                name=t.name,
                description=t.description or tool_description_for(t.name),
                version=t.version or "1.0.0",
                input_schema=t.schema_,
                cacheable=t.cacheable,
                cache_ttl=t.cache_ttl,
            )
            for t in self.tools
        ]
        module_key = self.module_key or self.name
        return DiscoveredService(
            module_key=module_key,
            name=self.name,
            endpoint=self.endpoint,
            description=self.description or service_description_for(module_key, len(tools)),
            tools=tools,
        )


class EnableRequest(BaseModel):
    """选择性启用请求"""

    services: List[ServiceSelection] = Field(..., description="要启用的服务与工具")


class DisableRequest(BaseModel):
    """停用请求"""

    service_ids: Optional[List[int]] = None
    tool_ids: Optional[List[int]] = None


@router.get("/discover")
async def discover_services(
    admin: Admin,
    endpoint: Optional[str] = Query(None, description="MCP Server 基础 URL"),
) -> Dict[str, Any]:
    """探索 MCP Server 上的服务"""
    result = await admin.discover(endpoint)
    return result.to_dict()


@router.get("/compare")
async def compare_services(
    admin: Admin,
    endpoint: Optional[str] = Query(None, description="MCP Server 基础 URL"),
) -> Dict[str, Any]:
    """
    发现并与注册表比较

    标记每个服务为 new / existing，列出新增与已移除的工具
    """
    report = await admin.compare(endpoint)
    return report.to_dict()


@router.post("/sync")
async def sync_services(admin: Admin, request: Optional[SyncRequest] = None) -> Dict[str, Any]:
    """完整同步 MCP Server 的服务与工具"""
    result = await admin.sync_all(request.endpoint if request else None)
    return result.to_dict()


@router.post("/enable")
async def enable_services(request: EnableRequest, admin: Admin) -> Dict[str, Any]:
    """启用选中的服务与工具，其它工具保持不变"""
    result = await admin.enable_selected([s.to_discovered() for s in request.services])
    return result.to_dict()


@router.post("/disable")
async def disable_services(request: DisableRequest, admin: Admin) -> Dict[str, Any]:
    """停用服务或工具（不删除）"""
    result = await admin.disable(request.service_ids, request.tool_ids)
    return result.to_dict()


@router.get("/sync/status")
async def get_sync_status(admin: Admin) -> Dict[str, Any]:
    """同步状态概览"""
    return {"success": True, "data": await admin.sync_status()}

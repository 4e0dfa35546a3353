"""
MCP 工具管理 API

工具的查询、创建、修改、批量启停与调用名称解析
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from toolhub.api.deps import Admin, Store
from toolhub.core.errors import NotFound

router = APIRouter()


class ToolCreate(BaseModel):
    """创建工具请求"""

    service_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 1
    is_enabled: bool = True


class ToolUpdate(BaseModel):
    """更新工具请求"""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = None
    priority: Optional[int] = None
    is_enabled: Optional[bool] = None


class BatchStatusRequest(BaseModel):
    tool_ids: List[int] = Field(..., min_length=1)
    is_enabled: bool


class ResolveRequest(BaseModel):
    """工具名称解析请求"""

    name: str = Field(..., min_length=1, description="AI 给出的工具名称")


@router.get("")
async def list_tools(
    store: Store,
    is_enabled: Optional[bool] = Query(None, description="按启用状态筛选"),
    service_id: Optional[int] = Query(None, description="按服务筛选"),
) -> Dict[str, Any]:
    """获取工具列表"""
    tools = await store.list_tools(is_enabled=is_enabled, service_id=service_id)
    return {"success": True, "data": [t.to_dict() for t in tools], "total": len(tools)}


@router.get("/enabled")
async def list_enabled_tools(store: Store) -> Dict[str, Any]:
    """
    已启用的工具（供聊天系统使用）

    只包含启用且未删除的服务下的工具
    """
    tools = await store.list_enabled_tools()
    return {
        "success": True,
        "data": [{**t.to_dict(), "service_name": t.service.name} for t in tools],
        "total": len(tools),
    }


@router.get("/top")
async def list_top_tools(
    store: Store,
    limit: int = Query(10, ge=1, le=100),
) -> Dict[str, Any]:
    """使用次数最多的工具"""
    return {"success": True, "data": await store.top_used_tools(limit)}


@router.post("/resolve")
async def resolve_tool(request: ResolveRequest, admin: Admin) -> Dict[str, Any]:
    """把 AI 给出的工具名称解析为已启用的工具"""
    tool = await admin.resolve_tool_name(request.name)
    return {
        "success": True,
        "data": {
            **tool.to_dict(),
            "service_name": tool.service.name,
            "normalized_name": admin.name_resolver.normalize(request.name),
        },
    }


@router.post("/batch-status")
async def batch_update_tool_status(request: BatchStatusRequest, store: Store) -> Dict[str, Any]:
    """批量启用 / 停用工具"""
    updated = await store.batch_update_tool_enablement(request.tool_ids, request.is_enabled)
    return {
        "success": True,
        "message": f"已{'啟用' if request.is_enabled else '停用'} {updated} 個工具",
        "data": {"updated": updated, "is_enabled": request.is_enabled},
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_tool(request: ToolCreate, store: Store) -> Dict[str, Any]:
    """手动创建工具"""
    tool = await store.create_tool(
        service_id=request.service_id,
        name=request.name,
        description=request.description,
        input_schema=request.input_schema,
        priority=request.priority,
        is_enabled=request.is_enabled,
    )
    return {"success": True, "data": tool.to_dict()}


@router.patch("/{tool_id}")
async def update_tool(tool_id: int, request: ToolUpdate, store: Store) -> Dict[str, Any]:
    tool = await store.update_tool(tool_id, **request.model_dump(exclude_unset=True))
    return {"success": True, "data": tool.to_dict()}


@router.post("/{tool_id}/usage")
async def record_tool_usage(tool_id: int, admin: Admin) -> Dict[str, Any]:
    """工具调用成功后记录使用次数"""
    if not await admin.record_tool_usage(tool_id):
        raise NotFound("MCP 工具不存在", details={"tool_id": tool_id})
    return {"success": True}


@router.delete("/{tool_id}")
async def delete_tool(tool_id: int, store: Store) -> Dict[str, Any]:
    """软删除工具"""
    if not await store.soft_delete_tool(tool_id):
        raise NotFound("MCP 工具不存在", details={"tool_id": tool_id})
    return {"success": True, "message": "工具已刪除"}

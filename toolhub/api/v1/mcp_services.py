"""
MCP 服务管理 API

服务的查询、创建、启停与删除
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from toolhub.api.deps import Store
from toolhub.core.errors import NotFound

router = APIRouter()


class ServiceCreate(BaseModel):
    """创建服务请求"""

    name: str = Field(..., min_length=1, max_length=200)
    endpoint_url: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    owner: str = Field("system", max_length=100)
    icon: Optional[str] = Field(None, max_length=200)
    is_active: bool = True


class ServiceUpdate(BaseModel):
    """更新服务请求"""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    endpoint_url: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    owner: Optional[str] = Field(None, max_length=100)
    icon: Optional[str] = Field(None, max_length=200)


class ServiceToggle(BaseModel):
    is_active: bool


class BatchDeleteRequest(BaseModel):
    service_ids: List[int] = Field(..., min_length=1)


@router.get("")
async def list_services(
    store: Store,
    is_active: Optional[bool] = Query(None, description="按启用状态筛选"),
    owner: Optional[str] = Query(None, description="按负责人筛选"),
) -> Dict[str, Any]:
    """获取服务列表"""
    services = await store.list_services(is_active=is_active, owner=owner)
    return {"success": True, "data": [s.to_dict() for s in services], "total": len(services)}


@router.get("/synced")
async def list_synced_services(store: Store) -> Dict[str, Any]:
    """已同步的服务及其工具"""
    services = await store.list_services_with_tools()
    return {"success": True, "data": services, "total": len(services)}


@router.get("/stats")
async def get_service_stats(store: Store) -> Dict[str, Any]:
    return {"success": True, "data": await store.get_service_stats()}


@router.post("/batch-delete")
async def batch_delete_services(request: BatchDeleteRequest, store: Store) -> Dict[str, Any]:
    """批量软删除服务（级联软删除工具）"""
    deleted = await store.batch_soft_delete_services(request.service_ids)
    return {
        "success": True,
        "message": f"成功刪除 {len(deleted)} 個服務",
        "data": {"deleted_services": deleted},
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_service(request: ServiceCreate, store: Store) -> Dict[str, Any]:
    """创建服务"""
    service = await store.create_service(
        name=request.name,
        endpoint_url=request.endpoint_url,
        description=request.description,
        owner=request.owner,
        icon=request.icon,
        is_active=request.is_active,
    )
    return {"success": True, "data": service.to_dict()}


@router.get("/{service_id}")
async def get_service(service_id: int, store: Store) -> Dict[str, Any]:
    """获取单个服务及其工具"""
    service = await store.require_service(service_id)
    tools = await store.list_tools_for_service(service_id)
    return {
        "success": True,
        "data": {**service.to_dict(), "tools": [t.to_dict() for t in tools]},
    }


@router.patch("/{service_id}")
async def update_service(service_id: int, request: ServiceUpdate, store: Store) -> Dict[str, Any]:
    service = await store.update_service(service_id, **request.model_dump(exclude_unset=True))
    return {"success": True, "data": service.to_dict()}


@router.patch("/{service_id}/toggle")
async def toggle_service(service_id: int, request: ServiceToggle, store: Store) -> Dict[str, Any]:
    """启用 / 停用服务"""
    service = await store.toggle_service(service_id, request.is_active)
    return {
        "success": True,
        "message": "服務已啟用" if service.is_active else "服務已停用",
        "data": service.to_dict(),
    }


@router.delete("/{service_id}")
async def delete_service(service_id: int, store: Store) -> Dict[str, Any]:
    """软删除服务"""
    if not await store.soft_delete_service(service_id):
        raise NotFound("MCP 服務不存在", details={"service_id": service_id})
    return {"success": True, "message": "服務已刪除"}


@router.delete("/{service_id}/permanent")
async def permanently_delete_service(service_id: int, store: Store) -> Dict[str, Any]:
    """永久删除服务与其所有工具"""
    if not await store.permanent_delete_service(service_id):
        raise NotFound("MCP 服務不存在", details={"service_id": service_id})
    return {"success": True, "message": "服務已永久刪除"}

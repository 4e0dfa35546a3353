"""
MCP 注册表存储

服务与工具的持久化操作，所有写操作都会立即 flush，
唯一性 / 外键冲突统一转换为 RegistryConstraintViolation。

事务边界由调用方通过 transaction() / savepoint() 控制：
- transaction(): 一次管理操作一个事务（会话已在事务中时退化为 SAVEPOINT）
- savepoint(): 单个服务 / 工具的写入，失败只回滚这一项
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from toolhub.core.errors import NotFound, RegistryConstraintViolation, ValidationError
from toolhub.database.base import utcnow
from toolhub.database.models import McpService, McpTool
from toolhub.schemas.catalog import ToolDescriptor
from toolhub.services.name_resolver import canonical_tool_name

logger = structlog.get_logger(__name__)

SERVICE_UPDATABLE_FIELDS = ("name", "endpoint_url", "description", "owner", "icon", "version", "is_active")
TOOL_UPDATABLE_FIELDS = (
    "name",
    "description",
    "version",
    "input_schema",
    "cacheable",
    "cache_ttl",
    "priority",
    "is_enabled",
)
# 同步时从 MCP Server 覆盖的字段
REMOTE_TOOL_FIELDS = ("description", "version", "input_schema", "cacheable", "cache_ttl", "stats")


@dataclass
class SnapshotService:
    """注册表快照中的服务"""

    id: int
    name: str
    endpoint_url: str
    is_active: bool
    # 工具名 -> 是否启用
    tools: Dict[str, bool] = field(default_factory=dict)


@dataclass
class RegistrySnapshot:
    """未删除服务及其未删除工具，按 endpoint_url 索引"""

    services: Dict[str, SnapshotService] = field(default_factory=dict)

    def find(self, endpoint_url: str) -> Optional[SnapshotService]:
        return self.services.get(endpoint_url)


def validate_input_schema(schema: Any, tool_name: str) -> Dict[str, Any]:
    """input_schema 必须是 JSON 对象"""
    if schema is None:
        return {}
    if not isinstance(schema, dict):
        raise ValidationError(
            f"工具 {tool_name} 的 input_schema 必須是物件，實際為 {type(schema).__name__}",
            details={"tool": tool_name},
        )
    return schema


class RegistryStore:
    """注册表存储"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============================================================
    # 事务
    # ============================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["RegistryStore"]:
        """一次管理操作的事务；异常时回滚本次调用的全部写入"""
        if self.db.in_transaction():
            async with self.db.begin_nested():
                yield self
        else:
            async with self.db.begin():
                yield self

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator["RegistryStore"]:
        """单项写入的 SAVEPOINT"""
        async with self.db.begin_nested():
            yield self

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise RegistryConstraintViolation(
                "違反註冊表唯一性或外鍵約束",
                details={"error": str(e.orig)},
            ) from e

    # ============================================================
    # 服务
    # ============================================================

    async def find_service_by_endpoint(self, endpoint_url: str) -> Optional[McpService]:
        """按 endpoint_url 查找未删除的服务（精确匹配）"""
        query = select(McpService).where(
            McpService.endpoint_url == endpoint_url,
            McpService.is_deleted == False,
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def get_service(self, service_id: int) -> Optional[McpService]:
        query = select(McpService).where(
            McpService.id == service_id,
            McpService.is_deleted == False,
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def require_service(self, service_id: int) -> McpService:
        service = await self.get_service(service_id)
        if service is None:
            raise NotFound("MCP 服務不存在", details={"service_id": service_id})
        return service

    async def list_services(
        self,
        is_active: Optional[bool] = None,
        owner: Optional[str] = None,
    ) -> List[McpService]:
        """列出未删除的服务"""
        query = select(McpService).where(McpService.is_deleted == False)
        if is_active is not None:
            query = query.where(McpService.is_active == is_active)
        if owner:
            query = query.where(McpService.owner == owner)
        query = query.order_by(McpService.created_at.desc(), McpService.id.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create_service(
        self,
        name: str,
        endpoint_url: str,
        description: Optional[str] = None,
        owner: str = "system",
        icon: Optional[str] = None,
        version: int = 1,
        is_active: bool = True,
    ) -> McpService:
        """创建服务，endpoint_url 与未删除的服务冲突时拒绝"""
        if await self.find_service_by_endpoint(endpoint_url):
            raise RegistryConstraintViolation(
                f"端點 {endpoint_url} 已存在對應的 MCP 服務",
                details={"endpoint_url": endpoint_url},
            )

        service = McpService(
            name=name,
            endpoint_url=endpoint_url,
            description=description,
            owner=owner,
            icon=icon,
            version=version,
            is_active=is_active,
        )
        self.db.add(service)
        await self._flush()

        logger.info("mcp_service_created", service_id=service.id, endpoint_url=endpoint_url)
        return service

    async def update_service(self, service_id: int, **fields: Any) -> McpService:
        """更新服务的指定字段"""
        updates = {k: v for k, v in fields.items() if k in SERVICE_UPDATABLE_FIELDS and v is not None}
        if not updates:
            raise ValidationError("沒有提供要更新的字段")

        service = await self.require_service(service_id)

        new_endpoint = updates.get("endpoint_url")
        if new_endpoint and new_endpoint != service.endpoint_url:
            other = await self.find_service_by_endpoint(new_endpoint)
            if other is not None and other.id != service.id:
                raise RegistryConstraintViolation(
                    f"端點 {new_endpoint} 已存在對應的 MCP 服務",
                    details={"endpoint_url": new_endpoint},
                )

        for key, value in updates.items():
            setattr(service, key, value)
        await self._flush()
        return service

    async def upsert_service(
        self,
        name: str,
        endpoint_url: str,
        description: Optional[str],
        activate: bool = False,
    ) -> Tuple[McpService, str]:
        """
        按 endpoint_url upsert 服务

        已存在时更新描述（描述变化时 version + 1）；activate=True 时同时
        刷新名称并强制启用。返回 (服务, "created" | "updated")。
        """
        service = await self.find_service_by_endpoint(endpoint_url)

        if service is None:
            service = await self.create_service(
                name=name,
                endpoint_url=endpoint_url,
                description=description,
                owner="system",
                is_active=True,
            )
            return service, "created"

        if description is not None and description != service.description:
            service.description = description
            service.version = (service.version or 0) + 1
        if activate:
            service.name = name
            service.is_active = True
        service.updated_at = utcnow()
        await self._flush()
        return service, "updated"

    async def toggle_service(self, service_id: int, is_active: bool) -> McpService:
        service = await self.require_service(service_id)
        service.is_active = is_active
        await self._flush()
        logger.info("mcp_service_toggled", service_id=service_id, is_active=is_active)
        return service

    async def soft_delete_service(self, service_id: int) -> bool:
        """软删除服务并级联软删除其工具"""
        now = utcnow()
        result = await self.db.execute(
            update(McpService)
            .where(McpService.id == service_id, McpService.is_deleted == False)
            .values(is_deleted=True, deleted_at=now, updated_at=now)
        )
        if not result.rowcount:
            return False

        await self.db.execute(
            update(McpTool)
            .where(McpTool.service_id == service_id, McpTool.is_deleted == False)
            .values(is_deleted=True, deleted_at=now, updated_at=now)
        )
        logger.info("mcp_service_soft_deleted", service_id=service_id)
        return True

    async def batch_soft_delete_services(self, service_ids: Sequence[int]) -> List[Dict[str, Any]]:
        deleted = []
        for service_id in service_ids:
            service = await self.get_service(service_id)
            if service is None:
                continue
            name = service.name
            if await self.soft_delete_service(service_id):
                deleted.append({"id": service_id, "name": name})
        return deleted

    async def permanent_delete_service(self, service_id: int) -> bool:
        """永久删除服务（包括已软删除的），同时清除所有工具"""
        await self.db.execute(delete(McpTool).where(McpTool.service_id == service_id))
        result = await self.db.execute(delete(McpService).where(McpService.id == service_id))
        deleted = bool(result.rowcount)
        if deleted:
            logger.info("mcp_service_permanently_deleted", service_id=service_id)
        return deleted

    async def batch_update_service_activation(self, service_ids: Sequence[int], is_active: bool) -> int:
        if not service_ids:
            return 0
        result = await self.db.execute(
            update(McpService)
            .where(McpService.id.in_(list(service_ids)), McpService.is_deleted == False)
            .values(is_active=is_active, updated_at=utcnow())
        )
        return result.rowcount or 0

    # ============================================================
    # 工具
    # ============================================================

    async def _find_colliding_tool(
        self,
        service_id: int,
        name: str,
        exclude_id: Optional[int] = None,
    ) -> Optional[McpTool]:
        """同一服务下标准化后同名的工具（create-box / Create_Box 视为同名）"""
        canonical = canonical_tool_name(name)
        for tool in await self.list_tools_for_service(service_id):
            if tool.id != exclude_id and canonical_tool_name(tool.name) == canonical:
                return tool
        return None

    async def find_tool(self, service_id: int, name: str) -> Optional[McpTool]:
        query = select(McpTool).where(
            McpTool.service_id == service_id,
            McpTool.name == name,
            McpTool.is_deleted == False,
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def get_tool(self, tool_id: int) -> Optional[McpTool]:
        query = select(McpTool).where(McpTool.id == tool_id, McpTool.is_deleted == False)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def require_tool(self, tool_id: int) -> McpTool:
        tool = await self.get_tool(tool_id)
        if tool is None:
            raise NotFound("MCP 工具不存在", details={"tool_id": tool_id})
        return tool

    async def list_tools_for_service(self, service_id: int, enabled_only: bool = False) -> List[McpTool]:
        query = select(McpTool).where(
            McpTool.service_id == service_id,
            McpTool.is_deleted == False,
        )
        if enabled_only:
            query = query.where(McpTool.is_enabled == True)
        query = query.order_by(McpTool.priority.desc(), McpTool.name.asc(), McpTool.id.asc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_tools(
        self,
        is_enabled: Optional[bool] = None,
        service_id: Optional[int] = None,
    ) -> List[McpTool]:
        """列出未删除服务下的未删除工具"""
        query = (
            select(McpTool)
            .join(McpTool.service)
            .options(contains_eager(McpTool.service))
            .execution_options(populate_existing=True)
            .where(McpTool.is_deleted == False, McpService.is_deleted == False)
        )
        if is_enabled is not None:
            query = query.where(McpTool.is_enabled == is_enabled)
        if service_id:
            query = query.where(McpTool.service_id == service_id)
        query = query.order_by(McpTool.priority.desc(), McpTool.name.asc(), McpTool.id.asc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_enabled_tools(self) -> List[McpTool]:
        """
        已启用工具（供聊天系统与名称解析使用）

        只返回服务未删除且已启用的工具，孤儿工具永远不会出现
        """
        query = (
            select(McpTool)
            .join(McpTool.service)
            .options(contains_eager(McpTool.service))
            .execution_options(populate_existing=True)
            .where(
                McpTool.is_enabled == True,
                McpTool.is_deleted == False,
                McpService.is_active == True,
                McpService.is_deleted == False,
            )
            .order_by(McpTool.priority.desc(), McpTool.name.asc(), McpTool.id.asc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def insert_tool(
        self,
        service_id: int,
        descriptor: ToolDescriptor,
        is_enabled: bool = True,
        priority: int = 1,
    ) -> McpTool:
        """插入工具；schema 非对象或与同服务工具标准化后重名时拒绝"""
        schema = validate_input_schema(descriptor.input_schema, descriptor.name)

        colliding = await self._find_colliding_tool(service_id, descriptor.name)
        if colliding is not None:
            raise RegistryConstraintViolation(
                f"工具名稱 {descriptor.name} 與現有工具 {colliding.name} 衝突",
                details={"service_id": service_id, "tool": descriptor.name, "existing": colliding.name},
            )

        tool = McpTool(
            service_id=service_id,
            name=descriptor.name,
            description=descriptor.description,
            version=descriptor.version or "1.0.0",
            input_schema=schema,
            cacheable=descriptor.cacheable,
            cache_ttl=descriptor.cache_ttl,
            stats=descriptor.stats or {},
            priority=priority,
            is_enabled=is_enabled,
        )
        self.db.add(tool)
        await self._flush()
        return tool

    async def bulk_insert_tools(
        self,
        service_id: int,
        descriptors: Sequence[ToolDescriptor],
        is_enabled: bool = True,
        priority: int = 1,
    ) -> List[McpTool]:
        """批量插入，任一失败即抛出（需要逐项容错时由调用方包 savepoint）"""
        return [
            await self.insert_tool(service_id, d, is_enabled=is_enabled, priority=priority)
            for d in descriptors
        ]

    async def upsert_tool(
        self,
        service_id: int,
        descriptor: ToolDescriptor,
        force_enabled: bool = False,
        fields: Sequence[str] = REMOTE_TOOL_FIELDS,
    ) -> Tuple[McpTool, str]:
        """
        按 (service_id, name) upsert 工具

        已存在时只更新 fields 中列出的远端来源字段，force_enabled=True 时
        同时强制启用；is_enabled / priority / usage_count 其余情况保持不变。
        返回 (工具, "created" | "updated")。
        """
        tool = await self.find_tool(service_id, descriptor.name)
        if tool is None:
            tool = await self.insert_tool(service_id, descriptor, is_enabled=True, priority=1)
            return tool, "created"

        remote = {
            "description": descriptor.description,
            "version": descriptor.version or tool.version,
            "input_schema": validate_input_schema(descriptor.input_schema, descriptor.name),
            "cacheable": descriptor.cacheable,
            "cache_ttl": descriptor.cache_ttl,
            "stats": descriptor.stats or {},
        }
        for key in fields:
            setattr(tool, key, remote[key])
        if force_enabled:
            tool.is_enabled = True
        tool.updated_at = utcnow()
        await self._flush()
        return tool, "updated"

    async def delete_tools_for_service(self, service_id: int) -> int:
        """硬删除服务下的所有工具行（完整同步的 replace 策略）"""
        result = await self.db.execute(delete(McpTool).where(McpTool.service_id == service_id))
        return result.rowcount or 0

    async def soft_delete_tools_not_in(self, service_id: int, keep_names: Sequence[str]) -> List[str]:
        """软删除不在 keep_names 中的工具，返回被删除的工具名"""
        keep = set(keep_names)
        removed = [t for t in await self.list_tools_for_service(service_id) if t.name not in keep]
        if not removed:
            return []

        now = utcnow()
        await self.db.execute(
            update(McpTool)
            .where(McpTool.id.in_([t.id for t in removed]))
            .values(is_deleted=True, deleted_at=now, updated_at=now)
        )
        return [t.name for t in removed]

    async def create_tool(
        self,
        service_id: int,
        name: str,
        description: Optional[str] = None,
        input_schema: Optional[Dict[str, Any]] = None,
        priority: int = 1,
        is_enabled: bool = True,
    ) -> McpTool:
        """管理端手动创建工具"""
        await self.require_service(service_id)
        descriptor = ToolDescriptor(
            name=name,
            description=description or "",
            input_schema=input_schema or {},
        )
        tool = await self.insert_tool(service_id, descriptor, is_enabled=is_enabled, priority=priority)
        logger.info("mcp_tool_created", tool_id=tool.id, service_id=service_id, name=name)
        return tool

    async def update_tool(self, tool_id: int, **fields: Any) -> McpTool:
        updates = {k: v for k, v in fields.items() if k in TOOL_UPDATABLE_FIELDS and v is not None}
        if not updates:
            raise ValidationError("沒有提供要更新的字段")

        tool = await self.require_tool(tool_id)

        if "name" in updates and updates["name"] != tool.name:
            colliding = await self._find_colliding_tool(tool.service_id, updates["name"], exclude_id=tool.id)
            if colliding is not None:
                raise RegistryConstraintViolation(
                    f"工具名稱 {updates['name']} 與現有工具 {colliding.name} 衝突",
                    details={"tool_id": tool_id, "existing": colliding.name},
                )
        if "input_schema" in updates:
            updates["input_schema"] = validate_input_schema(updates["input_schema"], tool.name)

        for key, value in updates.items():
            setattr(tool, key, value)
        await self._flush()
        return tool

    async def soft_delete_tool(self, tool_id: int) -> bool:
        now = utcnow()
        result = await self.db.execute(
            update(McpTool)
            .where(McpTool.id == tool_id, McpTool.is_deleted == False)
            .values(is_deleted=True, deleted_at=now, updated_at=now)
        )
        return bool(result.rowcount)

    async def batch_update_tool_enablement(self, tool_ids: Sequence[int], is_enabled: bool) -> int:
        if not tool_ids:
            return 0
        result = await self.db.execute(
            update(McpTool)
            .where(McpTool.id.in_(list(tool_ids)), McpTool.is_deleted == False)
            .values(is_enabled=is_enabled, updated_at=utcnow())
        )
        return result.rowcount or 0

    async def increment_tool_usage(self, tool_id: int) -> bool:
        """工具调用成功后递增使用次数"""
        result = await self.db.execute(
            update(McpTool)
            .where(McpTool.id == tool_id, McpTool.is_deleted == False)
            .values(usage_count=McpTool.usage_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return False

        # 身份映射中的实例需要重新读取计数
        tool = await self.db.get(McpTool, tool_id)
        if tool is not None:
            await self.db.refresh(tool)
        return True

    async def top_used_tools(self, limit: int = 10) -> List[Dict[str, Any]]:
        query = (
            select(McpTool.id, McpTool.name, McpTool.description, McpTool.usage_count, McpService.name)
            .join(McpService, McpTool.service_id == McpService.id)
            .where(McpTool.is_deleted == False, McpService.is_deleted == False)
            .order_by(McpTool.usage_count.desc(), McpTool.id.asc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return [
            {
                "id": row[0],
                "name": row[1],
                "description": row[2],
                "usage_count": row[3],
                "service_name": row[4],
            }
            for row in result.all()
        ]

    # ============================================================
    # 快照与统计
    # ============================================================

    async def load_snapshot(self) -> RegistrySnapshot:
        """读取比较所需的注册表快照"""
        snapshot = RegistrySnapshot()
        for service in await self.list_services():
            snapshot.services[service.endpoint_url] = SnapshotService(
                id=service.id,
                name=service.name,
                endpoint_url=service.endpoint_url,
                is_active=service.is_active,
            )

        by_id = {s.id: s for s in snapshot.services.values()}
        for tool in await self.list_tools():
            entry = by_id.get(tool.service_id)
            if entry is not None:
                entry.tools[tool.name] = tool.is_enabled
        return snapshot

    async def list_services_with_tools(self) -> List[Dict[str, Any]]:
        """已同步的服务及其工具"""
        tools_by_service: Dict[int, List[Dict[str, Any]]] = {}
        for tool in await self.list_tools():
            tools_by_service.setdefault(tool.service_id, []).append(tool.to_dict())

        return [
            {
                **service.to_dict(),
                "tools": tools_by_service.get(service.id, []),
            }
            for service in await self.list_services()
        ]

    async def get_service_stats(self) -> Dict[str, int]:
        query = select(
            func.count(McpService.id),
            func.count(McpService.id).filter(McpService.is_active == True),
            func.count(func.distinct(McpService.owner)),
        ).where(McpService.is_deleted == False)
        total, active, owners = (await self.db.execute(query)).one()
        return {
            "total_services": total or 0,
            "active_services": active or 0,
            "inactive_services": (total or 0) - (active or 0),
            "unique_owners": owners or 0,
        }

    async def get_sync_status(self) -> Dict[str, Any]:
        services_query = select(
            func.count(McpService.id),
            func.count(McpService.id).filter(McpService.is_active == True),
            func.max(McpService.updated_at),
        ).where(McpService.is_deleted == False)
        total_services, active_services, last_sync = (await self.db.execute(services_query)).one()

        tools_query = (
            select(
                func.count(McpTool.id),
                func.count(McpTool.id).filter(McpTool.is_enabled == True),
            )
            .join(McpService, McpTool.service_id == McpService.id)
            .where(McpTool.is_deleted == False, McpService.is_deleted == False)
        )
        total_tools, enabled_tools = (await self.db.execute(tools_query)).one()

        return {
            "services": {"total": total_services or 0, "active": active_services or 0},
            "tools": {"total": total_tools or 0, "enabled": enabled_tools or 0},
            "last_sync": last_sync.isoformat() if last_sync is not None else None,
        }

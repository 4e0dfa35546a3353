"""
MCP 注册表管理入口

把发现、比较、同步、启用/停用与名称解析组合成管理端使用的操作集合，
HTTP 路由只做参数转换。
"""

from typing import Any, Dict, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.core.config import settings
from toolhub.core.locks import SyncLockManager, get_sync_lock_manager
from toolhub.database.models import McpTool
from toolhub.schemas.catalog import DiscoveredService
from toolhub.schemas.results import (
    ComparisonReport,
    DisableResult,
    DiscoveryResult,
    EnableResult,
    SyncResult,
)
from toolhub.services.comparison import CatalogComparator
from toolhub.services.discovery import McpDiscoveryClient
from toolhub.services.enablement import McpEnablementService
from toolhub.services.name_resolver import ToolNameResolver
from toolhub.services.registry_store import RegistryStore
from toolhub.services.sync import McpSyncService

logger = structlog.get_logger(__name__)


class McpRegistryAdmin:
    """MCP 注册表管理"""

    def __init__(
        self,
        db: AsyncSession,
        discovery_client: Optional[McpDiscoveryClient] = None,
        lock_manager: Optional[SyncLockManager] = None,
        name_resolver: Optional[ToolNameResolver] = None,
        strategy: Optional[str] = None,
    ):
        self.db = db
        self.store = RegistryStore(db)
        self.discovery = discovery_client or McpDiscoveryClient()
        self.lock_manager = lock_manager or get_sync_lock_manager()
        self.name_resolver = name_resolver or ToolNameResolver()
        self.comparator = CatalogComparator()
        self.strategy = strategy or settings.MCP_SYNC_TOOL_STRATEGY

    async def discover(self, endpoint: Optional[str] = None) -> DiscoveryResult:
        return await self.discovery.discover(endpoint)

    async def compare(self, endpoint: Optional[str] = None) -> ComparisonReport:
        """发现并与注册表比较（只读）"""
        discovery = await self.discovery.discover(endpoint)
        if not discovery.success:
            return ComparisonReport(
                success=False,
                message=discovery.message,
                error_type=discovery.error_type,
                error=discovery.error,
            )

        snapshot = await self.store.load_snapshot()
        return self.comparator.compare(discovery.catalog, snapshot)

    async def sync_all(self, endpoint: Optional[str] = None) -> SyncResult:
        service = McpSyncService(
            self.db,
            discovery_client=self.discovery,
            lock_manager=self.lock_manager,
            strategy=self.strategy,
        )
        return await service.sync_all(endpoint)

    async def enable_selected(self, selections: Sequence[DiscoveredService]) -> EnableResult:
        service = McpEnablementService(self.db, lock_manager=self.lock_manager)
        return await service.enable_selected(selections)

    async def disable(
        self,
        service_ids: Optional[Sequence[Any]] = None,
        tool_ids: Optional[Sequence[Any]] = None,
    ) -> DisableResult:
        service = McpEnablementService(self.db, lock_manager=self.lock_manager)
        return await service.disable(service_ids, tool_ids)

    async def resolve_tool_name(self, raw_name: str) -> McpTool:
        """
        把调用方给出的工具名解析为已启用的工具

        Raises:
            ToolNotFound: 没有匹配的已启用工具
        """
        candidates = await self.store.list_enabled_tools()
        return self.name_resolver.resolve(raw_name, candidates)

    async def record_tool_usage(self, tool_id: int) -> bool:
        """工具调用成功后记录使用次数"""
        return await self.store.increment_tool_usage(tool_id)

    async def sync_status(self) -> Dict[str, Any]:
        status = await self.store.get_sync_status()
        status["strategy"] = self.strategy
        status["lock_backend"] = self.lock_manager.backend
        return status

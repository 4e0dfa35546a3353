"""
完整同步

把 MCP Server 当前的目录写入注册表：

1. 按端点 origin 获取同步锁
2. 抓取清单（失败则中止，不做任何写入）
3. 一个事务内逐个服务 upsert，每个服务、每个工具各自一个 SAVEPOINT
4. 工具处理策略：
   - replace: 删除服务下所有工具后重新插入，全部启用（管理员停用的工具会被重新启用）
   - merge: 只更新远端字段，保留启用状态、优先级与使用次数，清单中消失的工具软删除
"""

from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.core.config import settings
from toolhub.core.errors import (
    RegistryError,
    RegistryErrorType,
    ServiceSyncError,
    SyncInProgress,
    ToolSyncError,
)
from toolhub.core.locks import SyncLockManager, get_sync_lock_manager
from toolhub.schemas.catalog import DiscoveredCatalog, DiscoveredService
from toolhub.schemas.results import SyncedService, SyncedTool, SyncResult
from toolhub.services.discovery import McpDiscoveryClient
from toolhub.services.registry_store import RegistryStore

logger = structlog.get_logger(__name__)

SYNC_STRATEGIES = ("replace", "merge")


def _error_message(error: Exception) -> str:
    return error.message if isinstance(error, RegistryError) else str(error)


class McpSyncService:
    """完整同步服务"""

    def __init__(
        self,
        db: AsyncSession,
        discovery_client: Optional[McpDiscoveryClient] = None,
        lock_manager: Optional[SyncLockManager] = None,
        strategy: Optional[str] = None,
    ):
        self.store = RegistryStore(db)
        self.discovery = discovery_client or McpDiscoveryClient()
        self.lock_manager = lock_manager or get_sync_lock_manager()
        self.strategy = strategy or settings.MCP_SYNC_TOOL_STRATEGY

        if self.strategy not in SYNC_STRATEGIES:
            raise ValueError(f"Unknown sync strategy: {self.strategy}")

    async def sync_all(self, endpoint: Optional[str] = None) -> SyncResult:
        """
        同步 MCP Server 上的所有服务与工具

        Args:
            endpoint: MCP Server 基础 URL，未提供时使用 MCP_SERVER_URL

        Returns:
            SyncResult，任何失败都以 success=False 的结果返回
        """
        base_url = endpoint or settings.MCP_SERVER_URL
        log = logger.bind(server_url=base_url, strategy=self.strategy)

        try:
            async with self.lock_manager.hold([base_url]):
                discovery = await self.discovery.discover(base_url)
                if not discovery.success:
                    log.warning("mcp_sync_aborted", error_type=discovery.error_type)
                    return SyncResult(
                        success=False,
                        message=discovery.message,
                        strategy=self.strategy,
                        errors=[discovery.error or discovery.message],
                        error_type=discovery.error_type,
                    )

                result = await self._apply(discovery.catalog)
        except SyncInProgress as e:
            log.warning("mcp_sync_locked", error=e.message)
            return SyncResult(
                success=False,
                message=e.message,
                strategy=self.strategy,
                errors=[str(e)],
                error_type=e.error_type.value,
            )
        except Exception as e:
            log.exception("mcp_sync_failed")
            return SyncResult(
                success=False,
                message=f"同步失敗: {_error_message(e)}",
                strategy=self.strategy,
                errors=[_error_message(e)],
                error_type=RegistryErrorType.SYNC_FAILED.value,
            )

        log.info("mcp_sync_completed", **result.counts)
        return result

    async def _apply(self, catalog: DiscoveredCatalog) -> SyncResult:
        result = SyncResult(
            success=True,
            message="",
            strategy=self.strategy,
            server_info=catalog.server_info,
        )

        async with self.store.transaction():
            for discovered in catalog.services:
                await self._sync_service(discovered, result)

        result.message = f"同步完成：{len(result.services)} 個服務，{len(result.tools)} 個工具"
        if result.errors:
            result.message += f"，{len(result.errors)} 個錯誤"
        return result

    async def _sync_service(self, discovered: DiscoveredService, result: SyncResult) -> None:
        log = logger.bind(endpoint=discovered.endpoint)

        try:
            async with self.store.savepoint():
                service, action = await self.store.upsert_service(
                    name=discovered.name,
                    endpoint_url=discovered.endpoint,
                    description=discovered.description,
                )
                if self.strategy == "replace":
                    await self.store.delete_tools_for_service(service.id)
        except (RegistryError, SQLAlchemyError) as e:
            error = ServiceSyncError(
                f"服務 {discovered.name} 同步失敗: {_error_message(e)}",
                details={"endpoint": discovered.endpoint},
            )
            log.warning("service_sync_failed", error=error.message)
            result.errors.append(str(error))
            return

        # SAVEPOINT 回滚会让修改过的实例过期，先取出需要的值
        service_id, service_name = service.id, service.name
        synced = 0

        for descriptor in discovered.tools:
            try:
                async with self.store.savepoint():
                    if self.strategy == "merge":
                        await self.store.upsert_tool(service_id, descriptor)
                    else:
                        await self.store.insert_tool(service_id, descriptor, is_enabled=True, priority=1)
            except (RegistryError, SQLAlchemyError) as e:
                error = ToolSyncError(
                    f"工具 {descriptor.name} 同步失敗: {_error_message(e)}",
                    details={"service": service_name, "tool": descriptor.name},
                )
                log.warning("tool_sync_failed", tool=descriptor.name, error=error.message)
                result.errors.append(str(error))
                continue

            synced += 1
            result.tools.append(
                SyncedTool(service=service_name, name=descriptor.name, description=descriptor.description)
            )

        if self.strategy == "merge":
            removed = await self.store.soft_delete_tools_not_in(service_id, discovered.tool_names)
            result.removed_tools.extend(f"{service_name}.{name}" for name in removed)

        result.services.append(
            SyncedService(
                id=service_id,
                name=service_name,
                endpoint=discovered.endpoint,
                tool_count=synced,
                action=action,
            )
        )

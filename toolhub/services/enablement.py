"""
选择性启用 / 停用

管理员从比较报告中勾选服务与工具后调用 enable_selected：
只启用选中的工具，注册表中其它工具保持原样（不删除、不停用）。
disable 只修改启用标志，从不删除数据。
"""

from typing import Any, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.core.errors import (
    RegistryError,
    RegistryErrorType,
    ServiceSyncError,
    SyncInProgress,
    ToolSyncError,
    ValidationError,
)
from toolhub.core.locks import SyncLockManager, get_sync_lock_manager
from toolhub.schemas.catalog import DiscoveredService, ToolDescriptor
from toolhub.schemas.results import DisableResult, EnableResult
from toolhub.services.registry_store import RegistryStore

logger = structlog.get_logger(__name__)

# 启用时只刷新这两个远端字段；选择中没有 schema 时只刷新描述
ENABLE_REFRESH_FIELDS = ("description", "input_schema")


def _error_message(error: Exception) -> str:
    return error.message if isinstance(error, RegistryError) else str(error)


def _refresh_fields(descriptor: ToolDescriptor) -> Tuple[str, ...]:
    if descriptor.input_schema is None:
        return tuple(f for f in ENABLE_REFRESH_FIELDS if f != "input_schema")
    return ENABLE_REFRESH_FIELDS


def validate_id_list(ids: Optional[Sequence[Any]], label: str) -> List[int]:
    """id 列表必须是正整数；None 视为空"""
    if ids is None:
        return []
    if isinstance(ids, (str, bytes)) or not isinstance(ids, (list, tuple, set)):
        raise ValidationError(f"{label} 必須是陣列", details={"field": label})

    result: List[int] = []
    for value in ids:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(f"{label} 包含無效的 ID: {value!r}", details={"field": label})
        if value not in result:
            result.append(value)
    return result


class McpEnablementService:
    """选择性启用服务"""

    def __init__(self, db: AsyncSession, lock_manager: Optional[SyncLockManager] = None):
        self.store = RegistryStore(db)
        self.lock_manager = lock_manager or get_sync_lock_manager()

    async def enable_selected(self, selections: Sequence[DiscoveredService]) -> EnableResult:
        """
        启用选中的服务与工具

        服务按 endpoint_url upsert 并强制启用；工具按 (service_id, name) upsert
        并强制启用，刷新描述与 schema。单项失败记录到 errors，不影响其它项。
        """
        if not selections:
            raise ValidationError("請選擇要啟用的服務", details={"field": "services"})

        result = EnableResult(success=True, message="")

        try:
            async with self.lock_manager.hold([s.endpoint for s in selections]):
                async with self.store.transaction():
                    for selection in selections:
                        await self._enable_service(selection, result)
        except SyncInProgress as e:
            logger.warning("mcp_enable_locked", error=e.message)
            return EnableResult(
                success=False,
                message=e.message,
                errors=[str(e)],
                error_type=e.error_type.value,
            )
        except Exception as e:
            logger.exception("mcp_enable_failed")
            return EnableResult(
                success=False,
                message=f"啟用服務失敗: {_error_message(e)}",
                errors=[_error_message(e)],
                error_type=RegistryErrorType.SYNC_FAILED.value,
            )

        result.message = (
            f"成功啟用 {len(result.enabled_services)} 個服務和 {len(result.enabled_tools)} 個工具"
        )
        logger.info(
            "mcp_enable_completed",
            services=len(result.enabled_services),
            tools=len(result.enabled_tools),
            errors=len(result.errors),
        )
        return result

    async def _enable_service(self, selection: DiscoveredService, result: EnableResult) -> None:
        try:
            async with self.store.savepoint():
                service, action = await self.store.upsert_service(
                    name=selection.name,
                    endpoint_url=selection.endpoint,
                    description=selection.description,
                    activate=True,
                )
        except (RegistryError, SQLAlchemyError) as e:
            error = ServiceSyncError(
                f"服務 {selection.name} 啟用失敗: {_error_message(e)}",
                details={"endpoint": selection.endpoint},
            )
            logger.warning("service_enable_failed", endpoint=selection.endpoint, error=error.message)
            result.errors.append(str(error))
            return

        service_id = service.id
        result.enabled_services.append({"id": service_id, "name": selection.name, "action": action})

        for descriptor in selection.tools:
            try:
                async with self.store.savepoint():
                    tool, tool_action = await self.store.upsert_tool(
                        service_id,
                        descriptor,
                        force_enabled=True,
                        fields=_refresh_fields(descriptor),
                    )
            except (RegistryError, SQLAlchemyError) as e:
                error = ToolSyncError(
                    f"工具 {descriptor.name} 啟用失敗: {_error_message(e)}",
                    details={"service": selection.name, "tool": descriptor.name},
                )
                logger.warning("tool_enable_failed", tool=descriptor.name, error=error.message)
                result.errors.append(str(error))
                continue

            result.enabled_tools.append(
                {
                    "id": tool.id,
                    "service": selection.name,
                    "name": descriptor.name,
                    "description": descriptor.description,
                    "action": tool_action,
                }
            )

    async def disable(
        self,
        service_ids: Optional[Sequence[Any]] = None,
        tool_ids: Optional[Sequence[Any]] = None,
    ) -> DisableResult:
        """
        停用服务或工具（批量 UPDATE，不删除）

        Raises:
            ValidationError: 两个列表都为空或包含无效 id
        """
        services = validate_id_list(service_ids, "service_ids")
        tools = validate_id_list(tool_ids, "tool_ids")
        if not services and not tools:
            raise ValidationError("請提供要停用的服務或工具 ID")

        async with self.store.transaction():
            await self.store.batch_update_service_activation(services, is_active=False)
            await self.store.batch_update_tool_enablement(tools, is_enabled=False)

        logger.info("mcp_disable_completed", services=services, tools=tools)
        return DisableResult(
            success=True,
            message=f"成功停用 {len(services)} 個服務和 {len(tools)} 個工具",
            disabled_services=services,
            disabled_tools=tools,
        )

"""
API 依赖注入
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.core.locks import SyncLockManager, get_sync_lock_manager
from toolhub.database.engine import get_db
from toolhub.services.admin import McpRegistryAdmin
from toolhub.services.discovery import McpDiscoveryClient, get_discovery_client
from toolhub.services.name_resolver import ToolNameResolver, get_tool_name_resolver
from toolhub.services.registry_store import RegistryStore

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_registry_store(db: DbSession) -> RegistryStore:
    return RegistryStore(db)


def get_registry_admin(
    db: DbSession,
    discovery_client: Annotated[McpDiscoveryClient, Depends(get_discovery_client)],
    lock_manager: Annotated[SyncLockManager, Depends(get_sync_lock_manager)],
    name_resolver: Annotated[ToolNameResolver, Depends(get_tool_name_resolver)],
) -> McpRegistryAdmin:
    return McpRegistryAdmin(
        db,
        discovery_client=discovery_client,
        lock_manager=lock_manager,
        name_resolver=name_resolver,
    )


Store = Annotated[RegistryStore, Depends(get_registry_store)]
Admin = Annotated[McpRegistryAdmin, Depends(get_registry_admin)]

"""
发现结果与注册表比较

纯函数，不做任何 I/O：注册表快照由 RegistryStore.load_snapshot() 提供。
服务按 endpoint_url 精确匹配（末尾斜杠不同视为不同服务）。
"""

from typing import List

from toolhub.schemas.catalog import DiscoveredCatalog, DiscoveredService, ToolDescriptor
from toolhub.schemas.results import (
    ComparedService,
    ComparedTool,
    ComparisonReport,
    ComparisonStats,
)
from toolhub.services.registry_store import RegistrySnapshot, SnapshotService


def _compared_tool(tool: ToolDescriptor, enabled: bool, is_new: bool) -> ComparedTool:
    return ComparedTool(
        name=tool.name,
        display_name=tool.display_name,
        description=tool.description,
        enabled=enabled,
        is_new=is_new,
        version=tool.version,
        input_schema=tool.input_schema,
        cacheable=tool.cacheable,
        cache_ttl=tool.cache_ttl,
    )


def _compare_new(discovered: DiscoveredService) -> ComparedService:
    return ComparedService(
        module_key=discovered.module_key,
        name=discovered.name,
        endpoint=discovered.endpoint,
        description=discovered.description,
        tools=[_compared_tool(t, enabled=False, is_new=True) for t in discovered.tools],
        is_new=True,
        enabled=False,
        new_tools=discovered.tool_names,
    )


def _compare_existing(discovered: DiscoveredService, existing: SnapshotService) -> ComparedService:
    registered = existing.tools
    discovered_names = discovered.tool_names
    discovered_set = set(discovered_names)

    tools = [
        _compared_tool(t, enabled=registered.get(t.name, False), is_new=t.name not in registered)
        for t in discovered.tools
    ]

    return ComparedService(
        module_key=discovered.module_key,
        name=discovered.name,
        endpoint=discovered.endpoint,
        description=discovered.description,
        tools=tools,
        is_new=False,
        enabled=existing.is_active,
        existing_id=existing.id,
        new_tools=[name for name in discovered_names if name not in registered],
        removed_tools=sorted(name for name in registered if name not in discovered_set),
        enabled_tools_count=sum(1 for t in tools if t.enabled),
    )


class CatalogComparator:
    """目录比较器"""

    def compare(self, catalog: DiscoveredCatalog, snapshot: RegistrySnapshot) -> ComparisonReport:
        services: List[ComparedService] = []
        for discovered in catalog.services:
            existing = snapshot.find(discovered.endpoint)
            if existing is None:
                services.append(_compare_new(discovered))
            else:
                services.append(_compare_existing(discovered, existing))

        stats = ComparisonStats(
            total=len(services),
            enabled=sum(1 for s in services if s.enabled),
            new=sum(1 for s in services if s.is_new),
            total_tools=sum(len(s.tools) for s in services),
            enabled_tools=sum(s.enabled_tools_count for s in services),
            new_tools=sum(s.new_tools_count for s in services),
        )

        return ComparisonReport(
            success=True,
            message=f"比較完成，共 {stats.total} 個服務，其中 {stats.new} 個為新服務",
            services=services,
            stats=stats,
            server_info=catalog.server_info,
        )

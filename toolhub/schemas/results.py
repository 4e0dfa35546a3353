"""
管理操作结果

管理端调用方总是拿到带 success 标志、计数与 errors 列表的结果对象，
不会收到裸异常。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from toolhub.core.errors import RegistryError
from toolhub.schemas.catalog import DiscoveredCatalog, ServerInfo


@dataclass
class DiscoveryResult:
    """发现结果"""

    success: bool
    message: str
    catalog: Optional[DiscoveredCatalog] = None
    error_type: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, catalog: DiscoveredCatalog) -> "DiscoveryResult":
        return cls(
            success=True,
            message=f"探索完成，發現 {len(catalog.services)} 個服務",
            catalog=catalog,
        )

    @classmethod
    def failed(cls, error: RegistryError) -> "DiscoveryResult":
        return cls(
            success=False,
            message=error.message,
            error_type=error.error_type.value,
            error=str(error),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.catalog is not None:
            data["data"] = self.catalog.to_dict()
        if not self.success:
            data["error_type"] = self.error_type
            data["error"] = self.error
        return data


@dataclass
class ComparedTool:
    """比较后的工具"""

    name: str
    display_name: str
    description: str
    enabled: bool = False
    is_new: bool = True
    version: str = "1.0.0"
    input_schema: Any = field(default_factory=dict)
    cacheable: bool = False
    cache_ttl: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "version": self.version,
            "schema": self.input_schema,
            "cacheable": self.cacheable,
            "cache_ttl": self.cache_ttl,
            "enabled": self.enabled,
            "is_new": self.is_new,
        }


@dataclass
class ComparedService:
    """比较后的服务"""

    module_key: str
    name: str
    endpoint: str
    description: str
    tools: List[ComparedTool] = field(default_factory=list)
    is_new: bool = True
    enabled: bool = False
    existing_id: Optional[int] = None
    new_tools: List[str] = field(default_factory=list)
    removed_tools: List[str] = field(default_factory=list)
    enabled_tools_count: int = 0

    @property
    def new_tools_count(self) -> int:
        return len(self.new_tools)

    @property
    def status(self) -> str:
        return "new" if self.is_new else "existing"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_key": self.module_key,
            "name": self.name,
            "endpoint": self.endpoint,
            "description": self.description,
            "status": self.status,
            "is_new": self.is_new,
            "enabled": self.enabled,
            "existing_id": self.existing_id,
            "tools": [t.to_dict() for t in self.tools],
            "new_tools": self.new_tools,
            "removed_tools": self.removed_tools,
            "new_tools_count": self.new_tools_count,
            "enabled_tools_count": self.enabled_tools_count,
        }


@dataclass
class ComparisonStats:
    """同步前预览统计"""

    total: int = 0
    enabled: int = 0
    new: int = 0
    total_tools: int = 0
    enabled_tools: int = 0
    new_tools: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "enabled": self.enabled,
            "new": self.new,
            "total_tools": self.total_tools,
            "enabled_tools": self.enabled_tools,
            "new_tools": self.new_tools,
        }


@dataclass
class ComparisonReport:
    """比较报告"""

    success: bool
    message: str
    services: List[ComparedService] = field(default_factory=list)
    stats: ComparisonStats = field(default_factory=ComparisonStats)
    server_info: Optional[ServerInfo] = None
    error_type: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            data["data"] = {
                "services": [s.to_dict() for s in self.services],
                "stats": self.stats.to_dict(),
                "server_info": self.server_info.to_dict() if self.server_info else None,
            }
        else:
            data["error_type"] = self.error_type
            data["error"] = self.error
        return data


@dataclass
class SyncedService:
    id: int
    name: str
    endpoint: str
    tool_count: int
    action: str  # created / updated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "endpoint": self.endpoint,
            "tool_count": self.tool_count,
            "action": self.action,
        }


@dataclass
class SyncedTool:
    service: str
    name: str
    description: str
    action: str = "synced"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "name": self.name,
            "description": self.description,
            "action": self.action,
        }


@dataclass
class SyncResult:
    """完整同步结果"""

    success: bool
    message: str
    strategy: str = "replace"
    services: List[SyncedService] = field(default_factory=list)
    tools: List[SyncedTool] = field(default_factory=list)
    removed_tools: List[str] = field(default_factory=list)
    server_info: Optional[ServerInfo] = None
    errors: List[str] = field(default_factory=list)
    error_type: Optional[str] = None

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "services": len(self.services),
            "created_services": sum(1 for s in self.services if s.action == "created"),
            "updated_services": sum(1 for s in self.services if s.action == "updated"),
            "tools": len(self.tools),
            "removed_tools": len(self.removed_tools),
            "errors": len(self.errors),
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "counts": self.counts,
            "errors": self.errors,
        }
        if self.success:
            data["data"] = {
                "strategy": self.strategy,
                "services": [s.to_dict() for s in self.services],
                "tools": [t.to_dict() for t in self.tools],
                "removed_tools": self.removed_tools,
                "server_info": self.server_info.to_dict() if self.server_info else None,
            }
        else:
            data["error_type"] = self.error_type
        return data


@dataclass
class EnableResult:
    """选择性启用结果"""

    success: bool
    message: str
    enabled_services: List[Dict[str, Any]] = field(default_factory=list)
    enabled_tools: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "counts": {
                "services": len(self.enabled_services),
                "tools": len(self.enabled_tools),
                "errors": len(self.errors),
            },
            "errors": self.errors,
            "data": {
                "enabled_services": self.enabled_services,
                "enabled_tools": self.enabled_tools,
            },
        }
        if not self.success:
            data["error_type"] = self.error_type
        return data


@dataclass
class DisableResult:
    """停用结果"""

    success: bool
    message: str
    disabled_services: List[int] = field(default_factory=list)
    disabled_tools: List[int] = field(default_factory=list)
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "counts": {
                "services": len(self.disabled_services),
                "tools": len(self.disabled_tools),
            },
            "data": {
                "disabled_services": self.disabled_services,
                "disabled_tools": self.disabled_tools,
            },
        }
        if not self.success:
            data["error_type"] = self.error_type
        return data

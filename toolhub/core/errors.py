"""
注册表错误分类

- 清单级错误（连接拒绝、清单格式错误）在任何写入之前中止整个操作
- 单项错误（服务/工具同步失败）在单项边界捕获并累积到 errors
- ToolNotFound 是正常结果，不是系统故障
"""

from enum import Enum
from typing import Any, Dict, Optional


class RegistryErrorType(str, Enum):
    """注册表错误类型"""

    CONNECTION_REFUSED = "CONNECTION_REFUSED"    # MCP Server 未运行
    MALFORMED_MANIFEST = "MALFORMED_MANIFEST"    # 清单缺少 modules
    TIMEOUT = "TIMEOUT"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    SCHEMA_RESOLUTION_FAILED = "SCHEMA_RESOLUTION_FAILED"
    SERVICE_SYNC_ERROR = "SERVICE_SYNC_ERROR"
    TOOL_SYNC_ERROR = "TOOL_SYNC_ERROR"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    REGISTRY_CONSTRAINT_VIOLATION = "REGISTRY_CONSTRAINT_VIOLATION"
    NOT_FOUND = "NOT_FOUND"
    SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"
    SYNC_FAILED = "SYNC_FAILED"


class RegistryError(Exception):
    """注册表错误基类"""

    error_type: RegistryErrorType = RegistryErrorType.SYNC_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_type.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error_type": self.error_type.value,
            "message": self.message,
            "details": self.details,
        }


class ConnectionRefused(RegistryError):
    error_type = RegistryErrorType.CONNECTION_REFUSED


class MalformedManifest(RegistryError):
    error_type = RegistryErrorType.MALFORMED_MANIFEST


class DiscoveryTimeout(RegistryError):
    error_type = RegistryErrorType.TIMEOUT


class TransportError(RegistryError):
    error_type = RegistryErrorType.TRANSPORT_ERROR


class SchemaResolutionFailed(RegistryError):
    """非致命：记录警告后使用默认描述"""

    error_type = RegistryErrorType.SCHEMA_RESOLUTION_FAILED


class ServiceSyncError(RegistryError):
    error_type = RegistryErrorType.SERVICE_SYNC_ERROR


class ToolSyncError(RegistryError):
    error_type = RegistryErrorType.TOOL_SYNC_ERROR


class ToolNotFound(RegistryError):
    """调用时工具名称未命中"""

    error_type = RegistryErrorType.TOOL_NOT_FOUND

    def __init__(self, original_name: str, normalized_name: str):
        super().__init__(
            f'工具 "{original_name}" 不存在或已被停用',
            details={"original_name": original_name, "normalized_name": normalized_name},
        )
        self.original_name = original_name
        self.normalized_name = normalized_name


class ValidationError(RegistryError):
    error_type = RegistryErrorType.VALIDATION_ERROR


class RegistryConstraintViolation(RegistryError):
    """唯一性 / 外键约束冲突"""

    error_type = RegistryErrorType.REGISTRY_CONSTRAINT_VIOLATION


class NotFound(RegistryError):
    error_type = RegistryErrorType.NOT_FOUND


class SyncInProgress(RegistryError):
    error_type = RegistryErrorType.SYNC_IN_PROGRESS

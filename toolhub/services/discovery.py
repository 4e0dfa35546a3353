"""
MCP 服务发现

对 MCP Server 基础 URL 发起一次 GET，读取清单：

    {
      "version": "1.0.0",
      "toolsRegistered": 12,
      "modules": {
        "hr": {"endpoint": "/api/hr/:toolName", "description": "...", "tools": [...]}
      }
    }

每个模块转换为一个 DiscoveredService。tools 中的条目可以是完整工具对象（新格式），
也可以只是工具名称（旧格式，交给 SchemaResolver 查询）。
发现失败不会抛出异常，而是返回带 error_type 的 DiscoveryResult。
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from toolhub.core.config import settings
from toolhub.core.errors import (
    ConnectionRefused,
    DiscoveryTimeout,
    MalformedManifest,
    RegistryError,
    TransportError,
)
from toolhub.schemas.catalog import (
    DescribedTool,
    DiscoveredCatalog,
    DiscoveredService,
    NamedTool,
    ServerInfo,
    ToolDescriptor,
    ToolEntry,
    build_endpoint_url,
    service_description_for,
    service_name_for,
    tool_description_for,
)
from toolhub.schemas.results import DiscoveryResult
from toolhub.services.schema_resolver import SchemaResolver

logger = structlog.get_logger(__name__)


def parse_tool_entry(item: Any) -> Optional[ToolEntry]:
    """清单中的单个工具条目；无法识别时返回 None"""
    if isinstance(item, str) and item:
        return NamedTool(item)
    if isinstance(item, dict):
        name = item.get("name")
        if isinstance(name, str) and name:
            return DescribedTool(ToolDescriptor.from_payload(name, item))
    return None


def parse_tool_entries(raw_tools: Any) -> List[ToolEntry]:
    """tools 不是数组时视为空"""
    if not isinstance(raw_tools, list):
        return []

    entries: List[ToolEntry] = []
    for item in raw_tools:
        entry = parse_tool_entry(item)
        if entry is None:
            logger.warning("manifest_tool_entry_skipped", entry=repr(item)[:200])
            continue
        entries.append(entry)
    return entries


def extract_modules(payload: Any) -> Dict[str, Any]:
    """清单必须包含 modules 对象"""
    if not isinstance(payload, dict) or not isinstance(payload.get("modules"), dict):
        raise MalformedManifest("MCP Server 回應格式不正確或無模組資訊")
    return payload["modules"]


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class McpDiscoveryClient:
    """MCP 服务发现客户端"""

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        schema_resolver: Optional[SchemaResolver] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.MCP_DISCOVERY_TIMEOUT_SECONDS
        self.transport = transport
        self.schema_resolver = schema_resolver or SchemaResolver(transport=transport)

    async def discover(self, endpoint: Optional[str] = None) -> DiscoveryResult:
        """
        探索 MCP Server 上的所有服务

        Args:
            endpoint: MCP Server 基础 URL，未提供时使用 MCP_SERVER_URL

        Returns:
            DiscoveryResult
        """
        base_url = endpoint or settings.MCP_SERVER_URL
        log = logger.bind(server_url=base_url)
        log.info("mcp_discovery_started")

        try:
            payload = await self._fetch_manifest(base_url)
            catalog = await self._build_catalog(payload, base_url)
        except RegistryError as e:
            log.warning(
                "mcp_discovery_failed",
                error_type=e.error_type.value,
                error=e.message,
            )
            return DiscoveryResult.failed(e)

        log.info(
            "mcp_discovery_completed",
            services=len(catalog.services),
            tools=catalog.total_tools,
        )
        return DiscoveryResult.ok(catalog)

    async def _fetch_manifest(self, base_url: str) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(base_url)
                response.raise_for_status()
                return response.json()
        except httpx.ConnectError as e:
            raise ConnectionRefused(
                f"無法連接到 MCP Server ({base_url})，請確認服務是否運行",
                details={"url": base_url, "error": str(e)},
            ) from e
        except httpx.TimeoutException as e:
            raise DiscoveryTimeout(
                f"連接 MCP Server ({base_url}) 逾時",
                details={"url": base_url, "timeout": self.timeout},
            ) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"探索 MCP 服務失敗: HTTP {e.response.status_code}",
                details={"url": base_url, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"探索 MCP 服務失敗: {e}",
                details={"url": base_url},
            ) from e
        except ValueError as e:
            raise TransportError(
                "探索 MCP 服務失敗: 回應不是有效的 JSON",
                details={"url": base_url},
            ) from e

    async def _build_catalog(self, payload: Any, base_url: str) -> DiscoveredCatalog:
        modules = extract_modules(payload)

        services: List[DiscoveredService] = []
        for module_key, module_info in modules.items():
            if not isinstance(module_info, dict):
                logger.warning("manifest_module_invalid", module=module_key)
                module_info = {}

            tools = [
                await self._describe(entry, module_key, base_url)
                for entry in parse_tool_entries(module_info.get("tools"))
            ]

            services.append(
                DiscoveredService(
                    module_key=module_key,
                    name=service_name_for(module_key),
                    endpoint=build_endpoint_url(base_url, module_info.get("endpoint") or ""),
                    description=module_info.get("description") or service_description_for(module_key, len(tools)),
                    tools=tools,
                )
            )

        server_info = ServerInfo(
            url=base_url,
            version=payload.get("version"),
            tools_registered=_as_optional_int(payload.get("toolsRegistered")),
        )
        return DiscoveredCatalog(server_info=server_info, services=services)

    async def _describe(self, entry: ToolEntry, module_key: str, base_url: str) -> ToolDescriptor:
        if isinstance(entry, DescribedTool):
            descriptor = entry.descriptor
        else:
            descriptor = await self.schema_resolver.resolve(module_key, entry.name, base_url)

        if not descriptor.description:
            descriptor.description = tool_description_for(descriptor.name)
        return descriptor


def get_discovery_client() -> McpDiscoveryClient:
    return McpDiscoveryClient()

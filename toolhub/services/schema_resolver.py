"""
工具 Schema 解析

旧格式清单只给出工具名称，需要再向 MCP Server 查询工具描述。
依次探测候选端点，每个响应交给一组纯函数解析器，第一个命中的结果生效；
全部失败时返回默认描述，不会中止发现流程。
"""

from typing import Any, Callable, List, Optional, Tuple

import httpx
import structlog

from toolhub.core.config import settings
from toolhub.core.errors import SchemaResolutionFailed
from toolhub.schemas.catalog import ToolDescriptor

logger = structlog.get_logger(__name__)

ShapeParser = Callable[[Any, str], Optional[ToolDescriptor]]

# 查询端点返回的单个工具对象优先 schema
_SCHEMA_KEYS = ("schema", "input_schema", "inputSchema")


def parse_tools_array(payload: Any, tool_name: str) -> Optional[ToolDescriptor]:
    """{"module": "hr", "tools": [{"name": ...}, ...]}"""
    if not isinstance(payload, dict) or not isinstance(payload.get("tools"), list):
        return None
    for item in payload["tools"]:
        if isinstance(item, dict) and item.get("name") == tool_name:
            return ToolDescriptor.from_payload(tool_name, item)
    return None


def parse_keyed_map(payload: Any, tool_name: str) -> Optional[ToolDescriptor]:
    """{"<tool_name>": {...}}"""
    if not isinstance(payload, dict):
        return None
    item = payload.get(tool_name)
    if not isinstance(item, dict):
        return None
    return ToolDescriptor.from_payload(tool_name, item, schema_keys=_SCHEMA_KEYS)


def parse_single_tool(payload: Any, tool_name: str) -> Optional[ToolDescriptor]:
    """{"name": "<tool_name>", ...} 或 {"tool": "<tool_name>", ...}"""
    if not isinstance(payload, dict):
        return None
    if payload.get("name") != tool_name and payload.get("tool") != tool_name:
        return None
    return ToolDescriptor.from_payload(tool_name, payload, schema_keys=_SCHEMA_KEYS)


def parse_bare_schema(payload: Any, tool_name: str) -> Optional[ToolDescriptor]:
    """{"schema": {...}}，直接给出 schema 的对象"""
    if not isinstance(payload, dict):
        return None
    if not any(payload.get(key) for key in _SCHEMA_KEYS):
        return None
    return ToolDescriptor.from_payload(tool_name, payload, schema_keys=_SCHEMA_KEYS)


SHAPE_PARSERS: Tuple[ShapeParser, ...] = (
    parse_tools_array,
    parse_keyed_map,
    parse_single_tool,
    parse_bare_schema,
)


def parse_schema_payload(
    payload: Any,
    tool_name: str,
    parsers: Tuple[ShapeParser, ...] = SHAPE_PARSERS,
) -> Optional[ToolDescriptor]:
    """按顺序尝试所有解析器"""
    for parser in parsers:
        descriptor = parser(payload, tool_name)
        if descriptor is not None:
            return descriptor
    return None


def candidate_endpoints(base_url: str, module_key: str, tool_name: str) -> List[str]:
    return [
        f"{base_url}/api/{module_key}/tools",
        f"{base_url}/api/{module_key}/{tool_name}",
        f"{base_url}/tools/{tool_name}",
    ]


class SchemaResolver:
    """工具 Schema 解析器"""

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        parsers: Tuple[ShapeParser, ...] = SHAPE_PARSERS,
    ):
        self.timeout = timeout if timeout is not None else settings.MCP_SCHEMA_PROBE_TIMEOUT_SECONDS
        self.transport = transport
        self.parsers = parsers

    async def resolve(self, module_key: str, tool_name: str, base_url: str) -> ToolDescriptor:
        """
        解析单个工具的描述

        Args:
            module_key: 清单中的模块键
            tool_name: 工具名称
            base_url: MCP Server 基础 URL

        Returns:
            ToolDescriptor，所有探测失败时为默认描述
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for endpoint in candidate_endpoints(base_url, module_key, tool_name):
                try:
                    response = await client.get(endpoint)
                    response.raise_for_status()
                    payload = response.json()
                except (httpx.HTTPError, ValueError) as e:
                    logger.info(
                        "schema_probe_failed",
                        endpoint=endpoint,
                        tool=tool_name,
                        error=str(e),
                    )
                    continue

                descriptor = parse_schema_payload(payload, tool_name, self.parsers)
                if descriptor is not None:
                    return descriptor

        failure = SchemaResolutionFailed(
            f"無法取得工具 {tool_name} 的 schema，使用預設描述",
            details={"module": module_key, "tool": tool_name},
        )
        logger.warning(
            "schema_resolution_failed",
            module=module_key,
            tool=tool_name,
            error=str(failure),
        )
        return ToolDescriptor.default(tool_name)

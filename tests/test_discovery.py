"""
MCP 服务发现测试
"""

from typing import Any, Dict

import httpx
import pytest

from toolhub.schemas.catalog import DescribedTool, NamedTool, build_endpoint_url
from toolhub.services.discovery import McpDiscoveryClient, parse_tool_entries

from conftest import mock_transport


@pytest.mark.asyncio
async def test_discover_builds_catalog(discovery_client: McpDiscoveryClient):
    """清单中的模块按插入顺序转换为服务"""
    result = await discovery_client.discover("http://mcp.test")

    assert result.success is True
    catalog = result.catalog
    assert [s.module_key for s in catalog.services] == ["hr", "stats"]

    hr, stats = catalog.services
    assert hr.name == "Hr 服務"
    assert hr.endpoint == "http://mcp.test/api/hr"
    assert hr.description == "人資模組"
    assert hr.tool_names == ["get_employee", "list_departments"]

    employee = hr.tools[0]
    assert employee.version == "1.2.0"
    assert employee.cacheable is True
    assert employee.cache_ttl == 60
    assert employee.stats == {"calls": 10}
    assert employee.input_schema["required"] == ["employee_id"]

    # 模块没有描述时使用默认描述
    assert stats.description == "Stats 模組提供的 MCP 服務，包含 2 個工具"

    assert catalog.server_info.version == "2.1.0"
    assert catalog.server_info.tools_registered == 4
    assert catalog.server_info.url == "http://mcp.test"


@pytest.mark.asyncio
async def test_discover_resolves_legacy_tool_names(discovery_client: McpDiscoveryClient):
    """旧格式工具名通过 schema 端点补全描述"""
    result = await discovery_client.discover("http://mcp.test")

    stats = result.catalog.services[1]
    boxplot, ttest = stats.tools
    assert boxplot.input_schema["properties"] == {"data": {"type": "array"}}
    assert ttest.name == "perform_ttest"
    assert ttest.description == "T 檢定"
    assert ttest.input_schema["type"] == "object"


@pytest.mark.asyncio
async def test_discover_connection_refused():
    client = McpDiscoveryClient(transport=mock_transport({"/": httpx.ConnectError("refused")}))

    result = await client.discover("http://mcp.test")

    assert result.success is False
    assert result.error_type == "CONNECTION_REFUSED"
    assert "http://mcp.test" in result.message
    assert result.catalog is None


@pytest.mark.asyncio
async def test_discover_timeout():
    client = McpDiscoveryClient(transport=mock_transport({"/": httpx.ReadTimeout("slow")}))

    result = await client.discover("http://mcp.test")

    assert result.success is False
    assert result.error_type == "TIMEOUT"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"version": "1.0.0"},
        {"modules": ["hr", "stats"]},
        ["not", "an", "object"],
    ],
)
async def test_discover_malformed_manifest(payload: Any):
    client = McpDiscoveryClient(transport=mock_transport({"/": payload}))

    result = await client.discover("http://mcp.test")

    assert result.success is False
    assert result.error_type == "MALFORMED_MANIFEST"


@pytest.mark.asyncio
async def test_discover_http_error_is_transport_error():
    client = McpDiscoveryClient(transport=mock_transport({"/": httpx.Response(503, text="down")}))

    result = await client.discover("http://mcp.test")

    assert result.success is False
    assert result.error_type == "TRANSPORT_ERROR"


@pytest.mark.asyncio
async def test_discover_non_json_body_is_transport_error():
    client = McpDiscoveryClient(transport=mock_transport({"/": httpx.Response(200, text="<html>")}))

    result = await client.discover("http://mcp.test")

    assert result.error_type == "TRANSPORT_ERROR"


@pytest.mark.asyncio
async def test_discover_tolerates_odd_modules():
    """tools 不是数组视为空；无法识别的条目跳过"""
    manifest: Dict[str, Any] = {
        "modules": {
            "empty": {"endpoint": "/api/empty/:toolName", "tools": "oops"},
            "mixed": {"endpoint": "/api/mixed", "tools": [42, {"description": "no name"}, {"name": "ok"}]},
        }
    }
    client = McpDiscoveryClient(transport=mock_transport({"/": manifest}))

    result = await client.discover("http://mcp.test")

    assert result.success is True
    empty, mixed = result.catalog.services
    assert empty.tools == []
    assert empty.endpoint == "http://mcp.test/api/empty"
    assert mixed.tool_names == ["ok"]
    # 没有描述的工具使用默认描述
    assert mixed.tools[0].description == "Ok 工具"
    assert result.catalog.server_info.version is None


@pytest.mark.asyncio
async def test_discover_result_to_dict(discovery_client: McpDiscoveryClient):
    data = (await discovery_client.discover("http://mcp.test")).to_dict()

    assert data["success"] is True
    assert data["data"]["services"][0]["tools"][0]["display_name"] == "Get Employee"
    assert data["data"]["server_info"]["tools_registered"] == 4


def test_parse_tool_entries_tagged_union():
    entries = parse_tool_entries(["legacy", {"name": "modern", "inputSchema": {"type": "object"}}, None])

    assert entries[0] == NamedTool("legacy")
    assert isinstance(entries[1], DescribedTool)
    assert entries[1].descriptor.input_schema == {"type": "object"}
    assert len(entries) == 2


@pytest.mark.parametrize(
    ("pattern", "expected"),
    [
        ("/api/hr/:toolName", "http://mcp.test/api/hr"),
        ("/api/hr/:tool_id/", "http://mcp.test/api/hr"),
        ("/api/hr", "http://mcp.test/api/hr"),
        ("", "http://mcp.test"),
    ],
)
def test_build_endpoint_url(pattern: str, expected: str):
    assert build_endpoint_url("http://mcp.test", pattern) == expected

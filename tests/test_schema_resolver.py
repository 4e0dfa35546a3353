"""
工具 Schema 解析测试
"""

import httpx
import pytest
from structlog.testing import capture_logs

from toolhub.services.schema_resolver import (
    SchemaResolver,
    candidate_endpoints,
    parse_bare_schema,
    parse_keyed_map,
    parse_schema_payload,
    parse_single_tool,
    parse_tools_array,
)

from conftest import mock_transport

SCHEMA = {"type": "object", "properties": {"x": {"type": "number"}}}


def test_parse_tools_array():
    payload = {"tools": [{"name": "other"}, {"name": "mean", "description": "平均值", "inputSchema": SCHEMA}]}
    descriptor = parse_tools_array(payload, "mean")
    assert descriptor.description == "平均值"
    assert descriptor.input_schema == SCHEMA
    assert parse_tools_array(payload, "median") is None


def test_parse_keyed_map():
    payload = {"mean": {"description": "平均值", "input_schema": SCHEMA, "cacheable": True, "cacheTTL": "30"}}
    descriptor = parse_keyed_map(payload, "mean")
    assert descriptor.input_schema == SCHEMA
    assert descriptor.cacheable is True
    assert descriptor.cache_ttl == 30


def test_parse_single_tool_by_name_or_tool_field():
    assert parse_single_tool({"name": "mean", "schema": SCHEMA}, "mean").input_schema == SCHEMA
    assert parse_single_tool({"tool": "mean", "schema": SCHEMA}, "mean").input_schema == SCHEMA
    assert parse_single_tool({"name": "median"}, "mean") is None


def test_parse_bare_schema():
    descriptor = parse_bare_schema({"schema": SCHEMA, "description": "d"}, "mean")
    assert descriptor.name == "mean"
    assert descriptor.description == "d"
    assert parse_bare_schema({"description": "only text"}, "mean") is None


def test_schema_key_precedence():
    """tools 数组优先 inputSchema，其它形态优先 schema"""
    other = {"type": "string"}

    item = {"name": "mean", "inputSchema": SCHEMA, "schema": other}
    assert parse_tools_array({"tools": [item]}, "mean").input_schema == SCHEMA
    assert parse_single_tool(item, "mean").input_schema == other
    assert parse_keyed_map({"mean": {"inputSchema": SCHEMA, "input_schema": other}}, "mean").input_schema == other
    assert parse_bare_schema({"inputSchema": SCHEMA, "schema": other}, "mean").input_schema == other


def test_parsers_reject_non_objects():
    assert parse_schema_payload(["mean"], "mean") is None
    assert parse_schema_payload("mean", "mean") is None


def test_candidate_endpoints_order():
    assert candidate_endpoints("http://mcp.test", "stats", "mean") == [
        "http://mcp.test/api/stats/tools",
        "http://mcp.test/api/stats/mean",
        "http://mcp.test/tools/mean",
    ]


@pytest.mark.asyncio
async def test_resolve_falls_through_failed_probes():
    """前两个端点失败时使用第三个端点的结果"""
    routes = {
        "/api/stats/tools": httpx.Response(500, text="boom"),
        "/api/stats/mean": httpx.ConnectError("refused"),
        "/tools/mean": {"tool": "mean", "description": "平均值", "schema": SCHEMA},
    }
    resolver = SchemaResolver(transport=mock_transport(routes))

    with capture_logs() as logs:
        descriptor = await resolver.resolve("stats", "mean", "http://mcp.test")

    assert descriptor.description == "平均值"
    assert descriptor.input_schema == SCHEMA
    assert len([log for log in logs if log["event"] == "schema_probe_failed"]) == 2


@pytest.mark.asyncio
async def test_resolve_skips_unrecognized_shapes():
    routes = {
        "/api/stats/tools": {"tools": [{"name": "median"}]},
        "/api/stats/mean": {"name": "mean", "description": "平均值"},
    }
    resolver = SchemaResolver(transport=mock_transport(routes))

    descriptor = await resolver.resolve("stats", "mean", "http://mcp.test")
    assert descriptor.description == "平均值"


@pytest.mark.asyncio
async def test_resolve_returns_default_when_all_probes_fail():
    resolver = SchemaResolver(transport=mock_transport({}))

    with capture_logs() as logs:
        descriptor = await resolver.resolve("stats", "perform_ttest", "http://mcp.test")

    assert descriptor.name == "perform_ttest"
    assert descriptor.description == "Perform Ttest 工具"
    assert descriptor.input_schema == {}
    assert descriptor.version == "1.0.0"
    assert descriptor.cacheable is False
    assert descriptor.cache_ttl == 0
    assert any(log["event"] == "schema_resolution_failed" for log in logs)

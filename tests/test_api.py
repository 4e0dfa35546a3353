"""
MCP 管理 API 测试
"""

from typing import Any, Dict

import httpx
import pytest
from httpx import AsyncClient

from toolhub.main import app
from toolhub.services.name_resolver import ToolNameResolver, get_tool_name_resolver


async def _sync(client: AsyncClient) -> Dict[str, Any]:
    response = await client.post("/api/v1/mcp/sync", json={"endpoint": "http://mcp.test"})
    assert response.status_code == 200
    return response.json()


async def _service_id(client: AsyncClient, endpoint: str) -> int:
    response = await client.get("/api/v1/mcp/services")
    return next(s["id"] for s in response.json()["data"] if s["endpoint_url"] == endpoint)


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["service"] == "toolhub"


@pytest.mark.asyncio
async def test_discover(client: AsyncClient):
    response = await client.get("/api/v1/mcp/discover", params={"endpoint": "http://mcp.test"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert [s["module_key"] for s in data["data"]["services"]] == ["hr", "stats"]


@pytest.mark.asyncio
async def test_discover_failure_is_structured(client: AsyncClient, mcp_routes: Dict[str, Any]):
    """发现失败仍返回 200 与 error_type"""
    mcp_routes["/"] = httpx.ConnectError("refused")

    response = await client.get("/api/v1/mcp/discover", params={"endpoint": "http://mcp.test"})

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error_type"] == "CONNECTION_REFUSED"


@pytest.mark.asyncio
async def test_compare_before_and_after_sync(client: AsyncClient):
    before = (await client.get("/api/v1/mcp/compare", params={"endpoint": "http://mcp.test"})).json()
    assert before["data"]["stats"]["new"] == 2

    await _sync(client)

    after = (await client.get("/api/v1/mcp/compare", params={"endpoint": "http://mcp.test"})).json()
    assert after["data"]["stats"]["new"] == 0
    assert after["data"]["stats"]["enabled_tools"] == 4
    assert all(s["status"] == "existing" for s in after["data"]["services"])


@pytest.mark.asyncio
async def test_sync_and_status(client: AsyncClient):
    data = await _sync(client)

    assert data["success"] is True
    assert data["counts"]["services"] == 2
    assert data["counts"]["tools"] == 4

    status = (await client.get("/api/v1/mcp/sync/status")).json()["data"]
    assert status["services"] == {"total": 2, "active": 2}
    assert status["tools"] == {"total": 4, "enabled": 4}
    assert status["strategy"] == "replace"


@pytest.mark.asyncio
async def test_enable_and_disable(client: AsyncClient):
    response = await client.post(
        "/api/v1/mcp/enable",
        json={
            "services": [
                {
                    "name": "Hr 服務",
                    "endpoint": "http://mcp.test/api/hr",
                    "tools": [{"name": "get_employee", "inputSchema": {"type": "object"}}],
                }
            ]
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["counts"] == {"services": 1, "tools": 1, "errors": 0}

    service_id = data["data"]["enabled_services"][0]["id"]
    tool_id = data["data"]["enabled_tools"][0]["id"]

    response = await client.post(
        "/api/v1/mcp/disable", json={"service_ids": [service_id], "tool_ids": [tool_id]}
    )
    assert response.status_code == 200
    assert response.json()["data"] == {"disabled_services": [service_id], "disabled_tools": [tool_id]}

    tools = (await client.get("/api/v1/mcp/tools/enabled")).json()
    assert tools["total"] == 0


@pytest.mark.asyncio
async def test_disable_validation_error(client: AsyncClient):
    response = await client.post("/api/v1/mcp/disable", json={})

    assert response.status_code == 422
    assert response.json()["error_type"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_service_crud(client: AsyncClient):
    response = await client.post(
        "/api/v1/mcp/services",
        json={"name": "手動服務", "endpoint_url": "http://manual.test/api/x", "owner": "admin"},
    )
    assert response.status_code == 201
    service_id = response.json()["data"]["id"]

    duplicate = await client.post(
        "/api/v1/mcp/services",
        json={"name": "重複", "endpoint_url": "http://manual.test/api/x"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error_type"] == "REGISTRY_CONSTRAINT_VIOLATION"

    toggled = await client.patch(f"/api/v1/mcp/services/{service_id}/toggle", json={"is_active": False})
    assert toggled.json()["data"]["is_active"] is False

    updated = await client.patch(f"/api/v1/mcp/services/{service_id}", json={"description": "說明"})
    assert updated.json()["data"]["description"] == "說明"

    detail = await client.get(f"/api/v1/mcp/services/{service_id}")
    assert detail.json()["data"]["tools"] == []

    stats = (await client.get("/api/v1/mcp/services/stats")).json()["data"]
    assert stats["total_services"] == 1

    assert (await client.delete(f"/api/v1/mcp/services/{service_id}")).status_code == 200
    assert (await client.get(f"/api/v1/mcp/services/{service_id}")).status_code == 404
    assert (await client.delete(f"/api/v1/mcp/services/{service_id}")).status_code == 404

    # 永久删除对软删除的服务同样有效
    assert (await client.delete(f"/api/v1/mcp/services/{service_id}/permanent")).status_code == 200
    assert (await client.delete(f"/api/v1/mcp/services/{service_id}/permanent")).status_code == 404


@pytest.mark.asyncio
async def test_synced_services_and_batch_delete(client: AsyncClient):
    await _sync(client)

    synced = (await client.get("/api/v1/mcp/services/synced")).json()
    assert synced["total"] == 2
    assert len(synced["data"][0]["tools"]) == 2

    ids = [s["id"] for s in synced["data"]]
    response = await client.post("/api/v1/mcp/services/batch-delete", json={"service_ids": ids})
    assert len(response.json()["data"]["deleted_services"]) == 2

    assert (await client.get("/api/v1/mcp/tools")).json()["total"] == 0


@pytest.mark.asyncio
async def test_tool_management(client: AsyncClient):
    await _sync(client)
    service_id = await _service_id(client, "http://mcp.test/api/hr")

    created = await client.post(
        "/api/v1/mcp/tools",
        json={"service_id": service_id, "name": "fire_employee", "priority": 2},
    )
    assert created.status_code == 201
    tool_id = created.json()["data"]["id"]

    collision = await client.post("/api/v1/mcp/tools", json={"service_id": service_id, "name": "Fire-Employee"})
    assert collision.status_code == 409

    patched = await client.patch(f"/api/v1/mcp/tools/{tool_id}", json={"description": "解僱員工"})
    assert patched.json()["data"]["description"] == "解僱員工"

    listed = (await client.get("/api/v1/mcp/tools", params={"service_id": service_id})).json()
    assert listed["data"][0]["name"] == "fire_employee"

    batch = await client.post("/api/v1/mcp/tools/batch-status", json={"tool_ids": [tool_id], "is_enabled": False})
    assert batch.json()["data"]["updated"] == 1

    assert (await client.delete(f"/api/v1/mcp/tools/{tool_id}")).status_code == 200
    assert (await client.delete(f"/api/v1/mcp/tools/{tool_id}")).status_code == 404
    assert (await client.patch(f"/api/v1/mcp/tools/{tool_id}", json={"priority": 3})).status_code == 404


@pytest.mark.asyncio
async def test_resolve_and_usage(client: AsyncClient):
    await _sync(client)

    response = await client.post("/api/v1/mcp/tools/resolve", json={"name": "ns.create-box-plot"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "create_boxplot"
    assert data["normalized_name"] == "create_boxplot"
    assert data["service_name"] == "Stats 服務"

    assert (await client.post(f"/api/v1/mcp/tools/{data['id']}/usage")).status_code == 200
    top = (await client.get("/api/v1/mcp/tools/top", params={"limit": 1})).json()["data"]
    assert top[0]["name"] == "create_boxplot"
    assert top[0]["usage_count"] == 1


@pytest.mark.asyncio
async def test_resolve_unknown_tool(client: AsyncClient):
    await _sync(client)

    response = await client.post("/api/v1/mcp/tools/resolve", json={"name": "nonexistent_tool"})

    assert response.status_code == 404
    body = response.json()
    assert body["error_type"] == "TOOL_NOT_FOUND"
    assert body["details"] == {"original_name": "nonexistent_tool", "normalized_name": "nonexistent_tool"}


@pytest.mark.asyncio
async def test_enable_from_compare_report_keeps_schema(client: AsyncClient):
    """比较报告中的服务直接提交启用，工具 schema 与缓存提示保持不变"""
    await _sync(client)
    hr_id = await _service_id(client, "http://mcp.test/api/hr")
    await client.post("/api/v1/mcp/disable", json={"service_ids": [hr_id]})

    report = (await client.get("/api/v1/mcp/compare", params={"endpoint": "http://mcp.test"})).json()
    hr = next(s for s in report["data"]["services"] if s["module_key"] == "hr")
    employee = next(t for t in hr["tools"] if t["name"] == "get_employee")
    assert employee["schema"]["required"] == ["employee_id"]
    assert employee["cache_ttl"] == 60

    response = await client.post("/api/v1/mcp/enable", json={"services": [hr]})
    assert response.json()["success"] is True

    tools = (await client.get("/api/v1/mcp/tools", params={"service_id": hr_id})).json()["data"]
    stored = next(t for t in tools if t["name"] == "get_employee")
    assert stored["input_schema"]["required"] == ["employee_id"]
    assert stored["cache_ttl"] == 60


@pytest.mark.asyncio
async def test_enable_without_schema_keeps_stored_schema(client: AsyncClient):
    await _sync(client)
    hr_id = await _service_id(client, "http://mcp.test/api/hr")

    response = await client.post(
        "/api/v1/mcp/enable",
        json={
            "services": [
                {
                    "name": "Hr 服務",
                    "endpoint": "http://mcp.test/api/hr",
                    "tools": [{"name": "get_employee", "description": "查詢員工（新）"}],
                }
            ]
        },
    )
    assert response.json()["data"]["enabled_tools"][0]["action"] == "updated"

    tools = (await client.get("/api/v1/mcp/tools", params={"service_id": hr_id})).json()["data"]
    stored = next(t for t in tools if t["name"] == "get_employee")
    assert stored["description"] == "查詢員工（新）"
    assert stored["input_schema"]["required"] == ["employee_id"]


@pytest.mark.asyncio
async def test_resolve_uses_injected_aliases(client: AsyncClient):
    """名称解析器通过依赖注入，可替换别名表"""
    await _sync(client)
    app.dependency_overrides[get_tool_name_resolver] = lambda: ToolNameResolver(aliases={"ttest": "perform_ttest"})

    response = await client.post("/api/v1/mcp/tools/resolve", json={"name": "stats.TTest"})

    assert response.status_code == 200
    assert response.json()["data"]["name"] == "perform_ttest"

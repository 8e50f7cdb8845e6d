from httpx import AsyncClient

from app.tests.fixtures_upstream import FakeUpstream


async def test_health(client: AsyncClient, upstream: FakeUpstream):
    response = await client.get("/-/health")

    assert response.status_code == 200
    assert response.json() == {"status": "pass", "registry_routes": 1, "api_routes": 1}
    assert upstream.requests == []

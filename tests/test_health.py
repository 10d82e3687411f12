"""Health endpoint behavior tests."""

import pytest
from httpx import AsyncClient

from tests.conftest import FakeCache


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "healthy", "cache": "healthy"}


@pytest.mark.asyncio
async def test_health_with_failing_cache(client: AsyncClient, api_cache: FakeCache) -> None:
    api_cache.fail = True

    response = await client.get("/health")

    assert response.json() == {"status": "healthy", "database": "healthy", "cache": "unhealthy"}

"""
Integration tests for the datastore clients with real PostgreSQL and Redis.

Tests cover:
- Pool creation, ping and pool statistics against PostgreSQL
- Redis connect/ping/close
- /health through the full application with live dependencies
- Degraded status when Redis is unreachable

These tests use testcontainers to spin up real PostgreSQL and Redis instances.
"""

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from api.src.config import Settings
from api.src.datastores import Cache, Database, DatastoreUnavailableError
from api.src.main import create_app
from containers import get_postgres_container, get_redis_container

pytestmark = pytest.mark.integration


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(scope="module")
def postgres():
    return get_postgres_container()


@pytest.fixture(scope="module")
def redis_server():
    return get_redis_container()


@pytest.fixture
def live_settings(postgres, redis_server) -> Settings:
    values = {
        "secret_key": "i" * 48,
        "environment": "test",
        "log_format": "text",
        "database_connect_retries": 5,
    }
    values.update(postgres.settings_env())
    values.update(redis_server.settings_env())
    return Settings(_env_file=None, **values)


# ============================================================================
# DATABASE
# ============================================================================


class TestDatabase:
    """Test the asyncpg pool wrapper"""

    @pytest.mark.asyncio
    async def test_connect_ping_close(self, live_settings):
        database = Database(live_settings)

        await database.connect()
        try:
            await database.ping()
            size, idle = database.pool_stats()
            assert size >= 1
            assert 0 <= idle <= size
        finally:
            await database.close()

        assert database.pool is None
        assert database.pool_stats() == (0, 0)

    @pytest.mark.asyncio
    async def test_ping_before_connect(self, live_settings):
        with pytest.raises(DatastoreUnavailableError):
            await Database(live_settings).ping()

    @pytest.mark.asyncio
    async def test_wrong_password_fails(self, live_settings):
        settings = live_settings.model_copy(update={"database_password": SecretStr("wrong")})

        with pytest.raises(Exception):
            await Database(settings).connect()


# ============================================================================
# CACHE
# ============================================================================


class TestCache:
    """Test the Redis client wrapper"""

    @pytest.mark.asyncio
    async def test_connect_ping_close(self, live_settings):
        cache = Cache(live_settings)

        await cache.connect()
        try:
            await cache.ping()
        finally:
            await cache.close()

        assert cache.client is None

    @pytest.mark.asyncio
    async def test_unreachable_cache_tolerated(self, live_settings):
        settings = live_settings.model_copy(update={"redis_port": 1, "health_check_timeout": 0.5})
        cache = Cache(settings)

        await cache.connect()
        try:
            with pytest.raises(Exception):
                await cache.ping()
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_unreachable_cache_fatal_when_required(self, live_settings):
        settings = live_settings.model_copy(
            update={"redis_port": 1, "health_check_timeout": 0.5, "cache_required": True}
        )
        cache = Cache(settings)

        try:
            with pytest.raises(Exception):
                await cache.connect()
        finally:
            await cache.close()


# ============================================================================
# APPLICATION
# ============================================================================


class TestHealthWithLiveDependencies:
    """Test /health against real datastores"""

    def test_healthy(self, live_settings):
        with TestClient(create_app(live_settings)) as client:
            response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert all(c["status"] == "healthy" for c in body["components"])

    def test_degraded_without_cache(self, live_settings):
        settings = live_settings.model_copy(update={"redis_port": 1, "health_check_timeout": 0.5})

        with TestClient(create_app(settings)) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

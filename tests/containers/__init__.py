"""Testcontainers for integration testing."""

from .datastores import (
    PostgresContainer,
    RedisContainer,
    get_postgres_container,
    get_redis_container,
)

__all__ = [
    "PostgresContainer",
    "RedisContainer",
    "get_postgres_container",
    "get_redis_container",
]

"""
Unit tests for the service's HTTP surface.

Uses FastAPI's TestClient with fake datastores to cover:
- Readiness (/health) status codes for healthy, degraded and unhealthy
- Liveness (/health/live)
- Prometheus metrics (/metrics)
- Middleware: correlation IDs, security headers, upload size limit,
  maintenance mode and rate limiting
- Lifespan connect/close of datastores
"""

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from api.src.dependencies import resolve_client_ip
from api.src.main import create_app
from conftest import FakeCache, FakeDatabase


def build_client(settings, database=None, cache=None):
    app = create_app(settings, database=database or FakeDatabase(), cache=cache or FakeCache())
    return app, TestClient(app)


# ============================================================================
# HEALTH
# ============================================================================


class TestReadiness:
    """Test the /health readiness route"""

    def test_healthy(self, settings):
        app, client = build_client(settings)
        with client:
            response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == settings.app_name
        assert body["environment"] == "test"
        assert {c["name"] for c in body["components"]} == {"database", "cache"}

    def test_database_down_is_unhealthy(self, settings):
        app, client = build_client(settings, database=FakeDatabase(healthy=False))
        with client:
            response = client.get("/health")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unhealthy"
        database = next(c for c in body["components"] if c["name"] == "database")
        assert database["error"] == "connection refused"

    def test_cache_down_is_degraded(self, settings):
        app, client = build_client(settings, cache=FakeCache(healthy=False))
        with client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_cache_down_is_unhealthy_when_required(self, settings):
        settings = settings.model_copy(update={"cache_required": True})
        app, client = build_client(settings, cache=FakeCache(healthy=False))
        with client:
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_liveness_ignores_dependencies(self, settings):
        app, client = build_client(settings, database=FakeDatabase(healthy=False))
        with client:
            response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["components"] == []


# ============================================================================
# METRICS
# ============================================================================


class TestMetricsRoute:
    """Test the /metrics route"""

    def test_metrics_exposed(self, settings):
        app, client = build_client(settings)
        with client:
            client.get("/health")
            response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        text = response.text
        assert "http_requests_total" in text
        assert 'dependency_up{component="database"} 1.0' in text
        assert "database_connections_active 4.0" in text

    def test_metrics_disabled(self, settings):
        settings = settings.model_copy(update={"metrics_enabled": False})
        app, client = build_client(settings)
        with client:
            response = client.get("/metrics")

        assert response.status_code == 404

    def test_apps_have_independent_registries(self, settings):
        first, _ = build_client(settings)
        second, _ = build_client(settings)
        assert first.state.metrics.registry is not second.state.metrics.registry


# ============================================================================
# MIDDLEWARE
# ============================================================================


class TestMiddleware:
    """Test cross-cutting middleware"""

    def test_correlation_id_echoed(self, settings):
        app, client = build_client(settings)
        with client:
            response = client.get("/health/live", headers={"X-Correlation-ID": "req-123"})

        assert response.headers["X-Correlation-ID"] == "req-123"

    def test_correlation_id_generated(self, settings):
        app, client = build_client(settings)
        with client:
            response = client.get("/health/live")

        assert len(response.headers["X-Correlation-ID"]) == 36

    def test_security_headers(self, settings):
        app, client = build_client(settings)
        with client:
            response = client.get("/health/live")

        assert response.headers["X-Frame-Options"] == "SAMEORIGIN"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "Strict-Transport-Security" not in response.headers

    def test_hsts_when_https_required(self, settings):
        settings = settings.model_copy(update={"security_require_https": True})
        app, client = build_client(settings)
        with client:
            response = client.get("/health/live")

        assert response.headers["Strict-Transport-Security"].startswith("max-age=")

    def test_oversized_body_rejected(self, settings):
        settings = settings.model_copy(update={"upload_max_size": 100})
        app, client = build_client(settings)
        with client:
            response = client.post("/uploads", content=b"x" * 101)

        assert response.status_code == 413

    def test_chunked_oversized_body_rejected(self, settings):
        settings = settings.model_copy(update={"upload_max_size": 10})
        app, client = build_client(settings)
        with client:
            response = client.post("/health/live", content=iter([b"x" * 500, b"x" * 500]))

        assert response.status_code == 413

    def test_chunked_body_within_limit_reaches_route(self, settings):
        settings = settings.model_copy(update={"upload_max_size": 100})
        app, client = build_client(settings)

        @app.post("/echo")
        async def echo(request: Request):
            return {"size": len(await request.body())}

        with client:
            response = client.post("/echo", content=iter([b"x" * 30, b"x" * 30]))

        assert response.status_code == 200
        assert response.json() == {"size": 60}

    def test_negative_content_length_rejected(self, settings):
        app, client = build_client(settings)
        with client:
            response = client.get("/health/live", headers={"Content-Length": "-1"})

        assert response.status_code == 400

    def test_maintenance_mode(self, settings):
        settings = settings.model_copy(update={"feature_maintenance_mode": True})
        app, client = build_client(settings)
        with client:
            blocked = client.get("/listings")
            health = client.get("/health")

        assert blocked.status_code == 503
        assert blocked.headers["Retry-After"] == "300"
        assert health.status_code == 200

    def test_rate_limit_exceeded(self, settings):
        settings = settings.model_copy(update={"rate_limit_requests": 2, "rate_limit_window": 60})
        app, client = build_client(settings)

        @app.get("/ping")
        async def ping():
            return {"pong": True}

        with client:
            statuses = [client.get("/ping").status_code for _ in range(3)]
            health = client.get("/health")

        assert statuses == [200, 200, 429]
        assert health.status_code == 200
        registry = app.state.metrics.registry
        assert registry.get_sample_value("http_rate_limited_total", {"endpoint": "/ping"}) == 1.0


# ============================================================================
# LIFESPAN
# ============================================================================


class TestLifespan:
    """Test datastore lifecycle"""

    def test_datastores_connected_and_closed(self, settings):
        database, cache = FakeDatabase(), FakeCache()
        app, client = build_client(settings, database=database, cache=cache)

        with client:
            assert database.connected
            assert cache.connected

        assert database.closed
        assert cache.closed

    def test_startup_failure_propagates(self, settings):
        class BrokenDatabase(FakeDatabase):
            async def connect(self):
                raise ConnectionError("database unreachable")

        app, client = build_client(settings, database=BrokenDatabase())

        with pytest.raises(ConnectionError):
            with client:
                pass


# ============================================================================
# DEPENDENCIES
# ============================================================================


def make_request(headers=None, client=("10.0.0.9", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestClientIp:
    """Test client address resolution behind the reverse proxy"""

    def test_forwarded_for_first_hop(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert resolve_client_ip(request) == "203.0.113.7"

    def test_real_ip_header(self):
        request = make_request({"X-Real-IP": "203.0.113.8"})
        assert resolve_client_ip(request) == "203.0.113.8"

    def test_socket_address(self):
        assert resolve_client_ip(make_request()) == "10.0.0.9"

    def test_no_client(self):
        assert resolve_client_ip(make_request(client=None)) == "unknown"

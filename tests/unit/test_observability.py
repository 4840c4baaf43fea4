"""
Unit tests for logging, metrics and tracing helpers.
"""

import json
import logging

import pytest
import structlog
from prometheus_client import generate_latest

from shared.logging import bind_context, clear_context, configure_logging, get_logger
from shared.metrics import DeploymentMetrics, ServiceMetrics, create_registry
from shared.tracing import trace_function


class TestStructuredLogging:
    """Test structlog configuration"""

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        clear_context()
        structlog.reset_defaults()

    def test_json_logs_written_to_file(self, tmp_path):
        log_file = tmp_path / "logs" / "crm.log"
        configure_logging(
            log_level="INFO",
            json_logs=True,
            service_name="crm-deploy",
            environment="staging",
            log_file=log_file,
        )

        get_logger("tests.observability").info("backup_created", backup="backup-1")
        for handler in logging.getLogger().handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["event"] == "backup_created"
        assert entry["backup"] == "backup-1"
        assert entry["level"] == "info"
        assert entry["environment"] == "staging"
        assert entry["service"] == "crm-deploy"

    def test_bound_context_included(self, tmp_path):
        log_file = tmp_path / "crm.log"
        configure_logging(json_logs=True, log_file=log_file)

        bind_context(correlation_id="abc-123")
        get_logger("tests.observability").warning("request_completed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["correlation_id"] == "abc-123"

    def test_level_filtering(self, tmp_path):
        log_file = tmp_path / "crm.log"
        configure_logging(log_level="WARNING", json_logs=True, log_file=log_file)

        get_logger("tests.observability").info("too_quiet")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "too_quiet" not in log_file.read_text()


class TestMetrics:
    """Test Prometheus helpers"""

    def test_registries_are_isolated(self):
        first = ServiceMetrics(create_registry(include_process=False))
        second = ServiceMetrics(create_registry(include_process=False))

        first.rate_limited_total.labels(endpoint="/ping").inc()

        assert first.registry.get_sample_value("http_rate_limited_total", {"endpoint": "/ping"}) == 1.0
        assert second.registry.get_sample_value("http_rate_limited_total", {"endpoint": "/ping"}) is None

    def test_exposition_format(self):
        metrics = ServiceMetrics(create_registry(include_process=False))
        metrics.dependency_up.labels(component="database").set(1)

        output = generate_latest(metrics.registry)

        assert b'dependency_up{component="database"} 1.0' in output

    def test_deployment_textfile(self, tmp_path):
        metrics = DeploymentMetrics(create_registry(include_process=False))
        metrics.steps_total.labels(step="backup", status="succeeded").inc()
        metrics.record_run(success=False)

        path = tmp_path / "textfile" / "crm_deploy.prom"
        metrics.write_textfile(path)

        text = path.read_text()
        assert 'crm_deploy_steps_total{status="succeeded",step="backup"} 1.0' in text
        assert "crm_deploy_last_run_success 0.0" in text


class TestTracing:
    """Test the tracing decorator without an exporter"""

    def test_sync_function_traced(self):
        @trace_function("deploy.step")
        def step(x):
            return x * 2

        assert step(21) == 42
        assert step.__name__ == "step"

    def test_exception_propagates(self):
        @trace_function()
        def failing():
            raise RuntimeError("step failed")

        with pytest.raises(RuntimeError, match="step failed"):
            failing()

    @pytest.mark.asyncio
    async def test_async_function_traced(self):
        @trace_function()
        async def ping():
            return "ok"

        assert await ping() == "ok"

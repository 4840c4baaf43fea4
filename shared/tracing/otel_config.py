"""OpenTelemetry configuration for distributed tracing.

Spans are exported over OTLP/HTTP to a collector.
"""

import functools
import inspect
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

F = TypeVar("F", bound=Callable[..., Any])


def configure_tracing(
    service_name: str,
    otlp_endpoint: str = "http://otel-collector:4318/v1/traces",
    sampling_rate: float = 0.1,
    service_version: str = "1.0.0",
) -> TracerProvider:
    """Configure OpenTelemetry tracing for the service.

    Args:
        service_name: Name of the service (e.g., "crm-api")
        otlp_endpoint: OTLP/HTTP traces endpoint of the collector
        sampling_rate: Sampling rate (0.0 to 1.0)
        service_version: Version reported on the resource

    Returns:
        Configured TracerProvider
    """
    resource = Resource(
        attributes={
            "service.name": service_name,
            "service.namespace": "real-estate-crm",
            "service.version": service_version,
        }
    )

    provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(sampling_rate)),
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))

    # Set as global tracer provider
    trace.set_tracer_provider(provider)

    return provider


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush pending spans and stop exporting (no-op when tracing is off)."""
    provider = trace.get_tracer_provider()
    if isinstance(provider, TracerProvider):
        provider.shutdown()


@contextmanager
def _traced(func: Callable[..., Any], span_name: Optional[str]) -> Iterator[Span]:
    tracer = get_tracer(func.__module__)
    with tracer.start_as_current_span(span_name or func.__name__) as span:
        span.set_attribute("code.function", func.__qualname__)
        span.set_attribute("code.namespace", func.__module__)
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
        span.set_status(Status(StatusCode.OK))


def trace_function(span_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator wrapping each call of a sync or async function in a span.

    Args:
        span_name: Span name (defaults to the function name)
    """

    def decorator(func: F) -> F:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with _traced(func, span_name):
                    return await func(*args, **kwargs)

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with _traced(func, span_name):
                return func(*args, **kwargs)

        return sync_wrapper  # type: ignore

    return decorator

"""
OpenTelemetry tracing for flow runs and tool service calls.
"""

import asyncio
import functools
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import NoOpTracer, Span, Status, StatusCode

from .logging import get_logger

logger = get_logger(__name__)


class TracingManager:
    """Owns the tracer provider and hands out spans."""

    def __init__(self, service_name: str = "toolflow", service_version: str = "0.1.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self.tracer: trace.Tracer = NoOpTracer()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, otlp_endpoint: str | None = None) -> None:
        """Install an SDK tracer provider, exporting over OTLP when an endpoint is given."""
        if self._initialized:
            return

        resource = Resource.create(
            {
                "service.name": self.service_name,
                "service.version": self.service_version,
            }
        )
        self.tracer_provider = TracerProvider(resource=resource)

        if otlp_endpoint:
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            self.tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

        self.tracer = self.tracer_provider.get_tracer(self.service_name, self.service_version)
        self._initialized = True
        logger.info("Tracing initialized", service=self.service_name, otlp=bool(otlp_endpoint))

    @contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None):
        """Context manager for a span that records exceptions."""
        span: Span = self.tracer.start_span(name)
        for key, value in (attributes or {}).items():
            span.set_attribute(key, str(value))
        try:
            with trace.use_span(
                span, end_on_exit=False, record_exception=False, set_status_on_exception=False
            ):
                yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        finally:
            span.end()

    def shutdown(self) -> None:
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self.tracer_provider = None
        self.tracer = NoOpTracer()
        self._initialized = False


_tracing_manager: TracingManager | None = None


def setup_tracing(
    service_name: str = "toolflow", otlp_endpoint: str | None = None
) -> TracingManager:
    """Install the global tracing manager."""
    global _tracing_manager
    if _tracing_manager is not None:
        _tracing_manager.shutdown()
    _tracing_manager = TracingManager(service_name=service_name)
    _tracing_manager.initialize(otlp_endpoint)
    return _tracing_manager


def get_tracing_manager() -> TracingManager:
    """Global tracing manager; spans are no-ops until setup_tracing() runs."""
    global _tracing_manager
    if _tracing_manager is None:
        _tracing_manager = TracingManager()
    return _tracing_manager


def reset_tracing() -> None:
    global _tracing_manager
    if _tracing_manager is not None:
        _tracing_manager.shutdown()
    _tracing_manager = None


def trace_span(name: str | None = None, attributes: dict[str, Any] | None = None):
    """Decorator that wraps a sync or async callable in a span."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        span_attributes = {
            "function.name": func.__name__,
            "function.module": func.__module__,
            **(attributes or {}),
        }

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes) as span:
                result = await func(*args, **kwargs)
                span.set_status(Status(StatusCode.OK))
                return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes) as span:
                result = func(*args, **kwargs)
                span.set_status(Status(StatusCode.OK))
                return result

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator


def add_span_attributes(**attributes):
    """Add attributes to the current span."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, str(value))


def add_span_event(name: str, attributes: dict[str, Any] | None = None):
    """Add an event to the current span."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        current_span.add_event(name, attributes or {})

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Span, Tracer

from salescrm.context import CORRELATION_HEADER, valid_correlation_id
from salescrm.core.config import Settings, get_settings
from salescrm.platform.security.context import ActingUser


_provider: TracerProvider | None = None
_exporters_attached = False


def _tracer_provider(settings: Settings) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(settings: Settings | None = None) -> TracerProvider | None:
    """Install the tracer provider and the exporters switched on in settings."""

    global _exporters_attached

    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(settings)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    _exporters_attached = True
    return provider


def attach_memory_exporter(settings: Settings | None = None) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(settings or get_settings()).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


@contextmanager
def actor_span(tracer: Tracer, name: str, actor: ActingUser, **attributes: Any) -> Iterator[Span]:
    """Span tagged with who is acting, so traces can be sliced by role and user."""

    with tracer.start_as_current_span(name) as span:
        span.set_attribute("crm.role", actor.role.value)
        span.set_attribute("crm.user_id", actor.user_id)
        if actor.correlation_id:
            span.set_attribute("correlation_id", actor.correlation_id)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"crm.{key}", value)
        yield span


def server_request_hook(span: Span | None, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    headers = dict(scope.get("headers", []))
    raw = headers.get(CORRELATION_HEADER.encode("latin-1"))
    correlation_id = valid_correlation_id(raw.decode("latin-1")) if raw else None
    if correlation_id:
        span.set_attribute("correlation_id", correlation_id)

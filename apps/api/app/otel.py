from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.context import get_correlation_id
from app.core.config import Settings, get_settings


_configured = False
_provider: TracerProvider | None = None


def _get_or_create_provider(service_name: str, service_version: str) -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    provider = TracerProvider(resource=Resource.create({"service.name": service_name, "service.version": service_version}))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def setup_otel(settings: Settings | None = None) -> TracerProvider | None:
    """Install the process tracer provider and its exporters once.

    OTLP export is enabled by ``OTEL_EXPORTER_OTLP_ENDPOINT``; console export by ``OTEL_CONSOLE_EXPORTER``.
    """
    global _configured

    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    provider = _get_or_create_provider(settings.otel_service_name, settings.app_version)
    if _configured:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _configured = True
    return provider


def setup_inmemory_otel(service_name: str = "opsdesk-api") -> InMemorySpanExporter:
    provider = _get_or_create_provider(service_name, get_settings().app_version)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str):
    return trace.get_tracer(name)


def set_common_attributes(span: Any, **attributes: Any) -> None:
    if span is None or not span.is_recording():
        return
    correlation_id = get_correlation_id()
    if correlation_id:
        span.set_attribute("correlation_id", correlation_id)
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(key, value if isinstance(value, (str, bool, int, float)) else str(value))


@contextmanager
def operation_span(name: str, **attributes: Any) -> Iterator[Any]:
    with get_tracer("app.operations").start_as_current_span(name) as span:
        set_common_attributes(span, **attributes)
        yield span


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None:
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("correlation_id", correlation_raw.decode("utf-8"))

    return server_request_hook

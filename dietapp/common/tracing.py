import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span
from opentelemetry.trace import TracerProvider as APITracerProvider

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)
_INSTRUMENTED_APPS: set[int] = set()
_HTTPX_INSTRUMENTED = False
_TRACER_NAME = "dietapp"


def _create_exporter(settings: ServiceSettings):
    if settings.tracing_endpoint is None:
        return None
    if settings.tracing_protocol == "grpc":
        return OTLPGrpcExporter(endpoint=settings.tracing_endpoint, insecure=settings.tracing_insecure)
    return OTLPHttpExporter(endpoint=settings.tracing_endpoint)


def _ensure_provider(settings: ServiceSettings) -> APITracerProvider:
    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        return current

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.app_name,
                "deployment.environment": settings.environment,
            }
        ),
        sampler=TraceIdRatioBased(settings.tracing_sample_rate),
    )
    exporter = _create_exporter(settings)
    if exporter is None:
        _LOGGER.warning(
            "Tracing is enabled for %s but no OTLP endpoint is configured; spans stay local.",
            settings.app_name,
        )
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    try:
        trace.set_tracer_provider(provider)
    except RuntimeError:  # pragma: no cover - provider initialised elsewhere first
        return trace.get_tracer_provider()
    return provider


def _instrument_httpx(provider: APITracerProvider) -> None:
    global _HTTPX_INSTRUMENTED
    if _HTTPX_INSTRUMENTED:
        return
    try:
        HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    except Exception as exc:  # pragma: no cover - instrumentation is best effort
        _LOGGER.warning("Failed to instrument httpx for tracing: %s", exc)
    else:
        _HTTPX_INSTRUMENTED = True


def configure_tracing(app: FastAPI, settings: ServiceSettings) -> None:
    """Configure OpenTelemetry tracing when enabled in settings."""

    if not settings.enable_tracing:
        return

    provider = _ensure_provider(settings)
    if id(app) not in _INSTRUMENTED_APPS:
        FastAPIInstrumentor().instrument_app(app, tracer_provider=provider)
        _INSTRUMENTED_APPS.add(id(app))
    _instrument_httpx(provider)


@contextmanager
def traced(name: str, **attributes: str | int | float | bool) -> Iterator[Span]:
    """Run a block inside a span of the dietapp tracer (no-op without a provider)."""

    tracer = trace.get_tracer(_TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span

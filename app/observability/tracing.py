"""
OpenTelemetry tracing for the form backend.

When tracing is enabled, spans go to an OTLP collector. The HTTP layer, the
database engines and the submission pipeline are traced.
"""

from typing import Any

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import settings


def setup_tracing(app: FastAPI) -> None:
    """Install the OTLP tracer provider and instrument ``app``; no-op when disabled."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": settings.service_name, "service.version": settings.api_version}
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    # The instrumentor hooks the sync engine behind the async facade
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """Set span attributes, skipping ``None`` and stringifying non-primitive values."""
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(
            key, value if isinstance(value, (str, int, float, bool)) else str(value)
        )


def set_span_error(span: Span, error: Exception) -> None:
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)

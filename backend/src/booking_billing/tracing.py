"""OpenTelemetry tracing for the API and the database layer."""
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from booking_billing.config import settings
from booking_billing.database import engine


def setup_tracing(app) -> None:  # noqa: ANN001
    """
    Export spans over OTLP/HTTP and instrument FastAPI and the async engine.

    Args:
        app: FastAPI application instance
    """
    resource = Resource(attributes={SERVICE_NAME: settings.otel_service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)
    # Async engines are instrumented through their sync core
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

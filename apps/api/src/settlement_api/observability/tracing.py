"""OpenTelemetry wiring for settlement spans and request tracing."""

from __future__ import annotations

from typing import Dict

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes

from settlement_api.core.settings import Settings

# Probes would otherwise dominate the trace volume.
_UNTRACED_URLS = "healthz,readyz"

_provider: TracerProvider | None = None


def parse_exporter_headers(raw: str | None) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for pair in (raw or "").split(","):
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def build_exporter(config: Settings) -> SpanExporter:
    if config.otel_exporter_endpoint:
        return OTLPSpanExporter(
            endpoint=config.otel_exporter_endpoint,
            headers=parse_exporter_headers(config.otel_exporter_headers) or None,
        )
    return ConsoleSpanExporter()


def get_tracer(name: str = "settlement_api") -> trace.Tracer:
    """Spans are no-ops until ``configure_tracing`` installs a provider."""

    return trace.get_tracer(name)


def configure_tracing(app: FastAPI, *, config: Settings, service_name: str, service_version: str) -> TracerProvider:
    """Install the tracer provider once per process and instrument ``app``."""

    global _provider

    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    ResourceAttributes.SERVICE_NAME: service_name,
                    ResourceAttributes.SERVICE_VERSION: service_version,
                    ResourceAttributes.DEPLOYMENT_ENVIRONMENT: config.environment,
                }
            ),
            sampler=ParentBased(TraceIdRatioBased(config.otel_sample_ratio)),
        )
        _provider.add_span_processor(BatchSpanProcessor(build_exporter(config)))
        trace.set_tracer_provider(_provider)
        LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider, excluded_urls=_UNTRACED_URLS)
    return _provider


__all__ = ["build_exporter", "configure_tracing", "get_tracer", "parse_exporter_headers"]

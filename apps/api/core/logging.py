"""Logging and tracing setup for the suite exchange API."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from apps.api.core.config import Settings

TRACER_NAME = "suite-exchange"

_active_provider: TracerProvider | None = None


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Split ``key=value,key2=value2`` into a header mapping, skipping junk pairs."""

    headers: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def logging_config(settings: Settings) -> dict[str, Any]:
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": settings.log_format}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "plain", "level": level},
        },
        "loggers": {
            # SQL statement logging follows the engine echo flag.
            "sqlalchemy.engine": {"level": logging.INFO if settings.database_echo else logging.WARNING},
            "apps.api.services": {"level": level},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the console handler and return the application logger."""

    config = logging_config(settings)
    dictConfig(config)
    logger = logging.getLogger(settings.app_name)
    logger.setLevel(config["root"]["level"])
    return logger


def get_tracer() -> trace.Tracer:
    """Tracer for marketplace operation spans; a no-op until ``init_tracer`` runs."""

    return trace.get_tracer(TRACER_NAME)


def init_tracer(settings: Settings) -> TracerProvider | None:
    global _active_provider

    if _active_provider is not None or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource(
            attributes={
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    exporter_options: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_otlp_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_options["headers"] = headers
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_options)))

    trace.set_tracer_provider(provider)
    _active_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and forget the provider so it can be re-initialised."""

    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None

"""Observability helpers: OpenTelemetry spans around retrieval, generation and rent analysis.

The tracer provider is configured once with a console exporter; deployments can
register a different provider/exporter before the first span is created.
Span bookkeeping errors are swallowed so tracing never breaks a request.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

_otel_inited: bool = False


def _init_otel() -> None:
    """Install a console-exporting tracer provider unless one was already set."""
    global _otel_inited
    if _otel_inited:
        return
    _otel_inited = True
    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        return
    tp = TracerProvider()
    tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    try:
        trace.set_tracer_provider(tp)
    except Exception as e:
        logger.debug("Tracer provider not installed: %s", e)


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """Run the enclosed block inside an OpenTelemetry span named `name`."""
    _init_otel()
    otel_span = None
    try:
        otel_span = trace.get_tracer("propdesk").start_span(name=name)
        for k, v in (attributes or {}).items():
            if v is not None:
                otel_span.set_attribute(k, v)
    except Exception as e:
        logger.debug("Could not start span %s: %s", name, e)
        otel_span = None
    try:
        yield otel_span
    finally:
        if otel_span is not None:
            try:
                otel_span.end()
            except Exception as e:
                logger.debug("Could not end span %s: %s", name, e)

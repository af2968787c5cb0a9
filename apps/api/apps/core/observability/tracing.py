"""
Tracing support through the OpenTelemetry API.

Without a configured SDK the API hands out non-recording spans, so
`trace_span` is safe to use everywhere; the log lines below keep the
span timings visible either way.
"""
import logging
import time
from contextlib import contextmanager
from typing import Optional, Dict, Any

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(__name__)

_SPAN_KINDS = {
    'server': SpanKind.SERVER,
    'client': SpanKind.CLIENT,
    'internal': SpanKind.INTERNAL,
}


@contextmanager
def trace_span(
    name: str,
    kind: Optional[str] = None,
    attributes: Optional[Dict[str, Any]] = None
):
    """
    Context manager for creating trace spans.

    Args:
        name: Span name
        kind: Span kind (server, client, internal)
        attributes: Span attributes

    Usage:
        with trace_span('reconcile_missing_invoices', attributes={'dry_run': False}):
            # ... operation ...
    """
    start_time = time.time()
    span_kind = _SPAN_KINDS.get(kind, SpanKind.INTERNAL)

    with tracer.start_as_current_span(
        name,
        kind=span_kind,
        attributes=attributes or {},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            logger.error(
                f'Span failed: {name}',
                extra={
                    'event': 'span_error',
                    'span_name': name,
                    'duration_ms': round(duration_ms, 2),
                    'error_type': e.__class__.__name__,
                }
            )
            raise
        else:
            logger.debug(
                f'Span completed: {name}',
                extra={
                    'event': 'span_complete',
                    'span_name': name,
                    'duration_ms': round((time.time() - start_time) * 1000, 2),
                }
            )


def add_span_attribute(key: str, value: Any):
    """Add attribute to current span if it is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)

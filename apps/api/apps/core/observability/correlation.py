"""
Request and job correlation.

HTTP requests get an X-Request-ID through the middleware. Management
commands and Celery tasks bind a run id with `correlation_context` so
every log line of one reconciliation pass can be grouped.
"""
import uuid
import time
import logging
from contextlib import contextmanager
from threading import local
from django.utils.deprecation import MiddlewareMixin

from .metrics import metrics

# Thread-local storage for request/job context
_request_context = local()

_CONTEXT_ATTRS = ('request_id', 'trace_id', 'span_id', 'user_id', 'user_roles')

logger = logging.getLogger(__name__)


def get_request_id():
    """Get current request (or job run) ID from thread-local storage."""
    return getattr(_request_context, 'request_id', None)


def get_trace_id():
    return getattr(_request_context, 'trace_id', None)


def get_user_id():
    return getattr(_request_context, 'user_id', None)


def get_user_roles():
    return getattr(_request_context, 'user_roles', [])


@contextmanager
def correlation_context(request_id=None, prefix=None):
    """
    Bind a correlation id for code running outside an HTTP request.

    Restores the previous context on exit so nested use (a task calling
    a command) keeps the outer id afterwards.

    Usage:
        with correlation_context(prefix='backfill') as run_id:
            InvoiceReconciler(store).reconcile()
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
        if prefix:
            request_id = f'{prefix}-{request_id}'

    previous = {
        attr: getattr(_request_context, attr)
        for attr in _CONTEXT_ATTRS
        if hasattr(_request_context, attr)
    }
    _request_context.request_id = request_id
    try:
        yield request_id
    finally:
        clear_request_context()
        for attr, value in previous.items():
            setattr(_request_context, attr, value)


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Middleware to handle request correlation.

    - Generates/propagates X-Request-ID
    - Stores context in thread-local for logging
    - Adds correlation headers to response
    - Logs request duration
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'
    TRACE_ID_HEADER = 'HTTP_X_TRACE_ID'
    SPAN_ID_HEADER = 'HTTP_X_SPAN_ID'

    def process_request(self, request):
        request_id = request.META.get(self.REQUEST_ID_HEADER) or str(uuid.uuid4())
        trace_id = request.META.get(self.TRACE_ID_HEADER)
        span_id = request.META.get(self.SPAN_ID_HEADER)

        request.request_id = request_id
        request.trace_id = trace_id
        request.span_id = span_id
        request.start_time = time.time()

        _request_context.request_id = request_id
        _request_context.trace_id = trace_id
        _request_context.span_id = span_id

        # Populated after auth middleware
        user = getattr(request, 'user', None)
        if user is not None and user.is_authenticated:
            _request_context.user_id = str(user.id)
            _request_context.user_roles = list(user.groups.values_list('name', flat=True))
        else:
            _request_context.user_id = None
            _request_context.user_roles = []

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        if getattr(request, 'trace_id', None):
            response['X-Trace-ID'] = request.trace_id

        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000
            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                }
            )
            metrics.http_requests_total.labels(
                method=request.method, status=str(response.status_code)
            ).inc()

        clear_request_context()
        return response

    def process_exception(self, request, exception):
        duration_ms = 0
        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000

        metrics.exceptions_total.labels(
            exception_type=exception.__class__.__name__, location='http'
        ).inc()

        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
                'duration_ms': round(duration_ms, 2),
            }
        )


def clear_request_context():
    """Clear thread-local request context (useful for testing)."""
    for attr in _CONTEXT_ATTRS:
        if hasattr(_request_context, attr):
            delattr(_request_context, attr)

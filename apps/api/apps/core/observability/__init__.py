"""
Observability module for the clinic back office.

Provides structured logging, metrics, tracing, and health checks
with PHI/PII protection.
"""
from .metrics import metrics
from .events import log_domain_event
from .logging import get_sanitized_logger
from .correlation import correlation_context

__all__ = ['metrics', 'log_domain_event', 'get_sanitized_logger', 'correlation_context']

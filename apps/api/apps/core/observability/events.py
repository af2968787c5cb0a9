"""
Domain events logging helpers.

Provides structured event logging for business operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'invoice_backfilled')
        entity_type: Type of entity (e.g., 'Order', 'Invoice')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'invoice_backfilled',
            entity_type='Invoice',
            entity_id=str(invoice.id),
            entity_ids={'order_id': str(order.id)},
            amount='150.00',
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'cancelled', 'partial']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_consistency_checkpoint(
    checkpoint_name: str,
    entity_ids: Dict[str, str],
    checks_passed: Dict[str, bool],
    **extra_fields
):
    """
    Log a consistency checkpoint event.

    Used to verify data integrity at critical points.

    Example:
        log_consistency_checkpoint(
            'invoice_reconciliation_counts',
            entity_ids={'run_id': run_id},
            checks_passed={'outcomes_cover_candidates': True},
            found=3,
            succeeded=2,
            failed=1,
        )
    """
    all_passed = all(checks_passed.values())

    event_data = {
        'event': 'consistency_checkpoint',
        'checkpoint': checkpoint_name,
        'status': 'passed' if all_passed else 'failed',
        'checks': checks_passed,
    }
    event_data.update(entity_ids)
    event_data.update(sanitize_dict(extra_fields))

    if all_passed:
        logger.info(f'Checkpoint passed: {checkpoint_name}', extra=event_data)
    else:
        logger.error(f'Checkpoint FAILED: {checkpoint_name}', extra=event_data)


def log_invoice_backfilled(outcome, service_name=None, amount=None):
    """Log an invoice created for an order that had none."""
    log_domain_event(
        'invoice_backfilled',
        entity_type='Invoice',
        entity_id=outcome.invoice_id,
        entity_ids={'order_id': outcome.order_id},
        result='success',
        service_name=service_name,
        amount=str(amount) if amount is not None else None,
    )


def log_invoice_backfill_failed(outcome, service_name=None):
    """Log an order whose invoice could not be created."""
    log_domain_event(
        'invoice_backfill_failed',
        entity_type='Order',
        entity_id=outcome.order_id,
        entity_ids={'order_id': outcome.order_id},
        result='cancelled' if outcome.cause == 'cancelled' else 'failure',
        cause=outcome.cause,
        detail=outcome.detail,
        service_name=service_name,
    )


def log_reconciliation_completed(report, duration_ms=None):
    """Log the summary of one reconciliation pass."""
    extra = {
        'found': report.found,
        'succeeded': report.succeeded,
        'failed': report.failed,
    }
    if duration_ms is not None:
        extra['duration_ms'] = duration_ms

    log_domain_event(
        'invoice_reconciliation_completed',
        entity_type='InvoiceReconciliation',
        result='partial' if report.has_failures else 'success',
        **extra
    )

"""
Celery tasks for invoice reconciliation.
"""
from celery import shared_task

from apps.core.observability import correlation_context, get_sanitized_logger

logger = get_sanitized_logger(__name__)


@shared_task(name='apps.commerce.tasks.reconcile_missing_invoices')
def reconcile_missing_invoices():
    """
    Create the invoices missing for existing orders.

    Returns:
        The reconciliation report as a dict (JSON serializable)

    A failing candidate fetch raises CandidateFetchError and the task
    fails; per-order failures are part of the returned report.
    """
    from .reconciliation import InvoiceReconciler
    from .stores import DjangoInvoiceStore

    with correlation_context(prefix='invoice-backfill-task'):
        with DjangoInvoiceStore() as store:
            report = InvoiceReconciler(store).reconcile()

    return report.as_dict()

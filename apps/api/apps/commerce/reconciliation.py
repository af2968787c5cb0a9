"""
Invoice reconciliation - create the invoices that orders are missing.

One pass:
1. Fetch every order without an invoice (one snapshot read)
2. Create a PENDING invoice for each, one at a time, in fetch order
3. Record a typed outcome per order; a failed order never stops the batch
   and never rolls back invoices already created
4. Return a ReconciliationReport

A failing fetch is fatal: CandidateFetchError propagates and no report is
produced. Running the pass again is safe; orders that got their invoice
are no longer returned by the fetch.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Protocol, Sequence, Tuple
import time

from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import (
    log_invoice_backfilled,
    log_invoice_backfill_failed,
    log_reconciliation_completed,
    log_consistency_checkpoint,
)
from apps.core.observability.correlation import get_request_id
from apps.core.observability.tracing import trace_span, add_span_attribute

from .models import InvoiceStatusChoices

logger = get_sanitized_logger(__name__)

CAUSE_CANCELLED = 'cancelled'
CAUSE_UNEXPECTED = 'unexpected error'


class ReconciliationError(Exception):
    """Base error for invoice reconciliation."""


class CandidateFetchError(ReconciliationError):
    """Orders missing an invoice could not be listed; the pass is aborted."""


@dataclass(frozen=True)
class OrderCandidate:
    """An order without invoice, as seen by the reconciler."""
    order_id: str
    patient_id: str
    amount: Decimal
    service_name: Optional[str] = None


@dataclass(frozen=True)
class ItemOutcome:
    """Result of creating the invoice for one order."""
    order_id: str
    invoice_id: Optional[str] = None
    cause: Optional[str] = None
    detail: str = ''

    @property
    def succeeded(self) -> bool:
        return self.cause is None

    @classmethod
    def created(cls, order_id, invoice_id) -> 'ItemOutcome':
        return cls(order_id=str(order_id), invoice_id=str(invoice_id))

    @classmethod
    def failed(cls, order_id, cause, detail='') -> 'ItemOutcome':
        return cls(order_id=str(order_id), cause=cause, detail=detail)


@dataclass(frozen=True)
class ReconciliationReport:
    """Counts and per-order outcomes of one reconciliation pass."""
    found: int = 0
    outcomes: Tuple[ItemOutcome, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.succeeded)

    @property
    def failures(self) -> List[Tuple[str, str]]:
        """(order_id, cause) for every order whose invoice was not created."""
        return [(o.order_id, o.cause) for o in self.outcomes if not o.succeeded]

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def as_dict(self) -> dict:
        return {
            'found': self.found,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'failures': [
                {'order_id': o.order_id, 'cause': o.cause, 'detail': o.detail}
                for o in self.outcomes if not o.succeeded
            ],
            'created_invoice_ids': [o.invoice_id for o in self.outcomes if o.succeeded],
        }


class InvoiceStore(Protocol):
    """
    Storage used by the reconciler.

    Implementations are context managers: the connection they hold is
    released on exit, whatever the pass did.
    """

    def __enter__(self) -> 'InvoiceStore': ...

    def __exit__(self, exc_type, exc, tb) -> None: ...

    def find_orders_missing_invoice(self) -> Sequence[OrderCandidate]: ...

    def create_invoice(
        self,
        candidate: OrderCandidate,
        *,
        status: str,
        due_date: Optional[date],
    ) -> ItemOutcome: ...


class InvoiceReconciler:
    """
    Backfill invoices for orders that have none.

    Args:
        store: InvoiceStore to read candidates from and write invoices to
        should_stop: Optional callable checked between orders; once it
            returns True the remaining orders are reported as 'cancelled'

    Usage:
        with DjangoInvoiceStore() as store:
            report = InvoiceReconciler(store).reconcile()
    """

    def __init__(self, store: InvoiceStore, should_stop: Optional[Callable[[], bool]] = None):
        self.store = store
        self.should_stop = should_stop

    def reconcile(self) -> ReconciliationReport:
        """
        Run one reconciliation pass.

        Returns:
            ReconciliationReport with found == succeeded + failed

        Raises:
            CandidateFetchError: Orders missing an invoice could not be listed
        """
        start_time = time.time()

        with trace_span('reconcile_missing_invoices'), \
                metrics.invoice_reconciliation_duration_seconds.time():
            candidates = self._fetch_candidates()
            add_span_attribute('candidates_found', len(candidates))

            if not candidates:
                logger.info(
                    'All orders already have an invoice',
                    extra={'event': 'invoice_reconciliation_noop'}
                )
                metrics.invoice_reconciliation_runs_total.labels(result='completed').inc()
                return ReconciliationReport()

            logger.info(
                f'Found {len(candidates)} orders without invoice',
                extra={'event': 'invoice_reconciliation_started', 'found': len(candidates)}
            )

            outcomes = []
            for candidate in candidates:
                if self.should_stop is not None and self.should_stop():
                    outcome = ItemOutcome.failed(candidate.order_id, CAUSE_CANCELLED, 'pass cancelled')
                else:
                    outcome = self._create_invoice(candidate)
                outcomes.append(outcome)
                self._record(candidate, outcome)

            report = ReconciliationReport(found=len(candidates), outcomes=tuple(outcomes))

        duration_ms = int((time.time() - start_time) * 1000)
        metrics.invoice_reconciliation_runs_total.labels(
            result='partial' if report.has_failures else 'completed'
        ).inc()
        log_consistency_checkpoint(
            'invoice_reconciliation_counts',
            entity_ids={'run_id': get_request_id() or '-'},
            checks_passed={
                'outcomes_cover_candidates': report.succeeded + report.failed == report.found,
            },
            found=report.found,
            succeeded=report.succeeded,
            failed=report.failed,
        )
        log_reconciliation_completed(report, duration_ms=duration_ms)
        return report

    def _fetch_candidates(self) -> List[OrderCandidate]:
        logger.info('Searching for orders without invoice', extra={'event': 'invoice_reconciliation_fetch'})
        try:
            return list(self.store.find_orders_missing_invoice())
        except Exception as e:
            metrics.invoice_reconciliation_runs_total.labels(result='fetch_failed').inc()
            metrics.exceptions_total.labels(
                exception_type=e.__class__.__name__, location='invoice_reconciliation_fetch'
            ).inc()
            raise CandidateFetchError(f'Could not list orders without invoice: {e}') from e

    def _create_invoice(self, candidate: OrderCandidate) -> ItemOutcome:
        try:
            return self.store.create_invoice(
                candidate,
                status=InvoiceStatusChoices.PENDING,
                due_date=None,
            )
        except Exception as e:
            # Stores report expected failures as outcomes; anything raised
            # here is still confined to this order.
            logger.exception(
                'Invoice store raised while creating invoice',
                extra={'event': 'invoice_backfill_store_error', 'order_id': candidate.order_id}
            )
            metrics.exceptions_total.labels(
                exception_type=e.__class__.__name__, location='invoice_reconciliation_create'
            ).inc()
            return ItemOutcome.failed(candidate.order_id, CAUSE_UNEXPECTED, str(e))

    def _record(self, candidate: OrderCandidate, outcome: ItemOutcome):
        if outcome.succeeded:
            metrics.invoice_reconciliation_items_total.labels(result='created').inc()
            log_invoice_backfilled(outcome, service_name=candidate.service_name, amount=candidate.amount)
        else:
            metrics.invoice_reconciliation_items_total.labels(
                result='cancelled' if outcome.cause == CAUSE_CANCELLED else 'failed'
            ).inc()
            log_invoice_backfill_failed(outcome, service_name=candidate.service_name)

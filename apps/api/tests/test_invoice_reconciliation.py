"""
Tests for invoice reconciliation (backfill of invoices missing for orders).

Business Rules:
- Every order without invoice gets exactly one PENDING invoice, amount
  copied from the order, no due date
- found == succeeded + failed for every pass
- One failing order never stops the batch nor rolls back earlier invoices
- A failing candidate fetch aborts the pass: nothing created, no report
- Running the pass twice finds nothing the second time
"""
import pytest
from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError

from apps.commerce.models import Invoice, InvoiceStatusChoices, Order
from apps.commerce.reconciliation import (
    CandidateFetchError,
    InvoiceReconciler,
    ItemOutcome,
    OrderCandidate,
    ReconciliationReport,
)
from apps.commerce.stores import DjangoInvoiceStore


class TestReconcilerPartialFailure:
    """Reconciler contract, against an in-memory store."""

    def test_all_candidates_created(self, memory_store, candidates):
        report = InvoiceReconciler(memory_store).reconcile()

        assert report.found == 3
        assert report.succeeded == 3
        assert report.failed == 0
        assert report.failures == []
        assert set(memory_store.invoices) == {c.order_id for c in candidates}

    def test_invoices_created_pending_with_order_amount_and_no_due_date(self, memory_store):
        InvoiceReconciler(memory_store).reconcile()

        invoice = memory_store.invoices['order-2']
        assert invoice['amount'] == Decimal('200.00')
        assert invoice['status'] == InvoiceStatusChoices.PENDING
        assert invoice['due_date'] is None

    def test_third_order_constraint_violation_does_not_stop_batch(self, candidates, make_store):
        store = make_store(candidates, failing={'order-3': 'constraint violation'})

        report = InvoiceReconciler(store).reconcile()

        assert report.found == 3
        assert report.succeeded == 2
        assert report.failed == 1
        assert report.failures == [('order-3', 'constraint violation')]
        assert set(store.invoices) == {'order-1', 'order-2'}

    def test_failure_in_middle_keeps_processing_later_orders(self, candidates, make_store):
        store = make_store(candidates, failing={'order-1': 'database error'})

        report = InvoiceReconciler(store).reconcile()

        assert store.create_calls == ['order-1', 'order-2', 'order-3']
        assert report.succeeded == 2
        assert report.failures == [('order-1', 'database error')]

    def test_store_exception_is_confined_to_its_order(self, candidates, make_store):
        store = make_store(candidates)
        original_create = store.create_invoice

        def flaky_create(candidate, **kwargs):
            if candidate.order_id == 'order-2':
                raise RuntimeError('connection reset')
            return original_create(candidate, **kwargs)

        store.create_invoice = flaky_create

        report = InvoiceReconciler(store).reconcile()

        assert report.found == 3
        assert report.succeeded == 2
        assert report.failures == [('order-2', 'unexpected error')]
        failed = [o for o in report.outcomes if not o.succeeded][0]
        assert failed.detail == 'connection reset'

    def test_empty_candidate_set_gives_zero_report(self, make_store):
        report = InvoiceReconciler(make_store([])).reconcile()

        assert report == ReconciliationReport()
        assert (report.found, report.succeeded, report.failed) == (0, 0, 0)
        assert report.failures == []

    def test_fetch_failure_is_fatal_and_creates_nothing(self, candidates, make_store):
        store = make_store(candidates, fetch_error=ConnectionError('db unreachable'))

        with pytest.raises(CandidateFetchError) as exc_info:
            InvoiceReconciler(store).reconcile()

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert store.create_calls == []
        assert store.invoices == {}

    def test_second_pass_finds_nothing(self, memory_store):
        first = InvoiceReconciler(memory_store).reconcile()
        second = InvoiceReconciler(memory_store).reconcile()

        assert first.succeeded == 3
        assert second.found == 0

    def test_second_pass_retries_only_failed_orders(self, candidates, make_store):
        store = make_store(candidates, failing={'order-3': 'constraint violation'})
        InvoiceReconciler(store).reconcile()

        store.failing = {}
        second = InvoiceReconciler(store).reconcile()

        assert second.found == 1
        assert second.succeeded == 1
        assert store.create_calls[-1] == 'order-3'

    def test_should_stop_cancels_remaining_orders(self, candidates, make_store):
        store = make_store(candidates)
        stop_after_first = iter([False, True, True])

        report = InvoiceReconciler(store, should_stop=lambda: next(stop_after_first)).reconcile()

        assert store.create_calls == ['order-1']
        assert report.found == 3
        assert report.succeeded == 1
        assert report.failures == [('order-2', 'cancelled'), ('order-3', 'cancelled')]
        assert report.succeeded + report.failed == report.found


class TestReconciliationReport:
    """Report value object."""

    def test_as_dict(self):
        report = ReconciliationReport(
            found=2,
            outcomes=(
                ItemOutcome.created('o-1', 'i-1'),
                ItemOutcome.failed('o-2', 'constraint violation', 'UNIQUE constraint failed'),
            ),
        )

        assert report.as_dict() == {
            'found': 2,
            'succeeded': 1,
            'failed': 1,
            'failures': [
                {'order_id': 'o-2', 'cause': 'constraint violation', 'detail': 'UNIQUE constraint failed'},
            ],
            'created_invoice_ids': ['i-1'],
        }
        assert report.has_failures

    def test_item_outcome_ids_are_strings(self):
        outcome = ItemOutcome.created(42, 7)

        assert outcome.order_id == '42'
        assert outcome.invoice_id == '7'
        assert outcome.succeeded


@pytest.mark.django_db
class TestDjangoInvoiceStoreReconciliation:
    """Reconciler against the ORM-backed store."""

    def test_order_amount_150_creates_pending_invoice(self, make_order, patient):
        order = make_order(final_price=Decimal('150.00'))

        with DjangoInvoiceStore() as store:
            report = InvoiceReconciler(store).reconcile()

        assert report.found == 1
        assert report.succeeded == 1
        invoice = Invoice.objects.get(order=order)
        assert invoice.total_amount == Decimal('150.00')
        assert invoice.status == InvoiceStatusChoices.PENDING
        assert invoice.due_date is None
        assert invoice.patient_id == patient.id
        assert report.outcomes[0].invoice_id == str(invoice.id)

    def test_exactly_one_invoice_per_order(self, make_order):
        orders = [make_order(final_price=Decimal('80.00')) for _ in range(3)]

        InvoiceReconciler(DjangoInvoiceStore()).reconcile()

        for order in orders:
            assert Invoice.objects.filter(order=order).count() == 1

    def test_orders_with_invoice_are_not_candidates(self, make_order):
        invoiced = make_order()
        Invoice.objects.create(order=invoiced, patient=invoiced.patient, total_amount=invoiced.final_price)
        missing = make_order(final_price=Decimal('99.90'))

        candidates = DjangoInvoiceStore().find_orders_missing_invoice()

        assert candidates == [
            OrderCandidate(
                order_id=str(missing.id),
                patient_id=str(missing.patient_id),
                amount=Decimal('99.90'),
                service_name='Laser Hair Removal',
            )
        ]

    def test_order_without_service_is_still_invoiced(self, make_order):
        make_order(service=None)

        candidates = DjangoInvoiceStore().find_orders_missing_invoice()
        report = InvoiceReconciler(DjangoInvoiceStore()).reconcile()

        assert candidates[0].service_name is None
        assert report.succeeded == 1

    def test_idempotent_second_pass(self, make_order):
        make_order()
        make_order()

        first = InvoiceReconciler(DjangoInvoiceStore()).reconcile()
        second = InvoiceReconciler(DjangoInvoiceStore()).reconcile()

        assert first.succeeded == 2
        assert second.found == 0
        assert Invoice.objects.count() == 2

    def test_invoice_count_grows_by_succeeded(self, make_order):
        make_order()
        make_order(final_price=Decimal('-10.00'))  # violates invoice_total_non_negative
        make_order()
        before = Invoice.objects.count()

        report = InvoiceReconciler(DjangoInvoiceStore()).reconcile()

        assert report.found == 3
        assert report.succeeded == 2
        assert report.failed == 1
        assert Invoice.objects.count() == before + report.succeeded
        assert report.failures[0][1] == 'constraint violation'

    def test_concurrent_invoice_reported_as_constraint_violation(self, make_order):
        """Another writer invoices an order between the fetch and the insert."""
        for _ in range(3):
            make_order()

        class RacingStore(DjangoInvoiceStore):
            def find_orders_missing_invoice(self):
                candidates = super().find_orders_missing_invoice()
                last = Order.objects.get(id=candidates[-1].order_id)
                Invoice.objects.create(order=last, patient=last.patient, total_amount=last.final_price)
                return candidates

        store = RacingStore()
        report = InvoiceReconciler(store).reconcile()
        third_id = report.outcomes[-1].order_id

        assert report.found == 3
        assert report.succeeded == 2
        assert report.failed == 1
        assert report.failures == [(third_id, 'constraint violation')]
        assert Invoice.objects.filter(order_id=third_id).count() == 1
        assert Invoice.objects.count() == 3

    def test_failed_insert_does_not_break_following_inserts(self, make_order):
        """The savepoint around each insert keeps the transaction usable."""
        bad = make_order(final_price=Decimal('-1.00'))
        good = make_order(final_price=Decimal('10.00'))

        store = DjangoInvoiceStore()
        failed = store.create_invoice(
            OrderCandidate(str(bad.id), str(bad.patient_id), bad.final_price),
            status=InvoiceStatusChoices.PENDING,
            due_date=None,
        )
        created = store.create_invoice(
            OrderCandidate(str(good.id), str(good.patient_id), good.final_price),
            status=InvoiceStatusChoices.PENDING,
            due_date=None,
        )

        assert failed.cause == 'constraint violation'
        assert failed.detail
        assert created.succeeded
        assert Invoice.objects.filter(order=good).exists()

    def test_fetch_database_error_aborts_pass(self, make_order):
        make_order()

        with patch.object(
            DjangoInvoiceStore,
            'find_orders_missing_invoice',
            side_effect=DatabaseError('connection refused'),
        ):
            with pytest.raises(CandidateFetchError) as exc_info:
                InvoiceReconciler(DjangoInvoiceStore()).reconcile()

        assert isinstance(exc_info.value.__cause__, DatabaseError)
        assert Invoice.objects.count() == 0

    def test_store_keeps_connection_inside_transaction(self):
        from django.db import connection

        with DjangoInvoiceStore() as store:
            store.count_orders_missing_invoice()

        assert connection.in_atomic_block
        assert connection.connection is not None


@pytest.mark.django_db
class TestReconciliationMetrics:
    """Metrics emitted by a pass."""

    def test_item_and_run_counters(self, make_order, metric_value):
        make_order()
        make_order(final_price=Decimal('-5.00'))
        created_before = metric_value('invoice_reconciliation_items_total', result='created')
        failed_before = metric_value('invoice_reconciliation_items_total', result='failed')
        partial_before = metric_value('invoice_reconciliation_runs_total', result='partial')

        InvoiceReconciler(DjangoInvoiceStore()).reconcile()

        assert metric_value('invoice_reconciliation_items_total', result='created') == created_before + 1
        assert metric_value('invoice_reconciliation_items_total', result='failed') == failed_before + 1
        assert metric_value('invoice_reconciliation_runs_total', result='partial') == partial_before + 1

    def test_fetch_failure_counter(self, metric_value, make_store):
        before = metric_value('invoice_reconciliation_runs_total', result='fetch_failed')
        store = make_store(fetch_error=DatabaseError('boom'))

        with pytest.raises(CandidateFetchError):
            InvoiceReconciler(store).reconcile()

        assert metric_value('invoice_reconciliation_runs_total', result='fetch_failed') == before + 1

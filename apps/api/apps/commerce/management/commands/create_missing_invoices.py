"""
Management command to create the invoices missing for existing orders.

Usage:
    python manage.py create_missing_invoices
    python manage.py create_missing_invoices --dry-run
    python manage.py create_missing_invoices --fail-on-item-errors

Idempotent and safe to run multiple times: orders that already have an
invoice are never picked up again. One failing order does not stop the
others; failures are listed at the end for manual follow-up.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import DEFAULT_DB_ALIAS, DatabaseError

from apps.core.observability import correlation_context
from apps.commerce.reconciliation import CandidateFetchError, InvoiceReconciler
from apps.commerce.stores import DjangoInvoiceStore


class Command(BaseCommand):
    help = 'Create a pending invoice for every order that has none'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the orders without invoice and exit without creating anything',
        )
        parser.add_argument(
            '--database',
            default=DEFAULT_DB_ALIAS,
            help='Database alias to reconcile (default: "default")',
        )
        parser.add_argument(
            '--fail-on-item-errors',
            action='store_true',
            help='Exit with a non-zero status when any invoice could not be created',
        )

    def handle(self, *args, **options):
        with correlation_context(prefix='invoice-backfill') as run_id:
            self.stdout.write(self.style.NOTICE(f'Searching for orders without invoice... (run {run_id})'))

            with DjangoInvoiceStore(using=options['database']) as store:
                if options['dry_run']:
                    self._dry_run(store)
                    return

                try:
                    report = InvoiceReconciler(store).reconcile()
                except CandidateFetchError as e:
                    raise CommandError(f'✗ Invoice backfill aborted: {e}') from e

        self._write_report(report)

        if report.has_failures and options['fail_on_item_errors']:
            raise CommandError(f'{report.failed} invoice(s) could not be created')

    def _dry_run(self, store):
        try:
            candidates = store.find_orders_missing_invoice()
        except DatabaseError as e:
            raise CommandError(f'✗ Could not list orders without invoice: {e}') from e

        self.stdout.write(f'Found {len(candidates)} orders without invoice (dry run, nothing created)')
        for candidate in candidates:
            self.stdout.write(
                f'  - Order {candidate.order_id} ({candidate.service_name or "no service"}): {candidate.amount}'
            )

    def _write_report(self, report):
        if report.found == 0:
            self.stdout.write(self.style.SUCCESS('✓ All orders already have an invoice'))
            return

        self.stdout.write(f'Found {report.found} orders without invoice')
        for outcome in report.outcomes:
            if outcome.succeeded:
                self.stdout.write(f'  ✓ Invoice {outcome.invoice_id} created for order {outcome.order_id}')
            else:
                self.stdout.write(self.style.ERROR(
                    f'  ✗ Order {outcome.order_id}: {outcome.cause} {outcome.detail}'.rstrip()
                ))

        summary = f'Done: {report.succeeded}/{report.found} invoices created'
        if report.has_failures:
            self.stdout.write(self.style.WARNING(f'{summary}, {report.failed} failed'))
        else:
            self.stdout.write(self.style.SUCCESS(f'✓ {summary}'))

"""
Django ORM implementation of the InvoiceStore used by the reconciler.
"""
from datetime import date
from typing import List, Optional

from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS, DatabaseError, IntegrityError, connections, transaction

from apps.core.observability import get_sanitized_logger

from .models import Invoice, Order
from .reconciliation import ItemOutcome, OrderCandidate

logger = get_sanitized_logger(__name__)

CAUSE_CONSTRAINT_VIOLATION = 'constraint violation'
CAUSE_VALIDATION_ERROR = 'validation error'
CAUSE_DATABASE_ERROR = 'database error'


class DjangoInvoiceStore:
    """
    Reads orders without invoice and writes invoices through the ORM.

    Each invoice insert runs in its own savepoint, so one failed insert
    leaves the surrounding transaction usable for the next order.

    Args:
        using: Database alias
    """

    def __init__(self, using: str = DEFAULT_DB_ALIAS):
        self.using = using

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        """
        Release the database connection.

        Inside an atomic block (request transaction, tests) the connection
        belongs to the caller and is left open.
        """
        connection = connections[self.using]
        if not connection.in_atomic_block:
            connection.close()

    def _orders_missing_invoice(self):
        return Order.objects.using(self.using).filter(invoice__isnull=True)

    def find_orders_missing_invoice(self) -> List[OrderCandidate]:
        orders = self._orders_missing_invoice().select_related('service').order_by('created_at', 'id')
        return [
            OrderCandidate(
                order_id=str(order.id),
                patient_id=str(order.patient_id),
                amount=order.final_price,
                service_name=order.service.name if order.service else None,
            )
            for order in orders
        ]

    def count_orders_missing_invoice(self) -> int:
        return self._orders_missing_invoice().count()

    def create_invoice(
        self,
        candidate: OrderCandidate,
        *,
        status: str,
        due_date: Optional[date],
    ) -> ItemOutcome:
        try:
            with transaction.atomic(using=self.using):
                invoice = Invoice.objects.using(self.using).create(
                    order_id=candidate.order_id,
                    patient_id=candidate.patient_id,
                    total_amount=candidate.amount,
                    status=status,
                    due_date=due_date,
                )
        except IntegrityError as e:
            return self._failed(candidate, CAUSE_CONSTRAINT_VIOLATION, e)
        except ValidationError as e:
            return self._failed(candidate, CAUSE_VALIDATION_ERROR, e)
        except DatabaseError as e:
            return self._failed(candidate, CAUSE_DATABASE_ERROR, e)

        return ItemOutcome.created(candidate.order_id, invoice.id)

    def _failed(self, candidate, cause, error) -> ItemOutcome:
        logger.warning(
            f'Invoice not created: {cause}',
            extra={
                'event': 'invoice_insert_failed',
                'order_id': candidate.order_id,
                'error_type': error.__class__.__name__,
            }
        )
        return ItemOutcome.failed(candidate.order_id, cause, str(error))

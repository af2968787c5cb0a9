"""
Global test fixtures for pytest.

Provides reusable fixtures for API and reconciliation testing:
- Authenticated API clients (admin, regular staff)
- Model instances (Patient, Service, Order)
- An in-memory InvoiceStore for reconciler unit tests
"""
import pytest
from decimal import Decimal
from rest_framework.test import APIClient

from apps.clinical.models import Patient
from apps.commerce.models import Order, Service
from apps.commerce.reconciliation import ItemOutcome, OrderCandidate
from apps.core.observability.correlation import clear_request_context
from apps.core.observability.metrics import metrics


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_client(db, admin_user):
    """
    Authenticated API client for a superuser.
    Required for the reconciliation trigger.
    """
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


@pytest.fixture
def reception_client(db, django_user_model):
    """
    Authenticated API client for a non-admin user (reception desk).
    Can list invoices, cannot trigger reconciliation.
    """
    user = django_user_model.objects.create_user(
        username='reception',
        email='reception@test.com',
        password='testpass123',
    )
    client = APIClient()
    client.force_authenticate(user=user)
    return client


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def patient(db):
    """Create a patient."""
    return Patient.objects.create(
        first_name='John',
        last_name='Doe',
        email='john.doe@test.com',
        phone='+33600000000',
    )


@pytest.fixture
def service(db):
    """Create a billable service."""
    return Service.objects.create(name='Laser Hair Removal', base_price=Decimal('150.00'))


@pytest.fixture
def make_order(db, patient, service):
    """Factory for orders (no invoice)."""
    def _make_order(final_price=Decimal('150.00'), **kwargs):
        kwargs.setdefault('patient', patient)
        kwargs.setdefault('service', service)
        return Order.objects.create(final_price=final_price, **kwargs)
    return _make_order


# ============================================================================
# Reconciliation helpers
# ============================================================================

class InMemoryInvoiceStore:
    """
    InvoiceStore backed by a dict, for reconciler unit tests.

    Args:
        candidates: OrderCandidate list returned by the fetch
        failing: {order_id: cause} for creates that must fail
        fetch_error: Exception raised by the fetch
    """

    def __init__(self, candidates=(), failing=None, fetch_error=None):
        self.candidates = list(candidates)
        self.failing = failing or {}
        self.fetch_error = fetch_error
        self.invoices = {}
        self.create_calls = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True

    def find_orders_missing_invoice(self):
        if self.fetch_error is not None:
            raise self.fetch_error
        return [c for c in self.candidates if c.order_id not in self.invoices]

    def create_invoice(self, candidate, *, status, due_date):
        self.create_calls.append(candidate.order_id)
        if candidate.order_id in self.failing:
            return ItemOutcome.failed(candidate.order_id, self.failing[candidate.order_id])
        invoice_id = f'inv-{len(self.invoices) + 1}'
        self.invoices[candidate.order_id] = {
            'id': invoice_id,
            'amount': candidate.amount,
            'status': status,
            'due_date': due_date,
        }
        return ItemOutcome.created(candidate.order_id, invoice_id)


@pytest.fixture
def candidates():
    """Three orders without invoice."""
    return [
        OrderCandidate(order_id=f'order-{n}', patient_id='patient-1', amount=Decimal(f'{n}00.00'), service_name='Peeling')
        for n in (1, 2, 3)
    ]


@pytest.fixture
def memory_store(candidates):
    return InMemoryInvoiceStore(candidates)


@pytest.fixture
def metric_value():
    """Read the current value of a sample from the metrics registry (0 if unset)."""
    def _value(name, **labels):
        return metrics.registry.get_sample_value(name, labels) or 0
    return _value


@pytest.fixture(autouse=True)
def _clean_request_context():
    yield
    clear_request_context()


@pytest.fixture
def make_store():
    """InMemoryInvoiceStore factory."""
    return InMemoryInvoiceStore

"""Commerce models - services, orders and invoices."""
from django.db import models
from django.utils.translation import gettext_lazy as _
from decimal import Decimal
import uuid


class InvoiceStatusChoices(models.TextChoices):
    """
    Invoice status choices.

    Invoices created by the reconciliation backfill always start as PENDING.
    """
    PENDING = 'pending', _('Pending')
    PAID = 'paid', _('Paid')
    VOID = 'void', _('Void')


class Service(models.Model):
    """Billable clinic service (e.g. a treatment session)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(_('Name'), max_length=255, unique=True)
    base_price = models.DecimalField(
        _('Base price'),
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00')
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'service'
        ordering = ['name']
        verbose_name = _('Service')
        verbose_name_plural = _('Services')

    def __str__(self):
        return self.name


class Order(models.Model):
    """
    A service ordered for a patient.

    Every order must end up with exactly one Invoice. Orders created
    before invoicing existed (or whose invoice creation failed) are
    picked up by `create_missing_invoices`.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    patient = models.ForeignKey(
        'clinical.Patient',
        on_delete=models.PROTECT,
        related_name='orders',
        verbose_name=_('Patient')
    )
    service = models.ForeignKey(
        Service,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
        verbose_name=_('Service')
    )
    final_price = models.DecimalField(
        _('Final price'),
        max_digits=10,
        decimal_places=2,
        help_text=_('Price after discounts; copied to the invoice total')
    )

    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']
        verbose_name = _('Order')
        verbose_name_plural = _('Orders')
        indexes = [
            models.Index(fields=['patient', '-created_at'], name='idx_order_patient_created'),
        ]

    def __str__(self):
        service_name = self.service.name if self.service else '-'
        return f"Order #{self.id} - {service_name} - {self.final_price}"


class Invoice(models.Model):
    """
    Invoice for a single order.

    Business Rules:
    - one invoice per order (unique `order`)
    - total_amount is copied from order.final_price and never negative
    - patient is copied from the order
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order = models.OneToOneField(
        Order,
        on_delete=models.PROTECT,
        related_name='invoice',
        verbose_name=_('Order')
    )
    patient = models.ForeignKey(
        'clinical.Patient',
        on_delete=models.PROTECT,
        related_name='invoices',
        verbose_name=_('Patient')
    )
    total_amount = models.DecimalField(
        _('Total amount'),
        max_digits=10,
        decimal_places=2
    )
    status = models.CharField(
        _('Status'),
        max_length=20,
        choices=InvoiceStatusChoices.choices,
        default=InvoiceStatusChoices.PENDING
    )
    due_date = models.DateField(_('Due date'), blank=True, null=True)

    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'invoices'
        ordering = ['-created_at']
        verbose_name = _('Invoice')
        verbose_name_plural = _('Invoices')
        indexes = [
            models.Index(fields=['status', '-created_at'], name='idx_invoice_status_created'),
            models.Index(fields=['patient', '-created_at'], name='idx_invoice_patient_created'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name='invoice_total_non_negative'
            ),
        ]

    def __str__(self):
        return f"Invoice #{self.id} - {self.get_status_display()} - {self.total_amount}"

"""
Clinical models: patient.

Only the patient record is kept here; orders and invoices reference it
from the commerce app.
"""
import uuid
from django.db import models


class Patient(models.Model):
    """
    Patient record.

    Identity fields (names, email, phone) are PHI/PII and are never
    written to logs; log `id` instead.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Name fields
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)

    # Contact
    email = models.EmailField(blank=True, null=True)
    phone = models.CharField(max_length=50, blank=True, null=True)

    # Soft delete
    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient'
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        indexes = [
            models.Index(fields=['last_name', 'first_name'], name='idx_patient_name'),
            models.Index(fields=['email'], name='idx_patient_email'),
            models.Index(fields=['is_deleted'], name='idx_patient_deleted'),
        ]

    def __str__(self):
        return f"{self.first_name} {self.last_name}"

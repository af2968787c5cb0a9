"""Commerce serializers."""
from rest_framework import serializers
from .models import Invoice


class InvoiceSerializer(serializers.ModelSerializer):
    """Read-only invoice representation."""
    service_name = serializers.CharField(source='order.service.name', read_only=True, default=None)

    class Meta:
        model = Invoice
        fields = [
            'id', 'order', 'patient', 'service_name', 'total_amount',
            'status', 'due_date', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class ReconciliationFailureSerializer(serializers.Serializer):
    order_id = serializers.CharField()
    cause = serializers.CharField()
    detail = serializers.CharField(allow_blank=True)


class ReconciliationReportSerializer(serializers.Serializer):
    """
    Serializer for a ReconciliationReport (see `ReconciliationReport.as_dict`).

    found == succeeded + failed always holds.
    """
    found = serializers.IntegerField()
    succeeded = serializers.IntegerField()
    failed = serializers.IntegerField()
    failures = ReconciliationFailureSerializer(many=True)
    created_invoice_ids = serializers.ListField(child=serializers.CharField())


class OrderCandidateSerializer(serializers.Serializer):
    """Order without invoice, listed by a dry run."""
    order_id = serializers.CharField()
    patient_id = serializers.CharField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    service_name = serializers.CharField(allow_null=True)

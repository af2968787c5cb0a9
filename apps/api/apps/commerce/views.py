"""Commerce views."""
from django.db import DatabaseError
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import OpenApiParameter, extend_schema

from apps.core.observability import get_sanitized_logger

from .models import Invoice
from .reconciliation import CandidateFetchError, InvoiceReconciler
from .serializers import (
    InvoiceSerializer,
    OrderCandidateSerializer,
    ReconciliationReportSerializer,
)
from .stores import DjangoInvoiceStore

logger = get_sanitized_logger(__name__)


class InvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Read-only invoices plus the reconciliation trigger.

    Additional endpoints:
    - POST /invoices/reconcile/ - Create invoices for orders that have none (admin only)
    """
    queryset = Invoice.objects.all().select_related('order__service')
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated]
    ordering = ['-created_at']

    def get_queryset(self):
        queryset = super().get_queryset()
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    @extend_schema(
        request=None,
        parameters=[OpenApiParameter('dry_run', bool, description='List candidates without creating invoices')],
        responses={200: ReconciliationReportSerializer},
    )
    @action(detail=False, methods=['post'], url_path='reconcile', permission_classes=[IsAdminUser])
    def reconcile(self, request):
        """
        Run one invoice reconciliation pass.

        POST /api/v1/commerce/invoices/reconcile/[?dry_run=true]

        Returns:
        - 200: Report (found / succeeded / failed / failures), or the
          candidate list for a dry run
        - 503: Orders without invoice could not be listed; nothing created
        """
        dry_run = request.query_params.get('dry_run', '').lower() in ('1', 'true', 'yes')

        # Connection lifecycle is handled by Django at the end of the request
        store = DjangoInvoiceStore()
        try:
            if dry_run:
                candidates = store.find_orders_missing_invoice()
                return Response({
                    'found': len(candidates),
                    'candidates': OrderCandidateSerializer(candidates, many=True).data,
                })
            report = InvoiceReconciler(store).reconcile()
        except (CandidateFetchError, DatabaseError) as e:
            logger.error(
                'Invoice reconciliation aborted',
                extra={'event': 'invoice_reconciliation_aborted', 'error_type': e.__class__.__name__}
            )
            return Response(
                {'error': 'Orders without invoice could not be listed', 'detail': str(e)},
                status=status.HTTP_503_SERVICE_UNAVAILABLE
            )

        return Response(ReconciliationReportSerializer(report.as_dict()).data)

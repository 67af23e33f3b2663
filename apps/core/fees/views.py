import logging

from django.http import HttpResponse
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.schools.models import Subscription
from apps.core.users.audit import log_audit_event
from apps.core.users.permissions import ADMIN_ROLES, BURSAR_ROLES, TenantResolved, entitlement, role_in

from . import reports, services
from .exports import export_response, parse_export_type, plain_rows, plain_value
from .receipts import receipt_payload, receipt_pdf_bytes
from .serializers import (
    GenerateInvoiceSerializer,
    InvoiceSerializer,
    InvoiceSummarySerializer,
    PaymentSerializer,
    PostPaymentSerializer,
    ReasonSerializer,
    StudentBriefSerializer,
)

logger = logging.getLogger(__name__)

CAN_ADMIN = role_in(*ADMIN_ROLES)
CAN_BURSAR = role_in(*BURSAR_ROLES)
FEES_READ = entitlement(Subscription.FEES_READ)
FEES_WRITE = entitlement(Subscription.FEES_WRITE)


class TenantAPIView(APIView):
    """Base view: authenticated user with a resolved school in ``self.tenant``."""

    tenant = None
    permission_classes = [IsAuthenticated, TenantResolved]


def _plain_dict(values):
    return {key: plain_value(value) for key, value in values.items()}


class InvoiceListView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR]

    def get(self, request):
        params = request.query_params
        invoices = services.list_invoices(
            self.tenant,
            student_id=params.get('studentId'),
            class_id=params.get('classId'),
            year=params.get('year'),
            term=params.get('term'),
            status=params.get('status'),
        )
        return Response(InvoiceSummarySerializer(invoices, many=True).data)


class InvoiceDetailView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR]

    def get(self, request, invoice_id):
        invoice = services.get_invoice(self.tenant, invoice_id)
        return Response(InvoiceSerializer(invoice).data)


class InvoiceGenerateView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_ADMIN, FEES_WRITE]

    def post(self, request):
        serializer = GenerateInvoiceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        invoice = services.generate_invoice(
            self.tenant,
            student_id=data['studentId'],
            class_id=data['classId'],
            year=data['year'],
            term=data['term'],
            fee_plan_id=data['feePlanId'],
        )
        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)


class InvoiceVoidView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_ADMIN, FEES_WRITE]

    def post(self, request, invoice_id):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.void_invoice(self.tenant, invoice_id=invoice_id, reason=serializer.validated_data['reason'])
        invoice = services.get_invoice(self.tenant, invoice_id)
        return Response(InvoiceSerializer(invoice).data)


class PaymentCreateView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR, FEES_WRITE]

    def post(self, request):
        serializer = PostPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = services.post_payment(
            self.tenant,
            invoice_id=data['invoiceId'],
            amount=data['amount'],
            method=data.get('method'),
            reference=data.get('reference') or '',
            client_txn_id=data.get('clientTxnId'),
        )
        return Response(
            {
                'payment': PaymentSerializer(result['payment']).data,
                'invoice': InvoiceSummarySerializer(result['invoice']).data,
                'idempotent': result['idempotent'],
            },
            status=status.HTTP_201_CREATED,
        )


class PaymentReverseView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR, FEES_WRITE]

    def post(self, request, payment_id):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = services.reverse_payment(
            self.tenant,
            payment_id=payment_id,
            reason=serializer.validated_data['reason'],
        )
        return Response(
            {
                'payment': PaymentSerializer(result['payment']).data,
                'invoice': InvoiceSummarySerializer(result['invoice']).data,
            }
        )


class PaymentReceiptView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR]

    def get(self, request, payment_id):
        payment = services.get_payment(self.tenant, payment_id)
        log_audit_event(self.tenant, 'FEES_RECEIPT_VIEWED', target=payment, details={'format': 'json'})
        return Response(receipt_payload(payment))


class PaymentReceiptPdfView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR]

    def get(self, request, payment_id):
        payment = services.get_payment(self.tenant, payment_id)
        log_audit_event(self.tenant, 'FEES_RECEIPT_VIEWED', target=payment, details={'format': 'pdf'})
        response = HttpResponse(receipt_pdf_bytes(payment), content_type='application/pdf')
        response['Content-Disposition'] = f'inline; filename="receipt-{payment.receipt_no}.pdf"'
        return response


class StudentSummaryView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR]

    def get(self, request, student_id):
        params = request.query_params
        summary = services.student_summary(
            self.tenant,
            student_id=student_id,
            year=params.get('year'),
            term=params.get('term'),
        )
        log_audit_event(self.tenant, 'FEES_SUMMARY_VIEWED', target=summary['student'], details=summary['filters'])
        latest = summary['latestInvoice']
        return Response(
            {
                'student': StudentBriefSerializer(summary['student']).data,
                'filters': summary['filters'],
                'totals': _plain_dict(summary['totals']),
                'latestInvoice': InvoiceSummarySerializer(latest).data if latest else None,
            }
        )


class StudentStatementView(TenantAPIView):
    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR]

    def get(self, request, student_id):
        params = request.query_params
        statement = services.student_statement(
            self.tenant,
            student_id=student_id,
            year=params.get('year'),
            term=params.get('term'),
        )
        log_audit_event(
            self.tenant,
            'FEES_STATEMENT_VIEWED',
            target=statement['student'],
            details=statement['filters'],
        )
        return Response(
            {
                'student': StudentBriefSerializer(statement['student']).data,
                'filters': statement['filters'],
                'totals': _plain_dict(statement['totals']),
                'invoices': InvoiceSerializer(statement['invoices'], many=True).data,
                'timeline': [_plain_dict(event) for event in statement['timeline']],
            }
        )


class ReportView(TenantAPIView):
    """Runs one report and answers with JSON rows or an exported file of the same rows."""

    permission_classes = TenantAPIView.permission_classes + [CAN_BURSAR, FEES_READ]
    audit_action = ''

    def build_report(self, params):
        raise NotImplementedError

    def get(self, request):
        params = request.query_params
        export_type = parse_export_type(params.get('export'))
        report = self.build_report(params)

        log_audit_event(
            self.tenant,
            self.audit_action,
            details={**report.filters, 'export': export_type, 'rows': len(report.rows)},
        )
        logger.info(
            'Report %s rows=%s export=%s %s',
            report.name,
            len(report.rows),
            export_type or 'json',
            self.tenant.describe(),
        )

        if export_type:
            return export_response(report, export_type)
        return Response({**_plain_dict(report.summary), 'rows': plain_rows(report)})


class ClassSummaryReportView(ReportView):
    audit_action = 'REPORTS_FEES_CLASS_SUMMARY_VIEWED'

    def build_report(self, params):
        return reports.class_summary(
            self.tenant,
            class_id=params.get('classId'),
            year=params.get('year'),
            term=params.get('term'),
        )


class DefaultersReportView(ReportView):
    audit_action = 'REPORTS_FEES_DEFAULTERS_VIEWED'

    def build_report(self, params):
        return reports.defaulters(
            self.tenant,
            class_id=params.get('classId'),
            year=params.get('year'),
            term=params.get('term'),
            min_balance=params.get('minBalance'),
            limit=params.get('limit'),
        )


class CollectionsReportView(ReportView):
    audit_action = 'REPORTS_FEES_COLLECTIONS_VIEWED'

    def build_report(self, params):
        return reports.collections(
            self.tenant,
            date_from=params.get('from'),
            date_to=params.get('to'),
        )

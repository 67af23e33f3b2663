from django.urls import path

from . import views

app_name = 'fees'

urlpatterns = [
    path('invoices', views.InvoiceListView.as_view(), name='invoice_list'),
    path('invoices/generate', views.InvoiceGenerateView.as_view(), name='invoice_generate'),
    path('invoices/<int:invoice_id>', views.InvoiceDetailView.as_view(), name='invoice_detail'),
    path('invoices/<int:invoice_id>/void', views.InvoiceVoidView.as_view(), name='invoice_void'),
    path('payments', views.PaymentCreateView.as_view(), name='payment_create'),
    path('payments/<int:payment_id>/reverse', views.PaymentReverseView.as_view(), name='payment_reverse'),
    path('payments/<int:payment_id>/receipt', views.PaymentReceiptView.as_view(), name='payment_receipt'),
    path('payments/<int:payment_id>/receipt.pdf', views.PaymentReceiptPdfView.as_view(), name='payment_receipt_pdf'),
    path('students/<int:student_id>/summary', views.StudentSummaryView.as_view(), name='student_summary'),
    path('students/<int:student_id>/statement', views.StudentStatementView.as_view(), name='student_statement'),
    path('reports/class-summary', views.ClassSummaryReportView.as_view(), name='report_class_summary'),
    path('reports/defaulters', views.DefaultersReportView.as_view(), name='report_defaulters'),
    path('reports/collections', views.CollectionsReportView.as_view(), name='report_collections'),
]

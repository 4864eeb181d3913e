"""
Printable pages and the cashier's payment form.

These are plain Django views behind the session login; business rule
failures raised here are turned into flashed messages by
:class:`clinic.middleware.DomainErrorMiddleware`.
"""
from __future__ import annotations

import io
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.http import HttpResponse, HttpResponseRedirect
from django.shortcuts import get_object_or_404, render
from django.urls import reverse
from django.views.decorators.http import require_http_methods, require_POST

from clinic.exceptions import MasterDataValidationError
from clinic.models import Encounter, Invoice, LabOrder, Payment
from clinic.services import billing, invoices
from clinic.services.audit import log_action

PAYMENT_ROLES = ('admin', 'cashier')


def _invoice_context(invoice: Invoice) -> dict:
    summary = billing.billing_summary(invoice.encounter)
    return {
        'invoice': invoice,
        'patient': invoice.patient,
        'encounter': invoice.encounter,
        'items': summary.get('items', []),
        'payments': invoice.payments.order_by('paid_at', 'id'),
        'currency': settings.HMS_CURRENCY,
        'methods': Payment.METHOD_CHOICES,
        'form_errors': {},
    }


@login_required
@require_http_methods(['GET'])
def invoice_print(request, pk: int):
    invoice = get_object_or_404(Invoice.objects.select_related('patient', 'encounter'), pk=pk)
    ctx = _invoice_context(invoice)
    ctx['form_errors'] = request.session.pop('form_errors', {})
    return render(request, 'clinic/invoice_print.html', ctx)


@login_required
@require_http_methods(['GET'])
def invoice_pdf(request, pk: int):
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import getSampleStyleSheet
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

    invoice = get_object_or_404(Invoice.objects.select_related('patient', 'encounter'), pk=pk)
    ctx = _invoice_context(invoice)
    currency = ctx['currency']
    styles = getSampleStyleSheet()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=36, rightMargin=36, topMargin=36, bottomMargin=36)
    elements = [
        Paragraph(f'Invoice {invoice.invoice_number}', styles['Title']),
        Paragraph(f'{invoice.patient.full_name} ({invoice.patient.patient_number})', styles['Normal']),
        Paragraph(f'Encounter {invoice.encounter.encounter_number}, issued '
                  f'{invoice.issued_at:%Y-%m-%d %H:%M}', styles['Normal']),
        Spacer(1, 12),
    ]
    rows = [['Description', 'Qty', f'Unit ({currency})', f'Amount ({currency})']]
    rows += [[i['description'], i['quantity'], i['unitPrice'], i['netAmount']] for i in ctx['items']]
    rows += [
        ['', '', 'Total', str(invoice.total_amount)],
        ['', '', 'Discount', str(invoice.discount_amount)],
        ['', '', 'Net', str(invoice.net_amount)],
        ['', '', 'Paid', str(invoice.paid_amount)],
        ['', '', 'Balance', str(invoice.balance)],
    ]
    table = Table(rows, repeatRows=1, colWidths=[260, 40, 90, 90])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
        ('LINEBELOW', (0, 0), (-1, 0), 0.5, colors.grey),
    ]))
    elements.append(table)
    doc.build(elements)
    resp = HttpResponse(buffer.getvalue(), content_type='application/pdf')
    resp['Content-Disposition'] = f'inline; filename="{invoice.invoice_number}.pdf"'
    return resp


@login_required
@require_POST
def invoice_payment(request, pk: int):
    if getattr(request.user, 'role', '') not in PAYMENT_ROLES:
        raise PermissionDenied
    invoice = get_object_or_404(Invoice, pk=pk)
    raw = (request.POST.get('amount') or '').strip()
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        amount = Decimal(0)
    if not amount.is_finite() or amount <= 0 or amount != amount.quantize(Decimal('0.01')):
        raise MasterDataValidationError('Payment amount must be greater than zero.',
                                        details={'amount': ['Enter an amount greater than zero']})
    method = request.POST.get('method') or 'cash'
    if method not in dict(Payment.METHOD_CHOICES):
        raise MasterDataValidationError('Unknown payment method.', details={'method': ['Pick a listed method']})
    payment = Payment.objects.create(
        invoice=invoice,
        amount=amount,
        method=method,
        reference_no=(request.POST.get('reference_no') or '')[:64],
        received_by=request.user,
    )
    log_action(user=request.user, action='payment_received', object_type='invoice', object_id=invoice.id,
               detail={'payment_id': payment.id, 'amount': str(amount), 'method': method})
    messages.success(request, f'Payment of {settings.HMS_CURRENCY} {amount} recorded.')
    return HttpResponseRedirect(reverse('invoice-print', args=[invoice.pk]))


@login_required
@require_http_methods(['GET'])
def lab_results(request, pk: int):
    encounter = get_object_or_404(Encounter.objects.select_related('patient'), pk=pk)
    orders = (
        LabOrder.objects.select_related('test', 'ordered_by')
        .filter(encounter=encounter)
        .order_by('created_at')
    )
    return render(request, 'clinic/lab_results.html', {
        'encounter': encounter,
        'patient': encounter.patient,
        'orders': orders,
    })


@login_required
@require_POST
def generate_invoice_page(request, pk: int):
    encounter = get_object_or_404(Encounter, pk=pk)
    invoice, created = invoices.generate_invoice(encounter, user=request.user)
    if created:
        messages.success(request, f'Invoice {invoice.invoice_number} generated.')
    return HttpResponseRedirect(reverse('invoice-print', args=[invoice.pk]))

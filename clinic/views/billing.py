"""
Billing endpoints.

Charges are normally posted by the event listeners; these views cover
what a cashier does by hand: procedures, discounts, cancelling an item,
issuing the invoice and taking payments.  Payment changes are
reconciled onto the invoice by model hooks (see ``clinic.observers``).
"""
from __future__ import annotations

from django.db import transaction
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.exceptions import WorkflowError
from clinic.models import BillingAccount, BillingItem, Encounter, Invoice, Payment
from clinic.permissions import HasRole
from clinic.serializers.billing import (
    DiscountSerializer, PaymentSerializer, PaymentUpdateSerializer, ProcedureChargeSerializer,
)
from clinic.services import billing, invoices
from clinic.services.audit import log_action

BILLING_ROLES = ('cashier',)


def format_payment(p: Payment) -> dict:
    return {
        'id': p.id,
        'invoiceId': p.invoice_id,
        'amount': str(p.amount),
        'method': p.method,
        'referenceNo': p.reference_no,
        'paidAt': p.paid_at.isoformat(),
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def encounter_billing(request, pk: int):
    return Response(billing.billing_summary(get_object_or_404(Encounter, pk=pk)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('cashier', 'doctor', 'nurse')])
def procedure_charge(request, pk: int):
    encounter = get_object_or_404(Encounter, pk=pk)
    s = ProcedureChargeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    item = billing.add_procedure_charge(encounter, s.validated_data['procedure'],
                                        quantity=s.validated_data['quantity'], user=request.user)
    if item is None:
        raise WorkflowError(f"No billable procedure matches '{s.validated_data['procedure']}'.",
                            error_type='service_not_found')
    invoices.sync_for_encounter(encounter)
    return Response(billing.format_item(item), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*BILLING_ROLES)])
def discount(request, pk: int):
    account = get_object_or_404(BillingAccount, encounter_id=pk)
    s = DiscountSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    with transaction.atomic():
        account = billing.apply_discount(account, s.validated_data['discount_amount'])
        invoices.sync_for_encounter(account.encounter)
    log_action(user=request.user, action='billing_discount', object_type='billing_account', object_id=account.id,
               detail={'discount': str(account.discount_amount)})
    return Response(billing.billing_summary(account.encounter))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*BILLING_ROLES)])
def cancel_item(request, pk: int):
    item = get_object_or_404(BillingItem.objects.select_related('account', 'encounter'), pk=pk)
    with transaction.atomic():
        billing.cancel_item(item)
        invoices.sync_for_encounter(item.encounter)
    log_action(user=request.user, action='billing_item_cancelled', object_type='billing_item', object_id=item.id)
    return Response(billing.format_item(item))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*BILLING_ROLES)])
def generate_invoice(request, pk: int):
    invoice, created = invoices.generate_invoice(get_object_or_404(Encounter, pk=pk), user=request.user)
    return Response(invoices.format_invoice(invoice),
                    status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasRole(*BILLING_ROLES)])
def invoice_list(request):
    qs = Invoice.objects.order_by('-issued_at')
    if request.query_params.get('status'):
        qs = qs.filter(status=request.query_params['status'])
    return Response([invoices.format_invoice(i) for i in qs[:200]])


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasRole(*BILLING_ROLES)])
def invoice_detail(request, pk: int):
    invoice = get_object_or_404(Invoice, pk=pk)
    data = invoices.format_invoice(invoice)
    data['payments'] = [format_payment(p) for p in invoice.payments.order_by('paid_at', 'id')]
    data['items'] = billing.billing_summary(invoice.encounter).get('items', [])
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*BILLING_ROLES)])
def payments(request):
    s = PaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    invoice = get_object_or_404(Invoice, pk=vd['invoice_id'])
    payment = Payment.objects.create(
        invoice=invoice,
        amount=vd['amount'],
        method=vd['method'],
        reference_no=vd.get('reference_no', ''),
        notes=vd.get('notes', ''),
        received_by=request.user,
    )
    log_action(user=request.user, action='payment_received', object_type='invoice', object_id=invoice.id,
               detail={'payment_id': payment.id, 'amount': str(payment.amount), 'method': payment.method})
    invoice.refresh_from_db()
    return Response({'payment': format_payment(payment), 'invoice': invoices.format_invoice(invoice)},
                    status=status.HTTP_201_CREATED)


@api_view(['PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, HasRole(*BILLING_ROLES)])
def payment_detail(request, pk: int):
    payment = get_object_or_404(Payment, pk=pk)
    invoice_id = payment.invoice_id
    if request.method == 'DELETE':
        payment.delete()
        log_action(user=request.user, action='payment_deleted', object_type='invoice', object_id=invoice_id,
                   detail={'payment_id': pk})
    else:
        s = PaymentUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        for field, value in s.validated_data.items():
            setattr(payment, field, value)
        payment.save()
    return Response(invoices.format_invoice(Invoice.objects.get(pk=invoice_id)))

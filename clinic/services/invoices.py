import logging

from django.db import transaction
from django.db.models import Sum

from clinic.exceptions import WorkflowError
from clinic.models import BillingAccount, BillingItem, Encounter, Invoice, ZERO
from clinic.services.audit import log_action
from clinic.services.numbers import next_number

logger = logging.getLogger(__name__)


def invoice_status(balance, paid) -> str:
    if balance <= 0:
        return Invoice.STATUS_PAID
    if paid > 0:
        return Invoice.STATUS_PARTIAL
    return Invoice.STATUS_UNPAID


def reconcile(invoice: Invoice) -> Invoice:
    """Recompute paid/balance/status from payments and mirror them on the account."""
    paid = invoice.payments.aggregate(s=Sum('amount'))['s'] or ZERO
    invoice.paid_amount = paid
    invoice.balance = invoice.net_amount - paid
    invoice.status = invoice_status(invoice.balance, paid)
    invoice.save(update_fields=['paid_amount', 'balance', 'status', 'updated_at'])

    account = invoice.account
    account.amount_paid = paid
    account.balance = account.net_amount - paid
    account.status = (BillingAccount.STATUS_SETTLED if invoice.status == Invoice.STATUS_PAID
                      else BillingAccount.STATUS_INVOICED)
    account.save(update_fields=['amount_paid', 'balance', 'status', 'updated_at'])
    return invoice


def _copy_totals(invoice: Invoice, account: BillingAccount) -> None:
    invoice.total_amount = account.total_amount
    invoice.discount_amount = account.discount_amount
    invoice.net_amount = account.net_amount


@transaction.atomic
def generate_invoice(encounter: Encounter, *, user=None) -> tuple[Invoice, bool]:
    """Invoice for an encounter's billing account; returns ``(invoice, created)``."""
    existing = Invoice.objects.filter(encounter=encounter).first()
    if existing:
        return existing, False
    account = BillingAccount.objects.filter(encounter=encounter).first()
    if account is None:
        raise WorkflowError(
            f'No billing account found for encounter {encounter.encounter_number}.',
            error_type='no_billing_account',
            suggestions=['Post at least one charge before invoicing'],
        )
    if not account.items.exclude(status=BillingItem.STATUS_CANCELLED).exists():
        raise WorkflowError(
            f'Billing account {account.account_no} has no billable items.',
            error_type='no_billing_items',
        )
    invoice = Invoice(
        invoice_number=next_number(Invoice, 'invoice_number', 'INV'),
        encounter=encounter,
        account=account,
        patient_id=encounter.patient_id,
    )
    _copy_totals(invoice, account)
    invoice.balance = invoice.net_amount
    invoice.save()
    reconcile(invoice)
    log_action(user=user, action='invoice_generated', object_type='invoice', object_id=invoice.id,
               detail={'encounter': encounter.encounter_number, 'net_amount': str(invoice.net_amount)})
    logger.info('Invoice %s generated for encounter %s', invoice.invoice_number, encounter.encounter_number)
    return invoice, True


@transaction.atomic
def update_from_account(invoice: Invoice) -> Invoice:
    account = BillingAccount.objects.get(pk=invoice.account_id)
    _copy_totals(invoice, account)
    invoice.save(update_fields=['total_amount', 'discount_amount', 'net_amount', 'updated_at'])
    return reconcile(invoice)


def sync_for_encounter(encounter: Encounter):
    invoice = Invoice.objects.filter(encounter=encounter).first()
    if invoice is not None:
        update_from_account(invoice)
    return invoice


def generate_missing() -> dict:
    """Invoice every account with a positive total and no invoice; failures are counted."""
    accounts = (
        BillingAccount.objects.filter(total_amount__gt=0, encounter__invoice__isnull=True)
        .select_related('encounter')
        .order_by('id')
    )
    generated = errors = 0
    for account in accounts:
        try:
            _, created = generate_invoice(account.encounter)
            generated += int(created)
        except Exception:
            errors += 1
            logger.exception('Invoice generation failed for account %s', account.account_no)
    logger.info('Generated %s missing invoice(s), %s error(s)', generated, errors)
    return {'generated': generated, 'errors': errors}


def format_invoice(inv: Invoice) -> dict:
    return {
        'id': inv.id,
        'invoiceNumber': inv.invoice_number,
        'encounterId': inv.encounter_id,
        'patientId': inv.patient_id,
        'totalAmount': str(inv.total_amount),
        'discountAmount': str(inv.discount_amount),
        'netAmount': str(inv.net_amount),
        'paidAmount': str(inv.paid_amount),
        'balance': str(inv.balance),
        'status': inv.status,
        'issuedAt': inv.issued_at.isoformat(),
    }

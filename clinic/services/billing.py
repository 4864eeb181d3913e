"""
Charge posting onto billing accounts.

One :class:`~clinic.models.BillingAccount` exists per encounter.  Prices
come from the service catalogue: active, billable rows in the charge's
category whose code, name or description contains a keyword.  Lab tests
and medications fall back to the test catalogue / formulary price.  When
nothing can be priced a warning is logged and no item is posted.

Posting is idempotent where the source has an identity: one consultation
per encounter, one lab charge per order, one medication charge per
prescription and bed days counted per bed assignment.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Case, IntegerField, Q, Sum, Value, When

from clinic.exceptions import WorkflowError
from clinic.models import (
    BedAssignment, BillingAccount, BillingItem, Encounter, LabOrder, Prescription, ServiceCatalogue, ZERO,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

CONSULTATION_SEARCH = {
    'OPD': 'General Physician Consultation',
    'Specialist': 'Specialist Consultation',
    'FollowUp': 'Follow-up Consultation',
    'Emergency': 'Emergency Consultation',
}
CONSULTATION_RANKING = ('General Physician', 'General', 'Specialist', 'Emergency', 'Follow')


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def account_number(encounter_id: int) -> str:
    return f'BA{encounter_id:06d}'


def get_or_create_account(encounter: Encounter) -> BillingAccount:
    account, created = BillingAccount.objects.get_or_create(
        encounter=encounter,
        defaults={'patient_id': encounter.patient_id, 'account_no': account_number(encounter.id)},
    )
    if created:
        logger.info('Billing account %s opened for encounter %s', account.account_no, encounter.encounter_number)
    return account


def find_service(category: str, keyword: str) -> Optional[ServiceCatalogue]:
    if not keyword:
        return None
    return (
        ServiceCatalogue.objects.filter(category=category, is_active=True, is_billable=True)
        .filter(Q(code__icontains=keyword) | Q(name__icontains=keyword) | Q(description__icontains=keyword))
        .order_by('id')
        .first()
    )


def find_consultation_service(consultation_type: str) -> Optional[ServiceCatalogue]:
    """Service for a consultation type; the mapped name wins, then the ranking."""
    base = ServiceCatalogue.objects.filter(is_active=True, is_billable=True)
    term = CONSULTATION_SEARCH.get(consultation_type, 'Consultation')
    exact = base.filter(name__icontains=term).order_by('id').first()
    if exact:
        return exact
    rank = Case(
        *[When(name__icontains=label, then=Value(i)) for i, label in enumerate(CONSULTATION_RANKING, start=1)],
        default=Value(len(CONSULTATION_RANKING) + 1),
        output_field=IntegerField(),
    )
    return (
        base.filter(Q(category=ServiceCatalogue.CATEGORY_CONSULTATION) | Q(name__icontains='consultation'))
        .annotate(rank=rank)
        .order_by('rank', 'id')
        .first()
    )


def active_items(qs):
    return qs.exclude(status=BillingItem.STATUS_CANCELLED)


def update_totals(account: BillingAccount) -> BillingAccount:
    """total = sum of non-cancelled net amounts; net = total - discount; balance = net - paid."""
    total = active_items(account.items.all()).aggregate(s=Sum('net_amount'))['s'] or ZERO
    account.total_amount = _money(total)
    account.net_amount = account.total_amount - account.discount_amount
    account.balance = account.net_amount - account.amount_paid
    account.save(update_fields=['total_amount', 'net_amount', 'balance', 'updated_at'])
    return account


def _post(encounter: Encounter, *, item_type: str, description: str, unit_price, quantity: int = 1,
          service: Optional[ServiceCatalogue] = None, reference_type: str = '', reference_id='',
          user=None) -> BillingItem:
    account = get_or_create_account(encounter)
    unit_price = _money(unit_price)
    amount = unit_price * quantity
    item = BillingItem.objects.create(
        account=account,
        encounter=encounter,
        item_type=item_type,
        service=service,
        service_code=service.code if service else '',
        description=description[:255],
        quantity=quantity,
        unit_price=unit_price,
        amount=amount,
        net_amount=amount,
        reference_type=reference_type,
        reference_id=str(reference_id),
        posted_by=user if getattr(user, 'pk', None) else None,
    )
    update_totals(account)
    logger.info('Posted %s charge %s x%s for encounter %s (item %s)',
                item_type, unit_price, quantity, encounter.encounter_number, item.id)
    return item


def has_charge(encounter: Encounter, item_type: str, reference_type: str = '', reference_id=None) -> bool:
    qs = active_items(BillingItem.objects.filter(encounter=encounter, item_type=item_type))
    if reference_type:
        qs = qs.filter(reference_type=reference_type, reference_id=str(reference_id))
    return qs.exists()


@transaction.atomic
def add_consultation_charge(encounter: Encounter, consultation_type: str = 'OPD', *, user=None) -> Optional[BillingItem]:
    if has_charge(encounter, ServiceCatalogue.CATEGORY_CONSULTATION):
        logger.info('Consultation already charged for encounter %s, skipping', encounter.encounter_number)
        return None
    service = find_consultation_service(consultation_type)
    if service is None:
        logger.warning("No consultation service found for type '%s'", consultation_type)
        return None
    return _post(
        encounter,
        item_type=ServiceCatalogue.CATEGORY_CONSULTATION,
        description=f'{consultation_type} Consultation ({service.name})',
        unit_price=service.unit_price,
        service=service,
        reference_type='physician',
        reference_id=encounter.attending_doctor_id or '',
        user=user,
    )


@transaction.atomic
def add_bed_charge(encounter: Encounter, assignment: BedAssignment, days: int, *, user=None) -> Optional[BillingItem]:
    bed = assignment.bed
    service = find_service(ServiceCatalogue.CATEGORY_BED, bed.bed_type) \
        or find_service(ServiceCatalogue.CATEGORY_BED, bed.ward.ward_type)
    if service is None:
        logger.warning("No bed charge found for type '%s'", bed.bed_type)
        return None
    return _post(
        encounter,
        item_type=ServiceCatalogue.CATEGORY_BED,
        description=f'{service.name} ({days} day(s))',
        unit_price=service.unit_price,
        quantity=days,
        service=service,
        reference_type='bed_assignment',
        reference_id=assignment.id,
        user=user,
    )


def charged_bed_days(assignment: BedAssignment) -> int:
    qs = active_items(BillingItem.objects.filter(
        item_type=ServiceCatalogue.CATEGORY_BED, reference_type='bed_assignment', reference_id=str(assignment.id),
    ))
    return qs.aggregate(d=Sum('quantity'))['d'] or 0


@transaction.atomic
def post_outstanding_bed_days(assignment: BedAssignment, *, user=None) -> Optional[BillingItem]:
    """Charge bed days used by ``assignment`` that are not billed yet."""
    remaining = assignment.days() - charged_bed_days(assignment)
    if remaining <= 0:
        return None
    return add_bed_charge(assignment.encounter, assignment, remaining, user=user)


@transaction.atomic
def add_lab_test_charge(order: LabOrder, *, user=None) -> Optional[BillingItem]:
    encounter = order.encounter
    if has_charge(encounter, ServiceCatalogue.CATEGORY_LAB, 'lab_order', order.id):
        logger.info('Lab order %s already charged, skipping', order.id)
        return None
    test = order.test
    service = find_service(ServiceCatalogue.CATEGORY_LAB, test.name) \
        or find_service(ServiceCatalogue.CATEGORY_LAB, test.code)
    price = service.unit_price if service else test.price
    if not price:
        logger.warning("No lab test found for '%s'", test.name)
        return None
    return _post(
        encounter,
        item_type=ServiceCatalogue.CATEGORY_LAB,
        description=f'{test.name} ({order.priority})',
        unit_price=price,
        service=service,
        reference_type='lab_order',
        reference_id=order.id,
        user=user,
    )


@transaction.atomic
def add_procedure_charge(encounter: Encounter, procedure_name: str, *, quantity: int = 1,
                         reference_id='', user=None) -> Optional[BillingItem]:
    service = find_service(ServiceCatalogue.CATEGORY_PROCEDURE, procedure_name)
    if service is None:
        logger.warning("No procedure found for '%s'", procedure_name)
        return None
    return _post(
        encounter,
        item_type=ServiceCatalogue.CATEGORY_PROCEDURE,
        description=service.name,
        unit_price=service.unit_price,
        quantity=quantity,
        service=service,
        reference_type='procedure',
        reference_id=reference_id or service.id,
        user=user,
    )


@transaction.atomic
def add_medication_charge(prescription: Prescription, *, user=None) -> Optional[BillingItem]:
    encounter = prescription.encounter
    if has_charge(encounter, ServiceCatalogue.CATEGORY_MEDICATION, 'prescription', prescription.id):
        return None
    drug = prescription.drug
    service = find_service(ServiceCatalogue.CATEGORY_MEDICATION, drug.name)
    price = service.unit_price if service else drug.unit_price
    if not price:
        logger.warning("No medication found for '%s'", drug.name)
        return None
    return _post(
        encounter,
        item_type=ServiceCatalogue.CATEGORY_MEDICATION,
        description=f'{drug.name} {drug.strength}',
        unit_price=price,
        quantity=prescription.quantity,
        service=service,
        reference_type='prescription',
        reference_id=prescription.id,
        user=user,
    )


@transaction.atomic
def apply_discount(account: BillingAccount, amount) -> BillingAccount:
    account = BillingAccount.objects.select_for_update().get(pk=account.pk)
    amount = _money(amount)
    if amount < 0 or amount > account.total_amount:
        raise WorkflowError(
            f'Discount must be between 0 and the account total ({account.total_amount}).',
            error_type='invalid_discount',
            details={'discount': str(amount), 'total_amount': str(account.total_amount)},
        )
    account.discount_amount = amount
    account.save(update_fields=['discount_amount', 'updated_at'])
    return update_totals(account)


@transaction.atomic
def cancel_item(item: BillingItem) -> BillingItem:
    if item.status == BillingItem.STATUS_CANCELLED:
        raise WorkflowError('Billing item is already cancelled.', error_type='already_cancelled')
    item.status = BillingItem.STATUS_CANCELLED
    item.save(update_fields=['status'])
    update_totals(item.account)
    logger.info('Cancelled billing item %s on account %s', item.id, item.account.account_no)
    return item


def format_item(i: BillingItem) -> dict:
    return {
        'id': i.id,
        'itemType': i.item_type,
        'description': i.description,
        'serviceCode': i.service_code,
        'quantity': i.quantity,
        'unitPrice': str(i.unit_price),
        'amount': str(i.amount),
        'netAmount': str(i.net_amount),
        'status': i.status,
        'referenceType': i.reference_type,
        'referenceId': i.reference_id,
        'postedAt': i.posted_at.isoformat(),
    }


def billing_summary(encounter: Encounter) -> dict:
    account = BillingAccount.objects.filter(encounter=encounter).first()
    if account is None:
        return {
            'account_exists': False,
            'total_amount': '0.00',
            'amount_paid': '0.00',
            'balance': '0.00',
            'items_count': 0,
        }
    items = active_items(account.items.all()).order_by('posted_at', 'id')
    return {
        'account_exists': True,
        'account_no': account.account_no,
        'status': account.status,
        'total_amount': str(account.total_amount),
        'discount_amount': str(account.discount_amount),
        'net_amount': str(account.net_amount),
        'amount_paid': str(account.amount_paid),
        'balance': str(account.balance),
        'items_count': items.count(),
        'items': [format_item(i) for i in items],
    }

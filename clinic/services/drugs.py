"""
Drug formulary and stock keeping.

Every change to ``stock_quantity`` goes through :func:`move_stock`, which
expects the drug row to be locked and writes the matching
:class:`~clinic.models.StockMovement`.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from django.db import transaction
from django.db.models import F, Q

from clinic.exceptions import DrugStockError, MasterDataValidationError
from clinic.models import DrugFormulary, StockMovement
from clinic.services import master_data
from clinic.services.audit import record_master_change, snapshot

logger = logging.getLogger(__name__)

ATC_CODE_RE = re.compile(r'^[A-Z][0-9]{2}[A-Z]{2}[0-9]{2}$')


def format_drug(d: DrugFormulary) -> dict:
    return {
        'id': d.id,
        'name': d.name,
        'genericName': d.generic_name,
        'atcCode': d.atc_code,
        'strength': d.strength,
        'form': d.form,
        'therapeuticClass': d.therapeutic_class,
        'unitPrice': str(d.unit_price),
        'stockQuantity': d.stock_quantity,
        'reorderLevel': d.reorder_level,
        'stockStatus': d.stock_status,
        'status': d.status,
    }


def format_movement(m: StockMovement) -> dict:
    return {
        'id': m.id,
        'drugId': m.drug_id,
        'type': m.movement_type,
        'quantity': m.quantity,
        'balanceAfter': m.balance_after,
        'referenceNo': m.reference_no,
        'notes': m.notes,
        'createdAt': m.created_at.isoformat(),
    }


def list_drugs(*, search: Optional[str] = None, status: Optional[str] = None,
               stock_status: Optional[str] = None) -> list[dict]:
    params = {'search': search or '', 'status': status or ''}

    def load():
        qs = DrugFormulary.objects.all()
        if status:
            qs = qs.filter(status=status)
        if search:
            qs = qs.filter(
                Q(name__icontains=search) | Q(generic_name__icontains=search)
                | Q(atc_code__icontains=search) | Q(therapeutic_class__icontains=search)
            )
        return [format_drug(d) for d in qs.order_by('name', 'strength')]

    rows = master_data.remember('drug', 'list', load, params)
    if stock_status:
        rows = [r for r in rows if r['stockStatus'] == stock_status]
    return rows


def low_stock_drugs() -> list[dict]:
    qs = DrugFormulary.objects.filter(status='active', stock_quantity__lte=F('reorder_level'))
    return [format_drug(d) for d in qs.order_by('stock_quantity')]


def validate_atc_code(code: str) -> None:
    if code and not ATC_CODE_RE.match(code):
        raise MasterDataValidationError(
            f"Invalid ATC code '{code}'.",
            details={'atc_code': ['ATC code must look like A10BA02']},
        )


def validate_stock_operation(drug: DrugFormulary, operation: str, quantity: int = 0, *,
                             protect_reorder_level: bool = False) -> None:
    if operation == 'dispense':
        if quantity > drug.stock_quantity:
            raise DrugStockError.insufficient_stock(drug, quantity)
        if drug.stock_quantity - quantity <= drug.reorder_level:
            if protect_reorder_level:
                raise DrugStockError.below_reorder_level(drug)
            logger.warning('Stock for %s (id=%s) at or below reorder level after dispensing %s',
                           drug.name, drug.id, quantity)
    elif operation == 'adjust':
        if drug.stock_quantity + quantity < 0:
            raise DrugStockError.negative_stock(drug, quantity)
    elif operation == 'reorder_level':
        if quantity < 0:
            raise DrugStockError.invalid_reorder_level(drug, quantity)
    else:
        raise DrugStockError.stock_adjustment_error(drug, f'unknown operation {operation!r}')


def move_stock(drug: DrugFormulary, quantity: int, movement_type: str, *, reference_no: str = '',
               notes: str = '', user=None) -> StockMovement:
    """Apply a signed quantity to a locked drug row and record the movement."""
    drug.stock_quantity += quantity
    drug.save(update_fields=['stock_quantity', 'updated_at'])
    movement = StockMovement.objects.create(
        drug=drug,
        movement_type=movement_type,
        quantity=quantity,
        balance_after=drug.stock_quantity,
        reference_no=reference_no,
        notes=notes,
        user=user if getattr(user, 'pk', None) else None,
    )
    master_data.invalidate('drug')
    return movement


def lock_drug(drug_id: int) -> DrugFormulary:
    return DrugFormulary.objects.select_for_update().get(pk=drug_id)


@transaction.atomic
def create_drug(data: dict, *, user=None, ip=None) -> DrugFormulary:
    validate_atc_code(data.get('atc_code', ''))
    drug = DrugFormulary.objects.create(
        name=data['name'],
        generic_name=data.get('generic_name', ''),
        atc_code=data.get('atc_code', ''),
        strength=data['strength'],
        form=data['form'],
        therapeutic_class=data.get('therapeutic_class', ''),
        contraindications=data.get('contraindications', ''),
        side_effects=data.get('side_effects', ''),
        manufacturer=data.get('manufacturer', ''),
        unit_price=data['unit_price'],
        stock_quantity=data.get('stock_quantity', 0),
        reorder_level=data.get('reorder_level', 10),
        status=data.get('status', 'active'),
    )
    record_master_change(entity=drug, action='created', new=snapshot(drug), user=user, ip=ip)
    master_data.invalidate('drug')
    return drug


@transaction.atomic
def adjust_stock(drug: DrugFormulary, adjustment: int, *, reason: str = 'adjustment', user=None, ip=None) -> DrugFormulary:
    drug = lock_drug(drug.pk)
    validate_stock_operation(drug, 'adjust', adjustment)
    old = drug.stock_quantity
    move_stock(drug, adjustment, StockMovement.TYPE_ADJUSTMENT, notes=reason, user=user)
    record_master_change(entity=drug, action='updated', old={'stock_quantity': old},
                         new={'stock_quantity': drug.stock_quantity, 'reason': reason}, user=user, ip=ip)
    logger.info('Stock adjusted for %s: %s -> %s (%s)', drug.name, old, drug.stock_quantity, reason)
    return drug


@transaction.atomic
def set_reorder_level(drug: DrugFormulary, level: int, *, user=None, ip=None) -> DrugFormulary:
    drug = lock_drug(drug.pk)
    validate_stock_operation(drug, 'reorder_level', level)
    old = drug.reorder_level
    drug.reorder_level = level
    drug.save(update_fields=['reorder_level', 'updated_at'])
    record_master_change(entity=drug, action='updated', old={'reorder_level': old},
                         new={'reorder_level': level}, user=user, ip=ip)
    master_data.invalidate('drug')
    return drug

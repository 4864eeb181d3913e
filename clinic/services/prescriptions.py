"""
Prescribing and dispensing.

Instant-dispensing prescriptions take their stock off the shelf at
prescribing time (a ``RESERVATION`` movement).  The reservation turns
into a dispense when the consultation completes, or is handed back by
:func:`release_stock`, which the ``release_expired_reservations`` job
runs for reservations older than ``STOCK_RESERVATION_TTL_MINUTES``.
"""
from __future__ import annotations

import logging
import re
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from clinic.exceptions import AllergyConflict, DrugStockError, WorkflowError
from clinic.models import DrugFormulary, Encounter, Patient, Prescription, StockMovement
from clinic.services import drugs
from clinic.text import clean_text

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('dosage', 'frequency', 'duration', 'quantity')
ACTIVE_STATUSES = (Prescription.STATUS_PENDING, Prescription.STATUS_DISPENSED)


def validate_fields(data: dict) -> None:
    missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
    if missing:
        raise ValidationError({'validation': [f"Required fields missing: {', '.join(missing)}"]})


def allergy_matches(patient: Patient, drug: DrugFormulary) -> list[str]:
    """Patient allergies found (case-insensitively) in the drug's name, generic name or class."""
    haystacks = [(drug.name or '').lower(), (drug.generic_name or '').lower(), (drug.therapeutic_class or '').lower()]
    hits = []
    for allergy in patient.allergies or []:
        needle = str(allergy).strip().lower()
        if needle and any(needle in h for h in haystacks):
            hits.append(str(allergy))
    return hits


def _contraindications(drug: DrugFormulary) -> list[str]:
    return [c.strip() for c in re.split(r'[\n;]+', drug.contraindications or '') if c.strip()]


def check_interactions(patient: Patient, drug: DrugFormulary) -> list[dict]:
    interactions = []
    active = (
        Prescription.objects.filter(patient=patient, status__in=ACTIVE_STATUSES)
        .select_related('drug')
    )
    for rx in active:
        existing = rx.drug
        if (drug.therapeutic_class and drug.therapeutic_class == existing.therapeutic_class
                and drug.id != existing.id):
            interactions.append({
                'drug_name': existing.name,
                'interaction_type': 'therapeutic_class',
                'message': f'Potential interaction: Both drugs belong to the same therapeutic class '
                           f'({drug.therapeutic_class})',
            })
        names = [n.lower() for n in (existing.name, existing.generic_name) if n]
        for entry in _contraindications(drug):
            if any(n in entry.lower() for n in names):
                interactions.append({
                    'drug_name': existing.name,
                    'interaction_type': 'contraindication',
                    'message': f'Contraindication: {entry}',
                })
    return interactions


def reserve_stock(prescription: Prescription, *, user=None) -> StockMovement:
    drug = drugs.lock_drug(prescription.drug_id)
    if drug.stock_quantity < prescription.quantity:
        raise DrugStockError.insufficient_stock(drug, prescription.quantity)
    movement = drugs.move_stock(
        drug, -prescription.quantity, StockMovement.TYPE_RESERVATION,
        reference_no=prescription.reference_no,
        notes=f'Stock reserved for prescription #{prescription.id}',
        user=user,
    )
    prescription.stock_reserved = True
    prescription.stock_reserved_at = timezone.now()
    prescription.save(update_fields=['stock_reserved', 'stock_reserved_at'])
    return movement


@transaction.atomic
def release_stock(prescription: Prescription, *, user=None, reason: str = '') -> bool:
    """Return reserved stock to the shelf; ``False`` if nothing was reserved."""
    prescription = Prescription.objects.select_for_update().get(pk=prescription.pk)
    if not prescription.stock_reserved:
        return False
    drug = drugs.lock_drug(prescription.drug_id)
    drugs.move_stock(
        drug, prescription.quantity, StockMovement.TYPE_RETURN,
        reference_no=prescription.reference_no,
        notes=reason or f'Stock released from prescription #{prescription.id}',
        user=user,
    )
    prescription.stock_reserved = False
    prescription.stock_reserved_at = None
    prescription.save(update_fields=['stock_reserved', 'stock_reserved_at'])
    logger.info('Released %s unit(s) of %s from prescription %s', prescription.quantity, drug.name, prescription.id)
    return True


@transaction.atomic
def create_prescription(encounter: Encounter, data: dict, *, user=None) -> Prescription:
    validate_fields(data)
    patient = encounter.patient
    drug = DrugFormulary.objects.get(pk=data['drug_id'])
    if drug.status != 'active':
        raise WorkflowError(f'{drug.name} is discontinued.', error_type='drug_discontinued')

    hits = allergy_matches(patient, drug)
    if hits:
        raise AllergyConflict(
            'Patient is allergic to this medication. Prescription blocked.',
            details={'drug_id': drug.id, 'allergies': hits},
            suggestions=['Choose a drug from a different therapeutic class'],
        )

    prescription_data = dict(data.get('prescription_data') or {})
    interactions = check_interactions(patient, drug)
    if interactions:
        prescription_data['drug_interactions'] = interactions

    instant = bool(data.get('instant_dispensing'))
    if instant:
        drugs.validate_stock_operation(drug, 'dispense', int(data['quantity']))

    rx = Prescription.objects.create(
        encounter=encounter,
        patient=patient,
        drug=drug,
        prescriber=user if getattr(user, 'pk', None) else None,
        dosage=data['dosage'],
        frequency=data['frequency'],
        duration=data['duration'],
        quantity=int(data['quantity']),
        instructions=clean_text(data.get('instructions')),
        instant_dispensing=instant,
        prescription_data=prescription_data,
    )
    if instant:
        reserve_stock(rx, user=user)
    return rx


def _mark_dispensed(rx: Prescription, user=None) -> Prescription:
    rx.status = Prescription.STATUS_DISPENSED
    rx.dispensed_at = timezone.now()
    rx.dispensed_by = user if getattr(user, 'pk', None) else None
    rx.stock_reserved = False
    rx.save(update_fields=['status', 'dispensed_at', 'dispensed_by', 'stock_reserved'])
    return rx


def dispense_reserved(encounter: Encounter, *, user=None) -> int:
    """Turn the encounter's reserved instant prescriptions into dispensed ones."""
    count = 0
    qs = Prescription.objects.select_for_update().filter(
        encounter=encounter, instant_dispensing=True, stock_reserved=True, status=Prescription.STATUS_PENDING,
    )
    for rx in qs:
        _mark_dispensed(rx, user)
        count += 1
    return count


@transaction.atomic
def dispense(prescription: Prescription, *, user=None) -> Prescription:
    """Pharmacist dispense of a pending prescription."""
    rx = Prescription.objects.select_for_update().get(pk=prescription.pk)
    if rx.status != Prescription.STATUS_PENDING:
        raise WorkflowError(f'Prescription is already {rx.status}.', error_type='invalid_status')
    if not rx.stock_reserved:
        drug = drugs.lock_drug(rx.drug_id)
        drugs.validate_stock_operation(drug, 'dispense', rx.quantity)
        drugs.move_stock(drug, -rx.quantity, StockMovement.TYPE_DISPENSE,
                         reference_no=rx.reference_no, notes=f'Dispensed prescription #{rx.id}', user=user)
    return _mark_dispensed(rx, user)


@transaction.atomic
def cancel(prescription: Prescription, *, user=None) -> Prescription:
    rx = Prescription.objects.select_for_update().get(pk=prescription.pk)
    if rx.status != Prescription.STATUS_PENDING:
        raise WorkflowError(f'Prescription is already {rx.status}.', error_type='invalid_status')
    release_stock(rx, user=user, reason=f'Prescription #{rx.id} cancelled')
    rx.refresh_from_db()
    rx.status = Prescription.STATUS_CANCELLED
    rx.save(update_fields=['status'])
    return rx


def expired_reservations(now=None):
    cutoff = (now or timezone.now()) - timedelta(minutes=settings.STOCK_RESERVATION_TTL_MINUTES)
    return Prescription.objects.filter(
        stock_reserved=True, stock_reserved_at__lt=cutoff, status=Prescription.STATUS_PENDING,
    ).order_by('stock_reserved_at')


def release_expired(now=None) -> dict:
    released = failed = 0
    for rx in list(expired_reservations(now)):
        try:
            if release_stock(rx, reason=f'Reservation expired for prescription #{rx.id}'):
                released += 1
        except Exception:
            failed += 1
            logger.exception('Failed to release reservation for prescription %s', rx.id)
    return {'released': released, 'failed': failed}


def format_prescription(rx: Prescription) -> dict:
    return {
        'id': rx.id,
        'encounterId': rx.encounter_id,
        'patientId': rx.patient_id,
        'drugId': rx.drug_id,
        'drug': str(rx.drug),
        'dosage': rx.dosage,
        'frequency': rx.frequency,
        'duration': rx.duration,
        'quantity': rx.quantity,
        'instantDispensing': rx.instant_dispensing,
        'stockReserved': rx.stock_reserved,
        'status': rx.status,
        'interactions': rx.prescription_data.get('drug_interactions', []),
    }

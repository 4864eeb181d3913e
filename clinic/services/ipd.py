"""
Inpatient (IPD) admissions, transfers, discharges and census.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from django.db import transaction
from django.db.models import Avg, Count, ExpressionWrapper, F, DurationField, Q
from django.utils import timezone

from clinic import events
from clinic.exceptions import WorkflowError
from clinic.models import Bed, BedAssignment, Encounter, Patient, Ward
from clinic.services import wards
from clinic.services.audit import log_action
from clinic.services.numbers import next_number
from clinic.text import clean_text

logger = logging.getLogger(__name__)


def _assign_bed(encounter: Encounter, bed_id: int, user=None) -> BedAssignment:
    bed = Bed.objects.select_for_update().select_related('ward').get(pk=bed_id)
    wards.occupy_bed(bed)
    return BedAssignment.objects.create(
        encounter=encounter,
        bed=bed,
        assigned_by=user if getattr(user, 'pk', None) else None,
    )


def _release_current(encounter: Encounter, reason: str) -> Optional[BedAssignment]:
    assignment = (
        BedAssignment.objects.select_for_update()
        .filter(encounter=encounter, released_at__isnull=True)
        .select_related('bed')
        .first()
    )
    if assignment is None:
        return None
    assignment.released_at = timezone.now()
    assignment.release_reason = reason
    assignment.save(update_fields=['released_at', 'release_reason'])
    bed = Bed.objects.select_for_update().get(pk=assignment.bed_id)
    wards.release_bed(bed)
    return assignment


def current_assignment(encounter: Encounter) -> Optional[BedAssignment]:
    return encounter.bed_assignments.filter(released_at__isnull=True).select_related('bed__ward').first()


def _lock_active(encounter: Encounter) -> Encounter:
    encounter = Encounter.objects.select_for_update().get(pk=encounter.pk)
    if encounter.type != Encounter.TYPE_IPD or encounter.status != Encounter.STATUS_ACTIVE:
        raise WorkflowError(
            f'Encounter {encounter.encounter_number} is not an active admission.',
            error_type='not_admitted',
        )
    return encounter


@transaction.atomic
def admit_patient(patient: Patient, data: dict, *, user=None) -> Encounter:
    if Encounter.objects.filter(patient=patient, type=Encounter.TYPE_IPD, status=Encounter.STATUS_ACTIVE).exists():
        raise WorkflowError(
            f'{patient.full_name} is already admitted.',
            error_type='already_admitted',
            suggestions=['Transfer the patient instead of admitting again'],
        )
    encounter = Encounter.objects.create(
        encounter_number=next_number(Encounter, 'encounter_number', 'IPD'),
        patient=patient,
        type=Encounter.TYPE_IPD,
        status=Encounter.STATUS_ACTIVE,
        department_id=data.get('department_id'),
        attending_doctor_id=data.get('attending_doctor_id'),
        chief_complaint=clean_text(data.get('chief_complaint')),
        admission_datetime=timezone.now(),
    )
    assignment = None
    if data.get('bed_id'):
        assignment = _assign_bed(encounter, data['bed_id'], user)
    log_action(user=user, action='ipd_admitted', object_type='encounter', object_id=encounter.id,
               detail={'bed_id': data.get('bed_id')})
    events.dispatch('patient_admitted', encounter_id=encounter.id,
                    assignment_id=assignment.id if assignment else None, user_id=getattr(user, 'pk', None))
    return encounter


@transaction.atomic
def transfer_patient(encounter: Encounter, bed_id: int, *, reason: str = '', user=None) -> BedAssignment:
    encounter = _lock_active(encounter)
    current = current_assignment(encounter)
    if current and current.bed_id == int(bed_id):
        raise WorkflowError('Patient is already in this bed.', error_type='same_bed')
    released = _release_current(encounter, 'transfer')
    assignment = _assign_bed(encounter, bed_id, user)
    log_action(user=user, action='ipd_transferred', object_type='encounter', object_id=encounter.id,
               detail={'from_bed': current.bed_id if current else None, 'to_bed': int(bed_id), 'reason': reason})
    events.dispatch('patient_transferred', encounter_id=encounter.id,
                    released_assignment_id=released.id if released else None, assignment_id=assignment.id,
                    user_id=getattr(user, 'pk', None))
    return assignment


@transaction.atomic
def discharge_patient(encounter: Encounter, data: dict, *, user=None) -> Encounter:
    encounter = _lock_active(encounter)
    encounter.status = Encounter.STATUS_COMPLETED
    encounter.discharge_datetime = timezone.now()
    encounter.discharge_summary = clean_text(data.get('discharge_summary'))
    encounter.discharge_condition = data.get('discharge_condition') or ''
    encounter.save(update_fields=['status', 'discharge_datetime', 'discharge_summary', 'discharge_condition'])
    _release_current(encounter, 'discharge')
    log_action(user=user, action='ipd_discharged', object_type='encounter', object_id=encounter.id,
               detail={'condition': encounter.discharge_condition})
    events.dispatch('patient_discharged', encounter_id=encounter.id, user_id=getattr(user, 'pk', None))
    return encounter


def census(ward_id: Optional[int] = None) -> dict:
    active = Encounter.objects.filter(type=Encounter.TYPE_IPD, status=Encounter.STATUS_ACTIVE)
    if ward_id:
        active = active.filter(bed_assignments__released_at__isnull=True, bed_assignments__bed__ward_id=ward_id)
    by_ward = []
    ward_qs = Ward.objects.annotate(
        total_beds=Count('beds', distinct=True),
        occupied=Count(
            'beds__assignments',
            filter=Q(beds__assignments__released_at__isnull=True,
                     beds__assignments__encounter__status=Encounter.STATUS_ACTIVE,
                     beds__assignments__encounter__type=Encounter.TYPE_IPD),
            distinct=True,
        ),
    ).order_by('name')
    if ward_id:
        ward_qs = ward_qs.filter(pk=ward_id)
    for w in ward_qs:
        by_ward.append({
            'wardId': w.id,
            'ward': w.name,
            'totalBeds': w.total_beds,
            'occupiedBeds': w.occupied,
        })
    return {'totalActiveAdmissions': active.distinct().count(), 'byWard': by_ward}


def ward_census(ward: Ward) -> dict:
    total = ward.beds.count()
    occupied = ward.beds.filter(status=Bed.STATUS_OCCUPIED).count()
    return {
        'wardId': ward.id,
        'totalBeds': total,
        'occupiedBeds': occupied,
        'availableBeds': total - occupied,
        'occupancyRate': wards.occupancy_rate(occupied, total),
    }


def statistics(start=None, end=None) -> dict:
    end = end or timezone.now()
    start = start or end - timedelta(days=30)
    ipd = Encounter.objects.filter(type=Encounter.TYPE_IPD)
    discharged = ipd.filter(discharge_datetime__isnull=False, discharge_datetime__range=(start, end))
    avg = discharged.annotate(
        stay=ExpressionWrapper(F('discharge_datetime') - F('admission_datetime'), output_field=DurationField())
    ).aggregate(a=Avg('stay'))['a']
    avg_days = round(avg.total_seconds() / 86400, 1) if avg else 0.0
    return {
        'periodStart': start.isoformat(),
        'periodEnd': end.isoformat(),
        'totalAdmissions': ipd.filter(admission_datetime__range=(start, end)).count(),
        'totalDischarges': discharged.count(),
        'averageLengthOfStay': avg_days,
    }


def format_admission(e: Encounter) -> dict:
    assignment = current_assignment(e)
    return {
        'id': e.id,
        'encounterNumber': e.encounter_number,
        'patientId': e.patient_id,
        'patient': e.patient.full_name,
        'status': e.status,
        'admittedAt': e.admission_datetime.isoformat(),
        'dischargedAt': e.discharge_datetime.isoformat() if e.discharge_datetime else None,
        'bed': {
            'id': assignment.bed_id,
            'bedNumber': assignment.bed.bed_number,
            'ward': assignment.bed.ward.name,
        } if assignment else None,
    }

"""
Outpatient (OPD) appointment workflow.

An appointment moves SCHEDULED -> (CONFIRMED) -> CHECKED_IN -> IN_PROGRESS
-> COMPLETED, or ends CANCELLED / NO_SHOW.  Every change is broadcast to
the appointment boards after the transaction commits.  Completing a
consultation finalises the SOAP note, dispenses reserved prescriptions,
submits lab orders and fires ``consultation_completed`` for billing.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction
from django.db.models import Case, IntegerField, Value, When
from django.utils import timezone

from clinic import events
from clinic.exceptions import WorkflowError
from clinic.models import Encounter, OpdAppointment, Patient, SoapNote
from clinic.services import lab_orders, prescriptions, realtime, triage
from clinic.services.audit import log_action
from clinic.services.numbers import next_number
from clinic.text import clean_text

logger = logging.getLogger(__name__)

S = OpdAppointment
TRANSITIONS = {
    S.STATUS_SCHEDULED: {S.STATUS_CONFIRMED, S.STATUS_CHECKED_IN, S.STATUS_CANCELLED, S.STATUS_NO_SHOW},
    S.STATUS_CONFIRMED: {S.STATUS_CHECKED_IN, S.STATUS_CANCELLED, S.STATUS_NO_SHOW},
    S.STATUS_CHECKED_IN: {S.STATUS_IN_PROGRESS, S.STATUS_CANCELLED},
    S.STATUS_IN_PROGRESS: {S.STATUS_COMPLETED, S.STATUS_CANCELLED},
    S.STATUS_COMPLETED: {S.STATUS_IN_PROGRESS},
    S.STATUS_CANCELLED: set(),
    S.STATUS_NO_SHOW: set(),
}
ACTIVE_STATUSES = (S.STATUS_SCHEDULED, S.STATUS_CONFIRMED, S.STATUS_CHECKED_IN, S.STATUS_IN_PROGRESS)

# appointment type -> consultation type used for billing
CONSULTATION_TYPES = {
    S.TYPE_NEW: 'OPD',
    S.TYPE_SPECIALIST: 'Specialist',
    S.TYPE_FOLLOW_UP: 'FollowUp',
    S.TYPE_EMERGENCY: 'Emergency',
}


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def _lock(appt: OpdAppointment) -> OpdAppointment:
    return OpdAppointment.objects.select_for_update().select_related('patient', 'encounter').get(pk=appt.pk)


def _move(appt: OpdAppointment, new_status: str, *, action: str, user=None, extra_fields=()) -> OpdAppointment:
    if not can_transition(appt.status, new_status):
        raise WorkflowError(
            f'Appointment {appt.appointment_number} cannot move from {appt.status} to {new_status}.',
            error_type='invalid_transition',
            details={'current_status': appt.status, 'requested_status': new_status},
        )
    appt.status = new_status
    appt.save(update_fields=['status', *extra_fields])
    log_action(user=user, action=f'opd_{action}', object_type='opd_appointment', object_id=appt.id,
               detail={'status': new_status})
    realtime.broadcast_appointment(appt, action)
    return appt


def _next_queue_number(day) -> int:
    last = (
        OpdAppointment.objects.select_for_update()
        .filter(appointment_date=day)
        .order_by('-queue_number')
        .values_list('queue_number', flat=True)
        .first()
    )
    return (last or 0) + 1


@transaction.atomic
def book_appointment(patient: Patient, data: dict, *, user=None) -> OpdAppointment:
    day = data.get('appointment_date') or timezone.localdate()
    active = OpdAppointment.objects.filter(patient=patient, appointment_date=day, status__in=ACTIVE_STATUSES).first()
    if active:
        raise WorkflowError(
            f'Patient already has an active appointment on {day} '
            f'(#{active.appointment_number}, status: {active.status}).',
            error_type='active_appointment_exists',
            details={'appointment_id': active.id},
            suggestions=['Complete or cancel the existing appointment first'],
        )
    appointment_type = data.get('appointment_type') or S.TYPE_NEW
    complaint = clean_text(data.get('chief_complaint'))
    encounter = Encounter.objects.create(
        encounter_number=next_number(Encounter, 'encounter_number', 'OPD'),
        patient=patient,
        type=Encounter.TYPE_EMERGENCY if appointment_type == S.TYPE_EMERGENCY else Encounter.TYPE_OPD,
        department_id=data.get('department_id'),
        attending_doctor_id=data.get('doctor_id'),
        chief_complaint=complaint,
    )
    appt = OpdAppointment.objects.create(
        appointment_number=next_number(OpdAppointment, 'appointment_number', 'APT'),
        patient=patient,
        encounter=encounter,
        doctor_id=data.get('doctor_id'),
        department_id=data.get('department_id'),
        appointment_date=day,
        appointment_time=data.get('appointment_time'),
        queue_number=_next_queue_number(day),
        appointment_type=appointment_type,
        chief_complaint=complaint,
    )
    log_action(user=user, action='opd_booked', object_type='opd_appointment', object_id=appt.id,
               detail={'patient': patient.patient_number, 'queue_number': appt.queue_number})
    realtime.broadcast_appointment(appt, 'created')
    return appt


def todays_queue(day=None, doctor_id: Optional[int] = None):
    """Active appointments for the day.

    Ordered by triage level (untriaged emergency visits count as
    emergency), then consultations in progress before checked-in
    patients before those still to arrive, then queue number.
    """
    level_whens = [When(triage_level=level, then=Value(order)) for level, order in triage.LEVEL_ORDER.items()]
    qs = (
        OpdAppointment.objects.select_related('patient', 'doctor')
        .filter(appointment_date=day or timezone.localdate(), status__in=ACTIVE_STATUSES)
        .annotate(
            triage_priority=Case(
                *level_whens,
                When(appointment_type=S.TYPE_EMERGENCY, then=Value(triage.LEVEL_ORDER[S.LEVEL_EMERGENCY])),
                default=Value(triage.UNTRIAGED_ORDER),
                output_field=IntegerField(),
            ),
            status_priority=Case(
                When(status=S.STATUS_IN_PROGRESS, then=Value(1)),
                When(status=S.STATUS_CHECKED_IN, then=Value(2)),
                default=Value(3),
                output_field=IntegerField(),
            ),
        )
    )
    if doctor_id:
        qs = qs.filter(doctor_id=doctor_id)
    return qs.order_by('triage_priority', 'status_priority', 'queue_number')


@transaction.atomic
def confirm(appt: OpdAppointment, *, user=None) -> OpdAppointment:
    return _move(_lock(appt), S.STATUS_CONFIRMED, action='confirmed', user=user)


@transaction.atomic
def check_in(appt: OpdAppointment, *, user=None) -> OpdAppointment:
    appt = _lock(appt)
    appt.checked_in_at = timezone.now()
    return _move(appt, S.STATUS_CHECKED_IN, action='checked_in', user=user, extra_fields=['checked_in_at'])


VITAL_FIELDS = (
    'temperature', 'blood_pressure', 'heart_rate', 'respiratory_rate', 'oxygen_saturation',
    'pain_level', 'weight', 'height',
)


def _ensure_waiting(appt: OpdAppointment) -> None:
    if appt.status != S.STATUS_CHECKED_IN:
        raise WorkflowError(
            f'Appointment {appt.appointment_number} is {appt.status}; only checked-in patients are triaged.',
            error_type='not_checked_in',
            details={'current_status': appt.status},
            suggestions=['Check the patient in first'],
        )


@transaction.atomic
def record_triage(appt: OpdAppointment, data: dict, *, user=None) -> OpdAppointment:
    """Store vitals, score them and place the patient in the queue."""
    appt = _lock(appt)
    _ensure_waiting(appt)
    for field in VITAL_FIELDS:
        if field in data:
            setattr(appt, field, data[field])
    appt.triage_notes = clean_text(data.get('triage_notes'))
    result = triage.assess(
        {f: getattr(appt, f) for f in VITAL_FIELDS} | {'triage_notes': appt.triage_notes},
        appt.chief_complaint,
    )
    appt.triage_score = result['score']
    appt.triage_level = result['level']
    appt.red_flags = result['red_flags']
    appt.triage_status = S.TRIAGE_COMPLETED
    appt.triaged_by = user if getattr(user, 'pk', None) else None
    appt.triaged_at = timezone.now()
    appt.save()
    log_action(user=user, action='opd_triaged', object_type='opd_appointment', object_id=appt.id,
               detail={'level': appt.triage_level, 'score': appt.triage_score, 'red_flags': appt.red_flags})
    if appt.triage_level == S.LEVEL_EMERGENCY:
        logger.warning('Appointment %s triaged as emergency: %s', appt.appointment_number,
                       ', '.join(appt.red_flags) or f'score {appt.triage_score}')
    realtime.broadcast_appointment(appt, 'triaged')
    return appt


@transaction.atomic
def skip_triage(appt: OpdAppointment, *, user=None) -> OpdAppointment:
    appt = _lock(appt)
    _ensure_waiting(appt)
    appt.triage_status = S.TRIAGE_SKIPPED
    appt.save(update_fields=['triage_status'])
    log_action(user=user, action='opd_triage_skipped', object_type='opd_appointment', object_id=appt.id)
    realtime.broadcast_appointment(appt, 'triage_skipped')
    return appt


def pending_triage(day=None):
    return (
        OpdAppointment.objects.select_related('patient')
        .filter(appointment_date=day or timezone.localdate(), status=S.STATUS_CHECKED_IN,
                triage_status=S.TRIAGE_PENDING)
        .order_by('checked_in_at', 'queue_number')
    )


@transaction.atomic
def start_consultation(appt: OpdAppointment, *, user=None) -> OpdAppointment:
    appt = _lock(appt)
    appt.consultation_started_at = timezone.now()
    fields = ['consultation_started_at']
    if user is not None and getattr(user, 'role', '') == 'doctor':
        appt.doctor = user
        fields.append('doctor')
        Encounter.objects.filter(pk=appt.encounter_id).update(attending_doctor=user)
    return _move(appt, S.STATUS_IN_PROGRESS, action='started', user=user, extra_fields=fields)


def _ensure_open(appt: OpdAppointment) -> None:
    if appt.status == S.STATUS_COMPLETED:
        raise WorkflowError('Consultation is already completed and cannot be modified.',
                            error_type='already_completed')
    if appt.status in (S.STATUS_CANCELLED, S.STATUS_NO_SHOW):
        raise WorkflowError(f'Appointment is {appt.status}.', error_type='appointment_closed')


def _write_soap(encounter: Encounter, data: dict, user=None) -> SoapNote:
    soap, _ = SoapNote.objects.get_or_create(encounter=encounter)
    for field in ('subjective', 'objective', 'assessment', 'plan'):
        if field in data:
            setattr(soap, field, clean_text(data[field]))
    if getattr(user, 'pk', None):
        soap.author = user
    return soap


@transaction.atomic
def save_soap(appt: OpdAppointment, data: dict, *, user=None) -> SoapNote:
    appt = _lock(appt)
    _ensure_open(appt)
    soap = _write_soap(appt.encounter, data, user)
    soap.save()
    return soap


@transaction.atomic
def complete_consultation(appt: OpdAppointment, data: Optional[dict] = None, *, user=None) -> dict:
    appt = _lock(appt)
    _ensure_open(appt)
    encounter = appt.encounter
    now = timezone.now()

    soap = _write_soap(encounter, data or {}, user)
    soap.status = SoapNote.STATUS_COMPLETED
    soap.completed_at = now
    soap.save()

    dispensed = prescriptions.dispense_reserved(encounter, user=user)
    submitted = lab_orders.submit_pending(encounter)

    encounter.status = Encounter.STATUS_COMPLETED
    encounter.discharge_datetime = now
    encounter.save(update_fields=['status', 'discharge_datetime'])

    appt.consultation_completed_at = now
    _move(appt, S.STATUS_COMPLETED, action='completed', user=user, extra_fields=['consultation_completed_at'])

    events.dispatch(
        'consultation_completed',
        encounter_id=encounter.id,
        appointment_id=appt.id,
        consultation_type=CONSULTATION_TYPES.get(appt.appointment_type, 'OPD'),
        user_id=getattr(user, 'pk', None),
    )
    logger.info('Consultation %s completed: %s prescription(s) dispensed, %s lab order(s) submitted',
                appt.appointment_number, dispensed, submitted)
    return {'appointment': appt, 'dispensed': dispensed, 'lab_orders_submitted': submitted}


@transaction.atomic
def reopen_consultation(appt: OpdAppointment, *, user=None) -> OpdAppointment:
    appt = _lock(appt)
    if appt.status != S.STATUS_COMPLETED:
        raise WorkflowError('Consultation is not completed and cannot be reopened.', error_type='not_completed')
    Encounter.objects.filter(pk=appt.encounter_id).update(status=Encounter.STATUS_ACTIVE, discharge_datetime=None)
    SoapNote.objects.filter(encounter_id=appt.encounter_id).update(status=SoapNote.STATUS_DRAFT, completed_at=None)
    return _move(appt, S.STATUS_IN_PROGRESS, action='reopened', user=user)


@transaction.atomic
def cancel(appt: OpdAppointment, *, reason: str = '', user=None) -> OpdAppointment:
    appt = _lock(appt)
    for rx in appt.encounter.prescriptions.filter(stock_reserved=True):
        prescriptions.release_stock(rx, user=user, reason=f'Appointment {appt.appointment_number} cancelled')
    Encounter.objects.filter(pk=appt.encounter_id).update(status=Encounter.STATUS_CANCELLED)
    if reason:
        logger.info('Appointment %s cancelled: %s', appt.appointment_number, reason)
    return _move(appt, S.STATUS_CANCELLED, action='cancelled', user=user)


@transaction.atomic
def mark_no_show(appt: OpdAppointment, *, user=None) -> OpdAppointment:
    appt = _lock(appt)
    Encounter.objects.filter(pk=appt.encounter_id).update(status=Encounter.STATUS_CANCELLED)
    return _move(appt, S.STATUS_NO_SHOW, action='no_show', user=user)


def format_appointment(a: OpdAppointment) -> dict:
    return {
        'id': a.id,
        'appointmentNumber': a.appointment_number,
        'encounterId': a.encounter_id,
        'patientId': a.patient_id,
        'patient': a.patient.full_name,
        'doctorId': a.doctor_id,
        'date': a.appointment_date.isoformat(),
        'time': a.appointment_time.strftime('%H:%M') if a.appointment_time else None,
        'queueNumber': a.queue_number,
        'type': a.appointment_type,
        'status': a.status,
        'chiefComplaint': a.chief_complaint,
        'triage': format_triage(a),
    }


def format_triage(a: OpdAppointment) -> dict:
    return {
        'status': a.triage_status,
        'level': a.triage_level or None,
        'score': a.triage_score,
        'redFlags': a.red_flags,
        'vitals': {
            'temperature': str(a.temperature) if a.temperature is not None else None,
            'bloodPressure': a.blood_pressure or None,
            'heartRate': a.heart_rate,
            'respiratoryRate': a.respiratory_rate,
            'oxygenSaturation': a.oxygen_saturation,
            'painLevel': a.pain_level,
        },
        'triagedAt': a.triaged_at.isoformat() if a.triaged_at else None,
    }

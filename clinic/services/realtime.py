"""WebSocket broadcasts through the Channels layer."""
import logging
from datetime import datetime, timedelta

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone

from clinic.models import OpdAppointment

logger = logging.getLogger(__name__)

APPOINTMENT_GROUPS = ('appointments', 'opd-appointments')
APPOINTMENT_EVENT = 'opd-appointment.updated'
SLOT_MINUTES = 45

STATUS_COLORS = {
    OpdAppointment.STATUS_SCHEDULED: '#3b82f6',
    OpdAppointment.STATUS_CONFIRMED: '#10b981',
    OpdAppointment.STATUS_CHECKED_IN: '#8b5cf6',
    OpdAppointment.STATUS_IN_PROGRESS: '#f59e0b',
    OpdAppointment.STATUS_COMPLETED: '#0284c7',
    OpdAppointment.STATUS_CANCELLED: '#ef4444',
    OpdAppointment.STATUS_NO_SHOW: '#9ca3af',
}
DEFAULT_COLOR = '#14b8a6'


def appointment_payload(appt: OpdAppointment, action: str) -> dict:
    start = datetime.combine(appt.appointment_date, appt.appointment_time or datetime.min.time())
    if timezone.is_naive(start):
        start = timezone.make_aware(start)
    complaint = appt.chief_complaint or 'Consultation'
    return {
        'action': action,
        'appointment': {
            'id': appt.id,
            'title': f'{appt.patient.full_name} – {complaint}',
            'start': start.isoformat(),
            'end': (start + timedelta(minutes=SLOT_MINUTES)).isoformat(),
            'color': STATUS_COLORS.get(appt.status, DEFAULT_COLOR),
            'status': appt.status,
            'extendedProps': {
                'appointmentId': appt.appointment_number,
                'patient': appt.patient.full_name,
                'doctorId': appt.doctor_id,
                'queueNumber': appt.queue_number,
                'chiefComplaint': appt.chief_complaint,
                'triageLevel': appt.triage_level or None,
            },
        },
    }


def group_send(group: str, event: dict) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(group, event)


def _send_appointment(payload: dict) -> None:
    for group in APPOINTMENT_GROUPS:
        try:
            group_send(group, {'type': 'appointment.updated', 'event': APPOINTMENT_EVENT, 'data': payload})
        except Exception:
            logger.exception('Broadcast to %s failed', group)


def broadcast_appointment(appt: OpdAppointment, action: str) -> None:
    """Queue an ``opd-appointment.updated`` broadcast for after commit."""
    payload = appointment_payload(appt, action)
    transaction.on_commit(lambda: _send_appointment(payload))

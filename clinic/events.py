"""
Domain events.

Workflows announce what happened through :func:`dispatch`; billing
receivers in :mod:`clinic.listeners` post the resulting charges.  With
``BILLING_EVENTS_ON_COMMIT`` the event is delivered after the
surrounding transaction commits, so a rolled back workflow never bills
and a failing receiver never undoes the workflow.  Receiver errors are
logged, not raised.
"""
import logging

from django.conf import settings
from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

# kwargs: encounter_id, appointment_id, user_id
consultation_completed = Signal()
# kwargs: lab_order_id, user_id
lab_order_created = Signal()
# kwargs: encounter_id, assignment_id, user_id
patient_admitted = Signal()
# kwargs: encounter_id, user_id
patient_discharged = Signal()
# kwargs: encounter_id, released_assignment_id, assignment_id, user_id
patient_transferred = Signal()

EVENTS = {
    'consultation_completed': consultation_completed,
    'lab_order_created': lab_order_created,
    'patient_admitted': patient_admitted,
    'patient_discharged': patient_discharged,
    'patient_transferred': patient_transferred,
}


def deliver(event: str, **payload) -> list:
    signal = EVENTS[event]
    results = signal.send_robust(sender=event, **payload)
    for receiver, response in results:
        if isinstance(response, Exception):
            logger.error('Listener %s failed for %s %s', getattr(receiver, '__name__', receiver),
                         event, payload, exc_info=response)
    return results


def dispatch(event: str, **payload) -> None:
    if event not in EVENTS:
        raise KeyError(f'unknown event {event!r}')
    if settings.BILLING_EVENTS_ON_COMMIT:
        transaction.on_commit(lambda: deliver(event, **payload))
    else:
        deliver(event, **payload)

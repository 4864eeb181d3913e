from datetime import date, time

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from clinic.models import Encounter, OpdAppointment
from clinic.services import realtime
from clinic.tests.helpers import make_patient

pytestmark = pytest.mark.django_db


@pytest.fixture
def appointment():
    patient = make_patient()
    encounter = Encounter.objects.create(encounter_number='OPD-20250101-0001', patient=patient)
    return OpdAppointment.objects.create(
        appointment_number='APT-20250101-0001', patient=patient, encounter=encounter,
        appointment_date=date(2025, 1, 1), appointment_time=time(9, 30), queue_number=3,
        chief_complaint='headache',
    )


def test_payload_describes_a_calendar_slot(appointment):
    payload = realtime.appointment_payload(appointment, 'created')
    event = payload['appointment']
    assert payload['action'] == 'created'
    assert event['title'] == 'Amina Otieno – headache'
    assert event['start'].startswith('2025-01-01T09:30')
    assert event['end'].startswith('2025-01-01T10:15')
    assert event['color'] == realtime.STATUS_COLORS[OpdAppointment.STATUS_SCHEDULED]
    assert event['extendedProps']['queueNumber'] == 3


def test_broadcast_waits_for_commit_and_reaches_both_groups(appointment, django_capture_on_commit_callbacks):
    layer = get_channel_layer()
    channels = {}
    for group in realtime.APPOINTMENT_GROUPS:
        channels[group] = async_to_sync(layer.new_channel)()
        async_to_sync(layer.group_add)(group, channels[group])

    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        realtime.broadcast_appointment(appointment, 'checked_in')
    assert len(callbacks) == 1
    callbacks[0]()

    for group, channel in channels.items():
        message = async_to_sync(layer.receive)(channel)
        assert message['type'] == 'appointment.updated'
        assert message['event'] == realtime.APPOINTMENT_EVENT
        assert message['data']['action'] == 'checked_in'
        async_to_sync(layer.group_discard)(group, channel)

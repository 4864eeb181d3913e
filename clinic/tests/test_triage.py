from decimal import Decimal

import pytest
from rest_framework import status
from rest_framework.test import APITestCase

from clinic.models import AuditEvent, OpdAppointment, User
from clinic.services import triage
from clinic.tests.helpers import client_for, make_patient, make_user

A = OpdAppointment


def test_normal_vitals_are_routine():
    result = triage.assess({'temperature': Decimal('36.8'), 'blood_pressure': '120/80', 'heart_rate': 72,
                            'respiratory_rate': 16, 'oxygen_saturation': 98, 'pain_level': 1})
    assert result == {'score': 0, 'level': A.LEVEL_ROUTINE, 'red_flags': []}


def test_scores_add_up_to_urgent():
    # two points each
    result = triage.assess({'temperature': Decimal('38.6'), 'heart_rate': 105, 'pain_level': 6})
    assert result['score'] == 6
    assert result['level'] == A.LEVEL_URGENT
    assert result['red_flags'] == []


def test_mid_score_is_non_urgent():
    result = triage.assess({'oxygen_saturation': 95, 'pain_level': 5})
    assert result['score'] == 3
    assert result['level'] == A.LEVEL_NON_URGENT


@pytest.mark.parametrize('data,complaint,flag', [
    ({'oxygen_saturation': 88}, '', 'Critical hypoxia'),
    ({'blood_pressure': '190/100'}, '', 'Hypertensive crisis'),
    ({}, 'Crushing CHEST PAIN since morning', 'Chest pain'),
    ({'triage_notes': 'witnessed seizure in the waiting room'}, 'headache', 'Seizure'),
])
def test_dangerous_red_flags_mean_emergency(data, complaint, flag):
    result = triage.assess(data, complaint)
    assert flag in result['red_flags']
    assert result['level'] == A.LEVEL_EMERGENCY


def test_high_score_without_emergency_flag_is_emergency():
    result = triage.assess({'temperature': Decimal('40.1'), 'heart_rate': 130, 'respiratory_rate': 32,
                            'pain_level': 9})
    assert result['score'] == 12
    assert result['red_flags'] == ['High fever', 'Tachycardia', 'Tachypnea', 'Severe pain']
    assert result['level'] == A.LEVEL_EMERGENCY


def test_priority_order():
    assert triage.priority_order(A.LEVEL_EMERGENCY) < triage.priority_order(A.LEVEL_URGENT)
    assert triage.priority_order(A.LEVEL_ROUTINE) < triage.priority_order('')


class TriageWorkflowTests(APITestCase):
    def setUp(self) -> None:
        self.receptionist = client_for(make_user('rec1', User.ROLE_RECEPTIONIST))
        self.nurse = client_for(make_user('nurse1', User.ROLE_NURSE))

    def book(self, number, phone, complaint='review', checked_in=True):
        patient = make_patient(number, phone=phone)
        appt = self.receptionist.post('/api/opd/appointments',
                                      {'patient_id': patient.id, 'chief_complaint': complaint}, format='json').data
        if checked_in:
            self.receptionist.post(f"/api/opd/appointments/{appt['id']}/check-in")
        return appt

    def test_triage_scores_and_reorders_the_queue(self):
        first = self.book('PAT-1', '0712000001')
        second = self.book('PAT-2', '0712000002', complaint='difficulty breathing')
        third = self.book('PAT-3', '0712000003', checked_in=False)

        queue = self.nurse.get('/api/opd/queue').data
        self.assertEqual([a['id'] for a in queue], [first['id'], second['id'], third['id']])

        r = self.nurse.post(f"/api/opd/appointments/{second['id']}/triage",
                            {'temperature': '37.2', 'blood_pressure': '128/84', 'oxygen_saturation': 92},
                            format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['triage']['status'], A.TRIAGE_COMPLETED)
        self.assertEqual(r.data['triage']['level'], A.LEVEL_EMERGENCY)
        self.assertEqual(r.data['triage']['redFlags'], ['Hypoxia', 'Difficulty breathing'])
        self.assertEqual(r.data['triage']['vitals']['temperature'], '37.2')
        self.assertTrue(AuditEvent.objects.filter(action='opd_triaged', object_id=second['id']).exists())

        queue = self.nurse.get('/api/opd/queue').data
        self.assertEqual([a['id'] for a in queue], [second['id'], first['id'], third['id']])

    def test_pending_list_and_skip(self):
        appt = self.book('PAT-1', '0712000001')
        self.assertEqual([a['id'] for a in self.nurse.get('/api/opd/triage').data], [appt['id']])
        r = self.nurse.post(f"/api/opd/appointments/{appt['id']}/triage/skip")
        self.assertEqual(r.data['triage']['status'], A.TRIAGE_SKIPPED)
        self.assertEqual(self.nurse.get('/api/opd/triage').data, [])

    def test_only_checked_in_patients_are_triaged(self):
        appt = self.book('PAT-1', '0712000001', checked_in=False)
        r = self.nurse.post(f"/api/opd/appointments/{appt['id']}/triage", {'heart_rate': 80}, format='json')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['details']['type'], 'not_checked_in')

    def test_out_of_range_vitals_are_rejected(self):
        appt = self.book('PAT-1', '0712000001')
        r = self.nurse.post(f"/api/opd/appointments/{appt['id']}/triage",
                            {'heart_rate': 400, 'blood_pressure': 'high'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('heart_rate', r.data['error']['details'])
        self.assertIn('blood_pressure', r.data['error']['details'])

    def test_receptionist_cannot_triage(self):
        appt = self.book('PAT-1', '0712000001')
        r = self.receptionist.post(f"/api/opd/appointments/{appt['id']}/triage", {}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

from datetime import timedelta

from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from clinic import events
from clinic.models import Encounter, LabOrder, User
from clinic.tests.helpers import client_for, make_department, make_drug, make_lab_test, make_patient, make_user, make_ward


class DashboardTests(APITestCase):
    def test_each_role_gets_its_own_stats(self):
        make_ward(make_department(), beds=4)
        make_drug('Paracetamol', stock=2)
        expected = {
            User.ROLE_ADMIN: 'occupancyRate',
            User.ROLE_DOCTOR: 'todaysAppointments',
            User.ROLE_NURSE: 'census',
            User.ROLE_PHARMACIST: 'lowStock',
            User.ROLE_RECEPTIONIST: 'queueLength',
            User.ROLE_CASHIER: 'outstandingBalance',
        }
        for role, key in expected.items():
            r = client_for(make_user(f'{role}1', role)).get('/api/dashboard')
            self.assertEqual(r.data['role'], role)
            self.assertIn(key, r.data['stats'])

        pharmacist = client_for(User.objects.get(username='pharmacist1'))
        self.assertEqual(pharmacist.get('/api/dashboard').data['stats']['lowStock'], 1)
        admin = client_for(User.objects.get(username='admin1'))
        self.assertEqual(admin.get('/api/dashboard').data['stats']['beds'], 4)


class LabOrderTests(APITestCase):
    def setUp(self) -> None:
        self.doctor = client_for(make_user('doc1', User.ROLE_DOCTOR))
        self.nurse = client_for(make_user('nurse1', User.ROLE_NURSE))
        self.encounter = Encounter.objects.create(encounter_number='OPD-1', patient=make_patient())
        self.test = make_lab_test(turnaround_time=4)

    def order(self, priority):
        with self.captureOnCommitCallbacks(execute=True):
            return self.doctor.post(f'/api/encounters/{self.encounter.id}/lab-orders',
                                    {'test_id': self.test.id, 'priority': priority}, format='json')

    def test_priority_is_required_and_checked(self):
        r = self.order('')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('priority', r.data['error']['details'])
        r = self.order('asap')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(LabOrder.objects.exists())

    def test_urgent_caps_turnaround_and_priority_change_recalculates(self):
        r = self.order('urgent')
        expected = LabOrder.objects.get().expected_completion_at
        self.assertAlmostEqual(expected, timezone.now() + timedelta(hours=2), delta=timedelta(minutes=1))

        r = self.doctor.post(f"/api/lab-orders/{r.data['id']}/priority", {'priority': 'normal'}, format='json')
        self.assertEqual(r.data['priority'], 'normal')
        expected = LabOrder.objects.get().expected_completion_at
        self.assertAlmostEqual(expected, timezone.now() + timedelta(hours=4), delta=timedelta(minutes=1))

    def test_order_is_charged_once(self):
        order_id = self.order('fast').data['id']
        summary = self.nurse.get(f'/api/encounters/{self.encounter.id}/billing').data
        self.assertEqual(summary['total_amount'], '800.00')

        with self.captureOnCommitCallbacks(execute=True):
            events.dispatch('lab_order_created', lab_order_id=order_id)
        summary = self.nurse.get(f'/api/encounters/{self.encounter.id}/billing').data
        self.assertEqual(summary['items_count'], 1)

    def test_submit_and_record_result(self):
        order_id = self.order('normal').data['id']
        r = self.nurse.post(f'/api/lab-orders/{order_id}/submit')
        self.assertEqual(r.data['status'], LabOrder.STATUS_IN_PROGRESS)
        self.assertEqual([o['id'] for o in self.nurse.get('/api/lab-orders/worklist').data], [order_id])

        r = self.nurse.post(f'/api/lab-orders/{order_id}/result', {'result': 'Hb 13.2', 'flag': 'normal'},
                            format='json')
        self.assertEqual(r.data['status'], LabOrder.STATUS_COMPLETED)
        again = self.nurse.post(f'/api/lab-orders/{order_id}/result', {'result': 'x'}, format='json')
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

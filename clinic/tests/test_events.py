"""
Delivery of domain events to the billing receivers: after commit or
synchronously, and what happens when a receiver blows up.
"""
from unittest import mock

from django.test import override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from clinic.models import BillingItem, Encounter, LabOrder, User
from clinic.services import billing
from clinic.tests.helpers import client_for, make_lab_test, make_patient, make_user


class EventDeliveryTests(APITestCase):
    def setUp(self) -> None:
        self.doctor = client_for(make_user('doc1', User.ROLE_DOCTOR))
        self.encounter = Encounter.objects.create(encounter_number='OPD-1', patient=make_patient())
        self.test = make_lab_test(price='800.00')

    def order(self):
        return self.doctor.post(f'/api/encounters/{self.encounter.id}/lab-orders',
                                {'test_id': self.test.id, 'priority': 'normal'}, format='json')

    def test_charge_waits_for_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            self.order()
        self.assertFalse(BillingItem.objects.exists())
        for callback in callbacks:
            callback()
        self.assertEqual(BillingItem.objects.get().reference_type, 'lab_order')

    @override_settings(BILLING_EVENTS_ON_COMMIT=False)
    def test_synchronous_delivery_charges_inside_the_request(self):
        r = self.order()
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        item = BillingItem.objects.get()
        self.assertEqual(str(item.net_amount), '800.00')

    def test_failing_receiver_is_logged_and_workflow_kept(self):
        with mock.patch.object(billing, 'add_lab_test_charge', side_effect=RuntimeError('pricing unavailable')):
            with self.assertLogs('clinic.events', level='ERROR') as logs:
                with self.captureOnCommitCallbacks(execute=True):
                    r = self.order()
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertTrue(LabOrder.objects.filter(pk=r.data['id']).exists())
        self.assertFalse(BillingItem.objects.exists())
        self.assertIn('bill_lab_order failed for lab_order_created', logs.output[0])

    @override_settings(BILLING_EVENTS_ON_COMMIT=False)
    def test_failing_receiver_does_not_undo_synchronous_workflow(self):
        with mock.patch.object(billing, 'add_lab_test_charge', side_effect=RuntimeError('pricing unavailable')):
            with self.assertLogs('clinic.events', level='ERROR'):
                r = self.order()
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(LabOrder.objects.count(), 1)
        self.assertFalse(BillingItem.objects.exists())

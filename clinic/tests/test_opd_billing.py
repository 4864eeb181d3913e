"""
OPD consultation through to a paid invoice.

Billing runs from on-commit event receivers, so every step that should
post charges is wrapped in ``captureOnCommitCallbacks(execute=True)``.
"""
from datetime import timedelta

from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from clinic.models import (
    BillingItem, DrugFormulary, Encounter, Invoice, OpdAppointment, Prescription, ServiceCatalogue, User,
)
from clinic.tests.helpers import client_for, make_drug, make_lab_test, make_patient, make_service, make_user


class ConsultationBillingTests(APITestCase):
    def setUp(self) -> None:
        self.receptionist = client_for(make_user('rec1', User.ROLE_RECEPTIONIST))
        self.doctor = client_for(make_user('doc1', User.ROLE_DOCTOR))
        self.cashier = client_for(make_user('cash1', User.ROLE_CASHIER))
        self.patient = make_patient()
        self.drug = make_drug(stock=100, price='15.00')
        self.test = make_lab_test(price='800.00')
        make_service('CONS-GP', 'General Physician Consultation', ServiceCatalogue.CATEGORY_CONSULTATION, '1000.00')
        make_service('CONS-SP', 'Specialist Consultation', ServiceCatalogue.CATEGORY_CONSULTATION, '2500.00')

    def start_consultation(self) -> dict:
        r = self.receptionist.post('/api/opd/appointments',
                                   {'patient_id': self.patient.id, 'chief_complaint': 'cough'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        appt = r.data
        self.receptionist.post(f"/api/opd/appointments/{appt['id']}/check-in")
        r = self.doctor.post(f"/api/opd/appointments/{appt['id']}/start")
        self.assertEqual(r.data['status'], OpdAppointment.STATUS_IN_PROGRESS)
        return appt

    def prescribe(self, encounter_id, quantity=10):
        return self.doctor.post(f'/api/encounters/{encounter_id}/prescriptions', {
            'drug_id': self.drug.id, 'dosage': '500mg', 'frequency': 'TDS', 'duration': '5 days',
            'quantity': quantity, 'instant_dispensing': True,
        }, format='json')

    def test_booking_assigns_queue_numbers(self):
        first = self.receptionist.post('/api/opd/appointments', {'patient_id': self.patient.id}, format='json')
        other = make_patient('PAT-2', phone='0712000002')
        second = self.receptionist.post('/api/opd/appointments', {'patient_id': other.id}, format='json')
        self.assertEqual(first.data['queueNumber'], 1)
        self.assertEqual(second.data['queueNumber'], 2)
        queue = self.receptionist.get('/api/opd/queue')
        self.assertEqual([a['queueNumber'] for a in queue.data], [1, 2])

    def test_queue_numbers_continue_from_the_days_highest(self):
        today = timezone.localdate()
        for number, day, queue_number in (('OPD-X1', today - timedelta(days=1), 9), ('OPD-X2', today, 4)):
            patient = make_patient(number, phone=f'07120000{queue_number:02d}')
            OpdAppointment.objects.create(
                appointment_number=number, patient=patient, appointment_date=day, queue_number=queue_number,
                encounter=Encounter.objects.create(encounter_number=number, patient=patient),
                status=OpdAppointment.STATUS_CANCELLED,
            )
        r = self.receptionist.post('/api/opd/appointments', {'patient_id': self.patient.id}, format='json')
        self.assertEqual(r.data['queueNumber'], 5)

    def test_second_active_appointment_same_day_is_rejected(self):
        self.receptionist.post('/api/opd/appointments', {'patient_id': self.patient.id}, format='json')
        r = self.receptionist.post('/api/opd/appointments', {'patient_id': self.patient.id}, format='json')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['details']['type'], 'active_appointment_exists')

    def test_instant_prescription_reserves_stock(self):
        appt = self.start_consultation()
        r = self.prescribe(appt['encounterId'])
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertTrue(r.data['stockReserved'])
        self.assertEqual(DrugFormulary.objects.get(pk=self.drug.pk).stock_quantity, 90)

    def test_completed_consultation_is_billed(self):
        appt = self.start_consultation()
        self.prescribe(appt['encounterId'])
        with self.captureOnCommitCallbacks(execute=True):
            r = self.doctor.post(f"/api/encounters/{appt['encounterId']}/lab-orders",
                                 {'test_id': self.test.id, 'priority': 'urgent'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)

        with self.captureOnCommitCallbacks(execute=True):
            r = self.doctor.post(f"/api/opd/appointments/{appt['id']}/complete",
                                 {'assessment': 'URTI', 'plan': 'antibiotics'}, format='json')
        self.assertEqual(r.data['status'], OpdAppointment.STATUS_COMPLETED)
        self.assertEqual(r.data['dispensed'], 1)
        self.assertEqual(r.data['labOrdersSubmitted'], 1)
        self.assertEqual(Prescription.objects.get().status, Prescription.STATUS_DISPENSED)

        summary = self.cashier.get(f"/api/encounters/{appt['encounterId']}/billing").data
        self.assertTrue(summary['account_exists'])
        self.assertEqual(summary['total_amount'], '1950.00')
        self.assertEqual(summary['items_count'], 3)
        consultation = BillingItem.objects.get(item_type=ServiceCatalogue.CATEGORY_CONSULTATION)
        self.assertEqual(consultation.service_code, 'CONS-GP')

    def test_billing_waits_for_commit(self):
        appt = self.start_consultation()
        self.doctor.post(f"/api/opd/appointments/{appt['id']}/complete", {}, format='json')
        summary = self.cashier.get(f"/api/encounters/{appt['encounterId']}/billing").data
        self.assertFalse(summary['account_exists'])

    def test_completion_event_is_idempotent(self):
        appt = self.start_consultation()
        with self.captureOnCommitCallbacks(execute=True):
            self.doctor.post(f"/api/opd/appointments/{appt['id']}/complete", {}, format='json')
        self.doctor.post(f"/api/opd/appointments/{appt['id']}/reopen")
        with self.captureOnCommitCallbacks(execute=True):
            self.doctor.post(f"/api/opd/appointments/{appt['id']}/complete", {}, format='json')
        self.assertEqual(BillingItem.objects.filter(item_type=ServiceCatalogue.CATEGORY_CONSULTATION).count(), 1)

    def test_invoice_and_payments(self):
        appt = self.start_consultation()
        self.prescribe(appt['encounterId'])
        with self.captureOnCommitCallbacks(execute=True):
            self.doctor.post(f"/api/opd/appointments/{appt['id']}/complete", {}, format='json')

        r = self.cashier.post(f"/api/encounters/{appt['encounterId']}/invoice")
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        invoice = r.data
        self.assertEqual(invoice['netAmount'], '1150.00')
        self.assertEqual(invoice['status'], Invoice.STATUS_UNPAID)
        again = self.cashier.post(f"/api/encounters/{appt['encounterId']}/invoice")
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data['id'], invoice['id'])

        r = self.cashier.post('/api/payments', {'invoice_id': invoice['id'], 'amount': '1000.00'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['invoice']['status'], Invoice.STATUS_PARTIAL)
        self.assertEqual(r.data['invoice']['balance'], '150.00')

        r = self.cashier.post('/api/payments', {'invoice_id': invoice['id'], 'amount': '150.00',
                                                'method': 'mobile_money', 'reference_no': 'QX12'}, format='json')
        self.assertEqual(r.data['invoice']['status'], Invoice.STATUS_PAID)
        summary = self.cashier.get(f"/api/encounters/{appt['encounterId']}/billing").data
        self.assertEqual(summary['amount_paid'], '1150.00')
        self.assertEqual(summary['balance'], '0.00')

    def test_discount_flows_into_invoice(self):
        appt = self.start_consultation()
        with self.captureOnCommitCallbacks(execute=True):
            self.doctor.post(f"/api/opd/appointments/{appt['id']}/complete", {}, format='json')
        invoice = self.cashier.post(f"/api/encounters/{appt['encounterId']}/invoice").data
        r = self.cashier.post(f"/api/encounters/{appt['encounterId']}/billing/discount",
                              {'discount_amount': '200.00'}, format='json')
        self.assertEqual(r.data['net_amount'], '800.00')
        self.assertEqual(Invoice.objects.get(pk=invoice['id']).net_amount, 800)

        r = self.cashier.post(f"/api/encounters/{appt['encounterId']}/billing/discount",
                              {'discount_amount': '5000.00'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['details']['type'], 'invalid_discount')

    def test_invoice_without_charges_is_rejected(self):
        appt = self.start_consultation()
        r = self.cashier.post(f"/api/encounters/{appt['encounterId']}/invoice")
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['details']['type'], 'no_billing_account')

    def test_invalid_transition_is_a_workflow_error(self):
        r = self.receptionist.post('/api/opd/appointments', {'patient_id': self.patient.id}, format='json')
        r = self.doctor.post(f"/api/opd/appointments/{r.data['id']}/complete", {}, format='json')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['code'], 'WORKFLOW_ERROR')
        self.assertEqual(r.data['error']['details']['type'], 'invalid_transition')

    def test_cancel_releases_reserved_stock(self):
        appt = self.start_consultation()
        self.prescribe(appt['encounterId'], quantity=30)
        self.receptionist.post(f"/api/opd/appointments/{appt['id']}/cancel", {'reason': 'left'}, format='json')
        self.assertEqual(DrugFormulary.objects.get(pk=self.drug.pk).stock_quantity, 100)
        self.assertFalse(Prescription.objects.get().stock_reserved)

    def test_cashier_cannot_prescribe(self):
        appt = self.start_consultation()
        r = self.cashier.post(f"/api/encounters/{appt['encounterId']}/prescriptions", {}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

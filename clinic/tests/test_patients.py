from rest_framework import status
from rest_framework.test import APITestCase

from clinic.models import AuditEvent, Patient, User
from clinic.tests.helpers import client_for, make_patient, make_user


class PatientRegistrationTests(APITestCase):
    payload = {
        'first_name': 'Brian', 'last_name': 'Mwangi', 'date_of_birth': '1985-02-11', 'gender': 'M',
        'phone': '0722333444', 'allergies': ['sulfa'],
    }

    def setUp(self) -> None:
        self.receptionist = make_user('rec1', User.ROLE_RECEPTIONIST)
        self.client = client_for(self.receptionist)

    def test_register_assigns_number_and_audits(self):
        r = self.client.post('/api/patients/register', self.payload, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertTrue(r.data['patientNumber'].startswith('PAT'))
        self.assertEqual(r.data['allergies'], ['sulfa'])
        self.assertTrue(AuditEvent.objects.filter(action='patient_register', object_id=r.data['id']).exists())

    def test_same_phone_and_birth_date_is_a_duplicate(self):
        self.client.post('/api/patients/register', self.payload, format='json')
        r = self.client.post('/api/patients/register', {**self.payload, 'first_name': 'Bryan'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['code'], 'DUPLICATE_PATIENT')
        self.assertEqual(Patient.objects.count(), 1)

    def test_markup_is_stripped_from_names(self):
        r = self.client.post('/api/patients/register',
                             {**self.payload, 'first_name': '<b>Brian</b>'}, format='json')
        self.assertEqual(r.data['firstName'], 'Brian')

    def test_markup_is_stripped_from_free_text(self):
        r = self.client.post('/api/patients/register', {
            **self.payload, 'address': '<a href="x">Plot 4</a> <strong>Kisumu</strong>',
            'allergies': ['<i>sulfa</i>'],
        }, format='json')
        patient = Patient.objects.get(pk=r.data['id'])
        self.assertEqual(patient.address, 'Plot 4 Kisumu')
        self.assertEqual(patient.allergies, ['sulfa'])

    def test_missing_fields_are_a_validation_error(self):
        r = self.client.post('/api/patients/register', {'first_name': 'Only'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(r.data['error']['code'], 'VALIDATION_ERROR')

    def test_doctor_cannot_register(self):
        doctor = make_user('doc1', User.ROLE_DOCTOR)
        r = client_for(doctor).post('/api/patients/register', self.payload, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)


class PatientLookupTests(APITestCase):
    def setUp(self) -> None:
        self.client = client_for(make_user('nurse1', User.ROLE_NURSE))
        make_patient('PAT-1')
        make_patient('PAT-2', first_name='Grace', last_name='Njeri', phone='0799000111')

    def test_list_is_paginated(self):
        r = self.client.get('/api/patients', {'pageSize': 1})
        self.assertEqual(r.data['total'], 2)
        self.assertEqual(r.data['pageSize'], 1)
        self.assertEqual(len(r.data['results']), 1)

    def test_search_matches_name(self):
        r = self.client.get('/api/patients', {'q': 'njeri'})
        self.assertEqual([p['patientNumber'] for p in r.data['results']], ['PAT-2'])

    def test_detail_lists_encounters(self):
        patient = Patient.objects.get(patient_number='PAT-1')
        r = self.client.get(f'/api/patients/{patient.id}')
        self.assertEqual(r.data['patientNumber'], 'PAT-1')
        self.assertEqual(r.data['encounters'], [])

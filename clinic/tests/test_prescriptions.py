from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from clinic.models import DrugFormulary, Encounter, Prescription, StockMovement, User
from clinic.services import prescriptions
from clinic.tests.helpers import client_for, make_drug, make_patient, make_user

pytestmark = pytest.mark.django_db


@pytest.fixture
def doctor():
    return client_for(make_user('doc1', User.ROLE_DOCTOR))


@pytest.fixture
def encounter():
    patient = make_patient(allergies=['Penicillin'])
    return Encounter.objects.create(encounter_number='OPD-1', patient=patient)


def prescribe(client, encounter, drug, **overrides):
    payload = {'drug_id': drug.id, 'dosage': '1 tab', 'frequency': 'BD', 'duration': '5 days', 'quantity': 10,
               'instant_dispensing': True}
    payload.update(overrides)
    payload = {k: v for k, v in payload.items() if v is not None}
    return client.post(f'/api/encounters/{encounter.id}/prescriptions', payload, format='json')


def test_allergy_blocks_prescription(doctor, encounter):
    drug = make_drug('Amoxil', therapeutic_class='Penicillins')
    r = prescribe(doctor, encounter, drug)
    assert r.status_code == 400
    assert r.data['error']['code'] == 'ALLERGY_CONFLICT'
    assert r.data['error']['details']['allergies'] == ['Penicillin']
    assert not Prescription.objects.exists()


def test_missing_fields_are_listed_together(doctor, encounter):
    drug = make_drug('Paracetamol')
    r = prescribe(doctor, encounter, drug, dosage='', duration='', quantity=None)
    assert r.status_code == 400
    message = r.data['error']['details']['validation'][0]
    assert message == 'Required fields missing: dosage, duration, quantity'


def test_insufficient_stock_is_rejected(doctor, encounter):
    drug = make_drug('Paracetamol', stock=4)
    r = prescribe(doctor, encounter, drug)
    assert r.status_code == 422
    assert r.data['error']['details']['type'] == 'insufficient_stock'
    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 4


def test_same_class_is_flagged_as_interaction(doctor, encounter):
    first = make_drug('Ibuprofen', therapeutic_class='NSAIDs')
    second = make_drug('Diclofenac', therapeutic_class='NSAIDs')
    prescribe(doctor, encounter, first)
    r = prescribe(doctor, encounter, second)
    assert r.status_code == 201
    assert r.data['interactions'][0]['interaction_type'] == 'therapeutic_class'


def test_cancel_releases_reserved_stock(doctor, encounter):
    drug = make_drug('Paracetamol', stock=50)
    rx_id = prescribe(doctor, encounter, drug).data['id']
    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 40

    r = doctor.post(f'/api/prescriptions/{rx_id}/cancel')
    assert r.data['status'] == Prescription.STATUS_CANCELLED
    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 50
    assert StockMovement.objects.filter(drug=drug, movement_type=StockMovement.TYPE_RETURN).count() == 1


def test_pharmacist_dispenses_pending_prescription(doctor, encounter):
    drug = make_drug('Paracetamol', stock=50)
    rx_id = prescribe(doctor, encounter, drug, instant_dispensing=False).data['id']
    pharmacist = client_for(make_user('ph1', User.ROLE_PHARMACIST))
    assert [p['id'] for p in pharmacist.get('/api/prescriptions/pending').data] == [rx_id]

    r = pharmacist.post(f'/api/prescriptions/{rx_id}/dispense')
    assert r.data['status'] == Prescription.STATUS_DISPENSED
    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 40
    again = pharmacist.post(f'/api/prescriptions/{rx_id}/dispense')
    assert again.status_code == 409


def test_expired_reservations_are_released(settings, encounter):
    settings.STOCK_RESERVATION_TTL_MINUTES = 30
    drug = make_drug('Paracetamol', stock=100)
    doctor = make_user('doc1', User.ROLE_DOCTOR)
    ages = {}
    for minutes in (35, 40, 10):
        rx = prescriptions.create_prescription(encounter, {
            'drug_id': drug.id, 'dosage': '1 tab', 'frequency': 'BD', 'duration': '5 days', 'quantity': 5,
            'instant_dispensing': True,
        }, user=doctor)
        Prescription.objects.filter(pk=rx.pk).update(stock_reserved_at=timezone.now() - timedelta(minutes=minutes))
        ages[minutes] = rx.pk
    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 85

    call_command('release_expired_reservations')

    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 95
    assert not Prescription.objects.get(pk=ages[35]).stock_reserved
    assert not Prescription.objects.get(pk=ages[40]).stock_reserved
    assert Prescription.objects.get(pk=ages[10]).stock_reserved


def test_dry_run_lists_without_releasing(settings, encounter):
    settings.STOCK_RESERVATION_TTL_MINUTES = 30
    drug = make_drug('Paracetamol', stock=100)
    rx = prescriptions.create_prescription(encounter, {
        'drug_id': drug.id, 'dosage': '1 tab', 'frequency': 'BD', 'duration': '5 days', 'quantity': 5,
        'instant_dispensing': True,
    })
    Prescription.objects.filter(pk=rx.pk).update(stock_reserved_at=timezone.now() - timedelta(hours=2))

    call_command('release_expired_reservations', '--dry-run')

    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 95
    assert Prescription.objects.get(pk=rx.pk).stock_reserved


def test_sweep_keeps_going_when_one_release_fails(settings, encounter, monkeypatch):
    settings.STOCK_RESERVATION_TTL_MINUTES = 30
    drug = make_drug('Paracetamol', stock=100)
    ids = []
    for _ in range(3):
        rx = prescriptions.create_prescription(encounter, {
            'drug_id': drug.id, 'dosage': '1 tab', 'frequency': 'BD', 'duration': '5 days', 'quantity': 5,
            'instant_dispensing': True,
        })
        ids.append(rx.pk)
    Prescription.objects.filter(pk__in=ids).update(stock_reserved_at=timezone.now() - timedelta(hours=1))

    real_release = prescriptions.release_stock

    def flaky_release(rx, **kwargs):
        if rx.pk == ids[0]:
            raise RuntimeError('lock timeout')
        return real_release(rx, **kwargs)

    monkeypatch.setattr(prescriptions, 'release_stock', flaky_release)
    out = StringIO()
    call_command('release_expired_reservations', stdout=out)

    assert 'Released 2 reservation(s) older than 30 min, 1 failed' in out.getvalue()
    assert Prescription.objects.get(pk=ids[0]).stock_reserved
    assert not Prescription.objects.get(pk=ids[1]).stock_reserved
    assert not Prescription.objects.get(pk=ids[2]).stock_reserved
    assert DrugFormulary.objects.get(pk=drug.pk).stock_quantity == 95

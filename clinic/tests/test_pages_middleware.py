from decimal import Decimal
from io import StringIO

import pytest
from django.core.cache import cache
from django.core.management import call_command
from django.test import Client

from clinic.models import Department, Encounter, Invoice, Payment, ServiceCatalogue, User
from clinic.services import billing, invoices
from clinic.tests.helpers import make_patient, make_service, make_user

pytestmark = pytest.mark.django_db


@pytest.fixture
def invoice():
    make_service('PROC-DRS', 'Wound dressing', ServiceCatalogue.CATEGORY_PROCEDURE, '700.00')
    encounter = Encounter.objects.create(encounter_number='OPD-5', patient=make_patient())
    billing.add_procedure_charge(encounter, 'dressing')
    return invoices.generate_invoice(encounter)[0]


@pytest.fixture
def cashier_client():
    client = Client()
    client.force_login(make_user('cash1', User.ROLE_CASHIER))
    return client


def test_healthz():
    r = Client().get('/healthz')
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'db': True}


def test_invoice_print_page(cashier_client, invoice):
    r = cashier_client.get(f'/billing/invoices/{invoice.id}/print')
    assert r.status_code == 200
    assert invoice.invoice_number in r.content.decode()
    assert 'Wound dressing' in r.content.decode()


def test_pages_need_a_session_login(invoice):
    r = Client().get(f'/billing/invoices/{invoice.id}/print')
    assert r.status_code == 302
    assert r['Location'].startswith('/admin/login/')


def test_invoice_pdf(cashier_client, invoice):
    r = cashier_client.get(f'/billing/invoices/{invoice.id}/pdf')
    assert r['Content-Type'] == 'application/pdf'
    assert r.content.startswith(b'%PDF')


def test_payment_form_records_payment(cashier_client, invoice):
    r = cashier_client.post(f'/billing/invoices/{invoice.id}/payments', {'amount': '700.00', 'method': 'card'})
    assert r.status_code == 302
    invoice.refresh_from_db()
    assert invoice.status == Invoice.STATUS_PAID
    assert Payment.objects.get().method == 'card'


def test_bad_payment_bounces_back_with_form_errors(cashier_client, invoice):
    page = f'/billing/invoices/{invoice.id}/print'
    r = cashier_client.post(f'/billing/invoices/{invoice.id}/payments', {'amount': '-5'}, HTTP_REFERER=page)
    assert r.status_code == 302
    assert r['Location'] == page
    assert cashier_client.session['form_errors'] == {'amount': ['Enter an amount greater than zero']}
    assert not Payment.objects.exists()


def test_domain_error_on_page_answers_json_when_asked(cashier_client, invoice):
    r = cashier_client.post(f'/billing/invoices/{invoice.id}/payments', {'amount': 'abc'},
                            HTTP_ACCEPT='application/json')
    assert r.status_code == 422
    assert r.json()['error']['code'] == 'MASTER_DATA_VALIDATION_ERROR'


def test_other_roles_cannot_take_payments(invoice):
    client = Client()
    client.force_login(make_user('nurse1', User.ROLE_NURSE))
    r = client.post(f'/billing/invoices/{invoice.id}/payments', {'amount': '10'})
    assert r.status_code == 403


def test_lab_results_page(cashier_client, invoice):
    r = cashier_client.get(f'/encounters/{invoice.encounter_id}/lab-results')
    assert r.status_code == 200
    assert 'OPD-5' in r.content.decode()


def test_ensure_test_users_command():
    out = StringIO()
    call_command('ensure_test_users', stdout=out)
    assert User.objects.get(username='admin1').is_staff
    assert User.objects.get(username='cashier1').check_password('P@ssw0rd1')
    call_command('ensure_test_users', stdout=out)
    assert User.objects.filter(username='doctor1').count() == 1


def test_populate_data_command():
    call_command('populate_data', '--patients', '3', stdout=StringIO())
    assert Department.objects.filter(code='GEN').exists()
    assert ServiceCatalogue.objects.get(code='CONS-GP').unit_price == Decimal('1000.00')
    assert User.objects.filter(role=User.ROLE_DOCTOR).exists()


def test_refresh_caches_command():
    Department.objects.create(code='GEN', name='General Medicine')
    cache.set('stale', 1)
    out = StringIO()
    call_command('refresh_caches', stdout=out)
    assert 'Refreshed 7 caches' in out.getvalue()
    assert cache.get('stale') == 1

import pytest
from django.urls import reverse
from rest_framework.test import APIClient

from clinic.models import AuditEvent, User
from clinic.tests.helpers import PASSWORD, make_user

pytestmark = pytest.mark.django_db


def login(client, username, password=PASSWORD, **extra):
    return client.post(reverse('login_view'), {'username': username, 'password': password, **extra}, format='json')


def test_no_role_bypass_in_login():
    client = APIClient()
    make_user('nurse1', User.ROLE_NURSE)
    r = login(client, 'nurse1', role='admin')
    assert r.status_code == 200
    assert r.data['role'] == 'nurse'
    assert User.objects.get(username='nurse1').role == 'nurse'


def test_login_returns_jwt_and_legacy_token():
    client = APIClient()
    make_user('doc', User.ROLE_DOCTOR)
    r = login(client, 'doc')
    assert r.status_code == 200
    assert r.data['ok'] is True
    assert r.data['token']
    assert r.data['jwt_access'] and r.data['jwt_refresh']
    assert r.data['user']['username'] == 'doc'


def test_failed_login_is_rejected_and_audited():
    client = APIClient()
    make_user('cashier1', User.ROLE_CASHIER)
    r = login(client, 'cashier1', password='wrong')
    assert r.status_code == 400
    assert r.data['ok'] is False
    event = AuditEvent.objects.filter(action='login').latest('id')
    assert event.detail['result'] == 'fail'
    assert event.detail['username'] == 'cashier1'


def test_token_and_jwt_both_authenticate():
    client = APIClient()
    make_user('rec', User.ROLE_RECEPTIONIST)
    data = login(client, 'rec').data

    client.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    assert client.get('/api/auth/me').data['user']['role'] == 'receptionist'

    jwt_client = APIClient()
    jwt_client.credentials(HTTP_AUTHORIZATION=f"Bearer {data['jwt_access']}")
    assert jwt_client.get('/api/auth/me').status_code == 200


def test_refresh_returns_new_access_token():
    client = APIClient()
    make_user('ph', User.ROLE_PHARMACIST)
    data = login(client, 'ph').data
    r = client.post('/api/auth/refresh', {'refresh': data['jwt_refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['jwt_access']


def test_logout_blacklists_refresh_and_drops_token():
    client = APIClient()
    make_user('adm', User.ROLE_ADMIN)
    data = login(client, 'adm').data
    client.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    r = client.post('/api/auth/logout', {'refresh': data['jwt_refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['blacklisted'] == 1

    # the DRF token is gone and the refresh token can no longer be used
    assert client.get('/api/auth/me').status_code == 401
    again = APIClient().post('/api/auth/refresh', {'refresh': data['jwt_refresh']}, format='json')
    assert again.status_code == 401


def test_unauthenticated_request_gets_error_envelope():
    r = APIClient().get('/api/patients')
    assert r.status_code == 401
    assert r.data['ok'] is False
    assert r.data['error']['code'] == 'api_error'


def test_login_is_throttled():
    client = APIClient()
    make_user('t1', User.ROLE_NURSE)
    codes = [login(client, 't1', password='nope').status_code for _ in range(11)]
    assert codes[:10] == [400] * 10
    assert codes[10] == 429

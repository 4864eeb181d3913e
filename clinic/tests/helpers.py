"""Object builders shared by the test modules."""
from datetime import date
from decimal import Decimal

from rest_framework.test import APIClient

from clinic.models import (
    Bed, Department, DrugFormulary, Patient, ServiceCatalogue, TestCatalog as LabTest, User, Ward,
)

PASSWORD = 'P@ssw0rd1'


def make_user(username, role, **extra) -> User:
    return User.objects.create_user(username=username, password=PASSWORD, role=role, **extra)


def client_for(user) -> APIClient:
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def make_department(code='GEN', name='General Medicine') -> Department:
    return Department.objects.create(code=code, name=name)


def make_ward(department, code='W-GEN', beds=2, bed_type='standard', ward_type='general') -> Ward:
    ward = Ward.objects.create(ward_code=code, name=f'Ward {code}', department=department,
                               ward_type=ward_type, capacity=max(beds, 1))
    for n in range(1, beds + 1):
        Bed.objects.create(ward=ward, bed_number=f'{code}-{n}', bed_type=bed_type)
    return ward


def make_patient(number='PAT-1', allergies=None, **extra) -> Patient:
    defaults = {
        'first_name': 'Amina', 'last_name': 'Otieno', 'date_of_birth': date(1990, 5, 17), 'gender': 'F',
        'phone': '0712000001',
    }
    defaults.update(extra)
    return Patient.objects.create(patient_number=number, allergies=allergies or [], **defaults)


def make_drug(name='Amoxicillin', stock=100, price='15.00', **extra) -> DrugFormulary:
    defaults = {'generic_name': name.lower(), 'strength': '500mg', 'form': 'capsule', 'reorder_level': 10}
    defaults.update(extra)
    return DrugFormulary.objects.create(name=name, stock_quantity=stock, unit_price=Decimal(price), **defaults)


def make_lab_test(code='FBC', price='800.00', **extra) -> LabTest:
    defaults = {'name': 'Full Blood Count', 'category': 'Haematology', 'turnaround_time': 4}
    defaults.update(extra)
    return LabTest.objects.create(code=code, price=Decimal(price), **defaults)


def make_service(code, name, category, price) -> ServiceCatalogue:
    return ServiceCatalogue.objects.create(code=code, name=name, category=category, unit_price=Decimal(price))

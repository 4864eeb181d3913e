"""
Management command to populate the database with demo data.
"""
import random
from datetime import date, timedelta
from decimal import Decimal

from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand
from django.db import transaction

from clinic.models import (
    Bed, Department, DrugFormulary, Patient, ServiceCatalogue, TestCatalog, User, Ward,
)
from clinic.services import master_data
from clinic.services.numbers import next_number


class Command(BaseCommand):
    help = 'Populate database with demo master data, staff and patients'

    def add_arguments(self, parser):
        parser.add_argument('--patients', type=int, default=8)

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Creating demo data...')

        departments = self.create_departments()
        self.create_staff(departments)
        self.create_wards(departments)
        self.create_tests(departments)
        self.create_drugs()
        self.create_services()
        self.create_patients(options['patients'])

        master_data.invalidate_all()
        self.stdout.write(self.style.SUCCESS('Demo data created.'))

    def create_departments(self):
        rows = [
            ('GEN', 'General Medicine', 'Outpatient and inpatient internal medicine'),
            ('SUR', 'Surgery', 'General and orthopaedic surgery'),
            ('PED', 'Paediatrics', 'Children up to 14 years'),
            ('MAT', 'Maternity', 'Antenatal, delivery and postnatal care'),
            ('LAB', 'Laboratory', 'Clinical pathology'),
        ]
        departments = {}
        for i, (code, name, description) in enumerate(rows):
            dept, _ = Department.objects.get_or_create(
                code=code, defaults={'name': name, 'description': description, 'sort_order': i},
            )
            departments[code] = dept
            self.stdout.write(f'Department: {dept.name}')
        return departments

    def create_staff(self, departments):
        staff = [
            ('admin1', User.ROLE_ADMIN, None),
            ('doctor1', User.ROLE_DOCTOR, 'GEN'),
            ('doctor2', User.ROLE_DOCTOR, 'SUR'),
            ('nurse1', User.ROLE_NURSE, 'GEN'),
            ('pharmacist1', User.ROLE_PHARMACIST, None),
            ('reception1', User.ROLE_RECEPTIONIST, None),
            ('cashier1', User.ROLE_CASHIER, None),
        ]
        for username, role, dept_code in staff:
            user, _ = User.objects.get_or_create(
                username=username,
                defaults={
                    'password': make_password('P@ssw0rd1'),
                    'role': role,
                    'department': departments.get(dept_code),
                    'first_name': username.rstrip('0123456789').capitalize(),
                    'email': f'{username}@hospital.test',
                    'is_staff': role == User.ROLE_ADMIN,
                },
            )
            self.stdout.write(f'Staff: {user}')

    def create_wards(self, departments):
        wards = [
            ('W-GEN', 'General Ward A', 'GEN', 'general', 'standard', 10),
            ('W-ICU', 'Intensive Care', 'GEN', 'icu', 'icu', 4),
            ('W-SUR', 'Surgical Ward', 'SUR', 'surgical', 'standard', 8),
            ('W-PED', 'Children Ward', 'PED', 'pediatric', 'standard', 6),
            ('W-MAT', 'Maternity Ward', 'MAT', 'maternity', 'private', 6),
        ]
        for code, name, dept_code, ward_type, bed_type, capacity in wards:
            ward, created = Ward.objects.get_or_create(
                ward_code=code,
                defaults={'name': name, 'department': departments[dept_code], 'ward_type': ward_type,
                          'capacity': capacity},
            )
            if created:
                Bed.objects.bulk_create([
                    Bed(ward=ward, bed_number=f'{code[2:]}-{n:02d}', bed_type=bed_type)
                    for n in range(1, capacity + 1)
                ])
            self.stdout.write(f'Ward: {ward.name} ({ward.beds.count()} beds)')

    def create_tests(self, departments):
        tests = [
            ('FBC', 'Full Blood Count', 'Haematology', '800.00', 4, 'Blood'),
            ('MPS', 'Malaria Parasites', 'Parasitology', '300.00', 2, 'Blood'),
            ('UEC', 'Urea, Electrolytes and Creatinine', 'Chemistry', '1500.00', 24, 'Serum'),
            ('URI', 'Urinalysis', 'Chemistry', '400.00', 6, 'Urine'),
            ('LFT', 'Liver Function Tests', 'Chemistry', '1800.00', 24, 'Serum'),
        ]
        for code, name, category, price, tat, sample in tests:
            TestCatalog.objects.get_or_create(
                code=code,
                defaults={'name': name, 'category': category, 'price': Decimal(price),
                          'turnaround_time': tat, 'sample_type': sample, 'department': departments['LAB']},
            )
        self.stdout.write(f'Tests: {TestCatalog.objects.count()}')

    def create_drugs(self):
        drugs = [
            ('Amoxicillin', 'amoxicillin', 'J01CA04', '500mg', 'capsule', '15.00', 'Penicillins'),
            ('Paracetamol', 'paracetamol', 'N02BE01', '500mg', 'tablet', '5.00', 'Analgesics'),
            ('Metformin', 'metformin', 'A10BA02', '500mg', 'tablet', '8.00', 'Antidiabetics'),
            ('Ceftriaxone', 'ceftriaxone', 'J01DD04', '1g', 'injection', '250.00', 'Cephalosporins'),
            ('Salbutamol', 'salbutamol', 'R03AC02', '100mcg', 'inhaler', '450.00', 'Bronchodilators'),
        ]
        for name, generic, atc, strength, form, price, klass in drugs:
            DrugFormulary.objects.get_or_create(
                name=name, strength=strength,
                defaults={'generic_name': generic, 'atc_code': atc, 'form': form, 'unit_price': Decimal(price),
                          'therapeutic_class': klass, 'stock_quantity': random.randint(40, 400),
                          'reorder_level': 30},
            )
        self.stdout.write(f'Drugs: {DrugFormulary.objects.count()}')

    def create_services(self):
        C = ServiceCatalogue
        services = [
            ('CONS-GP', 'General Physician Consultation', C.CATEGORY_CONSULTATION, '1000.00'),
            ('CONS-SP', 'Specialist Consultation', C.CATEGORY_CONSULTATION, '2500.00'),
            ('CONS-FU', 'Follow-up Consultation', C.CATEGORY_CONSULTATION, '500.00'),
            ('CONS-EM', 'Emergency Consultation', C.CATEGORY_CONSULTATION, '2000.00'),
            ('BED-STD', 'Standard bed day', C.CATEGORY_BED, '3000.00'),
            ('BED-ICU', 'ICU bed day', C.CATEGORY_BED, '15000.00'),
            ('BED-PRV', 'Private room bed day', C.CATEGORY_BED, '6000.00'),
            ('PROC-DRS', 'Wound dressing', C.CATEGORY_PROCEDURE, '700.00'),
            ('PROC-SUT', 'Suturing', C.CATEGORY_PROCEDURE, '1500.00'),
        ]
        for code, name, category, price in services:
            ServiceCatalogue.objects.get_or_create(
                code=code,
                defaults={'name': name, 'category': category, 'unit_price': Decimal(price),
                          'description': name},
            )
        self.stdout.write(f'Services: {ServiceCatalogue.objects.count()}')

    def create_patients(self, count):
        first_names = ['Amina', 'Brian', 'Cynthia', 'David', 'Esther', 'Felix', 'Grace', 'Hassan']
        last_names = ['Otieno', 'Wanjiru', 'Mwangi', 'Achieng', 'Kiprop', 'Njeri']
        allergies = [[], [], ['penicillin'], ['sulfa'], []]
        for i in range(count):
            first, last = first_names[i % len(first_names)], random.choice(last_names)
            if Patient.objects.filter(first_name=first, last_name=last).exists():
                continue
            Patient.objects.create(
                patient_number=next_number(Patient, 'patient_number', 'PAT'),
                first_name=first,
                last_name=last,
                date_of_birth=date.today() - timedelta(days=random.randint(365, 365 * 80)),
                gender=random.choice(['M', 'F']),
                phone=f'07{random.randint(10000000, 99999999)}',
                allergies=random.choice(allergies),
            )
        self.stdout.write(f'Patients: {Patient.objects.count()}')

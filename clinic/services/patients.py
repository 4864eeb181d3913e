from django.db import transaction
from django.db.models import Q

from clinic.exceptions import DuplicatePatient
from clinic.models import Patient
from clinic.services.audit import log_action
from clinic.services.numbers import next_number
from clinic.text import clean_text


def clean_allergies(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [clean_text(a) for a in value if str(a).strip()]


def format_patient(p: Patient) -> dict:
    return {
        'id': p.id,
        'patientNumber': p.patient_number,
        'name': p.full_name,
        'firstName': p.first_name,
        'lastName': p.last_name,
        'dateOfBirth': p.date_of_birth.isoformat(),
        'gender': p.gender,
        'phone': p.phone,
        'email': p.email,
        'allergies': p.allergies,
    }


@transaction.atomic
def register_patient(current_user, *, first_name, last_name, date_of_birth, gender, phone='',
                     email='', address='', allergies=None, emergency_contact='') -> Patient:
    phone = clean_text(phone)
    if phone:
        existing = (
            Patient.objects.select_for_update()
            .filter(phone=phone, date_of_birth=date_of_birth)
            .first()
        )
        if existing:
            raise DuplicatePatient(
                f'A patient with this phone and date of birth is already registered ({existing.patient_number}).',
                details={'patient_id': existing.id, 'patient_number': existing.patient_number},
                suggestions=['Open the existing patient record instead'],
            )
    patient = Patient.objects.create(
        patient_number=next_number(Patient, 'patient_number', 'PAT'),
        first_name=clean_text(first_name),
        last_name=clean_text(last_name),
        date_of_birth=date_of_birth,
        gender=gender,
        phone=phone,
        email=email or '',
        address=clean_text(address),
        allergies=clean_allergies(allergies),
        emergency_contact=emergency_contact or '',
        created_by=current_user if getattr(current_user, 'pk', None) else None,
    )
    log_action(user=current_user, action='patient_register', object_type='patient', object_id=patient.id,
               detail={'patient_number': patient.patient_number})
    return patient


def search_patients(q: str = ''):
    qs = Patient.objects.all()
    if q:
        qs = qs.filter(
            Q(first_name__icontains=q) | Q(last_name__icontains=q)
            | Q(patient_number__icontains=q) | Q(phone__icontains=q)
        )
    return qs.order_by('-created_at')

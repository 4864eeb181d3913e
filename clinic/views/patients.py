"""
Patient registration and lookup.

Front desk and nursing staff register patients; every staff role may
search and open a patient record.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import Patient
from clinic.permissions import HasRole
from clinic.serializers.patients import PatientCreateSerializer, PatientListQuerySerializer
from clinic.services import patients as svc


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_patients(request):
    q = PatientListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = svc.search_patients(q.validated_data.get('q', ''))
    page = q.validated_data.get('page') or 1
    page_size = q.validated_data.get('pageSize') or 50
    total = qs.count()
    start = (page - 1) * page_size
    rows = [svc.format_patient(p) for p in qs[start:start + page_size]]
    return Response({'total': total, 'page': page, 'pageSize': page_size, 'results': rows})


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('receptionist', 'nurse')])
def register_patient(request):
    s = PatientCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = svc.register_patient(request.user, **s.validated_data)
    return Response(svc.format_patient(patient), status=status.HTTP_201_CREATED)

register_patient.cls.throttle_scope = 'patient_write'


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_detail(request, pk: int):
    patient = get_object_or_404(Patient, pk=pk)
    data = svc.format_patient(patient)
    data['address'] = patient.address
    data['emergencyContact'] = patient.emergency_contact
    data['encounters'] = [{
        'id': e.id,
        'encounterNumber': e.encounter_number,
        'type': e.type,
        'status': e.status,
        'admittedAt': e.admission_datetime.isoformat(),
        'dischargedAt': e.discharge_datetime.isoformat() if e.discharge_datetime else None,
    } for e in patient.encounters.order_by('-admission_datetime')[:20]]
    return Response(data)

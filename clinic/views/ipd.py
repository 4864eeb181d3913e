from __future__ import annotations

from datetime import datetime, time

from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import Encounter, Patient
from clinic.permissions import HasRole
from clinic.serializers.clinical import AdmissionSerializer, DischargeSerializer, TransferSerializer
from clinic.services import billing, ipd

WARD_STAFF = ('doctor', 'nurse')


def _admission(pk) -> Encounter:
    return get_object_or_404(Encounter.objects.select_related('patient'), pk=pk, type=Encounter.TYPE_IPD)


def _day_bound(value, end=False):
    day = parse_date(value) if value else None
    if day is None:
        return None
    return timezone.make_aware(datetime.combine(day, time.max if end else time.min))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasRole(*WARD_STAFF)])
def admissions(request):
    if request.method == 'GET':
        qs = (
            Encounter.objects.select_related('patient')
            .filter(type=Encounter.TYPE_IPD, status=request.query_params.get('status', Encounter.STATUS_ACTIVE))
            .order_by('-admission_datetime')
        )
        return Response([ipd.format_admission(e) for e in qs[:200]])

    s = AdmissionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = get_object_or_404(Patient, pk=s.validated_data['patient_id'])
    encounter = ipd.admit_patient(patient, s.validated_data, user=request.user)
    return Response(ipd.format_admission(encounter), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def admission_detail(request, pk: int):
    encounter = _admission(pk)
    data = ipd.format_admission(encounter)
    data['billing'] = billing.billing_summary(encounter)
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*WARD_STAFF)])
def transfer(request, pk: int):
    s = TransferSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    encounter = _admission(pk)
    ipd.transfer_patient(encounter, s.validated_data['bed_id'], reason=s.validated_data.get('reason', ''),
                         user=request.user)
    return Response(ipd.format_admission(encounter))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor')])
def discharge(request, pk: int):
    s = DischargeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    encounter = ipd.discharge_patient(_admission(pk), s.validated_data, user=request.user)
    return Response(ipd.format_admission(encounter))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def census(request):
    return Response(ipd.census(request.query_params.get('ward_id')))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def statistics(request):
    p = request.query_params
    return Response(ipd.statistics(_day_bound(p.get('start')), _day_bound(p.get('end'), end=True)))

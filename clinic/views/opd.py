"""
OPD appointment endpoints: booking, the day's queue and the
consultation workflow.  Status changes are pushed to the appointment
board over WebSocket by the workflow service.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import OpdAppointment, Patient
from clinic.permissions import HasRole
from clinic.serializers.clinical import (
    AppointmentCreateSerializer, CancelSerializer, QueueQuerySerializer, SoapSerializer, TriageSerializer,
)
from clinic.services import billing, opd

FRONT_DESK = ('receptionist', 'nurse', 'doctor')


def _appointment(pk) -> OpdAppointment:
    return get_object_or_404(OpdAppointment.objects.select_related('patient', 'encounter'), pk=pk)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*FRONT_DESK)])
def book(request):
    s = AppointmentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = get_object_or_404(Patient, pk=s.validated_data['patient_id'])
    appt = opd.book_appointment(patient, s.validated_data, user=request.user)
    return Response(opd.format_appointment(appt), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def queue(request):
    q = QueueQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    doctor_id = q.validated_data.get('doctor_id')
    if doctor_id is None and request.user.role == 'doctor' and request.query_params.get('mine'):
        doctor_id = request.user.id
    rows = opd.todays_queue(q.validated_data.get('date'), doctor_id)
    return Response([opd.format_appointment(a) for a in rows])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def appointment_detail(request, pk: int):
    appt = _appointment(pk)
    data = opd.format_appointment(appt)
    soap = getattr(appt.encounter, 'soap_note', None)
    data['soap'] = {
        'subjective': soap.subjective,
        'objective': soap.objective,
        'assessment': soap.assessment,
        'plan': soap.plan,
        'status': soap.status,
    } if soap else None
    data['billing'] = billing.billing_summary(appt.encounter)
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*FRONT_DESK)])
def confirm(request, pk: int):
    return Response(opd.format_appointment(opd.confirm(_appointment(pk), user=request.user)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*FRONT_DESK)])
def check_in(request, pk: int):
    return Response(opd.format_appointment(opd.check_in(_appointment(pk), user=request.user)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor')])
def start(request, pk: int):
    return Response(opd.format_appointment(opd.start_consultation(_appointment(pk), user=request.user)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor')])
def soap(request, pk: int):
    s = SoapSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    note = opd.save_soap(_appointment(pk), s.validated_data, user=request.user)
    return Response({'ok': True, 'status': note.status})


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor')])
def complete(request, pk: int):
    s = SoapSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = opd.complete_consultation(_appointment(pk), s.validated_data, user=request.user)
    data = opd.format_appointment(result['appointment'])
    data['dispensed'] = result['dispensed']
    data['labOrdersSubmitted'] = result['lab_orders_submitted']
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor')])
def reopen(request, pk: int):
    return Response(opd.format_appointment(opd.reopen_consultation(_appointment(pk), user=request.user)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*FRONT_DESK)])
def cancel(request, pk: int):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    appt = opd.cancel(_appointment(pk), reason=s.validated_data.get('reason', ''), user=request.user)
    return Response(opd.format_appointment(appt))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole(*FRONT_DESK)])
def no_show(request, pk: int):
    return Response(opd.format_appointment(opd.mark_no_show(_appointment(pk), user=request.user)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasRole('nurse', 'doctor')])
def triage_pending(request):
    return Response([opd.format_appointment(a) for a in opd.pending_triage()])


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('nurse', 'doctor')])
def triage(request, pk: int):
    s = TriageSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(opd.format_appointment(opd.record_triage(_appointment(pk), s.validated_data, user=request.user)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('nurse', 'doctor')])
def skip_triage(request, pk: int):
    return Response(opd.format_appointment(opd.skip_triage(_appointment(pk), user=request.user)))

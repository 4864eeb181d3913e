"""
Prescriptions and lab orders.

Both are placed against an active encounter by a doctor.  Pharmacists
dispense and cancel prescriptions; lab staff (nurses here) submit
orders and record results.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.exceptions import WorkflowError
from clinic.models import Encounter, LabOrder, Prescription
from clinic.permissions import HasRole
from clinic.serializers.clinical import (
    LabOrderSerializer, LabPrioritySerializer, LabResultSerializer, PrescriptionSerializer,
)
from clinic.services import lab_orders, prescriptions


def _open_encounter(pk) -> Encounter:
    encounter = get_object_or_404(Encounter.objects.select_related('patient'), pk=pk)
    if encounter.status != Encounter.STATUS_ACTIVE:
        raise WorkflowError(f'Encounter {encounter.encounter_number} is {encounter.status.lower()}.',
                            error_type='encounter_closed')
    return encounter


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasRole('doctor', 'pharmacist', 'nurse')])
def encounter_prescriptions(request, pk: int):
    if request.method == 'GET':
        qs = Prescription.objects.select_related('drug').filter(encounter_id=pk).order_by('id')
        return Response([prescriptions.format_prescription(rx) for rx in qs])
    if request.user.role not in ('doctor', 'admin'):
        return Response({'detail': 'Only doctors may prescribe'}, status=status.HTTP_403_FORBIDDEN)
    s = PrescriptionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    rx = prescriptions.create_prescription(_open_encounter(pk), s.validated_data, user=request.user)
    return Response(prescriptions.format_prescription(rx), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasRole('pharmacist')])
def pending_prescriptions(request):
    qs = (
        Prescription.objects.select_related('drug')
        .filter(status=Prescription.STATUS_PENDING)
        .order_by('created_at')
    )
    return Response([prescriptions.format_prescription(rx) for rx in qs[:200]])


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('pharmacist')])
def dispense_prescription(request, pk: int):
    rx = prescriptions.dispense(get_object_or_404(Prescription, pk=pk), user=request.user)
    return Response(prescriptions.format_prescription(rx))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('pharmacist', 'doctor')])
def cancel_prescription(request, pk: int):
    rx = prescriptions.cancel(get_object_or_404(Prescription, pk=pk), user=request.user)
    return Response(prescriptions.format_prescription(rx))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasRole('doctor', 'nurse')])
def encounter_lab_orders(request, pk: int):
    if request.method == 'GET':
        qs = LabOrder.objects.select_related('test').filter(encounter_id=pk).order_by('id')
        return Response([lab_orders.format_lab_order(o) for o in qs])
    s = LabOrderSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = lab_orders.create_lab_order(_open_encounter(pk), s.validated_data, user=request.user)
    return Response(lab_orders.format_lab_order(order), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasRole('doctor', 'nurse')])
def lab_worklist(request):
    qs = (
        LabOrder.objects.select_related('test')
        .filter(status__in=[LabOrder.STATUS_PENDING, LabOrder.STATUS_IN_PROGRESS])
        .order_by('expected_completion_at')
    )
    return Response([lab_orders.format_lab_order(o) for o in qs[:200]])


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor')])
def lab_priority(request, pk: int):
    s = LabPrioritySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = lab_orders.update_priority(get_object_or_404(LabOrder, pk=pk), s.validated_data.get('priority'))
    return Response(lab_orders.format_lab_order(order))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor', 'nurse')])
def lab_submit(request, pk: int):
    order = get_object_or_404(LabOrder.objects.select_related('test'), pk=pk)
    return Response(lab_orders.format_lab_order(lab_orders.submit_to_laboratory(order)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('doctor', 'nurse')])
def lab_result(request, pk: int):
    s = LabResultSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = lab_orders.record_result(get_object_or_404(LabOrder, pk=pk), result=s.validated_data['result'],
                                     flag=s.validated_data.get('flag', ''), user=request.user)
    return Response(lab_orders.format_lab_order(order))

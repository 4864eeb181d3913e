from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import Bed, Ward
from clinic.permissions import AdminWriteOrReadOnly, HasRole
from clinic.serializers.master_data import BedSerializer, BedStatusSerializer, WardSerializer
from clinic.services import ipd, wards as svc
from clinic.services.audit import client_ip


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def wards(request):
    if request.method == 'GET':
        p = request.query_params
        return Response(svc.list_wards(department_id=p.get('department_id'), ward_type=p.get('ward_type'),
                                       status=p.get('status')))
    s = WardSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    ward = svc.create_ward(s.validated_data, user=request.user, ip=client_ip(request))
    return Response(svc.format_ward(ward), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def ward_detail(request, pk: int):
    ward = get_object_or_404(Ward.objects.select_related('department'), pk=pk)
    if request.method == 'GET':
        data = svc.format_ward(ward)
        data['beds'] = [svc.format_bed(b) for b in ward.beds.order_by('bed_number')]
        return Response(data)
    s = WardSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    ward = svc.update_ward(ward, s.validated_data, user=request.user, ip=client_ip(request))
    return Response(svc.format_ward(ward))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ward_census(request, pk: int):
    return Response(ipd.ward_census(get_object_or_404(Ward, pk=pk)))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def occupancy(request):
    return Response(svc.occupancy_matrix())


@api_view(['POST'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def ward_beds(request, pk: int):
    ward = get_object_or_404(Ward, pk=pk)
    s = BedSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    bed = svc.create_bed(ward, s.validated_data, user=request.user, ip=client_ip(request))
    return Response(svc.format_bed(bed), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('nurse')])
def bed_status(request, pk: int):
    bed = get_object_or_404(Bed, pk=pk)
    s = BedStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    bed = svc.update_bed_status(bed, s.validated_data['status'], user=request.user, ip=client_ip(request))
    return Response(svc.format_bed(bed))

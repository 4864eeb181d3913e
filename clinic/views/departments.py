"""
Department endpoints.

Anyone on staff may list departments; creating, editing, toggling and
deleting are administrator actions and are recorded in the master data
audit log.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import Department
from clinic.permissions import AdminWriteOrReadOnly, IsAdminRole
from clinic.serializers.master_data import DepartmentSerializer, ListQuerySerializer
from clinic.services import departments as svc
from clinic.services.audit import client_ip


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def departments(request):
    if request.method == 'GET':
        q = ListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response(svc.list_departments(status=q.validated_data.get('status'),
                                             search=q.validated_data.get('search')))

    s = DepartmentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    dept = svc.create_department(s.validated_data, user=request.user, ip=client_ip(request))
    return Response(svc.format_department(dept), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def department_detail(request, pk: int):
    dept = get_object_or_404(Department, pk=pk)
    if request.method == 'GET':
        data = svc.format_department(dept)
        data['references'] = svc.department_references(dept)
        return Response(data)
    if request.method == 'DELETE':
        svc.delete_department(dept, user=request.user, ip=client_ip(request))
        return Response(status=status.HTTP_204_NO_CONTENT)

    s = DepartmentSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    dept = svc.update_department(dept, s.validated_data, user=request.user, ip=client_ip(request))
    return Response(svc.format_department(dept))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def department_toggle(request, pk: int):
    dept = get_object_or_404(Department, pk=pk)
    dept = svc.toggle_status(dept, user=request.user, ip=client_ip(request))
    return Response(svc.format_department(dept))

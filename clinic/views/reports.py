from __future__ import annotations

from datetime import datetime, time

from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic import exports, imports
from clinic.permissions import HasRole, IsAdminRole
from clinic.serializers.billing import ExportQuerySerializer
from clinic.serializers.master_data import ImportSerializer
from clinic.services.audit import client_ip


def _format(request) -> str:
    q = ExportQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return q.validated_data['format']


def _bound(value, end=False):
    day = parse_date(value) if value else None
    if day is None:
        return None
    return timezone.make_aware(datetime.combine(day, time.max if end else time.min))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def export_wards(request):
    p = request.query_params
    df = exports.wards_frame(status=p.get('status'), ward_type=p.get('ward_type'),
                             department_id=p.get('department_id'))
    return exports.export_dataframe(df, 'wards', _format(request))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def export_drugs(request):
    p = request.query_params
    df = exports.drugs_frame(status=p.get('status'), stock_status=p.get('stock_status'))
    return exports.export_dataframe(df, 'drug_formulary', _format(request))


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasRole('cashier')])
def revenue_report(request):
    p = request.query_params
    df = exports.revenue_frame(_bound(p.get('start')), _bound(p.get('end'), end=True))
    return exports.export_dataframe(df, 'revenue_by_item_type', _format(request))


@api_view(['GET'])
@permission_classes([IsAuthenticated, HasRole('doctor', 'nurse')])
def census_report(request):
    return exports.export_dataframe(exports.census_frame(), 'ipd_census', _format(request))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def import_drugs(request):
    s = ImportSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(imports.import_drugs(s.validated_data['file'], user=request.user, ip=client_ip(request)))

import_drugs.cls.throttle_scope = 'imports'


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def import_tests(request):
    s = ImportSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(imports.import_tests(s.validated_data['file'], user=request.user, ip=client_ip(request)))

import_tests.cls.throttle_scope = 'imports'

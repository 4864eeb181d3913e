"""
Test catalogue, drug formulary and billable service endpoints.

Reads are open to staff and served from the master data cache; writes
are administrator actions.  Stock adjustments are also open to
pharmacists.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import DrugFormulary, MasterDataAudit, ServiceCatalogue, TestCatalog
from clinic.permissions import AdminWriteOrReadOnly, HasRole, IsAdminRole
from clinic.serializers.master_data import (
    DrugSerializer, PriceUpdateSerializer, ReorderLevelSerializer, ServiceSerializer, StockAdjustSerializer,
    TestCatalogSerializer, TurnaroundSerializer,
)
from clinic.services import drugs, service_catalogue, test_catalog
from clinic.services.audit import client_ip


# ---------------------------------------------------------------------
# Test catalogue
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def tests(request):
    if request.method == 'GET':
        p = request.query_params
        return Response(test_catalog.list_tests(search=p.get('search'), category=p.get('category'),
                                                status=p.get('status')))
    s = TestCatalogSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    test = test_catalog.create_test(s.validated_data, user=request.user, ip=client_ip(request))
    return Response(test_catalog.format_test(test), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def test_categories(request):
    return Response(test_catalog.categories())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def test_detail(request, pk: int):
    test = get_object_or_404(TestCatalog, pk=pk)
    data = test_catalog.format_test(test)
    data['pendingOrders'] = test_catalog.pending_order_count(test)
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def test_price(request, pk: int):
    test = get_object_or_404(TestCatalog, pk=pk)
    s = PriceUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    test = test_catalog.update_price(test, s.validated_data['price'], force=s.validated_data['force'],
                                     user=request.user, ip=client_ip(request))
    return Response(test_catalog.format_test(test))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def test_turnaround(request, pk: int):
    test = get_object_or_404(TestCatalog, pk=pk)
    s = TurnaroundSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    test = test_catalog.update_turnaround(test, s.validated_data['turnaround_time'],
                                          user=request.user, ip=client_ip(request))
    return Response(test_catalog.format_test(test))


# ---------------------------------------------------------------------
# Drug formulary
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def drug_list(request):
    if request.method == 'GET':
        p = request.query_params
        return Response(drugs.list_drugs(search=p.get('search'), status=p.get('status'),
                                         stock_status=p.get('stock_status')))
    s = DrugSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    drug = drugs.create_drug(s.validated_data, user=request.user, ip=client_ip(request))
    return Response(drugs.format_drug(drug), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def drug_low_stock(request):
    return Response(drugs.low_stock_drugs())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def drug_detail(request, pk: int):
    drug = get_object_or_404(DrugFormulary, pk=pk)
    data = drugs.format_drug(drug)
    data['movements'] = [drugs.format_movement(m) for m in drug.movements.order_by('-created_at', '-id')[:50]]
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('pharmacist')])
def drug_adjust_stock(request, pk: int):
    drug = get_object_or_404(DrugFormulary, pk=pk)
    s = StockAdjustSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    drug = drugs.adjust_stock(drug, s.validated_data['adjustment'], reason=s.validated_data['reason'],
                              user=request.user, ip=client_ip(request))
    return Response(drugs.format_drug(drug))


@api_view(['POST'])
@permission_classes([IsAuthenticated, HasRole('pharmacist')])
def drug_reorder_level(request, pk: int):
    drug = get_object_or_404(DrugFormulary, pk=pk)
    s = ReorderLevelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    drug = drugs.set_reorder_level(drug, s.validated_data['reorder_level'],
                                   user=request.user, ip=client_ip(request))
    return Response(drugs.format_drug(drug))


# ---------------------------------------------------------------------
# Billable services
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, AdminWriteOrReadOnly])
def service_list(request):
    if request.method == 'GET':
        p = request.query_params
        return Response(service_catalogue.list_services(category=p.get('category'), search=p.get('search')))
    s = ServiceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    service = service_catalogue.create_service(s.validated_data, user=request.user, ip=client_ip(request))
    return Response(service_catalogue.format_service(service), status=status.HTTP_201_CREATED)


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsAdminRole])
def service_detail(request, pk: int):
    service = get_object_or_404(ServiceCatalogue, pk=pk)
    s = ServiceSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    service = service_catalogue.update_service(service, s.validated_data, user=request.user, ip=client_ip(request))
    return Response(service_catalogue.format_service(service))


# ---------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------
@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def master_data_audit(request):
    p = request.query_params
    qs = MasterDataAudit.objects.select_related('user').order_by('-created_at', '-id')
    if p.get('entity_type'):
        qs = qs.filter(entity_type=p['entity_type'])
    if p.get('entity_id'):
        qs = qs.filter(entity_id=p['entity_id'])
    if p.get('action'):
        qs = qs.filter(action=p['action'])
    rows = [{
        'id': a.id,
        'entityType': a.entity_type,
        'entityId': a.entity_id,
        'action': a.action,
        'oldValues': a.old_values,
        'newValues': a.new_values,
        'user': a.user.username if a.user_id else None,
        'ipAddress': a.ip_address,
        'createdAt': a.created_at.isoformat(),
    } for a in qs[:200]]
    return Response(rows)

from typing import Optional

from django.db import transaction
from django.db.models import Q

from clinic.exceptions import MasterDataValidationError
from clinic.models import ServiceCatalogue
from clinic.services import master_data
from clinic.services.audit import record_master_change, snapshot


def format_service(s: ServiceCatalogue) -> dict:
    return {
        'id': s.id,
        'code': s.code,
        'name': s.name,
        'description': s.description,
        'category': s.category,
        'unitPrice': str(s.unit_price),
        'isActive': s.is_active,
        'isBillable': s.is_billable,
    }


def list_services(*, category: Optional[str] = None, search: Optional[str] = None) -> list[dict]:
    params = {'category': category or '', 'search': search or ''}

    def load():
        qs = ServiceCatalogue.objects.all()
        if category:
            qs = qs.filter(category=category)
        if search:
            qs = qs.filter(Q(code__icontains=search) | Q(name__icontains=search))
        return [format_service(s) for s in qs.order_by('category', 'name')]

    return master_data.remember('service', 'list', load, params)


@transaction.atomic
def create_service(data: dict, *, user=None, ip=None) -> ServiceCatalogue:
    code = data['code'].strip().upper()
    if ServiceCatalogue.objects.filter(code=code).exists():
        raise MasterDataValidationError(
            f"Service code '{code}' already exists.",
            details={'code': ['Service code must be unique']},
        )
    service = ServiceCatalogue.objects.create(
        code=code,
        name=data['name'],
        description=data.get('description', ''),
        category=data['category'],
        unit_price=data['unit_price'],
        is_active=data.get('is_active', True),
        is_billable=data.get('is_billable', True),
    )
    record_master_change(entity=service, action='created', new=snapshot(service), user=user, ip=ip)
    master_data.invalidate('service')
    return service


@transaction.atomic
def update_service(service: ServiceCatalogue, data: dict, *, user=None, ip=None) -> ServiceCatalogue:
    old = snapshot(service)
    for field in ('name', 'description', 'category', 'unit_price', 'is_active', 'is_billable'):
        if field in data:
            setattr(service, field, data[field])
    service.save()
    record_master_change(entity=service, action='updated', old=old, new=snapshot(service), user=user, ip=ip)
    master_data.invalidate('service')
    return service

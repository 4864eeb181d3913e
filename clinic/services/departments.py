from typing import Optional

from django.db import transaction
from django.db.models import Max, Q

from clinic.exceptions import DepartmentInUse, MasterDataValidationError
from clinic.models import Department
from clinic.services import master_data
from clinic.services.audit import record_master_change, snapshot


def format_department(d: Department) -> dict:
    return {
        'id': d.id,
        'code': d.code,
        'name': d.name,
        'description': d.description,
        'icon': d.icon,
        'sortOrder': d.sort_order,
        'status': d.status,
    }


def list_departments(*, status: Optional[str] = None, search: Optional[str] = None) -> list[dict]:
    params = {'status': status or '', 'search': search or ''}

    def load():
        qs = Department.objects.all()
        if status:
            qs = qs.filter(status=status)
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(code__icontains=search) | Q(description__icontains=search))
        return [format_department(d) for d in qs.order_by('sort_order', 'name')]

    return master_data.remember('department', 'list', load, params)


def department_references(department: Department) -> dict:
    return {
        'wards': department.wards.count(),
        'test_catalogs': department.test_catalogs.count(),
    }


def ensure_unreferenced(department: Department) -> None:
    refs = department_references(department)
    if refs['wards'] or refs['test_catalogs']:
        raise DepartmentInUse.for_department(department, **refs)


def _validate_code(code: str, exclude_id: Optional[int] = None) -> str:
    code = (code or '').strip().upper()
    qs = Department.objects.filter(code=code)
    if exclude_id:
        qs = qs.exclude(pk=exclude_id)
    if qs.exists():
        raise MasterDataValidationError(
            f"Department code '{code}' already exists.",
            details={'code': ['Department code must be unique']},
            suggestions=['Pick a different code'],
        )
    return code


@transaction.atomic
def create_department(data: dict, *, user=None, ip=None) -> Department:
    code = _validate_code(data['code'])
    next_order = (Department.objects.aggregate(m=Max('sort_order'))['m'] or 0) + 1
    dept = Department.objects.create(
        code=code,
        name=data['name'],
        description=data.get('description', ''),
        icon=data.get('icon', ''),
        sort_order=data.get('sort_order') or next_order,
        status=Department.STATUS_ACTIVE,
    )
    record_master_change(entity=dept, action='created', new=snapshot(dept), user=user, ip=ip)
    master_data.invalidate('department')
    return dept


@transaction.atomic
def update_department(dept: Department, data: dict, *, user=None, ip=None) -> Department:
    old = snapshot(dept)
    if 'code' in data:
        dept.code = _validate_code(data['code'], exclude_id=dept.id)
    for field in ('name', 'description', 'icon', 'sort_order'):
        if field in data:
            setattr(dept, field, data[field])
    if data.get('status') == Department.STATUS_INACTIVE and dept.status == Department.STATUS_ACTIVE:
        ensure_unreferenced(dept)
    if 'status' in data:
        dept.status = data['status']
    dept.save()
    record_master_change(entity=dept, action='updated', old=old, new=snapshot(dept), user=user, ip=ip)
    master_data.invalidate('department')
    return dept


@transaction.atomic
def toggle_status(dept: Department, *, user=None, ip=None) -> Department:
    """Flip active/inactive; a referenced department cannot be deactivated."""
    if dept.status == Department.STATUS_ACTIVE:
        ensure_unreferenced(dept)
        new_status = Department.STATUS_INACTIVE
    else:
        new_status = Department.STATUS_ACTIVE
    old_status = dept.status
    dept.status = new_status
    dept.save(update_fields=['status', 'updated_at'])
    record_master_change(entity=dept, action='status_changed', old={'status': old_status},
                         new={'status': new_status}, user=user, ip=ip)
    master_data.invalidate('department')
    return dept


@transaction.atomic
def delete_department(dept: Department, *, user=None, ip=None) -> None:
    ensure_unreferenced(dept)
    old = snapshot(dept)
    dept_id = dept.id
    dept.delete()
    record_master_change(entity_type='department', entity_id=dept_id, action='deleted', old=old, user=user, ip=ip)
    master_data.invalidate('department')

"""
Wards and beds.

Capacity and bed status rules live here; IPD admission and transfer
(see :mod:`clinic.services.ipd`) go through :func:`occupy_bed` and
:func:`release_bed` so the same transition checks apply everywhere.
"""
from __future__ import annotations

from typing import Optional

from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from clinic.exceptions import BedOccupancyConflict, MasterDataValidationError
from clinic.models import Bed, Department, Ward
from clinic.services import master_data
from clinic.services.audit import record_master_change, snapshot

MAX_WARD_CAPACITY = 200

# current status -> statuses it may not move to directly
INVALID_BED_TRANSITIONS = {
    Bed.STATUS_OCCUPIED: {Bed.STATUS_MAINTENANCE, Bed.STATUS_OUT_OF_ORDER},
    Bed.STATUS_MAINTENANCE: {Bed.STATUS_OCCUPIED},
    Bed.STATUS_OUT_OF_ORDER: {Bed.STATUS_OCCUPIED},
}


def occupancy_rate(occupied: int, total: int) -> float:
    return round(occupied / total * 100, 1) if total else 0.0


def _with_bed_stats(qs):
    return qs.annotate(
        total_beds=Count('beds', distinct=True),
        occupied_beds=Count('beds', filter=Q(beds__status=Bed.STATUS_OCCUPIED), distinct=True),
        available_beds=Count('beds', filter=Q(beds__status=Bed.STATUS_AVAILABLE), distinct=True),
    )


def format_ward(w: Ward) -> dict:
    total = getattr(w, 'total_beds', None)
    if total is None:
        total = w.beds.count()
        occupied = w.beds.filter(status=Bed.STATUS_OCCUPIED).count()
        available = w.beds.filter(status=Bed.STATUS_AVAILABLE).count()
    else:
        occupied, available = w.occupied_beds, w.available_beds
    return {
        'id': w.id,
        'wardCode': w.ward_code,
        'name': w.name,
        'departmentId': w.department_id,
        'department': w.department.name if w.department_id else None,
        'wardType': w.ward_type,
        'capacity': w.capacity,
        'status': w.status,
        'totalBeds': total,
        'occupiedBeds': occupied,
        'availableBeds': available,
        'occupancyRate': occupancy_rate(occupied, total),
    }


def format_bed(b: Bed) -> dict:
    return {
        'id': b.id,
        'wardId': b.ward_id,
        'bedNumber': b.bed_number,
        'bedType': b.bed_type,
        'status': b.status,
        'lastOccupiedAt': b.last_occupied_at.isoformat() if b.last_occupied_at else None,
    }


def list_wards(*, department_id: Optional[int] = None, ward_type: Optional[str] = None,
               status: Optional[str] = None) -> list[dict]:
    params = {'department': department_id, 'type': ward_type, 'status': status}

    def load():
        qs = _with_bed_stats(Ward.objects.select_related('department'))
        if department_id:
            qs = qs.filter(department_id=department_id)
        if ward_type:
            qs = qs.filter(ward_type=ward_type)
        if status:
            qs = qs.filter(status=status)
        return [format_ward(w) for w in qs.order_by('name')]

    return master_data.remember('ward', 'list', load, params)


def occupancy_matrix() -> list[dict]:
    """Every ward with its beds, for the bed board."""
    def load():
        data = []
        for w in _with_bed_stats(Ward.objects.select_related('department')).order_by('name'):
            row = format_ward(w)
            row['beds'] = [format_bed(b) for b in w.beds.order_by('bed_number')]
            data.append(row)
        return data

    return master_data.remember('bed', 'occupancy_matrix', load, ttl=900)


def _validate_capacity(capacity: int, ward: Optional[Ward] = None) -> None:
    if capacity < 1 or capacity > MAX_WARD_CAPACITY:
        raise MasterDataValidationError(
            f'Ward capacity must be between 1 and {MAX_WARD_CAPACITY}.',
            details={'capacity': [f'Must be between 1 and {MAX_WARD_CAPACITY}']},
        )
    if ward is None:
        return
    bed_count = ward.beds.count()
    if capacity < bed_count:
        raise MasterDataValidationError(
            f'Cannot reduce capacity below current bed count ({bed_count}).',
            details={'capacity': [f'Cannot reduce capacity below current bed count ({bed_count})']},
            suggestions=['Remove beds from the ward first'],
        )
    occupied = ward.beds.filter(status=Bed.STATUS_OCCUPIED).count()
    if capacity < occupied:
        raise MasterDataValidationError(
            f'Cannot reduce capacity below occupied beds count ({occupied}).',
            details={'capacity': [f'Cannot reduce capacity below occupied beds count ({occupied})']},
            suggestions=['Discharge or transfer patients first'],
        )


def _validate_department(department_id: int) -> Department:
    dept = Department.objects.filter(pk=department_id).first()
    if dept is None or dept.status != Department.STATUS_ACTIVE:
        raise MasterDataValidationError(
            'Selected department is not active.',
            details={'department_id': ['Department must exist and be active']},
        )
    return dept


@transaction.atomic
def create_ward(data: dict, *, user=None, ip=None) -> Ward:
    dept = _validate_department(data['department_id'])
    _validate_capacity(data['capacity'])
    if Ward.objects.filter(ward_code=data['ward_code']).exists():
        raise MasterDataValidationError(
            f"Ward code '{data['ward_code']}' already exists.",
            details={'ward_code': ['Ward code must be unique']},
        )
    ward = Ward.objects.create(
        ward_code=data['ward_code'],
        name=data['name'],
        department=dept,
        ward_type=data.get('ward_type', 'general'),
        capacity=data['capacity'],
        description=data.get('description', ''),
    )
    record_master_change(entity=ward, action='created', new=snapshot(ward), user=user, ip=ip)
    master_data.invalidate('ward')
    return ward


@transaction.atomic
def update_ward(ward: Ward, data: dict, *, user=None, ip=None) -> Ward:
    ward = Ward.objects.select_for_update().get(pk=ward.pk)
    old = snapshot(ward)
    if 'department_id' in data and data['department_id'] != ward.department_id:
        ward.department = _validate_department(data['department_id'])
    if 'capacity' in data:
        _validate_capacity(data['capacity'], ward)
        ward.capacity = data['capacity']
    for field in ('name', 'ward_type', 'status', 'description'):
        if field in data:
            setattr(ward, field, data[field])
    ward.save()
    record_master_change(entity=ward, action='updated', old=old, new=snapshot(ward), user=user, ip=ip)
    master_data.invalidate('ward')
    return ward


@transaction.atomic
def create_bed(ward: Ward, data: dict, *, user=None, ip=None) -> Bed:
    ward = Ward.objects.select_for_update().get(pk=ward.pk)
    if ward.beds.count() >= ward.capacity:
        raise MasterDataValidationError(
            f'Ward has reached maximum capacity ({ward.capacity} beds).',
            details={'ward_id': [f'Ward has reached maximum capacity ({ward.capacity} beds)']},
            suggestions=['Increase the ward capacity first'],
        )
    if ward.beds.filter(bed_number=data['bed_number']).exists():
        raise MasterDataValidationError(
            'Bed number must be unique within the ward.',
            details={'bed_number': ['Bed number must be unique within the ward']},
        )
    bed = Bed.objects.create(
        ward=ward,
        bed_number=data['bed_number'],
        bed_type=data.get('bed_type', 'standard'),
    )
    record_master_change(entity=bed, action='created', new=snapshot(bed), user=user, ip=ip)
    master_data.invalidate('bed')
    return bed


def validate_bed_transition(bed: Bed, new_status: str) -> None:
    if new_status in INVALID_BED_TRANSITIONS.get(bed.status, ()):
        raise BedOccupancyConflict.invalid_transition(bed, new_status)


@transaction.atomic
def update_bed_status(bed: Bed, new_status: str, *, user=None, ip=None) -> Bed:
    bed = Bed.objects.select_for_update().get(pk=bed.pk)
    validate_bed_transition(bed, new_status)
    old_status = bed.status
    bed.status = new_status
    fields = ['status']
    if new_status == Bed.STATUS_OCCUPIED:
        bed.last_occupied_at = timezone.now()
        fields.append('last_occupied_at')
    bed.save(update_fields=fields)
    record_master_change(entity=bed, action='status_changed', old={'status': old_status},
                         new={'status': new_status}, user=user, ip=ip)
    master_data.invalidate('bed')
    return bed


def occupy_bed(bed: Bed) -> Bed:
    """Mark a locked bed occupied for an admission; caller holds the row lock."""
    if bed.status != Bed.STATUS_AVAILABLE:
        raise BedOccupancyConflict.not_available(bed)
    bed.status = Bed.STATUS_OCCUPIED
    bed.last_occupied_at = timezone.now()
    bed.save(update_fields=['status', 'last_occupied_at'])
    master_data.invalidate('bed')
    return bed


def release_bed(bed: Bed) -> Bed:
    bed.status = Bed.STATUS_AVAILABLE
    bed.save(update_fields=['status'])
    master_data.invalidate('bed')
    return bed

from decimal import Decimal
from typing import Optional, Any, Dict

from django.contrib.auth import get_user_model
from django.db import models

from clinic.models import AuditEvent, MasterDataAudit

User = get_user_model()


def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id: Optional[int]=None, detail: Optional[Dict[str, Any]]=None) -> AuditEvent:
    return AuditEvent.objects.create(
        user=user if getattr(user, 'pk', None) else None,
        action=action,
        object_type=object_type, object_id=object_id,
        detail=detail or {},
    )


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


def snapshot(instance: models.Model, fields=None) -> Dict[str, Any]:
    """Concrete field values of ``instance`` in JSON friendly form."""
    data = {}
    for f in instance._meta.concrete_fields:
        if fields and f.name not in fields:
            continue
        data[f.attname] = _jsonable(getattr(instance, f.attname))
    return data


def record_master_change(*, entity: Optional[models.Model] = None, entity_type: Optional[str] = None,
                         entity_id: Optional[int] = None,
                         action: str, old: Optional[dict] = None, new: Optional[dict] = None,
                         user=None, ip: Optional[str] = None) -> MasterDataAudit:
    """Write a master data audit row; only changed keys are kept for updates."""
    old = old or {}
    new = new or {}
    if action == 'updated':
        changed = {k for k in set(old) | set(new) if old.get(k) != new.get(k)}
        old = {k: old.get(k) for k in changed}
        new = {k: new.get(k) for k in changed}
    return MasterDataAudit.objects.create(
        entity_type=entity_type or (entity._meta.model_name if entity is not None else ''),
        entity_id=entity_id if entity_id is not None else getattr(entity, 'pk', None),
        action=action,
        old_values=old,
        new_values=new,
        user=user if getattr(user, 'pk', None) else None,
        ip_address=ip,
    )


def client_ip(request) -> Optional[str]:
    if request is None:
        return None
    return request.META.get('REMOTE_ADDR')

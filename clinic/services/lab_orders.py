import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from clinic import events
from clinic.exceptions import WorkflowError
from clinic.models import Encounter, LabOrder, TestCatalog
from clinic.text import clean_text

logger = logging.getLogger(__name__)

PRIORITIES = (LabOrder.PRIORITY_URGENT, LabOrder.PRIORITY_FAST, LabOrder.PRIORITY_NORMAL)


def validate_priority(priority) -> str:
    if not priority:
        raise ValidationError({'priority': ['Priority is required for lab orders.']})
    if priority not in PRIORITIES:
        raise ValidationError({'priority': ['Priority must be one of: urgent, fast, normal.']})
    return priority


def expected_turnaround_hours(test: TestCatalog, priority: str) -> int:
    """Urgent and fast cap the test's turnaround time; normal uses it as is."""
    base = settings.LAB_PRIORITIES.get(priority, {}).get('turnaround_hours', 24)
    tat = test.turnaround_time if test else None
    if tat:
        if priority in (LabOrder.PRIORITY_URGENT, LabOrder.PRIORITY_FAST):
            return min(tat, base)
        return tat
    return base


def _set_expected_completion(order: LabOrder) -> None:
    order.expected_completion_at = timezone.now() + timedelta(
        hours=expected_turnaround_hours(order.test, order.priority)
    )


@transaction.atomic
def create_lab_order(encounter: Encounter, data: dict, *, user=None) -> LabOrder:
    priority = validate_priority(data.get('priority'))
    test = TestCatalog.objects.get(pk=data['test_id'])
    if test.status != 'active':
        raise WorkflowError(f'{test.name} is not orderable.', error_type='test_inactive')
    order = LabOrder(
        encounter=encounter,
        patient_id=encounter.patient_id,
        test=test,
        ordered_by=user if getattr(user, 'pk', None) else None,
        priority=priority,
        clinical_notes=clean_text(data.get('clinical_notes')),
    )
    _set_expected_completion(order)
    order.save()
    events.dispatch('lab_order_created', lab_order_id=order.id, user_id=getattr(user, 'pk', None))
    return order


@transaction.atomic
def update_priority(order: LabOrder, priority: str) -> LabOrder:
    order = LabOrder.objects.select_for_update().select_related('test').get(pk=order.pk)
    order.priority = validate_priority(priority)
    _set_expected_completion(order)
    order.save(update_fields=['priority', 'expected_completion_at'])
    return order


def submit_to_laboratory(order: LabOrder) -> LabOrder:
    if order.status != LabOrder.STATUS_PENDING:
        return order
    order.status = LabOrder.STATUS_IN_PROGRESS
    order.submitted_at = timezone.now()
    if order.expected_completion_at is None:
        _set_expected_completion(order)
    order.save(update_fields=['status', 'submitted_at', 'expected_completion_at'])
    if order.priority == LabOrder.PRIORITY_URGENT:
        logger.info('Urgent lab order submitted: order=%s test=%s patient=%s expected=%s',
                    order.id, order.test.name, order.patient_id, order.expected_completion_at)
    return order


def submit_pending(encounter: Encounter) -> int:
    count = 0
    for order in encounter.lab_orders.select_related('test').filter(status=LabOrder.STATUS_PENDING):
        submit_to_laboratory(order)
        count += 1
    return count


@transaction.atomic
def record_result(order: LabOrder, *, result: str, flag: str = '', user=None) -> LabOrder:
    order = LabOrder.objects.select_for_update().get(pk=order.pk)
    if order.status in (LabOrder.STATUS_COMPLETED, LabOrder.STATUS_CANCELLED):
        raise WorkflowError(f'Lab order is already {order.status}.', error_type='invalid_status')
    order.result = clean_text(result)
    order.result_flag = flag or ''
    order.status = LabOrder.STATUS_COMPLETED
    order.completed_at = timezone.now()
    order.save(update_fields=['result', 'result_flag', 'status', 'completed_at'])
    return order


def format_lab_order(o: LabOrder) -> dict:
    return {
        'id': o.id,
        'encounterId': o.encounter_id,
        'patientId': o.patient_id,
        'testId': o.test_id,
        'test': o.test.name,
        'priority': o.priority,
        'status': o.status,
        'expectedCompletionAt': o.expected_completion_at.isoformat() if o.expected_completion_at else None,
        'result': o.result,
        'resultFlag': o.result_flag,
    }

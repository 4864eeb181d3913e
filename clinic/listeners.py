"""
Billing receivers for domain events.

Each receiver reloads what it needs by id, posts its charges inside its
own transaction and then re-syncs the encounter's invoice, if one has
already been issued.  Charges are keyed on their source (encounter,
lab order, prescription, bed assignment) so a redelivered event posts
nothing new.
"""
import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.dispatch import receiver

from clinic import events
from clinic.models import BedAssignment, Encounter, LabOrder, Prescription
from clinic.services import billing, invoices

logger = logging.getLogger(__name__)


def _user(user_id):
    if not user_id:
        return None
    return get_user_model().objects.filter(pk=user_id).first()


@receiver(events.consultation_completed)
def bill_consultation(sender, encounter_id=None, consultation_type='OPD', user_id=None, **kwargs):
    user = _user(user_id)
    with transaction.atomic():
        encounter = Encounter.objects.get(pk=encounter_id)
        billing.add_consultation_charge(encounter, consultation_type, user=user)
        rxs = (
            Prescription.objects.filter(encounter=encounter)
            .exclude(status=Prescription.STATUS_CANCELLED)
            .select_related('drug', 'encounter')
        )
        for rx in rxs:
            billing.add_medication_charge(rx, user=user)
        invoices.sync_for_encounter(encounter)


@receiver(events.lab_order_created)
def bill_lab_order(sender, lab_order_id=None, user_id=None, **kwargs):
    with transaction.atomic():
        order = LabOrder.objects.select_related('encounter', 'test').get(pk=lab_order_id)
        billing.add_lab_test_charge(order, user=_user(user_id))
        invoices.sync_for_encounter(order.encounter)


@receiver(events.patient_admitted)
def bill_admission(sender, encounter_id=None, assignment_id=None, user_id=None, **kwargs):
    if not assignment_id:
        logger.info('Encounter %s admitted without a bed, no bed charge posted', encounter_id)
        return
    with transaction.atomic():
        assignment = BedAssignment.objects.select_related('encounter', 'bed__ward').get(pk=assignment_id)
        billing.post_outstanding_bed_days(assignment, user=_user(user_id))
        invoices.sync_for_encounter(assignment.encounter)


@receiver(events.patient_discharged)
def bill_discharge(sender, encounter_id=None, user_id=None, **kwargs):
    user = _user(user_id)
    with transaction.atomic():
        encounter = Encounter.objects.get(pk=encounter_id)
        assignments = encounter.bed_assignments.select_related('encounter', 'bed__ward').order_by('assigned_at')
        for assignment in assignments:
            billing.post_outstanding_bed_days(assignment, user=user)
        invoices.sync_for_encounter(encounter)


@receiver(events.patient_transferred)
def bill_transfer(sender, encounter_id=None, released_assignment_id=None, assignment_id=None, user_id=None,
                  **kwargs):
    user = _user(user_id)
    ids = [pk for pk in (released_assignment_id, assignment_id) if pk]
    with transaction.atomic():
        assignments = BedAssignment.objects.select_related('encounter', 'bed__ward').filter(pk__in=ids)
        for assignment in assignments.order_by('assigned_at'):
            billing.post_outstanding_bed_days(assignment, user=user)
        invoices.sync_for_encounter(Encounter.objects.get(pk=encounter_id))

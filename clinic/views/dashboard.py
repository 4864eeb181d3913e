"""
Role dashboards.

``GET /api/dashboard`` answers with the figures the signed in user's
role works from.  Admin figures are cached with the master data and go
stale when departments, wards or beds change.
"""
from __future__ import annotations

from django.conf import settings
from django.db.models import Count, F, Sum
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import (
    Bed, Department, DrugFormulary, Encounter, Invoice, LabOrder, OpdAppointment, Patient, Payment, Prescription,
    Ward, ZERO,
)
from clinic.services import ipd, master_data, opd
from clinic.services.wards import occupancy_rate


def admin_stats(user) -> dict:
    def load():
        total = Bed.objects.count()
        occupied = Bed.objects.filter(status=Bed.STATUS_OCCUPIED).count()
        return {
            'departments': Department.objects.filter(status=Department.STATUS_ACTIVE).count(),
            'wards': Ward.objects.filter(status='active').count(),
            'beds': total,
            'occupiedBeds': occupied,
            'occupancyRate': occupancy_rate(occupied, total),
            'activeAdmissions': Encounter.objects.filter(
                type=Encounter.TYPE_IPD, status=Encounter.STATUS_ACTIVE).count(),
        }
    return master_data.remember('stats', 'admin_dashboard', load, ttl=300)


def doctor_stats(user) -> dict:
    today = timezone.localdate()
    mine = OpdAppointment.objects.filter(appointment_date=today, doctor=user)
    return {
        'todaysAppointments': mine.count(),
        'inProgress': mine.filter(status=OpdAppointment.STATUS_IN_PROGRESS).count(),
        'waiting': mine.filter(status=OpdAppointment.STATUS_CHECKED_IN).count(),
        'completed': mine.filter(status=OpdAppointment.STATUS_COMPLETED).count(),
        'pendingLabOrders': LabOrder.objects.filter(
            ordered_by=user, status__in=[LabOrder.STATUS_PENDING, LabOrder.STATUS_IN_PROGRESS]).count(),
    }


def nurse_stats(user) -> dict:
    return {
        'census': ipd.census(),
        'admissionsToday': Encounter.objects.filter(
            type=Encounter.TYPE_IPD, admission_datetime__date=timezone.localdate()).count(),
        'checkedIn': opd.todays_queue().filter(status=OpdAppointment.STATUS_CHECKED_IN).count(),
        'pendingTriage': opd.pending_triage().count(),
    }


def pharmacist_stats(user) -> dict:
    return {
        'pendingPrescriptions': Prescription.objects.filter(status=Prescription.STATUS_PENDING).count(),
        'activeReservations': Prescription.objects.filter(
            stock_reserved=True, status=Prescription.STATUS_PENDING).count(),
        'lowStock': DrugFormulary.objects.filter(
            status='active', stock_quantity__lte=F('reorder_level')).count(),
        'outOfStock': DrugFormulary.objects.filter(status='active', stock_quantity__lte=0).count(),
    }


def receptionist_stats(user) -> dict:
    today = timezone.localdate()
    queue = opd.todays_queue()
    return {
        'registrationsToday': Patient.objects.filter(created_at__date=today).count(),
        'queueLength': queue.count(),
        'scheduled': queue.filter(status=OpdAppointment.STATUS_SCHEDULED).count(),
        'checkedIn': queue.filter(status=OpdAppointment.STATUS_CHECKED_IN).count(),
    }


def cashier_stats(user) -> dict:
    today = timezone.localdate()
    collected = Payment.objects.filter(paid_at__date=today).aggregate(s=Sum('amount'))['s'] or ZERO
    outstanding = Invoice.objects.exclude(status=Invoice.STATUS_PAID).aggregate(s=Sum('balance'))['s'] or ZERO
    counts = dict(Invoice.objects.values_list('status').annotate(n=Count('id')))
    return {
        'currency': settings.HMS_CURRENCY,
        'collectedToday': str(collected),
        'outstandingBalance': str(outstanding),
        'invoices': {s: counts.get(s, 0) for s, _ in Invoice.STATUS_CHOICES},
    }


ROLE_STATS = {
    'admin': admin_stats,
    'doctor': doctor_stats,
    'nurse': nurse_stats,
    'pharmacist': pharmacist_stats,
    'receptionist': receptionist_stats,
    'cashier': cashier_stats,
}


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def dashboard(request):
    role = request.user.role
    builder = ROLE_STATS.get(role)
    if builder is None:
        return Response({'role': role, 'stats': {}})
    return Response({'role': role, 'stats': builder(request.user)})

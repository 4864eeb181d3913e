"""
Database models for the hospital management backend.

The models are grouped the way the hospital works: staff and master
data (departments, wards, beds, catalogues, formulary), patients and
their encounters (OPD appointments and IPD bed assignments), clinical
orders (SOAP notes, prescriptions, lab orders) and billing (accounts,
items, invoices and payments).  Money is always stored as ``Decimal``.
"""
from __future__ import annotations

import math
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone

ZERO = Decimal('0.00')


def money_field(**kwargs):
    kwargs.setdefault('default', ZERO)
    return models.DecimalField(max_digits=12, decimal_places=2, **kwargs)


# ---------------------------------------------------------------------
# Staff & master data
# ---------------------------------------------------------------------
class Department(models.Model):
    """A clinical or administrative department."""
    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = ((STATUS_ACTIVE, 'Active'), (STATUS_INACTIVE, 'Inactive'))

    code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    icon = models.CharField(max_length=64, blank=True)
    sort_order = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['sort_order', 'name']

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class User(AbstractUser):
    """Hospital staff member.

    The ``role`` drives every permission check; it is never taken from
    a login request body.
    """
    ROLE_ADMIN = 'admin'
    ROLE_DOCTOR = 'doctor'
    ROLE_NURSE = 'nurse'
    ROLE_PHARMACIST = 'pharmacist'
    ROLE_RECEPTIONIST = 'receptionist'
    ROLE_CASHIER = 'cashier'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_NURSE, 'Nurse'),
        (ROLE_PHARMACIST, 'Pharmacist'),
        (ROLE_RECEPTIONIST, 'Receptionist'),
        (ROLE_CASHIER, 'Cashier'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_RECEPTIONIST, db_index=True)
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff'
    )
    phone = models.CharField(max_length=32, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Ward(models.Model):
    TYPE_CHOICES = [
        ('general', 'General'),
        ('icu', 'ICU'),
        ('maternity', 'Maternity'),
        ('pediatric', 'Pediatric'),
        ('surgical', 'Surgical'),
        ('private', 'Private'),
    ]
    STATUS_CHOICES = (('active', 'Active'), ('inactive', 'Inactive'))

    ward_code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=255)
    department = models.ForeignKey(Department, on_delete=models.PROTECT, related_name='wards')
    ward_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='general')
    capacity = models.PositiveIntegerField()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active', db_index=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.ward_code})"


class Bed(models.Model):
    STATUS_AVAILABLE = 'available'
    STATUS_OCCUPIED = 'occupied'
    STATUS_MAINTENANCE = 'maintenance'
    STATUS_CLEANING = 'cleaning'
    STATUS_OUT_OF_ORDER = 'out_of_order'
    STATUS_CHOICES = [
        (STATUS_AVAILABLE, 'Available'),
        (STATUS_OCCUPIED, 'Occupied'),
        (STATUS_MAINTENANCE, 'Maintenance'),
        (STATUS_CLEANING, 'Cleaning'),
        (STATUS_OUT_OF_ORDER, 'Out of order'),
    ]
    TYPE_CHOICES = [
        ('standard', 'Standard'),
        ('icu', 'ICU'),
        ('isolation', 'Isolation'),
        ('private', 'Private'),
    ]

    ward = models.ForeignKey(Ward, on_delete=models.CASCADE, related_name='beds')
    bed_number = models.CharField(max_length=20)
    bed_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='standard')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_AVAILABLE, db_index=True)
    last_occupied_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [('ward', 'bed_number')]

    def __str__(self) -> str:
        return f"{self.ward.ward_code}/{self.bed_number}"


class TestCatalog(models.Model):
    STATUS_CHOICES = (('active', 'Active'), ('inactive', 'Inactive'))

    code = models.CharField(max_length=30, unique=True)
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=100, db_index=True)
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.PROTECT, related_name='test_catalogs'
    )
    price = money_field()
    # hours
    turnaround_time = models.PositiveIntegerField(default=24)
    unit = models.CharField(max_length=50, blank=True)
    normal_range = models.CharField(max_length=255, blank=True)
    sample_type = models.CharField(max_length=100, blank=True)
    instructions = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active', db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.code} {self.name}"


class DrugFormulary(models.Model):
    FORM_CHOICES = [
        ('tablet', 'Tablet'),
        ('capsule', 'Capsule'),
        ('syrup', 'Syrup'),
        ('injection', 'Injection'),
        ('cream', 'Cream'),
        ('ointment', 'Ointment'),
        ('drops', 'Drops'),
        ('inhaler', 'Inhaler'),
    ]
    STATUS_CHOICES = (('active', 'Active'), ('discontinued', 'Discontinued'))

    name = models.CharField(max_length=255, db_index=True)
    generic_name = models.CharField(max_length=255, blank=True)
    atc_code = models.CharField(max_length=7, blank=True)
    strength = models.CharField(max_length=50)
    form = models.CharField(max_length=20, choices=FORM_CHOICES)
    therapeutic_class = models.CharField(max_length=100, blank=True)
    contraindications = models.TextField(blank=True)
    side_effects = models.TextField(blank=True)
    manufacturer = models.CharField(max_length=255, blank=True)
    unit_price = money_field()
    stock_quantity = models.IntegerField(default=0)
    reorder_level = models.PositiveIntegerField(default=10)
    status = models.CharField(max_length=15, choices=STATUS_CHOICES, default='active', db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def stock_status(self) -> str:
        if self.stock_quantity <= 0:
            return 'out_of_stock'
        if self.stock_quantity <= self.reorder_level:
            return 'low_stock'
        return 'in_stock'

    def __str__(self) -> str:
        return f"{self.name} {self.strength}"


class StockMovement(models.Model):
    TYPE_RESERVATION = 'RESERVATION'
    TYPE_RETURN = 'RETURN'
    TYPE_DISPENSE = 'DISPENSE'
    TYPE_ADJUSTMENT = 'ADJUSTMENT'
    TYPE_CHOICES = [
        (TYPE_RESERVATION, 'Reservation'),
        (TYPE_RETURN, 'Return'),
        (TYPE_DISPENSE, 'Dispense'),
        (TYPE_ADJUSTMENT, 'Adjustment'),
    ]

    drug = models.ForeignKey(DrugFormulary, on_delete=models.CASCADE, related_name='movements')
    movement_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    # signed: negative leaves the shelf
    quantity = models.IntegerField()
    balance_after = models.IntegerField()
    reference_no = models.CharField(max_length=64, blank=True, db_index=True)
    notes = models.CharField(max_length=255, blank=True)
    user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['drug', 'created_at'])]


class ServiceCatalogue(models.Model):
    """Billable services; charge posting looks prices up here."""
    CATEGORY_CONSULTATION = 'consultation'
    CATEGORY_BED = 'bed_charge'
    CATEGORY_LAB = 'lab_test'
    CATEGORY_PROCEDURE = 'procedure'
    CATEGORY_MEDICATION = 'medication'
    CATEGORY_CHOICES = [
        (CATEGORY_CONSULTATION, 'Consultation'),
        (CATEGORY_BED, 'Bed charge'),
        (CATEGORY_LAB, 'Lab test'),
        (CATEGORY_PROCEDURE, 'Procedure'),
        (CATEGORY_MEDICATION, 'Medication'),
    ]

    code = models.CharField(max_length=30, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, db_index=True)
    unit_price = money_field()
    is_active = models.BooleanField(default=True)
    is_billable = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.code} {self.name}"


class MasterDataAudit(models.Model):
    entity_type = models.CharField(max_length=64)
    entity_id = models.BigIntegerField(null=True, blank=True)
    action = models.CharField(max_length=32)
    old_values = models.JSONField(default=dict, blank=True)
    new_values = models.JSONField(default=dict, blank=True)
    user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['entity_type', 'entity_id', 'created_at']),
            models.Index(fields=['action', 'created_at']),
        ]


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['object_type', 'object_id', 'created_at']),
        ]


# ---------------------------------------------------------------------
# Patients & encounters
# ---------------------------------------------------------------------
class Patient(models.Model):
    GENDER_CHOICES = (('M', 'Male'), ('F', 'Female'), ('O', 'Other'))

    patient_number = models.CharField(max_length=32, unique=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField()
    gender = models.CharField(max_length=1, choices=GENDER_CHOICES)
    phone = models.CharField(max_length=32, blank=True, db_index=True)
    email = models.EmailField(blank=True)
    address = models.CharField(max_length=255, blank=True)
    allergies = models.JSONField(default=list, blank=True)
    emergency_contact = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return f"{self.full_name} ({self.patient_number})"


class Encounter(models.Model):
    TYPE_OPD = 'OPD'
    TYPE_IPD = 'IPD'
    TYPE_EMERGENCY = 'EMERGENCY'
    TYPE_CHOICES = ((TYPE_OPD, 'Outpatient'), (TYPE_IPD, 'Inpatient'), (TYPE_EMERGENCY, 'Emergency'))

    STATUS_ACTIVE = 'ACTIVE'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'Active'), (STATUS_COMPLETED, 'Completed'), (STATUS_CANCELLED, 'Cancelled'),
    )

    encounter_number = models.CharField(max_length=32, unique=True)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='encounters')
    type = models.CharField(max_length=10, choices=TYPE_CHOICES, db_index=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    department = models.ForeignKey(Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    attending_doctor = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    chief_complaint = models.TextField(blank=True)
    admission_datetime = models.DateTimeField(default=timezone.now)
    discharge_datetime = models.DateTimeField(null=True, blank=True)
    discharge_summary = models.TextField(blank=True)
    discharge_condition = models.CharField(max_length=50, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.encounter_number


class BedAssignment(models.Model):
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='bed_assignments')
    bed = models.ForeignKey(Bed, on_delete=models.PROTECT, related_name='assignments')
    assigned_at = models.DateTimeField(default=timezone.now)
    released_at = models.DateTimeField(null=True, blank=True)
    release_reason = models.CharField(max_length=20, blank=True)
    assigned_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')

    @property
    def is_active(self) -> bool:
        return self.released_at is None

    def days(self, until=None) -> int:
        """Bed-days occupied; a started day counts, minimum one."""
        end = self.released_at or until or timezone.now()
        hours = max((end - self.assigned_at).total_seconds(), 0) / 3600
        return max(1, math.ceil(hours / 24))


class OpdAppointment(models.Model):
    STATUS_SCHEDULED = 'SCHEDULED'
    STATUS_CONFIRMED = 'CONFIRMED'
    STATUS_CHECKED_IN = 'CHECKED_IN'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_NO_SHOW = 'NO_SHOW'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_CHECKED_IN, 'Checked in'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_NO_SHOW, 'No show'),
    ]

    TYPE_NEW = 'NEW'
    TYPE_FOLLOW_UP = 'FOLLOW_UP'
    TYPE_SPECIALIST = 'SPECIALIST'
    TYPE_EMERGENCY = 'EMERGENCY'
    TYPE_CHOICES = [
        (TYPE_NEW, 'New visit'),
        (TYPE_FOLLOW_UP, 'Follow-up'),
        (TYPE_SPECIALIST, 'Specialist'),
        (TYPE_EMERGENCY, 'Emergency'),
    ]

    TRIAGE_PENDING = 'pending'
    TRIAGE_COMPLETED = 'completed'
    TRIAGE_SKIPPED = 'skipped'
    TRIAGE_STATUS_CHOICES = [
        (TRIAGE_PENDING, 'Pending'),
        (TRIAGE_COMPLETED, 'Completed'),
        (TRIAGE_SKIPPED, 'Skipped'),
    ]

    LEVEL_EMERGENCY = 'emergency'
    LEVEL_URGENT = 'urgent'
    LEVEL_NON_URGENT = 'non-urgent'
    LEVEL_ROUTINE = 'routine'
    LEVEL_CHOICES = [
        (LEVEL_EMERGENCY, 'Emergency'),
        (LEVEL_URGENT, 'Urgent'),
        (LEVEL_NON_URGENT, 'Non-urgent'),
        (LEVEL_ROUTINE, 'Routine'),
    ]

    appointment_number = models.CharField(max_length=32, unique=True)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='opd_appointments')
    encounter = models.OneToOneField(Encounter, on_delete=models.CASCADE, related_name='opd_appointment')
    doctor = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='opd_appointments')
    department = models.ForeignKey(Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    appointment_date = models.DateField(db_index=True)
    appointment_time = models.TimeField(null=True, blank=True)
    queue_number = models.PositiveIntegerField()
    appointment_type = models.CharField(max_length=12, choices=TYPE_CHOICES, default=TYPE_NEW)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    chief_complaint = models.TextField(blank=True)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    consultation_started_at = models.DateTimeField(null=True, blank=True)
    consultation_completed_at = models.DateTimeField(null=True, blank=True)

    # triage
    triage_status = models.CharField(max_length=10, choices=TRIAGE_STATUS_CHOICES, default=TRIAGE_PENDING)
    triage_level = models.CharField(max_length=12, choices=LEVEL_CHOICES, blank=True)
    triage_score = models.PositiveSmallIntegerField(null=True, blank=True)
    red_flags = models.JSONField(default=list, blank=True)
    temperature = models.DecimalField(max_digits=4, decimal_places=1, null=True, blank=True)
    blood_pressure = models.CharField(max_length=20, blank=True)
    heart_rate = models.PositiveSmallIntegerField(null=True, blank=True)
    respiratory_rate = models.PositiveSmallIntegerField(null=True, blank=True)
    oxygen_saturation = models.PositiveSmallIntegerField(null=True, blank=True)
    pain_level = models.PositiveSmallIntegerField(null=True, blank=True)
    weight = models.DecimalField(max_digits=5, decimal_places=1, null=True, blank=True)
    height = models.DecimalField(max_digits=5, decimal_places=1, null=True, blank=True)
    triage_notes = models.TextField(blank=True)
    triaged_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    triaged_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['appointment_date', 'queue_number'])]

    def __str__(self) -> str:
        return self.appointment_number


class SoapNote(models.Model):
    STATUS_DRAFT = 'draft'
    STATUS_COMPLETED = 'completed'
    STATUS_CHOICES = ((STATUS_DRAFT, 'Draft'), (STATUS_COMPLETED, 'Completed'))

    encounter = models.OneToOneField(Encounter, on_delete=models.CASCADE, related_name='soap_note')
    subjective = models.TextField(blank=True)
    objective = models.TextField(blank=True)
    assessment = models.TextField(blank=True)
    plan = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_DRAFT)
    author = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)


class Prescription(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_DISPENSED = 'dispensed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'), (STATUS_DISPENSED, 'Dispensed'), (STATUS_CANCELLED, 'Cancelled'),
    )

    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='prescriptions')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='prescriptions')
    drug = models.ForeignKey(DrugFormulary, on_delete=models.PROTECT, related_name='prescriptions')
    prescriber = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    dosage = models.CharField(max_length=100)
    frequency = models.CharField(max_length=100)
    duration = models.CharField(max_length=100)
    quantity = models.PositiveIntegerField()
    instructions = models.TextField(blank=True)
    instant_dispensing = models.BooleanField(default=False)
    stock_reserved = models.BooleanField(default=False, db_index=True)
    stock_reserved_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    dispensed_at = models.DateTimeField(null=True, blank=True)
    dispensed_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    prescription_data = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def reference_no(self) -> str:
        return f"PRESCRIPTION-{self.pk}"


class LabOrder(models.Model):
    PRIORITY_URGENT = 'urgent'
    PRIORITY_FAST = 'fast'
    PRIORITY_NORMAL = 'normal'
    PRIORITY_CHOICES = ((PRIORITY_URGENT, 'Urgent'), (PRIORITY_FAST, 'Fast'), (PRIORITY_NORMAL, 'Normal'))

    STATUS_PENDING = 'pending'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    )

    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='lab_orders')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='lab_orders')
    test = models.ForeignKey(TestCatalog, on_delete=models.PROTECT, related_name='lab_orders')
    ordered_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default=PRIORITY_NORMAL)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    clinical_notes = models.TextField(blank=True)
    expected_completion_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    result = models.TextField(blank=True)
    result_flag = models.CharField(max_length=20, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)


# ---------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------
class BillingAccount(models.Model):
    STATUS_OPEN = 'open'
    STATUS_INVOICED = 'invoiced'
    STATUS_SETTLED = 'settled'
    STATUS_CHOICES = ((STATUS_OPEN, 'Open'), (STATUS_INVOICED, 'Invoiced'), (STATUS_SETTLED, 'Settled'))

    encounter = models.OneToOneField(Encounter, on_delete=models.CASCADE, related_name='billing_account')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='billing_accounts')
    account_no = models.CharField(max_length=20, unique=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_OPEN)
    total_amount = money_field()
    discount_amount = money_field()
    net_amount = money_field()
    amount_paid = money_field()
    balance = money_field()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.account_no


class BillingItem(models.Model):
    STATUS_UNPAID = 'unpaid'
    STATUS_PAID = 'paid'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = ((STATUS_UNPAID, 'Unpaid'), (STATUS_PAID, 'Paid'), (STATUS_CANCELLED, 'Cancelled'))

    account = models.ForeignKey(BillingAccount, on_delete=models.CASCADE, related_name='items')
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='billing_items')
    item_type = models.CharField(max_length=20, choices=ServiceCatalogue.CATEGORY_CHOICES)
    service = models.ForeignKey(ServiceCatalogue, null=True, blank=True, on_delete=models.SET_NULL)
    service_code = models.CharField(max_length=30, blank=True)
    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = money_field()
    amount = money_field()
    discount_amount = money_field()
    net_amount = money_field()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_UNPAID)
    reference_type = models.CharField(max_length=30, blank=True)
    reference_id = models.CharField(max_length=64, blank=True)
    posted_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    posted_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=['encounter', 'item_type']),
            models.Index(fields=['reference_type', 'reference_id']),
        ]


class Invoice(models.Model):
    STATUS_UNPAID = 'unpaid'
    STATUS_PARTIAL = 'partial'
    STATUS_PAID = 'paid'
    STATUS_CHOICES = ((STATUS_UNPAID, 'Unpaid'), (STATUS_PARTIAL, 'Partially paid'), (STATUS_PAID, 'Paid'))

    invoice_number = models.CharField(max_length=32, unique=True)
    encounter = models.OneToOneField(Encounter, on_delete=models.CASCADE, related_name='invoice')
    account = models.ForeignKey(BillingAccount, on_delete=models.CASCADE, related_name='invoices')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='invoices')
    total_amount = money_field()
    discount_amount = money_field()
    net_amount = money_field()
    paid_amount = money_field()
    balance = money_field()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_UNPAID, db_index=True)
    issued_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.invoice_number


class Payment(models.Model):
    METHOD_CHOICES = [
        ('cash', 'Cash'),
        ('card', 'Card'),
        ('mobile_money', 'Mobile money'),
        ('insurance', 'Insurance'),
        ('bank_transfer', 'Bank transfer'),
    ]

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=20, choices=METHOD_CHOICES, default='cash')
    reference_no = models.CharField(max_length=64, blank=True)
    notes = models.CharField(max_length=255, blank=True)
    received_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    paid_at = models.DateTimeField(default=timezone.now, db_index=True)

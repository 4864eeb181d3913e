"""
Django admin registrations for the clinic models.

Master data, encounters and the billing ledger are browsable from
``/admin/``.  The same session login also gates the printable invoice
and lab result pages.
"""

from django.contrib import admin

from .models import (
    AuditEvent,
    Bed,
    BedAssignment,
    BillingAccount,
    BillingItem,
    Department,
    DrugFormulary,
    Encounter,
    Invoice,
    LabOrder,
    MasterDataAudit,
    OpdAppointment,
    Patient,
    Payment,
    Prescription,
    ServiceCatalogue,
    SoapNote,
    StockMovement,
    TestCatalog,
    User,
    Ward,
)


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'status', 'sort_order')
    list_filter = ('status',)
    search_fields = ('code', 'name')


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'department', 'is_active', 'is_staff')
    list_filter = ('role', 'department')
    search_fields = ('username', 'first_name', 'last_name', 'phone')


class BedInline(admin.TabularInline):
    model = Bed
    extra = 0
    fields = ('bed_number', 'bed_type', 'status')


@admin.register(Ward)
class WardAdmin(admin.ModelAdmin):
    list_display = ('ward_code', 'name', 'department', 'ward_type', 'capacity', 'status')
    list_filter = ('ward_type', 'status')
    search_fields = ('ward_code', 'name')
    inlines = [BedInline]


@admin.register(TestCatalog)
class TestCatalogAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'category', 'price', 'turnaround_time', 'status')
    list_filter = ('category', 'status')
    search_fields = ('code', 'name')


@admin.register(DrugFormulary)
class DrugFormularyAdmin(admin.ModelAdmin):
    list_display = ('name', 'strength', 'form', 'unit_price', 'stock_quantity', 'reorder_level', 'status')
    list_filter = ('form', 'status')
    search_fields = ('name', 'generic_name', 'atc_code')


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ('drug', 'movement_type', 'quantity', 'balance_after', 'reference_no', 'created_at')
    list_filter = ('movement_type',)
    search_fields = ('drug__name', 'reference_no')


@admin.register(ServiceCatalogue)
class ServiceCatalogueAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'category', 'unit_price', 'is_active', 'is_billable')
    list_filter = ('category', 'is_active')
    search_fields = ('code', 'name')


@admin.register(MasterDataAudit)
class MasterDataAuditAdmin(admin.ModelAdmin):
    list_display = ('entity_type', 'entity_id', 'action', 'user', 'ip_address', 'created_at')
    list_filter = ('entity_type', 'action')
    readonly_fields = ('old_values', 'new_values')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'object_type', 'object_id', 'user', 'created_at')
    list_filter = ('action',)
    search_fields = ('action', 'user__username')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('patient_number', 'first_name', 'last_name', 'date_of_birth', 'gender', 'phone')
    search_fields = ('patient_number', 'first_name', 'last_name', 'phone')


@admin.register(Encounter)
class EncounterAdmin(admin.ModelAdmin):
    list_display = ('encounter_number', 'patient', 'type', 'status', 'admission_datetime', 'discharge_datetime')
    list_filter = ('type', 'status')
    search_fields = ('encounter_number', 'patient__patient_number', 'patient__last_name')


@admin.register(BedAssignment)
class BedAssignmentAdmin(admin.ModelAdmin):
    list_display = ('encounter', 'bed', 'assigned_at', 'released_at', 'release_reason')


@admin.register(OpdAppointment)
class OpdAppointmentAdmin(admin.ModelAdmin):
    list_display = ('appointment_number', 'patient', 'doctor', 'appointment_date', 'queue_number', 'status')
    list_filter = ('status', 'appointment_type', 'appointment_date')
    search_fields = ('appointment_number', 'patient__patient_number')


@admin.register(SoapNote)
class SoapNoteAdmin(admin.ModelAdmin):
    list_display = ('encounter', 'status', 'author', 'completed_at')
    list_filter = ('status',)


@admin.register(Prescription)
class PrescriptionAdmin(admin.ModelAdmin):
    list_display = ('id', 'encounter', 'drug', 'quantity', 'status', 'stock_reserved', 'created_at')
    list_filter = ('status', 'stock_reserved')
    search_fields = ('encounter__encounter_number', 'drug__name')


@admin.register(LabOrder)
class LabOrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'encounter', 'test', 'priority', 'status', 'created_at')
    list_filter = ('status', 'priority')
    search_fields = ('encounter__encounter_number', 'test__code')


class BillingItemInline(admin.TabularInline):
    model = BillingItem
    extra = 0
    fields = ('item_type', 'description', 'quantity', 'unit_price', 'net_amount', 'status')
    readonly_fields = fields


@admin.register(BillingAccount)
class BillingAccountAdmin(admin.ModelAdmin):
    list_display = ('account_no', 'encounter', 'patient', 'status')
    search_fields = ('account_no', 'encounter__encounter_number')
    inlines = [BillingItemInline]


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'patient', 'net_amount', 'paid_amount', 'balance', 'status', 'issued_at')
    list_filter = ('status',)
    search_fields = ('invoice_number', 'patient__patient_number')
    inlines = [PaymentInline]

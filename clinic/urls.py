"""
URL mappings for the hospital backend.

API paths live under ``/api/`` and carry no trailing slash; printable
pages live under ``/billing/`` and ``/encounters/``.  Metrics and API
docs are mounted by :mod:`hms.urls`.
"""
from django.urls import path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, me_view
from .views import (
    billing, catalogue, dashboard, departments, health, ipd, opd, orders, pages, patients, reports, wards,
)

urlpatterns = [
    path('healthz', health.healthz),

    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view),
    path('api/auth/logout', jwt_logout_view),
    path('api/auth/me', me_view),

    # Dashboard
    path('api/dashboard', dashboard.dashboard),

    # Master data: departments
    path('api/departments', departments.departments),
    path('api/departments/<int:pk>', departments.department_detail),
    path('api/departments/<int:pk>/toggle-status', departments.department_toggle),

    # Master data: wards and beds
    path('api/wards', wards.wards),
    path('api/wards/occupancy', wards.occupancy),
    path('api/wards/export', reports.export_wards),
    path('api/wards/<int:pk>', wards.ward_detail),
    path('api/wards/<int:pk>/beds', wards.ward_beds),
    path('api/wards/<int:pk>/census', wards.ward_census),
    path('api/beds/<int:pk>/status', wards.bed_status),

    # Master data: test catalogue
    path('api/tests', catalogue.tests),
    path('api/tests/categories', catalogue.test_categories),
    path('api/tests/import', reports.import_tests),
    path('api/tests/<int:pk>', catalogue.test_detail),
    path('api/tests/<int:pk>/price', catalogue.test_price),
    path('api/tests/<int:pk>/turnaround', catalogue.test_turnaround),

    # Master data: drug formulary
    path('api/drugs', catalogue.drug_list),
    path('api/drugs/low-stock', catalogue.drug_low_stock),
    path('api/drugs/import', reports.import_drugs),
    path('api/drugs/export', reports.export_drugs),
    path('api/drugs/<int:pk>', catalogue.drug_detail),
    path('api/drugs/<int:pk>/adjust-stock', catalogue.drug_adjust_stock),
    path('api/drugs/<int:pk>/reorder-level', catalogue.drug_reorder_level),

    # Master data: billable services and audit
    path('api/services', catalogue.service_list),
    path('api/services/<int:pk>', catalogue.service_detail),
    path('api/master-data/audit', catalogue.master_data_audit),

    # Patients
    path('api/patients', patients.list_patients),
    path('api/patients/register', patients.register_patient),
    path('api/patients/<int:pk>', patients.patient_detail),

    # OPD
    path('api/opd/appointments', opd.book),
    path('api/opd/queue', opd.queue),
    path('api/opd/triage', opd.triage_pending),
    path('api/opd/appointments/<int:pk>', opd.appointment_detail),
    path('api/opd/appointments/<int:pk>/confirm', opd.confirm),
    path('api/opd/appointments/<int:pk>/check-in', opd.check_in),
    path('api/opd/appointments/<int:pk>/triage', opd.triage),
    path('api/opd/appointments/<int:pk>/triage/skip', opd.skip_triage),
    path('api/opd/appointments/<int:pk>/start', opd.start),
    path('api/opd/appointments/<int:pk>/soap', opd.soap),
    path('api/opd/appointments/<int:pk>/complete', opd.complete),
    path('api/opd/appointments/<int:pk>/reopen', opd.reopen),
    path('api/opd/appointments/<int:pk>/cancel', opd.cancel),
    path('api/opd/appointments/<int:pk>/no-show', opd.no_show),

    # IPD
    path('api/ipd/admissions', ipd.admissions),
    path('api/ipd/census', ipd.census),
    path('api/ipd/statistics', ipd.statistics),
    path('api/ipd/admissions/<int:pk>', ipd.admission_detail),
    path('api/ipd/admissions/<int:pk>/transfer', ipd.transfer),
    path('api/ipd/admissions/<int:pk>/discharge', ipd.discharge),

    # Clinical orders
    path('api/encounters/<int:pk>/prescriptions', orders.encounter_prescriptions),
    path('api/encounters/<int:pk>/lab-orders', orders.encounter_lab_orders),
    path('api/prescriptions/pending', orders.pending_prescriptions),
    path('api/prescriptions/<int:pk>/dispense', orders.dispense_prescription),
    path('api/prescriptions/<int:pk>/cancel', orders.cancel_prescription),
    path('api/lab-orders/worklist', orders.lab_worklist),
    path('api/lab-orders/<int:pk>/priority', orders.lab_priority),
    path('api/lab-orders/<int:pk>/submit', orders.lab_submit),
    path('api/lab-orders/<int:pk>/result', orders.lab_result),

    # Billing
    path('api/encounters/<int:pk>/billing', billing.encounter_billing),
    path('api/encounters/<int:pk>/billing/procedures', billing.procedure_charge),
    path('api/encounters/<int:pk>/billing/discount', billing.discount),
    path('api/encounters/<int:pk>/invoice', billing.generate_invoice),
    path('api/billing/items/<int:pk>/cancel', billing.cancel_item),
    path('api/invoices', billing.invoice_list),
    path('api/invoices/<int:pk>', billing.invoice_detail),
    path('api/payments', billing.payments),
    path('api/payments/<int:pk>', billing.payment_detail),

    # Reports
    path('api/reports/revenue', reports.revenue_report),
    path('api/reports/census', reports.census_report),

    # Pages
    path('billing/invoices/<int:pk>/print', pages.invoice_print, name='invoice-print'),
    path('billing/invoices/<int:pk>/pdf', pages.invoice_pdf, name='invoice-pdf'),
    path('billing/invoices/<int:pk>/payments', pages.invoice_payment, name='invoice-payment'),
    path('billing/encounters/<int:pk>/invoice', pages.generate_invoice_page, name='invoice-generate'),
    path('encounters/<int:pk>/lab-results', pages.lab_results, name='lab-results'),
]

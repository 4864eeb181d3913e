"""
Tabular exports (CSV, XLSX and PDF) built from pandas DataFrames.

Each ``*_frame`` function returns the rows of one report; views hand
the frame to :func:`export_dataframe` with the requested format.
"""
from __future__ import annotations

import io
from datetime import timedelta

import pandas as pd
from django.conf import settings
from django.db.models import Count, Q, Sum
from django.http import HttpResponse
from django.utils import timezone

from clinic.models import Bed, BillingItem, DrugFormulary, Encounter, Ward
from clinic.services.wards import occupancy_rate

XLSX_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
FORMATS = ('csv', 'xlsx', 'pdf')


def _attachment(content, content_type: str, filename: str) -> HttpResponse:
    resp = HttpResponse(content, content_type=content_type)
    resp['Content-Disposition'] = f'attachment; filename="{filename}"'
    return resp


def render_pdf_table(df: pd.DataFrame, title: str) -> bytes:
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import landscape, letter
    from reportlab.lib.styles import getSampleStyleSheet
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Table, TableStyle

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(letter),
                            leftMargin=18, rightMargin=18, topMargin=18, bottomMargin=18)
    styles = getSampleStyleSheet()
    stamp = timezone.localtime().strftime('%Y-%m-%d %H:%M')
    elements = [Paragraph(f'{title} ({stamp})', styles['Title'])]
    data = [list(df.columns)] + df.astype(str).values.tolist()
    table = Table(data, repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
        ('GRID', (0, 0), (-1, -1), 0.25, colors.grey),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
    ]))
    elements.append(table)
    doc.build(elements)
    return buffer.getvalue()


def export_dataframe(df: pd.DataFrame, filename_base: str, export_format: str = 'csv') -> HttpResponse:
    export_format = (export_format or 'csv').lower()
    if export_format == 'csv':
        return _attachment(df.to_csv(index=False), 'text/csv', f'{filename_base}.csv')
    if export_format == 'xlsx':
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name='Report')
        return _attachment(buffer.getvalue(), XLSX_TYPE, f'{filename_base}.xlsx')
    if export_format == 'pdf':
        title = filename_base.replace('_', ' ').title()
        return _attachment(render_pdf_table(df, title), 'application/pdf', f'{filename_base}.pdf')
    raise ValueError(f'unsupported export format {export_format!r}')


def wards_frame(*, status=None, ward_type=None, department_id=None) -> pd.DataFrame:
    qs = Ward.objects.select_related('department').annotate(
        total=Count('beds', distinct=True),
        occupied=Count('beds', filter=Q(beds__status=Bed.STATUS_OCCUPIED), distinct=True),
        available=Count('beds', filter=Q(beds__status=Bed.STATUS_AVAILABLE), distinct=True),
    )
    if status:
        qs = qs.filter(status=status)
    if ward_type:
        qs = qs.filter(ward_type=ward_type)
    if department_id:
        qs = qs.filter(department_id=department_id)
    rows = [{
        'ID': w.id,
        'Code': w.ward_code,
        'Name': w.name,
        'Type': w.get_ward_type_display(),
        'Department': w.department.name,
        'Department Code': w.department.code,
        'Capacity': w.capacity,
        'Total Beds': w.total,
        'Occupied Beds': w.occupied,
        'Available Beds': w.available,
        'Occupancy Rate (%)': occupancy_rate(w.occupied, w.total),
        'Status': w.status,
    } for w in qs.order_by('department_id', 'name')]
    return pd.DataFrame(rows, columns=[
        'ID', 'Code', 'Name', 'Type', 'Department', 'Department Code', 'Capacity', 'Total Beds',
        'Occupied Beds', 'Available Beds', 'Occupancy Rate (%)', 'Status',
    ])


def drugs_frame(*, status=None, stock_status=None) -> pd.DataFrame:
    qs = DrugFormulary.objects.all()
    if status:
        qs = qs.filter(status=status)
    currency = settings.HMS_CURRENCY
    rows = []
    for d in qs.order_by('name', 'strength'):
        if stock_status and d.stock_status != stock_status:
            continue
        rows.append({
            'ID': d.id,
            'Name': d.name,
            'Generic Name': d.generic_name,
            'ATC Code': d.atc_code,
            'Strength': d.strength,
            'Form': d.get_form_display(),
            'Therapeutic Class': d.therapeutic_class,
            f'Unit Price ({currency})': d.unit_price,
            'Stock Quantity': d.stock_quantity,
            'Reorder Level': d.reorder_level,
            'Stock Status': d.stock_status.replace('_', ' ').title(),
            'Status': d.status,
        })
    return pd.DataFrame(rows)


def revenue_frame(start=None, end=None) -> pd.DataFrame:
    """Billed amounts by item type over a window (default last 30 days)."""
    end = end or timezone.now()
    start = start or end - timedelta(days=30)
    qs = (
        BillingItem.objects.exclude(status=BillingItem.STATUS_CANCELLED)
        .filter(posted_at__range=(start, end))
        .values('item_type')
        .annotate(items=Count('id'), amount=Sum('net_amount'))
        .order_by('item_type')
    )
    currency = settings.HMS_CURRENCY
    rows = [{
        'Item Type': r['item_type'].replace('_', ' ').title(),
        'Items': r['items'],
        f'Amount ({currency})': r['amount'],
    } for r in qs]
    return pd.DataFrame(rows, columns=['Item Type', 'Items', f'Amount ({currency})'])


def census_frame() -> pd.DataFrame:
    qs = (
        Encounter.objects.filter(type=Encounter.TYPE_IPD, status=Encounter.STATUS_ACTIVE)
        .select_related('patient')
        .prefetch_related('bed_assignments__bed__ward')
        .order_by('admission_datetime')
    )
    rows = []
    now = timezone.now()
    for e in qs:
        current = next((a for a in e.bed_assignments.all() if a.released_at is None), None)
        rows.append({
            'Encounter': e.encounter_number,
            'Patient': e.patient.full_name,
            'Patient Number': e.patient.patient_number,
            'Ward': current.bed.ward.name if current else '',
            'Bed': current.bed.bed_number if current else '',
            'Admitted': timezone.localtime(e.admission_datetime).strftime('%Y-%m-%d %H:%M'),
            'Days': current.days(now) if current else '',
        })
    return pd.DataFrame(rows, columns=['Encounter', 'Patient', 'Patient Number', 'Ward', 'Bed', 'Admitted', 'Days'])

"""
Spreadsheet import for the drug formulary and the test catalogue.

Uploads are read with pandas (CSV, or XLSX through openpyxl).  The
first row holds the column headings; data rows are validated one by
one.  A row that breaks a rule is reported as ``"Row N: msg, msg"``
with N counted as in the spreadsheet (headings are row 1), a row that
matches an existing record is skipped, and everything else is created.
"""
from __future__ import annotations

import logging
import os
import re
from decimal import Decimal, InvalidOperation

import pandas as pd
from django.conf import settings
from django.db import transaction

from clinic.exceptions import MasterDataValidationError
from clinic.models import Department, DrugFormulary, TestCatalog
from clinic.services import master_data
from clinic.services.audit import record_master_change
from clinic.services.drugs import ATC_CODE_RE

logger = logging.getLogger(__name__)

DRUG_FORMS = [c for c, _ in DrugFormulary.FORM_CHOICES]
# money columns are DecimalField(max_digits=12, decimal_places=2)
MAX_AMOUNT = Decimal(10) ** 10
MAX_INT = 2147483647


def read_table(upload) -> pd.DataFrame:
    name = getattr(upload, 'name', '') or ''
    ext = os.path.splitext(name)[1].lower()
    if ext not in settings.IMPORT_ALLOWED_EXTENSIONS:
        raise MasterDataValidationError(
            f"Unsupported file type '{ext or name}'.",
            details={'file': [f"Allowed: {', '.join(settings.IMPORT_ALLOWED_EXTENSIONS)}"]},
        )
    if getattr(upload, 'size', 0) > settings.UPLOAD_MAX_MB * 1024 * 1024:
        raise MasterDataValidationError(
            f'File is larger than {settings.UPLOAD_MAX_MB} MB.',
            details={'file': ['File too large']},
        )
    if ext == '.csv':
        df = pd.read_csv(upload, dtype=str, keep_default_na=False)
    else:
        df = pd.read_excel(upload, dtype=str, engine='openpyxl').fillna('')
    df.columns = [re.sub(r'\s+', '_', str(c).strip().lower()) for c in df.columns]
    return df


def _text(row: dict, key: str) -> str:
    return str(row.get(key, '') or '').strip()


def _int(row: dict, key: str, errors: list, message: str, minimum: int = 0):
    raw = _text(row, key)
    if not raw:
        errors.append(message)
        return None
    try:
        value = int(float(raw))
    except (ValueError, OverflowError):
        errors.append(f'{key} must be a whole number')
        return None
    if value < minimum:
        errors.append(message)
    elif value > MAX_INT:
        errors.append(f'{key} may not exceed {MAX_INT}')
    return value


def _decimal(row: dict, key: str, errors: list, message: str):
    raw = _text(row, key)
    try:
        value = Decimal(raw)
    except (InvalidOperation, ValueError):
        errors.append(message)
        return None
    if not value.is_finite() or value < 0:
        errors.append(message)
        return None
    if value >= MAX_AMOUNT:
        errors.append(f"{key} may not exceed {MAX_AMOUNT - Decimal('0.01')}")
        return None
    return value.quantize(Decimal('0.01'))


def validate_drug_row(row: dict) -> tuple[dict, list[str]]:
    errors: list[str] = []
    name = _text(row, 'name')
    generic = _text(row, 'generic_name')
    strength = _text(row, 'strength')
    form = _text(row, 'form').lower()
    atc = _text(row, 'atc_code').upper()
    status = _text(row, 'status').lower() or 'active'
    if not name:
        errors.append('Drug name is required')
    elif len(name) > 255:
        errors.append('Drug name may not exceed 255 characters')
    if not generic:
        errors.append('Generic name is required')
    if not strength:
        errors.append('Drug strength is required')
    if not form:
        errors.append('Drug form is required')
    elif form not in DRUG_FORMS:
        errors.append(f"Drug form must be one of: {', '.join(DRUG_FORMS)}")
    if atc and not ATC_CODE_RE.match(atc):
        errors.append('ATC code must follow the format: A00AA00')
    stock = _int(row, 'stock_quantity', errors, 'Stock quantity must be greater than or equal to 0')
    reorder = _int(row, 'reorder_level', errors, 'Reorder level must be greater than or equal to 0')
    price = _decimal(row, 'unit_price', errors, 'Unit price must be greater than or equal to 0')
    if status not in ('active', 'discontinued'):
        errors.append('Status must be either active or discontinued')
    data = {
        'name': name, 'generic_name': generic, 'atc_code': atc, 'strength': strength, 'form': form,
        'stock_quantity': stock, 'reorder_level': reorder, 'unit_price': price,
        'manufacturer': _text(row, 'manufacturer'), 'therapeutic_class': _text(row, 'therapeutic_class'),
        'status': status,
    }
    return data, errors


def validate_test_row(row: dict) -> tuple[dict, list[str]]:
    errors: list[str] = []
    name = _text(row, 'name')
    code = _text(row, 'code').upper()
    status = _text(row, 'status').lower() or 'active'
    if not name:
        errors.append('Test name is required')
    if not code:
        errors.append('Test code is required')
    elif len(code) > 20:
        errors.append('Test code may not exceed 20 characters')
    price = _decimal(row, 'price', errors, 'Test price must be greater than or equal to 0')
    tat = _int(row, 'turnaround_time', errors, 'Turnaround time must be at least 1 hour', minimum=1)
    if status not in ('active', 'inactive'):
        errors.append('Status must be either active or inactive')
    department = None
    dept_code = _text(row, 'department_code').upper()
    if dept_code:
        department = Department.objects.filter(code=dept_code).first()
        if department is None:
            errors.append(f"Department '{dept_code}' does not exist")
    data = {
        'name': name, 'code': code, 'category': _text(row, 'category') or 'General', 'price': price,
        'turnaround_time': tat, 'unit': _text(row, 'unit'), 'normal_range': _text(row, 'normal_range'),
        'sample_type': _text(row, 'sample_type'), 'department': department, 'status': status,
    }
    return data, errors


def _run(df: pd.DataFrame, validate, exists, create) -> dict:
    imported = skipped = 0
    errors: list[str] = []
    for index, row in enumerate(df.to_dict(orient='records')):
        data, problems = validate(row)
        if problems:
            errors.append(f"Row {index + 2}: {', '.join(problems)}")
            continue
        if exists(data):
            skipped += 1
            continue
        create(data)
        imported += 1
    return {'imported': imported, 'skipped': skipped, 'errors': errors}


@transaction.atomic
def import_drugs(upload, *, user=None, ip=None) -> dict:
    result = _run(
        read_table(upload),
        validate_drug_row,
        lambda d: DrugFormulary.objects.filter(name=d['name'], strength=d['strength']).exists(),
        lambda d: DrugFormulary.objects.create(**d),
    )
    record_master_change(entity_type='drugformulary', action='bulk_imported',
                         new={**result, 'errors': len(result['errors'])}, user=user, ip=ip)
    master_data.invalidate('drug')
    logger.info('Drug import: %s imported, %s skipped, %s failed',
                result['imported'], result['skipped'], len(result['errors']))
    return result


@transaction.atomic
def import_tests(upload, *, user=None, ip=None) -> dict:
    result = _run(
        read_table(upload),
        validate_test_row,
        lambda d: TestCatalog.objects.filter(code=d['code']).exists(),
        lambda d: TestCatalog.objects.create(**d),
    )
    record_master_change(entity_type='testcatalog', action='bulk_imported',
                         new={**result, 'errors': len(result['errors'])}, user=user, ip=ip)
    master_data.invalidate('test_catalog')
    logger.info('Test catalogue import: %s imported, %s skipped, %s failed',
                result['imported'], result['skipped'], len(result['errors']))
    return result

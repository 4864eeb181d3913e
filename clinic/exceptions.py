"""
Domain exceptions and the unified error envelope.

Every error leaving the API has the shape
``{"ok": false, "error": {"code", "message", "details", "suggestions"}}``.
``api_exception_handler`` is plugged into DRF and ``error_response``
is shared with :class:`clinic.middleware.DomainErrorMiddleware` so that
plain Django views answer with the same envelope.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for business rule violations."""
    status_code = 400
    code = 'DOMAIN_ERROR'
    default_suggestions: tuple[str, ...] = ()

    def __init__(self, message: str, *, error_type: str = '', details: Optional[dict] = None,
                 suggestions: Optional[list[str]] = None):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        self.suggestions = list(suggestions if suggestions is not None else self.default_suggestions)

    def to_dict(self) -> dict[str, Any]:
        details = dict(self.details)
        if self.error_type:
            details.setdefault('type', self.error_type)
        return {
            'code': self.code,
            'message': self.message,
            'details': details,
            'suggestions': self.suggestions,
        }


class DepartmentInUse(DomainError):
    status_code = 409
    code = 'DEPARTMENT_IN_USE'

    @classmethod
    def for_department(cls, department, *, wards: int, test_catalogs: int) -> 'DepartmentInUse':
        refs = []
        if wards:
            refs.append(f"{wards} ward(s)")
        if test_catalogs:
            refs.append(f"{test_catalogs} test catalog(s)")
        return cls(
            f"Department '{department.name}' is referenced by {' and '.join(refs)}.",
            error_type='department_in_use',
            details={'department_id': department.id, 'wards': wards, 'test_catalogs': test_catalogs},
            suggestions=[
                'Reassign or remove the referencing wards and tests first',
                'Deactivate the department instead of deleting it',
            ],
        )


class BedOccupancyConflict(DomainError):
    status_code = 409
    code = 'BED_OCCUPANCY_CONFLICT'

    @classmethod
    def invalid_transition(cls, bed, new_status: str) -> 'BedOccupancyConflict':
        return cls(
            f"Bed {bed.bed_number} cannot change from {bed.status} to {new_status}.",
            error_type='invalid_transition',
            details={'bed_id': bed.id, 'current_status': bed.status, 'requested_status': new_status},
            suggestions=['Discharge or transfer the patient before servicing the bed',
                         'Mark the bed available before assigning it'],
        )

    @classmethod
    def not_available(cls, bed) -> 'BedOccupancyConflict':
        return cls(
            f"Bed {bed.bed_number} is not available (status: {bed.status}).",
            error_type='bed_not_available',
            details={'bed_id': bed.id, 'current_status': bed.status},
            suggestions=['Choose another available bed in the ward'],
        )


class InvalidTestPrice(DomainError):
    status_code = 422
    code = 'INVALID_TEST_PRICE'

    @classmethod
    def significant_change(cls, test, old: Decimal, new: Decimal, pct: float) -> 'InvalidTestPrice':
        return cls(
            f"Price change for {test.name} is {pct:.1f}% ({old} -> {new}).",
            error_type='significant_change',
            details={'test_id': test.id, 'old_price': str(old), 'new_price': str(new),
                     'change_percent': round(pct, 2)},
            suggestions=['Confirm the new price and resubmit with force=true'],
        )

    @classmethod
    def pending_orders(cls, test, count: int) -> 'InvalidTestPrice':
        return cls(
            f"{test.name} has {count} pending lab order(s).",
            error_type='pending_orders',
            details={'test_id': test.id, 'pending_orders': count},
            suggestions=['Complete or cancel the pending orders before changing the price'],
        )

    @classmethod
    def invalid_range(cls, price, maximum) -> 'InvalidTestPrice':
        return cls(
            f"Price {price} must be between 0 and {maximum}.",
            error_type='invalid_range',
            details={'price': str(price), 'min': '0', 'max': str(maximum)},
            suggestions=['Enter a price inside the allowed range'],
        )

    @classmethod
    def precision_error(cls, price) -> 'InvalidTestPrice':
        return cls(
            f"Price {price} has more than 2 decimal places.",
            error_type='precision_error',
            details={'price': str(price)},
            suggestions=['Round the price to 2 decimal places'],
        )


class DrugStockError(DomainError):
    status_code = 422
    code = 'DRUG_STOCK_ERROR'

    def __init__(self, message: str, *, stock_status: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.stock_status = stock_status or {}
        self.details.setdefault('stock_status', self.stock_status)

    @staticmethod
    def _status(drug) -> dict:
        return {
            'drug_id': drug.id,
            'drug_name': drug.name,
            'current_stock': drug.stock_quantity,
            'reorder_level': drug.reorder_level,
            'status': drug.stock_status,
        }

    @classmethod
    def insufficient_stock(cls, drug, requested: int) -> 'DrugStockError':
        return cls(
            f"Insufficient stock for {drug.name}: requested {requested}, available {drug.stock_quantity}.",
            error_type='insufficient_stock',
            stock_status=cls._status(drug),
            details={'requested': requested},
            suggestions=['Reduce the quantity', 'Prescribe an alternative drug', 'Restock the drug'],
        )

    @classmethod
    def below_reorder_level(cls, drug) -> 'DrugStockError':
        return cls(
            f"Stock for {drug.name} would fall below its reorder level ({drug.reorder_level}).",
            error_type='below_reorder_level',
            stock_status=cls._status(drug),
            suggestions=['Place a restock order'],
        )

    @classmethod
    def negative_stock(cls, drug, adjustment: int) -> 'DrugStockError':
        return cls(
            f"Adjusting {drug.name} by {adjustment} would make stock negative.",
            error_type='negative_stock',
            stock_status=cls._status(drug),
            details={'adjustment': adjustment},
            suggestions=['Check the current stock count before adjusting'],
        )

    @classmethod
    def invalid_reorder_level(cls, drug, level) -> 'DrugStockError':
        return cls(
            f"Reorder level {level} is invalid for {drug.name}.",
            error_type='invalid_reorder_level',
            stock_status=cls._status(drug),
            details={'reorder_level': level},
            suggestions=['Use a whole number of zero or more'],
        )

    @classmethod
    def stock_adjustment_error(cls, drug, reason: str) -> 'DrugStockError':
        return cls(
            f"Stock adjustment failed for {drug.name}: {reason}",
            error_type='stock_adjustment_error',
            stock_status=cls._status(drug),
            suggestions=['Retry the adjustment', 'Contact the pharmacy supervisor'],
        )


class MasterDataValidationError(DomainError):
    status_code = 422
    code = 'MASTER_DATA_VALIDATION_ERROR'


class WorkflowError(DomainError):
    """Illegal state change in a clinical or billing workflow."""
    status_code = 409
    code = 'WORKFLOW_ERROR'


class AllergyConflict(DomainError):
    status_code = 400
    code = 'ALLERGY_CONFLICT'


class DuplicatePatient(DomainError):
    status_code = 409
    code = 'DUPLICATE_PATIENT'


NOT_FOUND_SUGGESTIONS = ['Check that the identifier is correct', 'The record may have been deleted']
VALIDATION_SUGGESTIONS = ['Review the highlighted fields and try again']
INTERNAL_SUGGESTIONS = ['Try again later', 'Contact support if the problem persists']


def envelope(code: str, message: Any, *, details: Any = None, suggestions: Optional[list] = None) -> dict:
    return {'ok': False, 'error': {
        'code': code,
        'message': message,
        'details': details if details is not None else {},
        'suggestions': suggestions or [],
    }}


def error_response(exc: Exception) -> Optional[tuple[int, dict]]:
    """Map a non-DRF exception to ``(status, payload)``; ``None`` if unknown."""
    if isinstance(exc, DomainError):
        return exc.status_code, {'ok': False, 'error': exc.to_dict()}
    if isinstance(exc, (ObjectDoesNotExist, Http404)):
        return 404, envelope('RESOURCE_NOT_FOUND', str(exc) or 'Resource not found.',
                             suggestions=NOT_FOUND_SUGGESTIONS)
    if isinstance(exc, DjangoValidationError):
        details = exc.message_dict if hasattr(exc, 'error_dict') else {'non_field_errors': exc.messages}
        return 400, envelope('VALIDATION_ERROR', 'The given data was invalid.', details=details,
                             suggestions=VALIDATION_SUGGESTIONS)
    return None


def internal_error_payload(exc: Exception) -> dict:
    message = 'An unexpected error occurred.' if settings.ENV == 'prod' else str(exc)
    return envelope('INTERNAL_ERROR', message, suggestions=INTERNAL_SUGGESTIONS)


def api_exception_handler(exc, context):
    mapped = error_response(exc)
    if mapped is not None:
        status, payload = mapped
        return Response(payload, status=status)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('Unhandled API error in %s', context.get('view'), exc_info=exc)
        return Response(internal_error_payload(exc), status=500)

    if isinstance(exc, drf_exceptions.ValidationError):
        return Response(envelope('VALIDATION_ERROR', 'The given data was invalid.', details=resp.data,
                                 suggestions=VALIDATION_SUGGESTIONS), status=400)
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    return Response(envelope('api_error', detail), status=resp.status_code, headers=_auth_headers(resp))


def _auth_headers(resp) -> dict:
    # keep WWW-Authenticate / Retry-After produced by DRF
    return {k: v for k, v in resp.items() if k in ('WWW-Authenticate', 'Retry-After')}

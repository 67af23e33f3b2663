from __future__ import annotations

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import InterfaceError, OperationalError
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class FeesError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Request could not be processed.'
    default_code = 'fees_error'

    def __init__(self, message=None, *, code=None, status_code=None, **extra):
        self.message = message or self.default_message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(self.message)

    def as_payload(self):
        payload = {'message': self.message, 'code': self.code}
        payload.update(self.extra)
        return payload


class ValidationError(FeesError):
    default_message = 'Invalid input.'
    default_code = 'invalid'


class NotFoundError(FeesError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found.'
    default_code = 'not_found'


class ConflictError(FeesError):
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Conflict.'
    default_code = 'conflict'
    retryable = True

    def as_payload(self):
        payload = super().as_payload()
        payload['retryable'] = self.retryable
        return payload


class DuplicateInvoiceError(ConflictError):
    default_message = 'Invoice already exists for that student/year/term.'
    default_code = 'duplicate_invoice'
    retryable = False


class ReceiptCollisionError(ConflictError):
    default_message = 'Duplicate payment key. Retry.'
    default_code = 'duplicate_key'


class AlreadyReversedError(ConflictError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Payment already reversed.'
    default_code = 'already_reversed'
    retryable = False


class PolicyError(FeesError):
    default_message = 'Operation not permitted.'
    default_code = 'policy'


class OverpaymentError(PolicyError):
    default_code = 'overpayment'


class InvoiceVoidError(PolicyError):
    default_message = 'Cannot pay a VOID invoice.'
    default_code = 'invoice_void'


class ActivePaymentsError(PolicyError):
    default_message = 'Cannot void invoice with active payments. Reverse payments first.'
    default_code = 'active_payments'


class EntitlementError(PolicyError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'entitlement_missing'


class TenantRequiredError(PolicyError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'Tenant required. Select a school (superadmin) or use a school user.'
    default_code = 'tenant_required'


class TransientError(FeesError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'Storage temporarily unavailable. Retry the request.'
    default_code = 'transient'


def _flatten_errors(detail, prefix=''):
    if isinstance(detail, dict):
        messages = []
        for field, value in detail.items():
            label = field if field != 'non_field_errors' else ''
            messages.extend(_flatten_errors(value, prefix=label))
        return messages
    if isinstance(detail, (list, tuple)):
        messages = []
        for value in detail:
            messages.extend(_flatten_errors(value, prefix=prefix))
        return messages
    text = str(detail)
    return [f'{prefix}: {text}' if prefix else text]


def _django_validation_message(exc):
    if hasattr(exc, 'message_dict'):
        return '; '.join(_flatten_errors(exc.message_dict))
    return '; '.join(exc.messages)


def _log_context(context):
    request = context.get('request')
    view = context.get('view')
    tenant = getattr(view, 'tenant', None)
    return {
        'school': getattr(tenant, 'school_id', None),
        'actor': getattr(getattr(request, 'user', None), 'pk', None),
        'method': getattr(request, 'method', ''),
        'path': getattr(request, 'path', ''),
    }


def api_exception_handler(exc, context):
    """Renders every failure as {"message", "code", ...} and logs it with tenant context."""
    if isinstance(exc, DjangoValidationError):
        exc = ValidationError(_django_validation_message(exc))
    elif isinstance(exc, (OperationalError, InterfaceError)):
        logger.exception('Storage failure %s', _log_context(context))
        exc = TransientError()

    if isinstance(exc, FeesError):
        info = _log_context(context)
        if exc.status_code >= 500:
            logger.error('%s %s [%s] %s', exc.code, exc.message, exc.status_code, info)
        else:
            logger.warning('%s %s [%s] %s', exc.code, exc.message, exc.status_code, info)
        return Response(exc.as_payload(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        logger.exception('Unhandled API error %s', _log_context(context))
        return None

    if isinstance(exc, drf_exceptions.ValidationError):
        response.data = {
            'message': '; '.join(_flatten_errors(exc.detail)) or 'Invalid input.',
            'code': 'invalid',
            'errors': exc.detail,
        }
    elif isinstance(exc, drf_exceptions.APIException):
        response.data = {
            'message': str(exc.detail),
            'code': exc.get_codes() if isinstance(exc.get_codes(), str) else exc.default_code,
        }
    logger.warning('API error [%s] %s', response.status_code, _log_context(context))
    return response

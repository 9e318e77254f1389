"""
Domain error base class and the DRF exception handler that maps domain
errors to caller-facing HTTP responses.

Response envelope for every handled error:

    {
        "success": false,
        "error": {
            "code": "slot_taken",
            "message": "This slot has just been booked by someone else",
            "outcome": "choose_another_slot",
            "details": {...}
        }
    }

Outcomes are the small fixed vocabulary clients branch on:
- invalid_request: fix the input and retry
- choose_another_slot: the requested slot cannot be had
- not_allowed_in_state: the appointment or payment is in the wrong state
- link_invalid: management token or resource not found
- forbidden: caller may not act on this resource
- retry_later: transient or internal failure
"""
import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.core.observability import metrics

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """
    Base class for every business-rule failure raised by services.

    Subclasses set a stable ``code``, the caller-facing ``outcome`` and the
    HTTP status the API layer should use.
    """
    code = 'domain_error'
    outcome = 'invalid_request'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Request could not be processed'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'outcome': self.outcome,
            'details': self.details,
        }


class ValidationFailed(DomainError):
    code = 'invalid_request'
    outcome = 'invalid_request'
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(DomainError):
    code = 'conflict'
    outcome = 'choose_another_slot'
    status_code = status.HTTP_409_CONFLICT


class StateError(DomainError):
    code = 'invalid_state'
    outcome = 'not_allowed_in_state'
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(DomainError):
    code = 'not_found'
    outcome = 'link_invalid'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found'


class NotPermitted(DomainError):
    code = 'forbidden'
    outcome = 'forbidden'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You do not have permission to perform this action'


class ExternalServiceError(DomainError):
    code = 'external_service_error'
    outcome = 'retry_later'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'An external service is temporarily unavailable'


def _envelope(code, message, outcome, details=None):
    return {
        'success': False,
        'error': {
            'code': code,
            'message': message,
            'outcome': outcome,
            'details': details or {},
        },
    }


def domain_exception_handler(exc, context):
    """
    DRF ``EXCEPTION_HANDLER``.

    Domain errors become the error envelope with their own status. DRF
    errors (validation, auth, throttling) keep their status and are wrapped
    in the same envelope. Anything else is logged and reported as a 500
    with outcome ``retry_later``; stack traces never reach the client.
    """
    view = context.get('view')
    location = view.__class__.__name__ if view is not None else 'unknown'

    if isinstance(exc, DomainError):
        if exc.status_code >= 500:
            logger.error(
                f'[API] {exc.code}: {exc.message}',
                extra={'event': 'domain_error', 'code': exc.code, 'location': location},
            )
        else:
            logger.info(
                f'[API] {exc.code}',
                extra={'event': 'domain_error', 'code': exc.code, 'location': location},
            )
        return Response(
            _envelope(exc.code, exc.message, exc.outcome, exc.details),
            status=exc.status_code,
        )

    response = exception_handler(exc, context)
    if response is not None:
        if isinstance(exc, (Http404, DjangoPermissionDenied)):
            code = 'not_found' if isinstance(exc, Http404) else 'forbidden'
        elif isinstance(exc, APIException):
            code = exc.default_code
        else:
            code = 'error'

        if response.status_code == status.HTTP_404_NOT_FOUND:
            outcome = 'link_invalid'
        elif response.status_code == status.HTTP_403_FORBIDDEN:
            outcome = 'forbidden'
        elif response.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
            outcome = 'retry_later'
        else:
            outcome = 'invalid_request'

        data = response.data
        if isinstance(data, dict) and set(data.keys()) == {'detail'}:
            message, details = str(data['detail']), {}
        else:
            message, details = 'Invalid request', data
        response.data = _envelope(code, message, outcome, details)
        return response

    metrics.exceptions_total.labels(
        exception_type=exc.__class__.__name__,
        location=location,
    ).inc()
    logger.error(
        f'[API] Unhandled {exc.__class__.__name__} in {location}',
        exc_info=exc,
        extra={'event': 'unhandled_exception', 'location': location},
    )
    return Response(
        _envelope('internal_error', 'An unexpected error occurred', 'retry_later'),
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )

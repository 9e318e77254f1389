"""
Payment errors.
"""
from apps.core.exceptions import ExternalServiceError, NotFoundError, StateError


class PaymentNotFound(NotFoundError):
    code = 'payment_not_found'
    default_message = 'Payment session not found'


class PaymentNotCompleted(StateError):
    """Processor reports the session as not paid (yet)."""
    code = 'payment_not_completed'
    default_message = 'Payment has not been completed'


class PaymentProcessorError(ExternalServiceError):
    code = 'payment_processor_error'
    default_message = 'Payment processor is temporarily unavailable'

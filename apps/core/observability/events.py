"""
Domain events logging helpers.

Provides structured event logging for booking and payment operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'booking_created', 'payment_reconciled')
        entity_type: Type of entity (e.g., 'Appointment', 'Payment')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'booking_created',
            entity_type='Appointment',
            entity_id=str(appointment.id),
            entity_ids={'doctor_id': str(appointment.doctor_id)},
            result='success',
            flow='direct',
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    # Sanitize extra fields
    event_data.update(sanitize_dict(extra_fields))

    # Log at appropriate level based on result
    if result in ['failure', 'error', 'critical']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'conflict', 'refunded']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_booking_created(appointment, flow, **extra):
    """Log a newly created appointment."""
    log_domain_event(
        'booking_created',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        entity_ids={'doctor_id': str(appointment.doctor_id)},
        flow=flow,
        day=appointment.day.isoformat(),
        slot=appointment.slot,
        is_video_appointment=appointment.is_video_appointment,
        **extra
    )


def log_appointment_transition(appointment, from_status, to_status, actor, **extra):
    """Log appointment status transition event."""
    log_domain_event(
        'appointment_transition',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        entity_ids={'appointment_id': str(appointment.id)},
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        **extra
    )


def log_payment_reconciled(payment, outcome, result='success', **extra):
    """Log the outcome of reconciling a captured payment."""
    entity_ids = {'payment_id': str(payment.id)}
    if payment.appointment_id:
        entity_ids['appointment_id'] = str(payment.appointment_id)
    log_domain_event(
        'payment_reconciled',
        entity_type='Payment',
        entity_id=str(payment.id),
        entity_ids=entity_ids,
        result=result,
        outcome=outcome,
        payment_status=payment.status,
        **extra
    )


def log_refund_issued(payment, reason, refund_id=None, result='refunded'):
    """Log a refund issued for a payment that could not become an appointment."""
    log_domain_event(
        'payment_refund_issued',
        entity_type='Payment',
        entity_id=str(payment.id),
        entity_ids={'payment_id': str(payment.id)},
        result=result,
        reason=reason,
        refund_id=refund_id,
    )


def log_external_call_failed(service, operation, error, **entity_ids):
    """Log a failed call to a best-effort external collaborator."""
    log_domain_event(
        'external_call_failed',
        entity_ids={k: str(v) for k, v in entity_ids.items()},
        result='warning',
        service=service,
        operation=operation,
        error=str(error),
    )

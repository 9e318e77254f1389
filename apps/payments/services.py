"""
Pay-first booking: checkout sessions and payment reconciliation.

No appointment exists while a patient is paying. The booking facts live
on the Payment row (and in the Checkout Session metadata) until the
processor confirms the capture, at which point the appointment is
materialized, or the money is refunded because the slot is gone.

Money is never kept without an appointment: every path that captured a
payment either links an appointment or attempts a refund, and a failed
refund leaves the Payment ``failed`` with an error code an operator can
search for.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from functools import partial

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from apps.authz.models import User
from apps.authz.principal import AdminPrincipal, DoctorPrincipal, PatientPrincipal
from apps.core.exceptions import DomainError, NotPermitted
from apps.core.observability import metrics
from apps.core.observability.events import (
    log_booking_created,
    log_domain_event,
    log_payment_reconciled,
    log_refund_issued,
)
from apps.integrations import notifications
from apps.integrations.best_effort import run_best_effort
from apps.integrations.notifications import NotificationKind
from apps.payments.exceptions import PaymentNotCompleted, PaymentNotFound, PaymentProcessorError
from apps.payments.models import Payment, PaymentErrorCodes, PaymentStatusChoices
from apps.payments.processor import get_gateway
from apps.scheduling import lifecycle
from apps.scheduling.exceptions import BookingValidationError, SlotTaken
from apps.scheduling.modality import compute_video_flag
from apps.scheduling.models import ActorChoices, Appointment, AppointmentStatusChoices, PlanChoices
from apps.scheduling.services import BookingService
from apps.scheduling.side_effects import schedule_after_booking
from apps.scheduling.timeconv import to_absolute_instant

logger = logging.getLogger(__name__)

# Failed payments whose refund can still be retried by a replayed webhook
# or a manual reconciliation
REFUND_RETRYABLE_CODES = [
    PaymentErrorCodes.REFUND_FAILED,
    PaymentErrorCodes.CREATION_AND_REFUND_FAILED,
]


# ============================================================================
# Pricing
# ============================================================================

def detect_country(user, accept_language=''):
    """Account country first, then a Bulgarian browser, then the default."""
    if user.country and user.country in settings.PAYMENT_PRICING:
        return user.country
    if accept_language and 'bg' in accept_language.lower():
        return 'Bulgaria'
    return settings.PAYMENT_DEFAULT_COUNTRY


def pricing_for(country):
    """
    Price for ``country`` in minor units.

    Returns:
        (country, amount_minor, currency); unknown countries get the default.
    """
    pricing = settings.PAYMENT_PRICING
    if country not in pricing:
        country = settings.PAYMENT_DEFAULT_COUNTRY
    entry = pricing[country]
    return country, entry['amount'], entry['currency']


# ============================================================================
# Opening a session
# ============================================================================

def open_session(
    principal,
    doctor_id,
    day,
    slot,
    reason='',
    notes='',
    country=None,
    accept_language='',
    success_url=None,
    cancel_url=None,
    now=None,
) -> dict:
    """
    Open a Stripe Checkout Session for a consultation slot.

    Only the light pre-check runs here: appointments that hold the slot
    block it, other patients' open sessions do not. Races are settled at
    reconciliation time.

    Raises:
        NotPermitted: caller is not a patient
        DoctorNotFound, PastDate, NotAvailable, SlotTaken, BookingValidationError
        PaymentProcessorError: Stripe unavailable
    """
    if not isinstance(principal, PatientPrincipal):
        raise NotPermitted('Only patients can pay for a booking')
    if country and country not in settings.PAYMENT_PRICING:
        raise BookingValidationError(
            f'Country must be one of: {", ".join(sorted(settings.PAYMENT_PRICING))}',
            field='country',
        )

    now = now or timezone.now()
    user = User.objects.get(pk=principal.user_id)
    doctor, day, slot, _ = BookingService.validate_request(
        doctor_id, day, slot, PlanChoices.CONSULTATION, reason, notes, now=now,
    )

    if not BookingService.check_slot_for_payment(doctor, day, slot):
        metrics.booking_attempts_total.labels(flow='paid', result='slot_taken').inc()
        metrics.slot_conflicts_total.labels(stage='payment_precheck').inc()
        raise SlotTaken('Time slot is no longer available')

    country, amount_minor, currency = pricing_for(country or detect_country(user, accept_language))
    amount = (Decimal(amount_minor) / 100).quantize(Decimal('0.01'))
    expires_at = now + timedelta(minutes=settings.PAYMENT_SESSION_EXPIRY_MINUTES)

    metadata = {
        'patient_id': str(user.id),
        'doctor_id': str(doctor.id),
        'doctor_name': doctor.display_name,
        'date': day.isoformat(),
        'slot': slot,
        'plan': PlanChoices.CONSULTATION.value,
        'country': country,
        'currency': currency,
        'amount': str(amount),
    }

    try:
        session = get_gateway().create_checkout_session(
            amount=amount_minor,
            currency=currency,
            doctor=doctor,
            day=day,
            slot=slot,
            metadata=metadata,
            expires_at=expires_at,
            success_url=success_url or f'{settings.FRONTEND_BASE_URL}/booking/success?session_id={{CHECKOUT_SESSION_ID}}',
            cancel_url=cancel_url or f'{settings.FRONTEND_BASE_URL}/booking/cancel',
            customer_email=user.email,
        )
    except PaymentProcessorError:
        metrics.payment_sessions_total.labels(country=country, result='processor_error').inc()
        raise

    payment = Payment.objects.create(
        patient=user,
        doctor=doctor,
        stripe_session_id=session['id'],
        amount=amount,
        currency=currency,
        country=country,
        appointment_day=day,
        appointment_slot=slot,
        plan=PlanChoices.CONSULTATION,
        reason=reason or '',
        notes=notes or '',
        expires_at=expires_at,
        metadata=dict(session.get('metadata') or metadata),
    )

    metrics.payment_sessions_total.labels(country=country, result='opened').inc()
    log_domain_event(
        'payment_session_opened',
        entity_type='Payment',
        entity_id=str(payment.id),
        entity_ids={'doctor_id': str(doctor.id)},
        country=country,
        currency=currency,
        day=day.isoformat(),
        slot=slot,
    )
    return {
        'session_id': payment.stripe_session_id,
        'session_url': session.get('url'),
        'amount': str(amount),
        'currency': currency,
        'country': country,
        'expires_at': expires_at.isoformat(),
    }


# ============================================================================
# Reconciliation
# ============================================================================

def _notify_refund(payment):
    template_data = {
        'doctor_name': payment.doctor.display_name,
        'date': payment.appointment_day.isoformat(),
        'slot': payment.appointment_slot,
        'patient_name': payment.patient.full_name,
    }
    transaction.on_commit(partial(
        run_best_effort,
        'notification', NotificationKind.REFUND_NOTICE,
        notifications.send, NotificationKind.REFUND_NOTICE, payment.patient.email, template_data,
        locale=payment.patient.locale,
        entity_ids={'payment_id': payment.id},
    ))


def _refund(payment, reason_code, message, failure_code, now, **refund_metadata):
    """
    Return the captured money. Never raises; the outcome is recorded on
    the payment (refunded, or failed with ``failure_code``).
    """
    try:
        refund = get_gateway().refund(
            payment.stripe_payment_intent_id,
            metadata={
                'reason': message,
                'original_session_id': payment.stripe_session_id,
                **{k: str(v) for k, v in refund_metadata.items()},
            },
        )
    except PaymentProcessorError as e:
        payment.status = PaymentStatusChoices.FAILED
        payment.error_code = failure_code
        payment.error_message = f'{message}; refund failed: {e}'
        payment.failed_at = now
        payment.metadata = {**payment.metadata, 'refund_reason': reason_code}
        payment.save()
        metrics.payment_refunds_total.labels(reason=reason_code, result='failed').inc()
        metrics.payment_reconciliation_total.labels(outcome='refund_failed').inc()
        log_refund_issued(payment, reason_code, result='critical')
        logger.critical(
            '[RECONCILE] Refund failed, operator follow-up required',
            extra={
                'event': 'refund_failed',
                'payment_id': str(payment.id),
                'error_code': failure_code,
            },
        )
        return payment

    payment.status = PaymentStatusChoices.REFUNDED
    payment.refund_id = refund['id']
    payment.error_code = reason_code
    payment.error_message = message
    payment.refunded_at = now
    payment.appointment = None
    payment.save()
    metrics.payment_refunds_total.labels(reason=reason_code, result='success').inc()
    metrics.payment_reconciliation_total.labels(outcome='refunded').inc()
    log_refund_issued(payment, reason_code, refund_id=payment.refund_id)
    _notify_refund(payment)
    return payment


def _is_expired(payment, now):
    return payment.expires_at is not None and payment.expires_at <= now


def _materialize(payment, now):
    """Create the appointment for a captured payment, or refund."""
    if not BookingService.check_slot_for_payment(payment.doctor, payment.appointment_day, payment.appointment_slot):
        metrics.slot_conflicts_total.labels(stage='reconcile_precheck').inc()
        metrics.booking_attempts_total.labels(flow='paid', result='slot_taken').inc()
        return _refund(
            payment,
            PaymentErrorCodes.SLOT_CONFLICT,
            'Slot conflict - automatic refund issued',
            PaymentErrorCodes.REFUND_FAILED,
            now,
        )

    patient = payment.patient
    try:
        start = to_absolute_instant(payment.appointment_day, payment.appointment_slot)
        with transaction.atomic():
            appointment = Appointment.objects.create(
                patient=patient,
                patient_email=patient.email,
                patient_name=patient.full_name,
                patient_phone=patient.phone,
                locale=patient.locale,
                doctor=payment.doctor,
                day=payment.appointment_day,
                slot=payment.appointment_slot,
                plan=payment.plan,
                reason=payment.reason,
                notes=payment.notes,
                status=AppointmentStatusChoices.UPCOMING,
                confirmed_at=now,
                is_video_appointment=compute_video_flag(payment.doctor, start),
            )
    except IntegrityError:
        metrics.slot_conflicts_total.labels(stage='reconcile_constraint').inc()
        metrics.booking_attempts_total.labels(flow='paid', result='slot_taken').inc()
        return _refund(
            payment,
            PaymentErrorCodes.DUPLICATE_KEY,
            'Appointment creation failed - duplicate key',
            PaymentErrorCodes.CREATION_AND_REFUND_FAILED,
            now,
        )
    except (DatabaseError, DomainError) as e:
        logger.error(
            f'[RECONCILE] Appointment creation failed: {e}',
            exc_info=True,
            extra={'event': 'appointment_creation_failed', 'payment_id': str(payment.id)},
        )
        metrics.booking_attempts_total.labels(flow='paid', result='error').inc()
        return _refund(
            payment,
            PaymentErrorCodes.APPOINTMENT_CREATION_FAILED,
            f'Appointment creation failed: {e}',
            PaymentErrorCodes.CREATION_AND_REFUND_FAILED,
            now,
        )

    payment.appointment = appointment
    payment.status = PaymentStatusChoices.COMPLETED
    payment.completed_at = now
    payment.error_code = ''
    payment.error_message = ''
    payment.save()

    metrics.booking_attempts_total.labels(flow='paid', result='success').inc()
    metrics.payment_reconciliation_total.labels(outcome='materialized').inc()
    log_booking_created(appointment, flow='paid', payment_id=str(payment.id))
    log_payment_reconciled(payment, 'materialized')
    schedule_after_booking(appointment)
    return payment


def on_payment_confirmed(session, now=None):
    """
    Handle ``checkout.session.completed``.

    Idempotent: a payment that already has an appointment, or was already
    refunded, is left alone. A payment that is no longer pending, or whose
    session window has closed, is refunded instead of materialized.

    Returns:
        The Payment, or None when no Payment matches the session.
    """
    now = now or timezone.now()
    session_id = session['id']

    with transaction.atomic():
        payment = (
            Payment.objects
            .select_related('doctor', 'patient')
            .select_for_update(of=('self',))
            .filter(stripe_session_id=session_id)
            .first()
        )
        if payment is None:
            logger.warning(
                '[RECONCILE] No payment for session',
                extra={'event': 'payment_not_found', 'session_id': session_id},
            )
            return None

        if payment.appointment_id:
            metrics.payment_reconciliation_total.labels(outcome='duplicate').inc()
            log_payment_reconciled(payment, 'duplicate', result='skipped')
            return payment
        if payment.status == PaymentStatusChoices.REFUNDED:
            metrics.payment_reconciliation_total.labels(outcome='duplicate').inc()
            log_payment_reconciled(payment, 'already_refunded', result='skipped')
            return payment

        payment.stripe_payment_intent_id = session.get('payment_intent') or payment.stripe_payment_intent_id
        payment.stripe_customer_id = session.get('customer') or payment.stripe_customer_id

        if payment.status == PaymentStatusChoices.FAILED and payment.error_code in REFUND_RETRYABLE_CODES:
            return _refund(
                payment,
                payment.metadata.get('refund_reason', payment.error_code),
                'Retrying refund',
                payment.error_code,
                now,
            )

        if payment.status != PaymentStatusChoices.PENDING or _is_expired(payment, now):
            metrics.payment_reconciliation_total.labels(outcome='rejected').inc()
            return _refund(
                payment,
                PaymentErrorCodes.PAYMENT_NOT_PENDING,
                f'Payment captured after it was {payment.status if payment.status != PaymentStatusChoices.PENDING else "expired"}',
                PaymentErrorCodes.REFUND_FAILED,
                now,
            )

        return _materialize(payment, now)


def on_session_expired(session, now=None):
    """Handle ``checkout.session.expired``: the slot was never held."""
    now = now or timezone.now()
    updated = Payment.objects.filter(
        stripe_session_id=session['id'],
        status=PaymentStatusChoices.PENDING,
        appointment__isnull=True,
    ).update(
        status=PaymentStatusChoices.CANCELLED,
        error_code=PaymentErrorCodes.SESSION_EXPIRED,
        error_message='Payment session expired',
        cancelled_at=now,
        updated_at=now,
    )
    return Payment.objects.filter(stripe_session_id=session['id']).first() if updated else None


def on_payment_intent_succeeded(intent, now=None):
    """
    Handle ``payment_intent.succeeded``.

    Acknowledged and logged only. The session handler links the
    appointment and completes the payment in one step, so this event never
    changes state.
    """
    payment = Payment.objects.filter(stripe_payment_intent_id=intent['id']).first()
    logger.info(
        '[STRIPE] payment_intent.succeeded acknowledged',
        extra={
            'event': 'payment_intent_succeeded',
            'payment_id': str(payment.id) if payment else None,
            'payment_status': payment.status if payment else None,
        },
    )
    return payment


def on_payment_failed(intent, now=None):
    """
    Handle ``payment_intent.payment_failed``.

    A linked appointment is cancelled by the system.
    """
    now = now or timezone.now()
    error = intent.get('last_payment_error') or {}
    with transaction.atomic():
        payment = (
            Payment.objects
            .select_for_update()
            .filter(stripe_payment_intent_id=intent['id'])
            .first()
        )
        if payment is None or payment.status == PaymentStatusChoices.REFUNDED:
            return payment

        payment.status = PaymentStatusChoices.FAILED
        payment.error_code = error.get('code') or 'payment_failed'
        payment.error_message = error.get('message') or 'Payment failed'
        payment.failed_at = now
        payment.save()

        appointment = payment.appointment
        if appointment is not None and appointment.is_active:
            lifecycle.cancel(appointment.pk, ActorChoices.SYSTEM, reason='Payment failed', now=now)
    return payment


EVENT_HANDLERS = {
    'checkout.session.completed': on_payment_confirmed,
    'checkout.session.expired': on_session_expired,
    'payment_intent.succeeded': on_payment_intent_succeeded,
    'payment_intent.payment_failed': on_payment_failed,
}


def dispatch_event(event):
    """
    Route a verified webhook event to its handler.

    Returns:
        True when the event type is handled, False when it is ignored.
    """
    event_type = event['type']
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        metrics.payment_webhook_events_total.labels(event_type=event_type, result='ignored').inc()
        return False
    try:
        handler(event['data']['object'])
    except Exception:
        metrics.payment_webhook_events_total.labels(event_type=event_type, result='error').inc()
        raise
    metrics.payment_webhook_events_total.labels(event_type=event_type, result='processed').inc()
    return True


# ============================================================================
# Caller-facing operations
# ============================================================================

def _get_payment_for(principal, session_id) -> Payment:
    payment = Payment.objects.select_related('doctor', 'patient').filter(stripe_session_id=session_id).first()
    if payment is None:
        raise PaymentNotFound()
    if isinstance(principal, AdminPrincipal):
        return payment
    if isinstance(principal, PatientPrincipal) and payment.patient_id == principal.user_id:
        return payment
    if isinstance(principal, DoctorPrincipal):
        raise NotPermitted()
    raise PaymentNotFound()


def reconcile_session(principal, session_id, now=None):
    """
    Manual fallback when the webhook did not arrive.

    Re-reads the session from Stripe and only proceeds when Stripe reports
    it as paid.
    """
    _get_payment_for(principal, session_id)
    session = get_gateway().retrieve_session(session_id)
    if session.get('payment_status') != 'paid':
        raise PaymentNotCompleted(payment_status=session.get('payment_status'))
    return on_payment_confirmed(session, now=now)


def get_session_status(principal, session_id) -> dict:
    payment = _get_payment_for(principal, session_id)
    return serialize_status(payment)


def serialize_status(payment) -> dict:
    return {
        'session_id': payment.stripe_session_id,
        'status': payment.status,
        'amount': str(payment.amount),
        'currency': payment.currency,
        'country': payment.country,
        'doctor_id': str(payment.doctor_id),
        'date': payment.appointment_day.isoformat(),
        'slot': payment.appointment_slot,
        'appointment_id': str(payment.appointment_id) if payment.appointment_id else None,
        'error_code': payment.error_code or None,
        'expires_at': payment.expires_at.isoformat() if payment.expires_at else None,
    }


def payment_history(principal):
    queryset = Payment.objects.select_related('doctor')
    if isinstance(principal, AdminPrincipal):
        return queryset
    if isinstance(principal, DoctorPrincipal):
        return queryset.filter(doctor_id=principal.doctor_id)
    if isinstance(principal, PatientPrincipal):
        return queryset.filter(patient_id=principal.user_id)
    return queryset.none()


# ============================================================================
# Housekeeping
# ============================================================================

@metrics.track_duration(metrics.sweep_duration_seconds.labels(sweep='expire_payments'))
def expire_stale_payments(now=None) -> dict:
    """
    Cancel pending payments past their window, then stale pending
    appointments.
    """
    now = now or timezone.now()
    window = timedelta(minutes=settings.PAYMENT_SESSION_EXPIRY_MINUTES)

    expired = Payment.objects.filter(
        Q(expires_at__lte=now) | Q(expires_at__isnull=True, created_at__lte=now - window),
        status=PaymentStatusChoices.PENDING,
        appointment__isnull=True,
    ).update(
        status=PaymentStatusChoices.CANCELLED,
        error_code=PaymentErrorCodes.EXPIRED_CLEANUP,
        error_message='Payment session expired without confirmation',
        cancelled_at=now,
        updated_at=now,
    )
    if expired:
        metrics.payments_expired_total.inc(expired)
        logger.info(
            f'[PAYMENTS] Expired {expired} stale payment(s)',
            extra={'event': 'payments_expired', 'count': expired},
        )

    appointments = lifecycle.expire_stale_pending(now)
    return {'payments': expired, 'appointments': appointments}

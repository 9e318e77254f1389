"""
Appointment lifecycle state machine.

Status vocabulary: pending, upcoming, confirmed, completed, cancelled.
``completed`` and ``cancelled`` are terminal. Every transition locks the
appointment row, checks the caller, applies the change and registers
post-commit side effects.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.authz.principal import AdminPrincipal, DoctorPrincipal, PatientPrincipal
from apps.core.exceptions import NotPermitted
from apps.core.observability import metrics
from apps.core.observability.events import log_appointment_transition, log_domain_event
from apps.payments.models import PaymentStatusChoices
from apps.scheduling import side_effects
from apps.scheduling.exceptions import (
    AlreadyCancelled,
    AlreadyCompleted,
    AppointmentNotFound,
    BookingValidationError,
    InvalidManagementToken,
    InvalidTransition,
    NotAvailable,
    PastAppointment,
    PastDate,
    SlotConflict,
)
from apps.scheduling.modality import (  # noqa: F401  re-exported for callers
    compute_video_flag,
    has_passed,
    is_joinable,
    join_state,
    minutes_until_joinable,
)
from apps.scheduling.models import (
    ActorChoices,
    Appointment,
    AppointmentStatusChoices,
    RescheduleEntry,
    generate_management_token,
)
from apps.scheduling.services import AvailabilityService, get_active_doctor, parse_uuid
from apps.scheduling.timeconv import normalize_slot, parse_day, practice_today, to_absolute_instant

logger = logging.getLogger(__name__)

AUTO_COMPLETABLE_STATUSES = [
    AppointmentStatusChoices.UPCOMING,
    AppointmentStatusChoices.CONFIRMED,
]


# ============================================================================
# Lookup and visibility
# ============================================================================

def visible_appointments(principal):
    """Appointments the principal may list."""
    queryset = Appointment.objects.select_related('doctor')
    if isinstance(principal, AdminPrincipal):
        return queryset
    if isinstance(principal, DoctorPrincipal):
        return queryset.filter(doctor_id=principal.doctor_id)
    if isinstance(principal, PatientPrincipal):
        return queryset.filter(patient_id=principal.user_id)
    return queryset.none()


def authorize(principal, appointment):
    """
    Check that ``principal`` may act on ``appointment``.

    A patient asking for someone else's appointment gets not-found; a doctor
    acting on a colleague's appointment gets forbidden.
    """
    if isinstance(principal, AdminPrincipal):
        return
    if isinstance(principal, DoctorPrincipal):
        if appointment.doctor_id != principal.doctor_id:
            raise NotPermitted('This appointment belongs to another doctor')
        return
    if isinstance(principal, PatientPrincipal):
        if appointment.patient_id != principal.user_id:
            raise AppointmentNotFound()
        return
    raise NotPermitted()


def get_appointment(principal, appointment_id) -> Appointment:
    appointment_id = parse_uuid(appointment_id, AppointmentNotFound)
    appointment = Appointment.objects.select_related('doctor').filter(pk=appointment_id).first()
    if appointment is None:
        raise AppointmentNotFound()
    authorize(principal, appointment)
    return appointment


def get_by_token(token) -> Appointment:
    if not token or not isinstance(token, str):
        raise InvalidManagementToken()
    appointment = Appointment.objects.select_related('doctor').filter(management_token=token).first()
    if appointment is None:
        raise InvalidManagementToken()
    return appointment


def _lock(appointment_id) -> Appointment:
    # Only the non-null doctor join may ride along with FOR UPDATE
    appointment = (
        Appointment.objects
        .select_related('doctor')
        .select_for_update(of=('self',))
        .filter(pk=appointment_id)
        .first()
    )
    if appointment is None:
        raise AppointmentNotFound()
    return appointment


def actor_for(principal) -> str:
    if principal is None:
        return ActorChoices.SYSTEM
    return principal.kind


def _require_staff(principal):
    if not isinstance(principal, (AdminPrincipal, DoctorPrincipal)):
        raise NotPermitted('Only the doctor or an admin can do this')


def _ensure_active(appointment):
    if appointment.status == AppointmentStatusChoices.CANCELLED:
        raise AlreadyCancelled()
    if appointment.status == AppointmentStatusChoices.COMPLETED:
        raise AlreadyCompleted()


def _ensure_transition(appointment, new_status):
    """Terminal states raise their own error; anything else off the table is InvalidTransition."""
    _ensure_active(appointment)
    if not appointment.can_transition_to(new_status):
        raise InvalidTransition(
            f'Cannot move an appointment from "{appointment.status}" to "{new_status}"',
            status=appointment.status,
        )


def _record_transition(appointment, from_status, actor, **extra):
    metrics.appointment_transitions_total.labels(
        from_status=from_status,
        to_status=appointment.status,
        actor=actor,
    ).inc()
    log_appointment_transition(appointment, from_status, appointment.status, actor, **extra)


# ============================================================================
# Transitions
# ============================================================================

def confirm(appointment_id, principal, now=None) -> Appointment:
    """pending -> confirmed, by the owning doctor or an admin."""
    _require_staff(principal)
    now = now or timezone.now()
    with transaction.atomic():
        appointment = _lock(appointment_id)
        authorize(principal, appointment)
        _ensure_transition(appointment, AppointmentStatusChoices.CONFIRMED)
        from_status = appointment.status
        appointment.status = AppointmentStatusChoices.CONFIRMED
        appointment.confirmed_at = now
        appointment.save(update_fields=['status', 'confirmed_at', 'updated_at'])
        _record_transition(appointment, from_status, actor_for(principal))
    return appointment


def cancel(appointment_id, actor, principal=None, reason=None, now=None) -> Appointment:
    """
    Cancel an active appointment.

    Patients (including management-token holders) cannot cancel once the
    appointment has started; doctors, admins and the system can.
    """
    now = now or timezone.now()
    with transaction.atomic():
        appointment = _lock(appointment_id)
        if principal is not None:
            authorize(principal, appointment)
        _ensure_transition(appointment, AppointmentStatusChoices.CANCELLED)
        if actor == ActorChoices.PATIENT and appointment.start_instant <= now:
            raise PastAppointment()

        from_status = appointment.status
        appointment.status = AppointmentStatusChoices.CANCELLED
        appointment.cancelled_at = now
        appointment.cancelled_by = actor
        appointment.cancel_reason = reason or f'Cancelled by {actor}'
        appointment.save(update_fields=[
            'status', 'cancelled_at', 'cancelled_by', 'cancel_reason', 'updated_at',
        ])
        _record_transition(appointment, from_status, actor)
        side_effects.schedule_after_cancel(appointment)
    return appointment


def complete(appointment_id, principal, notes=None, now=None) -> Appointment:
    """upcoming|confirmed -> completed, by the owning doctor or an admin."""
    _require_staff(principal)
    now = now or timezone.now()
    with transaction.atomic():
        appointment = _lock(appointment_id)
        authorize(principal, appointment)
        _ensure_transition(appointment, AppointmentStatusChoices.COMPLETED)
        from_status = appointment.status
        appointment.status = AppointmentStatusChoices.COMPLETED
        appointment.completed_at = now
        if notes:
            appointment.completion_notes = notes
        appointment.save(update_fields=['status', 'completed_at', 'completion_notes', 'updated_at'])
        _record_transition(appointment, from_status, actor_for(principal))
    return appointment


def reschedule(
    appointment_id,
    new_day,
    new_slot,
    actor,
    principal=None,
    new_doctor_id=None,
    now=None,
) -> Appointment:
    """
    Move an active appointment to another published, free slot.

    The management token is rotated, a history entry is appended and the
    video flag is recomputed. Status is unchanged. On any failure the
    appointment is left exactly as it was.

    Raises:
        AlreadyCancelled, AlreadyCompleted, PastDate, PastAppointment,
        NotAvailable, SlotConflict, NotPermitted, DoctorNotFound
    """
    now = now or timezone.now()
    new_day = parse_day(new_day)
    new_slot = normalize_slot(new_slot)

    with transaction.atomic():
        appointment = _lock(appointment_id)
        if principal is not None:
            authorize(principal, appointment)
        _ensure_active(appointment)
        if actor == ActorChoices.PATIENT and appointment.start_instant <= now:
            raise PastAppointment('Appointments that have already started cannot be rescheduled')

        if new_doctor_id is not None and str(new_doctor_id) != str(appointment.doctor_id):
            if actor != ActorChoices.ADMIN:
                raise NotPermitted('Only admins can move an appointment to another doctor')
            target_doctor = get_active_doctor(new_doctor_id)
        else:
            target_doctor = appointment.doctor

        if new_day < practice_today(now):
            raise PastDate()
        new_start = to_absolute_instant(new_day, new_slot)
        if new_start <= now:
            raise PastDate()

        if (target_doctor.pk, new_day, new_slot) == (appointment.doctor_id, appointment.day, appointment.slot):
            raise BookingValidationError('The new slot is the same as the current one')

        if not AvailabilityService.is_slot_published(target_doctor, new_day, new_slot):
            metrics.appointment_reschedules_total.labels(result='not_available').inc()
            raise NotAvailable(
                available_slots=AvailabilityService.bookable_slots_for_day(target_doctor, new_day, now=now),
            )

        if Appointment.objects.filter(
            doctor=target_doctor, day=new_day, slot=new_slot,
        ).exclude(
            status=AppointmentStatusChoices.CANCELLED,
        ).exclude(pk=appointment.pk).exists():
            metrics.appointment_reschedules_total.labels(result='conflict').inc()
            metrics.slot_conflicts_total.labels(stage='reschedule_precheck').inc()
            raise SlotConflict()

        old = (appointment.doctor, appointment.day, appointment.slot)
        old_room_name = appointment.meeting_room_name

        appointment.doctor = target_doctor
        appointment.day = new_day
        appointment.slot = new_slot
        appointment.management_token = generate_management_token()
        appointment.is_video_appointment = compute_video_flag(
            target_doctor, new_start, appointment.video_override,
        )
        appointment.meeting_room_name = ''
        appointment.meeting_url = ''
        appointment.reminder_24h_sent_at = None
        appointment.reminder_2h_sent_at = None

        try:
            with transaction.atomic():
                appointment.save()
                RescheduleEntry.objects.create(
                    appointment=appointment,
                    from_doctor=old[0],
                    from_day=old[1],
                    from_slot=old[2],
                    to_doctor=target_doctor,
                    to_day=new_day,
                    to_slot=new_slot,
                    actor=actor,
                )
        except IntegrityError:
            metrics.appointment_reschedules_total.labels(result='conflict').inc()
            metrics.slot_conflicts_total.labels(stage='reschedule_constraint').inc()
            raise SlotConflict()

        metrics.appointment_reschedules_total.labels(result='success').inc()
        log_domain_event(
            'appointment_rescheduled',
            entity_type='Appointment',
            entity_id=str(appointment.id),
            entity_ids={'doctor_id': str(target_doctor.pk)},
            actor=actor,
            from_day=old[1].isoformat(),
            from_slot=old[2],
            to_day=new_day.isoformat(),
            to_slot=new_slot,
        )
        side_effects.schedule_after_reschedule(appointment, old_room_name)
    return appointment


# ============================================================================
# Time-driven transitions
# ============================================================================

def auto_complete_due(now=None, queryset=None, trigger='sweep') -> int:
    """
    Complete upcoming/confirmed appointments whose start plus the grace
    period has passed.

    Each row is flipped with a conditional UPDATE, so concurrent sweeps
    and lazy checks complete an appointment at most once.

    Returns:
        Number of appointments completed by this call.
    """
    now = now or timezone.now()
    grace = timedelta(minutes=settings.AUTO_COMPLETE_GRACE_MINUTES)
    base = queryset if queryset is not None else Appointment.objects.all()
    candidates = base.select_related(None).filter(
        status__in=AUTO_COMPLETABLE_STATUSES,
        day__lte=practice_today(now),
    ).only('id', 'day', 'slot', 'status')

    completed = 0
    for appointment in candidates:
        if appointment.start_instant + grace > now:
            continue
        updated = Appointment.objects.filter(
            pk=appointment.pk,
            status__in=AUTO_COMPLETABLE_STATUSES,
        ).update(
            status=AppointmentStatusChoices.COMPLETED,
            completed_at=now,
            updated_at=now,
        )
        if not updated:
            continue
        completed += 1
        metrics.appointment_auto_completed_total.labels(trigger=trigger).inc()
        metrics.appointment_transitions_total.labels(
            from_status=appointment.status,
            to_status=AppointmentStatusChoices.COMPLETED,
            actor=ActorChoices.SYSTEM,
        ).inc()
        log_appointment_transition(
            appointment,
            appointment.status,
            AppointmentStatusChoices.COMPLETED,
            ActorChoices.SYSTEM,
            trigger=trigger,
        )

    if completed:
        logger.info(
            f'[LIFECYCLE] Auto-completed {completed} appointment(s)',
            extra={'event': 'auto_complete', 'count': completed, 'trigger': trigger},
        )
    return completed


def auto_complete(appointment, now=None, trigger='lazy') -> Appointment:
    """Lazy check for a single appointment; returns a fresh instance."""
    if appointment.status not in AUTO_COMPLETABLE_STATUSES:
        return appointment
    if auto_complete_due(now=now, queryset=Appointment.objects.filter(pk=appointment.pk), trigger=trigger):
        appointment.refresh_from_db()
    return appointment


def expire_stale_pending(now=None) -> int:
    """
    Cancel pending appointments nobody will act on.

    A pending appointment is stale once its start has passed. When doctors
    do not confirm bookings, a pending appointment linked to a payment that
    never completed is a leftover of an unfinished paid booking and is stale
    once older than the payment window. Pending appointments without a
    payment wait for their doctor.
    """
    now = now or timezone.now()
    payment_window = timedelta(minutes=settings.PAYMENT_SESSION_EXPIRY_MINUTES)
    confirmation_workflow = settings.BOOKING_REQUIRES_DOCTOR_CONFIRMATION

    pending = Appointment.objects.filter(status=AppointmentStatusChoices.PENDING)
    unpaid_leftovers = set()
    if not confirmation_workflow:
        unpaid_leftovers = set(
            pending
            .filter(payment__isnull=False, created_at__lte=now - payment_window)
            .exclude(payment__status=PaymentStatusChoices.COMPLETED)
            .values_list('pk', flat=True)
        )

    expired = 0
    for appointment in pending:
        started = appointment.start_instant <= now
        abandoned = appointment.pk in unpaid_leftovers
        if not (started or abandoned):
            continue
        updated = Appointment.objects.filter(
            pk=appointment.pk,
            status=AppointmentStatusChoices.PENDING,
        ).update(
            status=AppointmentStatusChoices.CANCELLED,
            cancelled_at=now,
            cancelled_by=ActorChoices.SYSTEM,
            cancel_reason='Not confirmed in time',
            updated_at=now,
        )
        if updated:
            expired += 1
            metrics.appointment_transitions_total.labels(
                from_status=AppointmentStatusChoices.PENDING,
                to_status=AppointmentStatusChoices.CANCELLED,
                actor=ActorChoices.SYSTEM,
            ).inc()
            log_appointment_transition(
                appointment,
                AppointmentStatusChoices.PENDING,
                AppointmentStatusChoices.CANCELLED,
                ActorChoices.SYSTEM,
                trigger='expire_pending',
            )
    return expired

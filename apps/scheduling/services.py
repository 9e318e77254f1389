"""
Availability and booking services.

Views call into these; nothing here knows about HTTP. Every failure is a
domain error from ``apps.scheduling.exceptions`` so the API layer can map
it to a response without inspecting messages.
"""
import logging
import uuid
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.authz.models import Doctor, User
from apps.authz.principal import AdminPrincipal, DoctorPrincipal, PatientPrincipal
from apps.core.exceptions import NotPermitted
from apps.core.observability import metrics
from apps.core.observability.events import log_booking_created
from apps.scheduling.exceptions import (
    AvailabilityNotFound,
    BookingValidationError,
    DoctorNotFound,
    DuplicateAvailability,
    InvalidTimeInput,
    NotAvailable,
    PastDate,
    ScheduleConflict,
    SlotAlreadyExists,
    SlotNotFound,
    SlotTaken,
)
from apps.scheduling.modality import compute_video_flag
from apps.scheduling.models import (
    CONFIRMED_STATUSES,
    Appointment,
    AppointmentStatusChoices,
    Availability,
    PlanChoices,
)
from apps.scheduling.side_effects import schedule_after_booking
from apps.scheduling.timeconv import (
    normalize_slot,
    parse_day,
    practice_today,
    to_absolute_instant,
)

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500
MAX_NOTES_LENGTH = 1000


def parse_uuid(value, error_cls):
    """Coerce ``value`` to a UUID or raise ``error_cls``."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise error_cls()


def get_active_doctor(doctor_id) -> Doctor:
    doctor_id = parse_uuid(doctor_id, DoctorNotFound)
    doctor = Doctor.objects.filter(pk=doctor_id, is_active=True).first()
    if doctor is None:
        raise DoctorNotFound()
    return doctor


# ============================================================================
# AVAILABILITY
# ============================================================================

class AvailabilityService:
    """
    Publishing and querying doctor availability.

    A doctor has at most one Availability per calendar day. Slots are kept
    normalized (``HH:MM``), de-duplicated and sorted.
    """

    @staticmethod
    def normalize_slots(slots) -> List[str]:
        if not isinstance(slots, (list, tuple)):
            raise BookingValidationError('Slots must be a list of HH:MM strings', field='slots')
        return sorted({normalize_slot(slot) for slot in slots})

    @staticmethod
    def get(availability_id) -> Availability:
        availability_id = parse_uuid(availability_id, AvailabilityNotFound)
        availability = Availability.objects.select_related('doctor').filter(pk=availability_id).first()
        if availability is None:
            raise AvailabilityNotFound()
        return availability

    @staticmethod
    def publish(doctor, day, slots, now=None) -> Availability:
        """
        Publish slots for one day.

        Raises:
            PastDate: day before the practice "today"
            BookingValidationError: empty slot list
            InvalidSlotFormat: malformed slot
            DuplicateAvailability: the doctor already has this day
        """
        day = parse_day(day)
        if day < practice_today(now):
            raise PastDate('Cannot publish availability for a past date')

        normalized = AvailabilityService.normalize_slots(slots)
        if not normalized:
            raise BookingValidationError('At least one slot is required', field='slots')

        if Availability.objects.filter(doctor=doctor, day=day).exists():
            raise DuplicateAvailability(day=day.isoformat())

        try:
            with transaction.atomic():
                availability = Availability.objects.create(doctor=doctor, day=day, slots=normalized)
        except IntegrityError:
            raise DuplicateAvailability(day=day.isoformat())

        metrics.availability_changes_total.labels(operation='publish').inc()
        logger.info(
            '[AVAILABILITY] Published',
            extra={
                'event': 'availability_published',
                'doctor_id': str(doctor.id),
                'day': day.isoformat(),
                'slot_count': len(normalized),
            },
        )
        return availability

    @staticmethod
    def add_slot(availability, slot) -> Availability:
        slot = normalize_slot(slot)
        if slot in availability.slots:
            raise SlotAlreadyExists(slot=slot)
        availability.slots = sorted(availability.slots + [slot])
        availability.save(update_fields=['slots', 'updated_at'])
        metrics.availability_changes_total.labels(operation='add_slot').inc()
        return availability

    @staticmethod
    def remove_slot(availability, slot) -> Availability:
        slot = normalize_slot(slot)
        if slot not in availability.slots:
            raise SlotNotFound(slot=slot)
        availability.slots = [s for s in availability.slots if s != slot]
        availability.save(update_fields=['slots', 'updated_at'])
        metrics.availability_changes_total.labels(operation='remove_slot').inc()
        return availability

    @staticmethod
    def replace_slots(availability, slots) -> Availability:
        normalized = AvailabilityService.normalize_slots(slots)
        if not normalized:
            raise BookingValidationError('At least one slot is required', field='slots')
        availability.slots = normalized
        availability.save(update_fields=['slots', 'updated_at'])
        metrics.availability_changes_total.labels(operation='replace').inc()
        return availability

    @staticmethod
    def set_active(availability, is_active) -> Availability:
        availability.is_active = bool(is_active)
        availability.save(update_fields=['is_active', 'updated_at'])
        metrics.availability_changes_total.labels(
            operation='activate' if is_active else 'deactivate'
        ).inc()
        return availability

    @staticmethod
    def delete(availability):
        # Existing appointments keep their slot; only future booking stops
        availability.delete()
        metrics.availability_changes_total.labels(operation='delete').inc()

    @staticmethod
    def delete_all_for_doctor(doctor) -> int:
        count, _ = Availability.objects.filter(doctor=doctor).delete()
        metrics.availability_changes_total.labels(operation='delete_all').inc()
        logger.info(
            '[AVAILABILITY] Deleted all',
            extra={'event': 'availability_deleted_all', 'doctor_id': str(doctor.id), 'count': count},
        )
        return count

    @staticmethod
    def is_slot_published(doctor, day, slot) -> bool:
        availability = Availability.objects.filter(doctor=doctor, day=day, is_active=True).first()
        return availability is not None and slot in availability.slots

    @staticmethod
    def list_bookable(
        doctor_id=None,
        day=None,
        date_from=None,
        date_to=None,
        now=None,
        buffer_minutes=None,
    ) -> List[dict]:
        """
        Slots a patient can book right now.

        Drops slots held by a non-cancelled appointment, inactive
        availability, and inactive doctors. Past days return nothing.
        On the practice "today" a slot is kept only when its start is at
        least ``buffer_minutes`` away; future days are never time-filtered.

        Returns:
            [{'availability_id', 'doctor_id', 'doctor_name', 'date', 'slots'}]
        """
        now = now or timezone.now()
        today = practice_today(now)
        if buffer_minutes is None:
            buffer_minutes = settings.BOOKING_SLOT_BUFFER_MINUTES
        buffer = timedelta(minutes=buffer_minutes)

        queryset = Availability.objects.select_related('doctor').filter(
            is_active=True,
            doctor__is_active=True,
            day__gte=today,
        )
        if doctor_id is not None:
            queryset = queryset.filter(doctor_id=parse_uuid(doctor_id, DoctorNotFound))
        if day is not None:
            queryset = queryset.filter(day=parse_day(day))
        else:
            if date_from is not None:
                queryset = queryset.filter(day__gte=parse_day(date_from))
            if date_to is not None:
                queryset = queryset.filter(day__lte=parse_day(date_to))

        entries = list(queryset.order_by('day', 'doctor__display_name'))
        if not entries:
            return []

        taken = set(
            Appointment.objects.filter(
                doctor_id__in={entry.doctor_id for entry in entries},
                day__in={entry.day for entry in entries},
            ).exclude(
                status=AppointmentStatusChoices.CANCELLED,
            ).values_list('doctor_id', 'day', 'slot')
        )

        result = []
        for entry in entries:
            free = []
            for slot in entry.slots:
                if (entry.doctor_id, entry.day, slot) in taken:
                    continue
                try:
                    start = to_absolute_instant(entry.day, slot)
                except InvalidTimeInput:
                    continue
                if entry.day == today and (start <= now or start - now < buffer):
                    continue
                free.append(slot)
            if free:
                result.append({
                    'availability_id': str(entry.id),
                    'doctor_id': str(entry.doctor_id),
                    'doctor_name': entry.doctor.display_name,
                    'date': entry.day.isoformat(),
                    'slots': free,
                })
        return result

    @staticmethod
    def bookable_slots_for_day(doctor, day, now=None) -> List[str]:
        entries = AvailabilityService.list_bookable(doctor_id=doctor.id, day=day, now=now)
        return entries[0]['slots'] if entries else []

    @staticmethod
    def copy_schedule(from_doctor, to_doctor, date_from, date_to, overwrite=False) -> int:
        """
        Copy one doctor's availability in [date_from, date_to] to another.

        Without ``overwrite`` any destination day already present aborts
        the copy with ``ScheduleConflict`` listing every colliding day. With
        ``overwrite`` the destination range is cleared first. Either way
        the copy is all-or-nothing.

        Returns:
            Number of availability entries created.
        """
        date_from = parse_day(date_from)
        date_to = parse_day(date_to)
        if date_from > date_to:
            raise BookingValidationError('date_from must not be after date_to')
        if from_doctor.pk == to_doctor.pk:
            raise BookingValidationError('Source and destination doctor must differ')

        sources = list(
            Availability.objects.filter(
                doctor=from_doctor,
                day__gte=date_from,
                day__lte=date_to,
            ).order_by('day')
        )
        destination = Availability.objects.filter(
            doctor=to_doctor,
            day__gte=date_from,
            day__lte=date_to,
        )

        with transaction.atomic():
            if overwrite:
                destination.delete()
            else:
                source_days = {entry.day for entry in sources}
                colliding = sorted(
                    day for day in destination.values_list('day', flat=True)
                    if day in source_days
                )
                if colliding:
                    raise ScheduleConflict(colliding)

            Availability.objects.bulk_create([
                Availability(
                    doctor=to_doctor,
                    day=entry.day,
                    slots=list(entry.slots),
                    is_active=entry.is_active,
                )
                for entry in sources
            ])

        metrics.availability_changes_total.labels(operation='copy').inc()
        logger.info(
            '[AVAILABILITY] Copied schedule',
            extra={
                'event': 'availability_copied',
                'from_doctor_id': str(from_doctor.id),
                'to_doctor_id': str(to_doctor.id),
                'count': len(sources),
                'overwrite': overwrite,
            },
        )
        return len(sources)


# ============================================================================
# BOOKING
# ============================================================================

class BookingService:
    """
    Direct (synchronous) booking and the slot pre-check used by the
    pay-first flow.

    The partial unique constraint on (doctor, day, slot) is the final word
    on who gets a slot; the checks here only fail fast.
    """

    @staticmethod
    def validate_request(doctor_id, day, slot, plan, reason, notes, now=None):
        """
        Shared validation for direct and paid bookings.

        Returns:
            (doctor, day, slot, start_instant)
        """
        if plan not in PlanChoices.values:
            raise BookingValidationError(f'Invalid plan "{plan}"', field='plan')
        if reason and len(reason) > MAX_REASON_LENGTH:
            raise BookingValidationError(
                f'Reason must be at most {MAX_REASON_LENGTH} characters', field='reason'
            )
        if notes and len(notes) > MAX_NOTES_LENGTH:
            raise BookingValidationError(
                f'Notes must be at most {MAX_NOTES_LENGTH} characters', field='notes'
            )

        doctor = get_active_doctor(doctor_id)
        day = parse_day(day)
        slot = normalize_slot(slot)

        now = now or timezone.now()
        if day < practice_today(now):
            raise PastDate()
        start = to_absolute_instant(day, slot)
        if start <= now:
            raise PastDate('This slot has already started')

        if not AvailabilityService.is_slot_published(doctor, day, slot):
            raise NotAvailable(
                available_slots=AvailabilityService.bookable_slots_for_day(doctor, day, now=now),
            )
        return doctor, day, slot, start

    @staticmethod
    def _patient_details(principal, patient_id, patient_email, patient_name, patient_phone, locale):
        """Resolve who the appointment is for, per principal type."""
        if isinstance(principal, PatientPrincipal):
            user = User.objects.get(pk=principal.user_id)
        elif isinstance(principal, AdminPrincipal) and patient_id:
            user = User.objects.filter(pk=parse_uuid(patient_id, BookingValidationError)).first()
            if user is None:
                raise BookingValidationError('Patient not found', field='patient_id')
        elif isinstance(principal, AdminPrincipal):
            if not patient_email:
                raise BookingValidationError(
                    'patient_id or patient_email is required', field='patient_email'
                )
            return {
                'patient': None,
                'patient_email': patient_email,
                'patient_name': patient_name or '',
                'patient_phone': patient_phone or '',
                'locale': locale or 'de',
            }
        elif isinstance(principal, DoctorPrincipal):
            raise NotPermitted('Doctors cannot book appointments')
        else:
            raise NotPermitted()

        return {
            'patient': user,
            'patient_email': user.email,
            'patient_name': patient_name or user.full_name,
            'patient_phone': patient_phone or user.phone,
            'locale': locale or user.locale,
        }

    @staticmethod
    def book_direct(
        principal,
        doctor_id,
        day,
        slot,
        plan=PlanChoices.CONSULTATION,
        reason='',
        notes='',
        patient_id=None,
        patient_email=None,
        patient_name=None,
        patient_phone=None,
        locale=None,
        force_video=False,
        now=None,
    ) -> Appointment:
        """
        Book a slot immediately, without payment.

        Patients book for themselves; admins book on behalf of a patient
        account or inline contact details.

        Raises:
            DoctorNotFound, PastDate, NotAvailable, SlotTaken,
            BookingValidationError, InvalidTimeInput, NotPermitted
        """
        if force_video and not isinstance(principal, AdminPrincipal):
            raise NotPermitted('Only admins can force a video consultation')

        details = BookingService._patient_details(
            principal, patient_id, patient_email, patient_name, patient_phone, locale,
        )
        try:
            doctor, day, slot, start = BookingService.validate_request(
                doctor_id, day, slot, plan, reason, notes, now=now,
            )
        except NotAvailable:
            metrics.booking_attempts_total.labels(flow='direct', result='not_available').inc()
            raise

        if Appointment.objects.filter(doctor=doctor, day=day, slot=slot).exclude(
            status=AppointmentStatusChoices.CANCELLED
        ).exists():
            metrics.booking_attempts_total.labels(flow='direct', result='slot_taken').inc()
            metrics.slot_conflicts_total.labels(stage='precheck').inc()
            raise SlotTaken()

        status = (
            AppointmentStatusChoices.PENDING
            if settings.BOOKING_REQUIRES_DOCTOR_CONFIRMATION
            else AppointmentStatusChoices.UPCOMING
        )

        try:
            with transaction.atomic():
                appointment = Appointment.objects.create(
                    doctor=doctor,
                    day=day,
                    slot=slot,
                    plan=plan,
                    reason=reason or '',
                    notes=notes or '',
                    status=status,
                    is_video_appointment=compute_video_flag(doctor, start, force_video),
                    video_override=bool(force_video),
                    **details,
                )
        except IntegrityError:
            metrics.booking_attempts_total.labels(flow='direct', result='slot_taken').inc()
            metrics.slot_conflicts_total.labels(stage='constraint').inc()
            logger.warning(
                '[BOOKING] Slot taken at insert',
                extra={'event': 'slot_conflict', 'doctor_id': str(doctor.id), 'day': day.isoformat()},
            )
            raise SlotTaken()

        metrics.booking_attempts_total.labels(flow='direct', result='success').inc()
        log_booking_created(appointment, flow='direct')
        schedule_after_booking(appointment)
        return appointment

    @staticmethod
    def check_slot_for_payment(doctor, day, slot) -> bool:
        """
        Light pre-check for pay-first booking.

        Only appointments that actually hold a slot count; other pending
        payments for the same slot are ignored.
        """
        return not Appointment.objects.filter(
            doctor=doctor,
            day=day,
            slot=slot,
            status__in=CONFIRMED_STATUSES,
        ).exists()

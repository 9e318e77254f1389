"""
Scheduling models: availability, appointment, appointment_reschedule
"""
import secrets
import uuid

from django.db import models
from django.db.models import Q


# ============================================================================
# Enums
# ============================================================================

class AppointmentStatusChoices(models.TextChoices):
    """
    Appointment status with allowed transitions:
    - pending -> confirmed | cancelled | completed
    - upcoming -> cancelled | completed
    - confirmed -> cancelled | completed
    - completed, cancelled are terminal states

    ``pending`` only exists when doctors confirm bookings themselves
    (BOOKING_REQUIRES_DOCTOR_CONFIRMATION). Paid bookings are created
    directly at ``upcoming`` once the payment has cleared.
    """
    PENDING = 'pending', 'Pending'
    UPCOMING = 'upcoming', 'Upcoming'
    CONFIRMED = 'confirmed', 'Confirmed'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class PlanChoices(models.TextChoices):
    """What the patient booked. Only consultations get a video room."""
    CONSULTATION = 'consultation', 'Consultation'
    PRESCRIPTION = 'prescription', 'Prescription'


class ActorChoices(models.TextChoices):
    """Who performed a cancellation or reschedule."""
    PATIENT = 'patient', 'Patient'
    DOCTOR = 'doctor', 'Doctor'
    ADMIN = 'admin', 'Admin'
    SYSTEM = 'system', 'System'


ACTIVE_STATUSES = [
    AppointmentStatusChoices.PENDING,
    AppointmentStatusChoices.UPCOMING,
    AppointmentStatusChoices.CONFIRMED,
]

# Statuses the paid-booking pre-check treats as holding the slot
CONFIRMED_STATUSES = [
    AppointmentStatusChoices.UPCOMING,
    AppointmentStatusChoices.CONFIRMED,
    AppointmentStatusChoices.COMPLETED,
]


def generate_management_token():
    """64 hex characters (256 bits) granting cancel/reschedule rights."""
    return secrets.token_hex(32)


# ============================================================================
# Models
# ============================================================================

class Availability(models.Model):
    """
    Slots a doctor publishes for one calendar day.

    Fields:
    - doctor: FK -> doctor
    - day: calendar day in the practice timezone
    - slots: sorted, de-duplicated list of HH:MM strings
    - is_active: inactive entries offer no bookable slots
    - created_at, updated_at

    Constraints: unique (doctor, day)
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.CASCADE,
        related_name='availability'
    )
    day = models.DateField()
    slots = models.JSONField(default=list)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'availability'
        verbose_name = 'Availability'
        verbose_name_plural = 'Availability'
        ordering = ['day']
        constraints = [
            models.UniqueConstraint(
                fields=['doctor', 'day'],
                name='uniq_availability_doctor_day',
                violation_error_message='Availability for this doctor and date already exists',
            ),
        ]
        indexes = [
            models.Index(fields=['day'], name='idx_availability_day'),
            models.Index(fields=['is_active'], name='idx_availability_active'),
        ]

    def __str__(self):
        return f"{self.doctor_id} {self.day} ({len(self.slots)} slots)"


class Appointment(models.Model):
    """
    A booked slot.

    Either ``patient`` (account booking) or the inline ``patient_*``
    contact fields identify who booked; account bookings copy the contact
    fields too so notifications never need a join.

    BUSINESS RULES:
    - (doctor, day, slot) is unique among non-cancelled appointments; the
      partial unique constraint is what settles concurrent bookings
    - management_token is rotated on every reschedule
    - is_video_appointment is computed at create/reschedule time and stored
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    patient = models.ForeignKey(
        'authz.User',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='appointments'
    )
    patient_email = models.EmailField(max_length=255)
    patient_name = models.CharField(max_length=255, blank=True)
    patient_phone = models.CharField(max_length=50, blank=True)
    locale = models.CharField(max_length=2, default='de')

    doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    day = models.DateField()
    slot = models.CharField(max_length=5)
    plan = models.CharField(
        max_length=20,
        choices=PlanChoices.choices,
        default=PlanChoices.CONSULTATION
    )
    reason = models.TextField(max_length=500, blank=True)
    notes = models.TextField(max_length=1000, blank=True)

    status = models.CharField(
        max_length=20,
        choices=AppointmentStatusChoices.choices,
        default=AppointmentStatusChoices.UPCOMING
    )
    confirmed_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)
    cancelled_by = models.CharField(
        max_length=20,
        choices=ActorChoices.choices,
        blank=True
    )
    cancel_reason = models.TextField(blank=True)
    completion_notes = models.TextField(blank=True)

    management_token = models.CharField(
        max_length=64,
        unique=True,
        default=generate_management_token,
        editable=False
    )

    # Video modality
    is_video_appointment = models.BooleanField(default=False)
    video_override = models.BooleanField(
        default=False,
        help_text='Force a video consultation regardless of doctor or weekday'
    )
    meeting_room_name = models.CharField(max_length=255, blank=True)
    meeting_url = models.URLField(max_length=500, blank=True)

    # Reminder markers (set before dispatch so a reminder goes out once)
    reminder_24h_sent_at = models.DateTimeField(blank=True, null=True)
    reminder_2h_sent_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'appointment'
        verbose_name = 'Appointment'
        verbose_name_plural = 'Appointments'
        ordering = ['-day', '-slot']
        constraints = [
            models.UniqueConstraint(
                fields=['doctor', 'day', 'slot'],
                condition=~Q(status='cancelled'),
                name='uniq_active_appointment_slot',
                violation_error_message='This slot is already booked',
            ),
        ]
        indexes = [
            models.Index(fields=['patient'], name='idx_appointment_patient'),
            models.Index(fields=['doctor', 'day'], name='idx_appointment_doctor_day'),
            models.Index(fields=['status'], name='idx_appointment_status'),
            models.Index(fields=['day'], name='idx_appointment_day'),
        ]

    # BUSINESS RULE: Allowed status transitions (enforced by apps.scheduling.lifecycle)
    _ALLOWED_TRANSITIONS = {
        'pending': ['confirmed', 'cancelled'],
        'upcoming': ['cancelled', 'completed'],
        'confirmed': ['cancelled', 'completed'],
        'completed': [],  # Terminal state
        'cancelled': [],  # Terminal state
    }

    def __str__(self):
        return f"Appointment {self.day} {self.slot} - {self.doctor_id}"

    @property
    def start_instant(self):
        from apps.scheduling.timeconv import to_absolute_instant
        return to_absolute_instant(self.day, self.slot)

    @property
    def is_active(self):
        return self.status in ACTIVE_STATUSES

    def can_transition_to(self, new_status):
        return new_status in self._ALLOWED_TRANSITIONS.get(self.status, [])


class RescheduleEntry(models.Model):
    """
    One move of an appointment, oldest first.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    appointment = models.ForeignKey(
        Appointment,
        on_delete=models.CASCADE,
        related_name='reschedule_history'
    )
    from_doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.PROTECT,
        related_name='+'
    )
    from_day = models.DateField()
    from_slot = models.CharField(max_length=5)
    to_doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.PROTECT,
        related_name='+'
    )
    to_day = models.DateField()
    to_slot = models.CharField(max_length=5)
    actor = models.CharField(max_length=20, choices=ActorChoices.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'appointment_reschedule'
        verbose_name = 'Reschedule Entry'
        verbose_name_plural = 'Reschedule History'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.from_day} {self.from_slot} -> {self.to_day} {self.to_slot}"

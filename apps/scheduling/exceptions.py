"""
Booking and lifecycle errors.

Each error carries a stable ``code`` for clients and maps to one of the
caller-facing outcomes defined in ``apps.core.exceptions``.
"""
from apps.core.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationFailed,
)


# ============================================================================
# Validation
# ============================================================================

class InvalidTimeInput(ValidationFailed):
    """Day or slot missing, malformed, or not a real wall-clock time."""
    code = 'invalid_time_input'
    default_message = 'Invalid date or time'


class InvalidSlotFormat(InvalidTimeInput):
    """Slot string does not match HH:MM (00:00-23:59)."""
    code = 'invalid_slot_format'
    default_message = 'Slots must be in HH:MM format'


class PastDate(ValidationFailed):
    code = 'past_date'
    default_message = 'Cannot book or move an appointment into the past'


class PastAppointment(StateError):
    """Patient tried to cancel an appointment that has already started."""
    code = 'past_appointment'
    default_message = 'Appointments that have already started cannot be cancelled'


class BookingValidationError(ValidationFailed):
    code = 'booking_validation_error'


# ============================================================================
# Conflicts
# ============================================================================

class SlotTaken(ConflictError):
    code = 'slot_taken'
    default_message = 'This slot is already booked'


class SlotConflict(ConflictError):
    """Reschedule target is held by another active appointment."""
    code = 'slot_conflict'
    default_message = 'The new slot is already booked'


class NotAvailable(ConflictError):
    """Slot is not in the doctor's published availability for that day."""
    code = 'not_available'
    default_message = 'The doctor is not available at this time'


class DuplicateAvailability(StateError):
    code = 'duplicate_availability'
    default_message = 'Availability for this doctor and date already exists'


class ScheduleConflict(StateError):
    """Destination doctor already has availability on the listed days."""
    code = 'schedule_conflict'
    default_message = 'Destination schedule already has entries in this range'

    def __init__(self, days, message=None):
        self.days = [d.isoformat() if hasattr(d, 'isoformat') else str(d) for d in days]
        super().__init__(message, days=self.days)


class SlotAlreadyExists(StateError):
    code = 'slot_already_exists'
    default_message = 'Slot already exists'


class SlotNotFound(StateError):
    code = 'slot_not_found'
    default_message = 'Slot not found'


class AlreadyCancelled(StateError):
    code = 'already_cancelled'
    default_message = 'Appointment is already cancelled'


class AlreadyCompleted(StateError):
    code = 'already_completed'
    default_message = 'Appointment is already completed'


class InvalidTransition(StateError):
    code = 'invalid_transition'
    default_message = 'This action is not allowed in the current state'


# ============================================================================
# Not found
# ============================================================================

class DoctorNotFound(NotFoundError):
    code = 'doctor_not_found'
    default_message = 'Doctor not found'


class AppointmentNotFound(NotFoundError):
    code = 'appointment_not_found'
    default_message = 'Appointment not found'


class AvailabilityNotFound(NotFoundError):
    code = 'availability_not_found'
    default_message = 'Availability not found'


class InvalidManagementToken(NotFoundError):
    code = 'invalid_token'
    default_message = 'Appointment not found or token is invalid'

"""
Video modality and join-window rules.

All comparisons are made on absolute instants; the practice timezone is
only consulted to decide which weekday an appointment falls on.
"""
import math
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from apps.scheduling.models import AppointmentStatusChoices, PlanChoices
from apps.scheduling.timeconv import is_practice_friday


def compute_video_flag(doctor, start_instant, force_video=False) -> bool:
    """
    An appointment is a video consultation when the doctor is on the
    always-video roster, when it falls on a Friday in the practice
    timezone, or when an admin forces it.
    """
    if force_video:
        return True
    if doctor.display_name in settings.VIDEO_DOCTOR_NAMES:
        return True
    return is_practice_friday(start_instant)


def _window(appointment):
    start = appointment.start_instant
    opens = start - timedelta(minutes=settings.JOIN_WINDOW_BEFORE_MINUTES)
    closes = start + timedelta(minutes=settings.JOIN_WINDOW_AFTER_MINUTES)
    return opens, closes


def has_passed(appointment, now=None) -> bool:
    now = now or timezone.now()
    _, closes = _window(appointment)
    return now > closes


def is_joinable(appointment, now=None) -> bool:
    if appointment.plan != PlanChoices.CONSULTATION:
        return False
    if appointment.status == AppointmentStatusChoices.CANCELLED:
        return False
    now = now or timezone.now()
    opens, closes = _window(appointment)
    return opens <= now <= closes


def minutes_until_joinable(appointment, now=None) -> int:
    """Whole minutes (rounded up) until the window opens; negative once open."""
    now = now or timezone.now()
    opens, _ = _window(appointment)
    return math.ceil((opens - now).total_seconds() / 60)


def join_state(appointment, now=None) -> dict:
    now = now or timezone.now()
    can_join = is_joinable(appointment, now)
    return {
        'can_join': can_join,
        'has_passed': has_passed(appointment, now),
        'minutes_until_joinable': minutes_until_joinable(appointment, now),
        'meeting_url': appointment.meeting_url if can_join else None,
    }

"""
Practice-timezone time conversion.

Slots are wall-clock strings (``HH:MM``) on a calendar day, both meant in
the practice timezone (``settings.PRACTICE_TIME_ZONE``). Everything that
compares against "now" converts them to an absolute UTC instant first.

Every function resolves the zone from settings and computes the UTC offset
for the specific date it is given, so daylight-saving changes are handled
per call and nothing is cached between calls.
"""
import re
from datetime import date, datetime, time
from typing import Optional, Tuple, Union

import pytz
from django.conf import settings
from django.utils import timezone

from apps.scheduling.exceptions import InvalidSlotFormat, InvalidTimeInput

SLOT_PATTERN = re.compile(r'([0-1]?[0-9]|2[0-3]):([0-5][0-9])')

DayInput = Union[date, str]


def practice_tz():
    return pytz.timezone(settings.PRACTICE_TIME_ZONE)


def parse_day(value: Optional[DayInput]) -> date:
    """
    Accept a ``date`` or a ``YYYY-MM-DD`` string.

    Raises:
        InvalidTimeInput: missing or unparseable day
    """
    if value is None or value == '':
        raise InvalidTimeInput('Date is required', field='date')
    if isinstance(value, datetime):
        raise InvalidTimeInput('Expected a calendar date, got a datetime', field='date')
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise InvalidTimeInput(f'Invalid date "{value}", expected YYYY-MM-DD', field='date')


def parse_slot(value) -> Tuple[int, int]:
    """
    Split an ``HH:MM`` slot into (hour, minute).

    Raises:
        InvalidSlotFormat: not a string, or outside 00:00-23:59
    """
    if not isinstance(value, str):
        raise InvalidSlotFormat(f'Invalid slot "{value}"', field='slot')
    match = SLOT_PATTERN.fullmatch(value.strip())
    if match is None:
        raise InvalidSlotFormat(f'Invalid slot "{value}"', field='slot')
    return int(match.group(1)), int(match.group(2))


def normalize_slot(value) -> str:
    """``9:00`` -> ``09:00``."""
    hour, minute = parse_slot(value)
    return f'{hour:02d}:{minute:02d}'


def to_absolute_instant(day: DayInput, slot: str) -> datetime:
    """
    UTC instant of ``slot`` on ``day`` in the practice timezone.

    Wall-clock times skipped by a spring-forward change do not exist and
    are rejected. Times repeated by a fall-back change resolve to their
    first occurrence (still on summer time).

    Example:
        >>> to_absolute_instant('2025-07-01', '10:00')   # CEST, UTC+2
        datetime.datetime(2025, 7, 1, 8, 0, tzinfo=<UTC>)
        >>> to_absolute_instant('2025-12-01', '10:00')   # CET, UTC+1
        datetime.datetime(2025, 12, 1, 9, 0, tzinfo=<UTC>)
    """
    calendar_day = parse_day(day)
    hour, minute = parse_slot(slot)
    naive = datetime.combine(calendar_day, time(hour, minute))
    tz = practice_tz()
    try:
        local = tz.localize(naive, is_dst=None)
    except pytz.NonExistentTimeError:
        raise InvalidTimeInput(
            f'{calendar_day.isoformat()} {slot} does not exist in {tz.zone}',
            field='slot',
        )
    except pytz.AmbiguousTimeError:
        local = tz.localize(naive, is_dst=True)
    return local.astimezone(pytz.utc)


def _require_aware(instant: datetime) -> datetime:
    if instant is None or not isinstance(instant, datetime) or timezone.is_naive(instant):
        raise InvalidTimeInput('Expected a timezone-aware instant')
    return instant


def to_practice_time(instant: datetime) -> datetime:
    return _require_aware(instant).astimezone(practice_tz())


def civil_date(instant: datetime) -> date:
    """Calendar day of ``instant`` as seen in the practice timezone."""
    return to_practice_time(instant).date()


def civil_date_key(instant: datetime) -> str:
    """
    ``YYYY-MM-DD`` storage key for ``instant``.

    The key is the practice-timezone calendar day, so
    ``civil_date_key(to_absolute_instant(day, slot)) == day`` for every
    valid slot, including slots just after midnight and on DST change days.
    """
    return civil_date(instant).isoformat()


def is_practice_friday(instant: datetime) -> bool:
    return to_practice_time(instant).weekday() == 4


def practice_now(now: Optional[datetime] = None) -> datetime:
    return to_practice_time(now or timezone.now())


def practice_today(now: Optional[datetime] = None) -> date:
    return practice_now(now).date()

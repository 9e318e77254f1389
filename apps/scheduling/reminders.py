"""
Appointment reminders.

Each appointment gets at most one reminder per window. The marker column
is claimed with a conditional UPDATE before anything is sent, so several
workers running the sweep at once never double-send.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from apps.core.observability import metrics
from apps.integrations.notifications import NotificationKind
from apps.scheduling import side_effects
from apps.scheduling.models import ACTIVE_STATUSES, Appointment
from apps.scheduling.timeconv import practice_today

logger = logging.getLogger(__name__)

REMINDER_BUFFER = timedelta(minutes=30)

# (window label, lead time, marker field, settings toggle)
REMINDER_WINDOWS = [
    ('24h', timedelta(hours=24), 'reminder_24h_sent_at', 'ENABLE_24H_REMINDERS'),
    ('2h', timedelta(hours=2), 'reminder_2h_sent_at', 'ENABLE_2H_REMINDERS'),
]


def _claim(appointment, marker, now):
    return Appointment.objects.filter(
        pk=appointment.pk,
        status__in=ACTIVE_STATUSES,
        **{f'{marker}__isnull': True},
    ).update(**{marker: now}) == 1


@metrics.track_duration(metrics.sweep_duration_seconds.labels(sweep='reminders'))
def send_due_reminders(now=None) -> dict:
    """
    Send reminders for appointments starting in [now + lead, now + lead + 30min].

    Returns:
        {'24h': <count>, '2h': <count>}
    """
    now = now or timezone.now()
    today = practice_today(now)
    sent = {}

    for label, lead, marker, toggle in REMINDER_WINDOWS:
        sent[label] = 0
        if not getattr(settings, toggle, True):
            continue

        window_start = now + lead
        window_end = window_start + REMINDER_BUFFER
        candidates = Appointment.objects.select_related('doctor').filter(
            status__in=ACTIVE_STATUSES,
            day__gte=today,
            day__lte=today + timedelta(days=2),
            **{f'{marker}__isnull': True},
        )

        for appointment in candidates:
            if not (window_start <= appointment.start_instant <= window_end):
                continue
            if not _claim(appointment, marker, now):
                continue
            side_effects.notify(NotificationKind.REMINDER, appointment, window=label)
            sent[label] += 1
            metrics.reminders_sent_total.labels(window=label).inc()

    if any(sent.values()):
        logger.info(
            '[REMINDERS] Sweep finished',
            extra={'event': 'reminders_sent', 'sent_24h': sent['24h'], 'sent_2h': sent['2h']},
        )
    return sent

"""
Patient and practice notifications over Django's mail framework.

Message bodies are plain text assembled from ``template_data``; the
subject line is localized per recipient locale with English as fallback.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail

from apps.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class NotificationKind:
    BOOKING_CONFIRMATION = 'booking_confirmation'
    CANCELLATION_CONFIRMATION = 'cancellation_confirmation'
    RESCHEDULE_NOTICE = 'reschedule_notice'
    REMINDER = 'reminder'
    VIDEO_PRACTICE_NOTICE = 'video_practice_notice'
    REFUND_NOTICE = 'refund_notice'

    ALL = (
        BOOKING_CONFIRMATION,
        CANCELLATION_CONFIRMATION,
        RESCHEDULE_NOTICE,
        REMINDER,
        VIDEO_PRACTICE_NOTICE,
        REFUND_NOTICE,
    )


class NotificationError(ExternalServiceError):
    code = 'notification_failed'
    default_message = 'Notification could not be sent'


SUBJECTS = {
    'en': {
        NotificationKind.BOOKING_CONFIRMATION: 'Your appointment is confirmed',
        NotificationKind.CANCELLATION_CONFIRMATION: 'Your appointment has been cancelled',
        NotificationKind.RESCHEDULE_NOTICE: 'Your appointment has been rescheduled',
        NotificationKind.REMINDER: 'Reminder: your appointment in {window}',
        NotificationKind.VIDEO_PRACTICE_NOTICE: 'New video consultation booked',
        NotificationKind.REFUND_NOTICE: 'Your payment has been refunded',
    },
    'de': {
        NotificationKind.BOOKING_CONFIRMATION: 'Ihr Termin ist bestätigt',
        NotificationKind.CANCELLATION_CONFIRMATION: 'Ihr Termin wurde storniert',
        NotificationKind.RESCHEDULE_NOTICE: 'Ihr Termin wurde verschoben',
        NotificationKind.REMINDER: 'Erinnerung: Ihr Termin in {window}',
        NotificationKind.VIDEO_PRACTICE_NOTICE: 'Neue Videosprechstunde gebucht',
        NotificationKind.REFUND_NOTICE: 'Ihre Zahlung wurde erstattet',
    },
    'bg': {
        NotificationKind.BOOKING_CONFIRMATION: 'Вашият час е потвърден',
        NotificationKind.CANCELLATION_CONFIRMATION: 'Вашият час е отменен',
        NotificationKind.RESCHEDULE_NOTICE: 'Вашият час е преместен',
        NotificationKind.REMINDER: 'Напомняне: вашият час след {window}',
        NotificationKind.VIDEO_PRACTICE_NOTICE: 'Нова видео консултация',
        NotificationKind.REFUND_NOTICE: 'Плащането ви е възстановено',
    },
}

BODY_FIELDS = (
    ('doctor_name', 'Doctor'),
    ('date', 'Date'),
    ('slot', 'Time'),
    ('plan', 'Plan'),
    ('meeting_url', 'Video link'),
    ('management_url', 'Manage your appointment'),
    ('reason', 'Reason'),
)


def build_subject(kind, locale, template_data):
    subjects = SUBJECTS.get(locale) or SUBJECTS['en']
    subject = subjects.get(kind) or SUBJECTS['en'][kind]
    return subject.format(window=template_data.get('window', ''))


def build_body(kind, template_data):
    lines = []
    if template_data.get('patient_name'):
        lines.append(f"{template_data['patient_name']},")
        lines.append('')
    for key, label in BODY_FIELDS:
        value = template_data.get(key)
        if value:
            lines.append(f'{label}: {value}')
    return '\n'.join(lines)


def send(kind, recipient, template_data, locale='de'):
    """
    Send one notification.

    Raises:
        NotificationError: unknown kind, missing recipient, or mail backend failure
    """
    if kind not in NotificationKind.ALL:
        raise NotificationError(f'Unknown notification kind: {kind}')
    if not recipient:
        raise NotificationError('Recipient address missing')

    subject = build_subject(kind, locale, template_data)
    body = build_body(kind, template_data)
    try:
        send_mail(
            subject,
            body,
            settings.DEFAULT_FROM_EMAIL,
            [recipient],
            fail_silently=False,
        )
    except Exception as exc:
        raise NotificationError(f'Mail delivery failed: {exc}') from exc

    logger.info(
        f'[NOTIFY] {kind} sent',
        extra={'event': 'notification_sent', 'kind': kind, 'locale': locale},
    )

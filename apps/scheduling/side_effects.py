"""
Post-commit side effects of booking state changes.

Everything here runs after the state change is durable: ``transaction.on_commit``
queues a Celery task, and the task goes through ``run_best_effort`` so a
failing collaborator never undoes or fails the booking.
"""
import logging
from functools import partial

from django.conf import settings
from django.db import transaction

from apps.integrations import notifications
from apps.integrations.best_effort import run_best_effort
from apps.integrations.notifications import NotificationKind
from apps.integrations.video import get_video_provisioner
from apps.scheduling.models import Appointment, PlanChoices

logger = logging.getLogger(__name__)


def management_url(appointment):
    return f'{settings.FRONTEND_BASE_URL}/appointments/manage/{appointment.management_token}'


def template_data_for(appointment, **extra):
    data = {
        'doctor_name': appointment.doctor.display_name,
        'date': appointment.day.isoformat(),
        'slot': appointment.slot,
        'plan': appointment.plan,
        'patient_name': appointment.patient_name,
        'management_url': management_url(appointment),
        'meeting_url': appointment.meeting_url,
        'is_video': appointment.is_video_appointment,
    }
    data.update(extra)
    return data


def provision_room(appointment_id):
    """
    Create a video room for a consultation that has none yet.

    Returns the updated appointment, or None when no room was created.
    """
    appointment = Appointment.objects.select_related('doctor').filter(pk=appointment_id).first()
    if appointment is None or appointment.plan != PlanChoices.CONSULTATION:
        return None
    if appointment.meeting_url or not appointment.is_active:
        return None

    room = run_best_effort(
        'video', 'create_room',
        get_video_provisioner().create_room, appointment,
        entity_ids={'appointment_id': appointment.id},
    )
    if room is None:
        return None

    Appointment.objects.filter(pk=appointment.pk, meeting_url='').update(
        meeting_room_name=room.room_name,
        meeting_url=room.url,
    )
    appointment.meeting_room_name = room.room_name
    appointment.meeting_url = room.url
    return appointment


def release_room(room_name, appointment_id=None):
    if not room_name:
        return
    run_best_effort(
        'video', 'delete_room',
        get_video_provisioner().delete_room, room_name,
        entity_ids={'appointment_id': appointment_id} if appointment_id else None,
    )


def notify(kind, appointment, recipient=None, **extra):
    recipient = recipient or appointment.patient_email
    return run_best_effort(
        'notification', kind,
        notifications.send, kind, recipient,
        template_data_for(appointment, **extra),
        locale=appointment.locale,
        entity_ids={'appointment_id': appointment.id},
    )


def after_booking(appointment_id):
    """Room, confirmation, and practice notice for a fresh booking."""
    appointment = Appointment.objects.select_related('doctor').filter(pk=appointment_id).first()
    if appointment is None:
        return
    appointment = provision_room(appointment_id) or appointment
    notify(NotificationKind.BOOKING_CONFIRMATION, appointment)
    if appointment.is_video_appointment and settings.PRACTICE_NOTIFICATION_EMAIL:
        notify(
            NotificationKind.VIDEO_PRACTICE_NOTICE,
            appointment,
            recipient=settings.PRACTICE_NOTIFICATION_EMAIL,
        )


def after_reschedule(appointment_id, old_room_name=''):
    appointment = Appointment.objects.select_related('doctor').filter(pk=appointment_id).first()
    if appointment is None:
        return
    release_room(old_room_name, appointment_id)
    appointment = provision_room(appointment_id) or appointment
    notify(NotificationKind.RESCHEDULE_NOTICE, appointment)


def after_cancel(appointment_id):
    appointment = Appointment.objects.select_related('doctor').filter(pk=appointment_id).first()
    if appointment is None:
        return
    release_room(appointment.meeting_room_name, appointment_id)
    notify(
        NotificationKind.CANCELLATION_CONFIRMATION,
        appointment,
        reason=appointment.cancel_reason,
    )


def schedule_after_booking(appointment):
    from apps.scheduling.tasks import run_after_booking
    transaction.on_commit(partial(run_after_booking.delay, str(appointment.pk)))


def schedule_after_reschedule(appointment, old_room_name=''):
    from apps.scheduling.tasks import run_after_reschedule
    transaction.on_commit(partial(run_after_reschedule.delay, str(appointment.pk), old_room_name))


def schedule_after_cancel(appointment):
    from apps.scheduling.tasks import run_after_cancel
    transaction.on_commit(partial(run_after_cancel.delay, str(appointment.pk)))

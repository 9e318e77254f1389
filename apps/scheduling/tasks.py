"""
Celery tasks for scheduling: periodic sweeps (see CELERY_BEAT_SCHEDULE)
and the post-commit collaborator calls queued by side_effects.
"""
from celery import shared_task

from apps.core.observability import metrics
from apps.scheduling import lifecycle, side_effects
from apps.scheduling.reminders import send_due_reminders


@shared_task(name='apps.scheduling.tasks.auto_complete_appointments')
def auto_complete_appointments():
    with metrics.sweep_duration_seconds.labels(sweep='auto_complete').time():
        completed = lifecycle.auto_complete_due(trigger='sweep')
    return {'completed': completed}


@shared_task(name='apps.scheduling.tasks.send_appointment_reminders')
def send_appointment_reminders():
    return send_due_reminders()


@shared_task(name='apps.scheduling.tasks.run_after_booking')
def run_after_booking(appointment_id):
    """Room, confirmation and practice notice, off the request thread."""
    side_effects.after_booking(appointment_id)


@shared_task(name='apps.scheduling.tasks.run_after_reschedule')
def run_after_reschedule(appointment_id, old_room_name=''):
    side_effects.after_reschedule(appointment_id, old_room_name)


@shared_task(name='apps.scheduling.tasks.run_after_cancel')
def run_after_cancel(appointment_id):
    side_effects.after_cancel(appointment_id)

"""
Periodic integration repair (see CELERY_BEAT_SCHEDULE).
"""
import logging

from celery import shared_task
from django.utils import timezone

from apps.scheduling.models import ACTIVE_STATUSES, Appointment, PlanChoices
from apps.scheduling.side_effects import provision_room
from apps.scheduling.timeconv import practice_today

logger = logging.getLogger(__name__)


@shared_task(name='apps.integrations.tasks.provision_missing_rooms')
def provision_missing_rooms():
    """
    Retry video rooms for upcoming consultations whose provisioning failed
    at booking time.
    """
    candidates = Appointment.objects.filter(
        plan=PlanChoices.CONSULTATION,
        status__in=ACTIVE_STATUSES,
        meeting_url='',
        day__gte=practice_today(timezone.now()),
    ).values_list('pk', flat=True)

    provisioned = 0
    for appointment_id in candidates:
        if provision_room(appointment_id) is not None:
            provisioned += 1
    if provisioned:
        logger.info(f'[VIDEO] Provisioned {provisioned} missing room(s)')
    return {'provisioned': provisioned}

"""
Periodic payment housekeeping (see CELERY_BEAT_SCHEDULE).
"""
from celery import shared_task

from apps.payments import services


@shared_task(name='apps.payments.tasks.expire_stale_payments')
def expire_stale_payments():
    return services.expire_stale_payments()

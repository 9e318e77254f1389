"""
Celery application for background sweeps (auto-completion, reminders,
payment expiry, room provisioning retries).
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('telemed')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

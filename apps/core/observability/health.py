"""
Health check endpoints.

Provides /healthz and /readyz endpoints for monitoring.
"""
import logging

from django.conf import settings
from django.db import connection
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


class HealthzView(View):
    """
    Liveness check. Does not check dependencies.
    """

    def get(self, request):
        health_data = {
            'status': 'ok',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }

        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            health_data['commit'] = commit_hash

        return JsonResponse(health_data, status=200)


class ReadyzView(View):
    """
    Readiness check.

    Only the database gates readiness. Collaborator configuration is
    reported so operators can spot a deployment missing Stripe or Daily
    credentials, but booking still works without video rooms.
    """

    def get(self, request):
        checks = {
            'database': self._check_database(),
        }
        configured = {
            'payment_processor': bool(settings.STRIPE_SECRET_KEY and settings.STRIPE_WEBHOOK_SECRET),
            'video_provisioner': bool(settings.DAILY_API_KEY),
        }

        all_healthy = all(checks.values())

        response_data = {
            'status': 'ready' if all_healthy else 'not_ready',
            'checks': checks,
            'configured': configured,
        }

        return JsonResponse(response_data, status=200 if all_healthy else 503)

    def _check_database(self):
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
                return True
        except Exception as e:
            logger.error(
                'Database health check failed',
                extra={
                    'event': 'health_check_failed',
                    'check': 'database',
                    'error': str(e)
                }
            )
            return False

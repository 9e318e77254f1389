"""
Tests for the Stripe webhook endpoint.

Signatures are produced the way Stripe does (HMAC-SHA256 over
"<timestamp>.<payload>" with the endpoint secret) so the real
verification in the stripe SDK runs.
"""
import hashlib
import hmac
import json
import time
from datetime import datetime
from unittest.mock import patch

import pytest
import pytz
from django.conf import settings
from rest_framework import status

from apps.authz.principal import PatientPrincipal
from apps.payments import services
from apps.payments.models import Payment, PaymentStatusChoices
from apps.scheduling.models import Appointment
from apps.scheduling.services import AvailabilityService

WEBHOOK_URL = '/api/integrations/stripe/webhook/'
NOW = datetime(2025, 11, 1, 9, 0, tzinfo=pytz.utc)


def _event(event_type, obj):
    return {
        'id': 'evt_test_1',
        'object': 'event',
        'type': event_type,
        'data': {'object': obj},
    }


def _post(client, event, secret=None):
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(
        (secret or settings.STRIPE_WEBHOOK_SECRET).encode(),
        f'{timestamp}.{payload}'.encode(),
        hashlib.sha256,
    ).hexdigest()
    return client.post(
        WEBHOOK_URL,
        data=payload,
        content_type='application/json',
        HTTP_STRIPE_SIGNATURE=f't={timestamp},v1={signature}',
    )


@pytest.fixture
def open_payment(doctor, patient_user, stripe_gateway):
    AvailabilityService.publish(doctor, '2025-11-10', ['09:30'], now=NOW)
    services.open_session(
        PatientPrincipal(user_id=patient_user.id), doctor.id, '2025-11-10', '09:30', now=NOW,
    )
    return Payment.objects.get(stripe_session_id='cs_test_123')


@pytest.mark.django_db
class TestStripeWebhook:

    def test_missing_signature_is_rejected(self, api_client):
        response = api_client.post(WEBHOOK_URL, data='{}', content_type='application/json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_wrong_signature_is_rejected(self, api_client, open_payment):
        event = _event('checkout.session.completed', {'id': 'cs_test_123', 'object': 'checkout.session'})
        response = _post(api_client, event, secret='whsec_someone_else')
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not Appointment.objects.exists()

    def test_checkout_completed_materializes_appointment(self, api_client, open_payment):
        event = _event('checkout.session.completed', {
            'id': 'cs_test_123',
            'object': 'checkout.session',
            'payment_intent': 'pi_test_123',
            'customer': 'cus_test_123',
            'payment_status': 'paid',
        })

        # Pin the clock inside the session window
        with patch('apps.payments.services.timezone.now', return_value=NOW):
            response = _post(api_client, event)

        assert response.status_code == status.HTTP_200_OK
        open_payment.refresh_from_db()
        assert open_payment.status == PaymentStatusChoices.COMPLETED
        assert open_payment.appointment is not None

        # Stripe redelivers; nothing changes
        with patch('apps.payments.services.timezone.now', return_value=NOW):
            assert _post(api_client, event).status_code == status.HTTP_200_OK
        assert Appointment.objects.count() == 1

    def test_session_expired(self, api_client, open_payment):
        response = _post(api_client, _event('checkout.session.expired', {
            'id': 'cs_test_123',
            'object': 'checkout.session',
        }))
        assert response.status_code == status.HTTP_200_OK
        open_payment.refresh_from_db()
        assert open_payment.status == PaymentStatusChoices.CANCELLED

    def test_unhandled_event_type_is_acknowledged(self, api_client, db):
        response = _post(api_client, _event('customer.created', {'id': 'cus_1', 'object': 'customer'}))
        assert response.status_code == status.HTTP_200_OK

    def test_handler_failure_returns_500_for_retry(self, api_client, open_payment):
        event = _event('checkout.session.expired', {'id': 'cs_test_123', 'object': 'checkout.session'})
        with patch.dict(services.EVENT_HANDLERS, {'checkout.session.expired': _explode}):
            response = _post(api_client, event)
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR


def _explode(*args, **kwargs):
    raise RuntimeError('database unavailable')

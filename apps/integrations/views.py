"""Integration views - Stripe webhook."""
import logging

import stripe
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from apps.core.observability import metrics
from apps.payments import services as payment_services
from apps.payments.processor import get_gateway

logger = logging.getLogger(__name__)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def stripe_webhook(request):
    """
    Stripe webhook endpoint.

    Verifies the ``Stripe-Signature`` header against the raw body before
    anything else is read, then dispatches:
    - checkout.session.completed: materialize the appointment or refund
    - checkout.session.expired: cancel the pending payment
    - payment_intent.succeeded: acknowledged and logged, no state change
    - payment_intent.payment_failed: fail the payment, cancel its appointment

    Returns:
    - 400: missing or invalid signature, malformed payload
    - 200: event handled or ignored
    - 500: handler failed; Stripe retries and handlers are idempotent
    """
    payload = request.body
    signature = request.headers.get('Stripe-Signature', '')
    if not signature:
        metrics.payment_webhook_events_total.labels(event_type='unknown', result='invalid_signature').inc()
        return Response({'error': 'Missing Stripe-Signature header'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        event = get_gateway().construct_event(payload, signature)
    except stripe.SignatureVerificationError:
        logger.warning('[STRIPE_WEBHOOK] Signature verification failed')
        metrics.payment_webhook_events_total.labels(event_type='unknown', result='invalid_signature').inc()
        return Response({'error': 'Invalid signature'}, status=status.HTTP_400_BAD_REQUEST)
    except ValueError:
        logger.warning('[STRIPE_WEBHOOK] Malformed payload')
        metrics.payment_webhook_events_total.labels(event_type='unknown', result='invalid_payload').inc()
        return Response({'error': 'Invalid payload'}, status=status.HTTP_400_BAD_REQUEST)

    event_type = event['type']
    logger.info(
        f'[STRIPE_WEBHOOK] Event received: {event_type}',
        extra={'event': 'stripe_webhook_received', 'stripe_event_id': event.get('id'), 'event_type': event_type},
    )

    try:
        handled = payment_services.dispatch_event(event)
    except Exception as e:
        logger.error(f'[STRIPE_WEBHOOK] Error processing event {event_type}: {e}', exc_info=True)
        return Response({'error': 'Webhook processing failed'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if not handled:
        logger.info(f'[STRIPE_WEBHOOK] Unhandled event type: {event_type}')
    return Response({'received': True})

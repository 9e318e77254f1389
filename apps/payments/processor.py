"""
Stripe gateway.

Thin wrapper around the ``stripe`` SDK so the reconciliation services can
be tested with the gateway mocked out. Every SDK failure surfaces as
``PaymentProcessorError``; bad webhook signatures surface as
``stripe.SignatureVerificationError`` for the webhook view to reject.
"""
import json
import logging
from typing import Optional

import stripe
from django.conf import settings

from apps.payments.exceptions import PaymentProcessorError

logger = logging.getLogger(__name__)

REFUND_REASON = 'duplicate'


class StripeGateway:
    """
    Checkout sessions, refunds and webhook verification.
    """

    def __init__(self, api_key=None, webhook_secret=None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        if self.api_key:
            stripe.api_key = self.api_key
        else:
            logger.warning('[STRIPE] API key not configured')

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def create_checkout_session(
        self,
        amount,
        currency,
        doctor,
        day,
        slot,
        metadata,
        expires_at,
        success_url,
        cancel_url,
        customer_email=None,
    ):
        """
        Open a one-off card payment for a consultation.

        Args:
            amount: price in minor units (cents / stotinki)
            expires_at: aware datetime after which Stripe expires the session
        """
        if not self.is_configured:
            raise PaymentProcessorError('Stripe not configured')

        try:
            return stripe.checkout.Session.create(
                payment_method_types=['card'],
                mode='payment',
                line_items=[{
                    'price_data': {
                        'currency': currency.lower(),
                        'unit_amount': amount,
                        'product_data': {
                            'name': 'Medical Consultation',
                            'description': f'Consultation with Dr. {doctor.display_name} on {day.isoformat()} at {slot}',
                            'images': [doctor.photo_url] if doctor.photo_url else [],
                        },
                    },
                    'quantity': 1,
                }],
                customer_email=customer_email,
                metadata=metadata,
                expires_at=int(expires_at.timestamp()),
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as e:
            logger.error(f'[STRIPE] Checkout session creation failed: {e}')
            raise PaymentProcessorError(f'Checkout session creation failed: {e}') from e

    def retrieve_session(self, session_id):
        if not self.is_configured:
            raise PaymentProcessorError('Stripe not configured')
        try:
            return stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.error(f'[STRIPE] Session retrieval failed: {e}')
            raise PaymentProcessorError(f'Session retrieval failed: {e}') from e

    def refund(self, payment_intent, metadata: Optional[dict] = None):
        """Refund the full captured amount of ``payment_intent``."""
        if not payment_intent:
            raise PaymentProcessorError('No payment intent to refund')
        try:
            return stripe.Refund.create(
                payment_intent=payment_intent,
                reason=REFUND_REASON,
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            logger.error(f'[STRIPE] Refund failed: {e}')
            raise PaymentProcessorError(f'Refund failed: {e}') from e

    def construct_event(self, payload, signature):
        """
        Verify a webhook delivery and return the event as a plain dict.

        Raises:
            stripe.SignatureVerificationError: bad or missing signature
            ValueError: payload is not valid JSON
        """
        stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return json.loads(payload)


_gateway: Optional[StripeGateway] = None


def get_gateway() -> StripeGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway

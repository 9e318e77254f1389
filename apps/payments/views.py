"""
Payments API: checkout sessions, status, manual reconciliation, history.
"""
from rest_framework import generics, status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from apps.authz.principal import principal_for
from apps.payments import services
from apps.payments.serializers import CheckoutSessionSerializer, PaymentSerializer


@api_view(['POST'])
def create_session(request):
    """
    POST /api/v1/payments/sessions/

    Opens a Stripe Checkout Session. No appointment exists until the
    payment is confirmed.
    """
    serializer = CheckoutSessionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    result = services.open_session(
        principal_for(request),
        doctor_id=data['doctor_id'],
        day=data['day'],
        slot=data['slot'],
        reason=data.get('reason', ''),
        notes=data.get('notes', ''),
        country=data.get('country') or None,
        accept_language=request.headers.get('Accept-Language', ''),
        success_url=data.get('success_url'),
        cancel_url=data.get('cancel_url'),
    )
    return Response(result, status=status.HTTP_201_CREATED)


@api_view(['GET'])
def session_status(request, session_id):
    """GET /api/v1/payments/sessions/{session_id}/"""
    return Response(services.get_session_status(principal_for(request), session_id))


@api_view(['POST'])
def reconcile(request, session_id):
    """
    POST /api/v1/payments/sessions/{session_id}/reconcile/

    Manual fallback for a lost webhook.
    """
    payment = services.reconcile_session(principal_for(request), session_id)
    return Response(services.serialize_status(payment))


class PaymentHistoryView(generics.ListAPIView):
    """GET /api/v1/payments/history/"""
    serializer_class = PaymentSerializer

    def get_queryset(self):
        return services.payment_history(principal_for(self.request)).order_by('-created_at')

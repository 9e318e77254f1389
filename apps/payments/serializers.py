"""
Payment serializers.
"""
from rest_framework import serializers

from apps.payments.models import Payment


class CheckoutSessionSerializer(serializers.Serializer):
    doctor_id = serializers.CharField()
    day = serializers.CharField()
    slot = serializers.CharField()
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    country = serializers.CharField(required=False, allow_blank=True)
    success_url = serializers.URLField(required=False)
    cancel_url = serializers.URLField(required=False)


class PaymentSerializer(serializers.ModelSerializer):
    doctor_name = serializers.CharField(source='doctor.display_name', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id',
            'stripe_session_id',
            'doctor',
            'doctor_name',
            'appointment_day',
            'appointment_slot',
            'plan',
            'amount',
            'currency',
            'country',
            'status',
            'appointment',
            'refund_id',
            'error_code',
            'expires_at',
            'created_at',
            'completed_at',
            'refunded_at',
        ]
        read_only_fields = fields

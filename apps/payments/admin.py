from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['stripe_session_id', 'patient', 'doctor', 'appointment_day', 'appointment_slot', 'amount', 'currency', 'status', 'error_code']
    list_filter = ['status', 'currency', 'country', 'error_code']
    search_fields = ['stripe_session_id', 'stripe_payment_intent_id', 'patient__email', 'doctor__display_name']
    autocomplete_fields = ['patient', 'doctor']
    date_hierarchy = 'created_at'
    readonly_fields = [
        'id', 'stripe_session_id', 'stripe_payment_intent_id', 'stripe_customer_id',
        'appointment', 'refund_id', 'metadata',
        'created_at', 'completed_at', 'failed_at', 'cancelled_at', 'refunded_at', 'updated_at',
    ]

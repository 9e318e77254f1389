"""
Payments models: payment (one per Stripe Checkout Session)
"""
import uuid

from django.db import models


class PaymentStatusChoices(models.TextChoices):
    """
    Payment status:
    - pending: session opened, nothing captured yet
    - completed: captured and turned into an appointment
    - failed: processor declined, or capture could not be reconciled
    - cancelled: session expired or abandoned
    - refunded: captured but returned because the slot was gone
    """
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'
    CANCELLED = 'cancelled', 'Cancelled'
    REFUNDED = 'refunded', 'Refunded'


TERMINAL_PAYMENT_STATUSES = [
    PaymentStatusChoices.FAILED,
    PaymentStatusChoices.CANCELLED,
    PaymentStatusChoices.REFUNDED,
]


class PaymentErrorCodes:
    SLOT_CONFLICT = 'slot_conflict'
    DUPLICATE_KEY = 'duplicate_key'
    REFUND_FAILED = 'refund_failed'
    CREATION_AND_REFUND_FAILED = 'creation_and_refund_failed'
    APPOINTMENT_CREATION_FAILED = 'appointment_creation_failed'
    SESSION_EXPIRED = 'session_expired'
    EXPIRED_CLEANUP = 'expired_cleanup'
    PAYMENT_NOT_PENDING = 'payment_not_pending'


class Payment(models.Model):
    """
    Reconciliation record for a pay-first booking.

    Holds every booking fact needed to create the appointment once the
    processor confirms the capture. ``appointment`` is only set when the
    booking materialized.

    BUSINESS RULES:
    - exactly one Payment per Checkout Session (unique stripe_session_id)
    - an Appointment is linked to at most one Payment
    - status only changes through webhooks, manual reconciliation or the
      expiry sweep
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    patient = models.ForeignKey(
        'authz.User',
        on_delete=models.PROTECT,
        related_name='payments'
    )
    doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.PROTECT,
        related_name='payments'
    )

    stripe_session_id = models.CharField(max_length=255, unique=True)
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True, db_index=True)
    stripe_customer_id = models.CharField(max_length=255, blank=True)

    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3)
    country = models.CharField(max_length=50)

    appointment_day = models.DateField()
    appointment_slot = models.CharField(max_length=5)
    plan = models.CharField(max_length=20, default='consultation')
    reason = models.TextField(max_length=500, blank=True)
    notes = models.TextField(max_length=1000, blank=True)

    status = models.CharField(
        max_length=20,
        choices=PaymentStatusChoices.choices,
        default=PaymentStatusChoices.PENDING
    )
    appointment = models.OneToOneField(
        'scheduling.Appointment',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='payment'
    )

    refund_id = models.CharField(max_length=255, blank=True)
    error_code = models.CharField(max_length=50, blank=True)
    error_message = models.TextField(blank=True)

    expires_at = models.DateTimeField(blank=True, null=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    failed_at = models.DateTimeField(blank=True, null=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)
    refunded_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payment'
        verbose_name = 'Payment'
        verbose_name_plural = 'Payments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='idx_payment_status'),
            models.Index(fields=['patient'], name='idx_payment_patient'),
            models.Index(fields=['doctor', 'appointment_day'], name='idx_payment_doctor_day'),
        ]

    def __str__(self):
        return f"Payment {self.stripe_session_id} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in TERMINAL_PAYMENT_STATUSES

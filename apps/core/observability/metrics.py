"""
Metrics instrumentation wrapper around prometheus_client.
"""
import logging
import time
from functools import wraps

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


class MetricsRegistry:
    """
    Central metrics registry for the booking platform.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        """Initialize metrics registry."""
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        """Create a counter metric."""
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        """Create a histogram metric."""
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _create_gauge(self, name, description, labels=None):
        """Create a gauge metric."""
        return Gauge(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = self._create_counter(
            'http_requests_total',
            'Total HTTP requests',
            ['path', 'method', 'status']
        )

        self.exceptions_total = self._create_counter(
            'exceptions_total',
            'Total exceptions',
            ['exception_type', 'location']
        )

        # ===================================================================
        # Booking Metrics
        # ===================================================================
        self.booking_attempts_total = self._create_counter(
            'booking_attempts_total',
            'Booking attempts',
            ['flow', 'result']  # flow: direct|paid, result: created|slot_taken|not_available|invalid
        )

        self.slot_conflicts_total = self._create_counter(
            'slot_conflicts_total',
            'Slot conflicts detected',
            ['stage']  # precheck|constraint|reschedule|reconciliation
        )

        self.availability_changes_total = self._create_counter(
            'availability_changes_total',
            'Availability mutations',
            ['operation']
        )

        # ===================================================================
        # Lifecycle Metrics
        # ===================================================================
        self.appointment_transitions_total = self._create_counter(
            'appointment_transitions_total',
            'Appointment status transitions',
            ['from_status', 'to_status', 'actor']
        )

        self.appointment_auto_completed_total = self._create_counter(
            'appointment_auto_completed_total',
            'Appointments completed automatically after their start',
            ['trigger']  # sweep|lazy
        )

        self.appointment_reschedules_total = self._create_counter(
            'appointment_reschedules_total',
            'Appointment reschedules',
            ['result']
        )

        self.reminders_sent_total = self._create_counter(
            'reminders_sent_total',
            'Appointment reminders dispatched',
            ['window']  # 24h|2h
        )

        # ===================================================================
        # Payment Metrics
        # ===================================================================
        self.payment_sessions_total = self._create_counter(
            'payment_sessions_total',
            'Checkout sessions opened',
            ['country', 'result']
        )

        self.payment_webhook_events_total = self._create_counter(
            'payment_webhook_events_total',
            'Payment processor webhook events',
            ['event_type', 'result']
        )

        self.payment_reconciliation_total = self._create_counter(
            'payment_reconciliation_total',
            'Outcomes of reconciling a captured payment',
            ['outcome']  # materialized|duplicate|refunded|refund_failed|rejected
        )

        self.payment_refunds_total = self._create_counter(
            'payment_refunds_total',
            'Refunds issued',
            ['reason', 'result']
        )

        self.payments_expired_total = self._create_counter(
            'payments_expired_total',
            'Pending payments cancelled by the expiry sweep'
        )

        # ===================================================================
        # External Collaborators
        # ===================================================================
        self.external_call_failures_total = self._create_counter(
            'external_call_failures_total',
            'Failed calls to external collaborators',
            ['service', 'operation']  # video|notification|payment
        )

        # ===================================================================
        # Background Sweeps
        # ===================================================================
        self.sweep_duration_seconds = self._create_histogram(
            'sweep_duration_seconds',
            'Duration of periodic sweeps',
            ['sweep'],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
        )

    def track_duration(self, histogram_metric):
        """
        Decorator to track function duration.

        Usage:
            @metrics.track_duration(metrics.sweep_duration_seconds.labels(sweep='reminders'))
            def send_due_reminders(now):
                ...
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    duration = time.time() - start_time
                    histogram_metric.observe(duration)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()

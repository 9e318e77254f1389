"""
Tests for pay-first booking reconciliation.

Business rules:
- no appointment exists while the patient is paying
- a confirmed payment either becomes exactly one appointment or is refunded
- replayed confirmations never create a second appointment or refund twice
- after the session window closes no confirmation may create an appointment
- a failed refund is recorded for operator follow-up and can be retried
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytz
from django.core import mail
from rest_framework import status

from apps.authz.principal import AdminPrincipal, DoctorPrincipal, PatientPrincipal
from apps.core.exceptions import NotPermitted
from apps.payments import services
from apps.payments.exceptions import PaymentNotCompleted, PaymentNotFound, PaymentProcessorError
from apps.payments.models import Payment, PaymentErrorCodes, PaymentStatusChoices
from apps.scheduling.exceptions import SlotTaken
from apps.scheduling.models import ActorChoices, Appointment, AppointmentStatusChoices
from apps.scheduling.services import AvailabilityService, BookingService

NOW = datetime(2025, 11, 1, 9, 0, tzinfo=pytz.utc)
PAYMENTS_URL = '/api/v1/payments/'


def _session(session_id='cs_test_123', **extra):
    data = {'id': session_id, 'payment_intent': 'pi_test_123', 'customer': 'cus_test_123'}
    data.update(extra)
    return data


@pytest.fixture
def schedule(doctor):
    AvailabilityService.publish(doctor, '2025-11-10', ['09:00', '09:30'], now=NOW)


@pytest.fixture
def open_payment(schedule, doctor, patient_user, stripe_gateway):
    services.open_session(
        PatientPrincipal(user_id=patient_user.id), doctor.id, '2025-11-10', '09:30',
        reason='Back pain', now=NOW,
    )
    return Payment.objects.get(stripe_session_id='cs_test_123')


@pytest.mark.django_db
class TestOpenSession:

    def test_session_carries_price_and_no_appointment_exists(self, schedule, doctor, patient_user, stripe_gateway):
        result = services.open_session(
            PatientPrincipal(user_id=patient_user.id), doctor.id, '2025-11-10', '09:30', now=NOW,
        )

        assert result['session_id'] == 'cs_test_123'
        assert result['session_url'].startswith('https://checkout.stripe.com/')
        assert (result['amount'], result['currency'], result['country']) == ('60.00', 'EUR', 'Germany')

        kwargs = stripe_gateway.create_checkout_session.call_args.kwargs
        assert kwargs['amount'] == 6000
        assert kwargs['expires_at'] == NOW + timedelta(minutes=30)
        assert kwargs['metadata']['slot'] == '09:30'

        payment = Payment.objects.get()
        assert payment.status == PaymentStatusChoices.PENDING
        assert payment.amount == Decimal('60.00')
        assert payment.appointment is None
        assert not Appointment.objects.exists()

    def test_bulgarian_browser_gets_bulgarian_pricing(self, schedule, doctor, other_patient_user, stripe_gateway):
        result = services.open_session(
            PatientPrincipal(user_id=other_patient_user.id), doctor.id, '2025-11-10', '09:30',
            accept_language='bg-BG,bg;q=0.9', now=NOW,
        )
        assert (result['country'], result['currency']) == ('Bulgaria', 'BGN')

    def test_only_patients_pay(self, schedule, doctor, stripe_gateway):
        with pytest.raises(NotPermitted):
            services.open_session(
                DoctorPrincipal(user_id=doctor.user_id, doctor_id=doctor.id), doctor.id, '2025-11-10', '09:30',
                now=NOW,
            )

    def test_held_slot_is_rejected_before_stripe(self, schedule, doctor, patient_user, other_patient_user,
                                                 stripe_gateway):
        BookingService.book_direct(
            PatientPrincipal(user_id=other_patient_user.id), doctor.id, '2025-11-10', '09:30', now=NOW,
        )
        with pytest.raises(SlotTaken):
            services.open_session(
                PatientPrincipal(user_id=patient_user.id), doctor.id, '2025-11-10', '09:30', now=NOW,
            )
        stripe_gateway.create_checkout_session.assert_not_called()
        assert not Payment.objects.exists()

    def test_processor_outage_leaves_no_payment(self, schedule, doctor, patient_user, stripe_gateway):
        stripe_gateway.create_checkout_session.side_effect = PaymentProcessorError('down')
        with pytest.raises(PaymentProcessorError):
            services.open_session(
                PatientPrincipal(user_id=patient_user.id), doctor.id, '2025-11-10', '09:30', now=NOW,
            )
        assert not Payment.objects.exists()


@pytest.mark.django_db
class TestPaymentConfirmed:

    def test_confirmation_materializes_appointment(self, open_payment, patient_user,
                                                   django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))

        assert payment.status == PaymentStatusChoices.COMPLETED
        assert payment.stripe_payment_intent_id == 'pi_test_123'
        appointment = payment.appointment
        assert appointment.status == AppointmentStatusChoices.UPCOMING
        assert appointment.confirmed_at == NOW + timedelta(minutes=5)
        assert appointment.patient == patient_user
        assert appointment.reason == 'Back pain'
        assert (appointment.day.isoformat(), appointment.slot) == ('2025-11-10', '09:30')
        assert [m.to for m in mail.outbox] == [['patient@test.com']]

    def test_replayed_confirmation_is_a_no_op(self, open_payment, stripe_gateway):
        first = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))
        second = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=6))

        assert first.appointment_id == second.appointment_id
        assert Appointment.objects.count() == 1
        stripe_gateway.refund.assert_not_called()

    def test_unknown_session_is_ignored(self, db, stripe_gateway):
        assert services.on_payment_confirmed(_session('cs_unknown'), now=NOW) is None

    def test_slot_taken_while_paying_is_refunded(self, open_payment, doctor, other_patient_user, stripe_gateway,
                                                 django_capture_on_commit_callbacks):
        BookingService.book_direct(
            PatientPrincipal(user_id=other_patient_user.id), doctor.id, '2025-11-10', '09:30', now=NOW,
        )

        with django_capture_on_commit_callbacks(execute=True):
            payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))

        assert payment.status == PaymentStatusChoices.REFUNDED
        assert payment.error_code == PaymentErrorCodes.SLOT_CONFLICT
        assert payment.refund_id == 're_test_123'
        assert payment.appointment is None
        assert Appointment.objects.filter(day='2025-11-10', slot='09:30').count() == 1
        stripe_gateway.refund.assert_called_once()
        assert stripe_gateway.refund.call_args.args[0] == 'pi_test_123'
        assert [m.to for m in mail.outbox] == [['patient@test.com']]

        # Replay refunds nothing more
        services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=6))
        stripe_gateway.refund.assert_called_once()

    def test_pending_appointment_on_slot_hits_constraint_and_refunds(self, open_payment, appointment_factory,
                                                                     other_patient_user, stripe_gateway):
        appointment_factory(
            patient=other_patient_user,
            day=datetime(2025, 11, 10).date(),
            slot='09:30',
            status=AppointmentStatusChoices.PENDING,
        )

        payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))

        assert payment.status == PaymentStatusChoices.REFUNDED
        assert payment.error_code == PaymentErrorCodes.DUPLICATE_KEY
        assert Appointment.objects.count() == 1

    def test_failed_refund_is_recorded_and_retried(self, open_payment, doctor, other_patient_user, stripe_gateway):
        BookingService.book_direct(
            PatientPrincipal(user_id=other_patient_user.id), doctor.id, '2025-11-10', '09:30', now=NOW,
        )
        stripe_gateway.refund.side_effect = PaymentProcessorError('stripe down')

        payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))

        assert payment.status == PaymentStatusChoices.FAILED
        assert payment.error_code == PaymentErrorCodes.REFUND_FAILED
        assert 'refund failed' in payment.error_message

        stripe_gateway.refund.side_effect = None
        payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=10))

        assert payment.status == PaymentStatusChoices.REFUNDED
        assert stripe_gateway.refund.call_count == 2

    def test_confirmation_after_window_is_refunded(self, open_payment, stripe_gateway):
        payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=31))

        assert payment.status == PaymentStatusChoices.REFUNDED
        assert payment.error_code == PaymentErrorCodes.PAYMENT_NOT_PENDING
        assert not Appointment.objects.exists()

    def test_confirmation_after_expiry_sweep_is_refunded(self, open_payment, stripe_gateway):
        services.expire_stale_payments(now=NOW + timedelta(minutes=45))
        open_payment.refresh_from_db()
        assert open_payment.status == PaymentStatusChoices.CANCELLED

        payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=50))

        assert payment.status == PaymentStatusChoices.REFUNDED
        assert not Appointment.objects.exists()


@pytest.mark.django_db
class TestOtherProcessorEvents:

    def test_session_expired(self, open_payment):
        services.on_session_expired({'id': 'cs_test_123'}, now=NOW + timedelta(minutes=30))
        open_payment.refresh_from_db()
        assert open_payment.status == PaymentStatusChoices.CANCELLED
        assert open_payment.error_code == PaymentErrorCodes.SESSION_EXPIRED

    def test_session_expired_does_not_touch_completed_payment(self, open_payment):
        services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))
        services.on_session_expired({'id': 'cs_test_123'}, now=NOW + timedelta(minutes=30))
        open_payment.refresh_from_db()
        assert open_payment.status == PaymentStatusChoices.COMPLETED

    def test_intent_succeeded_never_creates_appointment(self, open_payment):
        Payment.objects.filter(pk=open_payment.pk).update(stripe_payment_intent_id='pi_test_123')
        services.on_payment_intent_succeeded({'id': 'pi_test_123'}, now=NOW)
        open_payment.refresh_from_db()
        assert open_payment.status == PaymentStatusChoices.PENDING
        assert not Appointment.objects.exists()

    def test_intent_succeeded_leaves_completed_payment_untouched(self, open_payment):
        payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))
        completed_at = payment.completed_at

        services.on_payment_intent_succeeded({'id': 'pi_test_123'}, now=NOW + timedelta(minutes=6))

        payment.refresh_from_db()
        assert payment.status == PaymentStatusChoices.COMPLETED
        assert payment.completed_at == completed_at
        assert Appointment.objects.count() == 1

    def test_payment_failed_cancels_linked_appointment(self, open_payment):
        payment = services.on_payment_confirmed(_session(), now=NOW + timedelta(minutes=5))

        services.on_payment_failed(
            {'id': 'pi_test_123', 'last_payment_error': {'code': 'card_declined', 'message': 'Declined'}},
            now=NOW + timedelta(minutes=6),
        )

        payment.refresh_from_db()
        assert payment.status == PaymentStatusChoices.FAILED
        assert payment.error_code == 'card_declined'
        appointment = Appointment.objects.get(pk=payment.appointment_id)
        assert appointment.status == AppointmentStatusChoices.CANCELLED
        assert appointment.cancelled_by == ActorChoices.SYSTEM
        assert appointment.cancel_reason == 'Payment failed'


@pytest.mark.django_db
class TestHousekeeping:

    def test_expire_stale_payments_only_touches_expired(self, schedule, doctor, patient_user, stripe_gateway):
        principal = PatientPrincipal(user_id=patient_user.id)
        services.open_session(principal, doctor.id, '2025-11-10', '09:00', now=NOW)
        stripe_gateway.create_checkout_session.return_value = {'id': 'cs_test_fresh', 'url': 'https://x'}
        services.open_session(principal, doctor.id, '2025-11-10', '09:30', now=NOW + timedelta(minutes=20))

        result = services.expire_stale_payments(now=NOW + timedelta(minutes=35))

        assert result['payments'] == 1
        assert Payment.objects.get(stripe_session_id='cs_test_123').error_code == PaymentErrorCodes.EXPIRED_CLEANUP
        assert Payment.objects.get(stripe_session_id='cs_test_fresh').status == PaymentStatusChoices.PENDING


@pytest.mark.django_db
class TestManualReconciliation:

    def test_unpaid_session_is_not_reconciled(self, open_payment, patient_user, stripe_gateway):
        stripe_gateway.retrieve_session.return_value = _session(payment_status='unpaid')
        with pytest.raises(PaymentNotCompleted):
            services.reconcile_session(PatientPrincipal(user_id=patient_user.id), 'cs_test_123')

    def test_paid_session_is_reconciled(self, open_payment, admin_user, stripe_gateway):
        stripe_gateway.retrieve_session.return_value = _session(payment_status='paid')
        payment = services.reconcile_session(
            AdminPrincipal(user_id=admin_user.id), 'cs_test_123', now=NOW + timedelta(minutes=5),
        )
        assert payment.status == PaymentStatusChoices.COMPLETED
        assert payment.appointment is not None

    def test_other_patient_cannot_see_session(self, open_payment, other_patient_user, stripe_gateway):
        with pytest.raises(PaymentNotFound):
            services.reconcile_session(PatientPrincipal(user_id=other_patient_user.id), 'cs_test_123')
        stripe_gateway.retrieve_session.assert_not_called()


@pytest.mark.django_db
class TestPaymentsAPI:

    def test_create_session_endpoint(self, patient_client, availability, doctor, booking_day, stripe_gateway):
        response = patient_client.post(
            f'{PAYMENTS_URL}sessions/',
            {'doctor_id': str(doctor.id), 'day': booking_day.isoformat(), 'slot': '10:00'},
            format='json',
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['session_id'] == 'cs_test_123'

        status_response = patient_client.get(f'{PAYMENTS_URL}sessions/cs_test_123/')
        assert status_response.data['status'] == 'pending'
        assert status_response.data['appointment_id'] is None

    def test_invalid_country(self, patient_client, availability, doctor, booking_day, stripe_gateway):
        response = patient_client.post(
            f'{PAYMENTS_URL}sessions/',
            {'doctor_id': str(doctor.id), 'day': booking_day.isoformat(), 'slot': '10:00', 'country': 'France'},
            format='json',
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error']['code'] == 'booking_validation_error'

    def test_history_is_scoped_to_patient(self, patient_client, other_patient_client, open_payment):
        assert patient_client.get(f'{PAYMENTS_URL}history/').data['count'] == 1
        assert other_patient_client.get(f'{PAYMENTS_URL}history/').data['count'] == 0

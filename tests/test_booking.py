"""
Tests for direct booking.

Business rules:
- a slot can only be booked when published and free
- at most one non-cancelled appointment per (doctor, day, slot), enforced
  by the database, not only by the pre-check
- post-commit side effects (room, confirmation mail) never fail a booking
"""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
import pytz
from django.core import mail
from django.db import IntegrityError, transaction
from django.test import override_settings
from rest_framework import status

from apps.authz.principal import AdminPrincipal, DoctorPrincipal, PatientPrincipal
from apps.core.exceptions import NotPermitted
from apps.scheduling.exceptions import NotAvailable, PastDate, SlotTaken
from apps.scheduling.models import Appointment, AppointmentStatusChoices, PlanChoices
from apps.scheduling.services import AvailabilityService, BookingService

APPOINTMENTS_URL = '/api/v1/scheduling/appointments/'


@pytest.mark.django_db
class TestBookDirect:

    def test_patient_books_published_slot(self, availability, doctor, patient_user, booking_day):
        appointment = BookingService.book_direct(
            PatientPrincipal(user_id=patient_user.id), doctor.id, booking_day, '10:00',
        )
        assert appointment.status == AppointmentStatusChoices.UPCOMING
        assert appointment.patient == patient_user
        assert appointment.patient_email == 'patient@test.com'
        assert appointment.patient_name == 'Maria Ivanova'
        assert len(appointment.management_token) == 64

    @override_settings(BOOKING_REQUIRES_DOCTOR_CONFIRMATION=True)
    def test_confirmation_workflow_starts_pending(self, availability, doctor, patient_user, booking_day):
        appointment = BookingService.book_direct(
            PatientPrincipal(user_id=patient_user.id), doctor.id, booking_day, '10:00',
        )
        assert appointment.status == AppointmentStatusChoices.PENDING

    def test_unpublished_slot_lists_alternatives(self, availability, doctor, patient_user, booking_day):
        with pytest.raises(NotAvailable) as excinfo:
            BookingService.book_direct(
                PatientPrincipal(user_id=patient_user.id), doctor.id, booking_day, '14:00',
            )
        assert excinfo.value.details['available_slots'] == ['09:00', '10:00', '11:00']

    def test_second_booking_of_same_slot_is_rejected(self, availability, doctor, patient_user,
                                                     other_patient_user, booking_day):
        BookingService.book_direct(PatientPrincipal(user_id=patient_user.id), doctor.id, booking_day, '10:00')
        with pytest.raises(SlotTaken):
            BookingService.book_direct(
                PatientPrincipal(user_id=other_patient_user.id), doctor.id, booking_day, '10:00',
            )
        assert Appointment.objects.filter(doctor=doctor, day=booking_day, slot='10:00').count() == 1

    def test_cancelled_appointment_does_not_hold_slot(self, availability, appointment_factory, doctor,
                                                      other_patient_user, booking_day):
        appointment_factory(slot='10:00', status=AppointmentStatusChoices.CANCELLED)
        appointment = BookingService.book_direct(
            PatientPrincipal(user_id=other_patient_user.id), doctor.id, booking_day, '10:00',
        )
        assert appointment.is_active

    def test_past_day_is_rejected(self, doctor, patient_user, booking_day):
        with pytest.raises(PastDate):
            BookingService.book_direct(
                PatientPrincipal(user_id=patient_user.id), doctor.id, booking_day - timedelta(days=30), '10:00',
            )

    def test_doctor_cannot_book(self, availability, doctor, booking_day):
        with pytest.raises(NotPermitted):
            BookingService.book_direct(
                DoctorPrincipal(user_id=doctor.user_id, doctor_id=doctor.id), doctor.id, booking_day, '10:00',
            )

    def test_admin_books_for_inline_contact(self, availability, doctor, admin_user, booking_day):
        appointment = BookingService.book_direct(
            AdminPrincipal(user_id=admin_user.id),
            doctor.id,
            booking_day,
            '11:00',
            plan=PlanChoices.PRESCRIPTION,
            patient_email='walkin@test.com',
            patient_name='Walk In',
        )
        assert appointment.patient is None
        assert appointment.patient_email == 'walkin@test.com'
        assert appointment.plan == PlanChoices.PRESCRIPTION

    def test_only_admin_can_force_video(self, availability, doctor, patient_user, booking_day):
        with pytest.raises(NotPermitted):
            BookingService.book_direct(
                PatientPrincipal(user_id=patient_user.id), doctor.id, booking_day, '10:00', force_video=True,
            )


@pytest.mark.django_db
class TestSlotUniquenessConstraint:

    def test_database_rejects_second_active_appointment(self, availability, appointment_factory):
        appointment_factory(slot='10:00')
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                appointment_factory(slot='10:00')

    def test_database_allows_rebooking_after_cancel(self, availability, appointment_factory):
        appointment_factory(slot='10:00', status=AppointmentStatusChoices.CANCELLED)
        appointment_factory(slot='10:00', status=AppointmentStatusChoices.CANCELLED)
        appointment_factory(slot='10:00')
        assert Appointment.objects.filter(slot='10:00').count() == 3


@pytest.mark.django_db
class TestBookingAPI:

    def test_booking_returns_appointment_and_sends_confirmation(
        self, patient_client, availability, doctor, booking_day, video_provisioner,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            response = patient_client.post(
                APPOINTMENTS_URL,
                {'doctor_id': str(doctor.id), 'day': booking_day.isoformat(), 'slot': '10:00'},
                format='json',
            )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['status'] == 'upcoming'
        assert response.data['slot'] == '10:00'

        appointment = Appointment.objects.get(pk=response.data['id'])
        assert appointment.meeting_url == 'https://telemed.daily.co/telemedker-consult-test'
        video_provisioner.create_room.assert_called_once()
        assert [m.to for m in mail.outbox] == [['patient@test.com']]

    def test_collaborators_are_queued_after_commit(
        self, patient_client, availability, doctor, booking_day, video_provisioner,
        django_capture_on_commit_callbacks,
    ):
        with patch('apps.scheduling.tasks.run_after_booking.delay') as delay:
            with django_capture_on_commit_callbacks(execute=False) as callbacks:
                response = patient_client.post(
                    APPOINTMENTS_URL,
                    {'doctor_id': str(doctor.id), 'day': booking_day.isoformat(), 'slot': '10:00'},
                    format='json',
                )

            # Nothing leaves the request before commit
            delay.assert_not_called()
            video_provisioner.create_room.assert_not_called()

            for callback in callbacks:
                callback()

        delay.assert_called_once_with(response.data['id'])
        video_provisioner.create_room.assert_not_called()
        assert mail.outbox == []

    def test_failed_side_effects_do_not_fail_booking(
        self, patient_client, availability, doctor, booking_day, video_provisioner,
        django_capture_on_commit_callbacks,
    ):
        video_provisioner.create_room.side_effect = RuntimeError('daily down')
        with django_capture_on_commit_callbacks(execute=True):
            response = patient_client.post(
                APPOINTMENTS_URL,
                {'doctor_id': str(doctor.id), 'day': booking_day.isoformat(), 'slot': '10:00'},
                format='json',
            )

        assert response.status_code == status.HTTP_201_CREATED
        assert Appointment.objects.get(pk=response.data['id']).meeting_url == ''

    def test_taken_slot_returns_choose_another_slot(self, patient_client, appointment, doctor, booking_day):
        response = patient_client.post(
            APPOINTMENTS_URL,
            {'doctor_id': str(doctor.id), 'day': booking_day.isoformat(), 'slot': '09:00'},
            format='json',
        )
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['error']['code'] == 'slot_taken'
        assert response.data['error']['outcome'] == 'choose_another_slot'

    def test_unknown_doctor(self, patient_client, booking_day):
        response = patient_client.post(
            APPOINTMENTS_URL,
            {'doctor_id': 'not-a-uuid', 'day': booking_day.isoformat(), 'slot': '10:00'},
            format='json',
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error']['code'] == 'doctor_not_found'

    def test_anonymous_cannot_book(self, api_client, availability, doctor, booking_day):
        response = api_client.post(
            APPOINTMENTS_URL,
            {'doctor_id': str(doctor.id), 'day': booking_day.isoformat(), 'slot': '10:00'},
            format='json',
        )
        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)


@pytest.mark.django_db
class TestDirectBookingScenario:
    """Two patients race for the same published slot."""

    NOW = datetime(2025, 11, 1, 9, 0, tzinfo=pytz.utc)

    def test_first_booking_wins_and_other_slot_stays_free(self, doctor, patient_user, other_patient_user):
        AvailabilityService.publish(doctor, '2025-11-10', ['09:00', '09:30'], now=self.NOW)

        first = BookingService.book_direct(
            PatientPrincipal(user_id=patient_user.id), doctor.id, '2025-11-10', '09:00', now=self.NOW,
        )
        assert first.status == AppointmentStatusChoices.UPCOMING

        with pytest.raises(SlotTaken):
            BookingService.book_direct(
                PatientPrincipal(user_id=other_patient_user.id), doctor.id, '2025-11-10', '09:00', now=self.NOW,
            )

        second = BookingService.book_direct(
            PatientPrincipal(user_id=other_patient_user.id), doctor.id, '2025-11-10', '09:30', now=self.NOW,
        )
        assert second.slot == '09:30'

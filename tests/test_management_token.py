"""
Tests for management links.

Holders of an appointment's management token can view, cancel and
reschedule it without an account. Lookups are rate limited per IP and an
unknown token is indistinguishable from a missing appointment.
"""
from datetime import timedelta

import pytest
from django.core.cache import cache
from rest_framework import status

from apps.scheduling.models import Appointment, AppointmentStatusChoices
from apps.scheduling.timeconv import practice_today
from apps.scheduling.views import TokenManagementThrottle

MANAGE_URL = '/api/v1/scheduling/manage/'


@pytest.mark.django_db
class TestManagementLink:

    def test_view_hides_contact_details(self, api_client, appointment):
        response = api_client.get(f'{MANAGE_URL}{appointment.management_token}/')
        assert response.status_code == status.HTTP_200_OK
        assert response.data['slot'] == '09:00'
        assert response.data['doctor_name'] == 'Anna Berger'
        assert 'patient_email' not in response.data
        assert response.data['join']['can_join'] is False

    def test_unknown_token(self, api_client, appointment):
        response = api_client.get(f'{MANAGE_URL}{"0" * 64}/')
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error']['code'] == 'invalid_token'
        assert response.data['error']['outcome'] == 'link_invalid'

    def test_cancel_by_token(self, api_client, appointment):
        response = api_client.post(
            f'{MANAGE_URL}{appointment.management_token}/cancel/', {'reason': 'Travelling'}, format='json',
        )
        assert response.status_code == status.HTTP_200_OK
        appointment.refresh_from_db()
        assert appointment.status == AppointmentStatusChoices.CANCELLED
        assert appointment.cancelled_by == 'patient'

    def test_reschedule_rotates_token(self, api_client, appointment, booking_day):
        old_token = appointment.management_token
        response = api_client.post(
            f'{MANAGE_URL}{old_token}/reschedule/',
            {'day': booking_day.isoformat(), 'slot': '11:00'},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        new_token = response.data['management_token']
        assert new_token != old_token
        assert Appointment.objects.get(pk=appointment.pk).management_token == new_token

        # The old link stops working
        assert api_client.get(f'{MANAGE_URL}{old_token}/').status_code == status.HTTP_404_NOT_FOUND
        assert api_client.get(f'{MANAGE_URL}{new_token}/').data['slot'] == '11:00'

    def test_available_slots_for_rescheduling(self, api_client, appointment, doctor, booking_day):
        response = api_client.get(
            f'{MANAGE_URL}available-slots/{doctor.id}/', {'date': booking_day.isoformat()},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data['results'][0]['slots'] == ['10:00', '11:00']

    def test_cannot_cancel_after_start(self, api_client, appointment_factory):
        past = appointment_factory(day=practice_today() - timedelta(days=1), slot='09:00')
        response = api_client.post(
            f'{MANAGE_URL}{past.management_token}/cancel/', {}, format='json',
        )
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['error']['code'] == 'past_appointment'


@pytest.mark.django_db
class TestManagementThrottle:

    def test_lookups_are_rate_limited(self, api_client, appointment, monkeypatch):
        monkeypatch.setattr(TokenManagementThrottle, 'THROTTLE_RATES', {'token_management': '3/hour'})
        cache.clear()

        for _ in range(3):
            assert api_client.get(f'{MANAGE_URL}{"0" * 64}/').status_code == status.HTTP_404_NOT_FOUND

        response = api_client.get(f'{MANAGE_URL}{appointment.management_token}/')
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.data['error']['outcome'] == 'retry_later'

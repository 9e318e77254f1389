"""
Global test fixtures for pytest.

Provides reusable fixtures for API testing:
- Authenticated API clients by role (admin, doctor, patient)
- Model instances (Doctor, Availability, Appointment)
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from apps.authz.models import Doctor, Role, RoleChoices, User, UserRole
from apps.integrations.video import RoomHandle
from apps.scheduling.models import Appointment, AppointmentStatusChoices, Availability
from apps.scheduling.timeconv import practice_today


@pytest.fixture(autouse=True)
def _clear_throttle_cache():
    """Throttle counters live in the cache; start every test clean."""
    cache.clear()
    yield
    cache.clear()


def _create_user(email, role=None, **extra):
    user = User.objects.create_user(email=email, password='testpass123', is_active=True, **extra)
    if role is not None:
        role_obj, _ = Role.objects.get_or_create(name=role)
        UserRole.objects.create(user=user, role=role_obj)
    return user


def _client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


# ============================================================================
# Users and clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_user(db):
    return _create_user('admin@test.com', RoleChoices.ADMIN, is_staff=True)


@pytest.fixture
def admin_client(admin_user):
    return _client_for(admin_user)


@pytest.fixture
def doctor(db):
    """Active doctor whose consultations are not on the video roster."""
    user = _create_user('doctor@test.com', RoleChoices.DOCTOR, first_name='Anna', last_name='Berger')
    return Doctor.objects.create(user=user, display_name='Anna Berger', specialty='General Medicine')


@pytest.fixture
def other_doctor(db):
    user = _create_user('colleague@test.com', RoleChoices.DOCTOR)
    return Doctor.objects.create(user=user, display_name='Jonas Keller')


@pytest.fixture
def video_doctor(db):
    """Doctor on the always-video roster (VIDEO_DOCTOR_NAMES)."""
    user = _create_user('video@test.com', RoleChoices.DOCTOR)
    return Doctor.objects.create(user=user, display_name='M. Cem Samar')


@pytest.fixture
def doctor_client(doctor):
    return _client_for(doctor.user)


@pytest.fixture
def other_doctor_client(other_doctor):
    return _client_for(other_doctor.user)


@pytest.fixture
def patient_user(db):
    return _create_user(
        'patient@test.com',
        RoleChoices.PATIENT,
        first_name='Maria',
        last_name='Ivanova',
        phone='+49 151 000000',
        country='Germany',
        locale='de',
    )


@pytest.fixture
def other_patient_user(db):
    return _create_user('other.patient@test.com', RoleChoices.PATIENT)


@pytest.fixture
def patient_client(patient_user):
    return _client_for(patient_user)


@pytest.fixture
def other_patient_client(other_patient_user):
    return _client_for(other_patient_user)


# ============================================================================
# Schedule
# ============================================================================

@pytest.fixture
def booking_day():
    """A Monday at least a week ahead, so nothing is in the past or on a Friday."""
    day = practice_today() + timedelta(days=7)
    return day + timedelta(days=(0 - day.weekday()) % 7)


@pytest.fixture
def availability(doctor, booking_day):
    return Availability.objects.create(doctor=doctor, day=booking_day, slots=['09:00', '10:00', '11:00'])


@pytest.fixture
def appointment_factory(doctor, patient_user, booking_day):
    """Create appointments directly, bypassing booking rules."""
    def _create_appointment(**kwargs):
        defaults = {
            'patient': patient_user,
            'patient_email': patient_user.email,
            'patient_name': patient_user.full_name,
            'doctor': doctor,
            'day': booking_day,
            'slot': '09:00',
            'status': AppointmentStatusChoices.UPCOMING,
        }
        defaults.update(kwargs)
        return Appointment.objects.create(**defaults)

    return _create_appointment


@pytest.fixture
def appointment(availability, appointment_factory):
    return appointment_factory()


# ============================================================================
# External collaborators
# ============================================================================

@pytest.fixture(autouse=True)
def video_provisioner():
    """Daily.co is never called from tests; rooms come from this mock."""
    provisioner = MagicMock()
    provisioner.create_room.return_value = RoomHandle(
        room_name='telemedker-consult-test',
        url='https://telemed.daily.co/telemedker-consult-test',
    )
    with patch('apps.scheduling.side_effects.get_video_provisioner', return_value=provisioner):
        yield provisioner


@pytest.fixture
def stripe_gateway():
    """Stripe as seen by the payment services: sessions open, refunds succeed."""
    gateway = MagicMock()
    gateway.create_checkout_session.return_value = {
        'id': 'cs_test_123',
        'url': 'https://checkout.stripe.com/c/pay/cs_test_123',
    }
    gateway.refund.return_value = {'id': 're_test_123'}
    with patch('apps.payments.services.get_gateway', return_value=gateway):
        yield gateway

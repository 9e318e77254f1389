"""
Tests for reminder dispatch.

Each active appointment gets at most one reminder per window (24h, 2h).
The sent-marker lives on the appointment, so repeated or concurrent
sweeps never double-send.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.core import mail
from django.test import override_settings

from apps.scheduling import lifecycle
from apps.scheduling.models import ActorChoices, AppointmentStatusChoices
from apps.scheduling.reminders import send_due_reminders


@pytest.mark.django_db
class TestReminders:

    def test_24h_reminder_is_sent_once(self, appointment):
        now = appointment.start_instant - timedelta(hours=24, minutes=10)

        assert send_due_reminders(now=now) == {'24h': 1, '2h': 0}
        assert send_due_reminders(now=now) == {'24h': 0, '2h': 0}

        appointment.refresh_from_db()
        assert appointment.reminder_24h_sent_at == now
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == ['patient@test.com']
        assert '24h' in mail.outbox[0].subject

    def test_2h_reminder(self, appointment):
        now = appointment.start_instant - timedelta(hours=2, minutes=5)
        assert send_due_reminders(now=now) == {'24h': 0, '2h': 1}

    def test_outside_window_nothing_is_sent(self, appointment):
        assert send_due_reminders(now=appointment.start_instant - timedelta(hours=25)) == {'24h': 0, '2h': 0}
        assert send_due_reminders(now=appointment.start_instant - timedelta(hours=23)) == {'24h': 0, '2h': 0}
        assert mail.outbox == []

    def test_cancelled_appointment_gets_no_reminder(self, appointment_factory, availability):
        appointment = appointment_factory(status=AppointmentStatusChoices.CANCELLED)
        assert send_due_reminders(now=appointment.start_instant - timedelta(hours=24, minutes=10))['24h'] == 0

    @override_settings(ENABLE_24H_REMINDERS=False)
    def test_window_can_be_disabled(self, appointment):
        now = appointment.start_instant - timedelta(hours=24, minutes=10)
        assert send_due_reminders(now=now) == {'24h': 0, '2h': 0}

    def test_mail_failure_keeps_marker(self, appointment):
        now = appointment.start_instant - timedelta(hours=2, minutes=5)
        with patch('apps.integrations.notifications.send_mail', side_effect=ConnectionRefusedError('smtp down')):
            assert send_due_reminders(now=now)['2h'] == 1

        appointment.refresh_from_db()
        assert appointment.reminder_2h_sent_at == now

    def test_reschedule_clears_marker(self, appointment, booking_day):
        now = appointment.start_instant - timedelta(hours=24, minutes=10)
        send_due_reminders(now=now)

        moved = lifecycle.reschedule(appointment.id, booking_day, '11:00', ActorChoices.ADMIN, now=now)

        assert moved.reminder_24h_sent_at is None
        assert send_due_reminders(now=moved.start_instant - timedelta(hours=24, minutes=10))['24h'] == 1

"""
Daily.co video room provisioning.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import requests
from django.conf import settings
from django.utils import timezone

from apps.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

ROOM_GRACE_AFTER_START = timedelta(hours=3)
ROOM_MIN_LIFETIME = timedelta(hours=24)


class VideoProvisioningError(ExternalServiceError):
    code = 'video_provisioning_failed'
    default_message = 'Video room could not be created'


@dataclass(frozen=True)
class RoomHandle:
    room_name: str
    url: str


class DailyVideoProvisioner:
    """
    Creates and deletes Daily.co rooms for consultation appointments.

    Rooms expire three hours after the appointment starts, but never
    sooner than 24 hours from creation.
    """

    def __init__(self, api_key=None, api_url=None, timeout=None):
        self.api_key = api_key if api_key is not None else settings.DAILY_API_KEY
        self.api_url = (api_url or settings.DAILY_API_URL).rstrip('/')
        self.timeout = timeout or settings.DAILY_REQUEST_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

    def create_room(self, appointment, now=None) -> RoomHandle:
        if not self.is_configured:
            raise VideoProvisioningError('Daily.co API key not configured')

        now = now or timezone.now()
        room_name = f'{settings.DAILY_ROOM_PREFIX}-{uuid.uuid4()}'
        expires_at = max(appointment.start_instant + ROOM_GRACE_AFTER_START, now + ROOM_MIN_LIFETIME)
        payload = {
            'name': room_name,
            'privacy': 'public',
            'properties': {
                'exp': int(expires_at.timestamp()),
                'enable_screenshare': True,
                'enable_chat': True,
                'start_video_off': False,
                'start_audio_off': False,
                'max_participants': 10,
            },
        }

        try:
            response = requests.post(
                f'{self.api_url}/rooms',
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise VideoProvisioningError(f'Daily.co room creation failed: {exc}') from exc

        logger.info(
            '[DAILY] Room created',
            extra={'event': 'video_room_created', 'appointment_id': str(appointment.id)},
        )
        return RoomHandle(room_name=data.get('name', room_name), url=data['url'])

    def delete_room(self, room_name) -> bool:
        if not self.is_configured or not room_name:
            return False
        try:
            response = requests.delete(
                f'{self.api_url}/rooms/{room_name}',
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise VideoProvisioningError(f'Daily.co room deletion failed: {exc}') from exc
        return response.ok


_provisioner: Optional[DailyVideoProvisioner] = None


def get_video_provisioner() -> DailyVideoProvisioner:
    """Get the process-wide provisioner instance."""
    global _provisioner
    if _provisioner is None:
        _provisioner = DailyVideoProvisioner()
    return _provisioner

"""
Management command to ensure demo users exist with the right roles.

Usage:
    python manage.py ensure_demo_users

Creates an admin, two doctors (one of them on the video-only list) and a
patient. Idempotent and safe to run multiple times.

FOR DEVELOPMENT ONLY - DO NOT USE IN PRODUCTION
"""
from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.authz.models import Doctor, Role, RoleChoices, User, UserRole


DEMO_PASSWORD = 'demo-pass-123'


def _demo_users():
    video_doctor = settings.VIDEO_DOCTOR_NAMES[0] if settings.VIDEO_DOCTOR_NAMES else 'Video Doctor'
    return [
        {'email': 'admin@telemed.local', 'first_name': 'Practice', 'last_name': 'Admin',
         'role': RoleChoices.ADMIN, 'is_staff': True},
        {'email': 'doctor@telemed.local', 'first_name': 'Anna', 'last_name': 'Weber',
         'role': RoleChoices.DOCTOR, 'display_name': 'Anna Weber', 'specialty': 'General Medicine'},
        {'email': 'video.doctor@telemed.local', 'first_name': 'Cem', 'last_name': 'Samar',
         'role': RoleChoices.DOCTOR, 'display_name': video_doctor, 'specialty': 'Internal Medicine'},
        {'email': 'patient@telemed.local', 'first_name': 'Petra', 'last_name': 'Ivanova',
         'role': RoleChoices.PATIENT, 'country': 'Bulgaria', 'locale': 'bg'},
    ]


class Command(BaseCommand):
    help = 'Ensure demo users exist and have correct roles assigned'

    @transaction.atomic
    def handle(self, *args, **options):
        for role_choice in RoleChoices:
            Role.objects.get_or_create(name=role_choice.value)

        for data in _demo_users():
            user, created = User.objects.get_or_create(
                email=data['email'],
                defaults={
                    'first_name': data['first_name'],
                    'last_name': data['last_name'],
                    'is_staff': data.get('is_staff', False),
                    'country': data.get('country', ''),
                    'locale': data.get('locale', 'de'),
                },
            )
            if created:
                user.set_password(DEMO_PASSWORD)
                user.save(update_fields=['password'])
                self.stdout.write(self.style.SUCCESS(f'  ✓ Created user: {user.email}'))
            else:
                self.stdout.write(f'  - User exists: {user.email}')

            role = Role.objects.get(name=data['role'])
            UserRole.objects.get_or_create(user=user, role=role)

            if data['role'] == RoleChoices.DOCTOR:
                Doctor.objects.update_or_create(
                    user=user,
                    defaults={
                        'display_name': data['display_name'],
                        'specialty': data['specialty'],
                        'is_active': True,
                    },
                )

        self.stdout.write(self.style.SUCCESS('✓ Done'))

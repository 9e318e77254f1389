"""
Authz serializers for Doctor.
"""
from django.conf import settings
from rest_framework import serializers
from apps.authz.models import Doctor


class DoctorListSerializer(serializers.ModelSerializer):
    """
    Serializer for the public doctor directory.

    ``video_only`` tells the booking UI that every consultation with this
    doctor is held by video.
    """
    video_only = serializers.SerializerMethodField()

    class Meta:
        model = Doctor
        fields = [
            'id',
            'display_name',
            'specialty',
            'photo_url',
            'is_active',
            'video_only',
        ]
        read_only_fields = fields

    def get_video_only(self, obj):
        return obj.display_name in settings.VIDEO_DOCTOR_NAMES


class DoctorWriteSerializer(serializers.ModelSerializer):
    """
    Serializer for Doctor create/update (Admin only).
    """

    class Meta:
        model = Doctor
        fields = [
            'id',
            'user',
            'display_name',
            'specialty',
            'photo_url',
            'is_active',
        ]
        read_only_fields = ['id']

    def validate_user(self, value):
        """Validate user doesn't already have a doctor profile."""
        if self.instance is None and Doctor.objects.filter(user=value).exists():
            raise serializers.ValidationError(
                f"User {value.email} already has a doctor profile"
            )
        return value

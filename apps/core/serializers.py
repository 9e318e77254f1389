"""
Core serializers.
"""
from rest_framework import serializers


class UserProfileSerializer(serializers.Serializer):
    """Profile of the authenticated caller."""
    id = serializers.UUIDField()
    email = serializers.EmailField()
    is_active = serializers.BooleanField()
    roles = serializers.ListField(child=serializers.CharField())
    principal = serializers.CharField()
    doctor_id = serializers.UUIDField(allow_null=True)

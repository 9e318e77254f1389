"""
Core views - current user profile and Prometheus metrics.
"""
from django.http import HttpResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.authz.permissions import IsAdmin
from apps.authz.principal import resolve_principal
from .serializers import UserProfileSerializer


class CurrentUserView(APIView):
    """
    Current authenticated user profile endpoint.

    GET /api/auth/me/ - Returns profile of the authenticated user.

    The frontend calls this after login to decide which screens to show:
    ``principal`` is one of ``admin``, ``doctor`` or ``patient`` and
    ``doctor_id`` is set for doctors.

    Response format:
    {
        "id": "uuid",
        "email": "user@example.com",
        "is_active": true,
        "roles": ["doctor"],
        "principal": "doctor",
        "doctor_id": "uuid"
    }
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = request.user
        principal = resolve_principal(user)

        profile_data = {
            'id': user.id,
            'email': user.email,
            'is_active': user.is_active,
            'roles': list(user.user_roles.values_list('role__name', flat=True)),
            'principal': principal.kind,
            'doctor_id': getattr(principal, 'doctor_id', None),
        }

        serializer = UserProfileSerializer(profile_data)
        return Response(serializer.data, status=status.HTTP_200_OK)


class MetricsView(APIView):
    """
    GET /api/ops/metrics - Prometheus exposition format (Admin only).
    """
    permission_classes = [IsAdmin]

    def get(self, request):
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)

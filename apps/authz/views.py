"""
Authz views for Doctor.
"""
from django.db.models import Q
from rest_framework import viewsets
from apps.authz.models import Doctor
from apps.authz.principal import AdminPrincipal, principal_for
from apps.authz.serializers import DoctorListSerializer, DoctorWriteSerializer
from apps.authz.permissions import DoctorPermission


class DoctorViewSet(viewsets.ModelViewSet):
    """
    ViewSet for Doctor endpoints.

    Endpoints:
    - GET /api/v1/doctors/ - List doctors (active only unless admin asks otherwise)
    - GET /api/v1/doctors/{id}/ - Get doctor detail
    - POST /api/v1/doctors/ - Create doctor profile (Admin only)
    - PATCH /api/v1/doctors/{id}/ - Update doctor profile (Admin only)

    Query parameters:
    - ?include_inactive=true - Include inactive doctors (Admin only)
    - ?q=search_term - Search by display_name or specialty
    """
    permission_classes = [DoctorPermission]
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_queryset(self):
        queryset = Doctor.objects.all()

        include_inactive = self.request.query_params.get('include_inactive', 'false').lower() == 'true'
        if not (include_inactive and isinstance(principal_for(self.request), AdminPrincipal)):
            queryset = queryset.filter(is_active=True)

        q = self.request.query_params.get('q')
        if q:
            queryset = queryset.filter(Q(display_name__icontains=q) | Q(specialty__icontains=q))

        return queryset.order_by('display_name')

    def get_serializer_class(self):
        if self.action in ('list', 'retrieve'):
            return DoctorListSerializer
        return DoctorWriteSerializer

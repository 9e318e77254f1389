"""
Scheduling permissions.
"""
from rest_framework import permissions

from apps.authz.principal import AdminPrincipal, DoctorPrincipal, principal_for


class AvailabilityPermission(permissions.BasePermission):
    """
    Availability management.

    - Doctor: own availability only (scoped in the view queryset)
    - Admin: any doctor's availability
    - Patient: none (patients read bookable slots from the public endpoint)
    """

    def has_permission(self, request, view):
        return isinstance(principal_for(request), (AdminPrincipal, DoctorPrincipal))


class AppointmentPermission(permissions.BasePermission):
    """
    Any authenticated principal; row-level visibility is decided by
    ``lifecycle.visible_appointments`` / ``lifecycle.authorize``.
    """

    def has_permission(self, request, view):
        return principal_for(request) is not None

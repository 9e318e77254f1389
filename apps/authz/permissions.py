"""
Authz permissions shared by the booking endpoints.
"""
from rest_framework import permissions

from apps.authz.principal import AdminPrincipal, DoctorPrincipal, principal_for


class IsAdmin(permissions.BasePermission):
    """Only callers resolving to an admin principal."""

    def has_permission(self, request, view):
        return isinstance(principal_for(request), AdminPrincipal)


class IsDoctorOrAdmin(permissions.BasePermission):
    """Doctors (with an active profile) and admins."""

    def has_permission(self, request, view):
        return isinstance(principal_for(request), (AdminPrincipal, DoctorPrincipal))


class DoctorPermission(permissions.BasePermission):
    """
    Permission for Doctor directory endpoints.

    - Anyone: Read-only (patients pick a doctor before signing in)
    - Admin: Full CRUD
    """

    def has_permission(self, request, view):
        if request.method in permissions.SAFE_METHODS:
            return True
        return isinstance(principal_for(request), AdminPrincipal)

    def has_object_permission(self, request, view, obj):
        return self.has_permission(request, view)

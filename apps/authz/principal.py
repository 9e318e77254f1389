"""
Caller identity as a closed set of principal types.

Every authenticated request is resolved once into exactly one of
``AdminPrincipal``, ``DoctorPrincipal`` or ``PatientPrincipal``. Services
branch on the principal type instead of inspecting user attributes.
"""
import uuid
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from apps.authz.models import RoleChoices


@dataclass(frozen=True)
class AdminPrincipal:
    user_id: uuid.UUID
    kind: ClassVar[str] = RoleChoices.ADMIN.value


@dataclass(frozen=True)
class DoctorPrincipal:
    user_id: uuid.UUID
    doctor_id: uuid.UUID
    kind: ClassVar[str] = RoleChoices.DOCTOR.value


@dataclass(frozen=True)
class PatientPrincipal:
    user_id: uuid.UUID
    kind: ClassVar[str] = RoleChoices.PATIENT.value


Principal = Union[AdminPrincipal, DoctorPrincipal, PatientPrincipal]


def resolve_principal(user) -> Principal:
    """
    Map an authenticated user to its principal.

    Admin wins over doctor. A doctor role without an active doctor profile
    does not grant doctor rights. Anyone else is a patient.
    """
    roles = set(user.user_roles.values_list('role__name', flat=True))

    if user.is_superuser or RoleChoices.ADMIN in roles:
        return AdminPrincipal(user_id=user.id)

    if RoleChoices.DOCTOR in roles:
        doctor = getattr(user, 'doctor', None)
        if doctor is not None and doctor.is_active:
            return DoctorPrincipal(user_id=user.id, doctor_id=doctor.id)

    return PatientPrincipal(user_id=user.id)


def principal_for(request) -> Optional[Principal]:
    """
    Resolve and memoize the principal on the request.

    Returns None for anonymous callers.
    """
    from apps.core.observability.correlation import bind_principal

    if not request.user or not request.user.is_authenticated:
        return None
    principal = getattr(request, '_principal', None)
    if principal is None:
        principal = resolve_principal(request.user)
        request._principal = principal
        bind_principal(principal)
    return principal

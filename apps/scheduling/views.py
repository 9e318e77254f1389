"""
Scheduling API: bookable slots, availability management, appointments
and management-link (token) endpoints.
"""
import logging

from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from apps.authz.models import Doctor
from apps.authz.principal import AdminPrincipal, DoctorPrincipal, PatientPrincipal, principal_for
from apps.core.exceptions import NotPermitted
from apps.scheduling import lifecycle
from apps.scheduling.exceptions import AppointmentNotFound, BookingValidationError, DoctorNotFound
from apps.scheduling.models import ActorChoices, Availability
from apps.scheduling.permissions import AppointmentPermission, AvailabilityPermission
from apps.scheduling.serializers import (
    AppointmentSerializer,
    AvailabilitySerializer,
    AvailabilityCreateSerializer,
    AvailabilityUpdateSerializer,
    BookingSerializer,
    CancelSerializer,
    CompleteSerializer,
    CopyScheduleSerializer,
    ManagedAppointmentSerializer,
    RescheduleSerializer,
    SlotSerializer,
)
from apps.scheduling.services import AvailabilityService, BookingService, parse_uuid
from apps.scheduling.timeconv import parse_day

logger = logging.getLogger(__name__)


class TokenManagementThrottle(AnonRateThrottle):
    """Management-link lookups per IP; tokens must not be enumerable."""
    scope = 'token_management'


def _doctor_or_404(doctor_id):
    doctor = Doctor.objects.filter(pk=parse_uuid(doctor_id, DoctorNotFound)).first()
    if doctor is None:
        raise DoctorNotFound()
    return doctor


# ============================================================================
# Public slots
# ============================================================================

@api_view(['GET'])
@permission_classes([AllowAny])
def bookable_slots(request):
    """
    GET /api/v1/scheduling/slots/?doctor_id=&date=
    GET /api/v1/scheduling/slots/?doctor_id=&date_from=&date_to=
    """
    params = request.query_params
    entries = AvailabilityService.list_bookable(
        doctor_id=params.get('doctor_id') or None,
        day=params.get('date') or None,
        date_from=params.get('date_from') or None,
        date_to=params.get('date_to') or None,
    )
    return Response({'results': entries})


# ============================================================================
# Availability
# ============================================================================

class AvailabilityViewSet(viewsets.ModelViewSet):
    """
    Availability management for doctors (own) and admins (any).

    Endpoints:
    - GET/POST /availability/
    - GET/PUT/PATCH/DELETE /availability/{id}/
    - POST /availability/{id}/add-slot/ | remove-slot/ | deactivate/ | activate/
    - DELETE /availability/all/?doctor_id=
    - POST /availability/copy/ (Admin only)

    Filters: doctor_id (admin), date_from, date_to, include_inactive
    """
    permission_classes = [AvailabilityPermission]
    serializer_class = AvailabilitySerializer

    def get_queryset(self):
        principal = principal_for(self.request)
        queryset = Availability.objects.select_related('doctor')
        if isinstance(principal, DoctorPrincipal):
            queryset = queryset.filter(doctor_id=principal.doctor_id)

        params = self.request.query_params
        doctor_id = params.get('doctor_id')
        if doctor_id and isinstance(principal, AdminPrincipal):
            queryset = queryset.filter(doctor_id=parse_uuid(doctor_id, DoctorNotFound))
        if params.get('date_from'):
            queryset = queryset.filter(day__gte=parse_day(params['date_from']))
        if params.get('date_to'):
            queryset = queryset.filter(day__lte=parse_day(params['date_to']))
        if params.get('include_inactive', 'false').lower() != 'true':
            queryset = queryset.filter(is_active=True)
        return queryset.order_by('day')

    def get_object(self):
        availability = AvailabilityService.get(self.kwargs['pk'])
        self._check_owner(availability.doctor_id)
        return availability

    def _check_owner(self, doctor_id):
        principal = principal_for(self.request)
        if isinstance(principal, DoctorPrincipal) and principal.doctor_id != doctor_id:
            raise NotPermitted('You can only manage your own availability')

    def _target_doctor(self, doctor_id):
        principal = principal_for(self.request)
        if isinstance(principal, DoctorPrincipal):
            if doctor_id and parse_uuid(doctor_id, DoctorNotFound) != principal.doctor_id:
                raise NotPermitted('You can only manage your own availability')
            return Doctor.objects.get(pk=principal.doctor_id)
        if not doctor_id:
            raise BookingValidationError('doctor_id is required', field='doctor_id')
        return _doctor_or_404(doctor_id)

    def create(self, request, *args, **kwargs):
        serializer = AvailabilityCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        doctor = self._target_doctor(data.get('doctor_id'))
        availability = AvailabilityService.publish(doctor, data['day'], data['slots'])
        return Response(AvailabilitySerializer(availability).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        availability = self.get_object()
        serializer = AvailabilityUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if 'slots' in data:
            AvailabilityService.replace_slots(availability, data['slots'])
        if 'is_active' in data:
            AvailabilityService.set_active(availability, data['is_active'])
        return Response(AvailabilitySerializer(availability).data)

    def destroy(self, request, *args, **kwargs):
        AvailabilityService.delete(self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'], url_path='add-slot')
    def add_slot(self, request, pk=None):
        serializer = SlotSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        availability = AvailabilityService.add_slot(self.get_object(), serializer.validated_data['slot'])
        return Response(AvailabilitySerializer(availability).data)

    @action(detail=True, methods=['post'], url_path='remove-slot')
    def remove_slot(self, request, pk=None):
        serializer = SlotSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        availability = AvailabilityService.remove_slot(self.get_object(), serializer.validated_data['slot'])
        return Response(AvailabilitySerializer(availability).data)

    @action(detail=True, methods=['post'])
    def deactivate(self, request, pk=None):
        availability = AvailabilityService.set_active(self.get_object(), False)
        return Response(AvailabilitySerializer(availability).data)

    @action(detail=True, methods=['post'])
    def activate(self, request, pk=None):
        availability = AvailabilityService.set_active(self.get_object(), True)
        return Response(AvailabilitySerializer(availability).data)

    @action(detail=False, methods=['delete'], url_path='all')
    def delete_all(self, request):
        doctor = self._target_doctor(request.query_params.get('doctor_id'))
        count = AvailabilityService.delete_all_for_doctor(doctor)
        return Response({'deleted': count})

    @action(detail=False, methods=['post'])
    def copy(self, request):
        if not isinstance(principal_for(request), AdminPrincipal):
            raise NotPermitted('Only admins can copy schedules between doctors')
        serializer = CopyScheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        count = AvailabilityService.copy_schedule(
            _doctor_or_404(data['from_doctor_id']),
            _doctor_or_404(data['to_doctor_id']),
            data['date_from'],
            data['date_to'],
            overwrite=data['overwrite'],
        )
        return Response({'copied': count}, status=status.HTTP_201_CREATED)


# ============================================================================
# Appointments
# ============================================================================

class AppointmentViewSet(viewsets.GenericViewSet):
    """
    Appointments for the calling principal.

    Endpoints:
    - GET /appointments/ (filters: status, doctor_id, patient_id, date, date_from, date_to)
    - POST /appointments/ (direct booking)
    - GET /appointments/{id}/
    - POST /appointments/{id}/confirm/ | complete/ | cancel/ | reschedule/

    Listing and fetching first complete any appointment whose start plus
    the grace period has passed.
    """
    permission_classes = [AppointmentPermission]
    serializer_class = AppointmentSerializer

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['now'] = timezone.now()
        return context

    def _respond(self, appointment, status_code=status.HTTP_200_OK):
        return Response(self.get_serializer(appointment).data, status=status_code)

    def list(self, request):
        principal = principal_for(request)
        queryset = lifecycle.visible_appointments(principal)
        lifecycle.auto_complete_due(queryset=queryset, trigger='lazy')

        params = request.query_params
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        if params.get('doctor_id'):
            queryset = queryset.filter(doctor_id=parse_uuid(params['doctor_id'], DoctorNotFound))
        if params.get('patient_id') and not isinstance(principal, PatientPrincipal):
            queryset = queryset.filter(patient_id=parse_uuid(params['patient_id'], BookingValidationError))
        if params.get('date'):
            queryset = queryset.filter(day=parse_day(params['date']))
        if params.get('date_from'):
            queryset = queryset.filter(day__gte=parse_day(params['date_from']))
        if params.get('date_to'):
            queryset = queryset.filter(day__lte=parse_day(params['date_to']))
        queryset = queryset.prefetch_related('reschedule_history').order_by('-day', '-slot')

        page = self.paginate_queryset(queryset)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    def retrieve(self, request, pk=None):
        appointment = lifecycle.get_appointment(principal_for(request), pk)
        appointment = lifecycle.auto_complete(appointment)
        return self._respond(appointment)

    def create(self, request):
        serializer = BookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        appointment = BookingService.book_direct(
            principal_for(request),
            doctor_id=data['doctor_id'],
            day=data['day'],
            slot=data['slot'],
            plan=data['plan'],
            reason=data.get('reason', ''),
            notes=data.get('notes', ''),
            patient_id=data.get('patient_id'),
            patient_email=data.get('patient_email'),
            patient_name=data.get('patient_name'),
            patient_phone=data.get('patient_phone'),
            locale=data.get('locale') or None,
            force_video=data.get('force_video', False),
        )
        return self._respond(appointment, status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def confirm(self, request, pk=None):
        appointment = lifecycle.confirm(
            parse_uuid(pk, AppointmentNotFound), principal_for(request),
        )
        return self._respond(appointment)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        serializer = CompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        appointment = lifecycle.complete(
            parse_uuid(pk, AppointmentNotFound),
            principal_for(request),
            notes=serializer.validated_data.get('notes'),
        )
        return self._respond(appointment)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        principal = principal_for(request)
        appointment = lifecycle.cancel(
            parse_uuid(pk, AppointmentNotFound),
            lifecycle.actor_for(principal),
            principal=principal,
            reason=serializer.validated_data.get('reason'),
        )
        return self._respond(appointment)

    @action(detail=True, methods=['post'])
    def reschedule(self, request, pk=None):
        serializer = RescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        principal = principal_for(request)
        appointment = lifecycle.reschedule(
            parse_uuid(pk, AppointmentNotFound),
            data['day'],
            data['slot'],
            lifecycle.actor_for(principal),
            principal=principal,
            new_doctor_id=data.get('doctor_id'),
        )
        return self._respond(appointment)


# ============================================================================
# Management link (token holders, no account needed)
# ============================================================================

@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([TokenManagementThrottle])
def manage_appointment(request, token):
    """GET /api/v1/scheduling/manage/{token}/"""
    appointment = lifecycle.auto_complete(lifecycle.get_by_token(token))
    data = ManagedAppointmentSerializer(appointment, context={'now': timezone.now()}).data
    return Response(data)


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([TokenManagementThrottle])
def manage_cancel(request, token):
    """POST /api/v1/scheduling/manage/{token}/cancel/"""
    serializer = CancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    appointment = lifecycle.get_by_token(token)
    appointment = lifecycle.cancel(
        appointment.pk,
        ActorChoices.PATIENT,
        reason=serializer.validated_data.get('reason'),
    )
    data = ManagedAppointmentSerializer(appointment, context={'now': timezone.now()}).data
    return Response(data)


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([TokenManagementThrottle])
def manage_reschedule(request, token):
    """
    POST /api/v1/scheduling/manage/{token}/reschedule/

    The response carries the new management token; the old link stops
    working.
    """
    serializer = RescheduleSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    appointment = lifecycle.get_by_token(token)
    appointment = lifecycle.reschedule(
        appointment.pk,
        data['day'],
        data['slot'],
        ActorChoices.PATIENT,
    )
    payload = ManagedAppointmentSerializer(appointment, context={'now': timezone.now()}).data
    payload['management_token'] = appointment.management_token
    return Response(payload)


@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([TokenManagementThrottle])
def manage_available_slots(request, doctor_id):
    """GET /api/v1/scheduling/manage/available-slots/{doctor_id}/?date="""
    doctor = _doctor_or_404(doctor_id)
    day = request.query_params.get('date')
    entries = AvailabilityService.list_bookable(doctor_id=doctor.pk, day=day or None)
    return Response({'doctor_id': str(doctor.pk), 'results': entries})

"""
Scheduling serializers.

Input serializers only check request shape; slot formats, availability
and conflicts are decided by the services.
"""
from rest_framework import serializers

from apps.scheduling.modality import join_state
from apps.scheduling.models import Appointment, Availability, PlanChoices, RescheduleEntry


# ============================================================================
# Availability
# ============================================================================

class AvailabilitySerializer(serializers.ModelSerializer):
    doctor_name = serializers.CharField(source='doctor.display_name', read_only=True)

    class Meta:
        model = Availability
        fields = [
            'id',
            'doctor',
            'doctor_name',
            'day',
            'slots',
            'is_active',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class AvailabilityCreateSerializer(serializers.Serializer):
    doctor_id = serializers.UUIDField(required=False)
    day = serializers.CharField()
    slots = serializers.ListField(child=serializers.CharField(), allow_empty=True)


class AvailabilityUpdateSerializer(serializers.Serializer):
    slots = serializers.ListField(child=serializers.CharField(), allow_empty=True, required=False)
    is_active = serializers.BooleanField(required=False)


class SlotSerializer(serializers.Serializer):
    slot = serializers.CharField()


class CopyScheduleSerializer(serializers.Serializer):
    from_doctor_id = serializers.UUIDField()
    to_doctor_id = serializers.UUIDField()
    date_from = serializers.CharField()
    date_to = serializers.CharField()
    overwrite = serializers.BooleanField(default=False)


# ============================================================================
# Appointments
# ============================================================================

class RescheduleEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = RescheduleEntry
        fields = [
            'from_doctor',
            'from_day',
            'from_slot',
            'to_doctor',
            'to_day',
            'to_slot',
            'actor',
            'created_at',
        ]
        read_only_fields = fields


class AppointmentSerializer(serializers.ModelSerializer):
    """
    Appointment as seen by its patient, its doctor and admins.

    ``join`` is derived at read time from the absolute start instant.
    """
    doctor_name = serializers.CharField(source='doctor.display_name', read_only=True)
    join = serializers.SerializerMethodField()
    reschedule_history = RescheduleEntrySerializer(many=True, read_only=True)

    class Meta:
        model = Appointment
        fields = [
            'id',
            'patient',
            'patient_email',
            'patient_name',
            'patient_phone',
            'locale',
            'doctor',
            'doctor_name',
            'day',
            'slot',
            'plan',
            'reason',
            'notes',
            'status',
            'confirmed_at',
            'completed_at',
            'cancelled_at',
            'cancelled_by',
            'cancel_reason',
            'completion_notes',
            'is_video_appointment',
            'meeting_url',
            'join',
            'reschedule_history',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_join(self, obj):
        return join_state(obj, self.context.get('now'))


class ManagedAppointmentSerializer(serializers.ModelSerializer):
    """What a management-link holder sees. No contact details."""
    doctor_name = serializers.CharField(source='doctor.display_name', read_only=True)
    join = serializers.SerializerMethodField()

    class Meta:
        model = Appointment
        fields = [
            'id',
            'doctor',
            'doctor_name',
            'day',
            'slot',
            'plan',
            'status',
            'is_video_appointment',
            'join',
        ]
        read_only_fields = fields

    def get_join(self, obj):
        return join_state(obj, self.context.get('now'))


class BookingSerializer(serializers.Serializer):
    doctor_id = serializers.CharField()
    day = serializers.CharField()
    slot = serializers.CharField()
    plan = serializers.ChoiceField(choices=PlanChoices.choices, default=PlanChoices.CONSULTATION)
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    locale = serializers.CharField(required=False, allow_blank=True, max_length=2)
    force_video = serializers.BooleanField(required=False, default=False)

    # Admin bookings on behalf of someone else
    patient_id = serializers.UUIDField(required=False)
    patient_email = serializers.EmailField(required=False)
    patient_name = serializers.CharField(required=False, allow_blank=True)
    patient_phone = serializers.CharField(required=False, allow_blank=True)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class CompleteSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True)


class RescheduleSerializer(serializers.Serializer):
    day = serializers.CharField()
    slot = serializers.CharField()
    doctor_id = serializers.UUIDField(required=False)

from django.contrib import admin

from .models import Appointment, Availability, RescheduleEntry


@admin.register(Availability)
class AvailabilityAdmin(admin.ModelAdmin):
    list_display = ['doctor', 'day', 'slot_count', 'is_active', 'updated_at']
    list_filter = ['is_active', 'day']
    search_fields = ['doctor__display_name']
    autocomplete_fields = ['doctor']
    readonly_fields = ['id', 'created_at', 'updated_at']
    date_hierarchy = 'day'

    @admin.display(description='Slots')
    def slot_count(self, obj):
        return len(obj.slots)


class RescheduleEntryInline(admin.TabularInline):
    model = RescheduleEntry
    extra = 0
    can_delete = False
    fields = ['from_doctor', 'from_day', 'from_slot', 'to_doctor', 'to_day', 'to_slot', 'actor', 'created_at']
    readonly_fields = fields


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['day', 'slot', 'doctor', 'patient_email', 'plan', 'status', 'is_video_appointment']
    list_filter = ['status', 'plan', 'is_video_appointment', 'cancelled_by']
    search_fields = ['patient_email', 'patient_name', 'doctor__display_name']
    autocomplete_fields = ['doctor', 'patient']
    date_hierarchy = 'day'
    inlines = [RescheduleEntryInline]
    readonly_fields = [
        'id', 'management_token', 'meeting_room_name', 'meeting_url',
        'confirmed_at', 'completed_at', 'cancelled_at',
        'reminder_24h_sent_at', 'reminder_2h_sent_at',
        'created_at', 'updated_at',
    ]

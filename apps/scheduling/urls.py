"""
Scheduling URLs - slots, availability, appointments, management links
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    AppointmentViewSet,
    AvailabilityViewSet,
    bookable_slots,
    manage_appointment,
    manage_available_slots,
    manage_cancel,
    manage_reschedule,
)

router = DefaultRouter()
router.register(r'availability', AvailabilityViewSet, basename='availability')
router.register(r'appointments', AppointmentViewSet, basename='appointment')

urlpatterns = [
    path('slots/', bookable_slots, name='bookable-slots'),
    path(
        'manage/available-slots/<str:doctor_id>/',
        manage_available_slots,
        name='manage-available-slots',
    ),
    path('manage/<str:token>/', manage_appointment, name='manage-appointment'),
    path('manage/<str:token>/cancel/', manage_cancel, name='manage-cancel'),
    path('manage/<str:token>/reschedule/', manage_reschedule, name='manage-reschedule'),
    path('', include(router.urls)),
]

"""
URL configuration for the telemedicine booking project.
"""
from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)
from apps.core.observability.health import HealthzView, ReadyzView

urlpatterns = [
    # Health checks (no auth required)
    path('healthz', HealthzView.as_view(), name='healthz'),
    path('readyz', ReadyzView.as_view(), name='readyz'),

    # Admin
    path('admin/', admin.site.urls),

    path('api/', include('apps.core.urls')),  # JWT auth, current user, metrics
    path('api/v1/', include('apps.authz.urls')),  # Doctors
    path('api/v1/scheduling/', include('apps.scheduling.urls')),  # Availability, appointments, management links
    path('api/v1/payments/', include('apps.payments.urls')),  # Checkout sessions, reconciliation
    path('api/integrations/', include('apps.integrations.urls')),  # Stripe webhook

    # API Schema
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/schema/swagger-ui/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/schema/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]

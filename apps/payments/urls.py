"""
Payments URLs - checkout sessions and history
"""
from django.urls import path

from .views import PaymentHistoryView, create_session, reconcile, session_status

urlpatterns = [
    path('sessions/', create_session, name='payment-session-create'),
    path('sessions/<str:session_id>/', session_status, name='payment-session-status'),
    path('sessions/<str:session_id>/reconcile/', reconcile, name='payment-session-reconcile'),
    path('history/', PaymentHistoryView.as_view(), name='payment-history'),
]

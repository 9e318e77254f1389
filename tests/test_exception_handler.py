"""
Tests for the error envelope.

Every failure reaching a client has the same shape:
{success: false, error: {code, message, outcome, details}}.
"""
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, Throttled, ValidationError

from apps.core.exceptions import domain_exception_handler
from apps.scheduling.exceptions import SlotTaken

CONTEXT = {'view': None}


class TestDomainExceptionHandler:

    def test_domain_error(self):
        response = domain_exception_handler(SlotTaken(slot='09:00'), CONTEXT)
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['success'] is False
        assert response.data['error']['code'] == 'slot_taken'
        assert response.data['error']['outcome'] == 'choose_another_slot'
        assert response.data['error']['details'] == {'slot': '09:00'}

    def test_drf_validation_error_is_wrapped(self):
        response = domain_exception_handler(ValidationError({'slot': ['Invalid slot']}), CONTEXT)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error']['code'] == 'invalid'
        assert response.data['error']['outcome'] == 'invalid_request'
        assert response.data['error']['details'] == {'slot': ['Invalid slot']}

    def test_http404(self):
        response = domain_exception_handler(Http404(), CONTEXT)
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error']['code'] == 'not_found'
        assert response.data['error']['outcome'] == 'link_invalid'

    def test_throttled(self):
        response = domain_exception_handler(Throttled(wait=30), CONTEXT)
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.data['error']['outcome'] == 'retry_later'

    def test_not_authenticated_keeps_detail_message(self):
        response = domain_exception_handler(NotAuthenticated(), CONTEXT)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['error']['code'] == 'not_authenticated'
        assert response.data['error']['details'] == {}

    def test_unhandled_error_hides_internals(self):
        response = domain_exception_handler(RuntimeError('connection string leaked'), CONTEXT)
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['error']['code'] == 'internal_error'
        assert response.data['error']['outcome'] == 'retry_later'
        assert 'leaked' not in response.data['error']['message']

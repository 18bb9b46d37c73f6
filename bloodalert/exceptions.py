# bloodalert/exceptions.py
"""
Domain errors shared by the matching core and the API.

They subclass DRF's APIException so a view can let them propagate and the
envelope handler below turns them into a response with the right status code.
"""
import logging

from django.conf import settings
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class BloodAlertError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'
    default_code = 'error'
    retryable = False


class InvalidBloodGroup(BloodAlertError):
    default_detail = 'Invalid blood group.'
    default_code = 'invalid_blood_group'

    def __init__(self, blood_group):
        self.blood_group = blood_group
        super().__init__(f"Invalid recipient blood group: {blood_group}")


class InvalidResponse(BloodAlertError):
    default_detail = "Response must be one of 'accepted', 'declined' or 'maybe'."
    default_code = 'invalid_response'


class InvalidStatusTransition(BloodAlertError):
    default_detail = 'Status change not allowed.'
    default_code = 'invalid_status_transition'


class NotFound(BloodAlertError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class Unauthorized(BloodAlertError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Unauthorized: You can only respond as yourself'
    default_code = 'unauthorized'


class StorageConflict(BloodAlertError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The request was modified concurrently. Please try again.'
    default_code = 'storage_conflict'
    retryable = True


class DispatchPartialFailure(BloodAlertError):
    """Notification batch failed after the blood request was stored."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Donor notifications could not be sent. Dispatch can be retried.'
    default_code = 'dispatch_failed'
    retryable = True


def envelope_exception_handler(exc, context):
    """
    Wrap every API error as {"success": false, "message": ...}.
    Raw exception text is only exposed while DEBUG is on.
    """
    response = exception_handler(exc, context)
    if response is None:
        # Unhandled: let Django render its 500 page / re-raise in tests
        return None

    detail = response.data
    if isinstance(detail, dict) and set(detail) == {'detail'}:
        message = str(detail['detail'])
        errors = None
    elif isinstance(detail, list):
        message = ' '.join(str(d) for d in detail)
        errors = None
    else:
        message = 'Invalid input.'
        errors = detail

    payload = {'success': False, 'message': message}
    if errors is not None:
        payload['errors'] = errors
    if getattr(exc, 'retryable', False):
        payload['retryable'] = True
    if settings.DEBUG:
        payload['error'] = repr(exc)

    if response.status_code >= 500:
        logger.error(f"API error {response.status_code}: {exc!r}")

    response.data = payload
    return response

"""
Blood request operations used by the API, the admin and background tasks.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from bloodalert.exceptions import DispatchPartialFailure, InvalidStatusTransition
from bloodrequests.housekeeping import prune_stale_requests
from bloodrequests.responder import ResponseHandler
from bloodrequests.store import RequestStore
from notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

__all__ = [
    'SubmitResult',
    'submit_blood_request',
    'redispatch_blood_request',
    'respond_to_blood_request',
    'reconcile_donor_response',
    'list_blood_requests',
    'get_blood_request',
    'update_blood_request_status',
    'prune_stale_requests',
]


@dataclass
class SubmitResult:
    id: int
    notifications_sent: int
    compatible_donors_found: int
    dispatch_error: Optional[DispatchPartialFailure] = None

    @property
    def message(self):
        if self.dispatch_error is not None:
            return (
                'Blood request submitted successfully, but donors could not be notified yet. '
                'Notification will be retried.'
            )
        return 'Blood request submitted successfully. Compatible donors have been notified.'


def submit_blood_request(data, requester_id=None, store=None, dispatcher=None):
    """
    Store a blood request and notify compatible donors.

    A notification failure does not undo the request; it is reported in
    `SubmitResult.dispatch_error` so the caller can retry the dispatch.
    """
    store = store or RequestStore()
    dispatcher = dispatcher or NotificationDispatcher()

    blood_request = store.create(requester_id=requester_id, **data)
    result = dispatcher.dispatch(blood_request)

    return SubmitResult(
        id=blood_request.pk,
        notifications_sent=result.notifications_sent,
        compatible_donors_found=result.compatible_donors,
        dispatch_error=result.error,
    )


def redispatch_blood_request(request_id, store=None, dispatcher=None):
    """Run dispatch again for an active request (after a failed batch)."""
    store = store or RequestStore()
    dispatcher = dispatcher or NotificationDispatcher()

    blood_request = store.get(request_id)
    if blood_request.is_terminal:
        raise InvalidStatusTransition(f"Request is {blood_request.status}; donors are no longer notified")
    return dispatcher.dispatch(blood_request)


def respond_to_blood_request(request_id, donor_id, response, message='', caller_id=None, handler=None):
    handler = handler or ResponseHandler()
    return handler.respond(request_id, donor_id, response, message, caller_id=caller_id)


def reconcile_donor_response(request_id, donor_id, handler=None):
    """Retry the notification bookkeeping of an already stored response."""
    handler = handler or ResponseHandler()
    return handler.retry_reconcile(request_id, donor_id)


def list_blood_requests(status=None, blood_group=None, urgency_level=None, limit=None, store=None):
    store = store or RequestStore()
    return store.list(status=status, blood_group=blood_group, urgency_level=urgency_level, limit=limit)


def get_blood_request(request_id, store=None):
    store = store or RequestStore()
    return store.get(request_id)


def update_blood_request_status(request_id, status, fulfilled=None, store=None):
    store = store or RequestStore()
    return store.update_status(request_id, status, fulfilled=fulfilled)

# bloodrequests/tasks.py
"""
Celery tasks for retrying donor dispatch and pruning old requests
"""
import logging

from celery import shared_task
from django.db import DatabaseError

from bloodalert.exceptions import InvalidStatusTransition, NotFound
from bloodrequests.housekeeping import prune_stale_requests
from bloodrequests.services import reconcile_donor_response, redispatch_blood_request
from bloodrequests.store import RequestStore

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=5, default_retry_delay=60)
def dispatch_blood_request_notifications(self, blood_request_id):
    """
    Notify compatible donors for a request whose dispatch failed.
    Retries while the notification batch keeps failing.
    """
    try:
        result = redispatch_blood_request(blood_request_id)
    except NotFound:
        return f"Blood request {blood_request_id} not found"
    except InvalidStatusTransition as e:
        return f"Skipped request {blood_request_id}: {e.detail}"

    if result.error is not None:
        logger.warning(f"Dispatch for request {blood_request_id} failed, retry {self.request.retries + 1}")
        raise self.retry(exc=result.error)

    return f"Notified {result.notifications_sent} of {result.compatible_donors} donors for request {blood_request_id}"


@shared_task(bind=True, max_retries=5, default_retry_delay=60)
def reconcile_donor_response_notifications(self, blood_request_id, donor_id):
    """
    Re-run notification bookkeeping for a donor response whose first
    reconciliation failed. Acceptance notifications are never duplicated.
    """
    try:
        reconcile_donor_response(blood_request_id, donor_id)
    except NotFound as e:
        return f"Skipped request {blood_request_id} donor {donor_id}: {e.detail}"
    except DatabaseError as e:
        logger.warning(f"Reconciliation for request {blood_request_id} donor {donor_id} failed, retrying: {e}")
        raise self.retry(exc=e)

    return f"Reconciled request {blood_request_id} donor {donor_id}"


@shared_task
def prune_stale_blood_requests(max_age_days=None):
    """Delete completed/rejected requests past the retention window."""
    store = RequestStore()
    deleted = prune_stale_requests(store.list(), max_age_days=max_age_days, store=store)
    return f"Pruned {deleted} blood request(s)"

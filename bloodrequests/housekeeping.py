"""
Housekeeping: prune old blood requests that are finished.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from bloodrequests.models import BloodRequest
from bloodrequests.store import RequestStore

logger = logging.getLogger(__name__)


def is_stale(blood_request, cutoff):
    return blood_request.created_at < cutoff and blood_request.status in BloodRequest.PRUNABLE_STATUSES


def prune_stale_requests(blood_requests, max_age_days=None, now=None, store=None):
    """
    Delete the given requests that are completed or rejected and older than
    `max_age_days`. Active requests are never touched.

    Safe to call repeatedly; requests already gone are skipped.

    Returns:
        Number of requests deleted
    """
    if max_age_days is None:
        max_age_days = settings.BLOOD_ALERT['STALE_REQUEST_MAX_AGE_DAYS']
    store = store or RequestStore()
    cutoff = (now or timezone.now()) - timedelta(days=max_age_days)

    deleted = 0
    for blood_request in blood_requests:
        if is_stale(blood_request, cutoff) and store.delete(blood_request.pk):
            deleted += 1

    if deleted:
        logger.info(f"Deleted {deleted} old request(s) (older than {max_age_days} days)")
    return deleted

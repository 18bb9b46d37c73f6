"""
Notification Dispatcher

Fans a new blood request out to every compatible, eligible donor as one
`blood_request` notification each.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import DatabaseError

from algorithms.blood_compatibility import get_compatible_donors, sort_donors_by_compatibility
from bloodalert.exceptions import DispatchPartialFailure
from donors.directory import DonorDirectory
from notifications import messages
from notifications.models import Notification
from notifications.store import NotificationStore

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    notifications_sent: int
    compatible_donors: int
    error: Optional[DispatchPartialFailure] = None

    @property
    def ok(self):
        return self.error is None


class NotificationDispatcher:

    def __init__(self, directory=None, notification_store=None):
        self.directory = directory or DonorDirectory()
        self.notifications = notification_store or NotificationStore()

    def find_donors(self, blood_request):
        """Active eligible donors for the request, requester excluded."""
        eligible_groups = get_compatible_donors(blood_request.blood_group)
        donors = []
        for donor in self.directory.find_active_eligible_donors(eligible_groups):
            if blood_request.requester_id is not None and donor.id == blood_request.requester_id:
                logger.info(f"Excluding requester {donor.id} from notifications for request {blood_request.pk}")
                continue
            # The directory contract already covers these; re-checked for third-party adapters
            if not donor.blood_group or donor.blood_group not in eligible_groups:
                continue
            if not donor.is_active or donor.can_donate is False:
                continue
            donors.append(donor)
        return donors

    def build_notification(self, blood_request, donor, score, priority_order):
        return Notification(
            user_id=donor.id,
            is_global=False,
            type=Notification.TYPE_BLOOD_REQUEST,
            title=messages.blood_request_title(blood_request),
            message=messages.blood_request_message(blood_request, donor),
            blood_request_id=blood_request.pk,
            recipient_blood_group=blood_request.blood_group,
            donor_blood_group=donor.blood_group,
            urgency_level=blood_request.urgency_level,
            hospital_name=blood_request.hospital_name,
            units_required=blood_request.units_required,
            patient_name=blood_request.patient_name,
            match_score=score,
            priority_order=priority_order,
            read=False,
            responded=False,
        )

    def dispatch(self, blood_request):
        """
        Notify compatible donors about a stored blood request.

        Donors already holding a prompt for this request, or who already
        answered it, are skipped so a retried dispatch does not duplicate.
        A storage failure at any step (donor lookup, dedupe reads, batch
        write) is reported in the result, never raised: the request itself
        stays valid and dispatch can be run again.

        Raises:
            InvalidBloodGroup: the request carries an unknown blood group
        """
        # Unknown group is a client error, not a storage failure
        get_compatible_donors(blood_request.blood_group)

        donors = []
        try:
            donors = self.find_donors(blood_request)
            ranked = sort_donors_by_compatibility(donors, blood_request.blood_group, blood_request.urgency_level)

            already_notified = self.notifications.notified_user_ids(blood_request.pk)
            already_responded = set(blood_request.donor_responses.values_list('donor_id', flat=True))
            skip = already_notified | already_responded

            batch = [
                self.build_notification(blood_request, donor, score, priority_order)
                for priority_order, (donor, score) in enumerate(ranked, start=1)
                if donor.id not in skip
            ]
            self.notifications.create_batch(batch)
        except DatabaseError as e:
            logger.error(f"Dispatch for request {blood_request.pk} failed: {e}")
            return DispatchResult(
                notifications_sent=0,
                compatible_donors=len(donors),
                error=DispatchPartialFailure(),
            )

        logger.info(
            f"Sent {len(batch)} notifications for blood request {blood_request.pk} "
            f"({len(donors)} compatible donors, {len(ranked) - len(batch)} already notified)"
        )
        return DispatchResult(notifications_sent=len(batch), compatible_donors=len(donors))

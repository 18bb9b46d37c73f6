"""
Response Handler

Records a donor's reply to a blood request and reconciles notifications:
the donor's prompt is closed, and an acceptance shares the donor's contact
details with the requester side and sends the donor a reminder.
"""
import logging
from dataclasses import dataclass

from django.db import DatabaseError
from django.utils import timezone

from bloodalert.exceptions import InvalidResponse, NotFound, Unauthorized
from bloodrequests.models import DonorResponse
from bloodrequests.store import RequestStore
from donors.directory import DonorDirectory
from notifications import messages
from notifications.models import Notification
from notifications.store import NotificationStore

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = 'Thank you for accepting! Your contact details have been shared with the requester.'
RECORDED_MESSAGE = 'Your response has been recorded. Thank you for your time.'


@dataclass
class ResponseResult:
    message: str
    donor_response: DonorResponse
    # False when the response was saved but notification bookkeeping failed
    reconciled: bool = True


class ResponseHandler:

    def __init__(self, request_store=None, directory=None, notification_store=None):
        self.requests = request_store or RequestStore()
        self.directory = directory or DonorDirectory()
        self.notifications = notification_store or NotificationStore()

    def respond(self, request_id, donor_id, response, message='', caller_id=None):
        """
        Record `response` ('accepted', 'declined' or 'maybe') from `donor_id`.

        A donor may respond any number of times; the latest response replaces
        the previous one. Acceptance does not fulfil the request.

        Raises:
            Unauthorized: caller is not the donor
            InvalidResponse: unknown response value
            NotFound: missing request or donor
            StorageConflict: the response could not be saved
        """
        if caller_id is None or str(caller_id) != str(donor_id):
            raise Unauthorized()
        if response not in dict(DonorResponse.RESPONSE_CHOICES):
            raise InvalidResponse()

        blood_request = self.requests.get(request_id)
        donor = self.directory.get_by_id(donor_id)

        accepted = response == DonorResponse.RESPONSE_ACCEPTED
        donor_response = self.requests.upsert_donor_response(
            blood_request.pk,
            donor.id,
            donor_name=donor.name,
            donor_email=donor.email,
            donor_phone=donor.phone,
            donor_blood_group=donor.blood_group,
            response=response,
            message=message or '',
            responded_at=timezone.now(),
            contact_shared=accepted,
        )
        logger.info(f"Donor {donor.id} responded '{response}' to blood request {blood_request.pk}")

        # The saved response stands even if the bookkeeping below fails
        try:
            self.reconcile(blood_request, donor_response)
            reconciled = True
        except DatabaseError as e:
            logger.error(
                f"Notification reconciliation failed for request {blood_request.pk} donor {donor.id}: {e}"
            )
            reconciled = False

        return ResponseResult(
            message=ACCEPTED_MESSAGE if accepted else RECORDED_MESSAGE,
            donor_response=donor_response,
            reconciled=reconciled,
        )

    def reconcile(self, blood_request, donor_response):
        """
        Notification side effects of a response, in order. Safe to re-run:
        acceptance notifications are created once per request and donor.
        """
        donor_id = donor_response.donor_id
        self.notifications.mark_responded(blood_request.pk, donor_id)

        if donor_response.response != DonorResponse.RESPONSE_ACCEPTED:
            return

        self.notifications.delete_by_request_and_user(blood_request.pk, donor_id)
        self.notify_requester_of_acceptance(blood_request, donor_response)
        self.create_donor_reminder(blood_request, donor_response)

    def retry_reconcile(self, request_id, donor_id):
        """
        Re-run the notification bookkeeping for a stored response, e.g. after
        `respond` returned `reconciled=False`.

        Raises:
            NotFound: missing request or response
        """
        blood_request = self.requests.get(request_id)
        try:
            donor_response = blood_request.donor_responses.get(donor_id=donor_id)
        except (DonorResponse.DoesNotExist, ValueError, TypeError):
            raise NotFound('Donor response not found') from None

        self.reconcile(blood_request, donor_response)
        logger.info(f"Reconciled notifications for request {blood_request.pk} donor {donor_id}")
        return donor_response

    def notify_requester_of_acceptance(self, blood_request, donor_response):
        # Global so admins can pass the contact on to anonymous requesters
        notification, _ = self.notifications.get_or_create(
            type=Notification.TYPE_DONOR_ACCEPTED,
            blood_request_id=blood_request.pk,
            donor_id=donor_response.donor_id,
            defaults=dict(
                title='🎉 Donor Found for Blood Request',
                message=messages.donor_accepted_message(blood_request, donor_response),
                is_global=True,
                user=None,
                recipient_blood_group=blood_request.blood_group,
                donor_blood_group=donor_response.donor_blood_group,
                urgency_level=blood_request.urgency_level,
                hospital_name=blood_request.hospital_name,
                units_required=blood_request.units_required,
                patient_name=blood_request.patient_name,
                contact_details={
                    'donor_name': donor_response.donor_name,
                    'donor_email': donor_response.donor_email,
                    'donor_phone': donor_response.donor_phone,
                    'donor_blood_group': donor_response.donor_blood_group,
                    'message': donor_response.message,
                },
            ),
        )
        return notification

    def create_donor_reminder(self, blood_request, donor_response):
        notification, _ = self.notifications.get_or_create(
            type=Notification.TYPE_DONATION_REMINDER,
            blood_request_id=blood_request.pk,
            user_id=donor_response.donor_id,
            defaults=dict(
                title='❤️ Blood Donation Reminder',
                message=messages.donation_reminder_message(blood_request),
                is_global=False,
                recipient_blood_group=blood_request.blood_group,
                donor_blood_group=donor_response.donor_blood_group,
                urgency_level=blood_request.urgency_level,
                hospital_name=blood_request.hospital_name,
                units_required=blood_request.units_required,
                patient_name=blood_request.patient_name,
                request_details={
                    'patient_name': blood_request.patient_name,
                    'blood_group': blood_request.blood_group,
                    'hospital_name': blood_request.hospital_name,
                    'city': blood_request.city,
                    'urgency_level': blood_request.urgency_level,
                    'units_required': blood_request.units_required,
                    'contact_person': blood_request.contact_person,
                    'contact_phone': blood_request.contact_phone,
                },
            ),
        )
        return notification

"""
Request Store

Persistence and lifecycle of blood requests and their embedded donor
responses, on top of the Django ORM.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, OperationalError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from algorithms.blood_compatibility import get_compatible_donors
from bloodalert.exceptions import InvalidStatusTransition, NotFound, StorageConflict
from bloodrequests.models import BloodRequest, DonorResponse

logger = logging.getLogger(__name__)

# Fields a caller may set when creating a request
REQUEST_FIELDS = (
    'patient_name', 'blood_group', 'units_required', 'urgency_level',
    'hospital_name', 'city', 'contact_person', 'contact_phone',
    'contact_email', 'medical_reason', 'required_by', 'source',
)

RESPONSE_FIELDS = (
    'donor_name', 'donor_email', 'donor_phone', 'donor_blood_group',
    'response', 'message', 'responded_at', 'contact_shared',
)


class RequestStore:

    def __init__(self, upsert_attempts=None):
        if upsert_attempts is None:
            upsert_attempts = settings.BLOOD_ALERT['RESPONSE_UPSERT_ATTEMPTS']
        self.upsert_attempts = max(1, upsert_attempts)

    # ------------------------------------------
    # Reads
    # ------------------------------------------
    def get(self, request_id):
        try:
            return BloodRequest.objects.prefetch_related('donor_responses').get(pk=request_id)
        except (BloodRequest.DoesNotExist, ValueError, TypeError):
            raise NotFound('Blood request not found') from None

    def list(self, status=None, blood_group=None, urgency_level=None, limit=None):
        """Requests newest first, optionally filtered and truncated."""
        queryset = BloodRequest.objects.prefetch_related('donor_responses').order_by('-created_at', '-pk')
        if status:
            queryset = queryset.filter(status=status)
        if blood_group:
            queryset = queryset.filter(blood_group=blood_group)
        if urgency_level:
            queryset = queryset.filter(urgency_level=urgency_level)
        if limit is not None:
            queryset = queryset[:limit]
        return list(queryset)

    # ------------------------------------------
    # Writes
    # ------------------------------------------
    def create(self, requester_id=None, **data):
        """
        Store a new request as active, unfulfilled and without responses.

        Raises:
            InvalidBloodGroup: unknown blood group
            ValidationError: any other invalid field
        """
        get_compatible_donors(data.get('blood_group'))

        unknown = set(data) - set(REQUEST_FIELDS)
        if unknown:
            raise ValidationError({field: 'Unknown field.' for field in sorted(unknown)})

        blood_request = BloodRequest(
            requester_id=requester_id,
            status=BloodRequest.STATUS_ACTIVE,
            fulfilled=False,
            **data,
        )
        try:
            blood_request.full_clean()
        except DjangoValidationError as e:
            raise ValidationError(e.message_dict) from None

        blood_request.save()
        logger.info(
            f"Blood request {blood_request.pk} created: {blood_request.blood_group} x{blood_request.units_required} "
            f"for {blood_request.patient_name} ({blood_request.urgency_level})"
        )
        return blood_request

    def upsert_donor_response(self, request_id, donor_id, **fields):
        """
        Replace the donor's response on the request, or append it.

        The request row is locked for the read-modify-write; a concurrent
        insert for the same donor surfaces as an IntegrityError and is retried.
        """
        values = {k: v for k, v in fields.items() if k in RESPONSE_FIELDS}

        for attempt in range(1, self.upsert_attempts + 1):
            try:
                with transaction.atomic():
                    try:
                        blood_request = BloodRequest.objects.select_for_update().get(pk=request_id)
                    except BloodRequest.DoesNotExist:
                        raise NotFound('Blood request not found') from None

                    donor_response, created = DonorResponse.objects.update_or_create(
                        blood_request=blood_request,
                        donor_id=donor_id,
                        defaults=values,
                    )
                    BloodRequest.objects.filter(pk=blood_request.pk).update(updated_at=timezone.now())
                return donor_response
            except (IntegrityError, OperationalError) as e:
                logger.warning(
                    f"Response upsert conflict on request {request_id} donor {donor_id} "
                    f"(attempt {attempt}/{self.upsert_attempts}): {e}"
                )

        raise StorageConflict()

    def update_status(self, request_id, status, fulfilled=None):
        """
        Move a request along active -> completed | cancelled | rejected.
        Terminal statuses are final; `fulfilled` can only be set on a completed request.
        """
        if status not in dict(BloodRequest.STATUS_CHOICES):
            raise InvalidStatusTransition(f"Unknown status '{status}'")
        if fulfilled and status != BloodRequest.STATUS_COMPLETED:
            raise InvalidStatusTransition('Only a completed request can be marked fulfilled')

        with transaction.atomic():
            try:
                blood_request = BloodRequest.objects.select_for_update().get(pk=request_id)
            except (BloodRequest.DoesNotExist, ValueError, TypeError):
                raise NotFound('Blood request not found') from None

            if blood_request.is_terminal and status != blood_request.status:
                raise InvalidStatusTransition(
                    f"Request is already {blood_request.status} and cannot become {status}"
                )
            if fulfilled is False and blood_request.fulfilled:
                raise InvalidStatusTransition('A fulfilled request cannot be reopened')

            now = timezone.now()
            if status == BloodRequest.STATUS_REJECTED and blood_request.status != status:
                blood_request.rejected_at = now
            if fulfilled and not blood_request.fulfilled:
                blood_request.fulfilled_at = now
            if fulfilled is not None:
                blood_request.fulfilled = fulfilled
            blood_request.status = status
            blood_request.save()

        logger.info(f"Blood request {request_id} status -> {status} (fulfilled={blood_request.fulfilled})")
        return blood_request

    def delete(self, request_id):
        """Delete one request with its responses. Missing ids are a no-op."""
        _, per_model = BloodRequest.objects.filter(pk=request_id).delete()
        return per_model.get(BloodRequest._meta.label, 0) > 0

    def delete_if_stale_and_terminal(self, max_age_days, now=None):
        """
        Delete completed/rejected requests created more than `max_age_days` ago.
        Active requests are kept whatever their age.
        """
        cutoff = (now or timezone.now()) - timedelta(days=max_age_days)
        _, per_model = BloodRequest.objects.filter(
            created_at__lt=cutoff,
            status__in=BloodRequest.PRUNABLE_STATUSES,
        ).delete()
        return per_model.get(BloodRequest._meta.label, 0)

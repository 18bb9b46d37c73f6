"""
Notification Store

Creates, reconciles and lists in-app notifications.
"""
import logging

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from bloodalert.exceptions import NotFound
from notifications.models import Notification

logger = logging.getLogger(__name__)


class NotificationStore:

    def create(self, **fields):
        return Notification.objects.create(**fields)

    def get_or_create(self, defaults=None, **lookup):
        """Create once per lookup; a re-run returns the existing notification."""
        return Notification.objects.get_or_create(defaults=defaults, **lookup)

    def create_batch(self, notifications):
        """Write unsaved Notification objects all-or-nothing."""
        if not notifications:
            return []
        with transaction.atomic():
            return Notification.objects.bulk_create(notifications)

    def _open_prompts(self, request_id, user_id):
        return Notification.objects.filter(
            blood_request_id=request_id,
            user_id=user_id,
            type=Notification.TYPE_BLOOD_REQUEST,
        )

    def mark_responded(self, request_id, user_id):
        now = timezone.now()
        updated = self._open_prompts(request_id, user_id).update(
            responded=True,
            responded_at=now,
            read=True,
            read_at=now,
            updated_at=now,
        )
        return updated

    def delete_by_request_and_user(self, request_id, user_id):
        deleted, _ = self._open_prompts(request_id, user_id).delete()
        logger.info(f"Deleted {deleted} notification(s) for request {request_id} and donor {user_id}")
        return deleted

    def notified_user_ids(self, request_id):
        """Users that already hold a blood_request prompt for this request."""
        return set(
            Notification.objects.filter(
                blood_request_id=request_id,
                type=Notification.TYPE_BLOOD_REQUEST,
            ).values_list('user_id', flat=True)
        )

    # ------------------------------------------
    # Inbox
    # ------------------------------------------
    def list_for_user(self, user):
        """
        The user's own notifications plus global ones about requests they
        submitted, newest first. Staff see everything.
        """
        queryset = Notification.objects.select_related('blood_request')
        if not user.is_staff:
            queryset = queryset.filter(Q(user=user) | Q(is_global=True, blood_request__requester=user))
        return queryset.order_by('-created_at', '-pk')

    def mark_read(self, notification_id, user):
        try:
            notification = self.list_for_user(user).get(pk=notification_id)
        except (Notification.DoesNotExist, ValueError, TypeError):
            raise NotFound('Notification not found') from None

        if not notification.read:
            notification.read = True
            notification.read_at = timezone.now()
            notification.save(update_fields=['read', 'read_at', 'updated_at'])
        return notification

    def mark_all_read(self, user):
        now = timezone.now()
        return self.list_for_user(user).filter(read=False).update(read=True, read_at=now, updated_at=now)

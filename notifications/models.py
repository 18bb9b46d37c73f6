from django.conf import settings
from django.db import models
from django.utils import timezone

from algorithms.blood_compatibility import BLOOD_GROUP_CHOICES


class Notification(models.Model):
    TYPE_BLOOD_REQUEST = 'blood_request'
    TYPE_DONOR_ACCEPTED = 'donor_accepted'
    TYPE_DONATION_REMINDER = 'donation_reminder'

    TYPE_CHOICES = [
        (TYPE_BLOOD_REQUEST, 'Blood Request'),
        (TYPE_DONOR_ACCEPTED, 'Donor Accepted'),
        (TYPE_DONATION_REMINDER, 'Donation Reminder'),
    ]

    # Recipient; null for global (admin-visible) notifications
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='notifications'
    )
    is_global = models.BooleanField(default=False)

    type = models.CharField(max_length=20, choices=TYPE_CHOICES, db_index=True)
    title = models.CharField(max_length=200)
    message = models.TextField()

    # Weak reference: losing the request only nulls this out
    blood_request = models.ForeignKey(
        'bloodrequests.BloodRequest',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications'
    )
    # Donor the notification is about (donor_accepted)
    donor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    recipient_blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES, blank=True)
    donor_blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES, blank=True)
    urgency_level = models.CharField(max_length=10, blank=True)
    hospital_name = models.CharField(max_length=200, blank=True)
    units_required = models.PositiveIntegerField(null=True, blank=True)
    patient_name = models.CharField(max_length=200, blank=True)

    match_score = models.PositiveIntegerField(null=True, blank=True)
    priority_order = models.PositiveIntegerField(null=True, blank=True)
    contact_details = models.JSONField(default=dict, blank=True)
    request_details = models.JSONField(default=dict, blank=True)

    read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    responded = models.BooleanField(default=False)
    responded_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        target = 'everyone' if self.is_global else f"user #{self.user_id}"
        return f"{self.get_type_display()} -> {target} | Request #{self.blood_request_id}"

    class Meta:
        ordering = ['-created_at', '-pk']
        indexes = [
            models.Index(fields=['blood_request', 'user', 'type'], name='notif_req_user_type_idx'),
            models.Index(fields=['user', '-created_at'], name='notif_user_created_idx'),
        ]

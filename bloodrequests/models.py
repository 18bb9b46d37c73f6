# bloodrequests/models.py
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from algorithms.blood_compatibility import BLOOD_GROUP_CHOICES


class BloodRequest(models.Model):
    URGENCY_CHOICES = [
        ('critical', 'Critical - Life Threatening'),
        ('urgent', 'Urgent - Within 24-48 Hours'),
        ('normal', 'Normal'),
    ]

    STATUS_ACTIVE = 'active'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_REJECTED = 'rejected'

    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED, STATUS_REJECTED})
    # Terminal statuses that housekeeping is allowed to delete
    PRUNABLE_STATUSES = frozenset({STATUS_COMPLETED, STATUS_REJECTED})

    SOURCE_CHOICES = [
        ('public_form', 'Public Form'),
        ('dashboard', 'Signed-in Dashboard'),
    ]

    # Null for anonymous submissions from the public form
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='blood_requests'
    )

    patient_name = models.CharField(max_length=200)
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES)
    units_required = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    urgency_level = models.CharField(max_length=10, choices=URGENCY_CHOICES, default='normal')

    hospital_name = models.CharField(max_length=200)
    city = models.CharField(max_length=100, blank=True)
    contact_person = models.CharField(max_length=200, blank=True)
    contact_phone = models.CharField(max_length=20, blank=True)
    contact_email = models.EmailField(blank=True)
    medical_reason = models.TextField(blank=True)
    required_by = models.DateTimeField(null=True, blank=True)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='public_form')

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    fulfilled = models.BooleanField(default=False)
    fulfilled_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.patient_name} - {self.blood_group} ({self.urgency_level})"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def accepted_responses(self):
        return [r for r in self.donor_responses.all() if r.response == DonorResponse.RESPONSE_ACCEPTED]

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Blood Request'
        verbose_name_plural = 'Blood Requests'
        constraints = [
            models.CheckConstraint(
                condition=models.Q(fulfilled=False) | models.Q(status='completed'),
                name='fulfilled_requires_completed',
            ),
        ]


class DonorResponse(models.Model):
    """
    A donor's reply to a blood request. One row per (request, donor); a new
    reply from the same donor replaces the old one.
    """
    RESPONSE_ACCEPTED = 'accepted'
    RESPONSE_DECLINED = 'declined'
    RESPONSE_MAYBE = 'maybe'

    RESPONSE_CHOICES = [
        (RESPONSE_ACCEPTED, 'Accepted'),
        (RESPONSE_DECLINED, 'Declined'),
        (RESPONSE_MAYBE, 'Maybe'),
    ]

    blood_request = models.ForeignKey(
        BloodRequest,
        on_delete=models.CASCADE,
        related_name='donor_responses'
    )
    donor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='blood_request_responses'
    )

    # Snapshot of the donor's contact details at response time
    donor_name = models.CharField(max_length=200)
    donor_email = models.EmailField(blank=True)
    donor_phone = models.CharField(max_length=20, blank=True)
    donor_blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES, blank=True)

    response = models.CharField(max_length=10, choices=RESPONSE_CHOICES)
    message = models.TextField(blank=True)
    responded_at = models.DateTimeField(default=timezone.now)
    contact_shared = models.BooleanField(default=False)

    def __str__(self):
        return f"{self.donor_name} -> {self.response}"

    class Meta:
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(
                fields=['blood_request', 'donor'],
                name='one_response_per_donor',
            ),
        ]

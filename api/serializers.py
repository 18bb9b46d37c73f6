# api/serializers.py
from rest_framework import serializers

from algorithms.blood_compatibility import is_valid_blood_group
from bloodalert.exceptions import InvalidBloodGroup
from bloodrequests.models import BloodRequest, DonorResponse
from donors.models import DonorProfile
from notifications.models import Notification


class DonorSerializer(serializers.ModelSerializer):
    """
    DonorProfile with the account fields the admin needs
    """
    donor_id = serializers.IntegerField(source='user_id', read_only=True)
    email = serializers.EmailField(source='user.email', read_only=True)
    is_active = serializers.BooleanField(source='user.is_active', read_only=True)

    class Meta:
        model = DonorProfile
        fields = [
            'id',
            'donor_id',
            'full_name',
            'email',
            'phone',
            'blood_group',
            'city',
            'is_active',
            'can_donate',
            'donation_count',
            'last_donation_date',
            'created_at',
            'updated_at',
        ]


class DonorResponseSerializer(serializers.ModelSerializer):
    donor_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = DonorResponse
        fields = [
            'donor_id',
            'donor_name',
            'donor_email',
            'donor_phone',
            'donor_blood_group',
            'response',
            'message',
            'responded_at',
            'contact_shared',
        ]


class BloodRequestSerializer(serializers.ModelSerializer):
    """
    Blood request with its embedded donor responses
    """
    requester_id = serializers.IntegerField(read_only=True)
    donor_responses = DonorResponseSerializer(many=True, read_only=True)

    class Meta:
        model = BloodRequest
        fields = [
            'id',
            'requester_id',
            'patient_name',
            'blood_group',
            'units_required',
            'urgency_level',
            'hospital_name',
            'city',
            'contact_person',
            'contact_phone',
            'contact_email',
            'medical_reason',
            'required_by',
            'source',
            'status',
            'fulfilled',
            'fulfilled_at',
            'rejected_at',
            'donor_responses',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class BloodRequestSubmitSerializer(serializers.Serializer):
    """Public blood request form"""
    patient_name = serializers.CharField(max_length=200)
    blood_group = serializers.CharField(max_length=3)
    units_required = serializers.IntegerField(min_value=1, default=1)
    urgency_level = serializers.ChoiceField(choices=BloodRequest.URGENCY_CHOICES, default='normal')
    hospital_name = serializers.CharField(max_length=200)
    city = serializers.CharField(max_length=100, required=False, allow_blank=True)
    contact_person = serializers.CharField(max_length=200, required=False, allow_blank=True)
    contact_phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    contact_email = serializers.EmailField(required=False, allow_blank=True)
    medical_reason = serializers.CharField(required=False, allow_blank=True)
    required_by = serializers.DateTimeField(required=False, allow_null=True)

    def validate_blood_group(self, value):
        value = value.strip().upper()
        if not is_valid_blood_group(value):
            # Client input error with its own error code, not a field error
            raise InvalidBloodGroup(value)
        return value


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=BloodRequest.STATUS_CHOICES)
    fulfilled = serializers.BooleanField(required=False, allow_null=True, default=None)


class DonorReplySerializer(serializers.Serializer):
    response = serializers.CharField(max_length=10)
    message = serializers.CharField(required=False, allow_blank=True, default='')
    donor_id = serializers.IntegerField(required=False)


class NotificationSerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(read_only=True)
    blood_request_id = serializers.IntegerField(read_only=True)
    donor_id = serializers.IntegerField(read_only=True)
    request_status = serializers.CharField(source='blood_request.status', read_only=True, default=None)

    class Meta:
        model = Notification
        fields = [
            'id',
            'user_id',
            'is_global',
            'type',
            'title',
            'message',
            'blood_request_id',
            'request_status',
            'donor_id',
            'recipient_blood_group',
            'donor_blood_group',
            'urgency_level',
            'hospital_name',
            'units_required',
            'patient_name',
            'match_score',
            'priority_order',
            'contact_details',
            'request_details',
            'read',
            'read_at',
            'responded',
            'responded_at',
            'created_at',
        ]
        read_only_fields = fields

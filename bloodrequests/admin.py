from django.contrib import admin, messages

from bloodalert.exceptions import BloodAlertError

from . import services
from .models import BloodRequest, DonorResponse


class DonorResponseInline(admin.TabularInline):
    model = DonorResponse
    extra = 0
    fields = ['donor', 'donor_name', 'donor_phone', 'donor_blood_group', 'response', 'message', 'responded_at']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(BloodRequest)
class BloodRequestAdmin(admin.ModelAdmin):
    list_display  = ['patient_name', 'blood_group', 'units_required', 'urgency_level', 'hospital_name',
                     'status', 'fulfilled', 'accepted_count', 'created_at']
    list_filter   = ['status', 'urgency_level', 'blood_group', 'fulfilled', 'source']
    search_fields = ['patient_name', 'hospital_name', 'contact_person', 'contact_phone']
    ordering      = ['-created_at']
    # Status only changes through the actions, which enforce the lifecycle
    readonly_fields = ['status', 'fulfilled', 'requester', 'source', 'fulfilled_at', 'rejected_at', 'created_at', 'updated_at']
    inlines = [DonorResponseInline]

    fieldsets = (
        ('Patient', {
            'fields': ('patient_name', 'blood_group', 'units_required', 'urgency_level', 'medical_reason', 'required_by')
        }),
        ('Hospital & Contact', {
            'fields': ('hospital_name', 'city', 'contact_person', 'contact_phone', 'contact_email')
        }),
        ('Status', {
            'fields': ('status', 'fulfilled', 'fulfilled_at', 'rejected_at')
        }),
        ('Origin', {
            'fields': ('requester', 'source', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).prefetch_related('donor_responses')

    @admin.display(description='Accepted')
    def accepted_count(self, obj):
        return len(obj.accepted_responses)

    actions = ['mark_fulfilled', 'mark_rejected', 'mark_cancelled', 'notify_donors_again', 'prune_old_requests']

    def _set_status(self, request, queryset, status, fulfilled=None):
        updated = 0
        for blood_request in queryset:
            try:
                services.update_blood_request_status(blood_request.pk, status, fulfilled=fulfilled)
                updated += 1
            except BloodAlertError as e:
                self.message_user(request, f'Request #{blood_request.pk}: {e.detail}', level=messages.WARNING)
        self.message_user(request, f'{updated} request(s) marked {status}.')

    @admin.action(description='Mark selected requests as completed and fulfilled')
    def mark_fulfilled(self, request, queryset):
        self._set_status(request, queryset, BloodRequest.STATUS_COMPLETED, fulfilled=True)

    @admin.action(description='Reject selected requests')
    def mark_rejected(self, request, queryset):
        self._set_status(request, queryset, BloodRequest.STATUS_REJECTED)

    @admin.action(description='Cancel selected requests')
    def mark_cancelled(self, request, queryset):
        self._set_status(request, queryset, BloodRequest.STATUS_CANCELLED)

    @admin.action(description='Notify compatible donors again')
    def notify_donors_again(self, request, queryset):
        sent = 0
        for blood_request in queryset:
            try:
                result = services.redispatch_blood_request(blood_request.pk)
            except BloodAlertError as e:
                self.message_user(request, f'Request #{blood_request.pk}: {e.detail}', level=messages.WARNING)
                continue
            if result.error is not None:
                self.message_user(request, f'Request #{blood_request.pk}: {result.error.detail}', level=messages.ERROR)
                continue
            sent += result.notifications_sent
        self.message_user(request, f'{sent} notification(s) sent.')

    @admin.action(description='Delete old completed/rejected requests')
    def prune_old_requests(self, request, queryset):
        deleted = services.prune_stale_requests(queryset)
        self.message_user(request, f'Deleted {deleted} old request(s).')


@admin.register(DonorResponse)
class DonorResponseAdmin(admin.ModelAdmin):
    list_display  = ['donor_name', 'blood_request', 'response', 'donor_blood_group', 'responded_at']
    list_filter   = ['response']
    search_fields = ['donor_name', 'donor_email', 'donor_phone']
    ordering      = ['-responded_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

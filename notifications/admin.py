from django.contrib import admin
from django.utils import timezone

from .models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display  = ['title', 'type', 'user', 'is_global', 'blood_request', 'priority_order', 'read', 'responded', 'created_at']
    list_filter   = ['type', 'is_global', 'read', 'responded']
    search_fields = ['title', 'message', 'user__username', 'patient_name', 'hospital_name']
    ordering      = ['-created_at']
    readonly_fields = ['created_at', 'updated_at', 'read_at', 'responded_at']
    raw_id_fields = ['user', 'donor', 'blood_request']

    actions = ['mark_as_read']

    @admin.action(description='Mark selected notifications as read')
    def mark_as_read(self, request, queryset):
        updated = queryset.filter(read=False).update(read=True, read_at=timezone.now())
        self.message_user(request, f'{updated} notification(s) marked as read.')

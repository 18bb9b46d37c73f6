from django.contrib import admin

from .models import DonorProfile


@admin.register(DonorProfile)
class DonorProfileAdmin(admin.ModelAdmin):
    list_display   = ['full_name', 'user', 'blood_group', 'city', 'donation_count', 'can_donate', 'is_active']
    list_filter    = ['blood_group', 'can_donate', 'user__is_active']
    search_fields  = ['full_name', 'user__username', 'user__email', 'phone']
    ordering       = ['-created_at']
    readonly_fields = ['created_at', 'updated_at']

    fieldsets = (
        ('Personal Info', {
            'fields': ('user', 'full_name', 'phone', 'blood_group', 'address', 'city')
        }),
        ('Donation', {
            'fields': ('can_donate', 'donation_count', 'last_donation_date')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    @admin.display(boolean=True, description='Active Account')
    def is_active(self, obj):
        return obj.user.is_active

    actions = ['suspend_donors', 'restore_donors']

    @admin.action(description='Mark selected donors as unable to donate')
    def suspend_donors(self, request, queryset):
        updated = queryset.update(can_donate=False)
        self.message_user(request, f'{updated} donor(s) will no longer be notified.')

    @admin.action(description='Mark selected donors as able to donate')
    def restore_donors(self, request, queryset):
        updated = queryset.update(can_donate=True)
        self.message_user(request, f'{updated} donor(s) can be notified again.')

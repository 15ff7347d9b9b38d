from django.contrib import admin
from .models import NotificationPreference


@admin.register(NotificationPreference)
class NotificationPreferenceAdmin(admin.ModelAdmin):
    list_display = ['user', 'email_enabled', 'email_frequency', 'quiet_hours_enabled',
                    'quiet_hours_start', 'quiet_hours_end', 'updated_at']
    list_filter = ['email_enabled', 'email_frequency', 'quiet_hours_enabled']
    search_fields = ['user__username', 'user__email']

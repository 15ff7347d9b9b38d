from datetime import time

from django.conf import settings
from django.db import models


class NotificationPreference(models.Model):
    """How and when a user wants to receive email notifications"""
    FREQUENCY_CHOICES = [
        ('instant', 'Instant'),
        ('smart', 'Smart'),
        ('digest', 'Digest'),
        ('critical_only', 'Critical Only'),
    ]

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notification_preference')
    email_enabled = models.BooleanField(default=True)
    email_frequency = models.CharField(max_length=20, choices=FREQUENCY_CHOICES, default='smart')
    quiet_hours_enabled = models.BooleanField(default=False)
    # 24h HH:MM in the site time zone
    quiet_hours_start = models.CharField(max_length=5, default='22:00')
    quiet_hours_end = models.CharField(max_length=5, default='08:00')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} ({self.email_frequency})"

    def in_quiet_hours(self, at):
        """Whether the time ``at`` falls inside quiet hours; windows may wrap past midnight"""
        if not self.quiet_hours_enabled:
            return False
        start = time.fromisoformat(self.quiet_hours_start)
        end = time.fromisoformat(self.quiet_hours_end)
        if start <= end:
            return start <= at < end
        return at >= start or at < end

    class Meta:
        db_table = 'notification_preferences'

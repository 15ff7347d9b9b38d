import re
from rest_framework import serializers
from .models import NotificationPreference

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')


class NotificationPreferenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationPreference
        fields = ['id', 'email_enabled', 'email_frequency', 'quiet_hours_enabled',
                  'quiet_hours_start', 'quiet_hours_end', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']


def validate_preference_update(data):
    """
    Pick the updatable fields out of a PATCH body.

    Returns (updates, error). Booleans must be real booleans; unknown or
    mistyped fields are ignored; a bad frequency or time is an error.
    """
    frequencies = [choice[0] for choice in NotificationPreference.FREQUENCY_CHOICES]
    updates = {}

    frequency = data.get('email_frequency')
    if frequency:
        if frequency not in frequencies:
            return None, f'Invalid email_frequency. Must be one of: {", ".join(frequencies)}'
        updates['email_frequency'] = frequency

    for field, example in (('quiet_hours_start', '22:00'), ('quiet_hours_end', '08:00')):
        value = data.get(field)
        if value:
            if not isinstance(value, str) or not TIME_PATTERN.match(value):
                return None, f'Invalid {field} format. Use HH:MM format (e.g., {example})'
            updates[field] = value

    for field in ('email_enabled', 'quiet_hours_enabled'):
        if isinstance(data.get(field), bool):
            updates[field] = data[field]

    return updates, None

"""
Test suite for Notifications module
Tests: preference defaults, partial updates, validation and quiet hours
"""
from datetime import time
from django.test import TestCase
from rest_framework import status
from bikemarket.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bikemarket.notifications.models import NotificationPreference
from bikemarket.notifications.serializers import validate_preference_update


class NotificationPreferenceModelTests(TestCase):
    """Test quiet hours evaluation"""

    def setUp(self):
        self.preferences = NotificationPreference.objects.create(
            user=TestDataFactory.create_user(),
            quiet_hours_enabled=True,
        )

    def test_overnight_window(self):
        """Test the default 22:00-08:00 window wraps midnight"""
        self.assertTrue(self.preferences.in_quiet_hours(time(23, 30)))
        self.assertTrue(self.preferences.in_quiet_hours(time(7, 59)))
        self.assertFalse(self.preferences.in_quiet_hours(time(8, 0)))
        self.assertFalse(self.preferences.in_quiet_hours(time(12, 0)))

    def test_same_day_window(self):
        """Test a window that does not wrap"""
        self.preferences.quiet_hours_start = '13:00'
        self.preferences.quiet_hours_end = '15:00'
        self.assertTrue(self.preferences.in_quiet_hours(time(14, 0)))
        self.assertFalse(self.preferences.in_quiet_hours(time(16, 0)))

    def test_disabled(self):
        """Test quiet hours are ignored when disabled"""
        self.preferences.quiet_hours_enabled = False
        self.assertFalse(self.preferences.in_quiet_hours(time(23, 30)))


class PreferenceValidationTests(TestCase):
    """Test PATCH body validation"""

    def test_mistyped_booleans_ignored(self):
        """Test strings are not accepted for boolean fields"""
        updates, error = validate_preference_update({'email_enabled': 'false', 'quiet_hours_enabled': True})
        self.assertIsNone(error)
        self.assertEqual(updates, {'quiet_hours_enabled': True})

    def test_invalid_time(self):
        """Test times must be 24h HH:MM"""
        updates, error = validate_preference_update({'quiet_hours_end': '24:00'})
        self.assertIsNone(updates)
        self.assertEqual(error, 'Invalid quiet_hours_end format. Use HH:MM format (e.g., 08:00)')


class NotificationPreferenceAPITests(TestCase):
    """Test the notification preferences endpoint"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.url = '/api/notifications/preferences/'

    def test_get_creates_defaults(self):
        """Test first access creates default preferences"""
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        preferences = response.data['preferences']
        self.assertTrue(preferences['email_enabled'])
        self.assertEqual(preferences['email_frequency'], 'smart')
        self.assertFalse(preferences['quiet_hours_enabled'])
        self.assertEqual(preferences['quiet_hours_start'], '22:00')
        self.assertEqual(preferences['quiet_hours_end'], '08:00')
        self.assertTrue(NotificationPreference.objects.filter(user=self.user).exists())

    def test_patch_creates_then_updates(self):
        """Test the first PATCH creates and later ones update"""
        response = self.client.patch(self.url, {'email_frequency': 'digest'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Notification preferences created')
        self.assertEqual(response.data['preferences']['email_frequency'], 'digest')

        response = self.client.patch(self.url, {'quiet_hours_enabled': True, 'quiet_hours_start': '21:30'},
                                     format='json')
        self.assertEqual(response.data['message'], 'Notification preferences updated')
        preferences = NotificationPreference.objects.get(user=self.user)
        self.assertEqual(preferences.email_frequency, 'digest')
        self.assertTrue(preferences.quiet_hours_enabled)
        self.assertEqual(preferences.quiet_hours_start, '21:30')

    def test_patch_invalid_frequency(self):
        """Test unknown frequencies are rejected"""
        response = self.client.patch(self.url, {'email_frequency': 'hourly'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'],
                         'Invalid email_frequency. Must be one of: instant, smart, digest, critical_only')

    def test_patch_invalid_time(self):
        """Test malformed quiet hours are rejected"""
        response = self.client.patch(self.url, {'quiet_hours_start': '9pm'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid quiet_hours_start format. Use HH:MM format (e.g., 22:00)')

    def test_patch_nothing_valid(self):
        """Test a body without recognised fields is rejected"""
        response = self.client.patch(self.url, {'email_enabled': 'yes', 'other': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'No valid fields to update')
        self.assertFalse(NotificationPreference.objects.filter(user=self.user).exists())

    def test_unauthenticated(self):
        """Test anonymous access is rejected"""
        self.client.logout()
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

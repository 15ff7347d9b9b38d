"""
Test suite for Core module
Tests: registration, JWT login, current user, audit logs and request helpers
"""
from django.test import TestCase, RequestFactory
from rest_framework import status
from bikemarket.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bikemarket.core.models import User, AuditLog
from bikemarket.core.utils import create_audit_log, get_client_ip, parse_bool, parse_positive_int
from bikemarket.core.cache_utils import make_cache_key


class UserModelTests(TestCase):
    """Test User model properties"""

    def test_verified_store_requires_both_flags(self):
        """Test a store is only verified when account type and verification flag agree"""
        unverified = TestDataFactory.create_store_user(verified=False)
        verified = TestDataFactory.create_store_user()
        individual = TestDataFactory.create_user(bicycle_store=True)
        self.assertFalse(unverified.is_verified_store)
        self.assertTrue(verified.is_verified_store)
        self.assertFalse(individual.is_verified_store)

    def test_display_name_fallbacks(self):
        """Test display name prefers seller name, then business name, then username"""
        user = TestDataFactory.create_user(username='rider')
        self.assertEqual(user.display_name, 'rider')
        user.business_name = 'Spoke & Chain'
        self.assertEqual(user.display_name, 'Spoke & Chain')
        user.seller_display_name = 'Spoke'
        self.assertEqual(user.display_name, 'Spoke')


class AuthAPITests(TestCase):
    """Test registration and token endpoints"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_register_returns_tokens(self):
        """Test registering an individual account"""
        data = {
            'username': 'newrider',
            'email': 'newrider@test.com',
            'password': 'Str0ngPassw0rd!',
            'password_confirm': 'Str0ngPassw0rd!',
        }
        response = self.client.post('/api/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertEqual(response.data['user']['account_type'], 'individual')

    def test_register_password_mismatch(self):
        """Test registration rejects mismatched passwords"""
        data = {
            'username': 'newrider',
            'email': 'newrider@test.com',
            'password': 'Str0ngPassw0rd!',
            'password_confirm': 'different',
        }
        response = self.client.post('/api/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data)

    def test_register_store_requires_business_name(self):
        """Test store accounts need a business name"""
        data = {
            'username': 'shop',
            'email': 'shop@test.com',
            'password': 'Str0ngPassw0rd!',
            'password_confirm': 'Str0ngPassw0rd!',
            'account_type': 'bicycle_store',
        }
        response = self.client.post('/api/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('business_name', response.data)

    def test_registered_store_is_not_verified(self):
        """Test a newly registered store cannot verify itself"""
        data = {
            'username': 'shop',
            'email': 'shop@test.com',
            'password': 'Str0ngPassw0rd!',
            'password_confirm': 'Str0ngPassw0rd!',
            'account_type': 'bicycle_store',
            'business_name': 'Shop',
        }
        response = self.client.post('/api/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(User.objects.get(username='shop').bicycle_store)

    def test_login(self):
        """Test obtaining a token pair"""
        TestDataFactory.create_user(username='rider', password='testpass123')
        response = self.client.post('/api/auth/login/', {'username': 'rider', 'password': 'testpass123'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

    def test_refresh_with_garbage_token(self):
        """Test refresh rejects an invalid token"""
        response = self.client.post('/api/auth/refresh/', {'refresh': 'not-a-token'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class UserMeAPITests(TestCase):
    """Test the current user endpoint"""

    def setUp(self):
        self.user = TestDataFactory.create_store_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_get_me(self):
        """Test current user includes derived flags"""
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_verified_store'])
        self.assertFalse(response.data['has_stripe_account'])

    def test_patch_me_cannot_change_verification(self):
        """Test read-only fields are ignored on update"""
        self.user.bicycle_store = False
        self.user.save()
        response = self.client.patch('/api/auth/me/', {'bicycle_store': True, 'first_name': 'Ana'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertFalse(self.user.bicycle_store)
        self.assertEqual(self.user.first_name, 'Ana')

    def test_unauthenticated(self):
        """Test anonymous access is rejected"""
        self.client.logout()
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class AuditLogTests(TestCase):
    """Test audit log creation and listing"""

    def setUp(self):
        self.factory = RequestFactory()
        self.user = TestDataFactory.create_user()

    def test_create_audit_log_with_request(self):
        """Test user and IP are taken from the request"""
        request = self.factory.get('/', HTTP_X_FORWARDED_FOR='203.0.113.5, 10.0.0.1')
        request.user = self.user
        log = create_audit_log(request=request, action='create', model_name='Listing', object_id=5,
                               object_name='Road bike')
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.ip_address, '203.0.113.5')
        self.assertEqual(log.object_id, '5')

    def test_create_audit_log_missing_fields(self):
        """Test incomplete entries are skipped"""
        self.assertIsNone(create_audit_log(action='create', model_name='Listing'))
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_audit_log_list_admin_only(self):
        """Test only staff can read audit logs"""
        client = AuthenticatedAPIClient()
        client.authenticate_user(self.user)
        response = client.get('/api/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_audit_log_list_filters(self):
        """Test staff can filter by action"""
        admin = TestDataFactory.create_user(is_staff=True)
        create_audit_log(user=admin, action='create', model_name='Listing', object_id=1)
        create_audit_log(user=admin, action='payout', model_name='Purchase', object_id=2, object_reference='ORD-1')
        client = AuthenticatedAPIClient()
        client.authenticate_user(admin)
        response = client.get('/api/audit-logs/', {'action': 'payout'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['object_reference'], 'ORD-1')


class HelperTests(TestCase):
    """Test request parsing helpers"""

    def test_get_client_ip_remote_addr(self):
        """Test falling back to REMOTE_ADDR"""
        request = RequestFactory().get('/', REMOTE_ADDR='198.51.100.7')
        self.assertEqual(get_client_ip(request), '198.51.100.7')
        self.assertIsNone(get_client_ip(None))

    def test_parse_bool(self):
        """Test boolean parsing of query values"""
        self.assertTrue(parse_bool('true'))
        self.assertTrue(parse_bool('1'))
        self.assertFalse(parse_bool('no'))
        self.assertTrue(parse_bool(None, default=True))

    def test_parse_positive_int(self):
        """Test positive int parsing with defaults and caps"""
        self.assertEqual(parse_positive_int('5', 1), 5)
        self.assertEqual(parse_positive_int('abc', 1), 1)
        self.assertEqual(parse_positive_int('-3', 1), 1)
        self.assertEqual(parse_positive_int('500', 1, maximum=100), 100)

    def test_make_cache_key_is_stable(self):
        """Test cache keys are deterministic and keep their prefix"""
        key = make_cache_key('storefront:4', search='')
        self.assertEqual(key, make_cache_key('storefront:4', search=''))
        self.assertTrue(key.startswith('storefront:4:'))
        self.assertNotEqual(key, make_cache_key('storefront:4', search='helmet'))

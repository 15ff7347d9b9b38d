"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from bikemarket.listings.models import Listing
from bikemarket.orders import escrow
from bikemarket.lightspeed.models import LightspeedConnection
from bikemarket.lightspeed.tokens import encrypt_token
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
import random
import string

User = get_user_model()

# 32-byte AES key as 64 hex chars
TEST_ENCRYPTION_KEY = '00' * 32


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', is_staff=False, is_superuser=False,
                    account_type='individual', bicycle_store=False, **extra):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser,
            account_type=account_type,
            bicycle_store=bicycle_store,
            **extra
        )
        return user

    @staticmethod
    def create_store_user(business_name=None, verified=True, **extra):
        """Create a bicycle store account (verified by default)"""
        if not business_name:
            business_name = f'Cycles_{TestDataFactory.random_string(6)}'
        return TestDataFactory.create_user(
            account_type='bicycle_store',
            bicycle_store=verified,
            business_name=business_name,
            **extra
        )

    @staticmethod
    def create_listing(user=None, description=None, price=None, listing_status='active', **extra):
        """Create a test listing; active listings are published and live"""
        if not user:
            user = TestDataFactory.create_user()
        if not description:
            description = f'Bike_{TestDataFactory.random_string(6)}'
        if price is None:
            price = Decimal('1200.00')
        now = timezone.now()
        fields = {
            'is_active': listing_status == 'active',
            'published_at': now if listing_status == 'active' else None,
            'expires_at': now + timedelta(days=90) if listing_status == 'active' else None,
        }
        fields.update(extra)
        return Listing.objects.create(
            user=user,
            description=description,
            price=price,
            listing_status=listing_status,
            **fields
        )

    @staticmethod
    def create_purchase(buyer=None, seller=None, product=None, item_price=None, shipping_cost=0, **extra):
        """Create a purchase with funds held in escrow"""
        if not seller:
            seller = TestDataFactory.create_user()
        if not buyer:
            buyer = TestDataFactory.create_user()
        if not product:
            product = TestDataFactory.create_listing(user=seller)
        if item_price is None:
            item_price = product.price
        return escrow.create_purchase(
            buyer=buyer,
            seller=seller,
            product=product,
            item_price=item_price,
            shipping_cost=shipping_cost,
            **extra
        )

    @staticmethod
    def create_lightspeed_connection(user=None, access_token='access-token', refresh_token='refresh-token',
                                     expires_in=timedelta(hours=1), account_id='12345', status='connected'):
        """
        Create a connected Lightspeed account with encrypted tokens.

        Callers must run under ``override_settings(LIGHTSPEED_TOKEN_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY)``.
        """
        if not user:
            user = TestDataFactory.create_store_user()
        now = timezone.now()
        return LightspeedConnection.objects.create(
            user=user,
            status=status,
            account_id=account_id,
            account_name='Test Bike Shop',
            access_token_encrypted=encrypt_token(access_token) if access_token else None,
            refresh_token_encrypted=encrypt_token(refresh_token) if refresh_token else None,
            token_expires_at=now + expires_in,
            connected_at=now,
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()

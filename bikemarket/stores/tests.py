"""
Test suite for Stores module
Tests: store profile, category management and ordering, public storefront grouping
"""
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from bikemarket.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bikemarket.stores.models import StoreCategory


class StoreAccessTests(TestCase):
    """Test store settings are limited to verified stores"""

    def test_individual_forbidden(self):
        """Test individual accounts cannot manage a store"""
        client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user())
        response = client.get('/api/store/profile/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_unverified_store_forbidden(self):
        """Test stores awaiting verification cannot manage categories"""
        client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_store_user(verified=False))
        response = client.post('/api/store/categories/', {'name': 'Sale'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'Access denied. Only verified bicycle stores can manage their store.')


class StoreProfileAPITests(TestCase):
    """Test the store profile endpoint"""

    def setUp(self):
        self.store = TestDataFactory.create_store_user(business_name='Spoke & Chain', phone='555-0100')
        self.client = AuthenticatedAPIClient().authenticate_user(self.store)

    def test_get_profile(self):
        """Test profile fields"""
        response = self.client.get('/api/store/profile/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['profile']['business_name'], 'Spoke & Chain')
        self.assertEqual(response.data['profile']['display_name'], 'Spoke & Chain')

    def test_patch_profile(self):
        """Test updating storefront fields; phone is read-only"""
        data = {
            'bio': 'Family shop since 1987',
            'social_links': {'instagram': 'https://instagram.com/spokechain'},
            'phone': '555-9999',
        }
        response = self.client.patch('/api/store/profile/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.store.refresh_from_db()
        self.assertEqual(self.store.bio, 'Family shop since 1987')
        self.assertEqual(self.store.social_links['instagram'], 'https://instagram.com/spokechain')
        self.assertEqual(self.store.phone, '555-0100')

    def test_patch_invalid_social_links(self):
        """Test social links must be an object"""
        response = self.client.patch('/api/store/profile/', {'social_links': ['x']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('social_links', response.data)


class StoreCategoryAPITests(TestCase):
    """Test store category CRUD and ordering"""

    def setUp(self):
        self.store = TestDataFactory.create_store_user()
        self.client = AuthenticatedAPIClient().authenticate_user(self.store)

    def create_category(self, name, **extra):
        return StoreCategory.objects.create(user=self.store, name=name, **extra)

    def test_create_appends_to_order(self):
        """Test new categories go after the current last one"""
        response = self.client.post('/api/store/categories/', {'name': 'Staff Picks', 'product_ids': [4, 7]},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['category']['display_order'], 0)
        self.assertEqual(response.data['category']['product_ids'], ['4', '7'])
        self.assertEqual(response.data['category']['source'], 'custom')

        self.create_category('Sale', display_order=5)
        response = self.client.post('/api/store/categories/', {'name': 'Kids'}, format='json')
        self.assertEqual(response.data['category']['display_order'], 6)

    def test_create_lightspeed_requires_category_id(self):
        """Test Lightspeed-backed categories need a Lightspeed category id"""
        response = self.client.post('/api/store/categories/', {'name': 'Road', 'source': 'display_override'},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('lightspeed_category_id', response.data)

    def test_list_in_display_order(self):
        """Test categories are listed by display order"""
        self.create_category('Second', display_order=1)
        self.create_category('First', display_order=0)
        response = self.client.get('/api/store/categories/')
        self.assertEqual([c['name'] for c in response.data['categories']], ['First', 'Second'])

    def test_update_and_delete(self):
        """Test renaming, empty updates and deleting"""
        category = self.create_category('Sale')
        url = f'/api/store/categories/{category.id}/'

        response = self.client.patch(url, {'name': 'Clearance', 'is_active': False}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['category']['name'], 'Clearance')
        self.assertFalse(response.data['category']['is_active'])

        response = self.client.patch(url, {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(StoreCategory.objects.filter(pk=category.pk).exists())

    def test_other_store_category_not_found(self):
        """Test categories of another store are invisible"""
        other = StoreCategory.objects.create(user=TestDataFactory.create_store_user(), name='Theirs')
        response = self.client.patch(f'/api/store/categories/{other.id}/', {'name': 'Mine'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        response = self.client.delete(f'/api/store/categories/{other.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_reorder(self):
        """Test positions are rewritten in the given order"""
        first = self.create_category('A', display_order=0)
        second = self.create_category('B', display_order=1)
        third = self.create_category('C', display_order=2)
        response = self.client.post('/api/store/categories/reorder/',
                                    {'order': [third.id, first.id, second.id]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([c['name'] for c in response.data['categories']], ['C', 'A', 'B'])
        third.refresh_from_db()
        self.assertEqual(third.display_order, 0)

    def test_reorder_rejects_bad_input(self):
        """Test empty, duplicate and foreign ids are rejected"""
        category = self.create_category('A')
        other = StoreCategory.objects.create(user=TestDataFactory.create_store_user(), name='Theirs')
        url = '/api/store/categories/reorder/'

        response = self.client.post(url, {'order': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.post(url, {'order': [category.id, category.id]}, format='json')
        self.assertEqual(response.data['error'], 'order contains duplicate ids')
        response = self.client.post(url, {'order': [category.id, other.id]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], f'Unknown category ids: [{other.id}]')


class PublicStorefrontTests(TestCase):
    """Test the public storefront"""

    def setUp(self):
        cache.clear()
        self.store = TestDataFactory.create_store_user(business_name='Spoke & Chain')
        self.client = AuthenticatedAPIClient()
        self.road_bikes = [
            TestDataFactory.create_listing(user=self.store, description=f'Road bike {i}',
                                           lightspeed_category_id='10', category_name='Road Bikes')
            for i in range(3)
        ]
        self.helmet = TestDataFactory.create_listing(user=self.store, description='Kask helmet')
        TestDataFactory.create_listing(user=self.store, description='Out of stock', qoh=0)
        TestDataFactory.create_listing(user=self.store, description='Sold bike', sold_at=timezone.now())
        TestDataFactory.create_listing(user=self.store, description='Draft', listing_status='draft')

    def url(self):
        return f'/api/marketplace/store/{self.store.id}/'

    def test_inventory_grouped_by_size(self):
        """Test live stock is grouped by category, largest first"""
        response = self.client.get(self.url())
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        store = response.data['store']
        self.assertEqual(store['business_name'], 'Spoke & Chain')
        self.assertEqual(store['total_products'], 4)
        self.assertEqual([c['name'] for c in store['categories']], ['Road Bikes', 'Uncategorized'])
        self.assertEqual(store['categories'][0]['id'], 'category-0')
        self.assertEqual(store['categories'][0]['product_count'], 3)
        self.assertEqual(store['categories'][1]['source'], 'inventory')

    def test_custom_categories_first_and_overrides(self):
        """Test custom sections lead and display overrides rename POS groups"""
        StoreCategory.objects.create(user=self.store, name='Road', source='display_override',
                                     lightspeed_category_id='10')
        picks = StoreCategory.objects.create(user=self.store, name='Staff Picks', source='custom',
                                             product_ids=[str(self.helmet.id), '999999'])
        StoreCategory.objects.create(user=self.store, name='Hidden', source='custom', is_active=False,
                                     product_ids=[str(self.helmet.id)])

        store = self.client.get(self.url()).data['store']
        self.assertEqual([c['name'] for c in store['categories']], ['Staff Picks', 'Road', 'Uncategorized'])
        self.assertEqual(store['categories'][0]['id'], picks.id)
        self.assertEqual(store['categories'][0]['products'][0]['id'], self.helmet.id)

    def test_search(self):
        """Test search narrows listings by title"""
        response = self.client.get(self.url(), {'search': 'helmet'})
        self.assertEqual(response.data['store']['total_products'], 1)

    def test_cached_until_store_changes(self):
        """Test the storefront is cached and store edits invalidate it"""
        self.client.get(self.url())
        TestDataFactory.create_listing(user=self.store, description='New arrival')
        self.assertEqual(self.client.get(self.url()).data['store']['total_products'], 4)

        AuthenticatedAPIClient().authenticate_user(self.store).patch('/api/store/profile/', {'bio': 'New'},
                                                                     format='json')
        self.assertEqual(self.client.get(self.url()).data['store']['total_products'], 5)

    def test_not_a_store(self):
        """Test individuals and unverified stores have no storefront"""
        individual = TestDataFactory.create_user()
        response = self.client.get(f'/api/marketplace/store/{individual.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        response = self.client.get('/api/marketplace/store/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

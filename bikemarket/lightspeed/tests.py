"""
Test suite for Lightspeed module
Tests: token encryption, API client retries and pagination, OAuth connection
lifecycle, category and item preview, resumable inventory sync and endpoints
"""
from datetime import timedelta
from io import StringIO
from unittest.mock import patch, MagicMock
from urllib.parse import urlparse, parse_qs

import requests
from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status

from bikemarket.core.models import AuditLog
from bikemarket.core.test_utils import TestDataFactory, AuthenticatedAPIClient, TEST_ENCRYPTION_KEY
from bikemarket.listings.models import Listing
from bikemarket.lightspeed.client import LightspeedAuthError, LightspeedClient, LightspeedError, ensure_list
from bikemarket.lightspeed.connection import (
    consume_oauth_state, get_valid_access_token, refresh_access_token, start_oauth,
)
from bikemarket.lightspeed.models import CategorySyncPreference, LightspeedConnection, SyncJob
from bikemarket.lightspeed.services import (
    UNCATEGORIZED, default_price, fetch_items_preview, format_item_preview, merge_category_preferences,
)
from bikemarket.lightspeed.sync import (
    SyncInProgressError, cancel_sync, get_active_job, run_sync_step, start_sync, upsert_store_listings,
)
from bikemarket.lightspeed.tokens import TokenEncryptionError, decrypt_token, encrypt_token

LIGHTSPEED_SETTINGS = {
    'LIGHTSPEED_TOKEN_ENCRYPTION_KEY': TEST_ENCRYPTION_KEY,
    'LIGHTSPEED_CLIENT_ID': 'client-id',
    'LIGHTSPEED_CLIENT_SECRET': 'client-secret',
    'LIGHTSPEED_REDIRECT_URI': 'http://testserver/api/lightspeed/auth/callback/',
    'LIGHTSPEED_FRONTEND_REDIRECT': 'http://frontend.test/connect-lightspeed',
}

CATEGORIES = [
    {'categoryID': '10', 'name': 'Road Bikes', 'fullPathName': 'Bikes/Road Bikes', 'parentID': '1'},
    {'categoryID': '12', 'name': 'Helmets', 'fullPathName': 'Helmets', 'parentID': '0'},
]


def make_item(item_id, description='Trek Domane', category_id='10', price='1499.99', upc='', image=True):
    item = {
        'itemID': item_id,
        'description': description,
        'categoryID': category_id,
        'systemSku': f'SYS{item_id}',
        'customSku': '',
        'upc': upc,
        'modelYear': '2023',
        'manufacturerID': '3',
        'defaultCost': '900',
        'avgCost': '880.50',
        'timeStamp': '2024-01-01T00:00:00+00:00',
        'Prices': {'ItemPrice': [
            {'amount': '1999.00', 'useType': 'MSRP'},
            {'amount': price, 'useType': 'Default'},
        ]},
    }
    if image:
        item['Images'] = {'Image': {'baseImageURL': f'https://img.test/{item_id}.jpg', 'publicID': f'p{item_id}'}}
    return item


def make_response(status_code, json_data=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.headers = headers or {}
    response.json.return_value = json_data if json_data is not None else {}
    response.text = ''
    return response


class FakeLightspeedClient:
    """
    Stands in for LightspeedClient in sync and preview tests.

    ``pages`` maps (key, path_or_url, categoryID) to (records, next_url);
    absolute next URLs are looked up with a categoryID of None.
    """

    def __init__(self, pages=None, categories=None, items_by_category=None, error=None):
        self.pages = pages or {}
        self.categories = categories if categories is not None else CATEGORIES
        self.items_by_category = items_by_category or {}
        self.error = error
        self.calls = []

    def fetch_page(self, path_or_url, key, params=None):
        self.calls.append((key, path_or_url, dict(params or {})))
        if self.error:
            raise self.error
        category = None if path_or_url.startswith('http') else (params or {}).get('categoryID')
        return self.pages.get((key, path_or_url, category), ([], None))

    def get_item_shops(self, next_url=None, params=None):
        query = {'shopID': '0', 'qoh': '>,0'}
        query.update(params or {})
        return self.fetch_page(next_url or 'ItemShop.json', 'ItemShop', params=query)

    def get_categories(self, params=None):
        return list(self.categories)

    def get_items(self, params=None):
        if self.error:
            raise self.error
        return list(self.items_by_category.get(params.get('categoryID'), []))


def inventory_pages():
    return {
        ('ItemShop', 'ItemShop.json', None): (
            [
                {'itemID': '1', 'qoh': '2', 'sellable': '2', 'reorderPoint': '1', 'reorderLevel': '3'},
                {'itemID': '2', 'qoh': '1', 'sellable': '1'},
                {'itemID': '9', 'qoh': '0'},
            ],
            'https://api.test/ItemShop.json?offset=100',
        ),
        ('ItemShop', 'https://api.test/ItemShop.json?offset=100', None): (
            [{'itemID': '1', 'qoh': '3', 'sellable': '3'}],
            None,
        ),
    }


class TokenEncryptionTests(TestCase):
    """Test AES-GCM token storage format"""

    @override_settings(LIGHTSPEED_TOKEN_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY)
    def test_encrypt_format_and_decrypt(self):
        """Test tokens are stored as iv:tag:ciphertext hex and decrypt back"""
        encrypted = encrypt_token('secret-access-token')
        iv, tag, ciphertext = encrypted.split(':')
        self.assertEqual(len(bytes.fromhex(iv)), 12)
        self.assertEqual(len(bytes.fromhex(tag)), 16)
        self.assertNotIn('secret', encrypted)
        self.assertEqual(decrypt_token(encrypted), 'secret-access-token')
        self.assertNotEqual(encrypt_token('secret-access-token'), encrypted)

    @override_settings(LIGHTSPEED_TOKEN_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY)
    def test_tampered_token_rejected(self):
        """Test modified ciphertext fails authentication"""
        iv, tag, ciphertext = encrypt_token('secret').split(':')
        tampered = ''.join('1' if char == '0' else '0' for char in ciphertext)
        with self.assertRaises(TokenEncryptionError):
            decrypt_token(f'{iv}:{tag}:{tampered}')

    @override_settings(LIGHTSPEED_TOKEN_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY)
    def test_malformed_token_rejected(self):
        """Test strings without three hex parts are rejected"""
        with self.assertRaises(TokenEncryptionError):
            decrypt_token('not-encrypted')
        with self.assertRaises(TokenEncryptionError):
            decrypt_token('zz:zz:zz')

    @override_settings(LIGHTSPEED_TOKEN_ENCRYPTION_KEY='abcd')
    def test_short_key_rejected(self):
        """Test the key must be 32 bytes"""
        with self.assertRaises(TokenEncryptionError):
            encrypt_token('secret')


@patch('bikemarket.lightspeed.client.time.sleep')
class LightspeedClientTests(TestCase):
    """Test request retries and pagination"""

    def setUp(self):
        self.session = MagicMock()
        self.client = LightspeedClient('token', account_id='42', session=self.session)

    def test_retry_after_on_rate_limit(self, mock_sleep):
        """Test 429 waits for Retry-After then succeeds"""
        self.session.request.side_effect = [
            make_response(429, headers={'Retry-After': '2'}),
            make_response(200, {'Account': {'accountID': '42', 'name': 'Pedal Shop'}}),
        ]
        account = self.client.get_account()
        self.assertEqual(account['name'], 'Pedal Shop')
        mock_sleep.assert_any_call(2.0)
        self.assertEqual(self.session.request.call_count, 2)

    def test_server_errors_exhaust_retries(self, mock_sleep):
        """Test repeated 5xx raise after three attempts"""
        self.session.request.side_effect = [make_response(503) for _ in range(3)]
        with self.assertRaises(LightspeedError) as ctx:
            self.client.get('Item.json')
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(self.session.request.call_count, 3)
        mock_sleep.assert_any_call(1.0)
        mock_sleep.assert_any_call(2.0)

    def test_network_error_is_retried(self, mock_sleep):
        """Test connection errors are retried"""
        self.session.request.side_effect = [
            requests.exceptions.ConnectionError('reset'),
            make_response(200, {'Item': []}),
        ]
        self.assertEqual(self.client.get('Item.json'), {'Item': []})

    def test_unauthorized_is_not_retried(self, mock_sleep):
        """Test 401 raises LightspeedAuthError immediately"""
        self.session.request.return_value = make_response(401)
        with self.assertRaises(LightspeedAuthError):
            self.client.get('Item.json')
        self.assertEqual(self.session.request.call_count, 1)

    def test_client_error_raises(self, mock_sleep):
        """Test other 4xx raise LightspeedError"""
        self.session.request.return_value = make_response(404)
        with self.assertRaises(LightspeedError) as ctx:
            self.client.get('Item.json')
        self.assertEqual(ctx.exception.status_code, 404)

    def test_fetch_page_follows_absolute_next(self, mock_sleep):
        """Test single records are listed and next URLs are requested as-is"""
        self.session.request.side_effect = [
            make_response(200, {'Item': {'itemID': '1'}, '@attributes': {'next': 'https://api.test/Item.json?after=1'}}),
            make_response(200, {'Item': [{'itemID': '2'}], '@attributes': {'next': ''}}),
        ]
        records, next_url = self.client.fetch_page('Item.json', 'Item', params={'limit': 100})
        self.assertEqual(records, [{'itemID': '1'}])
        first_call = self.session.request.call_args_list[0]
        self.assertEqual(first_call.args[1], 'https://api.lightspeedapp.com/API/V3/Account/42/Item.json')
        self.assertEqual(first_call.kwargs['params'], {'limit': 100})

        records, next_url = self.client.fetch_page(next_url, 'Item', params={'limit': 100})
        self.assertEqual(records, [{'itemID': '2'}])
        self.assertIsNone(next_url)
        second_call = self.session.request.call_args_list[1]
        self.assertEqual(second_call.args[1], 'https://api.test/Item.json?after=1')
        self.assertIsNone(second_call.kwargs['params'])

    def test_get_categories_paginates(self, mock_sleep):
        """Test every category page is collected"""
        self.session.request.side_effect = [
            make_response(200, {'Category': [CATEGORIES[0]], '@attributes': {'next': 'https://api.test/c2'}}),
            make_response(200, {'Category': CATEGORIES[1]}),
        ]
        categories = self.client.get_categories()
        self.assertEqual([category['categoryID'] for category in categories], ['10', '12'])

    def test_get_item_shops_pages_stock(self, mock_sleep):
        """Test stock pages filter to shop 0 with stock and continue from next URLs"""
        self.session.request.side_effect = [
            make_response(200, {'ItemShop': [{'itemID': '1', 'qoh': '2'}], '@attributes': {'next': 'https://api.test/ItemShop.json?after=1'}}),
            make_response(200, {'ItemShop': {'itemID': '2', 'qoh': '1'}}),
        ]
        records, next_url = self.client.get_item_shops()
        self.assertEqual(records, [{'itemID': '1', 'qoh': '2'}])
        first_call = self.session.request.call_args_list[0]
        self.assertEqual(first_call.args[1], 'https://api.lightspeedapp.com/API/V3/Account/42/ItemShop.json')
        self.assertEqual(first_call.kwargs['params'], {'shopID': '0', 'qoh': '>,0', 'limit': 100})

        records, next_url = self.client.get_item_shops(next_url)
        self.assertEqual(records, [{'itemID': '2', 'qoh': '1'}])
        self.assertIsNone(next_url)
        self.assertEqual(self.session.request.call_args_list[1].args[1], 'https://api.test/ItemShop.json?after=1')

    def test_account_url_requires_account(self, mock_sleep):
        """Test relative paths need an account id"""
        client = LightspeedClient('token', session=MagicMock())
        with self.assertRaises(LightspeedError):
            client.account_url('Item.json')


class ServiceTests(TestCase):
    """Test Lightspeed record shaping"""

    def test_ensure_list(self):
        """Test bare objects and blanks are normalised"""
        self.assertEqual(ensure_list({'a': 1}), [{'a': 1}])
        self.assertEqual(ensure_list(''), [])
        self.assertEqual(ensure_list([1, 2]), [1, 2])

    def test_default_price(self):
        """Test the Default price is picked, else 0"""
        self.assertEqual(default_price(make_item('1', price='250.00')), '250.00')
        self.assertEqual(default_price({'Prices': {'ItemPrice': {'amount': '5', 'useType': 'MSRP'}}}), '0')

    def test_merge_category_preferences(self):
        """Test the uncategorized row comes first and saved flags apply"""
        user = TestDataFactory.create_store_user()
        CategorySyncPreference.objects.create(user=user, category_id='12', category_name='Helmets',
                                              is_enabled=True, product_count=4)
        merged = merge_category_preferences(CATEGORIES, CategorySyncPreference.objects.filter(user=user))
        self.assertEqual(merged[0]['categoryId'], UNCATEGORIZED)
        self.assertEqual(merged[0]['name'], 'No Category')
        helmets = merged[2]
        self.assertTrue(helmets['isEnabled'])
        self.assertEqual(helmets['productCount'], 4)
        self.assertIsNone(helmets['parentId'])
        self.assertEqual(merged[1]['parentId'], '1')

    def test_format_item_preview(self):
        """Test preview shape with stock from the account-wide shop"""
        item = make_item('7', category_id='99')
        item['ItemShops'] = {'ItemShop': [{'shopID': '1', 'qoh': '9'}, {'shopID': '0', 'qoh': '4', 'sellable': '3'}]}
        preview = format_item_preview(item, {})
        self.assertEqual(preview['category'], 'Unknown')
        self.assertEqual(preview['qoh'], '4')
        self.assertEqual(preview['sellable'], '3')
        self.assertEqual(preview['price'], '1499.99')
        self.assertEqual(preview['images'][0]['url'], 'https://img.test/7.jpg')

    def test_fetch_items_preview_dedupes_and_filters(self):
        """Test items are spread across categories and uncategorized is strict"""
        client = FakeLightspeedClient(items_by_category={
            '10': [make_item('1'), make_item('2')],
            '0': [make_item('2'), make_item('3', category_id='0'), make_item('4', category_id='12')],
        })
        items = fetch_items_preview(client, ['10', UNCATEGORIZED], limit=10)
        self.assertEqual([item['id'] for item in items], ['1', '2', '3'])
        self.assertEqual(items[0]['category'], 'Road Bikes')

    def test_fetch_items_preview_skips_failing_category(self):
        """Test errors in one category are logged and skipped"""
        client = FakeLightspeedClient(error=LightspeedError('boom'))
        self.assertEqual(fetch_items_preview(client, ['10']), [])


@override_settings(**LIGHTSPEED_SETTINGS)
class ConnectionTests(TestCase):
    """Test OAuth state and token lifecycle"""

    def setUp(self):
        self.user = TestDataFactory.create_store_user()

    def test_start_oauth_stores_state(self):
        """Test the authorize URL carries a stored state"""
        url = start_oauth(self.user)
        query = parse_qs(urlparse(url).query)
        connection = LightspeedConnection.objects.get(user=self.user)
        self.assertEqual(query['state'][0], connection.oauth_state)
        self.assertEqual(query['client_id'][0], 'client-id')
        self.assertEqual(query['scope'][0], 'employee:all')

    @override_settings(LIGHTSPEED_CLIENT_ID='')
    def test_start_oauth_unconfigured(self):
        """Test a missing client id raises"""
        with self.assertRaises(LightspeedError):
            start_oauth(self.user)

    def test_state_is_single_use(self):
        """Test a state can only be consumed once"""
        start_oauth(self.user)
        state = LightspeedConnection.objects.get(user=self.user).oauth_state
        self.assertIsNotNone(consume_oauth_state(state))
        self.assertIsNone(consume_oauth_state(state))

    def test_expired_state_rejected(self):
        """Test states older than ten minutes are rejected"""
        start_oauth(self.user)
        connection = LightspeedConnection.objects.get(user=self.user)
        LightspeedConnection.objects.filter(pk=connection.pk).update(
            oauth_state_expires_at=timezone.now() - timedelta(seconds=1))
        self.assertIsNone(consume_oauth_state(connection.oauth_state))

    def test_valid_token_not_refreshed(self):
        """Test tokens far from expiry are returned as stored"""
        connection = TestDataFactory.create_lightspeed_connection(user=self.user)
        with patch('bikemarket.lightspeed.connection.requests.post') as mock_post:
            self.assertEqual(get_valid_access_token(connection), 'access-token')
        mock_post.assert_not_called()

    @patch('bikemarket.lightspeed.connection.requests.post')
    def test_expiring_token_is_refreshed(self, mock_post):
        """Test tokens within five minutes of expiry are refreshed"""
        mock_post.return_value = make_response(200, {
            'access_token': 'fresh-access', 'refresh_token': 'fresh-refresh', 'expires_in': 1800,
        })
        connection = TestDataFactory.create_lightspeed_connection(user=self.user, expires_in=timedelta(minutes=2))
        self.assertEqual(get_valid_access_token(connection), 'fresh-access')
        body = mock_post.call_args.kwargs['json']
        self.assertEqual(body['grant_type'], 'refresh_token')
        self.assertEqual(body['refresh_token'], 'refresh-token')
        connection.refresh_from_db()
        self.assertEqual(decrypt_token(connection.refresh_token_encrypted), 'fresh-refresh')
        self.assertGreater(connection.token_expires_at, timezone.now() + timedelta(minutes=29))

    @patch('bikemarket.lightspeed.connection.requests.post')
    def test_failed_refresh_marks_expired(self, mock_post):
        """Test a rejected refresh expires the connection"""
        mock_post.return_value = make_response(400)
        connection = TestDataFactory.create_lightspeed_connection(user=self.user)
        with self.assertRaises(LightspeedAuthError):
            refresh_access_token(connection)
        connection.refresh_from_db()
        self.assertEqual(connection.status, 'expired')
        self.assertEqual(connection.error_count, 1)
        self.assertEqual(connection.last_error, 'Token refresh failed')

    def test_missing_refresh_token(self):
        """Test refresh without a stored refresh token fails"""
        connection = TestDataFactory.create_lightspeed_connection(user=self.user, refresh_token=None)
        with self.assertRaises(LightspeedAuthError):
            refresh_access_token(connection)

    @patch('bikemarket.lightspeed.connection.requests.post')
    def test_refresh_tokens_command(self, mock_post):
        """Test the command refreshes tokens expiring soon"""
        mock_post.return_value = make_response(200, {'access_token': 'fresh', 'expires_in': 3600})
        TestDataFactory.create_lightspeed_connection(user=self.user, expires_in=timedelta(minutes=10))
        TestDataFactory.create_lightspeed_connection(expires_in=timedelta(hours=5))
        out = StringIO()
        call_command('refresh_lightspeed_tokens', stdout=out)
        self.assertIn('Refreshed 1 of 1 connections', out.getvalue())


@override_settings(**LIGHTSPEED_SETTINGS)
class SyncTests(TestCase):
    """Test the resumable inventory sync"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_store_user()
        self.connection = TestDataFactory.create_lightspeed_connection(user=self.user)

    def full_sync_client(self):
        pages = inventory_pages()
        pages[('Item', 'Item.json', None)] = (
            [make_item('1'), make_item('2', description='Kask Helmet', category_id='0', price='299'), make_item('3')],
            None,
        )
        return FakeLightspeedClient(pages=pages)

    def test_full_sync_creates_store_listings(self):
        """Test a sync-all run imports every item with stock"""
        job = start_sync(self.user)
        self.assertTrue(job.sync_all)
        job = run_sync_step(job, client=self.full_sync_client(), pages=10)

        self.assertEqual(job.status, 'completed')
        self.assertEqual(job.progress, 100)
        self.assertEqual(job.items_with_stock, 2)
        self.assertEqual(job.items_created, 2)
        self.assertEqual(job.inventory, {})

        bike = Listing.objects.get(user=self.user, lightspeed_item_id='1')
        self.assertEqual(bike.qoh, 5)
        self.assertEqual(bike.sellable, 2)
        self.assertEqual(bike.reorder_level, 3)
        self.assertEqual(str(bike.price), '1499.99')
        self.assertEqual(bike.category_name, 'Road Bikes')
        self.assertEqual(bike.category_path, 'Bikes/Road Bikes')
        self.assertEqual(bike.listing_type, 'store_inventory')
        self.assertEqual(bike.listing_source, 'lightspeed')
        self.assertTrue(bike.is_active)
        self.assertEqual(bike.primary_image_url, 'https://img.test/1.jpg')
        self.assertEqual(bike.images.count(), 1)
        self.assertIsNotNone(bike.canonical_product)
        self.assertFalse(Listing.objects.filter(lightspeed_item_id='3').exists())

        self.connection.refresh_from_db()
        self.assertIsNotNone(self.connection.last_sync_at)
        self.assertTrue(AuditLog.objects.filter(action='lightspeed_sync').exists())

    def test_sync_pauses_between_steps(self):
        """Test a bounded step saves the cursor and pauses"""
        client = self.full_sync_client()
        job = run_sync_step(start_sync(self.user), client=client, pages=1)
        self.assertEqual(job.status, 'paused')
        self.assertEqual(job.phase, 'fetch_inventory')
        self.assertEqual(job.next_url, 'https://api.test/ItemShop.json?offset=100')

        job = SyncJob.objects.get(pk=job.pk)
        self.assertEqual(job.inventory['1']['qoh'], 2)
        job = run_sync_step(job, client=client, pages=1)
        self.assertEqual(job.phase, 'prepare')
        self.assertEqual(job.inventory['1']['qoh'], 5)

        job = run_sync_step(job, client=client, pages=10)
        self.assertEqual(job.status, 'completed')

    def test_category_sync(self):
        """Test syncing selected categories including uncategorized items"""
        CategorySyncPreference.objects.create(user=self.user, category_id='10', is_enabled=True)
        CategorySyncPreference.objects.create(user=self.user, category_id=UNCATEGORIZED, is_enabled=True)
        pages = {
            ('ItemShop', 'ItemShop.json', None): (
                [{'itemID': '1', 'qoh': '1'}, {'itemID': '2', 'qoh': '1'}, {'itemID': '4', 'qoh': '1'}], None,
            ),
            ('Item', 'Item.json', '10'): ([make_item('1')], None),
            ('Item', 'Item.json', '0'): ([make_item('2', category_id='0'), make_item('4', category_id='12')], None),
        }
        client = FakeLightspeedClient(pages=pages)
        job = start_sync(self.user, ['10', UNCATEGORIZED])
        self.assertFalse(job.sync_all)
        job = run_sync_step(job, client=client, pages=10)

        self.assertEqual(job.status, 'completed')
        self.assertEqual(set(Listing.objects.filter(user=self.user).values_list('lightspeed_item_id', flat=True)), {'1', '2'})
        item_calls = [call for call in client.calls if call[0] == 'Item']
        self.assertEqual([call[2]['categoryID'] for call in item_calls], ['10', '0'])
        uncategorized = CategorySyncPreference.objects.get(user=self.user, category_id=UNCATEGORIZED)
        self.assertEqual(uncategorized.product_count, 1)
        self.assertIsNotNone(uncategorized.last_synced_at)

    def test_resync_updates_existing_listing(self):
        """Test a second sync updates instead of duplicating and keeps sold items sold"""
        run_sync_step(start_sync(self.user), client=self.full_sync_client(), pages=10)
        bike = Listing.objects.get(lightspeed_item_id='1')
        helmet = Listing.objects.get(lightspeed_item_id='2')
        helmet.sold_at = timezone.now()
        helmet.listing_status = 'sold'
        helmet.is_active = False
        helmet.save()

        job = run_sync_step(start_sync(self.user), client=self.full_sync_client(), pages=10)
        self.assertEqual(job.items_created, 0)
        self.assertEqual(job.items_updated, 2)
        self.assertEqual(Listing.objects.filter(user=self.user).count(), 2)
        helmet.refresh_from_db()
        self.assertEqual(helmet.listing_status, 'sold')
        bike.refresh_from_db()
        self.assertEqual(bike.images.count(), 1)

    def test_upsert_matches_canonical_by_upc(self):
        """Test store items share a canonical product by UPC"""
        other_store = TestDataFactory.create_store_user()
        inventory = {'1': {'qoh': 1}}
        upsert_store_listings(other_store, [make_item('1', upc='0123456789')], inventory, {})
        upsert_store_listings(self.user, [make_item('1', description='Other name', upc='0123456789')], inventory, {})
        listings = Listing.objects.filter(lightspeed_item_id='1')
        self.assertEqual(len({listing.canonical_product_id for listing in listings}), 1)

    def test_only_one_active_sync(self):
        """Test a second start is refused while a job is unfinished"""
        start_sync(self.user)
        with self.assertRaises(SyncInProgressError):
            start_sync(self.user)

    def test_racing_start_is_refused(self):
        """Test a start that slips past the active-job check still cannot create a second job"""
        start_sync(self.user)
        with patch('bikemarket.lightspeed.sync.get_active_job', return_value=None):
            with self.assertRaises(SyncInProgressError):
                start_sync(self.user)
        self.assertEqual(SyncJob.objects.filter(user=self.user, status__in=['running', 'paused']).count(), 1)

    def test_step_skips_job_held_by_another_step(self):
        """Test a continue does not run while another step holds the job"""
        client = self.full_sync_client()
        job = start_sync(self.user)
        SyncJob.objects.filter(pk=job.pk).update(status='running')
        job = run_sync_step(job, client=client, pages=10)
        self.assertEqual(client.calls, [])
        self.assertEqual(job.status, 'running')
        self.assertEqual(job.phase, 'fetch_inventory')

    def test_cancel_during_last_page_is_kept(self):
        """Test a cancel that lands while the final page is fetched is not overwritten"""
        client = self.full_sync_client()
        job = start_sync(self.user)
        fetch_page = client.fetch_page

        def fetch_and_cancel(path_or_url, key, params=None):
            if key == 'Item':
                cancel_sync(SyncJob.objects.get(pk=job.pk))
            return fetch_page(path_or_url, key, params=params)

        client.fetch_page = fetch_and_cancel
        job = run_sync_step(job, client=client, pages=10)

        self.assertEqual(job.status, 'cancelled')
        self.assertIsNone(job.completed_at)
        self.assertFalse(AuditLog.objects.filter(action='lightspeed_sync').exists())
        self.connection.refresh_from_db()
        self.assertIsNone(self.connection.last_sync_at)

    def test_failure_does_not_overwrite_cancel(self):
        """Test an error surfacing after a cancel leaves the job cancelled"""
        job = start_sync(self.user)

        def cancel_then_fail(path_or_url, key, params=None):
            cancel_sync(SyncJob.objects.get(pk=job.pk))
            raise LightspeedError('boom')

        client = FakeLightspeedClient()
        client.fetch_page = cancel_then_fail
        job = run_sync_step(job, client=client, pages=1)
        self.assertEqual(job.status, 'cancelled')
        self.connection.refresh_from_db()
        self.assertEqual(self.connection.error_count, 0)

    def test_stale_job_is_failed(self):
        """Test abandoned jobs stop blocking new syncs"""
        job = start_sync(self.user)
        SyncJob.objects.filter(pk=job.pk).update(updated_at=timezone.now() - timedelta(minutes=31))
        self.assertIsNone(get_active_job(self.user))
        job.refresh_from_db()
        self.assertEqual(job.status, 'failed')
        self.assertIsNotNone(start_sync(self.user))

    def test_start_requires_connection(self):
        """Test syncing without a connection raises"""
        with self.assertRaises(LightspeedAuthError):
            start_sync(TestDataFactory.create_store_user())

    def test_cancelled_job_does_not_run(self):
        """Test a cancelled job is left alone"""
        client = self.full_sync_client()
        job = cancel_sync(start_sync(self.user))
        job = run_sync_step(job, client=client)
        self.assertEqual(job.status, 'cancelled')
        self.assertEqual(client.calls, [])

    def test_api_failure_fails_job(self):
        """Test errors fail the job and are recorded on the connection"""
        job = run_sync_step(start_sync(self.user), client=FakeLightspeedClient(error=LightspeedError('boom')))
        self.assertEqual(job.status, 'failed')
        self.assertEqual(job.phase, 'error')
        self.assertEqual(job.error, 'boom')
        self.connection.refresh_from_db()
        self.assertEqual(self.connection.last_error, 'boom')
        self.assertEqual(self.connection.error_count, 1)


@override_settings(**LIGHTSPEED_SETTINGS)
class LightspeedAPITests(TestCase):
    """Test Lightspeed endpoints"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_store_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_connection_status_without_connection(self):
        """Test status when never connected"""
        response = self.client.get('/api/lightspeed/connection/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['connected'])
        self.assertIsNone(response.data['connection'])

    @patch('bikemarket.lightspeed.connection.LightspeedClient')
    @patch('bikemarket.lightspeed.connection.requests.post')
    def test_oauth_flow(self, mock_post, mock_client_class):
        """Test connect, callback and connected status"""
        mock_post.return_value = make_response(200, {
            'access_token': 'new-access', 'refresh_token': 'new-refresh', 'expires_in': 3600,
        })
        mock_client_class.return_value.get_account.return_value = {'accountID': 555, 'name': 'Pedal Shop'}

        response = self.client.get('/api/lightspeed/connect/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        state = parse_qs(urlparse(response.data['authorizeUrl']).query)['state'][0]

        callback = AuthenticatedAPIClient().get('/api/lightspeed/auth/callback/', {'code': 'abc', 'state': state})
        self.assertEqual(callback.status_code, status.HTTP_302_FOUND)
        self.assertEqual(callback['Location'], 'http://frontend.test/connect-lightspeed?success=true')

        connection = LightspeedConnection.objects.get(user=self.user)
        self.assertEqual(connection.status, 'connected')
        self.assertEqual(connection.account_id, '555')
        self.assertEqual(decrypt_token(connection.access_token_encrypted), 'new-access')
        self.assertTrue(AuditLog.objects.filter(action='lightspeed_connect', user=self.user).exists())

        response = self.client.get('/api/lightspeed/connection/')
        self.assertTrue(response.data['connected'])
        self.assertNotIn('access_token_encrypted', response.data['connection'])

    def test_callback_with_unknown_state(self):
        """Test unknown states redirect with an error"""
        response = AuthenticatedAPIClient().get('/api/lightspeed/auth/callback/', {'code': 'abc', 'state': 'nope'})
        self.assertEqual(response.status_code, status.HTTP_302_FOUND)
        self.assertIn('error=Invalid+or+expired+state+token', response['Location'])

    def test_callback_with_provider_error(self):
        """Test provider errors are passed to the frontend"""
        response = AuthenticatedAPIClient().get('/api/lightspeed/auth/callback/', {
            'error': 'access_denied', 'error_description': 'User denied',
        })
        self.assertIn('error=User+denied', response['Location'])

    @patch('bikemarket.lightspeed.connection.requests.post')
    def test_callback_exchange_failure(self, mock_post):
        """Test a failed code exchange marks the connection errored"""
        mock_post.return_value = make_response(400)
        self.client.get('/api/lightspeed/connect/')
        state = LightspeedConnection.objects.get(user=self.user).oauth_state
        response = AuthenticatedAPIClient().get('/api/lightspeed/auth/callback/', {'code': 'bad', 'state': state})
        self.assertIn('error=Failed+to+exchange', response['Location'])
        self.assertEqual(LightspeedConnection.objects.get(user=self.user).status, 'error')

    @override_settings(LIGHTSPEED_CLIENT_ID='')
    def test_connect_unconfigured(self):
        """Test connect reports missing configuration"""
        response = self.client.get('/api/lightspeed/connect/')
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)

    def test_disconnect(self):
        """Test disconnect wipes tokens"""
        TestDataFactory.create_lightspeed_connection(user=self.user)
        response = self.client.delete('/api/lightspeed/connection/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        connection = LightspeedConnection.objects.get(user=self.user)
        self.assertEqual(connection.status, 'disconnected')
        self.assertIsNone(connection.access_token_encrypted)
        self.assertIsNone(connection.refresh_token_encrypted)

    def test_disconnect_without_connection(self):
        """Test disconnect when never connected"""
        response = self.client.delete('/api/lightspeed/connection/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_categories_require_connection(self):
        """Test categories need a connected account"""
        response = self.client.get('/api/lightspeed/categories/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Lightspeed not connected')

    @patch('bikemarket.lightspeed.views.get_client')
    def test_categories_merged_and_cached(self, mock_get_client):
        """Test categories are merged with preferences and cached"""
        mock_get_client.return_value = FakeLightspeedClient()
        TestDataFactory.create_lightspeed_connection(user=self.user)
        CategorySyncPreference.objects.create(user=self.user, category_id='10', is_enabled=True)

        response = self.client.get('/api/lightspeed/categories/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['totalCategories'], 3)
        self.assertEqual(response.data['enabledCount'], 1)
        self.client.get('/api/lightspeed/categories/')
        self.assertEqual(mock_get_client.call_count, 1)
        self.client.get('/api/lightspeed/categories/', {'refresh': 'true'})
        self.assertEqual(mock_get_client.call_count, 2)

    @patch('bikemarket.lightspeed.views.get_client')
    def test_categories_expired_session(self, mock_get_client):
        """Test an expired session returns 401"""
        mock_get_client.side_effect = LightspeedAuthError('Lightspeed session expired. Please reconnect your account.')
        TestDataFactory.create_lightspeed_connection(user=self.user)
        response = self.client.get('/api/lightspeed/categories/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_save_category_preferences(self):
        """Test preferences are upserted"""
        data = {'categories': [
            {'categoryId': '10', 'name': 'Road Bikes', 'fullPath': 'Bikes/Road Bikes', 'isEnabled': True},
            {'categoryId': UNCATEGORIZED, 'name': 'No Category', 'isEnabled': False},
        ]}
        response = self.client.post('/api/lightspeed/categories/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['updated'], 2)
        data['categories'][0]['isEnabled'] = False
        self.client.post('/api/lightspeed/categories/', data, format='json')
        self.assertEqual(CategorySyncPreference.objects.filter(user=self.user).count(), 2)
        self.assertFalse(CategorySyncPreference.objects.get(user=self.user, category_id='10').is_enabled)

    def test_save_category_preferences_invalid(self):
        """Test a non-list body is rejected"""
        response = self.client.post('/api/lightspeed/categories/', {'categories': 'x'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid request format')

    def test_items_require_category_ids(self):
        """Test the categoryIds parameter is required"""
        response = self.client.get('/api/lightspeed/items/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('bikemarket.lightspeed.views.get_client')
    def test_items_preview(self, mock_get_client):
        """Test items preview for selected categories"""
        mock_get_client.return_value = FakeLightspeedClient(items_by_category={'10': [make_item('1')]})
        TestDataFactory.create_lightspeed_connection(user=self.user)
        response = self.client.get('/api/lightspeed/items/', {'categoryIds': '10', 'limit': '5'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 1)
        self.assertEqual(response.data['items'][0]['category'], 'Road Bikes')

    def test_sync_requires_connection(self):
        """Test starting a sync without a connection"""
        response = self.client.post('/api/lightspeed/sync/', {'syncAll': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('bikemarket.lightspeed.sync.get_client')
    def test_sync_start_poll_and_conflict(self, mock_get_client):
        """Test starting, polling and a conflicting start"""
        pages = inventory_pages()
        pages[('ItemShop', 'https://api.test/ItemShop.json?offset=100', None)] = (
            [], 'https://api.test/ItemShop.json?offset=200')
        mock_get_client.return_value = FakeLightspeedClient(pages=pages)
        TestDataFactory.create_lightspeed_connection(user=self.user)

        with override_settings(LIGHTSPEED_SYNC_PAGES_PER_STEP=1):
            response = self.client.post('/api/lightspeed/sync/', {'syncAll': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_202_ACCEPTED)
        job_id = response.data['job']['id']
        self.assertEqual(response.data['job']['status'], 'paused')

        response = self.client.post('/api/lightspeed/sync/', {'syncAll': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = self.client.get('/api/lightspeed/sync/', {'jobId': job_id})
        self.assertEqual(response.data['job']['id'], job_id)
        response = self.client.get('/api/lightspeed/sync/', {'jobId': 'abc'})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.post(f'/api/lightspeed/sync/{job_id}/cancel/')
        self.assertEqual(response.data['job']['status'], 'cancelled')
        response = self.client.post(f'/api/lightspeed/sync/{job_id}/cancel/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Sync already cancelled')

    @patch('bikemarket.lightspeed.sync.get_client')
    def test_sync_continue_to_completion(self, mock_get_client):
        """Test continuing a paused sync until it completes"""
        pages = inventory_pages()
        pages[('Item', 'Item.json', None)] = ([make_item('1')], None)
        mock_get_client.return_value = FakeLightspeedClient(pages=pages)
        TestDataFactory.create_lightspeed_connection(user=self.user)

        with override_settings(LIGHTSPEED_SYNC_PAGES_PER_STEP=1):
            response = self.client.post('/api/lightspeed/sync/', {'categoryIds': []}, format='json')
            job_id = response.data['job']['id']
            for _ in range(5):
                response = self.client.post(f'/api/lightspeed/sync/{job_id}/continue/')
                if response.data['job']['status'] == 'completed':
                    break
        self.assertEqual(response.data['job']['status'], 'completed')
        self.assertEqual(response.data['job']['items_created'], 1)

    def test_sync_continue_unknown_job(self):
        """Test continuing another user's job"""
        other_job = SyncJob.objects.create(user=TestDataFactory.create_store_user())
        response = self.client.post(f'/api/lightspeed/sync/{other_job.id}/continue/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

"""
Test suite for Listings module
Tests: listing CRUD, drafts, sold toggling, edit history, bulk create,
image upload, public browse, canonical products and expiry
"""
import io
import shutil
import tempfile
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from PIL import Image
from rest_framework import status

from bikemarket.core.models import AuditLog
from bikemarket.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bikemarket.listings.images import generate_variants, ImageProcessingError
from bikemarket.listings.models import CanonicalProduct, Listing, ListingDraft
from bikemarket.listings.services import (
    ensure_canonical_product, generate_draft_name, map_form_fields, pick_primary_image,
)


def make_image_bytes(fmt='PNG', size=(800, 600)):
    buffer = io.BytesIO()
    Image.new('RGB', size, color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


class ListingServiceTests(TestCase):
    """Test listing helper functions"""

    def test_map_form_fields(self):
        """Test camelCase keys map to model fields and unknown keys are dropped"""
        mapped = map_form_fields({
            'title': 'Trek Domane',
            'modelYear': '2022',
            'shippingCost': '',
            'unknownField': 'x',
            'itemType': 'part',
        })
        self.assertEqual(mapped['description'], 'Trek Domane')
        self.assertEqual(mapped['model_year'], '2022')
        self.assertIsNone(mapped['shipping_cost'])
        self.assertEqual(mapped['marketplace_category'], 'Parts')
        self.assertNotIn('unknownField', mapped)

    def test_explicit_null_becomes_empty_default(self):
        """Test non-nullable fields turn explicit nulls into empty values"""
        mapped = map_form_fields({'serviceHistory': None, 'isNegotiable': None})
        self.assertEqual(mapped['service_history'], [])
        self.assertFalse(mapped['is_negotiable'])

    def test_pick_primary_image(self):
        """Test primary image preference order"""
        images = [{'url': 'a', 'order': 1}, {'url': 'b', 'order': 0}, {'url': 'c', 'isPrimary': True}]
        self.assertEqual(pick_primary_image(images)['url'], 'c')
        self.assertEqual(pick_primary_image(images[:2])['url'], 'b')
        self.assertIsNone(pick_primary_image([]))

    def test_canonical_product_matches_upc(self):
        """Test UPC match ignores case and whitespace"""
        first = ensure_canonical_product('Shimano XT Cassette', upc='abc 123')
        second = ensure_canonical_product('Different name', upc='ABC123')
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.upc, 'ABC123')

    def test_canonical_product_matches_normalized_name(self):
        """Test name match without UPC ignores punctuation and case"""
        first = ensure_canonical_product('Giant TCR, Advanced!')
        second = ensure_canonical_product('giant tcr advanced')
        self.assertEqual(first.id, second.id)
        self.assertEqual(CanonicalProduct.objects.count(), 1)

    def test_generate_draft_name(self):
        """Test drafts are named after the bike when known"""
        self.assertEqual(generate_draft_name({'brand': 'Trek', 'model': 'Marlin', 'modelYear': 2021}), 'Trek Marlin 2021')
        self.assertTrue(generate_draft_name({}))


class ListingAPITests(TestCase):
    """Test owner listing endpoints"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_listing(self):
        """Test creating an active listing with images"""
        data = {
            'title': 'Specialized Allez',
            'brand': 'Specialized',
            'price': '950.00',
            'listingStatus': 'active',
            'images': [
                {'url': 'https://cdn.test/1.webp', 'cardUrl': 'https://cdn.test/1-card.webp', 'order': 1},
                {'url': 'https://cdn.test/0.webp', 'cardUrl': 'https://cdn.test/0-card.webp', 'order': 0},
            ],
        }
        response = self.client.post('/api/marketplace/listings/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        listing = Listing.objects.get(pk=response.data['listing']['id'])
        self.assertTrue(listing.is_active)
        self.assertIsNotNone(listing.published_at)
        self.assertIsNotNone(listing.expires_at)
        self.assertEqual(listing.primary_image_url, 'https://cdn.test/0-card.webp')
        self.assertEqual(listing.images.count(), 2)
        self.assertIsNotNone(listing.canonical_product)
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Listing').exists())

    def test_create_listing_defaults_to_draft(self):
        """Test listings without a status are drafts"""
        response = self.client.post('/api/marketplace/listings/', {'title': 'Helmet'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['listing']['listing_status'], 'draft')
        self.assertFalse(response.data['listing']['is_active'])

    def test_create_listing_invalid_status(self):
        """Test unknown statuses are rejected"""
        response = self.client.post('/api/marketplace/listings/', {'title': 'x', 'listingStatus': 'bogus'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('Invalid listing status', response.data['error'])

    def test_create_listing_negative_price(self):
        """Test negative prices fail validation"""
        response = self.client.post('/api/marketplace/listings/', {'title': 'x', 'price': '-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('price', response.data)

    def test_list_own_listings_with_status_filter(self):
        """Test owner list filters and excludes other sellers and POS imports"""
        TestDataFactory.create_listing(user=self.user)
        TestDataFactory.create_listing(user=self.user, listing_status='archived')
        TestDataFactory.create_listing(user=self.user, listing_status='sold', sold_at=timezone.now())
        TestDataFactory.create_listing(user=self.user, listing_source='lightspeed')
        TestDataFactory.create_listing()

        response = self.client.get('/api/marketplace/listings/')
        self.assertEqual(len(response.data['listings']), 3)
        response = self.client.get('/api/marketplace/listings/', {'status': 'active'})
        self.assertEqual(len(response.data['listings']), 1)
        response = self.client.get('/api/marketplace/listings/', {'status': 'sold'})
        self.assertEqual(len(response.data['listings']), 1)

    def test_get_listing_counts_views_for_others(self):
        """Test views increment for non-owners only"""
        listing = TestDataFactory.create_listing(user=self.user)
        self.client.get(f'/api/marketplace/listings/{listing.id}/')
        listing.refresh_from_db()
        self.assertEqual(listing.views, 0)

        anonymous = AuthenticatedAPIClient()
        response = anonymous.get(f'/api/marketplace/listings/{listing.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        listing.refresh_from_db()
        self.assertEqual(listing.views, 1)

    def test_update_listing_writes_edit_log(self):
        """Test updates record per-field history"""
        listing = TestDataFactory.create_listing(user=self.user, price=Decimal('100.00'))
        response = self.client.put(f'/api/marketplace/listings/{listing.id}/', {'price': '80.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        history = self.client.get(f'/api/marketplace/listings/{listing.id}/history/')
        fields = [edit['field_name'] for edit in history.data['edits']]
        self.assertEqual(fields, ['price'])
        self.assertEqual(history.data['edits'][0]['old_value'], '100.00')

    def test_update_listing_without_logging(self):
        """Test logChanges=false skips the edit history"""
        listing = TestDataFactory.create_listing(user=self.user)
        self.client.put(f'/api/marketplace/listings/{listing.id}/', {'brand': 'Cannondale', 'logChanges': False}, format='json')
        self.assertEqual(listing.edit_logs.count(), 0)

    def test_update_listing_no_fields(self):
        """Test an empty update is rejected"""
        listing = TestDataFactory.create_listing(user=self.user)
        response = self.client.put(f'/api/marketplace/listings/{listing.id}/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_update_other_users_listing(self):
        """Test non-owners cannot modify a listing"""
        listing = TestDataFactory.create_listing()
        response = self.client.put(f'/api/marketplace/listings/{listing.id}/', {'price': '1.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_delete_draft_removes_row(self):
        """Test deleting a draft listing deletes it"""
        listing = TestDataFactory.create_listing(user=self.user, listing_status='draft')
        response = self.client.delete(f'/api/marketplace/listings/{listing.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Listing.objects.filter(pk=listing.id).exists())

    def test_delete_published_soft_removes(self):
        """Test deleting a published listing marks it removed"""
        listing = TestDataFactory.create_listing(user=self.user)
        self.client.delete(f'/api/marketplace/listings/{listing.id}/')
        listing.refresh_from_db()
        self.assertEqual(listing.listing_status, 'removed')
        self.assertFalse(listing.is_active)

    def test_mark_sold_and_unsold(self):
        """Test toggling the sold state"""
        listing = TestDataFactory.create_listing(user=self.user)
        response = self.client.post(f'/api/marketplace/listings/{listing.id}/sold/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        listing.refresh_from_db()
        self.assertTrue(listing.is_sold)
        self.assertEqual(listing.listing_status, 'sold')

        response = self.client.post(f'/api/marketplace/listings/{listing.id}/sold/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.delete(f'/api/marketplace/listings/{listing.id}/sold/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        listing.refresh_from_db()
        self.assertFalse(listing.is_sold)
        self.assertTrue(listing.is_active)

    def test_update_status_to_sold_sets_sold_at(self):
        """Test setting listingStatus sold through PUT keeps the sold filters consistent"""
        listing = TestDataFactory.create_listing(user=self.user)
        response = self.client.put(f'/api/marketplace/listings/{listing.id}/', {'listingStatus': 'sold'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        listing.refresh_from_db()
        self.assertIsNotNone(listing.sold_at)
        self.assertFalse(listing.is_active)

        sold_ids = [item['id'] for item in self.client.get('/api/marketplace/listings/?status=sold').data['listings']]
        active_ids = [item['id'] for item in self.client.get('/api/marketplace/listings/?status=active').data['listings']]
        self.assertIn(listing.id, sold_ids)
        self.assertNotIn(listing.id, active_ids)

        response = self.client.post(f'/api/marketplace/listings/{listing.id}/sold/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        self.client.put(f'/api/marketplace/listings/{listing.id}/', {'listingStatus': 'active'}, format='json')
        listing.refresh_from_db()
        self.assertIsNone(listing.sold_at)

    def test_create_listing_as_sold_sets_sold_at(self):
        """Test creating a listing already sold stamps sold_at"""
        response = self.client.post('/api/marketplace/listings/', {
            'title': 'Old Trek',
            'price': '150.00',
            'listingStatus': 'sold',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        listing = Listing.objects.get(pk=response.data['listing']['id'])
        self.assertEqual(listing.listing_status, 'sold')
        self.assertIsNotNone(listing.sold_at)

    def test_mark_sold_not_owner(self):
        """Test only the owner can mark a listing sold"""
        listing = TestDataFactory.create_listing()
        response = self.client.post(f'/api/marketplace/listings/{listing.id}/sold/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_bulk_create_partial_success(self):
        """Test bulk create reports per-item results"""
        data = {'listings': [{'title': 'Pedals', 'price': '40'}, {'title': 'Bad', 'price': '-5'}, 'nope']}
        response = self.client.post('/api/marketplace/listings/bulk/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['created'], 1)
        self.assertEqual(response.data['failed'], 2)
        listing = Listing.objects.get(pk=response.data['results'][0]['listingId'])
        self.assertEqual(listing.listing_status, 'active')

    def test_bulk_create_requires_list(self):
        """Test bulk create rejects a missing array"""
        response = self.client.post('/api/marketplace/listings/bulk/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class DraftAPITests(TestCase):
    """Test listing draft endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_save_and_update_draft(self):
        """Test creating then updating a draft by id"""
        response = self.client.post('/api/marketplace/drafts/', {
            'formData': {'brand': 'Trek', 'model': 'Fuel'}, 'currentStep': 2,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        draft_id = response.data['draft']['id']
        self.assertEqual(response.data['draft']['draft_name'], 'Trek Fuel')

        response = self.client.post('/api/marketplace/drafts/', {
            'draftId': draft_id, 'formData': {'brand': 'Trek'}, 'currentStep': 3,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(ListingDraft.objects.get(pk=draft_id).current_step, 3)

    def test_save_draft_requires_form_data(self):
        """Test form data is required"""
        response = self.client.post('/api/marketplace/drafts/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_completed_drafts_hidden(self):
        """Test completed drafts are not listed"""
        draft = ListingDraft.objects.create(user=self.user, form_data={}, draft_name='Old')
        self.client.patch(f'/api/marketplace/drafts/{draft.id}/', {'completed': True}, format='json')
        response = self.client.get('/api/marketplace/drafts/')
        self.assertEqual(response.data['drafts'], [])

    def test_other_users_draft_not_found(self):
        """Test drafts are scoped to their owner"""
        other = TestDataFactory.create_user()
        draft = ListingDraft.objects.create(user=other, form_data={}, draft_name='Theirs')
        response = self.client.get(f'/api/marketplace/drafts/{draft.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class BrowseAPITests(TestCase):
    """Test public marketplace browse"""

    def setUp(self):
        cache.clear()
        self.client = AuthenticatedAPIClient()

    def test_browse_only_live_listings(self):
        """Test drafts, sold and inactive listings are hidden"""
        live = TestDataFactory.create_listing(description='Road bike')
        TestDataFactory.create_listing(listing_status='draft')
        TestDataFactory.create_listing(sold_at=timezone.now())
        response = self.client.get('/api/marketplace/browse/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['id'], live.id)

    def test_browse_search_and_price_filters(self):
        """Test search words and price range filters"""
        TestDataFactory.create_listing(description='Trek carbon road bike', price=Decimal('2500'))
        TestDataFactory.create_listing(description='Trek kids bike', price=Decimal('200'))
        TestDataFactory.create_listing(description='Giant road bike', price=Decimal('1800'))
        response = self.client.get('/api/marketplace/browse/', {'search': 'trek road'})
        self.assertEqual(response.data['count'], 1)
        response = self.client.get('/api/marketplace/browse/', {'min_price': '1000'})
        self.assertEqual(response.data['count'], 2)

    def test_browse_pagination(self):
        """Test page size and next page"""
        for _ in range(3):
            TestDataFactory.create_listing()
        response = self.client.get('/api/marketplace/browse/', {'page_size': 2})
        self.assertEqual(len(response.data['results']), 2)
        self.assertEqual(response.data['next'], 2)
        self.assertEqual(response.data['total_pages'], 2)


@override_settings(MEDIA_ROOT=tempfile.mkdtemp())
class ImageUploadTests(TestCase):
    """Test listing image upload and variant generation"""

    @classmethod
    def tearDownClass(cls):
        from django.conf import settings
        shutil.rmtree(settings.MEDIA_ROOT, ignore_errors=True)
        super().tearDownClass()

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_generate_variants_resizes(self):
        """Test variants are WebP and bounded by their max edge"""
        variants = generate_variants(make_image_bytes(size=(1200, 900)))
        self.assertEqual(set(variants), {'original', 'card', 'thumbnail'})
        card = Image.open(io.BytesIO(variants['card']))
        self.assertEqual(card.format, 'WEBP')
        self.assertEqual(max(card.size), 400)

    def test_generate_variants_rejects_garbage(self):
        """Test non-image bytes raise ImageProcessingError"""
        with self.assertRaises(ImageProcessingError):
            generate_variants(b'not an image')

    def test_upload_image(self):
        """Test uploading returns variant URLs"""
        upload = SimpleUploadedFile('bike.png', make_image_bytes(), content_type='image/png')
        response = self.client.post('/api/marketplace/listings/upload-image/', {'file': upload}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['cardUrl'].endswith('-card.webp'))

    def test_upload_into_own_listing_folder(self):
        """Test a valid listingId places variants under that listing"""
        listing = TestDataFactory.create_listing(user=self.user)
        upload = SimpleUploadedFile('bike.png', make_image_bytes(), content_type='image/png')
        response = self.client.post('/api/marketplace/listings/upload-image/',
                                    {'file': upload, 'listingId': str(listing.id)}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIn(f'/listings/{self.user.id}/{listing.id}/', response.data['url'])

    def test_upload_rejects_path_like_listing_id(self):
        """Test a listingId that is not a listing id is rejected"""
        upload = SimpleUploadedFile('bike.png', make_image_bytes(), content_type='image/png')
        response = self.client.post('/api/marketplace/listings/upload-image/',
                                    {'file': upload, 'listingId': '../../other'}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_upload_rejects_other_users_listing_id(self):
        """Test uploads cannot target another user's listing"""
        other_listing = TestDataFactory.create_listing()
        upload = SimpleUploadedFile('bike.png', make_image_bytes(), content_type='image/png')
        response = self.client.post('/api/marketplace/listings/upload-image/',
                                    {'file': upload, 'listingId': str(other_listing.id)}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_upload_rejects_content_type(self):
        """Test unsupported content types are rejected"""
        upload = SimpleUploadedFile('bike.gif', b'GIF89a', content_type='image/gif')
        response = self.client.post('/api/marketplace/listings/upload-image/', {'file': upload}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ExpireListingsCommandTests(TestCase):
    """Test the expire_listings management command"""

    def test_expires_overdue_listings(self):
        """Test overdue active listings become expired"""
        overdue = TestDataFactory.create_listing(expires_at=timezone.now() - timedelta(days=1))
        current = TestDataFactory.create_listing()
        out = StringIO()
        call_command('expire_listings', stdout=out)
        overdue.refresh_from_db()
        current.refresh_from_db()
        self.assertEqual(overdue.listing_status, 'expired')
        self.assertFalse(overdue.is_active)
        self.assertEqual(current.listing_status, 'active')
        self.assertIn('Expired 1 listings', out.getvalue())

    def test_dry_run_changes_nothing(self):
        """Test dry run only reports"""
        overdue = TestDataFactory.create_listing(expires_at=timezone.now() - timedelta(days=1))
        out = StringIO()
        call_command('expire_listings', '--dry-run', stdout=out)
        overdue.refresh_from_db()
        self.assertEqual(overdue.listing_status, 'active')
        self.assertIn('DRY RUN', out.getvalue())

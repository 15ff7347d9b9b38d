"""
Listing helpers shared by the listing endpoints and the Lightspeed sync:
canonical product matching, form-field mapping and image selection.
"""
import logging
import re
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import CanonicalProduct, Listing, ListingImage

logger = logging.getLogger(__name__)

# camelCase form field -> Listing model field
LISTING_FIELD_MAP = {
    'title': 'description',
    'brand': 'brand',
    'model': 'model',
    'modelYear': 'model_year',
    'price': 'price',
    'marketplace_category': 'marketplace_category',
    'marketplace_subcategory': 'marketplace_subcategory',
    'productDescription': 'product_description',
    # Bike fields
    'frameSize': 'frame_size',
    'frameMaterial': 'frame_material',
    'bikeType': 'bike_type',
    'groupset': 'groupset',
    'wheelSize': 'wheel_size',
    'suspensionType': 'suspension_type',
    'bikeWeight': 'bike_weight',
    'colorPrimary': 'color_primary',
    'colorSecondary': 'color_secondary',
    # Part fields
    'partTypeDetail': 'part_type_detail',
    'compatibilityNotes': 'compatibility_notes',
    'material': 'material',
    'weight': 'weight',
    # Apparel fields
    'size': 'size',
    'genderFit': 'gender_fit',
    'apparelMaterial': 'apparel_material',
    # Condition
    'conditionRating': 'condition_rating',
    'conditionDetails': 'condition_details',
    'sellerNotes': 'seller_notes',
    'wearNotes': 'wear_notes',
    'usageEstimate': 'usage_estimate',
    'purchaseLocation': 'purchase_location',
    'purchaseDate': 'purchase_date',
    'serviceHistory': 'service_history',
    'upgradesModifications': 'upgrades_modifications',
    # Selling details
    'reasonForSelling': 'reason_for_selling',
    'isNegotiable': 'is_negotiable',
    'shippingAvailable': 'shipping_available',
    'shippingCost': 'shipping_cost',
    'pickupLocation': 'pickup_location',
    'includedAccessories': 'included_accessories',
    # Contact
    'sellerContactPreference': 'seller_contact_preference',
    'sellerPhone': 'seller_phone',
    'sellerEmail': 'seller_email',
    'facebookSourceUrl': 'facebook_source_url',
    'upc': 'upc',
}

NON_NULL_DEFAULTS = {
    'description': '',
    'price': 0,
    'marketplace_category': 'Bicycles',
    'service_history': [],
    'is_negotiable': False,
    'shipping_available': False,
    'seller_contact_preference': 'message',
}

BLANK_AS_NULL = ('purchase_date', 'shipping_cost', 'seller_email', 'facebook_source_url', 'upc')

ITEM_TYPE_CATEGORIES = {
    'bike': 'Bicycles',
    'part': 'Parts',
}


def normalize_upc(upc):
    """Uppercase and strip all whitespace from a UPC; None when empty"""
    if not upc:
        return None
    normalized = re.sub(r'\s+', '', str(upc).strip().upper())
    return normalized or None


def normalize_product_name(name):
    """Lowercase, drop punctuation other than hyphens, and collapse whitespace"""
    normalized = (name or '').lower().strip()
    normalized = re.sub(r'[^\w\s-]', '', normalized, flags=re.ASCII)
    return re.sub(r'\s+', ' ', normalized)


def ensure_canonical_product(description, upc=None, brand=None, model=None, model_year=None, category=None):
    """
    Find or create the canonical product for a listing.

    A UPC, when present, is the only match key; otherwise the normalized
    name is used. Returns the CanonicalProduct.
    """
    normalized_upc = normalize_upc(upc)
    normalized_name = normalize_product_name(description or 'Untitled Product')

    if normalized_upc:
        existing = CanonicalProduct.objects.filter(upc=normalized_upc).first()
    else:
        existing = CanonicalProduct.objects.filter(normalized_name=normalized_name).order_by('id').first()

    if existing:
        return existing

    canonical = CanonicalProduct.objects.create(
        upc=normalized_upc,
        normalized_name=normalized_name,
        display_name=(description or 'Untitled Product')[:500],
        brand=brand or '',
        model=model or '',
        model_year=str(model_year or '')[:10],
        category=category or '',
    )
    logger.info(f"Created canonical product {canonical.id} for '{normalized_name}'")
    return canonical


def pick_primary_image(images):
    """
    Choose the primary image from submitted form images.

    Preference: the image flagged isPrimary, then the one at order 0,
    then the first. Returns the image dict or None.
    """
    images = [img for img in (images or []) if isinstance(img, dict)]
    if not images:
        return None
    for img in images:
        if img.get('isPrimary') is True:
            return img
    for img in images:
        if img.get('order') == 0:
            return img
    return images[0]


def primary_image_url(images, fallback=None):
    primary = pick_primary_image(images)
    if primary:
        return primary.get('cardUrl') or primary.get('url') or fallback
    return fallback


def map_form_fields(data):
    """Translate camelCase form keys into Listing field names, keeping only known keys"""
    mapped = {}
    for form_key, field_name in LISTING_FIELD_MAP.items():
        if form_key in data:
            mapped[field_name] = data[form_key]
    # Non-nullable columns: an explicit null means "empty"
    for field_name, empty in NON_NULL_DEFAULTS.items():
        if field_name in mapped and mapped[field_name] is None:
            mapped[field_name] = empty
    for field_name in BLANK_AS_NULL:
        if mapped.get(field_name) == '':
            mapped[field_name] = None
    if 'itemType' in data and 'marketplace_category' not in data:
        mapped['marketplace_category'] = category_for_item_type(data['itemType'])
    return mapped


def category_for_item_type(item_type):
    return ITEM_TYPE_CATEGORIES.get(item_type, 'Apparel')


def apply_status(listing, listing_status):
    """Set listing status and the lifecycle fields that follow from it"""
    listing.listing_status = listing_status
    listing.is_active = listing_status == 'active'
    # sold_at is what the sold/active filters read
    if listing_status == 'sold':
        listing.sold_at = listing.sold_at or timezone.now()
    else:
        listing.sold_at = None
    if listing_status == 'active' and not listing.published_at:
        listing.published_at = timezone.now()
        expiry_days = getattr(settings, 'LISTING_EXPIRY_DAYS', 90)
        listing.expires_at = listing.published_at + timedelta(days=expiry_days)


def replace_listing_images(listing, images):
    """Store form images as ListingImage rows; order 0 (or first) is primary"""
    listing.images.all().delete()
    records = []
    for index, img in enumerate(images or []):
        if not isinstance(img, dict) or not (img.get('url') or img.get('cardUrl')):
            continue
        sort_order = img.get('order')
        if sort_order is None:
            sort_order = index
        records.append(ListingImage(
            listing=listing,
            url=img.get('url') or img.get('cardUrl'),
            card_url=img.get('cardUrl'),
            thumbnail_url=img.get('thumbnailUrl'),
            is_primary=sort_order == 0,
            sort_order=sort_order,
        ))
    ListingImage.objects.bulk_create(records)
    return records


@transaction.atomic
def create_listing(user, data, validated_fields, listing_status=None):
    """
    Create a listing from validated model fields plus the raw form payload.

    ``data`` is the original camelCase body (images, status, canonical id);
    ``validated_fields`` are the mapped and validated model fields.
    """
    fields = dict(validated_fields)
    canonical_id = data.get('canonical_product_id')
    canonical = None
    if canonical_id:
        canonical = CanonicalProduct.objects.filter(pk=canonical_id).first()
    if canonical is None:
        canonical = ensure_canonical_product(
            fields.get('description') or data.get('description') or 'Untitled Product',
            upc=fields.get('upc'),
            brand=fields.get('brand'),
            model=fields.get('model'),
            model_year=fields.get('model_year'),
            category=fields.get('marketplace_category'),
        )

    images = data.get('images') if isinstance(data.get('images'), list) else []
    listing = Listing(
        user=user,
        canonical_product=canonical,
        listing_type='private_listing',
        listing_source='facebook_import' if fields.get('facebook_source_url') else 'manual',
        primary_image_url=primary_image_url(images, data.get('primaryImageUrl')),
        qoh=1,
        **fields,
    )
    apply_status(listing, listing_status or data.get('listingStatus') or 'draft')
    listing.save()
    replace_listing_images(listing, images)
    return listing


def generate_draft_name(form_data):
    """Name a draft after its bike (brand model year) or its item type and date"""
    form_data = form_data or {}
    parts = [str(form_data[key]) for key in ('brand', 'model', 'modelYear') if form_data.get(key)]
    if parts:
        return ' '.join(parts)
    today = timezone.localdate()
    return f"{form_data.get('itemType') or 'item'} - {today.day}/{today.month}/{today.year}"

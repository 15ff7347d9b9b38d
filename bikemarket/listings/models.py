from django.conf import settings
from django.db import models


class CanonicalProduct(models.Model):
    """Shared product identity that listings of the same bike/part point at"""
    normalized_name = models.CharField(max_length=500, db_index=True)
    display_name = models.CharField(max_length=500)
    upc = models.CharField(max_length=64, unique=True, null=True, blank=True)
    brand = models.CharField(max_length=200, blank=True)
    model = models.CharField(max_length=200, blank=True)
    model_year = models.CharField(max_length=10, blank=True)
    category = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.display_name

    class Meta:
        db_table = 'canonical_products'


class Listing(models.Model):
    """A product for sale: private seller listings, store stock and POS-imported items"""
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('active', 'Active'),
        ('inactive', 'Inactive'),
        ('sold', 'Sold'),
        ('expired', 'Expired'),
        ('archived', 'Archived'),
        ('removed', 'Removed'),
    ]
    LISTING_TYPE_CHOICES = [
        ('private_listing', 'Private Listing'),
        ('store_inventory', 'Store Inventory'),
    ]
    SOURCE_CHOICES = [
        ('manual', 'Manual'),
        ('facebook_import', 'Facebook Import'),
        ('lightspeed', 'Lightspeed'),
    ]
    CONTACT_CHOICES = [
        ('message', 'Message'),
        ('phone', 'Phone'),
        ('email', 'Email'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='listings')
    canonical_product = models.ForeignKey(CanonicalProduct, on_delete=models.SET_NULL, null=True, blank=True, related_name='listings')
    listing_type = models.CharField(max_length=20, choices=LISTING_TYPE_CHOICES, default='private_listing')
    listing_source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='manual')
    listing_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    facebook_source_url = models.URLField(max_length=1000, blank=True, null=True)

    # Basic info (description holds the listing title)
    description = models.CharField(max_length=500)
    brand = models.CharField(max_length=200, blank=True, null=True)
    model = models.CharField(max_length=200, blank=True, null=True)
    model_year = models.CharField(max_length=10, blank=True, null=True)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    marketplace_category = models.CharField(max_length=100, default='Bicycles')
    marketplace_subcategory = models.CharField(max_length=100, blank=True, null=True)
    product_description = models.TextField(blank=True, null=True)
    primary_image_url = models.URLField(max_length=1000, blank=True, null=True)
    views = models.PositiveIntegerField(default=0)

    # Bicycle details
    frame_size = models.CharField(max_length=50, blank=True, null=True)
    frame_material = models.CharField(max_length=100, blank=True, null=True)
    bike_type = models.CharField(max_length=100, blank=True, null=True)
    groupset = models.CharField(max_length=200, blank=True, null=True)
    wheel_size = models.CharField(max_length=50, blank=True, null=True)
    suspension_type = models.CharField(max_length=100, blank=True, null=True)
    bike_weight = models.CharField(max_length=50, blank=True, null=True)
    color_primary = models.CharField(max_length=50, blank=True, null=True)
    color_secondary = models.CharField(max_length=50, blank=True, null=True)

    # Part details
    part_type_detail = models.CharField(max_length=200, blank=True, null=True)
    compatibility_notes = models.TextField(blank=True, null=True)
    material = models.CharField(max_length=100, blank=True, null=True)
    weight = models.CharField(max_length=50, blank=True, null=True)

    # Apparel details
    size = models.CharField(max_length=50, blank=True, null=True)
    gender_fit = models.CharField(max_length=50, blank=True, null=True)
    apparel_material = models.CharField(max_length=100, blank=True, null=True)

    # Condition
    condition_rating = models.CharField(max_length=50, blank=True, null=True)
    condition_details = models.TextField(blank=True, null=True)
    seller_notes = models.TextField(blank=True, null=True)
    wear_notes = models.TextField(blank=True, null=True)
    usage_estimate = models.CharField(max_length=200, blank=True, null=True)
    purchase_location = models.CharField(max_length=200, blank=True, null=True)
    purchase_date = models.DateField(blank=True, null=True)
    service_history = models.JSONField(default=list, blank=True)
    upgrades_modifications = models.TextField(blank=True, null=True)

    # Selling details
    reason_for_selling = models.TextField(blank=True, null=True)
    is_negotiable = models.BooleanField(default=False)
    shipping_available = models.BooleanField(default=False)
    shipping_cost = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    pickup_location = models.CharField(max_length=200, blank=True, null=True)
    included_accessories = models.TextField(blank=True, null=True)

    # Contact
    seller_contact_preference = models.CharField(max_length=20, choices=CONTACT_CHOICES, default='message')
    seller_phone = models.CharField(max_length=30, blank=True, null=True)
    seller_email = models.EmailField(blank=True, null=True)

    # Lifecycle
    is_active = models.BooleanField(default=False)
    published_at = models.DateTimeField(blank=True, null=True)
    expires_at = models.DateTimeField(blank=True, null=True)
    sold_at = models.DateTimeField(blank=True, null=True)

    # Lightspeed POS fields
    lightspeed_item_id = models.CharField(max_length=64, blank=True, null=True)
    system_sku = models.CharField(max_length=100, blank=True, null=True)
    custom_sku = models.CharField(max_length=100, blank=True, null=True)
    upc = models.CharField(max_length=64, blank=True, null=True)
    lightspeed_category_id = models.CharField(max_length=64, blank=True, null=True)
    category_name = models.CharField(max_length=200, blank=True, null=True)
    category_path = models.CharField(max_length=500, blank=True, null=True)
    default_cost = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    avg_cost = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    qoh = models.IntegerField(default=1)
    sellable = models.IntegerField(blank=True, null=True)
    reorder_point = models.IntegerField(blank=True, null=True)
    reorder_level = models.IntegerField(blank=True, null=True)
    last_synced_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.description

    @property
    def is_sold(self):
        return self.sold_at is not None

    class Meta:
        db_table = 'listings'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'listing_status'], name='listings_user_status_idx'),
            models.Index(fields=['listing_status', 'is_active'], name='listings_status_active_idx'),
            models.Index(fields=['marketplace_category'], name='listings_category_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'lightspeed_item_id'],
                condition=models.Q(lightspeed_item_id__isnull=False),
                name='unique_user_lightspeed_item',
            ),
        ]


class ListingImage(models.Model):
    """Image attached to a listing, with pre-generated size variants"""
    listing = models.ForeignKey(Listing, on_delete=models.CASCADE, related_name='images')
    url = models.URLField(max_length=1000)
    card_url = models.URLField(max_length=1000, blank=True, null=True)
    thumbnail_url = models.URLField(max_length=1000, blank=True, null=True)
    is_primary = models.BooleanField(default=False)
    sort_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.listing_id}#{self.sort_order}"

    class Meta:
        db_table = 'listing_images'
        ordering = ['sort_order', 'id']


class ListingEditLog(models.Model):
    """Per-field change history for listing edits"""
    listing = models.ForeignKey(Listing, on_delete=models.CASCADE, related_name='edit_logs')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='listing_edits')
    field_name = models.CharField(max_length=100)
    old_value = models.TextField(blank=True, null=True)
    new_value = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.listing_id}.{self.field_name}"

    class Meta:
        db_table = 'listing_edit_logs'
        ordering = ['-created_at']


class ListingDraft(models.Model):
    """In-progress, unpublished listing form state"""
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='listing_drafts')
    draft_name = models.CharField(max_length=255)
    current_step = models.PositiveIntegerField(default=1)
    form_data = models.JSONField(default=dict)
    completed = models.BooleanField(default=False)
    last_saved_at = models.DateTimeField(auto_now=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.draft_name

    class Meta:
        db_table = 'listing_drafts'
        ordering = ['-last_saved_at']

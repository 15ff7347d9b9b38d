from django.contrib import admin
from .models import CanonicalProduct, Listing, ListingImage, ListingEditLog, ListingDraft


class ListingImageInline(admin.TabularInline):
    model = ListingImage
    extra = 0
    fields = ['url', 'card_url', 'thumbnail_url', 'is_primary', 'sort_order']


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ['description', 'user', 'price', 'listing_status', 'listing_source', 'is_active', 'views', 'created_at']
    list_filter = ['listing_status', 'listing_type', 'listing_source', 'marketplace_category', 'is_active']
    search_fields = ['description', 'brand', 'model', 'system_sku', 'custom_sku', 'user__username']
    readonly_fields = ['views', 'created_at', 'updated_at', 'last_synced_at']
    raw_id_fields = ['user', 'canonical_product']
    inlines = [ListingImageInline]


@admin.register(CanonicalProduct)
class CanonicalProductAdmin(admin.ModelAdmin):
    list_display = ['display_name', 'upc', 'brand', 'model', 'model_year', 'created_at']
    search_fields = ['display_name', 'normalized_name', 'upc', 'brand']


@admin.register(ListingEditLog)
class ListingEditLogAdmin(admin.ModelAdmin):
    list_display = ['listing', 'field_name', 'user', 'created_at']
    list_filter = ['field_name']
    readonly_fields = ['listing', 'user', 'field_name', 'old_value', 'new_value', 'created_at']


@admin.register(ListingDraft)
class ListingDraftAdmin(admin.ModelAdmin):
    list_display = ['draft_name', 'user', 'current_step', 'completed', 'last_saved_at']
    list_filter = ['completed']
    search_fields = ['draft_name', 'user__username']

from rest_framework import serializers
from bikemarket.core.serializers import SellerSummarySerializer
from .models import CanonicalProduct, Listing, ListingImage, ListingEditLog, ListingDraft
from .services import LISTING_FIELD_MAP


class CanonicalProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = CanonicalProduct
        fields = ['id', 'display_name', 'normalized_name', 'upc', 'brand', 'model', 'model_year', 'category']


class ListingImageSerializer(serializers.ModelSerializer):
    class Meta:
        model = ListingImage
        fields = ['id', 'url', 'card_url', 'thumbnail_url', 'is_primary', 'sort_order']


class ListingSerializer(serializers.ModelSerializer):
    images = ListingImageSerializer(many=True, read_only=True)
    seller = SellerSummarySerializer(source='user', read_only=True)
    canonical_product = CanonicalProductSerializer(read_only=True)
    is_sold = serializers.BooleanField(read_only=True)

    class Meta:
        model = Listing
        exclude = ['user']


class ListingSummarySerializer(serializers.ModelSerializer):
    """Compact representation for browse grids, storefronts and purchases"""
    seller = SellerSummarySerializer(source='user', read_only=True)

    class Meta:
        model = Listing
        fields = ['id', 'description', 'brand', 'model', 'model_year', 'price', 'marketplace_category',
                  'marketplace_subcategory', 'condition_rating', 'primary_image_url', 'listing_status',
                  'listing_type', 'is_active', 'sold_at', 'views', 'seller', 'created_at']


class ListingWriteSerializer(serializers.ModelSerializer):
    """Validates listing fields after camelCase form keys are mapped to model names"""

    class Meta:
        model = Listing
        fields = sorted(set(LISTING_FIELD_MAP.values()))
        extra_kwargs = {
            'description': {'required': False, 'allow_blank': True},
        }

    def validate_price(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("Price cannot be negative")
        return value

    def validate_service_history(self, value):
        if value is None:
            return []
        if not isinstance(value, list):
            raise serializers.ValidationError("Service history must be a list")
        return value


class ListingEditLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = ListingEditLog
        fields = ['id', 'field_name', 'old_value', 'new_value', 'user', 'created_at']


class ListingDraftSerializer(serializers.ModelSerializer):
    class Meta:
        model = ListingDraft
        fields = ['id', 'draft_name', 'current_step', 'form_data', 'completed', 'last_saved_at', 'created_at']
        read_only_fields = ['last_saved_at', 'created_at']

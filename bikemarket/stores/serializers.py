from rest_framework import serializers
from bikemarket.core.models import User
from .models import StoreCategory


class StoreProfileSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = ['id', 'username', 'display_name', 'business_name', 'seller_display_name',
                  'bio', 'cover_image_url', 'social_links', 'phone']
        read_only_fields = ['id', 'username', 'phone']

    def validate_social_links(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError('social_links must be an object of network to URL')
        for network, url in value.items():
            if not isinstance(url, str):
                raise serializers.ValidationError(f'Invalid link for {network}')
        return value


class StoreCategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = StoreCategory
        fields = ['id', 'name', 'source', 'lightspeed_category_id', 'product_ids',
                  'display_order', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']
        extra_kwargs = {'display_order': {'required': False}}

    def validate_product_ids(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError('product_ids must be a list')
        return [str(product_id) for product_id in value]

    def validate(self, attrs):
        source = attrs.get('source', getattr(self.instance, 'source', None))
        lightspeed_category_id = attrs.get('lightspeed_category_id', getattr(self.instance, 'lightspeed_category_id', None))
        if source in ('lightspeed', 'display_override') and not lightspeed_category_id:
            raise serializers.ValidationError({'lightspeed_category_id': 'Required for Lightspeed categories'})
        return attrs

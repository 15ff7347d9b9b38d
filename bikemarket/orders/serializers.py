from rest_framework import serializers
from bikemarket.core.serializers import SellerSummarySerializer
from bikemarket.listings.models import Listing
from .models import Purchase, SellerPayout


class PurchaseProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Listing
        fields = ['id', 'description', 'primary_image_url', 'price', 'marketplace_category',
                  'marketplace_subcategory', 'listing_type']


class PurchaseSerializer(serializers.ModelSerializer):
    product = PurchaseProductSerializer(read_only=True)
    buyer_id = serializers.IntegerField(read_only=True)
    seller_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Purchase
        fields = ['id', 'order_number', 'buyer_id', 'seller_id', 'product', 'item_price', 'shipping_cost',
                  'tax_amount', 'total_amount', 'platform_fee', 'seller_payout_amount', 'status',
                  'payment_status', 'shipping_address', 'shipping_method', 'payment_method', 'buyer_notes',
                  'tracking_number', 'funds_status', 'funds_release_at', 'buyer_confirmed_at', 'shipped_at',
                  'delivered_at', 'disputed_at', 'dispute_reason', 'payout_status', 'payout_triggered_at',
                  'purchase_date', 'created_at', 'updated_at']


class PurchaseListSerializer(PurchaseSerializer):
    """Adds the counterparty: the seller when buying, the buyer when selling"""
    seller = serializers.SerializerMethodField()
    buyer = serializers.SerializerMethodField()

    class Meta(PurchaseSerializer.Meta):
        fields = PurchaseSerializer.Meta.fields + ['seller', 'buyer']

    def _mode(self):
        return self.context.get('mode', 'buying')

    def get_seller(self, obj):
        if self._mode() == 'selling':
            return None
        return SellerSummarySerializer(obj.seller).data

    def get_buyer(self, obj):
        if self._mode() != 'selling':
            return None
        return SellerSummarySerializer(obj.buyer).data


class PurchaseCreateSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    seller_id = serializers.IntegerField()
    item_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    shipping_cost = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, default=0)
    tax_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, default=0)
    shipping_address = serializers.JSONField(required=False, default=dict)
    shipping_method = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)
    buyer_notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class SellerPayoutSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='purchase.order_number', read_only=True)

    class Meta:
        model = SellerPayout
        fields = ['id', 'order_number', 'gross_amount', 'platform_fee', 'net_amount', 'currency',
                  'stripe_transfer_id', 'status', 'failure_reason', 'completed_at', 'created_at']

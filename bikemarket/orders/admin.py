from django.contrib import admin
from .models import Purchase, SellerPayout


class SellerPayoutInline(admin.TabularInline):
    model = SellerPayout
    extra = 0
    readonly_fields = ['status', 'gross_amount', 'platform_fee', 'net_amount', 'stripe_transfer_id',
                      'failure_reason', 'completed_at', 'created_at']
    fields = readonly_fields
    can_delete = False


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'buyer', 'seller', 'total_amount', 'status', 'payment_status',
                    'funds_status', 'funds_release_at', 'payout_status', 'purchase_date']
    list_filter = ['status', 'payment_status', 'funds_status', 'payout_status']
    search_fields = ['order_number', 'buyer__username', 'seller__username', 'tracking_number']
    readonly_fields = ['order_number', 'purchase_date', 'created_at', 'updated_at', 'stripe_transfer_id',
                       'payout_triggered_at']
    raw_id_fields = ['buyer', 'seller', 'product']
    inlines = [SellerPayoutInline]


@admin.register(SellerPayout)
class SellerPayoutAdmin(admin.ModelAdmin):
    list_display = ['purchase', 'seller', 'net_amount', 'currency', 'status', 'completed_at', 'created_at']
    list_filter = ['status', 'currency']
    search_fields = ['purchase__order_number', 'seller__username', 'stripe_transfer_id']

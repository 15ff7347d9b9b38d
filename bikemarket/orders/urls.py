from django.urls import path
from .views import (
    purchase_list_create, purchase_detail, purchase_confirm_receipt, purchase_ship,
    purchase_dispute, purchase_cancel, purchase_resolve_dispute, seller_payout_list,
    release_funds_cron,
)

urlpatterns = [
    # Purchase endpoints
    path('marketplace/purchases/', purchase_list_create, name='purchase-list-create'),
    path('marketplace/purchases/<int:pk>/', purchase_detail, name='purchase-detail'),
    path('marketplace/purchases/<int:pk>/confirm-receipt/', purchase_confirm_receipt, name='purchase-confirm-receipt'),
    path('marketplace/purchases/<int:pk>/ship/', purchase_ship, name='purchase-ship'),
    path('marketplace/purchases/<int:pk>/dispute/', purchase_dispute, name='purchase-dispute'),
    path('marketplace/purchases/<int:pk>/cancel/', purchase_cancel, name='purchase-cancel'),
    path('marketplace/purchases/<int:pk>/resolve-dispute/', purchase_resolve_dispute, name='purchase-resolve-dispute'),

    # Seller payouts
    path('marketplace/payouts/', seller_payout_list, name='seller-payout-list'),

    # Scheduled jobs
    path('cron/release-funds/', release_funds_cron, name='release-funds-cron'),
]

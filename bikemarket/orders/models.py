from decimal import Decimal
from django.conf import settings
from django.db import models


class Purchase(models.Model):
    """A marketplace order; payment is held in escrow until the buyer confirms receipt"""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('confirmed', 'Confirmed'),
        ('paid', 'Paid'),
        ('shipped', 'Shipped'),
        ('delivered', 'Delivered'),
        ('cancelled', 'Cancelled'),
        ('refunded', 'Refunded'),
    ]
    PAYMENT_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('paid', 'Paid'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    ]
    FUNDS_STATUS_CHOICES = [
        ('held', 'Held'),
        ('released', 'Released'),
        ('auto_released', 'Auto Released'),
        ('disputed', 'Disputed'),
        ('refunded', 'Refunded'),
    ]
    PAYOUT_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
    ]
    ACTIVE_STATUSES = ['pending', 'confirmed', 'paid', 'shipped']

    order_number = models.CharField(max_length=30, unique=True)
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='purchases')
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='sales')
    product = models.ForeignKey('listings.Listing', on_delete=models.SET_NULL, null=True, related_name='purchases')

    item_price = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    seller_payout_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='pending')
    stripe_payment_intent_id = models.CharField(max_length=100, blank=True, null=True)
    shipping_address = models.JSONField(default=dict, blank=True)
    shipping_method = models.CharField(max_length=50, blank=True, null=True)
    payment_method = models.CharField(max_length=50, blank=True, null=True)
    buyer_notes = models.TextField(blank=True, null=True)
    tracking_number = models.CharField(max_length=100, blank=True, null=True)

    # Escrow
    funds_status = models.CharField(max_length=20, choices=FUNDS_STATUS_CHOICES, default='held')
    funds_release_at = models.DateTimeField(null=True, blank=True)
    buyer_confirmed_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    dispute_reason = models.TextField(blank=True, null=True)

    # Seller payout
    payout_status = models.CharField(max_length=20, choices=PAYOUT_STATUS_CHOICES, blank=True, null=True)
    payout_triggered_at = models.DateTimeField(null=True, blank=True)
    stripe_transfer_id = models.CharField(max_length=100, blank=True, null=True)

    purchase_date = models.DateTimeField(auto_now_add=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.order_number

    class Meta:
        db_table = 'purchases'
        ordering = ['-purchase_date']
        indexes = [
            models.Index(fields=['buyer', 'status'], name='purchases_buyer_status_idx'),
            models.Index(fields=['seller', 'status'], name='purchases_seller_status_idx'),
            models.Index(fields=['funds_status', 'funds_release_at'], name='purchases_funds_release_idx'),
        ]


class SellerPayout(models.Model):
    """One attempt to transfer a purchase's proceeds to the seller's Stripe account"""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
    ]

    purchase = models.ForeignKey(Purchase, on_delete=models.CASCADE, related_name='payouts')
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='payouts')
    stripe_account_id = models.CharField(max_length=100, blank=True)
    stripe_transfer_id = models.CharField(max_length=100, blank=True, null=True)
    gross_amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2)
    net_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='aud')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    failure_reason = models.TextField(blank=True, null=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Payout {self.purchase.order_number} ({self.status})"

    class Meta:
        db_table = 'seller_payouts'
        ordering = ['-created_at']

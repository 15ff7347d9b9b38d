from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace account. Buyers, private sellers and bicycle stores share one model."""
    ACCOUNT_TYPE_CHOICES = [
        ('individual', 'Individual'),
        ('bicycle_store', 'Bicycle Store'),
    ]

    phone = models.CharField(max_length=20, blank=True, null=True)
    account_type = models.CharField(max_length=20, choices=ACCOUNT_TYPE_CHOICES, default='individual')
    bicycle_store = models.BooleanField(default=False, help_text="Store account has been verified")
    business_name = models.CharField(max_length=200, blank=True)
    # Storefront profile
    seller_display_name = models.CharField(max_length=200, blank=True)
    bio = models.TextField(blank=True)
    cover_image_url = models.URLField(max_length=1000, blank=True)
    social_links = models.JSONField(default=dict, blank=True)
    # Stripe Connect
    stripe_account_id = models.CharField(max_length=100, blank=True, null=True)
    stripe_payouts_enabled = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'

    @property
    def is_verified_store(self):
        return self.account_type == 'bicycle_store' and self.bicycle_store

    @property
    def display_name(self):
        return self.seller_display_name or self.business_name or self.get_full_name() or self.username


class AuditLog(models.Model):
    """Audit log for marketplace operations"""
    ACTION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('listing_sold', 'Listing Marked Sold'),
        ('listing_unsold', 'Listing Unmarked Sold'),
        ('purchase_create', 'Purchase Created'),
        ('purchase_ship', 'Purchase Shipped'),
        ('funds_release', 'Funds Released'),
        ('funds_auto_release', 'Funds Auto Released'),
        ('funds_dispute', 'Funds Disputed'),
        ('funds_refund', 'Funds Refunded'),
        ('payout', 'Seller Payout'),
        ('lightspeed_connect', 'Lightspeed Connected'),
        ('lightspeed_disconnect', 'Lightspeed Disconnected'),
        ('lightspeed_sync', 'Lightspeed Sync'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    object_name = models.CharField(max_length=255, blank=True, null=True, help_text="Human-readable name of the object (e.g., listing title)")
    object_reference = models.CharField(max_length=255, blank=True, null=True, help_text="Reference identifier (e.g., order number)")
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='audit_logs_created_6f1c2a_idx'),
            models.Index(fields=['action'], name='audit_logs_action_3b9e41_idx'),
            models.Index(fields=['model_name'], name='audit_logs_model_n_8d2f70_idx'),
            models.Index(fields=['object_reference'], name='audit_logs_object__c41a95_idx'),
        ]

    def __str__(self):
        return f"{self.action} {self.model_name}#{self.object_id}"

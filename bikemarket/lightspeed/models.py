from django.conf import settings
from django.db import models


class LightspeedConnection(models.Model):
    """OAuth connection between a store account and its Lightspeed Retail account"""
    STATUS_CHOICES = [
        ('connected', 'Connected'),
        ('disconnected', 'Disconnected'),
        ('error', 'Error'),
        ('expired', 'Expired'),
    ]

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='lightspeed_connection')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='disconnected')
    account_id = models.CharField(max_length=50, blank=True, null=True)
    account_name = models.CharField(max_length=255, blank=True, null=True)

    # Tokens are stored AES-256-GCM encrypted (iv:authTag:ciphertext hex)
    access_token_encrypted = models.TextField(blank=True, null=True)
    refresh_token_encrypted = models.TextField(blank=True, null=True)
    token_expires_at = models.DateTimeField(blank=True, null=True)

    oauth_state = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    oauth_state_expires_at = models.DateTimeField(blank=True, null=True)

    connected_at = models.DateTimeField(blank=True, null=True)
    disconnected_at = models.DateTimeField(blank=True, null=True)
    last_sync_at = models.DateTimeField(blank=True, null=True)
    last_token_refresh_at = models.DateTimeField(blank=True, null=True)

    last_error = models.TextField(blank=True, null=True)
    last_error_at = models.DateTimeField(blank=True, null=True)
    error_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} ({self.status})"

    @property
    def is_connected(self):
        return self.status == 'connected' and bool(self.access_token_encrypted)

    class Meta:
        db_table = 'lightspeed_connections'


class CategorySyncPreference(models.Model):
    """Whether a Lightspeed category is included when syncing inventory"""
    UNCATEGORIZED = '__UNCATEGORIZED__'

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='lightspeed_category_preferences')
    category_id = models.CharField(max_length=50)
    category_name = models.CharField(max_length=255, blank=True)
    category_path = models.CharField(max_length=500, blank=True)
    is_enabled = models.BooleanField(default=False)
    product_count = models.PositiveIntegerField(default=0)
    last_synced_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.category_name or self.category_id} ({'on' if self.is_enabled else 'off'})"

    class Meta:
        db_table = 'lightspeed_category_sync_preferences'
        unique_together = ['user', 'category_id']


class SyncJob(models.Model):
    """
    One inventory sync run.

    The row doubles as the resume cursor: each step reads phase, next_url
    and category_index, does a bounded amount of work, and writes them back.
    """
    STATUS_CHOICES = [
        ('running', 'Running'),
        ('paused', 'Paused'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('cancelled', 'Cancelled'),
    ]
    PHASE_CHOICES = [
        ('init', 'Init'),
        ('fetch_inventory', 'Fetch Inventory'),
        ('fetch_items', 'Fetch Items'),
        ('filter', 'Filter'),
        ('prepare', 'Prepare'),
        ('matching', 'Matching'),
        ('insert', 'Insert'),
        ('complete', 'Complete'),
        ('error', 'Error'),
    ]
    FINISHED_STATUSES = ['completed', 'failed', 'cancelled']

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='lightspeed_sync_jobs')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='running')
    phase = models.CharField(max_length=20, choices=PHASE_CHOICES, default='init')
    message = models.CharField(max_length=500, blank=True)
    progress = models.PositiveSmallIntegerField(default=0)

    category_ids = models.JSONField(default=list, blank=True)
    sync_all = models.BooleanField(default=False)

    # Cursor
    next_url = models.TextField(blank=True, null=True)
    category_index = models.PositiveIntegerField(default=0)
    inventory = models.JSONField(default=dict, blank=True, help_text="itemID -> stock levels for items with qoh > 0")
    category_map = models.JSONField(default=dict, blank=True, help_text="categoryID -> {name, fullPath}")

    items_with_stock = models.PositiveIntegerField(default=0)
    items_fetched = models.PositiveIntegerField(default=0)
    items_synced = models.PositiveIntegerField(default=0)
    items_created = models.PositiveIntegerField(default=0)
    items_updated = models.PositiveIntegerField(default=0)

    error = models.TextField(blank=True, null=True)
    started_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)

    def __str__(self):
        return f"Sync {self.id} ({self.status}/{self.phase})"

    @property
    def is_finished(self):
        return self.status in self.FINISHED_STATUSES

    class Meta:
        db_table = 'lightspeed_sync_jobs'
        ordering = ['-started_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='ls_sync_jobs_user_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=models.Q(status__in=['running', 'paused']),
                name='ls_sync_jobs_one_active_per_user',
            ),
        ]

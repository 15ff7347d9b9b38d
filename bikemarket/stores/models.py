from django.conf import settings
from django.db import models


class StoreCategory(models.Model):
    """
    A category shown on a store's public page.

    ``custom`` categories group hand-picked listings via ``product_ids``;
    ``lightspeed`` categories mirror a POS category; ``display_override``
    rows only rename a POS category on the storefront.
    """
    SOURCE_CHOICES = [
        ('lightspeed', 'Lightspeed'),
        ('custom', 'Custom'),
        ('display_override', 'Display Override'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='store_categories')
    name = models.CharField(max_length=200)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='custom')
    lightspeed_category_id = models.CharField(max_length=64, blank=True, null=True)
    product_ids = models.JSONField(default=list, blank=True)
    display_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} - {self.name}"

    class Meta:
        db_table = 'store_categories'
        ordering = ['display_order', 'id']
        indexes = [
            models.Index(fields=['user', 'is_active'], name='store_cat_user_active_idx'),
            models.Index(fields=['user', 'display_order'], name='store_cat_user_order_idx'),
        ]

from django.contrib import admin
from .models import StoreCategory


@admin.register(StoreCategory)
class StoreCategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'user', 'source', 'lightspeed_category_id', 'display_order', 'is_active', 'updated_at']
    list_filter = ['source', 'is_active']
    search_fields = ['name', 'user__username', 'user__business_name']
    ordering = ['user', 'display_order']

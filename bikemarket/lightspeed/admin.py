from django.contrib import admin
from .models import LightspeedConnection, CategorySyncPreference, SyncJob


@admin.register(LightspeedConnection)
class LightspeedConnectionAdmin(admin.ModelAdmin):
    list_display = ['user', 'status', 'account_id', 'account_name', 'token_expires_at', 'last_sync_at', 'error_count']
    list_filter = ['status']
    search_fields = ['user__username', 'account_id', 'account_name']
    exclude = ['access_token_encrypted', 'refresh_token_encrypted', 'oauth_state']
    readonly_fields = ['connected_at', 'disconnected_at', 'last_sync_at', 'last_token_refresh_at',
                       'last_error', 'last_error_at', 'error_count', 'created_at', 'updated_at']


@admin.register(CategorySyncPreference)
class CategorySyncPreferenceAdmin(admin.ModelAdmin):
    list_display = ['user', 'category_id', 'category_name', 'is_enabled', 'product_count', 'last_synced_at']
    list_filter = ['is_enabled']
    search_fields = ['user__username', 'category_name', 'category_id']


@admin.register(SyncJob)
class SyncJobAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'status', 'phase', 'progress', 'items_synced', 'started_at', 'completed_at']
    list_filter = ['status', 'phase', 'sync_all']
    search_fields = ['user__username']
    exclude = ['inventory', 'category_map']
    readonly_fields = ['started_at', 'updated_at', 'completed_at', 'cancelled_at']

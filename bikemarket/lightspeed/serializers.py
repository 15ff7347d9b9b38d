from rest_framework import serializers
from .models import LightspeedConnection, SyncJob


class LightspeedConnectionSerializer(serializers.ModelSerializer):
    """Connection status; never exposes tokens"""
    is_connected = serializers.BooleanField(read_only=True)

    class Meta:
        model = LightspeedConnection
        fields = [
            'status', 'is_connected', 'account_id', 'account_name', 'token_expires_at',
            'connected_at', 'disconnected_at', 'last_sync_at', 'last_token_refresh_at',
            'last_error', 'last_error_at', 'error_count',
        ]
        read_only_fields = fields


class CategoryPreferenceInputSerializer(serializers.Serializer):
    """One entry of the categories POST body"""
    categoryId = serializers.CharField(max_length=50)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    fullPath = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    isEnabled = serializers.BooleanField()


class SyncJobSerializer(serializers.ModelSerializer):
    class Meta:
        model = SyncJob
        fields = [
            'id', 'status', 'phase', 'message', 'progress', 'category_ids', 'sync_all',
            'items_with_stock', 'items_fetched', 'items_synced', 'items_created', 'items_updated',
            'error', 'started_at', 'updated_at', 'completed_at', 'cancelled_at',
        ]
        read_only_fields = fields

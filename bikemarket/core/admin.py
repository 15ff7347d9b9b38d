from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, AuditLog


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['username', 'email', 'account_type', 'bicycle_store', 'stripe_payouts_enabled', 'is_active', 'date_joined']
    list_filter = ['account_type', 'bicycle_store', 'is_active', 'is_staff', 'date_joined']
    search_fields = ['username', 'email', 'business_name', 'seller_display_name']
    ordering = ['username']
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Marketplace', {'fields': ('phone', 'account_type', 'bicycle_store', 'business_name')}),
        ('Storefront', {'fields': ('seller_display_name', 'bio', 'cover_image_url', 'social_links')}),
        ('Payouts', {'fields': ('stripe_account_id', 'stripe_payouts_enabled')}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Marketplace', {'fields': ('phone', 'account_type', 'business_name')}),
    )


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['user', 'action', 'model_name', 'object_id', 'object_reference', 'created_at']
    list_filter = ['action', 'model_name', 'created_at']
    search_fields = ['user__username', 'model_name', 'object_id', 'object_reference']
    ordering = ['-created_at']
    readonly_fields = ['user', 'action', 'model_name', 'object_id', 'object_name',
                       'object_reference', 'changes', 'ip_address', 'created_at']

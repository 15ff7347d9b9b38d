from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password
from .models import User, AuditLog


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'phone', 'account_type',
                  'bicycle_store', 'business_name', 'seller_display_name', 'stripe_payouts_enabled',
                  'is_active', 'created_at', 'updated_at']
        read_only_fields = ['bicycle_store', 'stripe_payouts_enabled', 'is_active', 'created_at', 'updated_at']


class UserCreateSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ['username', 'email', 'password', 'password_confirm', 'first_name', 'last_name',
                  'phone', 'account_type', 'business_name']

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Passwords don't match"})
        if attrs.get('account_type') == 'bicycle_store' and not attrs.get('business_name'):
            raise serializers.ValidationError({"business_name": "Business name is required for store accounts"})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        password = validated_data.pop('password')
        user = User(**validated_data, is_active=True)
        user.set_password(password)
        user.save()
        return user


class SellerSummarySerializer(serializers.ModelSerializer):
    """Public-facing seller/buyer info embedded in listings and purchases"""
    display_name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = ['id', 'username', 'display_name', 'business_name', 'account_type', 'bicycle_store']


class AuditLogSerializer(serializers.ModelSerializer):
    user = SellerSummarySerializer(read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'user', 'action', 'model_name', 'object_id', 'object_name',
                  'object_reference', 'changes', 'ip_address', 'created_at']

import logging
from collections import OrderedDict
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from django.core.cache import cache
from django.db import transaction
from django.db.models import Max
from bikemarket.core.cache_utils import make_cache_key, invalidate_listing_caches, STOREFRONT_CACHE_TTL
from bikemarket.core.models import User
from bikemarket.listings.models import Listing
from bikemarket.listings.serializers import ListingSummarySerializer
from .models import StoreCategory
from .serializers import StoreProfileSerializer, StoreCategorySerializer

logger = logging.getLogger(__name__)

UNCATEGORIZED_NAME = 'Uncategorized'


def _store_forbidden_response():
    return Response({
        'error': 'Access denied. Only verified bicycle stores can manage their store.'
    }, status=status.HTTP_403_FORBIDDEN)


def _storefront_cache_key(user_id, search):
    return make_cache_key(f"storefront:{user_id}", search=search or '')


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated])
def store_profile(request):
    """Get or update the storefront profile of the authenticated store"""
    if not request.user.is_verified_store:
        return _store_forbidden_response()

    if request.method == 'GET':
        return Response({'profile': StoreProfileSerializer(request.user).data})
    else:  # PATCH
        serializer = StoreProfileSerializer(request.user, data=request.data, partial=True)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        serializer.save()
        invalidate_listing_caches(request.user.id)
        return Response({'profile': serializer.data})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def store_category_list_create(request):
    """List the store's categories in display order, or create one"""
    if not request.user.is_verified_store:
        return _store_forbidden_response()

    if request.method == 'GET':
        categories = StoreCategory.objects.filter(user=request.user).order_by('display_order', 'id')
        return Response({'categories': StoreCategorySerializer(categories, many=True).data})
    else:  # POST
        serializer = StoreCategorySerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        display_order = serializer.validated_data.get('display_order')
        if display_order is None:
            current_max = StoreCategory.objects.filter(user=request.user).aggregate(
                max_order=Max('display_order'))['max_order']
            display_order = -1 if current_max is None else current_max
            display_order += 1

        category = serializer.save(user=request.user, display_order=display_order)
        invalidate_listing_caches(request.user.id)
        logger.info(f"Store {request.user.username} created category '{category.name}' ({category.source})")
        return Response({'category': StoreCategorySerializer(category).data}, status=status.HTTP_201_CREATED)


@api_view(['PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def store_category_detail(request, pk):
    """Rename, re-scope, toggle or delete one of the store's categories"""
    if not request.user.is_verified_store:
        return _store_forbidden_response()

    try:
        category = StoreCategory.objects.get(pk=pk, user=request.user)
    except StoreCategory.DoesNotExist:
        return Response({'error': 'Category not found'}, status=status.HTTP_404_NOT_FOUND)

    if request.method == 'PATCH':
        if not request.data:
            return Response({'error': 'No fields to update'}, status=status.HTTP_400_BAD_REQUEST)
        serializer = StoreCategorySerializer(category, data=request.data, partial=True)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        category = serializer.save()
        invalidate_listing_caches(request.user.id)
        return Response({'category': StoreCategorySerializer(category).data})
    else:  # DELETE
        category.delete()
        invalidate_listing_caches(request.user.id)
        return Response({'success': True})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def store_category_reorder(request):
    """
    Apply a new category order.

    Body: ``{"order": [category ids in display order]}``. Every id must
    belong to the store; positions are rewritten as 0..n-1.
    """
    if not request.user.is_verified_store:
        return _store_forbidden_response()

    order = request.data.get('order')
    if not isinstance(order, list) or not order:
        return Response({'error': 'order must be a non-empty list of category ids'}, status=status.HTTP_400_BAD_REQUEST)
    try:
        order = [int(category_id) for category_id in order]
    except (TypeError, ValueError):
        return Response({'error': 'order must be a non-empty list of category ids'}, status=status.HTTP_400_BAD_REQUEST)
    if len(set(order)) != len(order):
        return Response({'error': 'order contains duplicate ids'}, status=status.HTTP_400_BAD_REQUEST)

    with transaction.atomic():
        categories = {
            category.id: category
            for category in StoreCategory.objects.select_for_update().filter(user=request.user, id__in=order)
        }
        missing = [category_id for category_id in order if category_id not in categories]
        if missing:
            return Response({'error': f'Unknown category ids: {missing}'}, status=status.HTTP_400_BAD_REQUEST)

        for position, category_id in enumerate(order):
            categories[category_id].display_order = position
        StoreCategory.objects.bulk_update(categories.values(), ['display_order'])

    invalidate_listing_caches(request.user.id)
    categories = StoreCategory.objects.filter(user=request.user).order_by('display_order', 'id')
    return Response({'categories': StoreCategorySerializer(categories, many=True).data})


def _group_storefront_listings(store, listings):
    """
    Build the storefront category sections.

    Custom categories come first in display order, holding the listings
    named in ``product_ids``. The remaining stock is grouped by POS
    category, largest group first, renamed by any display override.
    """
    overrides = dict(
        StoreCategory.objects.filter(user=store, source='display_override')
        .values_list('lightspeed_category_id', 'name')
    )
    by_id = {str(listing.id): listing for listing in listings}
    sections = []

    custom_categories = StoreCategory.objects.filter(
        user=store, is_active=True, source__in=['custom', 'lightspeed'],
    ).order_by('display_order', 'id')
    for category in custom_categories:
        if category.source == 'custom':
            members = [by_id[product_id] for product_id in category.product_ids if product_id in by_id]
        else:
            members = [listing for listing in listings
                       if listing.lightspeed_category_id == category.lightspeed_category_id]
        if members:
            sections.append({
                'id': category.id,
                'name': category.name,
                'source': category.source,
                'products': ListingSummarySerializer(members, many=True).data,
                'product_count': len(members),
            })

    groups = OrderedDict()
    for listing in listings:
        key = (listing.lightspeed_category_id, listing.category_name or UNCATEGORIZED_NAME)
        groups.setdefault(key, []).append(listing)

    ranked = sorted(groups.items(), key=lambda item: len(item[1]), reverse=True)
    for index, ((category_id, category_name), members) in enumerate(ranked):
        sections.append({
            'id': f'category-{index}',
            'name': overrides.get(category_id) or category_name,
            'source': 'inventory',
            'products': ListingSummarySerializer(members, many=True).data,
            'product_count': len(members),
        })
    return sections


@api_view(['GET'])
@permission_classes([AllowAny])
def public_storefront(request, user_id):
    """Public store page: profile plus its active, in-stock listings grouped into categories"""
    search = (request.query_params.get('search') or '').strip()
    cache_key = _storefront_cache_key(user_id, search)
    cached_data = cache.get(cache_key)
    if cached_data is not None:
        logger.debug(f"Cache hit for storefront {user_id}")
        return Response(cached_data)

    try:
        store = User.objects.get(pk=user_id)
    except User.DoesNotExist:
        return Response({'error': 'Store not found'}, status=status.HTTP_404_NOT_FOUND)
    if not store.is_verified_store:
        return Response({'error': 'Store not found'}, status=status.HTTP_404_NOT_FOUND)

    listings = Listing.objects.select_related('user').filter(
        user=store, listing_status='active', is_active=True, sold_at__isnull=True, qoh__gt=0,
    ).order_by('-published_at', '-created_at')
    if search:
        listings = listings.filter(description__icontains=search)
    listings = list(listings)

    response_data = {
        'store': {
            **StoreProfileSerializer(store).data,
            'categories': _group_storefront_listings(store, listings),
            'total_products': len(listings),
        }
    }
    cache.set(cache_key, response_data, STOREFRONT_CACHE_TTL)
    return Response(response_data)

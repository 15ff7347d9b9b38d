import json
import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, parser_classes
from rest_framework.parsers import MultiPartParser, FormParser
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAuthenticatedOrReadOnly, AllowAny
from django.core.cache import cache
from django.core.files.storage import default_storage
from django.core.paginator import Paginator
from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from bikemarket.core.cache_utils import make_cache_key, invalidate_listing_caches, BROWSE_LISTINGS_CACHE_TTL
from bikemarket.core.utils import create_audit_log, parse_bool, parse_positive_int
from .filters import ListingFilter
from .images import ALLOWED_CONTENT_TYPES, ImageProcessingError, store_listing_image
from .models import Listing, ListingDraft, ListingEditLog
from .serializers import (
    ListingSerializer, ListingSummarySerializer, ListingWriteSerializer,
    ListingEditLogSerializer, ListingDraftSerializer,
)
from .services import (
    apply_status, create_listing, generate_draft_name, map_form_fields,
    primary_image_url, replace_listing_images,
)

logger = logging.getLogger(__name__)

MAX_BULK_LISTINGS = 50
VALID_STATUSES = [choice[0] for choice in Listing.STATUS_CHOICES]


def _listing_queryset():
    return Listing.objects.select_related('user', 'canonical_product').prefetch_related('images')


def _invalid_status_response():
    return Response({
        'error': f'Invalid listing status. Must be one of: {", ".join(VALID_STATUSES)}'
    }, status=status.HTTP_400_BAD_REQUEST)


# Draft views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def draft_list_create(request):
    """List the user's incomplete drafts, or save (create/update) a draft"""
    if request.method == 'GET':
        drafts = ListingDraft.objects.filter(user=request.user, completed=False).order_by('-last_saved_at')
        return Response({'drafts': ListingDraftSerializer(drafts, many=True).data})
    else:  # POST
        form_data = request.data.get('formData')
        if form_data is None:
            return Response({'error': 'Form data is required'}, status=status.HTTP_400_BAD_REQUEST)
        if not isinstance(form_data, dict):
            return Response({'error': 'Form data must be an object'}, status=status.HTTP_400_BAD_REQUEST)

        current_step = parse_positive_int(request.data.get('currentStep'), 1)
        draft_name = request.data.get('draftName') or generate_draft_name(form_data)
        draft_id = request.data.get('draftId')

        if draft_id:
            draft = ListingDraft.objects.filter(pk=draft_id, user=request.user).first()
            if draft is None:
                return Response({'error': 'Draft not found'}, status=status.HTTP_404_NOT_FOUND)
            draft.form_data = form_data
            draft.current_step = current_step
            draft.draft_name = draft_name
            draft.save()
            logger.debug(f"Draft {draft.id} updated by {request.user.username} (step {current_step})")
            return Response({'draft': ListingDraftSerializer(draft).data})

        draft = ListingDraft.objects.create(
            user=request.user,
            form_data=form_data,
            current_step=current_step,
            draft_name=draft_name,
        )
        logger.info(f"Draft {draft.id} '{draft_name}' created by {request.user.username}")
        return Response({'draft': ListingDraftSerializer(draft).data}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def draft_detail(request, pk):
    """Retrieve, update or delete one of the user's drafts"""
    draft = ListingDraft.objects.filter(pk=pk, user=request.user).first()
    if draft is None:
        return Response({'error': 'Draft not found'}, status=status.HTTP_404_NOT_FOUND)

    if request.method == 'GET':
        return Response({'draft': ListingDraftSerializer(draft).data})
    elif request.method == 'PATCH':
        if 'completed' in request.data:
            draft.completed = parse_bool(request.data.get('completed'))
        if request.data.get('draftName'):
            draft.draft_name = request.data['draftName']
        if 'currentStep' in request.data:
            draft.current_step = parse_positive_int(request.data.get('currentStep'), draft.current_step)
        if isinstance(request.data.get('formData'), dict):
            draft.form_data = request.data['formData']
        draft.save()
        return Response({'success': True})
    else:  # DELETE
        draft.delete()
        return Response({'success': True})


# Listing views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def listing_list_create(request):
    """List the user's own listings, or create a new listing"""
    if request.method == 'GET':
        listings = _listing_queryset().filter(
            user=request.user,
            listing_source__in=['manual', 'facebook_import'],
        ).order_by('-created_at')

        status_filter = request.query_params.get('status')
        if status_filter:
            if status_filter == 'sold':
                listings = listings.filter(sold_at__isnull=False)
            elif status_filter == 'active':
                listings = listings.filter(sold_at__isnull=True).exclude(listing_status__in=['archived', 'removed'])
            else:
                listings = listings.filter(listing_status=status_filter)

        return Response({'listings': ListingSerializer(listings, many=True).data})
    else:  # POST
        listing_status = request.data.get('listingStatus') or 'draft'
        if listing_status not in VALID_STATUSES:
            return _invalid_status_response()

        serializer = ListingWriteSerializer(data=map_form_fields(request.data))
        if not serializer.is_valid():
            logger.warning(f"Listing creation validation failed: {serializer.errors}")
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            listing = create_listing(request.user, request.data, serializer.validated_data, listing_status)
        except Exception as e:
            logger.error(f"Unexpected error creating listing: {str(e)}", exc_info=True)
            return Response({'error': 'Failed to create listing'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        create_audit_log(
            request=request,
            action='create',
            model_name='Listing',
            object_id=listing.id,
            object_name=listing.description,
            changes={'listing_status': listing.listing_status, 'price': str(listing.price)},
        )
        invalidate_listing_caches(request.user.id)
        logger.info(f"Listing {listing.id} created by {request.user.username} ({listing.listing_status})")
        listing = _listing_queryset().get(pk=listing.pk)
        return Response({'listing': ListingSerializer(listing).data}, status=status.HTTP_201_CREATED)


def _serialize_for_log(value):
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticatedOrReadOnly])
def listing_detail(request, pk):
    """Retrieve (public), update or remove a listing"""
    listing = _listing_queryset().filter(pk=pk).first()
    if listing is None:
        return Response({'error': 'Listing not found'}, status=status.HTTP_404_NOT_FOUND)

    if request.method == 'GET':
        if not (request.user.is_authenticated and request.user.id == listing.user_id):
            Listing.objects.filter(pk=listing.pk).update(views=F('views') + 1)
            listing.views += 1
        return Response({'listing': ListingSerializer(listing).data})

    if listing.user_id != request.user.id:
        logger.warning(f"User {request.user.username} attempted to modify listing {listing.id} they do not own")
        return Response({'error': 'Forbidden'}, status=status.HTTP_403_FORBIDDEN)

    if request.method == 'PUT':
        data = request.data
        log_changes = parse_bool(data.get('logChanges'), default=True)

        fields = map_form_fields(data)
        serializer = ListingWriteSerializer(listing, data=fields, partial=True)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        updates = dict(serializer.validated_data)

        new_status = data.get('listingStatus')
        if new_status is not None and new_status not in VALID_STATUSES:
            return _invalid_status_response()
        has_images = isinstance(data.get('images'), list)

        if not updates and new_status is None and not has_images and 'primaryImageUrl' not in data:
            return Response({'error': 'No fields to update'}, status=status.HTTP_400_BAD_REQUEST)

        tracked = list(updates.keys()) + ['listing_status', 'is_active', 'sold_at', 'primary_image_url']
        old_values = {name: getattr(listing, name) for name in tracked}

        with transaction.atomic():
            for name, value in updates.items():
                setattr(listing, name, value)
            if new_status is not None:
                apply_status(listing, new_status)
            if has_images:
                replace_listing_images(listing, data['images'])
                listing.primary_image_url = primary_image_url(data['images'], data.get('primaryImageUrl'))
            elif 'primaryImageUrl' in data:
                listing.primary_image_url = data.get('primaryImageUrl')
            listing.save()

            changed = {}
            for name in tracked:
                old = _serialize_for_log(old_values[name])
                new = _serialize_for_log(getattr(listing, name))
                if old != new:
                    changed[name] = (old, new)

            if log_changes and changed:
                ListingEditLog.objects.bulk_create([
                    ListingEditLog(listing=listing, user=request.user, field_name=name,
                                   old_value=old, new_value=new)
                    for name, (old, new) in changed.items()
                ])

        if changed:
            create_audit_log(
                request=request,
                action='update',
                model_name='Listing',
                object_id=listing.id,
                object_name=listing.description,
                changes={name: {'old': old, 'new': new} for name, (old, new) in changed.items()},
            )
        invalidate_listing_caches(listing.user_id)
        listing = _listing_queryset().get(pk=listing.pk)
        return Response({'listing': ListingSerializer(listing).data})
    else:  # DELETE
        if listing.listing_status == 'draft':
            listing_id = listing.id
            listing.delete()
            logger.info(f"Draft listing {listing_id} deleted by {request.user.username}")
        else:
            listing.listing_status = 'removed'
            listing.is_active = False
            listing.save(update_fields=['listing_status', 'is_active', 'updated_at'])
            logger.info(f"Listing {listing.id} removed by {request.user.username}")
        create_audit_log(
            request=request,
            action='delete',
            model_name='Listing',
            object_id=pk,
            object_name=listing.description,
        )
        invalidate_listing_caches(request.user.id)
        return Response({'success': True})


@api_view(['POST', 'DELETE'])
@permission_classes([IsAuthenticated])
def listing_sold(request, pk):
    """Mark a listing as sold (POST) or put it back on sale (DELETE)"""
    listing = Listing.objects.filter(pk=pk).first()
    if listing is None:
        return Response({'error': 'Listing not found'}, status=status.HTTP_404_NOT_FOUND)
    if listing.user_id != request.user.id:
        return Response({'error': 'Not authorised to modify this listing'}, status=status.HTTP_403_FORBIDDEN)

    if request.method == 'POST':
        if listing.sold_at:
            return Response({'error': 'Listing is already marked as sold'}, status=status.HTTP_400_BAD_REQUEST)
        listing.sold_at = timezone.now()
        listing.listing_status = 'sold'
        listing.is_active = False
        action, message = 'listing_sold', 'Listing marked as sold'
    else:  # DELETE
        if not listing.sold_at:
            return Response({'error': 'Listing is not marked as sold'}, status=status.HTTP_400_BAD_REQUEST)
        listing.sold_at = None
        listing.listing_status = 'active'
        listing.is_active = True
        action, message = 'listing_unsold', 'Listing unmarked as sold'

    listing.save(update_fields=['sold_at', 'listing_status', 'is_active', 'updated_at'])
    create_audit_log(request=request, action=action, model_name='Listing',
                     object_id=listing.id, object_name=listing.description)
    invalidate_listing_caches(listing.user_id)
    return Response({'success': True, 'message': message})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def listing_edit_history(request, pk):
    """Field-level edit history for one of the user's listings"""
    listing = Listing.objects.filter(pk=pk, user=request.user).first()
    if listing is None:
        return Response({'error': 'Listing not found'}, status=status.HTTP_404_NOT_FOUND)
    logs = listing.edit_logs.all()
    return Response({'edits': ListingEditLogSerializer(logs, many=True).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def listing_bulk_create(request):
    """Create several active listings at once; each item succeeds or fails on its own"""
    items = request.data.get('listings')
    if not isinstance(items, list) or not items:
        return Response({'error': 'listings array is required'}, status=status.HTTP_400_BAD_REQUEST)
    if len(items) > MAX_BULK_LISTINGS:
        return Response({'error': f'Cannot create more than {MAX_BULK_LISTINGS} listings at once'},
                        status=status.HTTP_400_BAD_REQUEST)

    results = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            results.append({'index': index, 'success': False, 'error': 'Listing must be an object'})
            continue
        serializer = ListingWriteSerializer(data=map_form_fields(item))
        if not serializer.is_valid():
            results.append({'index': index, 'success': False, 'error': serializer.errors})
            continue
        try:
            listing = create_listing(request.user, item, serializer.validated_data, 'active')
        except Exception as e:
            logger.error(f"Bulk listing {index} failed: {str(e)}", exc_info=True)
            results.append({'index': index, 'success': False, 'error': 'Failed to create listing'})
            continue
        results.append({'index': index, 'success': True, 'listingId': listing.id})

    created = sum(1 for r in results if r['success'])
    logger.info(f"Bulk listing by {request.user.username}: {created}/{len(items)} created")
    if created:
        invalidate_listing_caches(request.user.id)
    return Response({
        'results': results,
        'created': created,
        'failed': len(results) - created,
    }, status=status.HTTP_201_CREATED if created else status.HTTP_400_BAD_REQUEST)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@parser_classes([MultiPartParser, FormParser])
def upload_listing_image(request):
    """Upload a listing photo; stores original, card and thumbnail WebP variants"""
    upload = request.FILES.get('file')
    if not upload:
        return Response({'error': 'No file provided'}, status=status.HTTP_400_BAD_REQUEST)
    if upload.content_type not in ALLOWED_CONTENT_TYPES:
        return Response({'error': 'Invalid file type. Only JPEG, PNG, and WebP are supported.'},
                        status=status.HTTP_400_BAD_REQUEST)
    max_bytes = getattr(settings, 'LISTING_IMAGE_MAX_BYTES', 10 * 1024 * 1024)
    if upload.size > max_bytes:
        return Response({'error': 'File size exceeds 10MB limit'}, status=status.HTTP_400_BAD_REQUEST)

    listing_id = request.data.get('listingId') or None
    if listing_id is not None:
        listing_id = parse_positive_int(listing_id, None)
        if listing_id is None or not Listing.objects.filter(pk=listing_id, user=request.user).exists():
            return Response({'error': 'Invalid listingId'}, status=status.HTTP_400_BAD_REQUEST)
    try:
        paths = store_listing_image(request.user.id, upload.read(), listing_id=listing_id)
    except ImageProcessingError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
    except Exception as e:
        logger.error(f"Image upload failed for {request.user.username}: {str(e)}", exc_info=True)
        return Response({'error': 'Failed to upload image'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    urls = {name: request.build_absolute_uri(default_storage.url(path)) for name, path in paths.items()}
    return Response({
        'url': urls['original'],
        'cardUrl': urls['card'],
        'thumbnailUrl': urls['thumbnail'],
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([AllowAny])
def browse_listings(request):
    """Public marketplace browse of active listings with filtering and pagination"""
    page = parse_positive_int(request.query_params.get('page'), 1)
    page_size = parse_positive_int(request.query_params.get('page_size'), 24, maximum=100)

    cache_key = make_cache_key('browse_listings', **{k: v for k, v in request.query_params.items()})
    cached_data = cache.get(cache_key)
    if cached_data is not None:
        logger.debug(f"Cache hit for browse listings: {cache_key}")
        return Response(cached_data)

    queryset = Listing.objects.select_related('user').filter(
        listing_status='active', is_active=True, sold_at__isnull=True,
    ).order_by('-published_at', '-created_at')
    filterset = ListingFilter(request.query_params, queryset=queryset)
    if not filterset.is_valid():
        return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)
    queryset = filterset.qs

    paginator = Paginator(queryset, page_size)
    page_obj = paginator.get_page(page)
    response_data = {
        'results': ListingSummarySerializer(page_obj.object_list, many=True).data,
        'count': paginator.count,
        'page': page_obj.number,
        'page_size': page_size,
        'total_pages': paginator.num_pages,
        'next': page_obj.next_page_number() if page_obj.has_next() else None,
        'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
    }
    cache.set(cache_key, response_data, BROWSE_LISTINGS_CACHE_TTL)
    return Response(response_data)

import logging
from urllib.parse import urlencode
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.http import HttpResponseRedirect
from bikemarket.core.cache_utils import make_cache_key, LIGHTSPEED_CATEGORIES_CACHE_TTL
from bikemarket.core.utils import create_audit_log, parse_bool, parse_positive_int
from .client import LightspeedAuthError, LightspeedError
from .connection import (
    complete_oauth, consume_oauth_state, disconnect, get_active_connection, get_client,
    get_connection, start_oauth,
)
from .models import CategorySyncPreference, SyncJob
from .serializers import (
    LightspeedConnectionSerializer, CategoryPreferenceInputSerializer, SyncJobSerializer,
)
from .services import fetch_items_preview, merge_category_preferences
from .sync import SyncInProgressError, cancel_sync, run_sync_step, start_sync

logger = logging.getLogger(__name__)

MAX_PREVIEW_ITEMS = 200


def _not_connected_response():
    return Response({'error': 'Lightspeed not connected'}, status=status.HTTP_400_BAD_REQUEST)


def _frontend_redirect(**params):
    base = getattr(settings, 'LIGHTSPEED_FRONTEND_REDIRECT', '/connect-lightspeed')
    return HttpResponseRedirect(f"{base}?{urlencode(params)}")


def _lightspeed_categories(user, connection, refresh=False):
    """Raw Lightspeed categories for the account, cached briefly per user"""
    cache_key = make_cache_key('lightspeed_categories', user.id, connection.account_id)
    if not refresh:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached
    categories = get_client(connection).get_categories()
    cache.set(cache_key, categories, LIGHTSPEED_CATEGORIES_CACHE_TTL)
    return categories


# Category sync preferences
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def category_list_update(request):
    """Lightspeed categories with the user's sync preferences, or save preferences"""
    if request.method == 'GET':
        connection = get_active_connection(request.user)
        if connection is None:
            return _not_connected_response()

        try:
            categories = _lightspeed_categories(request.user, connection, parse_bool(request.query_params.get('refresh')))
        except LightspeedAuthError as e:
            return Response({'error': str(e)}, status=status.HTTP_401_UNAUTHORIZED)
        except LightspeedError as e:
            logger.error(f"Error fetching Lightspeed categories for user {request.user.id}: {str(e)}")
            return Response({'error': 'Failed to fetch categories'}, status=status.HTTP_502_BAD_GATEWAY)

        preferences = CategorySyncPreference.objects.filter(user=request.user)
        merged = merge_category_preferences(categories, preferences)
        return Response({
            'categories': merged,
            'totalCategories': len(merged),
            'enabledCount': sum(1 for category in merged if category['isEnabled']),
        })
    else:  # POST
        entries = request.data.get('categories')
        if not isinstance(entries, list):
            return Response({'error': 'Invalid request format'}, status=status.HTTP_400_BAD_REQUEST)

        serializer = CategoryPreferenceInputSerializer(data=entries, many=True)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            for entry in serializer.validated_data:
                CategorySyncPreference.objects.update_or_create(
                    user=request.user,
                    category_id=entry['categoryId'],
                    defaults={
                        'category_name': entry.get('name') or '',
                        'category_path': entry.get('fullPath') or '',
                        'is_enabled': entry['isEnabled'],
                    },
                )
        logger.info(f"User {request.user.username} updated {len(serializer.validated_data)} Lightspeed category preferences")
        return Response({'success': True, 'updated': len(serializer.validated_data)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def item_list(request):
    """Preview Lightspeed items in the given categories"""
    category_ids_param = request.query_params.get('categoryIds')
    if not category_ids_param:
        return Response({'error': 'categoryIds parameter is required'}, status=status.HTTP_400_BAD_REQUEST)
    category_ids = [category_id for category_id in category_ids_param.split(',') if category_id]
    if not category_ids:
        return Response({'error': 'categoryIds parameter is required'}, status=status.HTTP_400_BAD_REQUEST)
    limit = parse_positive_int(request.query_params.get('limit'), 30, maximum=MAX_PREVIEW_ITEMS)

    connection = get_active_connection(request.user)
    if connection is None:
        return _not_connected_response()

    try:
        items = fetch_items_preview(get_client(connection), category_ids, limit)
    except LightspeedAuthError as e:
        return Response({'error': str(e)}, status=status.HTTP_401_UNAUTHORIZED)
    except LightspeedError as e:
        logger.error(f"Error fetching Lightspeed items for user {request.user.id}: {str(e)}")
        return Response({'error': str(e)}, status=status.HTTP_502_BAD_GATEWAY)

    return Response({'items': items, 'total': len(items)})


# OAuth connection
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def connect(request):
    """Begin OAuth: returns the Lightspeed authorize URL"""
    try:
        authorize_url = start_oauth(request.user)
    except LightspeedError as e:
        return Response({'error': str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response({'authorizeUrl': authorize_url})


@api_view(['GET'])
@permission_classes([AllowAny])
def oauth_callback(request):
    """Lightspeed redirects here after the merchant authorises the app"""
    error = request.query_params.get('error')
    if error:
        description = request.query_params.get('error_description') or error
        logger.error(f"OAuth error from Lightspeed: {error} {description}")
        return _frontend_redirect(error=description)

    code = request.query_params.get('code')
    state = request.query_params.get('state')
    if not code or not state:
        return _frontend_redirect(error='Missing authorization code or state')

    connection = consume_oauth_state(state)
    if connection is None:
        return _frontend_redirect(error='Invalid or expired state token. Please try again.')

    try:
        complete_oauth(connection, code)
    except LightspeedAuthError:
        return _frontend_redirect(error='Failed to exchange authorization code. Please try again.')
    except Exception as e:
        logger.error(f"Lightspeed OAuth callback failed: {str(e)}", exc_info=True)
        return _frontend_redirect(error='Unexpected error connecting Lightspeed')

    create_audit_log(
        request=request,
        user=connection.user,
        action='lightspeed_connect',
        model_name='LightspeedConnection',
        object_id=connection.id,
        object_name=connection.account_name,
        object_reference=connection.account_id,
    )
    return _frontend_redirect(success='true')


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated])
def connection_detail(request):
    """Connection status, or disconnect"""
    connection = get_connection(request.user)
    if request.method == 'GET':
        if connection is None:
            return Response({'connected': False, 'connection': None})
        return Response({
            'connected': connection.is_connected,
            'connection': LightspeedConnectionSerializer(connection).data,
        })
    else:  # DELETE
        if connection is None:
            return Response({'error': 'Lightspeed not connected'}, status=status.HTTP_404_NOT_FOUND)
        disconnect(connection)
        create_audit_log(
            request=request,
            action='lightspeed_disconnect',
            model_name='LightspeedConnection',
            object_id=connection.id,
            object_name=connection.account_name,
            object_reference=connection.account_id,
        )
        return Response({'success': True, 'message': 'Lightspeed disconnected'})


# Inventory sync
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def sync_start_status(request):
    """Start an inventory sync (runs its first step), or poll a sync job"""
    if request.method == 'GET':
        requested = request.query_params.get('jobId')
        jobs = SyncJob.objects.filter(user=request.user)
        if requested:
            job_id = parse_positive_int(requested, None)
            job = jobs.filter(pk=job_id).first() if job_id else None
        else:
            job = jobs.order_by('-started_at').first()
        if job is None:
            if requested:
                return Response({'error': 'Sync job not found'}, status=status.HTTP_404_NOT_FOUND)
            return Response({'job': None})
        return Response({'job': SyncJobSerializer(job).data})
    else:  # POST
        category_ids = request.data.get('categoryIds') or []
        if not isinstance(category_ids, list):
            return Response({'error': 'categoryIds must be a list'}, status=status.HTTP_400_BAD_REQUEST)

        try:
            job = start_sync(request.user, category_ids, sync_all=parse_bool(request.data.get('syncAll')))
        except SyncInProgressError as e:
            return Response({'error': str(e)}, status=status.HTTP_409_CONFLICT)
        except LightspeedAuthError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        job = run_sync_step(job)
        return Response({'job': SyncJobSerializer(job).data}, status=status.HTTP_202_ACCEPTED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def sync_continue(request, job_id):
    """Run the next bounded step of a sync"""
    job = SyncJob.objects.filter(pk=job_id, user=request.user).first()
    if job is None:
        return Response({'error': 'Sync job not found'}, status=status.HTTP_404_NOT_FOUND)
    if job.is_finished:
        return Response({'job': SyncJobSerializer(job).data})
    job = run_sync_step(job)
    return Response({'job': SyncJobSerializer(job).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def sync_cancel(request, job_id):
    job = SyncJob.objects.filter(pk=job_id, user=request.user).first()
    if job is None:
        return Response({'error': 'Sync job not found'}, status=status.HTTP_404_NOT_FOUND)
    if job.is_finished:
        return Response({'error': f'Sync already {job.status}'}, status=status.HTTP_400_BAD_REQUEST)
    job = cancel_sync(job)
    return Response({'job': SyncJobSerializer(job).data})

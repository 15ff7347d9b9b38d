"""
Resumable Lightspeed inventory sync.

A SyncJob row holds all state between requests. ``run_sync_step`` does at
most LIGHTSPEED_SYNC_PAGES_PER_STEP page fetches, saves the cursor and
returns; the caller polls and continues until the job finishes.

Phases:
    fetch_inventory  page through ItemShops (shopID 0, qoh > 0), summing qoh per item
    prepare          load category names for enrichment
    fetch_items      page through items (all, or per selected category) and
                     upsert the ones with stock as store inventory listings
    complete         stamp connection and category preferences
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from bikemarket.core.cache_utils import invalidate_listing_caches
from bikemarket.core.utils import create_audit_log
from bikemarket.listings.models import Listing
from bikemarket.listings.services import ensure_canonical_product, replace_listing_images
from .client import PAGE_LIMIT, LightspeedAuthError, LightspeedError
from .connection import get_active_connection, get_client, record_sync_error
from .models import CategorySyncPreference, LightspeedConnection, SyncJob
from .services import (
    UNCATEGORIZED, build_category_map, default_price, is_uncategorized, item_images,
    lightspeed_category_param, to_decimal, to_int,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ['running', 'paused']
STALE_AFTER = timedelta(minutes=30)

# Saved after each page; status is left alone so a concurrent cancel sticks
CURSOR_FIELDS = [
    'phase', 'message', 'progress', 'next_url', 'category_index', 'inventory', 'category_map',
    'items_with_stock', 'items_fetched', 'items_synced', 'items_created', 'items_updated', 'updated_at',
]


class SyncInProgressError(LightspeedError):
    """Raised when starting a sync while another one is unfinished"""


def get_active_job(user):
    """
    The user's unfinished sync, if any.

    Jobs left untouched for longer than STALE_AFTER are failed so an
    abandoned sync does not block new ones.
    """
    job = SyncJob.objects.filter(user=user, status__in=ACTIVE_STATUSES).order_by('-started_at').first()
    if job and job.updated_at < timezone.now() - STALE_AFTER:
        logger.warning(f"Sync job {job.id} for user {user.id} went stale in phase {job.phase}")
        job.status = 'failed'
        job.phase = 'error'
        job.error = 'Sync timed out'
        job.completed_at = timezone.now()
        job.save()
        return None
    return job


def start_sync(user, category_ids=None, sync_all=False):
    """Create a sync job. Raises SyncInProgressError or LightspeedAuthError."""
    connection = get_active_connection(user)
    if connection is None:
        raise LightspeedAuthError('Lightspeed not connected')

    category_ids = [str(category_id) for category_id in (category_ids or []) if category_id]
    sync_all = sync_all or not category_ids
    try:
        with transaction.atomic():
            # Serializes concurrent starts for the same user
            LightspeedConnection.objects.select_for_update().filter(pk=connection.pk).first()
            if get_active_job(user) is not None:
                raise SyncInProgressError('A sync is already running')
            job = SyncJob.objects.create(
                user=user,
                status='paused',
                phase='fetch_inventory',
                message='Fetching inventory data...',
                progress=5,
                category_ids=[] if sync_all else category_ids,
                sync_all=sync_all,
            )
    except IntegrityError:
        raise SyncInProgressError('A sync is already running')
    logger.info(f"Sync job {job.id} started for user {user.id}: {'all items' if sync_all else f'{len(category_ids)} categories'}")
    return job


def cancel_sync(job):
    now = timezone.now()
    cancelled = SyncJob.objects.filter(pk=job.pk, status__in=ACTIVE_STATUSES).update(
        status='cancelled', message='Sync cancelled', cancelled_at=now, updated_at=now,
    )
    job.refresh_from_db()
    if cancelled:
        logger.info(f"Sync job {job.id} cancelled")
    return job


def fail_job(job, error):
    message = str(error) or type(error).__name__
    now = timezone.now()
    failed = SyncJob.objects.filter(pk=job.pk, status__in=ACTIVE_STATUSES).update(
        status='failed', phase='error', error=message, message=f'Sync failed: {message}',
        completed_at=now, updated_at=now,
    )
    job.refresh_from_db()
    if not failed:
        return job

    connection = get_active_connection(job.user)
    if connection is not None:
        record_sync_error(connection, message)
    return job


def _was_cancelled(job):
    return SyncJob.objects.filter(pk=job.pk, status='cancelled').exists()


def run_sync_step(job, client=None, pages=None):
    """
    Advance a job by up to ``pages`` page fetches and persist its cursor.

    A step first claims the job (paused -> running); a job another step
    already holds is returned untouched. Returns the job. Errors fail the
    job rather than propagate.
    """
    job.refresh_from_db()
    if job.is_finished:
        return job

    pages = pages or getattr(settings, 'LIGHTSPEED_SYNC_PAGES_PER_STEP', 5)
    if not SyncJob.objects.filter(pk=job.pk, status='paused').update(status='running', updated_at=timezone.now()):
        logger.info(f"Sync job {job.id} already has a step in progress")
        job.refresh_from_db()
        return job
    job.status = 'running'

    try:
        if client is None:
            connection = get_active_connection(job.user)
            if connection is None:
                raise LightspeedAuthError('Lightspeed not connected')
            client = get_client(connection)

        for _ in range(pages):
            if job.phase == 'complete':
                break
            if _was_cancelled(job):
                job.refresh_from_db()
                return job

            if job.phase in ('init', 'fetch_inventory'):
                _fetch_inventory_page(job, client)
            elif job.phase == 'prepare':
                _load_categories(job, client)
            elif job.phase == 'fetch_items':
                _fetch_items_page(job, client)
            else:
                raise LightspeedError(f'Unknown sync phase: {job.phase}')
            job.save(update_fields=CURSOR_FIELDS)

        if job.phase == 'complete':
            _complete(job)
        elif SyncJob.objects.filter(pk=job.pk, status='running').update(status='paused', updated_at=timezone.now()):
            job.status = 'paused'
        else:
            job.refresh_from_db()
    except Exception as e:
        logger.error(f"Sync job {job.id} failed in phase {job.phase}: {str(e)}", exc_info=True)
        fail_job(job, e)
    return job


def _fetch_inventory_page(job, client):
    job.phase = 'fetch_inventory'
    records, next_url = client.get_item_shops(job.next_url)

    inventory = job.inventory or {}
    for item_shop in records:
        qoh = to_int(item_shop.get('qoh'))
        if qoh <= 0:
            continue
        item_id = str(item_shop.get('itemID'))
        if item_id in inventory:
            inventory[item_id]['qoh'] += qoh
        else:
            inventory[item_id] = {
                'qoh': qoh,
                'sellable': to_int(item_shop.get('sellable')),
                'reorderPoint': to_int(item_shop.get('reorderPoint')),
                'reorderLevel': to_int(item_shop.get('reorderLevel')),
            }
    job.inventory = inventory
    job.items_with_stock = len(inventory)
    job.message = f'Found {len(inventory)} items with stock...'
    job.progress = min(30, job.progress + 2)
    job.next_url = next_url
    if not next_url:
        job.phase = 'prepare'
        job.progress = 30


def _load_categories(job, client):
    job.category_map = build_category_map(client.get_categories())
    job.phase = 'fetch_items'
    job.next_url = None
    job.category_index = 0
    job.progress = 35
    job.message = 'Fetching items...' if job.sync_all else f'Fetching items from {len(job.category_ids)} categories...'


def _fetch_items_page(job, client):
    params = {'archived': 'false', 'limit': PAGE_LIMIT, 'load_relations': '["Images"]'}
    category_id = None
    if not job.sync_all:
        category_id = job.category_ids[job.category_index]
        params['categoryID'] = lightspeed_category_param(category_id)

    records, next_url = client.fetch_page(job.next_url or 'Item.json', 'Item', params=params)
    job.items_fetched += len(records)

    with_stock = [
        item for item in records
        if str(item.get('itemID')) in job.inventory
        and (category_id != UNCATEGORIZED or is_uncategorized(item))
    ]
    if with_stock:
        created, updated = upsert_store_listings(job.user, with_stock, job.inventory, job.category_map)
        job.items_created += created
        job.items_updated += updated
        job.items_synced += created + updated

    job.next_url = next_url
    if not next_url:
        if job.sync_all:
            job.phase = 'complete'
        else:
            job.category_index += 1
            if job.category_index >= len(job.category_ids):
                job.phase = 'complete'

    if job.sync_all:
        job.progress = min(95, 35 + job.items_fetched // PAGE_LIMIT)
    else:
        job.progress = 35 + int(60 * job.category_index / max(len(job.category_ids), 1))
    job.message = f'Saved {job.items_synced} products ({job.items_fetched} items checked)...'


@transaction.atomic
def upsert_store_listings(user, items, inventory, category_map):
    """
    Create or update store inventory listings for Lightspeed items.

    Keyed on (user, lightspeed_item_id). An existing canonical product match
    is kept; new listings are matched by UPC or name. Returns (created, updated).
    """
    now = timezone.now()
    item_ids = [str(item.get('itemID')) for item in items]
    existing = {
        listing.lightspeed_item_id: listing
        for listing in Listing.objects.select_for_update().filter(user=user, lightspeed_item_id__in=item_ids)
    }

    created = updated = 0
    for item in items:
        item_id = str(item.get('itemID'))
        stock = inventory.get(item_id) or {}
        category_id = str(item.get('categoryID') or '') or None
        category = category_map.get(category_id or '') or {}
        images = item_images(item)
        description = (item.get('description') or 'Untitled')[:500]

        listing = existing.get(item_id)
        is_new = listing is None
        if is_new:
            listing = Listing(
                user=user,
                lightspeed_item_id=item_id,
                listing_type='store_inventory',
                listing_source='lightspeed',
            )

        listing.description = description
        listing.price = to_decimal(default_price(item))
        listing.system_sku = item.get('systemSku') or None
        listing.custom_sku = item.get('customSku') or None
        listing.upc = item.get('upc') or None
        listing.model_year = item.get('modelYear') or None
        listing.lightspeed_category_id = category_id
        listing.category_name = category.get('name')
        listing.category_path = category.get('fullPath')
        listing.default_cost = to_decimal(item.get('defaultCost'))
        listing.avg_cost = to_decimal(item.get('avgCost'))
        listing.qoh = stock.get('qoh', 0)
        listing.sellable = stock.get('sellable', 0)
        listing.reorder_point = stock.get('reorderPoint', 0)
        listing.reorder_level = stock.get('reorderLevel', 0)
        listing.last_synced_at = now
        if images:
            listing.primary_image_url = images[0]['url']
        if listing.sold_at is None and listing.listing_status not in ('removed', 'archived'):
            listing.listing_status = 'active'
            listing.is_active = True
            listing.published_at = listing.published_at or now

        if listing.canonical_product_id is None:
            listing.canonical_product = ensure_canonical_product(
                description,
                upc=listing.upc,
                model_year=listing.model_year,
                category=listing.category_name,
            )
        listing.save()

        if images and (is_new or not listing.images.exists()):
            replace_listing_images(listing, [{'url': image['url'], 'order': index} for index, image in enumerate(images) if image.get('url')])

        if is_new:
            created += 1
        else:
            updated += 1
    return created, updated


def _category_listing_count(user, category_id):
    listings = Listing.objects.filter(user=user, listing_source='lightspeed')
    if category_id == UNCATEGORIZED:
        return listings.filter(Q(lightspeed_category_id__isnull=True) | Q(lightspeed_category_id__in=['', '0'])).count()
    return listings.filter(lightspeed_category_id=category_id).count()


def _complete(job):
    now = timezone.now()
    message = f'Sync complete! {job.items_synced} products synced.'
    finished = SyncJob.objects.filter(pk=job.pk, status='running').update(
        status='completed', phase='complete', progress=100, next_url=None, inventory={},
        completed_at=now, updated_at=now, message=message,
    )
    job.refresh_from_db()
    if not finished:
        logger.info(f"Sync job {job.id} ended as {job.status} before it could complete")
        return

    connection = get_active_connection(job.user)
    if connection is not None:
        connection.last_sync_at = now
        connection.save(update_fields=['last_sync_at', 'updated_at'])

    for category_id in job.category_ids:
        CategorySyncPreference.objects.filter(user=job.user, category_id=category_id).update(
            last_synced_at=now,
            product_count=_category_listing_count(job.user, category_id),
            updated_at=now,
        )

    invalidate_listing_caches(job.user_id)
    create_audit_log(
        user=job.user,
        action='lightspeed_sync',
        model_name='SyncJob',
        object_id=job.id,
        changes={
            'items_with_stock': job.items_with_stock,
            'items_created': job.items_created,
            'items_updated': job.items_updated,
            'sync_all': job.sync_all,
        },
    )
    logger.info(f"Sync job {job.id} complete: {job.items_created} created, {job.items_updated} updated")

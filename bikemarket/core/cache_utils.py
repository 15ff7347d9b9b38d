"""
Caching helpers for expensive marketplace queries
Uses Redis (django-redis) when configured, Django's local cache otherwise
"""
from django.core.cache import cache
import hashlib
import logging

logger = logging.getLogger(__name__)

# Cache TTLs (in seconds)
BROWSE_LISTINGS_CACHE_TTL = 60  # 1 minute
LIGHTSPEED_CATEGORIES_CACHE_TTL = 300  # 5 minutes
STOREFRONT_CACHE_TTL = 120  # 2 minutes


def make_cache_key(prefix, *args, **kwargs):
    """Generate a unique cache key from arguments"""
    key_data = f"{prefix}:{args}:{sorted(kwargs.items())}"
    # Hash it to keep key length reasonable
    key_hash = hashlib.md5(key_data.encode()).hexdigest()
    return f"{prefix}:{key_hash}"


def invalidate_cache_pattern(pattern):
    """
    Invalidate all cache keys matching a pattern
    Note: This requires Redis with SCAN command support; other backends are cleared entirely
    """
    try:
        from django_redis import get_redis_connection
        redis_conn = get_redis_connection("default")

        keys = []
        cursor = 0
        while True:
            cursor, partial_keys = redis_conn.scan(cursor, match=f"*{pattern}*", count=100)
            keys.extend(partial_keys)
            if cursor == 0:
                break

        if keys:
            redis_conn.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching pattern: {pattern}")
    except NotImplementedError:
        # Not a redis backend (local memory cache in development/tests)
        cache.clear()
    except Exception as e:
        logger.warning(f"Could not invalidate cache pattern {pattern}: {str(e)}")


def invalidate_listing_caches(user_id=None):
    """Drop cached browse pages and, when given, the seller's storefront"""
    invalidate_cache_pattern("browse_listings")
    if user_id is not None:
        invalidate_cache_pattern(f"storefront:{user_id}:")

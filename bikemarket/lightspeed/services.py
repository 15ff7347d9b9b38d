"""
Shaping Lightspeed records for the category and item endpoints and the sync
"""
import logging
import math
from decimal import Decimal, InvalidOperation

from .client import UNCATEGORIZED_IDS, LightspeedError, ensure_list
from .models import CategorySyncPreference

logger = logging.getLogger(__name__)

UNCATEGORIZED = CategorySyncPreference.UNCATEGORIZED
UNCATEGORIZED_NAME = 'No Category'
UNCATEGORIZED_PATH = 'Products without a category'


def lightspeed_category_param(category_id):
    """Item.json categoryID filter value for a category id (uncategorized is 0)"""
    return '0' if category_id == UNCATEGORIZED else str(category_id)


def is_uncategorized(item):
    return item.get('categoryID') in UNCATEGORIZED_IDS


def to_decimal(value, default='0'):
    try:
        return Decimal(str(value if value not in (None, '') else default))
    except (InvalidOperation, ValueError):
        return Decimal(default)


def to_int(value, default=0):
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def item_prices(item):
    return ensure_list((item.get('Prices') or {}).get('ItemPrice'))


def default_price(item):
    """Amount of the 'Default' price, '0' when there is none"""
    for price in item_prices(item):
        if price.get('useType') == 'Default':
            return price.get('amount') or '0'
    return '0'


def item_images(item):
    return [
        {'url': image.get('baseImageURL'), 'publicId': image.get('publicID')}
        for image in ensure_list((item.get('Images') or {}).get('Image'))
    ]


def item_stock(item):
    """(qoh, sellable) from the account-wide ItemShop (shopID 0) loaded with the item"""
    for shop in ensure_list((item.get('ItemShops') or {}).get('ItemShop')):
        if str(shop.get('shopID')) == '0':
            return shop.get('qoh') or '0', shop.get('sellable') or '0'
    return '0', '0'


def build_category_map(categories):
    return {
        str(category.get('categoryID')): {
            'name': category.get('name'),
            'fullPath': category.get('fullPathName') or category.get('name'),
        }
        for category in categories
    }


def merge_category_preferences(categories, preferences):
    """
    Lightspeed categories merged with the user's saved sync preferences,
    with the "No Category" pseudo-category first.
    """
    by_id = {pref.category_id: pref for pref in preferences}

    def row(category_id, name, full_path, parent_id=None):
        pref = by_id.get(category_id)
        return {
            'categoryId': category_id,
            'name': name,
            'fullPath': full_path,
            'parentId': parent_id,
            'isEnabled': pref.is_enabled if pref else False,
            'productCount': pref.product_count if pref else 0,
            'lastSyncedAt': pref.last_synced_at.isoformat() if pref and pref.last_synced_at else None,
        }

    merged = [row(UNCATEGORIZED, UNCATEGORIZED_NAME, UNCATEGORIZED_PATH)]
    for category in categories:
        category_id = str(category.get('categoryID'))
        parent_id = category.get('parentID')
        merged.append(row(
            category_id,
            category.get('name'),
            category.get('fullPathName') or category.get('name'),
            str(parent_id) if parent_id not in (None, '', '0') else None,
        ))
    return merged


def format_item_preview(item, category_map):
    """Item as returned by the preview endpoint"""
    qoh, sellable = item_stock(item)
    category_id = str(item.get('categoryID') or '')
    return {
        'id': item.get('itemID'),
        'systemSku': item.get('systemSku') or '',
        'customSku': item.get('customSku') or '',
        'description': item.get('description') or '',
        'categoryId': category_id,
        'manufacturerId': item.get('manufacturerID') or '',
        'modelYear': item.get('modelYear') or '',
        'upc': item.get('upc') or '',
        'prices': item_prices(item),
        'defaultCost': item.get('defaultCost') or '0',
        'avgCost': item.get('avgCost') or '0',
        'images': item_images(item),
        'timeStamp': item.get('timeStamp'),
        'category': (category_map.get(category_id) or {}).get('name') or 'Unknown',
        'price': default_price(item),
        'qoh': qoh,
        'sellable': sellable,
    }


def fetch_items_preview(client, category_ids, limit=30):
    """
    Up to ``limit`` items spread across the given categories, deduplicated.

    A category that fails to load is logged and skipped.
    """
    per_category = max(1, math.ceil(limit / len(category_ids)))
    seen = set()
    items = []
    for category_id in category_ids:
        try:
            records = client.get_items({'categoryID': lightspeed_category_param(category_id), 'limit': per_category})
        except LightspeedError as e:
            logger.error(f"Error fetching Lightspeed items for category {category_id}: {str(e)}")
            continue
        for record in records:
            if category_id == UNCATEGORIZED and not is_uncategorized(record):
                continue
            item_id = record.get('itemID')
            if item_id in seen:
                continue
            seen.add(item_id)
            items.append(record)

    category_map = build_category_map(client.get_categories()) if items else {}
    return [format_item_preview(item, category_map) for item in items]

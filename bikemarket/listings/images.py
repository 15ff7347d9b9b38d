"""
Listing image processing - pre-generates size variants on upload
Uses Pillow for resizing and Django's default storage for persistence
"""
import io
import logging
import time
import uuid
from typing import Dict

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ['image/jpeg', 'image/jpg', 'image/png', 'image/webp']
ALLOWED_FORMATS = {'JPEG', 'PNG', 'WEBP'}

# Longest edge, in pixels, for each stored variant
VARIANT_SIZES = {
    'original': 2000,
    'card': 400,
    'thumbnail': 100,
}
WEBP_QUALITY = 82


class ImageProcessingError(Exception):
    """Raised when an uploaded file is not a usable image"""


def _resize(img: Image.Image, max_edge: int) -> Image.Image:
    variant = img.copy()
    variant.thumbnail((max_edge, max_edge), Image.LANCZOS)
    return variant


def generate_variants(raw: bytes) -> Dict[str, bytes]:
    """
    Decode an uploaded image and encode WebP variants.

    Returns a dict of variant name -> WebP bytes.
    """
    try:
        img = Image.open(io.BytesIO(raw))
        img_format = img.format
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError(f"Could not read image: {e}")

    if img_format not in ALLOWED_FORMATS:
        raise ImageProcessingError(f"Unsupported image format: {img_format}")

    # Respect camera orientation, then flatten to RGB for WebP
    img = ImageOps.exif_transpose(img)
    if img.mode not in ('RGB', 'RGBA'):
        img = img.convert('RGBA' if 'A' in img.getbands() else 'RGB')

    variants = {}
    for name, max_edge in VARIANT_SIZES.items():
        buffer = io.BytesIO()
        _resize(img, max_edge).save(buffer, format='WEBP', quality=WEBP_QUALITY, method=4)
        variants[name] = buffer.getvalue()
    return variants


def store_listing_image(user_id, raw: bytes, listing_id=None) -> Dict[str, str]:
    """
    Generate variants for an upload and save them to default storage.

    Returns storage paths keyed by variant name.
    """
    variants = generate_variants(raw)
    folder = f"listings/{user_id}/{listing_id or 'temp'}"
    stem = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"

    paths = {}
    for name, content in variants.items():
        path = default_storage.save(f"{folder}/{stem}-{name}.webp", ContentFile(content))
        paths[name] = path
        logger.debug(f"Stored {name} variant ({len(content)} bytes) at {path}")
    return paths

"""
Encryption for Lightspeed OAuth tokens at rest.

AES-256-GCM with a 96-bit random IV. Stored as ``iv:authTag:ciphertext``,
each part hex encoded. The key is LIGHTSPEED_TOKEN_ENCRYPTION_KEY (64 hex
characters = 32 bytes).
"""
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings

logger = logging.getLogger(__name__)

IV_BYTES = 12
TAG_BYTES = 16


class TokenEncryptionError(Exception):
    """Raised when the key is missing or a stored token cannot be decrypted"""


def get_encryption_key() -> bytes:
    key_hex = getattr(settings, 'LIGHTSPEED_TOKEN_ENCRYPTION_KEY', '')
    if not key_hex:
        raise TokenEncryptionError('LIGHTSPEED_TOKEN_ENCRYPTION_KEY is not configured')
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        raise TokenEncryptionError('LIGHTSPEED_TOKEN_ENCRYPTION_KEY must be hex encoded')
    if len(key) != 32:
        raise TokenEncryptionError('LIGHTSPEED_TOKEN_ENCRYPTION_KEY must be 64 hex characters (32 bytes)')
    return key


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage"""
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(get_encryption_key()).encrypt(iv, token.encode('utf-8'), None)
    # cryptography appends the tag to the ciphertext
    ciphertext, auth_tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return f"{iv.hex()}:{auth_tag.hex()}:{ciphertext.hex()}"


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token. Raises TokenEncryptionError on bad format or tampering."""
    parts = (encrypted_token or '').split(':')
    if len(parts) != 3:
        raise TokenEncryptionError('Invalid encrypted token format')

    iv_hex, auth_tag_hex, ciphertext_hex = parts
    try:
        iv = bytes.fromhex(iv_hex)
        auth_tag = bytes.fromhex(auth_tag_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError:
        raise TokenEncryptionError('Invalid encrypted token format')

    try:
        plaintext = AESGCM(get_encryption_key()).decrypt(iv, ciphertext + auth_tag, None)
    except InvalidTag:
        logger.error("Lightspeed token failed authentication during decryption")
        raise TokenEncryptionError('Token could not be decrypted')
    return plaintext.decode('utf-8')

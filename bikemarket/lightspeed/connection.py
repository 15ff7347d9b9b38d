"""
Lightspeed OAuth connection management: authorize URL and state, code
exchange, token storage and refresh, and connection status bookkeeping.
"""
import logging
import secrets
from datetime import timedelta
from urllib.parse import urlencode

import requests
from django.conf import settings
from django.db.models import F
from django.utils import timezone

from .client import (
    AUTHORIZE_URL, OAUTH_SCOPE, REQUEST_TIMEOUT, TOKEN_URL,
    LightspeedAuthError, LightspeedClient, LightspeedError,
)
from .models import LightspeedConnection
from .tokens import TokenEncryptionError, decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)
STATE_EXPIRY = timedelta(minutes=10)


def get_connection(user):
    return LightspeedConnection.objects.filter(user=user).first()


def get_active_connection(user):
    """The user's connection when it is connected with stored tokens, else None"""
    connection = get_connection(user)
    if connection and connection.is_connected:
        return connection
    return None


def build_authorize_url(state):
    query = urlencode({
        'response_type': 'code',
        'client_id': getattr(settings, 'LIGHTSPEED_CLIENT_ID', ''),
        'scope': OAUTH_SCOPE,
        'state': state,
        'redirect_uri': getattr(settings, 'LIGHTSPEED_REDIRECT_URI', ''),
    })
    return f"{AUTHORIZE_URL}?{query}"


def start_oauth(user):
    """Store a fresh OAuth state for the user and return the authorize URL"""
    if not getattr(settings, 'LIGHTSPEED_CLIENT_ID', ''):
        raise LightspeedError('Lightspeed is not configured')

    state = secrets.token_hex(32)
    connection, created = LightspeedConnection.objects.get_or_create(user=user)
    connection.oauth_state = state
    connection.oauth_state_expires_at = timezone.now() + STATE_EXPIRY
    connection.save(update_fields=['oauth_state', 'oauth_state_expires_at', 'updated_at'])
    logger.info(f"Lightspeed OAuth started for user {user.id}")
    return build_authorize_url(state)


def consume_oauth_state(state):
    """
    Validate and clear an OAuth state.

    Returns the owning connection, or None if the state is unknown or has
    expired. A state can only be used once.
    """
    if not state:
        return None
    connection = LightspeedConnection.objects.select_related('user').filter(oauth_state=state).first()
    if connection is None:
        return None

    expired = connection.oauth_state_expires_at and connection.oauth_state_expires_at < timezone.now()
    connection.oauth_state = None
    connection.oauth_state_expires_at = None
    connection.save(update_fields=['oauth_state', 'oauth_state_expires_at', 'updated_at'])
    if expired:
        logger.warning(f"Expired Lightspeed OAuth state used for user {connection.user_id}")
        return None
    return connection


def _post_token_request(payload):
    body = {
        'client_id': getattr(settings, 'LIGHTSPEED_CLIENT_ID', ''),
        'client_secret': getattr(settings, 'LIGHTSPEED_CLIENT_SECRET', ''),
    }
    body.update(payload)
    try:
        response = requests.post(TOKEN_URL, json=body, timeout=REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as e:
        raise LightspeedAuthError(f'Token request failed: {str(e)}')
    if not response.ok:
        logger.error(f"Lightspeed token request ({payload.get('grant_type')}) failed: {response.status_code} {response.text[:500]}")
        raise LightspeedAuthError(f'Token request failed with status {response.status_code}', status_code=response.status_code)
    data = response.json()
    if not data.get('access_token'):
        raise LightspeedAuthError('Token response did not include an access token')
    return data


def exchange_code(code):
    """Swap an authorization code for access and refresh tokens"""
    return _post_token_request({
        'grant_type': 'authorization_code',
        'code': code,
        'redirect_uri': getattr(settings, 'LIGHTSPEED_REDIRECT_URI', ''),
    })


def store_tokens(connection, token_data):
    """Encrypt and save tokens from a token response; marks the connection connected"""
    now = timezone.now()
    connection.access_token_encrypted = encrypt_token(token_data['access_token'])
    refresh_token = token_data.get('refresh_token')
    if refresh_token:
        connection.refresh_token_encrypted = encrypt_token(refresh_token)
    connection.token_expires_at = now + timedelta(seconds=int(token_data.get('expires_in') or 3600))
    connection.last_token_refresh_at = now
    connection.status = 'connected'
    connection.last_error = None
    connection.last_error_at = None
    connection.error_count = 0
    connection.save()
    return connection


def complete_oauth(connection, code):
    """
    Finish the OAuth flow for a connection whose state was validated.

    Exchanges the code, stores the tokens and records the Lightspeed
    account. Account lookup failures are logged; the connection is usable
    once the account ID is fetched on first use.
    """
    try:
        token_data = exchange_code(code)
    except LightspeedAuthError:
        mark_connection_error(connection, 'error', 'Token exchange failed')
        raise

    store_tokens(connection, token_data)
    connection.connected_at = timezone.now()
    connection.disconnected_at = None

    try:
        account = LightspeedClient(token_data['access_token']).get_account()
        connection.account_id = str(account.get('accountID'))
        connection.account_name = account.get('name')
    except LightspeedError as e:
        logger.warning(f"Could not fetch Lightspeed account for user {connection.user_id}: {str(e)}")

    connection.save()
    logger.info(f"Lightspeed connected for user {connection.user_id} (account {connection.account_id})")
    return connection


def token_needs_refresh(connection, now=None):
    if not connection.token_expires_at:
        return True
    now = now or timezone.now()
    return now >= connection.token_expires_at - TOKEN_EXPIRY_BUFFER


def refresh_access_token(connection):
    """
    Refresh the access token with the stored refresh token.

    Returns the new access token. On failure the connection is marked
    expired and LightspeedAuthError is raised.
    """
    if not connection.refresh_token_encrypted:
        mark_connection_error(connection, 'expired', 'No refresh token stored')
        raise LightspeedAuthError('No refresh token available. Please reconnect your Lightspeed account.')

    try:
        refresh_token = decrypt_token(connection.refresh_token_encrypted)
        token_data = _post_token_request({
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        })
    except (LightspeedAuthError, TokenEncryptionError) as e:
        logger.error(f"Lightspeed token refresh failed for user {connection.user_id}: {str(e)}")
        mark_connection_error(connection, 'expired', 'Token refresh failed')
        raise LightspeedAuthError('Lightspeed session expired. Please reconnect your account.')

    store_tokens(connection, token_data)
    logger.info(f"Refreshed Lightspeed token for user {connection.user_id}")
    return token_data['access_token']


def get_valid_access_token(connection):
    """Decrypted access token, refreshed first when it is within 5 minutes of expiry"""
    if not connection.access_token_encrypted:
        raise LightspeedAuthError('Lightspeed not connected')
    if token_needs_refresh(connection):
        return refresh_access_token(connection)
    try:
        return decrypt_token(connection.access_token_encrypted)
    except TokenEncryptionError as e:
        mark_connection_error(connection, 'error', str(e))
        raise LightspeedAuthError('Stored Lightspeed token is unreadable. Please reconnect your account.')


def get_client(connection):
    """LightspeedClient for the connection, resolving the account ID if it was never stored"""
    client = LightspeedClient(get_valid_access_token(connection), connection.account_id)
    if not connection.account_id:
        account = client.get_account()
        connection.account_id = client.account_id
        connection.account_name = account.get('name')
        connection.save(update_fields=['account_id', 'account_name', 'updated_at'])
    return client


def mark_connection_error(connection, status, message=None):
    """Set status (error/expired) and record the error; bumps error_count"""
    now = timezone.now()
    fields = {'status': status, 'updated_at': now}
    if message:
        fields['last_error'] = message
        fields['last_error_at'] = now
    if status in ('error', 'expired'):
        fields['error_count'] = F('error_count') + 1
    LightspeedConnection.objects.filter(pk=connection.pk).update(**fields)
    connection.refresh_from_db()
    return connection


def record_sync_error(connection, message):
    """Record a sync failure without changing the connection status"""
    now = timezone.now()
    LightspeedConnection.objects.filter(pk=connection.pk).update(
        last_error=message, last_error_at=now, error_count=F('error_count') + 1, updated_at=now,
    )


def disconnect(connection):
    """Wipe tokens and mark the connection disconnected"""
    connection.status = 'disconnected'
    connection.disconnected_at = timezone.now()
    connection.access_token_encrypted = None
    connection.refresh_token_encrypted = None
    connection.token_expires_at = None
    connection.oauth_state = None
    connection.oauth_state_expires_at = None
    connection.save()
    logger.info(f"Lightspeed disconnected for user {connection.user_id}")
    return connection


def refresh_expiring_tokens(within=timedelta(hours=1), dry_run=False):
    """
    Refresh every connected account whose token expires within ``within``.

    Returns counts of refreshed and failed connections plus the number checked.
    """
    cutoff = timezone.now() + within
    connections = LightspeedConnection.objects.filter(
        status='connected',
        refresh_token_encrypted__isnull=False,
        token_expires_at__lte=cutoff,
    ).select_related('user')

    result = {'checked': connections.count(), 'refreshed': 0, 'failed': 0, 'errors': []}
    if dry_run:
        return result

    for connection in connections:
        try:
            refresh_access_token(connection)
        except LightspeedAuthError as e:
            result['failed'] += 1
            result['errors'].append(f"user {connection.user_id}: {str(e)}")
            continue
        result['refreshed'] += 1
    return result

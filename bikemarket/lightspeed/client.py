"""
Lightspeed Retail (R-Series) API client.

Wraps a requests.Session with a minimum gap between requests, retries with
exponential backoff for 5xx and network errors, and Retry-After handling
for 429 responses. Collection endpoints are paginated with the
``@attributes.next`` URL Lightspeed returns.
"""
import logging
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

API_BASE_URL = getattr(settings, 'LIGHTSPEED_API_BASE_URL', 'https://api.lightspeedapp.com/API/V3')
AUTHORIZE_URL = getattr(settings, 'LIGHTSPEED_AUTHORIZE_URL', 'https://cloud.lightspeedapp.com/auth/oauth/authorize')
TOKEN_URL = getattr(settings, 'LIGHTSPEED_TOKEN_URL', 'https://cloud.lightspeedapp.com/auth/oauth/token')
OAUTH_SCOPE = 'employee:all'

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds, doubled per attempt
MIN_REQUEST_INTERVAL = 0.2  # seconds between requests
REQUEST_TIMEOUT = 30
PAGE_LIMIT = 100

# Item.categoryID values meaning "no category"
UNCATEGORIZED_IDS = (None, '', '0', 0)


class LightspeedError(Exception):
    """Raised when the Lightspeed API cannot be reached or returns an error"""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class LightspeedAuthError(LightspeedError):
    """Raised when tokens are missing, expired or rejected"""


def ensure_list(value) -> list:
    """Lightspeed returns a bare object instead of a one-element list; normalise"""
    if value is None or value == '':
        return []
    if isinstance(value, list):
        return value
    return [value]


class LightspeedClient:
    """Authenticated client for one Lightspeed account"""

    def __init__(self, access_token: str, account_id: Optional[str] = None, session: Optional[requests.Session] = None):
        self.access_token = access_token
        self.account_id = account_id
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {access_token}',
            'Accept': 'application/json',
        })
        self._last_request_at = None

    def _wait_for_slot(self):
        if self._last_request_at is not None:
            elapsed = time.monotonic() - self._last_request_at
            if elapsed < MIN_REQUEST_INTERVAL:
                time.sleep(MIN_REQUEST_INTERVAL - elapsed)
        self._last_request_at = time.monotonic()

    def account_url(self, path: str) -> str:
        if path.startswith('http'):
            return path
        if not self.account_id:
            raise LightspeedError('Lightspeed account ID is not known for this connection')
        return f"{API_BASE_URL}/Account/{self.account_id}/{path.lstrip('/')}"

    def request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        """
        Make a request, retrying rate limits, server errors and network failures.

        Returns the decoded JSON body. Raises LightspeedAuthError on 401 and
        LightspeedError for other failures once retries are exhausted.
        """
        last_error = None
        for attempt in range(MAX_RETRIES):
            self._wait_for_slot()
            backoff = INITIAL_RETRY_DELAY * (2 ** attempt)
            try:
                response = self.session.request(method, url, params=params, timeout=REQUEST_TIMEOUT, **kwargs)
            except requests.exceptions.RequestException as e:
                last_error = LightspeedError(f'Lightspeed request failed: {str(e)}')
                logger.warning(f"Lightspeed {method} {url} failed (attempt {attempt + 1}/{MAX_RETRIES}): {str(e)}")
                if attempt < MAX_RETRIES - 1:
                    time.sleep(backoff)
                continue

            if response.status_code == 429:
                retry_after = response.headers.get('Retry-After')
                try:
                    wait_time = float(retry_after) if retry_after else backoff
                except ValueError:
                    wait_time = backoff
                logger.info(f"Lightspeed rate limited, waiting {wait_time}s before retry")
                last_error = LightspeedError('Lightspeed rate limit exceeded', status_code=429)
                if attempt < MAX_RETRIES - 1:
                    time.sleep(wait_time)
                continue

            if response.status_code >= 500:
                logger.warning(f"Lightspeed server error {response.status_code}, waiting {backoff}s before retry")
                last_error = LightspeedError(f'Lightspeed server error: {response.status_code}', status_code=response.status_code)
                if attempt < MAX_RETRIES - 1:
                    time.sleep(backoff)
                continue

            if response.status_code == 401:
                raise LightspeedAuthError('Lightspeed rejected the access token. Please reconnect your account.', status_code=401)

            if not response.ok:
                raise LightspeedError(f'Lightspeed API error: {response.status_code} - {response.text[:500]}',
                                      status_code=response.status_code)

            try:
                return response.json()
            except ValueError:
                raise LightspeedError('Lightspeed returned an invalid JSON response', status_code=response.status_code)

        raise last_error or LightspeedError('Request failed after maximum retries')

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request('GET', self.account_url(path), params=params)

    def get_account(self) -> Dict[str, Any]:
        """The account the token belongs to; also sets ``account_id``"""
        data = self.request('GET', f'{API_BASE_URL}/Account.json')
        account = ensure_list(data.get('Account'))
        if not account:
            raise LightspeedError('No Lightspeed account returned for this token')
        self.account_id = str(account[0].get('accountID'))
        return account[0]

    def fetch_page(self, path_or_url: str, key: str, params: Optional[Dict[str, Any]] = None) -> Tuple[List[dict], Optional[str]]:
        """
        Fetch one page of a collection.

        ``path_or_url`` is either an account-relative path (first page) or
        the absolute ``next`` URL of a previous page, which already carries
        the query. Returns (records, next_url).
        """
        if path_or_url.startswith('http'):
            data = self.request('GET', path_or_url)
        else:
            data = self.get(path_or_url, params=params)
        attributes = data.get('@attributes') or {}
        return ensure_list(data.get(key)), attributes.get('next') or None

    def paginate(self, path: str, key: str, params: Optional[Dict[str, Any]] = None, max_pages: Optional[int] = None) -> Iterator[dict]:
        """Yield every record of a collection, following next URLs"""
        url = path
        pages = 0
        query = dict(params or {})
        query.setdefault('limit', PAGE_LIMIT)
        while url:
            records, url = self.fetch_page(url, key, params=query)
            yield from records
            pages += 1
            if max_pages is not None and pages >= max_pages:
                break

    def get_categories(self, params: Optional[Dict[str, Any]] = None) -> List[dict]:
        query = {'archived': 'false'}
        query.update(params or {})
        return list(self.paginate('Category.json', 'Category', params=query))

    def get_items(self, params: Optional[Dict[str, Any]] = None) -> List[dict]:
        """A single page of items (use ``limit`` to size it)"""
        query = {'archived': 'false', 'load_relations': '["Images","ItemShops"]'}
        query.update(params or {})
        records, _ = self.fetch_page('Item.json', 'Item', params=query)
        return records

    def get_item_shops(self, next_url: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> Tuple[List[dict], Optional[str]]:
        """One page of account-wide stock (shopID 0, qoh > 0); pass the previous next_url to continue"""
        query = {'shopID': '0', 'qoh': '>,0', 'limit': PAGE_LIMIT}
        query.update(params or {})
        return self.fetch_page(next_url or 'ItemShop.json', 'ItemShop', params=query)

import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Callable, List, NamedTuple, Optional, Tuple

import requests
from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

from MetaReport.models import MetaConnection, Setting, TokenLog


logger = logging.getLogger(__name__)

TOKEN_SETTING_KEY = 'meta_access_token'
TOKEN_OVERRIDE_HEADER = 'X-Meta-Token'
PREVENTIVE_RENEWAL_DAYS = 50

VALID = 'VALID'
EXPIRING_SOON = 'EXPIRING_SOON'
EXPIRED_OR_UNKNOWN = 'EXPIRED_OR_UNKNOWN'

SOURCE_REQUEST = 'request'
SOURCE_TENANT = 'tenant'
SOURCE_STORED = 'stored'
SOURCE_STATIC = 'static'
SHARED_TOKEN_SOURCES = frozenset({SOURCE_STORED, SOURCE_STATIC})


class StoredToken(NamedTuple):
    value: str
    expires_at: Optional[datetime]


class TokenRefreshError(Exception):
    def __init__(self, detail: str, status_code: int = 502) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class TokenConfigurationError(TokenRefreshError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail, 500)


class TokenStore:
    def get(self, key: str) -> Optional[StoredToken]:
        raise NotImplementedError

    def put(self, key: str, value: str, expires_at: Optional[datetime]) -> None:
        raise NotImplementedError


class SettingsTokenStore(TokenStore):
    def get(self, key: str) -> Optional[StoredToken]:
        row = Setting.objects.filter(key=key).only('value', 'expires_at').first()
        if row is None or not row.value:
            return None
        return StoredToken(value=row.value, expires_at=row.expires_at)

    def put(self, key: str, value: str, expires_at: Optional[datetime]) -> None:
        Setting.objects.update_or_create(
            key=key,
            defaults={
                'value': value,
                'expires_at': expires_at,
                'updated_at': timezone.now(),
            },
        )


def _warning_window() -> timedelta:
    return timedelta(days=getattr(settings, 'META_TOKEN_WARNING_DAYS', 7))


def _request_timeout() -> int:
    return getattr(settings, 'META_REQUEST_TIMEOUT_SECONDS', 30)


def token_status(token: Optional[StoredToken], now: Optional[datetime] = None) -> str:
    if token is None or not token.value:
        return EXPIRED_OR_UNKNOWN
    if token.expires_at is None:
        return VALID
    now = now or timezone.now()
    if token.expires_at <= now:
        return EXPIRED_OR_UNKNOWN
    if token.expires_at - now <= _warning_window():
        return EXPIRING_SOON
    return VALID


def _meta_error_message(payload, fallback: str) -> str:
    if isinstance(payload, dict):
        error = payload.get('error')
        if isinstance(error, dict) and error.get('message'):
            return str(error['message'])
    return fallback


def _parse_positive_int(value) -> Optional[int]:
    if value in (None, ''):
        return None
    if isinstance(value, bool):
        return None
    try:
        parsed = int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None
    if parsed <= 0:
        return None
    return parsed


def _expires_at_from_payload(payload, now: datetime) -> Optional[datetime]:
    if not isinstance(payload, dict):
        return None

    expires_in = _parse_positive_int(payload.get('expires_in'))
    if expires_in is not None:
        return now + timedelta(seconds=expires_in)

    expires_at = _parse_positive_int(payload.get('expires_at'))
    if expires_at is not None:
        return datetime.fromtimestamp(expires_at, tz=dt_timezone.utc)

    return None


def _fetch_expires_at_with_debug_token(
    *,
    graph_version: str,
    app_id: str,
    app_secret: str,
    input_token: str,
) -> Optional[datetime]:
    url = f'https://graph.facebook.com/{graph_version}/debug_token'
    params = {
        'input_token': input_token,
        'access_token': f'{app_id}|{app_secret}',
    }
    try:
        response = requests.get(url, params=params, timeout=_request_timeout())
    except requests.RequestException:
        logger.warning('debug_token lookup failed; falling back to preventive expiry.')
        return None

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if response.status_code >= 400:
        return None

    data = payload.get('data') if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return None

    expires_at = _parse_positive_int(data.get('expires_at'))
    if expires_at is None:
        return None
    return datetime.fromtimestamp(expires_at, tz=dt_timezone.utc)


def exchange_token(
    current_token: str,
    *,
    graph_version: Optional[str] = None,
    app_id: Optional[str] = None,
    app_secret: Optional[str] = None,
) -> dict:
    current_token = str(current_token or '').strip()
    if not current_token:
        raise TokenRefreshError('No token found', 400)

    graph_version = str(
        graph_version or getattr(settings, 'META_GRAPH_VERSION', 'v18.0') or 'v18.0'
    ).strip('/')
    app_id = str(app_id or getattr(settings, 'META_APP_ID', '') or '').strip()
    app_secret = str(app_secret or getattr(settings, 'META_APP_SECRET', '') or '').strip()

    if not app_id or not app_secret:
        raise TokenConfigurationError('META_APP_ID and META_APP_SECRET must be configured.')

    url = f'https://graph.facebook.com/{graph_version}/oauth/access_token'
    params = {
        'grant_type': 'fb_exchange_token',
        'client_id': app_id,
        'client_secret': app_secret,
        'fb_exchange_token': current_token,
    }

    try:
        response = requests.get(url, params=params, timeout=_request_timeout())
    except requests.RequestException as exc:
        raise TokenRefreshError(f'Network error while exchanging token: {type(exc).__name__}', 502) from exc

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if response.status_code >= 400 or (isinstance(payload, dict) and payload.get('error')):
        raise TokenRefreshError(_meta_error_message(payload, 'Token exchange failed.'), 400)
    if not isinstance(payload, dict):
        raise TokenRefreshError('Meta Graph API returned an unexpected token payload.', 502)

    new_token = str(payload.get('access_token') or '').strip()
    if not new_token:
        raise TokenRefreshError('Meta Graph API did not return an access_token.', 502)

    now = timezone.now()
    expires_at = _expires_at_from_payload(payload, now)
    expiration_source = 'exchange'
    if expires_at is None:
        expires_at = _fetch_expires_at_with_debug_token(
            graph_version=graph_version,
            app_id=app_id,
            app_secret=app_secret,
            input_token=new_token,
        )
        expiration_source = 'debug_token'
    if expires_at is None:
        # No expiry metadata at all: schedule a preventive renewal.
        expires_at = now + timedelta(days=PREVENTIVE_RENEWAL_DAYS)
        expiration_source = f'preventive_{PREVENTIVE_RENEWAL_DAYS}d'

    return {
        'access_token': new_token,
        'expires_at': expires_at,
        'expires_in': _parse_positive_int(payload.get('expires_in')),
        'expiration_source': expiration_source,
    }


class TokenLifecycleManager:
    def __init__(self, store: Optional[TokenStore] = None, key: str = TOKEN_SETTING_KEY) -> None:
        self.store = store or SettingsTokenStore()
        self.key = key

    def stored_token(self) -> Optional[StoredToken]:
        return self.store.get(self.key)

    def status(self, now: Optional[datetime] = None) -> str:
        return token_status(self.stored_token(), now=now)

    def current_token(self) -> Optional[str]:
        stored = self.stored_token()
        state = token_status(stored)
        if state == EXPIRING_SOON:
            logger.warning('Stored Meta token expires at %s; refresh soon.', stored.expires_at.isoformat())
        if state != EXPIRED_OR_UNKNOWN:
            return stored.value
        return str(getattr(settings, 'META_ACCESS_TOKEN', '') or '').strip() or None

    def refresh(self) -> dict:
        stored = self.stored_token()
        status_before = token_status(stored)
        # An expired stored token is still offered to the exchange before the static one.
        current = stored.value if stored else None
        current = current or str(getattr(settings, 'META_ACCESS_TOKEN', '') or '').strip()

        try:
            exchanged = exchange_token(current)
            try:
                self.store.put(self.key, exchanged['access_token'], exchanged['expires_at'])
            except DatabaseError as exc:
                raise TokenRefreshError('Failed to save token', 500) from exc
        except TokenRefreshError as exc:
            logger.error('Meta token refresh failed: %s', exc.detail)
            self._audit(TokenLog.Status.FAILED, error_message=exc.detail)
            raise

        expires_at = exchanged['expires_at']
        self._audit(TokenLog.Status.SUCCESS, expires_at=expires_at)
        logger.info(
            'Meta token refreshed. expires_at=%s source=%s',
            expires_at.isoformat(),
            exchanged['expiration_source'],
        )
        lifetime = expires_at - timezone.now()
        return {
            'expires_at': expires_at,
            'expires_in_days': max(0, lifetime.days),
            'status_before': status_before,
            'expiration_source': exchanged['expiration_source'],
        }

    def _audit(self, status_value: str, *, expires_at: Optional[datetime] = None, error_message: str = '') -> None:
        try:
            TokenLog.objects.create(
                action='refresh',
                status=status_value,
                expires_at=expires_at,
                error_message=error_message,
            )
        except DatabaseError:
            logger.exception('Failed to persist TokenLog entry.')


TokenResolver = Callable[[], Optional[str]]


def _clean(value) -> Optional[str]:
    text = str(value or '').strip()
    return text or None


def request_override_resolver(request) -> TokenResolver:
    def resolve() -> Optional[str]:
        if request is None:
            return None
        header = _clean(request.headers.get(TOKEN_OVERRIDE_HEADER))
        if header:
            return header
        query = getattr(request, 'query_params', None) or request.GET
        from_query = _clean(query.get('access_token'))
        if from_query:
            return from_query
        data = getattr(request, 'data', None)
        if hasattr(data, 'get'):
            return _clean(data.get('access_token'))
        return None

    return resolve


def tenant_resolver(client_id) -> TokenResolver:
    def resolve() -> Optional[str]:
        if not client_id:
            return None
        connection = MetaConnection.objects.filter(client_id=client_id).only('access_token').first()
        return _clean(connection.access_token) if connection else None

    return resolve


def stored_token_resolver(manager: TokenLifecycleManager) -> TokenResolver:
    def resolve() -> Optional[str]:
        stored = manager.stored_token()
        if token_status(stored) == EXPIRED_OR_UNKNOWN:
            return None
        return stored.value

    return resolve


def static_token_resolver() -> Optional[str]:
    return _clean(getattr(settings, 'META_ACCESS_TOKEN', ''))


def resolve_token_with_source(
    request=None,
    client_id=None,
    manager: Optional[TokenLifecycleManager] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """Walk the resolver chain and return (token, source) for the first hit.

    ``source`` is one of the ``SOURCE_*`` names; tokens from ``SHARED_TOKEN_SOURCES``
    belong to the agency, not to the caller.
    """
    manager = manager or TokenLifecycleManager()
    chain: List[Tuple[str, TokenResolver]] = [
        (SOURCE_REQUEST, request_override_resolver(request)),
        (SOURCE_TENANT, tenant_resolver(client_id)),
        (SOURCE_STORED, stored_token_resolver(manager)),
        (SOURCE_STATIC, static_token_resolver),
    ]
    for source, resolver in chain:
        token = resolver()
        if token:
            return token, source
    return None, None


def resolve_access_token(
    request=None,
    client_id=None,
    manager: Optional[TokenLifecycleManager] = None,
) -> Optional[str]:
    return resolve_token_with_source(request, client_id, manager)[0]

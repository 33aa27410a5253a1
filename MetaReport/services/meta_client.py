import json
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import requests
from django.conf import settings
from django.db import DatabaseError

from MetaReport.models import SyncLog, SyncRun


logger = logging.getLogger(__name__)

DateLike = Union[date, str]

INSIGHT_FIELDS = [
    'campaign_id',
    'campaign_name',
    'impressions',
    'clicks',
    'ctr',
    'cpc',
    'cpm',
    'spend',
    'reach',
    'frequency',
    'actions',
    'cost_per_action_type',
]
VIDEO_FIELDS = [
    'video_p25_watched_actions',
    'video_p50_watched_actions',
    'video_p75_watched_actions',
    'video_p100_watched_actions',
]
CREATIVE_FIELDS = 'id,name,status,creative{id,name,title,body,image_url,thumbnail_url,object_type,call_to_action_type}'


class MetaClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MetaTransportError(MetaClientError):
    pass


def normalize_account_id(account_id: str) -> str:
    account = str(account_id or '').strip()
    if not account:
        raise ValueError('account_id is required')
    return account if account.startswith('act_') else f'act_{account}'


class MetaGraphClient:
    """Thin wrapper over the Graph API endpoints the report pipeline consumes.

    Every call is a single attempt: transport failures raise MetaTransportError,
    error envelopes raise MetaClientError with the platform's message. Retrying
    is left to the caller.
    """

    def __init__(
        self,
        access_token: str,
        sync_run: Optional[SyncRun] = None,
        graph_version: Optional[str] = None,
        base_url: str = 'https://graph.facebook.com',
        timeout_seconds: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        if not access_token:
            raise ValueError('access_token is required')

        self.access_token = access_token
        self.sync_run = sync_run
        self.graph_version = str(
            graph_version or getattr(settings, 'META_GRAPH_VERSION', 'v18.0') or 'v18.0'
        ).strip('/')
        self.base_url = base_url.rstrip('/')
        self.timeout_seconds = timeout_seconds or getattr(settings, 'META_REQUEST_TIMEOUT_SECONDS', 30)
        self.max_pages = max(1, int(max_pages or getattr(settings, 'META_INSIGHTS_MAX_PAGES', 10)))
        self.session = requests.Session()

    def request(
        self,
        method: str,
        path_or_url: str,
        *,
        params: Optional[Dict] = None,
        entity: str = 'meta_graph',
        timeout_seconds: Optional[int] = None,
    ) -> Any:
        method = method.upper()
        url = self._build_url(path_or_url)
        request_params = dict(params or {})
        if 'access_token' not in request_params and 'access_token=' not in url:
            request_params['access_token'] = self.access_token

        self._log(entity, f'{method} {self._redact(url)}')
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=request_params,
                timeout=timeout_seconds or self.timeout_seconds,
            )
        except requests.RequestException as exc:
            self._log(entity, f'Network error: {self._redact(str(exc))}')
            raise MetaTransportError(f'Network error calling Meta Graph API: {self._redact(str(exc))}') from exc

        payload = self._safe_json(response)
        error_message = self._extract_error_message(payload)
        if error_message is not None or not 200 <= response.status_code < 300:
            message = error_message or self._fallback_error_text(response)
            self._log(entity, f'Request failed status={response.status_code}: {message}')
            raise MetaClientError(message, status_code=response.status_code)

        return payload

    def paginate(
        self,
        path_or_url: str,
        *,
        params: Optional[Dict] = None,
        entity: str = 'meta_graph',
        page_limit: Optional[int] = None,
    ) -> Iterable[Dict]:
        limit = page_limit or self.max_pages
        current_path_or_url = path_or_url
        current_params = dict(params or {})
        page = 1

        while current_path_or_url:
            payload = self.request('GET', current_path_or_url, params=current_params, entity=entity)
            items = payload.get('data') if isinstance(payload, dict) else None
            if not isinstance(items, list):
                items = []
            self._log(entity, f'Page {page} received {len(items)} rows.')
            yield from items

            paging = payload.get('paging') if isinstance(payload, dict) else None
            next_url = paging.get('next') if isinstance(paging, dict) else None
            if not next_url:
                return
            if page >= limit:
                logger.warning('[%s] Pagination stopped at page_limit=%s; remaining rows not fetched.', entity, limit)
                self._log(entity, f'Pagination stopped by page_limit={limit}.')
                return
            current_path_or_url = next_url
            current_params = {}
            page += 1

    def fetch_insights(
        self,
        target_id: str,
        fields: Sequence[str],
        *,
        time_range: Optional[Tuple[DateLike, DateLike]] = None,
        breakdowns: Optional[Sequence[str]] = None,
        time_increment: Optional[int] = None,
        level: Optional[str] = 'campaign',
        is_campaign: bool = False,
        entity: str = 'insights',
    ) -> List[Dict]:
        target = str(target_id or '').strip() if is_campaign else normalize_account_id(target_id)
        if not target:
            raise ValueError('target_id is required')

        params: Dict[str, Any] = {'fields': ','.join(fields)}
        if time_range is not None:
            since, until = time_range
            params['time_range'] = json.dumps(
                {'since': _iso(since), 'until': _iso(until)},
                separators=(',', ':'),
            )
        if breakdowns:
            params['breakdowns'] = ','.join(breakdowns)
        if time_increment:
            params['time_increment'] = time_increment
        if level:
            params['level'] = level

        return list(self.paginate(f'{target}/insights', params=params, entity=entity))

    def fetch_ad_accounts(self) -> List[Dict]:
        payload = self.request(
            'GET',
            'me/adaccounts',
            params={'fields': 'id,name,account_status,currency,timezone_name'},
            entity='ad_accounts',
        )
        return list((payload or {}).get('data') or [])

    def fetch_campaigns(self, account_id: str) -> List[Dict]:
        payload = self.request(
            'GET',
            f'{normalize_account_id(account_id)}/campaigns',
            params={
                'fields': 'id,name,status,objective,daily_budget,lifetime_budget,created_time',
                'limit': 100,
            },
            entity='campaigns',
        )
        return list((payload or {}).get('data') or [])

    def fetch_ad_creatives(self, target_id: str, *, is_campaign: bool = True) -> List[Dict]:
        target = str(target_id or '').strip() if is_campaign else normalize_account_id(target_id)
        payload = self.request(
            'GET',
            f'{target}/ads',
            params={'fields': CREATIVE_FIELDS, 'limit': 50},
            entity='creatives',
        )
        return list((payload or {}).get('data') or [])

    def fetch_object(self, object_id: str, fields: str) -> Dict:
        payload = self.request('GET', str(object_id), params={'fields': fields}, entity='object')
        return payload if isinstance(payload, dict) else {}

    def health_check(self) -> Dict:
        timeout = getattr(settings, 'META_HEALTH_TIMEOUT_SECONDS', 5)
        payload = self.request('GET', 'me', params={'fields': 'id,name'}, entity='health', timeout_seconds=timeout)
        return {'id': (payload or {}).get('id'), 'name': (payload or {}).get('name')}

    def _build_url(self, path_or_url: str) -> str:
        candidate = (path_or_url or '').strip()
        if candidate.startswith('http://') or candidate.startswith('https://'):
            return candidate

        relative = candidate.lstrip('/')
        if relative:
            return f'{self.base_url}/{self.graph_version}/{relative}'
        return f'{self.base_url}/{self.graph_version}'

    def _extract_error_message(self, payload: Any) -> Optional[str]:
        if isinstance(payload, dict):
            error = payload.get('error')
            if isinstance(error, dict):
                return str(error.get('message') or 'Unknown Meta Graph API error')
            if error:
                return str(error)
        return None

    def _fallback_error_text(self, response: requests.Response) -> str:
        raw_text = (response.text or '').strip()
        if raw_text:
            return raw_text[:400]
        return f'HTTP {response.status_code}'

    def _safe_json(self, response: requests.Response):
        try:
            return response.json()
        except ValueError:
            return {'raw': response.text}

    def _redact(self, text: str) -> str:
        token = self.access_token
        if token and token in text:
            return text.replace(token, '***')
        return text

    def _log(self, entity: str, message: str) -> None:
        logger.info('[%s] %s', entity, message)
        if self.sync_run is not None:
            try:
                SyncLog.objects.create(sync_run=self.sync_run, entity=entity[:100], message=message)
            except DatabaseError:
                logger.exception('Failed to persist SyncLog entry.')


def _iso(value: DateLike) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)

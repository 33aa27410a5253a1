import hmac
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from accounts.models import ClientProfile, role_for_user
from accounts.permissions import IsAdminRole
from MetaReport.models import ClientReport, MetaInsightDaily
from MetaReport.services.aggregator import by_date, summarize
from MetaReport.services.meta_client import (
    INSIGHT_FIELDS,
    VIDEO_FIELDS,
    MetaClientError,
    MetaGraphClient,
    MetaTransportError,
    normalize_account_id,
)
from MetaReport.services.metric_normalizer import (
    PRIMARY_TRAFFIC_RESULT,
    action_value,
    demographic_breakdown,
    extract_by_policy,
    normalize,
    primary_action_type,
    to_float,
    to_int,
)
from MetaReport.services.report_builder import build_report, insight_rows
from MetaReport.services.sync_coordinator import MetaSyncCoordinator, SyncError
from MetaReport.services.token_manager import (
    SHARED_TOKEN_SOURCES,
    TokenLifecycleManager,
    TokenRefreshError,
    resolve_access_token,
    resolve_token_with_source,
)


logger = logging.getLogger(__name__)
User = get_user_model()

INSIGHTS_DEFAULT_DAYS = 30
DAILY_DEFAULT_DAYS = 7
STORED_ROWS_LIMIT = 100
LIVE_REPORT_FIELDS = ['impressions', 'reach', 'spend', 'actions']
GET_ACTIONS = {'accounts', 'campaigns', 'insights', 'daily', 'demographics', 'creative', 'report'}
POST_ACTIONS = {'sync', 'generate'}


def _error(message: str, status_code: int) -> Response:
    return Response({'success': False, 'error': message}, status=status_code)


def _server_error() -> Response:
    return _error('Server error', status.HTTP_500_INTERNAL_SERVER_ERROR)


def _meta_error_response(exc: MetaClientError) -> Response:
    if isinstance(exc, MetaTransportError):
        return _error(exc.message, status.HTTP_502_BAD_GATEWAY)
    return _error(exc.message, status.HTTP_400_BAD_REQUEST)


def _param(request, name: str) -> str:
    value = request.query_params.get(name)
    if value in (None, '') and hasattr(request.data, 'get'):
        value = request.data.get(name)
    return str(value or '').strip()


def _parse_day(raw: str):
    if not raw:
        return None
    try:
        return parse_date(raw)
    except ValueError:
        return None


def _parse_date_range(request, default_days: int):
    start_raw = _param(request, 'start_date')
    end_raw = _param(request, 'end_date')
    start = _parse_day(start_raw)
    end = _parse_day(end_raw)

    if start_raw and start is None:
        return None, None, 'Invalid start_date. Use YYYY-MM-DD.'
    if end_raw and end is None:
        return None, None, 'Invalid end_date. Use YYYY-MM-DD.'

    if end is None:
        end = timezone.localdate()
    if start is None:
        start = end - timedelta(days=default_days)
    if start > end:
        return None, None, 'start_date must not be after end_date.'
    return start, end, None


def _resolve_client(request, required: bool = False):
    """Return (client_user, error_response); non-admin callers are pinned to themselves."""
    if role_for_user(request.user) != ClientProfile.ROLE_ADMIN:
        return request.user, None

    raw_client_id = _param(request, 'client_id')
    if not raw_client_id:
        if required:
            return None, _error('client_id required', status.HTTP_400_BAD_REQUEST)
        return None, None
    try:
        client_pk = int(raw_client_id)
    except ValueError:
        return None, _error('client_id must be an integer', status.HTTP_400_BAD_REQUEST)

    client_user = User.objects.filter(pk=client_pk).first()
    if client_user is None:
        return None, _error('Client not found', status.HTTP_404_NOT_FOUND)
    return client_user, None


def _owns_target(client_user, target_id: str, is_campaign: bool) -> bool:
    profile = getattr(client_user, 'client_profile', None)
    if profile is None or not target_id:
        return False
    if is_campaign:
        owned_campaign = str(profile.campaign_id or '').strip()
        return bool(owned_campaign) and target_id == owned_campaign
    owned_account = str(profile.meta_account_id or '').strip()
    if not owned_account:
        return False
    return normalize_account_id(target_id) == normalize_account_id(owned_account)


def _token_for(request, client_user, target_id: str = '', is_campaign: bool = False, admin_only: bool = False):
    """Resolve a token for the caller; (token, error_response).

    Non-admin callers may only use the agency's shared token against their own
    account or campaign, and never for agency-wide listings.
    """
    token, source = resolve_token_with_source(request, client_id=client_user.pk if client_user else None)
    if not token:
        return None, _error('Meta access token required', status.HTTP_401_UNAUTHORIZED)

    if source in SHARED_TOKEN_SOURCES and role_for_user(request.user) != ClientProfile.ROLE_ADMIN:
        if admin_only:
            return None, _error('Admin only', status.HTTP_403_FORBIDDEN)
        if not _owns_target(client_user, target_id, is_campaign):
            logger.warning(
                'Refused shared Meta token for user=%s target=%s campaign=%s',
                request.user.pk,
                target_id,
                is_campaign,
            )
            return None, _error('Not permitted for this account', status.HTTP_403_FORBIDDEN)
    return token, None


def _meta_client_for(request, client_user, target_id: str = '', is_campaign: bool = False, admin_only: bool = False):
    token, error = _token_for(request, client_user, target_id, is_campaign, admin_only)
    if error:
        return None, error
    return MetaGraphClient(access_token=token), None


def _budget(value):
    if value in (None, ''):
        return None
    return to_int(value) / 100


def _serialize_insight(item: dict) -> dict:
    return {
        **item,
        'spend': float(item['spend']),
        'cost_per_conversion': float(item['cost_per_conversion']),
    }


def _serialize_stored_row(row) -> dict:
    return {
        'id': row.id,
        'client_id': row.client_id,
        'account_id': row.account_id,
        'campaign_id': row.campaign_id,
        'campaign_name': row.campaign_name,
        'date': row.date.isoformat(),
        'impressions': row.impressions,
        'clicks': row.clicks,
        'reach': row.reach,
        'frequency': float(row.frequency),
        'spend': float(row.spend),
        'ctr': float(row.ctr),
        'cpc': float(row.cpc),
        'cpm': float(row.cpm),
        'conversions': row.conversions,
        'cost_per_conversion': float(row.cost_per_conversion),
        'synced_at': row.synced_at,
    }


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def meta_report(request):
    if request.method == 'GET':
        action = str(request.query_params.get('action') or '').strip().lower()
        allowed = GET_ACTIONS
    else:
        action = _param(request, 'action').lower()
        allowed = POST_ACTIONS
    if action not in allowed:
        return _error('Invalid action', status.HTTP_400_BAD_REQUEST)

    handler = ACTION_HANDLERS[action]
    try:
        return handler(request)
    except MetaClientError as exc:
        logger.warning('Meta Graph API call failed for action=%s: %s', action, exc.message)
        return _meta_error_response(exc)
    except DatabaseError:
        logger.exception('Database failure in meta report action=%s.', action)
        return _server_error()


def _action_accounts(request):
    client_user, error = _resolve_client(request)
    if error:
        return error
    meta_client, error = _meta_client_for(request, client_user, admin_only=True)
    if error:
        return error

    accounts = [
        {
            'id': account.get('id'),
            'name': account.get('name'),
            'status': 'active' if to_int(account.get('account_status')) == 1 else 'inactive',
            'currency': account.get('currency'),
            'timezone': account.get('timezone_name'),
        }
        for account in meta_client.fetch_ad_accounts()
    ]
    return Response({'success': True, 'accounts': accounts}, status=status.HTTP_200_OK)


def _action_campaigns(request):
    account_id = _param(request, 'account_id')
    if not account_id:
        return _error('account_id required', status.HTTP_400_BAD_REQUEST)
    client_user, error = _resolve_client(request)
    if error:
        return error
    meta_client, error = _meta_client_for(request, client_user, account_id)
    if error:
        return error

    campaigns = [
        {
            'id': campaign.get('id'),
            'name': campaign.get('name'),
            'status': campaign.get('status'),
            'objective': campaign.get('objective'),
            'daily_budget': _budget(campaign.get('daily_budget')),
            'lifetime_budget': _budget(campaign.get('lifetime_budget')),
            'created_at': campaign.get('created_time'),
        }
        for campaign in meta_client.fetch_campaigns(account_id)
    ]
    return Response({'success': True, 'campaigns': campaigns}, status=status.HTTP_200_OK)


def _insights_target(request):
    campaign_id = _param(request, 'campaign_id')
    if campaign_id:
        return campaign_id, True
    return _param(request, 'account_id'), False


def _action_insights(request):
    target_id, is_campaign = _insights_target(request)
    if not target_id:
        return _error('account_id or campaign_id required', status.HTTP_400_BAD_REQUEST)
    start, end, date_error = _parse_date_range(request, INSIGHTS_DEFAULT_DAYS)
    if date_error:
        return _error(date_error, status.HTTP_400_BAD_REQUEST)
    client_user, error = _resolve_client(request)
    if error:
        return error
    meta_client, error = _meta_client_for(request, client_user, target_id, is_campaign)
    if error:
        return error

    rows = meta_client.fetch_insights(
        target_id,
        INSIGHT_FIELDS + VIDEO_FIELDS,
        time_range=(start, end),
        is_campaign=is_campaign,
    )
    insights = [normalize(row) for row in rows]
    return Response(
        {
            'success': True,
            'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
            'insights': [_serialize_insight(item) for item in insights],
            'summary': summarize(insights),
        },
        status=status.HTTP_200_OK,
    )


def _action_daily(request):
    target_id, is_campaign = _insights_target(request)
    if not target_id:
        return _error('account_id or campaign_id required', status.HTTP_400_BAD_REQUEST)
    start, end, date_error = _parse_date_range(request, DAILY_DEFAULT_DAYS)
    if date_error:
        return _error(date_error, status.HTTP_400_BAD_REQUEST)
    client_user, error = _resolve_client(request)
    if error:
        return error
    meta_client, error = _meta_client_for(request, client_user, target_id, is_campaign)
    if error:
        return error

    rows = meta_client.fetch_insights(
        target_id,
        INSIGHT_FIELDS,
        time_range=(start, end),
        time_increment=1,
        is_campaign=is_campaign,
        entity='daily_insights',
    )
    return Response(
        {
            'success': True,
            'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
            'daily': by_date([normalize(row) for row in rows]),
        },
        status=status.HTTP_200_OK,
    )


def _action_demographics(request):
    target_id, is_campaign = _insights_target(request)
    if not target_id:
        return _error('account_id or campaign_id required', status.HTTP_400_BAD_REQUEST)
    start, end, date_error = _parse_date_range(request, INSIGHTS_DEFAULT_DAYS)
    if date_error:
        return _error(date_error, status.HTTP_400_BAD_REQUEST)
    client_user, error = _resolve_client(request)
    if error:
        return error
    meta_client, error = _meta_client_for(request, client_user, target_id, is_campaign)
    if error:
        return error

    def fetch_breakdown(dimension: str):
        return meta_client.fetch_insights(
            target_id,
            ['impressions', 'reach'],
            time_range=(start, end),
            breakdowns=[dimension],
            level=None,
            is_campaign=is_campaign,
            entity=f'demographics_{dimension}',
        )

    results = {}
    # Both breakdowns must succeed; the first failure fails the response.
    with ThreadPoolExecutor(max_workers=2) as executor:
        futures = {executor.submit(fetch_breakdown, dimension): dimension for dimension in ('age', 'gender')}
        for future in as_completed(futures):
            results[futures[future]] = future.result()

    return Response(
        {
            'success': True,
            'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
            'demographics': demographic_breakdown(results['age'], results['gender']),
        },
        status=status.HTTP_200_OK,
    )


def _action_creative(request):
    target_id, is_campaign = _insights_target(request)
    if not target_id:
        return _error('account_id or campaign_id required', status.HTTP_400_BAD_REQUEST)
    client_user, error = _resolve_client(request)
    if error:
        return error
    meta_client, error = _meta_client_for(request, client_user, target_id, is_campaign)
    if error:
        return error

    creatives = []
    for ad in meta_client.fetch_ad_creatives(target_id, is_campaign=is_campaign):
        creative = ad.get('creative') if isinstance(ad.get('creative'), dict) else {}
        creatives.append(
            {
                'ad_id': ad.get('id'),
                'ad_name': ad.get('name'),
                'status': ad.get('status'),
                'creative_id': creative.get('id'),
                'title': creative.get('title'),
                'body': creative.get('body'),
                'image_url': creative.get('image_url') or creative.get('thumbnail_url'),
                'object_type': creative.get('object_type'),
                'call_to_action': creative.get('call_to_action_type'),
            }
        )
    return Response({'success': True, 'creatives': creatives}, status=status.HTTP_200_OK)


def _action_stored_report(request):
    client_user, error = _resolve_client(request)
    if error:
        return error

    start_raw = _param(request, 'start_date')
    end_raw = _param(request, 'end_date')
    start = _parse_day(start_raw)
    end = _parse_day(end_raw)
    if (start_raw and start is None) or (end_raw and end is None):
        return _error('Invalid date. Use YYYY-MM-DD.', status.HTTP_400_BAD_REQUEST)

    if client_user is not None:
        queryset = insight_rows(client_user)
    else:
        queryset = MetaInsightDaily.objects.all()
    # Both bounds are needed to filter by date.
    if start and end:
        queryset = queryset.filter(date__gte=start, date__lte=end)
    rows = list(queryset.order_by('-date', 'campaign_id')[:STORED_ROWS_LIMIT])

    return Response(
        {
            'success': True,
            'reports': [_serialize_stored_row(row) for row in rows],
            'summary': summarize(rows),
        },
        status=status.HTTP_200_OK,
    )


def _action_sync(request):
    client_user, error = _resolve_client(request, required=True)
    if error:
        return error
    account_id = _param(request, 'account_id')
    if not account_id:
        return _error('client_id and account_id required', status.HTTP_400_BAD_REQUEST)
    start, end, date_error = _parse_date_range(request, INSIGHTS_DEFAULT_DAYS)
    if date_error:
        return _error(date_error, status.HTTP_400_BAD_REQUEST)

    token, error = _token_for(request, client_user, account_id)
    if error:
        return error

    try:
        result = MetaSyncCoordinator(client_user, account_id, access_token=token).sync(start, end)
    except SyncError:
        return _server_error()

    synced_count = result['synced_count']
    return Response(
        {
            'success': True,
            'message': f'{synced_count} rows synced.',
            'synced': synced_count,
        },
        status=status.HTTP_200_OK,
    )


def _action_generate(request):
    client_user, error = _resolve_client(request, required=True)
    if error:
        return error
    start, end, date_error = _parse_date_range(request, INSIGHTS_DEFAULT_DAYS)
    if date_error:
        return _error(date_error, status.HTTP_400_BAD_REQUEST)

    report = build_report(client_user, start, end)
    return Response({'success': True, 'report': report}, status=status.HTTP_200_OK)


ACTION_HANDLERS = {
    'accounts': _action_accounts,
    'campaigns': _action_campaigns,
    'insights': _action_insights,
    'daily': _action_daily,
    'demographics': _action_demographics,
    'creative': _action_creative,
    'report': _action_stored_report,
    'sync': _action_sync,
    'generate': _action_generate,
}


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def meta_health(request):
    token = resolve_access_token(request)
    if not token:
        return _error('META_ACCESS_TOKEN is not configured.', status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        account = MetaGraphClient(access_token=token).health_check()
    except MetaClientError as exc:
        logger.warning('Meta health check failed: %s', exc.message)
        return _meta_error_response(exc)

    return Response(
        {
            'success': True,
            'account': account,
            'token_status': TokenLifecycleManager().status(),
        },
        status=status.HTTP_200_OK,
    )


def _has_cron_secret(request) -> bool:
    secret = str(getattr(settings, 'CRON_SECRET', '') or '')
    if not secret:
        return False
    header = request.headers.get('Authorization') or ''
    return hmac.compare_digest(header.encode(), f'Bearer {secret}'.encode())


@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def refresh_token(request):
    if not _has_cron_secret(request):
        manual = str(request.query_params.get('manual') or '').lower() == 'true'
        is_admin = role_for_user(request.user) == ClientProfile.ROLE_ADMIN
        if request.method != 'POST' or not manual or not is_admin:
            return _error('Unauthorized', status.HTTP_401_UNAUTHORIZED)

    try:
        result = TokenLifecycleManager().refresh()
    except TokenRefreshError as exc:
        return _error(exc.detail, exc.status_code)

    return Response(
        {
            'success': True,
            'message': 'Token refreshed successfully',
            'expires_at': result['expires_at'].isoformat(),
            'expires_in_days': result['expires_in_days'],
        },
        status=status.HTTP_200_OK,
    )


def _serialize_client_report(report: ClientReport) -> dict:
    payload = report.payload if isinstance(report.payload, dict) else {}
    return {
        'id': report.id,
        'user_id': report.user_id,
        'period': report.period,
        'payload': payload,
        'created_by': report.created_by_id,
        'created_at': report.created_at,
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def client_report(request):
    try:
        report = ClientReport.objects.filter(user=request.user).first()
    except DatabaseError:
        logger.exception('Database failure loading client report.')
        return _server_error()

    if report is None:
        return Response(
            {
                'success': True,
                'report': {
                    'client_name': 'No report',
                    'period': 'Last 7 days',
                    'kpis': [],
                    'highlights': [],
                    'actions': [],
                },
            },
            status=status.HTTP_200_OK,
        )

    payload = report.payload if isinstance(report.payload, dict) else {}
    return Response(
        {
            'success': True,
            'report': {
                'client_name': payload.get('client_name') or 'Client',
                'period': report.period,
                'kpis': payload.get('kpis') or [],
                'highlights': payload.get('highlights') or [],
                'actions': payload.get('actions') or [],
                'created_at': report.created_at,
            },
        },
        status=status.HTTP_200_OK,
    )


def business_name_from_campaign(campaign_name: str) -> str:
    words = str(campaign_name or '').split()
    if not words:
        return 'Client'
    # Campaign names may start with a YYYYMMDD stamp.
    if len(words[0]) >= 8 and words[0][:8].isdigit():
        return words[1] if len(words) > 1 else 'Client'
    return words[0]


def _live_placeholder(client_name: str, highlight: str, action: str) -> dict:
    return {
        'client_name': client_name,
        'period': 'Last 30 days',
        'reach': 0,
        'impressions': 0,
        'spend': 0.0,
        'engagement': 0,
        'video_views': 0,
        'link_clicks': 0,
        'landing_page_views': 0,
        'traffic_results': 0,
        'traffic_result_type': None,
        'highlights': [highlight],
        'actions': [action],
    }


def build_live_report(client_name: str, insight: dict) -> dict:
    actions = insight.get('actions')
    impressions = to_int(insight.get('impressions'))
    reach = to_int(insight.get('reach'))
    link_clicks = action_value(actions, 'link_click')
    landing_page_views = action_value(actions, 'landing_page_view')
    video_views = action_value(actions, 'video_view')

    highlights = []
    if reach > 1000:
        highlights.append(f'Your ads reached {reach:,} people.')
    if video_views > 100:
        highlights.append(f'Your video was viewed {video_views:,} times.')
    if link_clicks > 50:
        highlights.append(f'{link_clicks:,} people clicked your link.')
    if not highlights:
        highlights.append('Your ads are running normally.')

    action_items = []
    link_ctr = link_clicks / impressions * 100 if impressions > 0 else 0.0
    if link_ctr < 1:
        action_items.append('Consider refreshing the ad creative to improve click-through rate.')
    if landing_page_views < link_clicks * 0.5:
        action_items.append('Check the landing page loading speed.')
    if not action_items:
        action_items.append('Performance looks healthy. Keep it up!')

    return {
        'client_name': client_name,
        'period': f"{insight.get('date_start') or ''} ~ {insight.get('date_stop') or ''}",
        'reach': reach,
        'impressions': impressions,
        'spend': round(to_float(insight.get('spend')), 2),
        'engagement': action_value(actions, 'post_engagement'),
        'video_views': video_views,
        'link_clicks': link_clicks,
        'landing_page_views': landing_page_views,
        'traffic_results': to_int(extract_by_policy(actions, PRIMARY_TRAFFIC_RESULT)),
        'traffic_result_type': primary_action_type(actions, PRIMARY_TRAFFIC_RESULT),
        'highlights': highlights,
        'actions': action_items,
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def client_live_report(request):
    profile = getattr(request.user, 'client_profile', None)
    campaign_id = str(getattr(profile, 'campaign_id', '') or '').strip()
    profile_name = getattr(profile, 'name', '') or ''

    token = resolve_access_token(request, client_id=request.user.pk) if campaign_id else None
    if not campaign_id or not token:
        report = _live_placeholder(profile_name or 'Client', 'Loading your data.', 'No campaign is connected yet.')
        return Response({'success': True, 'report': report}, status=status.HTTP_200_OK)

    meta_client = MetaGraphClient(access_token=token)
    try:
        campaign = meta_client.fetch_object(campaign_id, 'name')
        rows = meta_client.fetch_insights(
            campaign_id,
            LIVE_REPORT_FIELDS,
            level=None,
            is_campaign=True,
            entity='live_report',
        )
    except MetaClientError as exc:
        logger.warning('Live report for user=%s degraded to placeholder: %s', request.user.pk, exc.message)
        report = _live_placeholder(
            profile_name or 'Client',
            'Campaign data is temporarily unavailable.',
            'Please try again later.',
        )
        return Response({'success': True, 'report': report}, status=status.HTTP_200_OK)

    client_name = profile_name or business_name_from_campaign(campaign.get('name'))
    if not rows:
        report = _live_placeholder(client_name, 'Loading your data.', 'No campaign activity in this period.')
        return Response({'success': True, 'report': report}, status=status.HTTP_200_OK)

    return Response({'success': True, 'report': build_live_report(client_name, rows[0])}, status=status.HTTP_200_OK)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_report(request):
    try:
        if request.method == 'GET':
            return _admin_report_list(request)
        return _admin_report_create(request)
    except DatabaseError:
        logger.exception('Database failure in admin report endpoint.')
        return _server_error()


def _admin_report_list(request):
    queryset = ClientReport.objects.select_related('user')
    user_id = str(request.query_params.get('user') or '').strip()
    if user_id:
        if not user_id.isdigit():
            return _error('user must be an integer', status.HTTP_400_BAD_REQUEST)
        queryset = queryset.filter(user_id=int(user_id))
    reports = [_serialize_client_report(report) for report in queryset[:STORED_ROWS_LIMIT]]
    return Response({'success': True, 'reports': reports}, status=status.HTTP_200_OK)


def _admin_report_create(request):
    user_id = str(request.data.get('user') or '').strip()
    if not user_id.isdigit():
        return _error('user required', status.HTTP_400_BAD_REQUEST)
    client_user = User.objects.filter(pk=int(user_id)).first()
    if client_user is None:
        return _error('Client not found', status.HTTP_404_NOT_FOUND)

    generate = str(request.data.get('generate') or '').lower() == 'true'
    if generate:
        start, end, date_error = _parse_date_range(request, INSIGHTS_DEFAULT_DAYS)
        if date_error:
            return _error(date_error, status.HTTP_400_BAD_REQUEST)
        payload = build_report(client_user, start, end)
        period = str(request.data.get('period') or '').strip() or f'{start.isoformat()} ~ {end.isoformat()}'
    else:
        payload = request.data.get('payload')
        if not isinstance(payload, dict):
            return _error('payload must be an object', status.HTTP_400_BAD_REQUEST)
        period = str(request.data.get('period') or '').strip()
        if not period:
            return _error('period required', status.HTTP_400_BAD_REQUEST)

    report = ClientReport.objects.create(
        user=client_user,
        period=period[:100],
        payload=payload,
        created_by=request.user,
    )
    logger.info('Client report stored id=%s user=%s generated=%s', report.id, client_user.pk, generate)
    return Response({'success': True, 'report': _serialize_client_report(report)}, status=status.HTTP_201_CREATED)

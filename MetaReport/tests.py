import json
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, Mock, patch

import requests
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import Client, TestCase, override_settings
from django.utils import timezone

from accounts.models import ClientProfile
from MetaReport.api_views import build_live_report, business_name_from_campaign
from MetaReport.models import (
    ClientReport,
    MetaConnection,
    MetaInsightDaily,
    ReportHistory,
    Setting,
    SyncLog,
    SyncRun,
    TokenLog,
)
from MetaReport.services.aggregator import by_campaign, by_date, compare, percent_change, summarize
from MetaReport.services.meta_client import MetaClientError, MetaGraphClient, MetaTransportError
from MetaReport.services.metric_normalizer import (
    FIRST_MATCH,
    PRIMARY_COST_PER_CONVERSION,
    SUM_ALL,
    TOTAL_CONVERSIONS,
    demographic_breakdown,
    extract_action_value,
    normalize,
)
from MetaReport.services.report_builder import build_report, previous_period, spend_conversions_correlation
from MetaReport.services.sync_coordinator import MetaSyncCoordinator, SyncError
from MetaReport.services.token_manager import (
    EXPIRED_OR_UNKNOWN,
    EXPIRING_SOON,
    SOURCE_STATIC,
    SOURCE_STORED,
    SOURCE_TENANT,
    TOKEN_SETTING_KEY,
    VALID,
    StoredToken,
    TokenConfigurationError,
    TokenLifecycleManager,
    TokenRefreshError,
    resolve_access_token,
    resolve_token_with_source,
    token_status,
)


User = get_user_model()
META_APP_SETTINGS = {'META_APP_ID': 'app-1', 'META_APP_SECRET': 'secret-1'}


def _json_response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = json.dumps(payload)
    return response


def _raw_insight(campaign_id='c1', day='2024-05-01', spend='100.50', **extra):
    row = {
        'campaign_id': campaign_id,
        'campaign_name': f'Campaign {campaign_id}',
        'date_start': day,
        'date_stop': day,
        'impressions': '1000',
        'clicks': '50',
        'reach': '800',
        'frequency': '1.25',
        'spend': spend,
        'ctr': '5.0',
        'cpc': '2.01',
        'cpm': '100.5',
        'actions': [
            {'action_type': 'link_click', 'value': '40'},
            {'action_type': 'purchase', 'value': '2'},
            {'action_type': 'lead', 'value': '3'},
        ],
        'cost_per_action_type': [
            {'action_type': 'lead', 'value': '33.5'},
            {'action_type': 'purchase', 'value': '50.25'},
        ],
    }
    row.update(extra)
    return row


def _stored_row(client, campaign_id, day, **metrics):
    defaults = {
        'account_id': 'act_1',
        'campaign_name': f'Campaign {campaign_id}',
        'impressions': 1000,
        'clicks': 10,
        'reach': 500,
        'spend': Decimal('100'),
        'conversions': 1,
    }
    defaults.update(metrics)
    return MetaInsightDaily.objects.create(client=client, campaign_id=campaign_id, date=day, **defaults)


class AggregatorTests(TestCase):
    def test_summary_scenario(self):
        summary = summarize([{'impressions': 1000, 'clicks': 50, 'spend': 10000}])
        self.assertEqual(summary['ctr'], 5.0)
        self.assertEqual(summary['cpc'], 200)
        self.assertEqual(summary['cpm'], 10000)

    def test_empty_rows_summary_is_all_zero(self):
        self.assertEqual(
            summarize([]),
            {
                'impressions': 0,
                'clicks': 0,
                'spend': 0,
                'reach': 0,
                'conversions': 0,
                'ctr': 0,
                'cpc': 0,
                'cpm': 0,
                'roas': 0,
            },
        )

    def test_ratios_are_guarded_against_zero_denominators(self):
        summary = summarize([{'impressions': 0, 'clicks': 0, 'spend': 500, 'conversions': 0}])
        self.assertEqual(summary['ctr'], 0)
        self.assertEqual(summary['cpm'], 0)
        self.assertEqual(summary['cpc'], 0)
        self.assertEqual(summary['roas'], 0)

        free = summarize([{'impressions': 100, 'clicks': 5, 'spend': 0, 'conversions': 3}])
        self.assertEqual(free['roas'], 0)

    @override_settings(META_VALUE_PER_CONVERSION=50000)
    def test_roas_uses_configured_value_per_conversion(self):
        summary = summarize([{'impressions': 100, 'clicks': 5, 'spend': 100000, 'conversions': 2}])
        self.assertEqual(summary['roas'], 1.0)

    def test_by_date_sorts_ascending(self):
        rows = [
            {'date': '2024-05-03', 'impressions': 3, 'spend': 1},
            {'date': date(2024, 5, 1), 'impressions': 1, 'spend': 1},
            {'date': '2024-05-02', 'impressions': 2, 'spend': 1},
            {'date': '2024-05-01', 'impressions': 10, 'spend': 2},
        ]
        daily = by_date(rows)
        self.assertEqual([entry['date'] for entry in daily], ['2024-05-01', '2024-05-02', '2024-05-03'])
        self.assertEqual(daily[0]['impressions'], 11)
        self.assertEqual(daily[0]['spend'], 3)

    def test_by_campaign_recomputes_ratios_per_group(self):
        rows = [
            {'campaign_id': 'a', 'campaign_name': 'A', 'impressions': 1000, 'clicks': 10, 'spend': 1000},
            {'campaign_id': 'a', 'campaign_name': 'A', 'impressions': 1000, 'clicks': 30, 'spend': 1000},
            {'campaign_id': 'b', 'campaign_name': 'B', 'impressions': 0, 'clicks': 0, 'spend': 0},
        ]
        grouped = {entry['id']: entry for entry in by_campaign(rows)}
        self.assertEqual(grouped['a']['clicks'], 40)
        self.assertEqual(grouped['a']['ctr'], 2.0)
        self.assertEqual(grouped['a']['cpc'], 50)
        self.assertEqual(grouped['b']['ctr'], 0)
        self.assertEqual(grouped['b']['cpc'], 0)

    def test_percent_change_with_zero_or_missing_previous(self):
        self.assertEqual(percent_change(10, 0), 100)
        self.assertEqual(percent_change(0, 0), 0)
        self.assertEqual(percent_change(5, None), 100)
        self.assertEqual(percent_change(150, 100), 50.0)
        self.assertEqual(percent_change(50, 200), -75.0)

    def test_compare_covers_metric_set(self):
        changes = compare(
            {'impressions': 200, 'clicks': 10, 'spend': 50, 'conversions': 1, 'ctr': 5.0, 'cpc': 5},
            {'impressions': 100, 'clicks': 10, 'spend': 0, 'conversions': 2, 'ctr': 10.0, 'cpc': 4},
        )
        self.assertEqual(
            changes,
            {'impressions': 100.0, 'clicks': 0.0, 'spend': 100, 'conversions': -50.0, 'ctr': -50.0, 'cpc': 25.0},
        )


class MetricNormalizerTests(TestCase):
    def test_normalize_applies_conversion_policies(self):
        item = normalize(_raw_insight())
        self.assertEqual(item['campaign_id'], 'c1')
        self.assertEqual(item['date'], '2024-05-01')
        self.assertEqual(item['impressions'], 1000)
        self.assertEqual(item['spend'], Decimal('100.50'))
        # purchase + lead summed; link_click is not a conversion.
        self.assertEqual(item['conversions'], 5)
        # purchase outranks lead regardless of list order.
        self.assertEqual(item['cost_per_conversion'], Decimal('50.25'))

    def test_normalize_never_raises_on_garbage(self):
        item = normalize(
            {
                'impressions': 'abc',
                'clicks': None,
                'spend': 'NaN',
                'ctr': 'inf',
                'frequency': '',
                'actions': 'not-a-list',
                'cost_per_action_type': [{'action_type': 'purchase', 'value': 'x'}],
            }
        )
        self.assertEqual(item['impressions'], 0)
        self.assertEqual(item['clicks'], 0)
        self.assertEqual(item['spend'], Decimal('0'))
        self.assertEqual(item['ctr'], 0.0)
        self.assertEqual(item['frequency'], 0.0)
        self.assertEqual(item['conversions'], 0)
        self.assertEqual(item['cost_per_conversion'], Decimal('0'))
        self.assertEqual(item['video_views'], {'p25': 0, 'p50': 0, 'p75': 0, 'p100': 0})
        self.assertEqual(normalize(None)['campaign_id'], '')

    def test_extract_modes(self):
        actions = [
            {'action_type': 'lead', 'value': '4'},
            {'action_type': 'purchase', 'value': '1'},
            {'action_type': 'lead', 'value': '6'},
        ]
        allow = ('purchase', 'lead')
        self.assertEqual(extract_action_value(actions, allow, SUM_ALL), Decimal('11'))
        self.assertEqual(extract_action_value(actions, allow, FIRST_MATCH), Decimal('1'))
        self.assertEqual(extract_action_value(actions, ('lead',), FIRST_MATCH), Decimal('4'))
        self.assertEqual(extract_action_value([], allow, SUM_ALL), Decimal('0'))
        with self.assertRaises(ValueError):
            extract_action_value(actions, allow, 'average')

    def test_policies_are_explicit(self):
        self.assertEqual(TOTAL_CONVERSIONS.mode, SUM_ALL)
        self.assertEqual(PRIMARY_COST_PER_CONVERSION.mode, FIRST_MATCH)
        self.assertEqual(PRIMARY_COST_PER_CONVERSION.allow_list[0], 'purchase')

    def test_video_milestones(self):
        item = normalize(
            _raw_insight(
                video_p25_watched_actions=[{'action_type': 'video_view', 'value': '120'}],
                video_p100_watched_actions=[{'action_type': 'video_view', 'value': '30'}],
            )
        )
        self.assertEqual(item['video_views'], {'p25': 120, 'p50': 0, 'p75': 0, 'p100': 30})

    def test_demographic_percentages_sum_to_100(self):
        age_rows = [
            {'age': '18-24', 'impressions': '333'},
            {'age': '25-34', 'impressions': '333'},
            {'age': '35-44', 'impressions': '334'},
            {'age': '25-34', 'impressions': '1'},
            {'age': 'unknown', 'impressions': '999'},
        ]
        gender_rows = [
            {'gender': 'male', 'impressions': '1'},
            {'gender': 'female', 'impressions': '2'},
            {'gender': 'unknown', 'impressions': '50'},
        ]
        result = demographic_breakdown(age_rows, gender_rows)
        age_total = sum(bucket['percentage'] for bucket in result['age'])
        gender_total = sum(bucket['percentage'] for bucket in result['gender'])
        self.assertAlmostEqual(age_total, 100, delta=1)
        self.assertAlmostEqual(gender_total, 100, delta=1)
        self.assertEqual(len(result['age']), 7)
        self.assertEqual(result['age'][2]['impressions'], 334)

    def test_demographic_neutral_split_without_data(self):
        result = demographic_breakdown([], [])
        self.assertTrue(all(bucket['percentage'] == 0 for bucket in result['age']))
        self.assertEqual([bucket['percentage'] for bucket in result['gender']], [50.0, 50.0])


class MetaClientTests(TestCase):
    def setUp(self):
        self.client_user = User.objects.create_user(username='client-a', password='Secret123!')
        self.sync_run = SyncRun.objects.create(client=self.client_user, account_id='act_1')

    def test_error_envelope_raises_with_platform_message(self):
        client = MetaGraphClient(access_token='token-123')
        error_response = _json_response({'error': {'message': 'Invalid OAuth access token.'}}, status_code=400)
        with patch.object(client.session, 'request', return_value=error_response):
            with self.assertRaises(MetaClientError) as ctx:
                client.fetch_ad_accounts()

        self.assertEqual(ctx.exception.message, 'Invalid OAuth access token.')
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertNotIsInstance(ctx.exception, MetaTransportError)

    def test_error_envelope_with_200_status_still_raises(self):
        client = MetaGraphClient(access_token='token-123')
        with patch.object(client.session, 'request', return_value=_json_response({'error': {'message': 'nope'}})):
            with self.assertRaises(MetaClientError):
                client.fetch_campaigns('123')

    def test_network_failure_is_a_transport_error_without_token(self):
        client = MetaGraphClient(access_token='token-123', sync_run=self.sync_run)
        failure = requests.ConnectionError('failed url ...access_token=token-123')
        with patch.object(client.session, 'request', side_effect=failure) as mocked_request:
            with self.assertRaises(MetaTransportError) as ctx:
                client.fetch_ad_accounts()

        self.assertEqual(mocked_request.call_count, 1)
        self.assertNotIn('token-123', ctx.exception.message)
        self.assertFalse(SyncLog.objects.filter(message__contains='token-123').exists())

    def test_fetch_insights_builds_query(self):
        client = MetaGraphClient(access_token='token-123', graph_version='v18.0')
        with patch.object(client.session, 'request', return_value=_json_response({'data': [{'campaign_id': '1'}]})) as mocked:
            rows = client.fetch_insights(
                '555',
                ['impressions', 'clicks'],
                time_range=(date(2024, 5, 1), '2024-05-07'),
                breakdowns=['age'],
                time_increment=1,
            )

        self.assertEqual(rows, [{'campaign_id': '1'}])
        kwargs = mocked.call_args.kwargs
        self.assertEqual(kwargs['url'], 'https://graph.facebook.com/v18.0/act_555/insights')
        self.assertEqual(kwargs['params']['time_range'], '{"since":"2024-05-01","until":"2024-05-07"}')
        self.assertEqual(kwargs['params']['fields'], 'impressions,clicks')
        self.assertEqual(kwargs['params']['breakdowns'], 'age')
        self.assertEqual(kwargs['params']['time_increment'], 1)
        self.assertEqual(kwargs['params']['level'], 'campaign')
        self.assertEqual(kwargs['params']['access_token'], 'token-123')

    def test_campaign_target_keeps_its_id(self):
        client = MetaGraphClient(access_token='token-123')
        with patch.object(client.session, 'request', return_value=_json_response({'data': []})) as mocked:
            client.fetch_insights('2385', ['spend'], is_campaign=True, level=None)
        self.assertTrue(mocked.call_args.kwargs['url'].endswith('/2385/insights'))
        self.assertNotIn('level', mocked.call_args.kwargs['params'])

    def test_pagination_follows_cursor_until_page_limit(self):
        client = MetaGraphClient(access_token='token-123', sync_run=self.sync_run, max_pages=2)
        next_url = 'https://graph.facebook.com/v18.0/act_1/insights?after=abc'
        pages = [
            _json_response({'data': [{'id': 1}], 'paging': {'next': next_url}}),
            _json_response({'data': [{'id': 2}], 'paging': {'next': next_url + 'def'}}),
            _json_response({'data': [{'id': 3}]}),
        ]
        with patch.object(client.session, 'request', side_effect=pages) as mocked:
            rows = client.fetch_insights('1', ['spend'])

        self.assertEqual(rows, [{'id': 1}, {'id': 2}])
        self.assertEqual(mocked.call_count, 2)
        self.assertEqual(mocked.call_args_list[1].kwargs['url'], next_url)
        self.assertTrue(SyncLog.objects.filter(sync_run=self.sync_run, message__icontains='page_limit=2').exists())

    def test_account_id_is_required(self):
        client = MetaGraphClient(access_token='token-123')
        with self.assertRaises(ValueError):
            client.fetch_insights('', ['spend'])

    @override_settings(META_HEALTH_TIMEOUT_SECONDS=5)
    def test_health_check_uses_short_timeout(self):
        client = MetaGraphClient(access_token='token-123')
        with patch.object(client.session, 'request', return_value=_json_response({'id': '9', 'name': 'Ops'})) as mocked:
            self.assertEqual(client.health_check(), {'id': '9', 'name': 'Ops'})
        self.assertEqual(mocked.call_args.kwargs['timeout'], 5)

    def test_sync_log_failure_does_not_abort_the_call(self):
        client = MetaGraphClient(access_token='token-123', sync_run=self.sync_run)
        with patch.object(client.session, 'request', return_value=_json_response({'data': [{'id': 'act_1'}]})):
            with patch.object(SyncLog.objects, 'create', side_effect=DatabaseError('database is locked')):
                self.assertEqual(client.fetch_ad_accounts(), [{'id': 'act_1'}])


class TokenLifecycleTests(TestCase):
    def _store_token(self, value='stored-token', expires_in=None):
        expires_at = timezone.now() + expires_in if expires_in is not None else None
        return Setting.objects.create(key=TOKEN_SETTING_KEY, value=value, expires_at=expires_at)

    def test_token_status_states(self):
        now = timezone.now()
        self.assertEqual(token_status(StoredToken('t', None), now=now), VALID)
        self.assertEqual(token_status(StoredToken('t', now + timedelta(days=30)), now=now), VALID)
        self.assertEqual(token_status(StoredToken('t', now + timedelta(days=3)), now=now), EXPIRING_SOON)
        self.assertEqual(token_status(StoredToken('t', now + timedelta(days=7)), now=now), EXPIRING_SOON)
        self.assertEqual(token_status(StoredToken('t', now - timedelta(minutes=1)), now=now), EXPIRED_OR_UNKNOWN)
        self.assertEqual(token_status(None, now=now), EXPIRED_OR_UNKNOWN)

    @override_settings(**META_APP_SETTINGS)
    def test_refresh_of_expiring_token_persists_new_expiry(self):
        self._store_token(expires_in=timedelta(days=3))
        manager = TokenLifecycleManager()
        self.assertEqual(manager.status(), EXPIRING_SOON)

        exchange_response = _json_response({'access_token': 'fresh-token', 'expires_in': 5184000})
        with patch('MetaReport.services.token_manager.requests.get', return_value=exchange_response) as mocked_get:
            before = timezone.now()
            result = manager.refresh()

        params = mocked_get.call_args.kwargs['params']
        self.assertEqual(params['grant_type'], 'fb_exchange_token')
        self.assertEqual(params['fb_exchange_token'], 'stored-token')
        self.assertEqual(params['client_id'], 'app-1')

        setting = Setting.objects.get(key=TOKEN_SETTING_KEY)
        self.assertEqual(setting.value, 'fresh-token')
        expected = before + timedelta(seconds=5184000)
        self.assertLess(abs((setting.expires_at - expected).total_seconds()), 5)
        self.assertEqual(result['status_before'], EXPIRING_SOON)
        self.assertEqual(result['expires_in_days'], 59)
        self.assertEqual(manager.status(), VALID)

        log = TokenLog.objects.get()
        self.assertEqual(log.action, 'refresh')
        self.assertEqual(log.status, TokenLog.Status.SUCCESS)

    @override_settings(**META_APP_SETTINGS)
    def test_refresh_failure_is_logged_and_surfaced(self):
        self._store_token(expires_in=timedelta(days=3))
        error_response = _json_response({'error': {'message': 'Session has expired'}}, status_code=400)
        with patch('MetaReport.services.token_manager.requests.get', return_value=error_response):
            with self.assertRaises(TokenRefreshError) as ctx:
                TokenLifecycleManager().refresh()

        self.assertEqual(ctx.exception.detail, 'Session has expired')
        self.assertEqual(Setting.objects.get(key=TOKEN_SETTING_KEY).value, 'stored-token')
        log = TokenLog.objects.get()
        self.assertEqual(log.status, TokenLog.Status.FAILED)
        self.assertEqual(log.error_message, 'Session has expired')

    @override_settings(**META_APP_SETTINGS)
    def test_refresh_network_failure_is_logged(self):
        self._store_token()
        with patch('MetaReport.services.token_manager.requests.get', side_effect=requests.Timeout('slow')):
            with self.assertRaises(TokenRefreshError):
                TokenLifecycleManager().refresh()
        self.assertEqual(TokenLog.objects.get().status, TokenLog.Status.FAILED)

    @override_settings(**META_APP_SETTINGS)
    def test_refresh_without_expiry_metadata_uses_debug_token(self):
        self._store_token()
        debug_expiry = int((timezone.now() + timedelta(days=40)).timestamp())
        responses = [
            _json_response({'access_token': 'fresh-token'}),
            _json_response({'data': {'expires_at': debug_expiry}}),
        ]
        with patch('MetaReport.services.token_manager.requests.get', side_effect=responses):
            result = TokenLifecycleManager().refresh()

        self.assertEqual(result['expiration_source'], 'debug_token')
        self.assertEqual(int(Setting.objects.get(key=TOKEN_SETTING_KEY).expires_at.timestamp()), debug_expiry)

    @override_settings(META_APP_ID='', META_APP_SECRET='', META_ACCESS_TOKEN='static-token')
    def test_missing_app_credentials_is_a_configuration_error(self):
        with self.assertRaises(TokenConfigurationError) as ctx:
            TokenLifecycleManager().refresh()
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertIn('META_APP_ID', ctx.exception.detail)

    @override_settings(META_ACCESS_TOKEN='')
    def test_refresh_without_any_token(self):
        with self.assertRaises(TokenRefreshError) as ctx:
            TokenLifecycleManager().refresh()
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.detail, 'No token found')

    @override_settings(META_ACCESS_TOKEN='static-token')
    def test_resolver_order(self):
        client_user = User.objects.create_user(username='tenant', password='Secret123!')
        request = Mock()
        request.headers = {'X-Meta-Token': 'header-token'}
        request.query_params = {'access_token': 'query-token'}
        request.GET = {}
        request.data = {'access_token': 'body-token'}

        self.assertEqual(resolve_access_token(request, client_user.pk), 'header-token')
        request.headers = {}
        self.assertEqual(resolve_access_token(request, client_user.pk), 'query-token')
        request.query_params = {}
        self.assertEqual(resolve_access_token(request, client_user.pk), 'body-token')
        request.data = {}

        self.assertEqual(resolve_access_token(request, client_user.pk), 'static-token')
        MetaConnection.objects.create(client=client_user, access_token='tenant-token')
        self.assertEqual(resolve_access_token(request, client_user.pk), 'tenant-token')

        self._store_token(value='global-token', expires_in=timedelta(days=30))
        self.assertEqual(resolve_access_token(request, None), 'global-token')
        self.assertEqual(resolve_access_token(None, client_user.pk), 'tenant-token')

    @override_settings(META_ACCESS_TOKEN='static-token')
    def test_expired_stored_token_falls_back_to_static(self):
        self._store_token(value='old-token', expires_in=-timedelta(days=1))
        self.assertEqual(resolve_access_token(None, None), 'static-token')
        self.assertEqual(TokenLifecycleManager().current_token(), 'static-token')


    @override_settings(META_REQUEST_TIMEOUT_SECONDS=12, **META_APP_SETTINGS)
    def test_non_object_exchange_payload_is_a_logged_failure(self):
        self._store_token()
        with patch(
            'MetaReport.services.token_manager.requests.get',
            return_value=_json_response(['unexpected']),
        ) as mocked_get:
            with self.assertRaises(TokenRefreshError) as ctx:
                TokenLifecycleManager().refresh()

        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(mocked_get.call_args.kwargs['timeout'], 12)
        self.assertEqual(TokenLog.objects.get().status, TokenLog.Status.FAILED)
        self.assertEqual(Setting.objects.get(key=TOKEN_SETTING_KEY).value, 'stored-token')

    @override_settings(META_ACCESS_TOKEN='static-token')
    def test_resolver_reports_token_source(self):
        client_user = User.objects.create_user(username='tenant', password='Secret123!')
        self.assertEqual(resolve_token_with_source(None, client_user.pk), ('static-token', SOURCE_STATIC))

        self._store_token(value='global-token', expires_in=timedelta(days=30))
        self.assertEqual(resolve_token_with_source(None, client_user.pk), ('global-token', SOURCE_STORED))

        MetaConnection.objects.create(client=client_user, access_token='tenant-token')
        self.assertEqual(resolve_token_with_source(None, client_user.pk), ('tenant-token', SOURCE_TENANT))


class SyncCoordinatorTests(TestCase):
    def setUp(self):
        self.client_user = User.objects.create_user(username='sync-client', password='Secret123!')

    def _coordinator(self, rows=None, side_effect=None):
        meta_client = MagicMock()
        meta_client.fetch_insights.return_value = rows or []
        if side_effect is not None:
            meta_client.fetch_insights.side_effect = side_effect
        return MetaSyncCoordinator(self.client_user, '777', meta_client=meta_client), meta_client

    def test_repeated_sync_overwrites_instead_of_duplicating(self):
        first, _ = self._coordinator([_raw_insight(spend='100')])
        self.assertEqual(first.sync(date(2024, 5, 1), date(2024, 5, 1)), {'synced_count': 1})

        second, _ = self._coordinator([_raw_insight(spend='250.75')])
        second.sync(date(2024, 5, 1), date(2024, 5, 1))

        row = MetaInsightDaily.objects.get()
        self.assertEqual(row.spend, Decimal('250.75'))
        self.assertEqual(row.account_id, 'act_777')
        self.assertEqual(row.conversions, 5)
        self.assertEqual(row.cost_per_conversion, Decimal('50.25'))
        self.assertIsNotNone(row.synced_at)

    def test_duplicate_keys_in_one_fetch_keep_the_last_row(self):
        coordinator, _ = self._coordinator(
            [
                _raw_insight(spend='10'),
                _raw_insight(campaign_id='c2'),
                _raw_insight(spend='20'),
            ]
        )
        self.assertEqual(coordinator.sync(date(2024, 5, 1), date(2024, 5, 1)), {'synced_count': 3})
        self.assertEqual(MetaInsightDaily.objects.count(), 2)
        self.assertEqual(MetaInsightDaily.objects.get(campaign_id='c1').spend, Decimal('20'))

    def test_sync_requests_daily_campaign_rows(self):
        coordinator, meta_client = self._coordinator()
        coordinator.sync(date(2024, 5, 1), date(2024, 5, 31))
        kwargs = meta_client.fetch_insights.call_args.kwargs
        self.assertEqual(kwargs['time_increment'], 1)
        self.assertEqual(kwargs['level'], 'campaign')
        self.assertEqual(kwargs['time_range'], (date(2024, 5, 1), date(2024, 5, 31)))

    def test_zero_rows_is_not_an_error(self):
        coordinator, _ = self._coordinator([])
        self.assertEqual(coordinator.sync(date(2024, 5, 1), date(2024, 5, 7)), {'synced_count': 0})
        run = SyncRun.objects.get()
        self.assertEqual(run.status, SyncRun.Status.SUCCESS)
        self.assertIsNotNone(run.finished_at)

    def test_upstream_failure_persists_nothing(self):
        coordinator, _ = self._coordinator(side_effect=MetaClientError('Unsupported get request.', 400))
        with self.assertRaises(MetaClientError):
            coordinator.sync(date(2024, 5, 1), date(2024, 5, 7))

        self.assertFalse(MetaInsightDaily.objects.exists())
        run = SyncRun.objects.get()
        self.assertEqual(run.status, SyncRun.Status.FAILED)
        self.assertTrue(run.logs.filter(message__icontains='Unsupported get request').exists())

    def test_rows_without_key_are_skipped(self):
        coordinator, _ = self._coordinator(
            [
                _raw_insight(campaign_id=''),
                _raw_insight(date_start=None),
                _raw_insight(campaign_id='c3', date_start='2024-02-30'),
            ]
        )
        self.assertEqual(coordinator.sync(date(2024, 5, 1), date(2024, 5, 1)), {'synced_count': 0})
        self.assertTrue(SyncLog.objects.filter(message__icontains='Skipped 3 rows').exists())

    def test_store_failure_rolls_back_whole_sync(self):
        coordinator, _ = self._coordinator([_raw_insight(campaign_id='c1'), _raw_insight(campaign_id='c2')])
        manager = MetaInsightDaily.objects
        real_upsert = manager.update_or_create
        calls = []

        def flaky_upsert(*args, **kwargs):
            calls.append(kwargs['campaign_id'])
            if len(calls) > 1:
                raise DatabaseError('disk full')
            return real_upsert(*args, **kwargs)

        with patch.object(manager, 'update_or_create', side_effect=flaky_upsert):
            with self.assertRaises(SyncError):
                coordinator.sync(date(2024, 5, 1), date(2024, 5, 1))

        self.assertFalse(MetaInsightDaily.objects.exists())
        self.assertEqual(SyncRun.objects.get().status, SyncRun.Status.FAILED)

    def test_requires_token_or_client(self):
        with self.assertRaises(ValueError):
            MetaSyncCoordinator(self.client_user, '777')

    def test_metrics_beyond_stored_precision_are_skipped(self):
        coordinator, _ = self._coordinator(
            [
                _raw_insight(campaign_id='c1', spend='12.345678'),
                _raw_insight(
                    campaign_id='c2',
                    cost_per_action_type=[{'action_type': 'purchase', 'value': '1e20'}],
                ),
                _raw_insight(campaign_id='c3', spend='1e15'),
            ]
        )
        self.assertEqual(coordinator.sync(date(2024, 5, 1), date(2024, 5, 1)), {'synced_count': 1})

        stored = list(MetaInsightDaily.objects.values('campaign_id', 'spend', 'cost_per_conversion'))
        self.assertEqual(
            stored,
            [{'campaign_id': 'c1', 'spend': Decimal('12.3457'), 'cost_per_conversion': Decimal('50.25')}],
        )
        self.assertTrue(SyncLog.objects.filter(message__icontains='Skipped 2 rows with metrics').exists())


class ReportBuilderTests(TestCase):
    def setUp(self):
        self.client_user = User.objects.create_user(username='report-client', password='Secret123!')
        ClientProfile.objects.create(user=self.client_user, name='Wind Bakeshop')

    def test_previous_period_has_same_length(self):
        self.assertEqual(
            previous_period(date(2024, 5, 11), date(2024, 5, 20)),
            (date(2024, 5, 1), date(2024, 5, 10)),
        )

    def test_build_report_aggregates_and_records_history(self):
        _stored_row(self.client_user, 'c1', date(2024, 5, 11), spend=Decimal('100'), conversions=1)
        _stored_row(self.client_user, 'c1', date(2024, 5, 12), spend=Decimal('300'), conversions=4)
        _stored_row(self.client_user, 'c2', date(2024, 5, 12), spend=Decimal('200'), conversions=2)
        _stored_row(self.client_user, 'c1', date(2024, 5, 5), spend=Decimal('300'), clicks=15)
        other = User.objects.create_user(username='other', password='Secret123!')
        _stored_row(other, 'c1', date(2024, 5, 12), spend=Decimal('9999'))

        report = build_report(self.client_user, date(2024, 5, 11), date(2024, 5, 20))

        self.assertEqual(report['client']['name'], 'Wind Bakeshop')
        self.assertEqual(report['summary']['spend'], 600.0)
        self.assertEqual(report['summary']['conversions'], 7)
        self.assertEqual(report['changes']['spend'], 100.0)
        self.assertEqual(report['changes']['clicks'], 100.0)
        self.assertEqual([day['date'] for day in report['daily_trend']], ['2024-05-11', '2024-05-12'])
        self.assertEqual({campaign['id'] for campaign in report['campaigns']}, {'c1', 'c2'})
        self.assertEqual(report['spend_conversions_correlation'], 1.0)

        history = ReportHistory.objects.get()
        self.assertEqual(history.start_date, date(2024, 5, 11))
        self.assertEqual(history.report_data['summary']['spend'], 600.0)

    def test_correlation_needs_variation(self):
        self.assertIsNone(spend_conversions_correlation([]))
        self.assertIsNone(
            spend_conversions_correlation(
                [{'spend': 10, 'conversions': 1}, {'spend': 10, 'conversions': 2}]
            )
        )

    def test_stored_reports_are_append_only(self):
        history = ReportHistory.objects.create(
            client=self.client_user,
            start_date=date(2024, 5, 1),
            end_date=date(2024, 5, 2),
            report_data={},
        )
        history.report_data = {'tampered': True}
        with self.assertRaises(ValidationError):
            history.save()

        report = ClientReport.objects.create(user=self.client_user, period='May', payload={})
        with self.assertRaises(ValidationError):
            report.save()


@override_settings(META_ACCESS_TOKEN='static-token')
class MetaReportEndpointTests(TestCase):
    def setUp(self):
        self.admin_user = User.objects.create_user(username='ops', password='Secret123!')
        ClientProfile.objects.create(user=self.admin_user, name='Ops', role=ClientProfile.ROLE_ADMIN)
        self.client_user = User.objects.create_user(username='bakery', password='Secret123!')
        ClientProfile.objects.create(user=self.client_user, name='Bakery')
        self.client = Client()
        self.client.force_login(self.admin_user)

    def _get(self, **params):
        return self.client.get('/api/meta/report', params)

    def _post(self, **payload):
        return self.client.post('/api/meta/report', data=json.dumps(payload), content_type='application/json')

    def test_invalid_action(self):
        self.assertEqual(self._get(action='explode').status_code, 400)
        self.assertEqual(self._get(action='sync').status_code, 400)
        self.assertEqual(self._post(action='accounts').status_code, 400)

    def test_requires_authentication(self):
        response = Client().get('/api/meta/report', {'action': 'accounts'})
        self.assertEqual(response.status_code, 403)
        self.assertFalse(response.json()['success'])

    @override_settings(META_ACCESS_TOKEN='')
    def test_missing_token_is_rejected(self):
        response = self._get(action='accounts')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'Meta access token required')

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_accounts_map_status(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_ad_accounts.return_value = [
            {'id': 'act_1', 'name': 'Main', 'account_status': 1, 'currency': 'KRW', 'timezone_name': 'Asia/Seoul'},
            {'id': 'act_2', 'name': 'Old', 'account_status': 2},
        ]
        response = self._get(action='accounts')

        self.assertEqual(response.status_code, 200)
        accounts = response.json()['accounts']
        self.assertEqual([account['status'] for account in accounts], ['active', 'inactive'])
        self.assertEqual(accounts[0]['timezone'], 'Asia/Seoul')
        mocked_client_cls.assert_called_once_with(access_token='static-token')

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_request_override_token_wins(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_ad_accounts.return_value = []
        self.client.get('/api/meta/report', {'action': 'accounts'}, HTTP_X_META_TOKEN='override-token')
        mocked_client_cls.assert_called_once_with(access_token='override-token')

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_campaign_budgets_are_converted_from_minor_units(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_campaigns.return_value = [
            {'id': '1', 'name': 'Spring', 'daily_budget': '1500000', 'lifetime_budget': None},
        ]
        response = self._get(action='campaigns', account_id='act_1')
        campaign = response.json()['campaigns'][0]
        self.assertEqual(campaign['daily_budget'], 15000.0)
        self.assertIsNone(campaign['lifetime_budget'])
        self.assertEqual(self._get(action='campaigns').status_code, 400)

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_insights_default_to_trailing_30_days(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.return_value = [_raw_insight()]
        response = self._get(action='insights', account_id='act_1')

        self.assertEqual(response.status_code, 200)
        body = response.json()
        today = timezone.localdate()
        self.assertEqual(body['date_range'], {'start': (today - timedelta(days=30)).isoformat(), 'end': today.isoformat()})
        self.assertEqual(body['insights'][0]['conversions'], 5)
        self.assertEqual(body['insights'][0]['spend'], 100.5)
        self.assertEqual(body['summary']['impressions'], 1000)
        fields = mocked_client_cls.return_value.fetch_insights.call_args.args[1]
        self.assertIn('video_p25_watched_actions', fields)

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_platform_error_envelope_becomes_400(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.side_effect = MetaClientError('(#100) Invalid parameter', 400)
        response = self._get(action='insights', campaign_id='2385')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'success': False, 'error': '(#100) Invalid parameter'})

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_transport_error_becomes_502(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.side_effect = MetaTransportError('Network error')
        self.assertEqual(self._get(action='daily', account_id='act_1').status_code, 502)

    def test_invalid_dates_are_rejected(self):
        response = self._get(action='insights', account_id='act_1', start_date='2024-13-01')
        self.assertEqual(response.status_code, 400)
        response = self._get(action='insights', account_id='act_1', start_date='2024-05-10', end_date='2024-05-01')
        self.assertEqual(response.status_code, 400)

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_daily_trend_is_sorted(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.return_value = [
            _raw_insight(day='2024-05-03'),
            _raw_insight(day='2024-05-01'),
            _raw_insight(campaign_id='c2', day='2024-05-01'),
        ]
        response = self._get(action='daily', account_id='act_1', start_date='2024-05-01', end_date='2024-05-07')
        daily = response.json()['daily']
        self.assertEqual([day['date'] for day in daily], ['2024-05-01', '2024-05-03'])
        self.assertEqual(daily[0]['impressions'], 2000)
        self.assertEqual(mocked_client_cls.return_value.fetch_insights.call_args.kwargs['time_increment'], 1)

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_demographics_joins_both_breakdowns(self, mocked_client_cls):
        def fake_fetch(target_id, fields, **kwargs):
            if kwargs['breakdowns'] == ['age']:
                return [{'age': '25-34', 'impressions': '300'}, {'age': '35-44', 'impressions': '100'}]
            return [{'gender': 'female', 'impressions': '300'}, {'gender': 'male', 'impressions': '100'}]

        mocked_client_cls.return_value.fetch_insights.side_effect = fake_fetch
        response = self._get(action='demographics', account_id='act_1')

        self.assertEqual(response.status_code, 200)
        demographics = response.json()['demographics']
        ages = {bucket['age']: bucket['percentage'] for bucket in demographics['age']}
        genders = {bucket['gender']: bucket['percentage'] for bucket in demographics['gender']}
        self.assertEqual(ages['25-34'], 75.0)
        self.assertEqual(genders, {'male': 25.0, 'female': 75.0})
        self.assertEqual(mocked_client_cls.return_value.fetch_insights.call_count, 2)

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_demographics_fails_whole_response_on_one_failure(self, mocked_client_cls):
        def fake_fetch(target_id, fields, **kwargs):
            if kwargs['breakdowns'] == ['gender']:
                raise MetaClientError('gender breakdown failed', 400)
            return [{'age': '25-34', 'impressions': '300'}]

        mocked_client_cls.return_value.fetch_insights.side_effect = fake_fetch
        response = self._get(action='demographics', account_id='act_1')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'gender breakdown failed')

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_creatives(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_ad_creatives.return_value = [
            {'id': 'ad1', 'name': 'Ad', 'status': 'ACTIVE', 'creative': {'id': 'cr1', 'thumbnail_url': 'https://x/y.png'}},
        ]
        response = self._get(action='creative', campaign_id='2385')
        creative = response.json()['creatives'][0]
        self.assertEqual(creative['creative_id'], 'cr1')
        self.assertEqual(creative['image_url'], 'https://x/y.png')

    def test_stored_report_is_scoped_for_clients(self):
        _stored_row(self.client_user, 'c1', date(2024, 5, 1), spend=Decimal('50'))
        _stored_row(self.admin_user, 'c9', date(2024, 5, 1), spend=Decimal('70'))

        admin_view = self._get(action='report', client_id=str(self.client_user.pk))
        self.assertEqual([row['campaign_id'] for row in admin_view.json()['reports']], ['c1'])
        self.assertEqual(admin_view.json()['summary']['spend'], 50.0)

        client = Client()
        client.force_login(self.client_user)
        own_view = client.get('/api/meta/report', {'action': 'report', 'client_id': str(self.admin_user.pk)})
        self.assertEqual([row['campaign_id'] for row in own_view.json()['reports']], ['c1'])

    def test_stored_report_date_filter(self):
        _stored_row(self.client_user, 'c1', date(2024, 5, 1))
        _stored_row(self.client_user, 'c1', date(2024, 6, 1))
        response = self._get(
            action='report', client_id=str(self.client_user.pk), start_date='2024-05-01', end_date='2024-05-31'
        )
        self.assertEqual(len(response.json()['reports']), 1)

    @patch('MetaReport.services.sync_coordinator.MetaGraphClient')
    def test_sync_action_upserts_rows(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.return_value = [_raw_insight(), _raw_insight(campaign_id='c2')]
        response = self._post(
            action='sync',
            client_id=self.client_user.pk,
            account_id='act_1',
            start_date='2024-05-01',
            end_date='2024-05-01',
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['synced'], 2)
        self.assertEqual(MetaInsightDaily.objects.filter(client=self.client_user).count(), 2)

    def test_sync_requires_client_and_account(self):
        self.assertEqual(self._post(action='sync', account_id='act_1').status_code, 400)
        self.assertEqual(self._post(action='sync', client_id=self.client_user.pk).status_code, 400)

    @patch('MetaReport.services.sync_coordinator.MetaGraphClient')
    def test_sync_upstream_error(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.side_effect = MetaClientError('Invalid account', 400)
        response = self._post(action='sync', client_id=self.client_user.pk, account_id='act_1')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(MetaInsightDaily.objects.exists())

    def test_generate_action_records_history(self):
        _stored_row(self.client_user, 'c1', date(2024, 5, 2), spend=Decimal('120'))
        response = self._post(
            action='generate',
            client_id=self.client_user.pk,
            start_date='2024-05-01',
            end_date='2024-05-31',
        )
        self.assertEqual(response.status_code, 200)
        report = response.json()['report']
        self.assertEqual(report['summary']['spend'], 120.0)
        self.assertEqual(report['date_range'], {'start': '2024-05-01', 'end': '2024-05-31'})
        self.assertEqual(ReportHistory.objects.filter(client=self.client_user).count(), 1)

    def test_generate_requires_client(self):
        self.assertEqual(self._post(action='generate').status_code, 400)
        self.assertEqual(self._post(action='generate', client_id=9999).status_code, 404)


@override_settings(META_ACCESS_TOKEN='agency-global-token')
class TenantScopingEndpointTests(TestCase):
    def setUp(self):
        self.client_user = User.objects.create_user(username='bakery', password='Secret123!')
        ClientProfile.objects.create(user=self.client_user, name='Bakery', meta_account_id='555', campaign_id='2385')
        self.client = Client()
        self.client.force_login(self.client_user)

    def _post(self, **payload):
        return self.client.post('/api/meta/report', data=json.dumps(payload), content_type='application/json')

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_shared_token_cannot_list_agency_accounts(self, mocked_client_cls):
        response = self.client.get('/api/meta/report', {'action': 'accounts'})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {'success': False, 'error': 'Admin only'})
        mocked_client_cls.assert_not_called()

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_foreign_account_or_campaign_is_rejected(self, mocked_client_cls):
        for action in ('campaigns', 'insights', 'daily', 'demographics', 'creative'):
            response = self.client.get('/api/meta/report', {'action': action, 'account_id': 'act_999'})
            self.assertEqual(response.status_code, 403, action)
            self.assertEqual(response.json()['error'], 'Not permitted for this account')

        response = self.client.get('/api/meta/report', {'action': 'insights', 'campaign_id': '777'})
        self.assertEqual(response.status_code, 403)
        mocked_client_cls.assert_not_called()

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_own_account_and_campaign_are_allowed(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.return_value = [_raw_insight()]
        mocked_client_cls.return_value.fetch_ad_creatives.return_value = []

        insights = self.client.get('/api/meta/report', {'action': 'insights', 'account_id': 'act_555'})
        self.assertEqual(insights.status_code, 200)
        creatives = self.client.get('/api/meta/report', {'action': 'creative', 'campaign_id': '2385'})
        self.assertEqual(creatives.status_code, 200)
        mocked_client_cls.assert_called_with(access_token='agency-global-token')

    @patch('MetaReport.services.sync_coordinator.MetaGraphClient')
    def test_foreign_account_cannot_be_synced(self, mocked_client_cls):
        mocked_client_cls.return_value.fetch_insights.return_value = [_raw_insight()]

        response = self._post(action='sync', account_id='act_999')
        self.assertEqual(response.status_code, 403)
        self.assertFalse(SyncRun.objects.exists())
        self.assertFalse(MetaInsightDaily.objects.exists())
        mocked_client_cls.assert_not_called()

        own = self._post(action='sync', account_id='555', start_date='2024-05-01', end_date='2024-05-01')
        self.assertEqual(own.status_code, 200)
        self.assertEqual(own.json()['synced'], 1)
        self.assertEqual(MetaInsightDaily.objects.get().account_id, 'act_555')

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_client_with_own_connection_may_list_accounts(self, mocked_client_cls):
        MetaConnection.objects.create(client=self.client_user, access_token='bakery-token')
        mocked_client_cls.return_value.fetch_ad_accounts.return_value = []

        response = self.client.get('/api/meta/report', {'action': 'accounts'})
        self.assertEqual(response.status_code, 200)
        mocked_client_cls.assert_called_once_with(access_token='bakery-token')


@override_settings(META_ACCESS_TOKEN='static-token')
class MetaHealthEndpointTests(TestCase):
    def setUp(self):
        self.admin_user = User.objects.create_superuser(username='root', password='Secret123!')
        self.client = Client()
        self.client.force_login(self.admin_user)

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_health_reports_account_and_token_state(self, mocked_client_cls):
        mocked_client_cls.return_value.health_check.return_value = {'id': '1', 'name': 'Ops'}
        response = self.client.get('/api/meta/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['account'], {'id': '1', 'name': 'Ops'})
        self.assertEqual(response.json()['token_status'], EXPIRED_OR_UNKNOWN)

    @override_settings(META_ACCESS_TOKEN='')
    def test_health_without_token_is_configuration_error(self):
        response = self.client.get('/api/meta/health')
        self.assertEqual(response.status_code, 500)
        self.assertIn('META_ACCESS_TOKEN', response.json()['error'])

    @patch('MetaReport.api_views.MetaGraphClient')
    def test_health_timeout_surfaces_transport_error(self, mocked_client_cls):
        mocked_client_cls.return_value.health_check.side_effect = MetaTransportError('timed out')
        self.assertEqual(self.client.get('/api/meta/health').status_code, 502)


@override_settings(CRON_SECRET='cron-secret')
class RefreshTokenEndpointTests(TestCase):
    def setUp(self):
        self.admin_user = User.objects.create_user(username='ops', password='Secret123!')
        ClientProfile.objects.create(user=self.admin_user, name='Ops', role=ClientProfile.ROLE_ADMIN)
        self.client_user = User.objects.create_user(username='bakery', password='Secret123!')
        ClientProfile.objects.create(user=self.client_user, name='Bakery')
        self.refresh_result = {
            'expires_at': timezone.now() + timedelta(days=60),
            'expires_in_days': 60,
            'status_before': EXPIRING_SOON,
            'expiration_source': 'exchange',
        }

    def test_rejects_without_secret(self):
        response = Client().get('/api/refresh-token')
        self.assertEqual(response.status_code, 401)
        response = Client().get('/api/refresh-token', HTTP_AUTHORIZATION='Bearer wrong')
        self.assertEqual(response.status_code, 401)

    @patch('MetaReport.api_views.TokenLifecycleManager')
    def test_cron_secret_triggers_refresh(self, mocked_manager_cls):
        mocked_manager_cls.return_value.refresh.return_value = self.refresh_result
        response = Client().get('/api/refresh-token', HTTP_AUTHORIZATION='Bearer cron-secret')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['success'])
        self.assertEqual(response.json()['expires_in_days'], 60)

    @patch('MetaReport.api_views.TokenLifecycleManager')
    def test_manual_refresh_requires_admin_session(self, mocked_manager_cls):
        mocked_manager_cls.return_value.refresh.return_value = self.refresh_result

        client = Client()
        client.force_login(self.client_user)
        self.assertEqual(client.post('/api/refresh-token?manual=true').status_code, 401)

        admin = Client()
        admin.force_login(self.admin_user)
        self.assertEqual(admin.get('/api/refresh-token?manual=true').status_code, 401)
        self.assertEqual(admin.post('/api/refresh-token?manual=true').status_code, 200)

    @patch('MetaReport.api_views.TokenLifecycleManager')
    def test_refresh_error_is_translated(self, mocked_manager_cls):
        mocked_manager_cls.return_value.refresh.side_effect = TokenConfigurationError(
            'META_APP_ID and META_APP_SECRET must be configured.'
        )
        response = Client().post('/api/refresh-token', HTTP_AUTHORIZATION='Bearer cron-secret')
        self.assertEqual(response.status_code, 500)
        self.assertIn('META_APP_ID', response.json()['error'])


class ClientReportEndpointTests(TestCase):
    def setUp(self):
        self.admin_user = User.objects.create_user(username='ops', password='Secret123!')
        ClientProfile.objects.create(user=self.admin_user, name='Ops', role=ClientProfile.ROLE_ADMIN)
        self.client_user = User.objects.create_user(username='bakery', password='Secret123!')
        self.profile = ClientProfile.objects.create(user=self.client_user, name='')
        self.client = Client()
        self.client.force_login(self.client_user)

    def test_placeholder_when_no_report(self):
        response = self.client.get('/api/report')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['report']['kpis'], [])
        self.assertEqual(response.json()['report']['client_name'], 'No report')

    def test_latest_report_is_returned(self):
        ClientReport.objects.create(user=self.client_user, period='April', payload={'client_name': 'Old'})
        ClientReport.objects.create(
            user=self.client_user,
            period='May',
            payload={'client_name': 'Bakery', 'kpis': [{'label': 'Reach', 'value': 1000}]},
        )
        report = self.client.get('/api/report').json()['report']
        self.assertEqual(report['period'], 'May')
        self.assertEqual(report['kpis'][0]['value'], 1000)

    def test_live_report_placeholder_without_campaign(self):
        response = self.client.get('/api/report/live')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['report']['actions'], ['No campaign is connected yet.'])

    @override_settings(META_ACCESS_TOKEN='static-token')
    @patch('MetaReport.api_views.MetaGraphClient')
    def test_live_report_builds_highlights(self, mocked_client_cls):
        self.profile.campaign_id = '2385'
        self.profile.save(update_fields=['campaign_id'])
        mocked_client_cls.return_value.fetch_object.return_value = {'name': '20251219 WindBake Real'}
        mocked_client_cls.return_value.fetch_insights.return_value = [
            {
                'impressions': '20000',
                'reach': '5000',
                'spend': '150000',
                'date_start': '2024-05-01',
                'date_stop': '2024-05-30',
                'actions': [
                    {'action_type': 'link_click', 'value': '120'},
                    {'action_type': 'landing_page_view', 'value': '40'},
                    {'action_type': 'video_view', 'value': '300'},
                ],
            }
        ]
        report = self.client.get('/api/report/live').json()['report']

        self.assertEqual(report['client_name'], 'WindBake')
        self.assertEqual(report['traffic_results'], 40)
        self.assertEqual(report['traffic_result_type'], 'landing_page_view')
        self.assertEqual(len(report['highlights']), 3)
        self.assertEqual(len(report['actions']), 2)
        self.assertEqual(report['period'], '2024-05-01 ~ 2024-05-30')

    @override_settings(META_ACCESS_TOKEN='static-token')
    @patch('MetaReport.api_views.MetaGraphClient')
    def test_live_report_degrades_on_platform_error(self, mocked_client_cls):
        self.profile.campaign_id = '2385'
        self.profile.save(update_fields=['campaign_id'])
        mocked_client_cls.return_value.fetch_object.side_effect = MetaClientError('Unknown campaign', 400)
        response = self.client.get('/api/report/live')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['report']['reach'], 0)

    def test_live_report_rules(self):
        quiet = build_live_report('Cafe', {'impressions': '1000', 'reach': '10', 'actions': []})
        self.assertEqual(quiet['highlights'], ['Your ads are running normally.'])
        self.assertEqual(quiet['traffic_results'], 0)
        self.assertIsNone(quiet['traffic_result_type'])

        healthy = build_live_report(
            'Cafe',
            {
                'impressions': '1000',
                'actions': [
                    {'action_type': 'link_click', 'value': '20'},
                    {'action_type': 'landing_page_view', 'value': '15'},
                ],
            },
        )
        self.assertEqual(healthy['actions'], ['Performance looks healthy. Keep it up!'])
        self.assertEqual(healthy['traffic_results'], 15)

    def test_business_name_from_campaign(self):
        self.assertEqual(business_name_from_campaign('WindBake Real'), 'WindBake')
        self.assertEqual(business_name_from_campaign('20251219 WindBake Real'), 'WindBake')
        self.assertEqual(business_name_from_campaign('20251219'), 'Client')
        self.assertEqual(business_name_from_campaign(None), 'Client')

    def test_admin_report_compose_and_list(self):
        admin = Client()
        admin.force_login(self.admin_user)
        created = admin.post(
            '/api/admin/report',
            data=json.dumps({'user': self.client_user.pk, 'period': 'May', 'payload': {'client_name': 'Bakery'}}),
            content_type='application/json',
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()['report']['created_by'], self.admin_user.pk)

        listing = admin.get('/api/admin/report', {'user': self.client_user.pk})
        self.assertEqual(len(listing.json()['reports']), 1)
        self.assertEqual(self.client.get('/api/report').json()['report']['client_name'], 'Bakery')

    def test_admin_report_generate_from_synced_metrics(self):
        _stored_row(self.client_user, 'c1', date(2024, 5, 2), spend=Decimal('120'))
        admin = Client()
        admin.force_login(self.admin_user)
        created = admin.post(
            '/api/admin/report',
            data=json.dumps(
                {'user': self.client_user.pk, 'generate': 'true', 'start_date': '2024-05-01', 'end_date': '2024-05-31'}
            ),
            content_type='application/json',
        )
        self.assertEqual(created.status_code, 201)
        report = created.json()['report']
        self.assertEqual(report['period'], '2024-05-01 ~ 2024-05-31')
        self.assertEqual(report['payload']['summary']['spend'], 120.0)
        self.assertEqual(ReportHistory.objects.count(), 1)

    def test_admin_report_validation_and_authorization(self):
        self.assertEqual(self.client.get('/api/admin/report').status_code, 403)

        admin = Client()
        admin.force_login(self.admin_user)
        missing_payload = admin.post(
            '/api/admin/report',
            data=json.dumps({'user': self.client_user.pk, 'period': 'May'}),
            content_type='application/json',
        )
        self.assertEqual(missing_payload.status_code, 400)
        unknown_user = admin.post(
            '/api/admin/report',
            data=json.dumps({'user': 9999, 'period': 'May', 'payload': {}}),
            content_type='application/json',
        )
        self.assertEqual(unknown_user.status_code, 404)


class RefreshMetaTokenCommandTests(TestCase):
    @patch('MetaReport.management.commands.refresh_meta_token.TokenLifecycleManager')
    def test_command_refreshes(self, mocked_manager_cls):
        mocked_manager_cls.return_value.refresh.return_value = {
            'expires_at': timezone.now() + timedelta(days=60),
            'expires_in_days': 60,
        }
        out = StringIO()
        call_command('refresh_meta_token', stdout=out)
        self.assertIn('60 days', out.getvalue())

    @patch('MetaReport.management.commands.refresh_meta_token.TokenLifecycleManager')
    def test_command_skips_valid_token_when_asked(self, mocked_manager_cls):
        mocked_manager_cls.return_value.status.return_value = VALID
        call_command('refresh_meta_token', '--if-expiring', stdout=StringIO())
        mocked_manager_cls.return_value.refresh.assert_not_called()

    @patch('MetaReport.management.commands.refresh_meta_token.TokenLifecycleManager')
    def test_command_fails_loudly(self, mocked_manager_cls):
        mocked_manager_cls.return_value.refresh.side_effect = TokenRefreshError('Session has expired', 400)
        with self.assertRaises(CommandError):
            call_command('refresh_meta_token', stdout=StringIO())

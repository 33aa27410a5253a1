import logging
import time
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from django.db import DatabaseError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from MetaReport.models import MetaInsightDaily, SyncLog, SyncRun
from MetaReport.services.meta_client import INSIGHT_FIELDS, MetaGraphClient, normalize_account_id
from MetaReport.services.metric_normalizer import normalize, to_decimal


logger = logging.getLogger(__name__)


class SyncError(Exception):
    pass


DECIMAL_FIELDS = ('frequency', 'spend', 'ctr', 'cpc', 'cpm', 'cost_per_conversion')
COUNT_FIELDS = ('impressions', 'clicks', 'reach', 'conversions')
BIGINT_MAX = 9223372036854775807


def _fit_decimal(value, field_name: str) -> Optional[Decimal]:
    """Quantize to the column's scale; None when the value does not fit its precision."""
    field = MetaInsightDaily._meta.get_field(field_name)
    amount = to_decimal(value)
    if amount.copy_abs() >= Decimal(10) ** (field.max_digits - field.decimal_places):
        return None
    return amount.quantize(Decimal(1).scaleb(-field.decimal_places), rounding=ROUND_HALF_UP)


def _row_date(value) -> Optional[date]:
    if not value:
        return None
    try:
        return parse_date(str(value))
    except ValueError:
        return None


class MetaSyncCoordinator:
    """Pulls daily campaign insights for one account and upserts them for a client.

    Rows are keyed by (client, campaign_id, date); a repeated key within the same
    fetch or across runs overwrites the stored metrics.
    """

    def __init__(
        self,
        client_user,
        account_id: str,
        access_token: Optional[str] = None,
        meta_client: Optional[MetaGraphClient] = None,
    ) -> None:
        if meta_client is None and not access_token:
            raise ValueError('access_token or meta_client is required')
        self.client_user = client_user
        self.account_id = normalize_account_id(account_id)
        self.access_token = access_token
        self.meta_client = meta_client
        self.sync_run: Optional[SyncRun] = None

    def sync(self, since: date, until: date) -> Dict:
        self.sync_run = SyncRun.objects.create(client=self.client_user, account_id=self.account_id)
        if self.meta_client is None:
            self.meta_client = MetaGraphClient(access_token=self.access_token, sync_run=self.sync_run)
        elif self.meta_client.sync_run is None:
            self.meta_client.sync_run = self.sync_run

        self._set_status(SyncRun.Status.RUNNING)
        self._log('sync', f'Sync started for {self.account_id}: {since.isoformat()} to {until.isoformat()}.')
        started = time.monotonic()

        try:
            rows = self.meta_client.fetch_insights(
                self.account_id,
                INSIGHT_FIELDS,
                time_range=(since, until),
                time_increment=1,
                level='campaign',
            )
        except Exception as exc:
            logger.exception('Meta insights fetch failed for %s.', self.account_id)
            self._log('sync', f'Fetch failed: {exc}')
            self._finish(SyncRun.Status.FAILED)
            raise

        try:
            synced_count = self._upsert(rows)
        except DatabaseError as exc:
            logger.exception('Persisting Meta insights failed for %s.', self.account_id)
            self._log('sync', f'Persistence failed: {exc}')
            self._finish(SyncRun.Status.FAILED)
            raise SyncError(f'Failed to store insights: {exc}') from exc

        elapsed = time.monotonic() - started
        self._log('sync', f'Sync finished in {elapsed:.2f}s. synced_count={synced_count}')
        self._finish(SyncRun.Status.SUCCESS, synced_count=synced_count)
        return {'synced_count': synced_count}

    def _upsert(self, rows: List[Dict]) -> int:
        synced_count = 0
        skipped = 0
        out_of_range = 0
        synced_at = timezone.now()

        with transaction.atomic():
            for raw in rows:
                item = normalize(raw)
                day = _row_date(item['date'])
                if not item['campaign_id'] or day is None:
                    skipped += 1
                    continue

                amounts = {name: _fit_decimal(item[name], name) for name in DECIMAL_FIELDS}
                counts = {name: max(0, item[name]) for name in COUNT_FIELDS}
                if None in amounts.values() or any(count > BIGINT_MAX for count in counts.values()):
                    out_of_range += 1
                    continue

                MetaInsightDaily.objects.update_or_create(
                    client=self.client_user,
                    campaign_id=item['campaign_id'],
                    date=day,
                    defaults={
                        'account_id': self.account_id,
                        'campaign_name': item['campaign_name'][:255],
                        **counts,
                        **amounts,
                        'synced_at': synced_at,
                    },
                )
                synced_count += 1

        if skipped:
            self._log('sync', f'Skipped {skipped} rows without campaign_id or date.')
        if out_of_range:
            self._log('sync', f'Skipped {out_of_range} rows with metrics beyond stored precision.')
        return synced_count

    def _set_status(self, status_value: str) -> None:
        self.sync_run.status = status_value
        self.sync_run.save(update_fields=['status'])

    def _finish(self, status_value: str, synced_count: int = 0) -> None:
        self.sync_run.status = status_value
        self.sync_run.synced_count = synced_count
        self.sync_run.finished_at = timezone.now()
        self.sync_run.save(update_fields=['status', 'synced_count', 'finished_at'])

    def _log(self, entity: str, message: str) -> None:
        logger.info('[sync:%s] %s', entity, message)
        SyncLog.objects.create(sync_run=self.sync_run, entity=entity[:100], message=message)

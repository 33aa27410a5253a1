import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

import pandas as pd
from django.utils import timezone
from scipy.stats import pearsonr

from MetaReport.models import MetaInsightDaily, ReportHistory
from MetaReport.services.aggregator import by_campaign, by_date, compare, summarize


logger = logging.getLogger(__name__)


def previous_period(start: date, end: date) -> Tuple[date, date]:
    length = (end - start).days + 1
    previous_end = start - timedelta(days=1)
    return previous_end - timedelta(days=length - 1), previous_end


def insight_rows(client_user, start: Optional[date] = None, end: Optional[date] = None):
    queryset = MetaInsightDaily.objects.filter(client=client_user)
    if start is not None:
        queryset = queryset.filter(date__gte=start)
    if end is not None:
        queryset = queryset.filter(date__lte=end)
    return queryset.order_by('date', 'campaign_id')


def spend_conversions_correlation(daily_trend: List[Dict]) -> Optional[float]:
    if len(daily_trend) < 2:
        return None

    frame = pd.DataFrame(daily_trend)
    if frame.empty:
        return None

    frame['spend'] = pd.to_numeric(frame['spend'], errors='coerce')
    frame['conversions'] = pd.to_numeric(frame['conversions'], errors='coerce')
    frame = frame.dropna(subset=['spend', 'conversions'])

    if len(frame) < 2:
        return None
    if frame['spend'].nunique() < 2:
        return None
    if frame['conversions'].nunique() < 2:
        return None

    correlation, _ = pearsonr(frame['spend'], frame['conversions'])
    if pd.isna(correlation):
        return None
    return round(float(correlation), 4)


def _client_summary(client_user) -> Dict:
    profile = getattr(client_user, 'client_profile', None)
    return {
        'id': client_user.pk,
        'username': client_user.get_username(),
        'name': profile.name if profile is not None else '',
    }


def build_report(client_user, start: date, end: date, record_history: bool = True) -> Dict:
    rows = list(insight_rows(client_user, start, end))
    previous_start, previous_end = previous_period(start, end)
    previous_rows = list(insight_rows(client_user, previous_start, previous_end))

    summary = summarize(rows)
    daily_trend = by_date(rows)
    report_data = {
        'client': _client_summary(client_user),
        'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
        'summary': summary,
        'changes': compare(summary, summarize(previous_rows)),
        'campaigns': by_campaign(rows),
        'daily_trend': daily_trend,
        'spend_conversions_correlation': spend_conversions_correlation(daily_trend),
        'generated_at': timezone.now().isoformat(),
    }

    if record_history:
        ReportHistory.objects.create(
            client=client_user,
            start_date=start,
            end_date=end,
            report_data=report_data,
        )
    logger.info(
        'Report generated client=%s range=%s..%s rows=%s',
        client_user.pk,
        start.isoformat(),
        end.isoformat(),
        len(rows),
    )
    return report_data

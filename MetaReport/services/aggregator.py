from collections import OrderedDict
from datetime import date
from typing import Dict, Iterable, List, Optional

from django.conf import settings

from MetaReport.services.metric_normalizer import to_float, to_int


COMPARED_METRICS = ('impressions', 'clicks', 'spend', 'conversions', 'ctr', 'cpc')


def _value_per_conversion() -> float:
    return float(getattr(settings, 'META_VALUE_PER_CONVERSION', 50000))


def _safe_div(numerator, denominator, multiplier: float = 1.0) -> float:
    den = to_float(denominator)
    if den <= 0:
        return 0.0
    return (to_float(numerator) / den) * multiplier


def _get(row, key):
    if isinstance(row, dict):
        return row.get(key)
    return getattr(row, key, None)


def _date_key(value) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value or '')


def _empty_totals() -> Dict:
    return {'impressions': 0, 'clicks': 0, 'spend': 0.0, 'reach': 0, 'conversions': 0}


def _add(totals: Dict, row) -> None:
    totals['impressions'] += to_int(_get(row, 'impressions'))
    totals['clicks'] += to_int(_get(row, 'clicks'))
    totals['spend'] += to_float(_get(row, 'spend'))
    totals['reach'] += to_int(_get(row, 'reach'))
    totals['conversions'] += to_int(_get(row, 'conversions'))


def summarize(rows: Iterable) -> Dict:
    totals = _empty_totals()
    for row in rows or []:
        _add(totals, row)

    impressions = totals['impressions']
    clicks = totals['clicks']
    spend = totals['spend']
    return {
        **totals,
        'spend': round(spend, 2),
        'ctr': round(_safe_div(clicks, impressions, 100.0), 2),
        'cpc': round(_safe_div(spend, clicks)),
        'cpm': round(_safe_div(spend, impressions, 1000.0)),
        'roas': round(_safe_div(totals['conversions'] * _value_per_conversion(), spend), 2),
    }


def by_campaign(rows: Iterable) -> List[Dict]:
    campaigns: Dict[str, Dict] = OrderedDict()
    for row in rows or []:
        campaign_id = str(_get(row, 'campaign_id') or '')
        entry = campaigns.get(campaign_id)
        if entry is None:
            entry = {'id': campaign_id, 'name': _get(row, 'campaign_name') or '', **_empty_totals()}
            campaigns[campaign_id] = entry
        _add(entry, row)

    return [
        {
            **entry,
            'spend': round(entry['spend'], 2),
            'ctr': round(_safe_div(entry['clicks'], entry['impressions'], 100.0), 2),
            'cpc': round(_safe_div(entry['spend'], entry['clicks'])),
        }
        for entry in campaigns.values()
    ]


def by_date(rows: Iterable) -> List[Dict]:
    days: Dict[str, Dict] = {}
    for row in rows or []:
        key = _date_key(_get(row, 'date'))
        entry = days.get(key)
        if entry is None:
            entry = {'date': key, **_empty_totals()}
            days[key] = entry
        _add(entry, row)

    # ISO-8601 date strings sort chronologically.
    return [
        {**days[key], 'spend': round(days[key]['spend'], 2)}
        for key in sorted(days)
    ]


def percent_change(current, previous: Optional[float]) -> float:
    current_value = to_float(current)
    previous_value = to_float(previous)
    if previous_value <= 0:
        return 100.0 if current_value > 0 else 0.0
    return round((current_value - previous_value) / previous_value * 100, 1)


def compare(current: Dict, previous: Optional[Dict]) -> Dict:
    previous = previous or {}
    return {
        metric: percent_change(current.get(metric), previous.get(metric))
        for metric in COMPARED_METRICS
    }

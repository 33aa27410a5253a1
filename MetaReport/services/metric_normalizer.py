"""Normalization of raw Graph API insight rows.

Numbers arrive as strings (sometimes missing or garbage); every parser here
maps those to 0 instead of raising. Conversion counts come from the
heterogeneous ``actions`` / ``cost_per_action_type`` arrays and are resolved
through an explicit :class:`ActionPolicy` so each call site states which
action types count and whether they are summed or picked by priority.
"""
import math
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence


FIRST_MATCH = 'first_match'
SUM_ALL = 'sum_all'

AGE_RANGES = ['13-17', '18-24', '25-34', '35-44', '45-54', '55-64', '65+']
GENDERS = ['male', 'female']
VIDEO_MILESTONES = ('p25', 'p50', 'p75', 'p100')


class ActionPolicy(NamedTuple):
    allow_list: Sequence[str]
    mode: str


# Conversions shown on insights, synced rows and reports: every conversion-like action.
TOTAL_CONVERSIONS = ActionPolicy(
    allow_list=('purchase', 'lead', 'complete_registration', 'add_to_cart', 'initiate_checkout'),
    mode=SUM_ALL,
)
# Cost per conversion reports the cost of the single most valuable conversion type.
PRIMARY_COST_PER_CONVERSION = ActionPolicy(
    allow_list=('purchase', 'lead', 'complete_registration'),
    mode=FIRST_MATCH,
)
# Traffic campaigns report landing page views, falling back to link clicks.
PRIMARY_TRAFFIC_RESULT = ActionPolicy(
    allow_list=('landing_page_view', 'link_click'),
    mode=FIRST_MATCH,
)


def to_int(value) -> int:
    if value in (None, ''):
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        parsed = float(str(value).replace(',', ''))
    except (TypeError, ValueError):
        return 0
    if math.isnan(parsed) or math.isinf(parsed):
        return 0
    return int(parsed)


def to_float(value) -> float:
    if value in (None, ''):
        return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(parsed) or math.isinf(parsed):
        return 0.0
    return parsed


def to_decimal(value) -> Decimal:
    if value in (None, ''):
        return Decimal('0')
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return Decimal('0')
    if not parsed.is_finite():
        return Decimal('0')
    return parsed


def extract_action_value(actions, allow_list: Sequence[str], mode: str) -> Decimal:
    if not isinstance(actions, list):
        return Decimal('0')

    entries = [
        item for item in actions
        if isinstance(item, dict) and item.get('action_type') in allow_list
    ]
    if mode == SUM_ALL:
        return sum((to_decimal(item.get('value')) for item in entries), Decimal('0'))
    if mode == FIRST_MATCH:
        for action_type in allow_list:
            for item in entries:
                if item.get('action_type') == action_type:
                    return to_decimal(item.get('value'))
        return Decimal('0')
    raise ValueError(f'Unknown action extraction mode: {mode}')


def extract_by_policy(actions, policy: ActionPolicy) -> Decimal:
    return extract_action_value(actions, policy.allow_list, policy.mode)


def action_value(actions, action_type: str) -> int:
    return to_int(extract_action_value(actions, (action_type,), FIRST_MATCH))


def extract_video_views(row: Dict) -> Dict[str, int]:
    views = {}
    for milestone in VIDEO_MILESTONES:
        entries = row.get(f'video_{milestone}_watched_actions')
        first = entries[0] if isinstance(entries, list) and entries else None
        views[milestone] = to_int(first.get('value')) if isinstance(first, dict) else 0
    return views


def normalize(
    row: Dict,
    conversion_policy: ActionPolicy = TOTAL_CONVERSIONS,
    cost_policy: ActionPolicy = PRIMARY_COST_PER_CONVERSION,
) -> Dict:
    row = row if isinstance(row, dict) else {}
    return {
        'campaign_id': str(row.get('campaign_id') or '').strip(),
        'campaign_name': str(row.get('campaign_name') or '').strip(),
        'date': row.get('date_start') or None,
        'impressions': max(0, to_int(row.get('impressions'))),
        'clicks': max(0, to_int(row.get('clicks'))),
        'reach': max(0, to_int(row.get('reach'))),
        'frequency': max(0.0, to_float(row.get('frequency'))),
        'spend': max(Decimal('0'), to_decimal(row.get('spend'))),
        'ctr': to_float(row.get('ctr')),
        'cpc': to_float(row.get('cpc')),
        'cpm': to_float(row.get('cpm')),
        'conversions': to_int(extract_by_policy(row.get('actions'), conversion_policy)),
        'cost_per_conversion': extract_by_policy(row.get('cost_per_action_type'), cost_policy),
        'video_views': extract_video_views(row),
    }


def _percentages(counts: List[int], neutral: List[float]) -> List[float]:
    total = sum(counts)
    if total <= 0:
        return list(neutral)
    return [round(count / total * 100, 1) for count in counts]


def demographic_breakdown(age_rows: Iterable[Dict], gender_rows: Iterable[Dict]) -> Dict:
    age_totals = {age: {'impressions': 0, 'reach': 0} for age in AGE_RANGES}
    for row in age_rows or []:
        bucket = age_totals.get(str((row or {}).get('age') or ''))
        if bucket is None:
            continue
        bucket['impressions'] += to_int(row.get('impressions'))
        bucket['reach'] += to_int(row.get('reach'))

    gender_totals = {gender: {'impressions': 0, 'reach': 0} for gender in GENDERS}
    for row in gender_rows or []:
        bucket = gender_totals.get(str((row or {}).get('gender') or '').lower())
        if bucket is None:
            continue
        bucket['impressions'] += to_int(row.get('impressions'))
        bucket['reach'] += to_int(row.get('reach'))

    age_pct = _percentages(
        [age_totals[age]['impressions'] for age in AGE_RANGES],
        neutral=[0.0] * len(AGE_RANGES),
    )
    gender_pct = _percentages(
        [gender_totals[gender]['impressions'] for gender in GENDERS],
        neutral=[50.0, 50.0],
    )

    return {
        'age': [
            {'age': age, **age_totals[age], 'percentage': pct}
            for age, pct in zip(AGE_RANGES, age_pct)
        ],
        'gender': [
            {'gender': gender, **gender_totals[gender], 'percentage': pct}
            for gender, pct in zip(GENDERS, gender_pct)
        ],
    }


def primary_action_type(actions, policy: ActionPolicy) -> Optional[str]:
    if not isinstance(actions, list):
        return None
    present = {item.get('action_type') for item in actions if isinstance(item, dict)}
    for action_type in policy.allow_list:
        if action_type in present:
            return action_type
    return None

"""
Financial Math Helpers

Month keys, amount coercion and per-month record arithmetic shared by the
blueprint aggregation modules. Records are plain dicts {YYYY-MM: Decimal}.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

ZERO = Decimal("0")

MONTH_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}$")

MonthRecord = Dict[str, Decimal]


def to_amount(raw) -> Decimal:
    """
    Coerce an input cell to a finite Decimal.

    Blank, non-numeric and non-finite values become zero so that NaN never
    reaches an aggregate.
    """
    if raw is None or isinstance(raw, bool):
        return ZERO
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else ZERO
    if isinstance(raw, (int, float)):
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            return ZERO
        return value if value.is_finite() else ZERO
    if isinstance(raw, str):
        text = raw.strip().replace(",", "")
        if not text:
            return ZERO
        try:
            value = Decimal(text)
        except InvalidOperation:
            return ZERO
        return value if value.is_finite() else ZERO
    return ZERO


def parse_month_key(key: str) -> Optional[Tuple[int, int]]:
    """Parse "YYYY-MM" into (year, month); None when malformed"""
    if not isinstance(key, str) or not MONTH_KEY_PATTERN.match(key):
        return None
    year, month = int(key[:4]), int(key[5:])
    if month < 1 or month > 12:
        return None
    return year, month


def format_month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_start(key: str) -> Optional[date]:
    parsed = parse_month_key(key)
    if not parsed:
        return None
    return date(parsed[0], parsed[1], 1)


def sort_month_keys(keys: Iterable[str]) -> List[str]:
    """Valid month keys, de-duplicated and in chronological order"""
    parsed = {parse_month_key(k): k for k in keys if parse_month_key(k)}
    return [parsed[p] for p in sorted(parsed)]


def months_between(start: date, end: date) -> List[str]:
    """Inclusive run of month keys from start to end"""
    keys = []
    current = start.replace(day=1)
    end_month = end.replace(day=1)
    while current <= end_month:
        keys.append(current.strftime("%Y-%m"))
        current = current + relativedelta(months=1)
    return keys


def build_month_horizon(start_month: str, month_count: int) -> List[str]:
    """Contiguous run of `month_count` month keys beginning at `start_month`"""
    start = month_start(start_month)
    if start is None or month_count <= 0:
        return []
    return [
        (start + relativedelta(months=i)).strftime("%Y-%m")
        for i in range(month_count)
    ]


def empty_record(month_keys: Iterable[str]) -> MonthRecord:
    return {key: ZERO for key in month_keys}


def add_to_record(target: MonthRecord, source: MonthRecord) -> None:
    """Add `source` into `target` over target's months only"""
    for key in target:
        target[key] = target[key] + source.get(key, ZERO)


def sum_for_period(record: Optional[MonthRecord], month_keys: Iterable[str]) -> Decimal:
    if not record:
        return ZERO
    return sum((record.get(key, ZERO) for key in month_keys), ZERO)


def combine_records(month_keys: Iterable[str], *records: Optional[MonthRecord]) -> MonthRecord:
    """Month-wise sum of several records ("base + plan")"""
    combined = empty_record(month_keys)
    for record in records:
        if record:
            add_to_record(combined, record)
    return combined


def record_to_dict(record: MonthRecord) -> Dict[str, str]:
    return {k: str(v) for k, v in record.items()}

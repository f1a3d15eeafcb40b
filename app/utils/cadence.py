from __future__ import annotations

import calendar
from datetime import datetime

from app.enums import ReviewFrequency

_MONTHS_BY_FREQUENCY = {
    ReviewFrequency.MONTHLY: 1,
    ReviewFrequency.QUARTERLY: 3,
    ReviewFrequency.SEMI_ANNUAL: 6,
    ReviewFrequency.ANNUAL: 12,
}


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def parse_frequency(raw: str | None) -> ReviewFrequency:
    key = str(raw or "").strip().lower().replace("-", "_")
    try:
        return ReviewFrequency(key)
    except ValueError:
        return ReviewFrequency.QUARTERLY


def next_review_due(frequency: ReviewFrequency | str | None, reviewed_at: datetime) -> datetime:
    return _add_months(reviewed_at, _MONTHS_BY_FREQUENCY[parse_frequency(frequency)])

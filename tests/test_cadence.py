from __future__ import annotations

from datetime import datetime

from app.enums import ReviewFrequency
from app.utils.cadence import next_review_due, parse_frequency


def test_next_review_due_adds_calendar_months() -> None:
    base = datetime(2026, 1, 15, 9, 30)
    assert next_review_due("monthly", base) == datetime(2026, 2, 15, 9, 30)
    assert next_review_due(ReviewFrequency.QUARTERLY, base) == datetime(2026, 4, 15, 9, 30)
    assert next_review_due("semi_annual", base) == datetime(2026, 7, 15, 9, 30)
    assert next_review_due("annual", base) == datetime(2027, 1, 15, 9, 30)


def test_next_review_due_clamps_to_month_end() -> None:
    assert next_review_due("monthly", datetime(2026, 1, 31)) == datetime(2026, 2, 28)
    assert next_review_due("quarterly", datetime(2026, 11, 30)) == datetime(2027, 2, 28)
    assert next_review_due("monthly", datetime(2028, 1, 31)) == datetime(2028, 2, 29)


def test_unknown_frequency_falls_back_to_quarterly() -> None:
    assert parse_frequency("fortnightly") == ReviewFrequency.QUARTERLY
    assert parse_frequency(None) == ReviewFrequency.QUARTERLY
    assert parse_frequency("Semi-Annual") == ReviewFrequency.SEMI_ANNUAL
    assert next_review_due("weird", datetime(2026, 3, 1)) == datetime(2026, 6, 1)

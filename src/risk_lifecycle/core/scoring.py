from __future__ import annotations

from app.utils import scoring

from ..models import RatingItem, RatingResult


def rate_item(item: RatingItem) -> RatingResult:
    value = scoring.score(item.likelihood, item.impact)
    bucket = scoring.level(value)
    if not item.decision:
        return RatingResult(
            id=item.id,
            likelihood=item.likelihood,
            impact=item.impact,
            score=value,
            level=bucket.value,
        )
    return RatingResult(
        id=item.id,
        likelihood=item.likelihood,
        impact=item.impact,
        score=value,
        level=bucket.value,
        decision=item.decision,
        executive_approval_required=scoring.requires_executive_approval(bucket, item.decision),
        next_status=scoring.next_treatment_status(bucket, item.decision).value,
    )


def rate_items(items: list[RatingItem]) -> list[RatingResult]:
    return [rate_item(item) for item in items]

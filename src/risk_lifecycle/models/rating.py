from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class RawRatingItem(TypedDict, total=False):
    id: str
    likelihood: str
    impact: str
    decision: str


@dataclass(slots=True, frozen=True)
class RatingItem:
    likelihood: str
    impact: str
    decision: str = ""
    id: str = ""


@dataclass(slots=True, frozen=True)
class RatingResult:
    id: str
    likelihood: str
    impact: str
    score: int
    level: str
    decision: str = ""
    executive_approval_required: bool = False
    next_status: str = ""

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "likelihood": self.likelihood,
            "impact": self.impact,
            "score": self.score,
            "level": self.level,
        }
        if self.id:
            payload["id"] = self.id
        if self.decision:
            payload["decision"] = self.decision
            payload["executive_approval_required"] = self.executive_approval_required
            payload["next_status"] = self.next_status
        return payload


def to_rating_item(payload: RawRatingItem) -> RatingItem:
    likelihood = str(payload.get("likelihood", "") or "").strip().lower()
    impact = str(payload.get("impact", "") or "").strip().lower()
    if not likelihood or not impact:
        raise ValueError("Each item needs 'likelihood' and 'impact'.")
    return RatingItem(
        likelihood=likelihood,
        impact=impact,
        decision=str(payload.get("decision", "") or "").strip().lower(),
        id=str(payload.get("id", "") or ""),
    )

from __future__ import annotations

import json
from pathlib import Path

from ..models import RatingItem, to_rating_item


def load_rating_file(path: Path) -> list[RatingItem]:
    """Accepts a bare list or an object with an ``items`` list."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict) and isinstance(raw.get("items"), list):
        raw = raw["items"]
    if not isinstance(raw, list):
        raise ValueError("Input JSON must be a list of rating items (or {\"items\": [...]}).")

    items: list[RatingItem] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValueError(f"Item {index} must be an object.")
        try:
            items.append(to_rating_item(entry))  # type: ignore[arg-type]
        except ValueError as exc:
            raise ValueError(f"Item {index}: {exc}") from exc
    return items


def dump_result_file(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")

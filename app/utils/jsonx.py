import json
from typing import Any


def to_json(data: Any) -> str:
    """Stable text form for JSON columns: sorted keys, ASCII only, unknown types stringified."""
    return json.dumps(data, ensure_ascii=True, sort_keys=True, default=str)


def from_json(value: str | None, fallback: Any):
    """
    Decode a JSON column. Returns ``fallback`` when the text is empty, malformed,
    or decodes to a different container type than ``fallback`` (so a tags column
    always yields a list and a categories column always yields a dict).
    """
    if not value:
        return fallback
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return fallback
    if isinstance(fallback, (list, dict)) and not isinstance(decoded, type(fallback)):
        return fallback
    return decoded

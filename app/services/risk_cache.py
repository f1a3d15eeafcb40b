from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Any

from app.config import get_settings


@dataclass
class _CacheEntry:
    key: str
    value: Any
    stored_at: datetime = field(default_factory=datetime.utcnow)


_LOCK = Lock()
_ENTRIES: dict[str, _CacheEntry] = {}


def dashboard_key(organization_id: str) -> str:
    return f"risk:dashboard:{organization_id}"


def matrix_key(organization_id: str) -> str:
    return f"risk:matrix:{organization_id}"


def list_key(organization_id: str) -> str:
    return f"risk:list:{organization_id}"


def get(key: str) -> Any | None:
    ttl = timedelta(seconds=max(0, get_settings().risk_cache_ttl_seconds))
    with _LOCK:
        entry = _ENTRIES.get(key)
        if entry is None:
            return None
        if datetime.utcnow() - entry.stored_at > ttl:
            _ENTRIES.pop(key, None)
            return None
        return entry.value


def put(key: str, value: Any) -> None:
    with _LOCK:
        _ENTRIES[key] = _CacheEntry(key=key, value=value)


def invalidate(key: str) -> bool:
    with _LOCK:
        return _ENTRIES.pop(key, None) is not None


def invalidate_risk_caches(organization_id: str) -> None:
    for key in (dashboard_key(organization_id), matrix_key(organization_id), list_key(organization_id)):
        invalidate(key)


def clear() -> None:
    with _LOCK:
        _ENTRIES.clear()

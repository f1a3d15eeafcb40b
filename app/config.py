import logging
import os
from functools import lru_cache
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)

_REVIEW_FREQUENCIES = {"monthly", "quarterly", "semi_annual", "annual"}


def _read_env_file(env_file: Path) -> dict[str, str]:
    """Parse KEY=VALUE lines; `export ` prefixes, comments and surrounding quotes are tolerated."""
    try:
        text = env_file.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return {}

    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        elif " #" in value:
            value = value.split(" #", 1)[0].rstrip()
        if key:
            values[key] = value
    return values


def _load_env_file_if_present() -> None:
    env_file = Path(os.getenv("RISK_LIFECYCLE_ENV_FILE", str(BASE_DIR / ".env"))).expanduser()
    if not env_file.is_file():
        return
    # Real environment variables win over the file.
    for key, value in _read_env_file(env_file).items():
        os.environ.setdefault(key, value)


_load_env_file_if_present()


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default
    return max(minimum, value)


def _review_frequency(raw: str) -> str:
    value = raw.strip().lower().replace("-", "_")
    if value not in _REVIEW_FREQUENCIES:
        logger.warning("Unknown DEFAULT_REVIEW_FREQUENCY=%r, using quarterly", raw)
        return "quarterly"
    return value


class Settings:
    def __init__(self) -> None:
        self.app_name: str = os.getenv("APP_NAME", "GRC Risk Lifecycle")
        self.app_env: str = os.getenv("APP_ENV", "dev")
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

        self.runtime_dir: Path = Path(os.getenv("RUNTIME_DIR", str(BASE_DIR / "data"))).expanduser()
        self.runtime_dir.mkdir(parents=True, exist_ok=True)
        self.database_url: str = os.getenv(
            "DATABASE_URL",
            f"sqlite:///{(self.runtime_dir / 'risk_lifecycle.db').as_posix()}",
        )

        self.cors_allowed_origins: list[str] = _env_list("CORS_ALLOWED_ORIGINS", "http://127.0.0.1,http://localhost")
        self.cors_allow_origin_regex: str = os.getenv(
            "CORS_ALLOW_ORIGIN_REGEX",
            r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        )

        # Empty URL keeps notifications in the database only.
        self.notification_webhook_url: str = os.getenv("NOTIFICATION_WEBHOOK_URL", "").strip()
        self.notification_timeout_seconds: int = _env_int("NOTIFICATION_TIMEOUT_SECONDS", 5, minimum=1)

        self.risk_cache_ttl_seconds: int = _env_int("RISK_CACHE_TTL_SECONDS", 300)
        self.default_review_frequency: str = _review_frequency(os.getenv("DEFAULT_REVIEW_FREQUENCY", "quarterly"))
        self.history_page_size: int = _env_int("HISTORY_PAGE_SIZE", 20, minimum=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()

from __future__ import annotations

from importlib import metadata
from pathlib import Path
import tomllib

from .core.scoring import rate_items

__version__ = "0.1.0"
DIST_NAME = "grc-risk-lifecycle"


def _version_from_pyproject(path: Path) -> str:
    try:
        project = tomllib.loads(path.read_text(encoding="utf-8")).get("project", {}) or {}
    except (OSError, tomllib.TOMLDecodeError):
        return ""
    if project.get("name") != DIST_NAME:
        return ""
    return str(project.get("version", "")).strip()


def get_runtime_version() -> str:
    """Source checkout's pyproject wins over installed metadata, which wins over the baked-in default."""
    for path in (Path.cwd() / "pyproject.toml", Path(__file__).resolve().parents[2] / "pyproject.toml"):
        if path.is_file():
            version = _version_from_pyproject(path)
            if version:
                return version
    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        return __version__


__all__ = ["__version__", "get_runtime_version", "rate_items"]

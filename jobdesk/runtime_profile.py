from __future__ import annotations

from collections.abc import Mapping
import os


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def env_int(name: str, *, default: int, minimum: int = 0, environ: Mapping[str, str] | None = None) -> int:
    raw = _env(environ).get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def env_bool(name: str, *, default: bool, environ: Mapping[str, str] | None = None) -> bool:
    raw = _env(environ).get(name, "").strip()
    if not raw:
        return default
    return _as_bool(raw)


def archive_lookback_years(environ: Mapping[str, str] | None = None) -> int:
    return env_int("JOBDESK_ARCHIVE_LOOKBACK_YEARS", default=5, minimum=1, environ=environ)


def search_window(environ: Mapping[str, str] | None = None) -> int:
    return env_int("JOBDESK_SEARCH_WINDOW", default=500, minimum=1, environ=environ)


def page_size_bounds(environ: Mapping[str, str] | None = None) -> tuple[int, int]:
    default = env_int("JOBDESK_PAGE_SIZE_DEFAULT", default=20, minimum=1, environ=environ)
    maximum = env_int("JOBDESK_PAGE_SIZE_MAX", default=100, minimum=1, environ=environ)
    return min(default, maximum), maximum

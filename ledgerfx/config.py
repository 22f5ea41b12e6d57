from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Mapping

from ledgerfx.currencies import validate_currency
from ledgerfx.errors import InvalidInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    default_currency: str = "USD"
    cache_capacity: int = 200
    cache_ttl_seconds: float = 60 * 60
    fetch_timeout_seconds: float = 10.0
    fallback_ttl_seconds: float = 5 * 60
    primary_api_url: str = "https://api.exchangerate-api.com/v4/latest"
    fallback_api_url: str = "https://api.frankfurter.app"
    use_static_fallback: bool = True
    database_url: str = "sqlite:///./ledgerfx.db"
    frontend_origin: str = "http://localhost:3000"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = Settings()
    return Settings(
        default_currency=_currency(env, "DEFAULT_CURRENCY", defaults.default_currency),
        cache_capacity=int(_positive(env, "FX_CACHE_CAPACITY", defaults.cache_capacity, int)),
        cache_ttl_seconds=_positive(env, "FX_CACHE_TTL_SECONDS", defaults.cache_ttl_seconds, float),
        fetch_timeout_seconds=_positive(env, "FX_FETCH_TIMEOUT_SECONDS", defaults.fetch_timeout_seconds, float),
        fallback_ttl_seconds=_positive(env, "FX_FALLBACK_TTL_SECONDS", defaults.fallback_ttl_seconds, float),
        primary_api_url=env.get("FX_PRIMARY_API_URL", defaults.primary_api_url).rstrip("/"),
        fallback_api_url=env.get("FX_FALLBACK_API_URL", defaults.fallback_api_url).rstrip("/"),
        use_static_fallback=_flag(env, "FX_USE_STATIC_FALLBACK", defaults.use_static_fallback),
        database_url=env.get("DATABASE_URL", defaults.database_url),
        frontend_origin=env.get("FRONTEND_ORIGIN", defaults.frontend_origin),
    )


def _currency(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name, default)
    try:
        return validate_currency(raw)
    except InvalidInput:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _positive(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default
    if not 0 < value < float("inf"):
        logger.warning("Ignoring out-of-range %s=%r, using %s", name, raw, default)
        return default
    return value


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}

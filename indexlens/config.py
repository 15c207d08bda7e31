"""
Runtime settings.

Values come from the process environment, with a `.env` file at the repo root
loaded first (existing environment variables win).

  FMP_API_KEY              Financial Modeling Prep API key (required for fetches)
  FMP_BASE_URL             default https://financialmodelingprep.com
  FMP_REQUEST_INTERVAL_MS  minimum gap between provider calls (global), default 150
  FMP_TIMEOUT_S            per-request timeout, default 20
  FMP_MAX_RETRIES          attempts on 429 / 5xx, default 3
  DATABASE_URL             SQLAlchemy URL, default sqlite file beside the package
  BATCH_CONCURRENCY        symbols processed at once in a batch job, default 1
  BATCH_DELAY_MS           pause between batch tasks, default 150
  PROFILE_CACHE_TTL_S      profile / FX cache lifetime, default 86400
  BASE_CURRENCY            currency DCF values are reported in, default USD
  RECENT_IPO_OVERRIDES     comma-separated symbols whose 10Y return is always null
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_REPO_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_REPO_ROOT / ".env", override=False)

_DEFAULT_DB_PATH = Path(__file__).resolve().parent / "indexlens.db"

# Symbols whose profile ipoDate has proven unreliable; 10Y figures are forced null.
DEFAULT_RECENT_IPO_OVERRIDES: frozenset[str] = frozenset(
    ["ABNB", "ARM", "CEG", "COIN", "DASH", "GEHC", "KVUE", "RIVN", "SOLV", "VLTO"]
)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[Config] %s=%r is not an integer, using %d", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[Config] %s=%r is not a number, using %s", name, raw, default)
        return default


def _symbols_env(name: str, default: frozenset[str]) -> frozenset[str]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return frozenset(s.strip().upper() for s in raw.split(",") if s.strip())


@dataclass(frozen=True)
class Settings:
    fmp_api_key: str = ""
    fmp_base_url: str = "https://financialmodelingprep.com"
    fmp_request_interval_ms: int = 150
    fmp_timeout_s: float = 20.0
    fmp_max_retries: int = 3
    database_url: str = f"sqlite:///{_DEFAULT_DB_PATH}"
    batch_concurrency: int = 1
    batch_delay_ms: int = 150
    profile_cache_ttl_s: float = 86400.0
    base_currency: str = "USD"
    recent_ipo_overrides: frozenset[str] = field(default_factory=lambda: DEFAULT_RECENT_IPO_OVERRIDES)


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        fmp_api_key=os.environ.get("FMP_API_KEY", ""),
        fmp_base_url=os.environ.get("FMP_BASE_URL", Settings.fmp_base_url).rstrip("/"),
        fmp_request_interval_ms=_int_env("FMP_REQUEST_INTERVAL_MS", 150),
        fmp_timeout_s=_float_env("FMP_TIMEOUT_S", 20.0),
        fmp_max_retries=max(1, _int_env("FMP_MAX_RETRIES", 3)),
        database_url=os.environ.get("DATABASE_URL", Settings.database_url),
        batch_concurrency=max(1, _int_env("BATCH_CONCURRENCY", 1)),
        batch_delay_ms=max(0, _int_env("BATCH_DELAY_MS", 150)),
        profile_cache_ttl_s=_float_env("PROFILE_CACHE_TTL_S", 86400.0),
        base_currency=os.environ.get("BASE_CURRENCY", "USD").upper(),
        recent_ipo_overrides=_symbols_env("RECENT_IPO_OVERRIDES", DEFAULT_RECENT_IPO_OVERRIDES),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()

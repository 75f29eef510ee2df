from __future__ import annotations

from dataclasses import dataclass, field
from dotenv import load_dotenv
import os
from typing import Dict, Optional

from profilepool.cache import DEFAULT_MAX_ENTRIES, DEFAULT_TTLS
from profilepool.fetch import DEFAULT_BASE_DELAY_S, DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_S
from profilepool.lens_api import LENSCAN_API_BASE, WEB3BIO_API_BASE
from profilepool.lens_collect import LENS_MIN_SCORE, LENS_TARGET_POOL_SIZE
from profilepool.neynar_api import NEYNAR_API_BASE
from profilepool.rate_limit import DEFAULT_REQUEST_LIMIT, DEFAULT_WINDOW_S
from profilepool.sources import ENRICH_BATCH_DELAY_S, ENRICH_BATCH_SIZE, LEDGER_PAGE_DELAY_S, MIN_FOLLOWERS


def _getenv(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise ValueError(f"Missing required env var: {name}")
    return val


def _getenv_float(name: str, default: str) -> float:
    try:
        return float(_getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be a number") from None


def _getenv_int(name: str, default: str) -> int:
    try:
        return int(_getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None


def _parse_ttls(s: str) -> Dict[str, float]:
    """Parse "trending:180,search:120" into a full TTL table (unlisted tiers keep defaults)."""
    ttls = dict(DEFAULT_TTLS)
    for part in (p.strip() for p in s.split(",")):
        if not part:
            continue
        if ":" not in part:
            raise ValueError(f"Invalid TTL entry: {part} (expected type:seconds)")
        tier, seconds = (x.strip() for x in part.split(":", 1))
        if tier not in DEFAULT_TTLS:
            raise ValueError(f"Unknown TTL tier: {tier} (expected one of {', '.join(DEFAULT_TTLS)})")
        try:
            ttl = float(seconds)
        except ValueError:
            raise ValueError(f"Invalid TTL for {tier}: {seconds}") from None
        if ttl <= 0:
            raise ValueError(f"TTL for {tier} must be > 0")
        ttls[tier] = ttl
    return ttls


@dataclass(frozen=True)
class Settings:
    neynar_api_key: str = ""
    neynar_api_base: str = NEYNAR_API_BASE
    lenscan_api_base: str = LENSCAN_API_BASE
    web3bio_api_base: str = WEB3BIO_API_BASE
    web3bio_api_key: str = ""

    http_timeout_s: float = DEFAULT_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_base_delay_s: float = DEFAULT_BASE_DELAY_S

    rate_limit: int = DEFAULT_REQUEST_LIMIT
    rate_window_s: float = DEFAULT_WINDOW_S

    cache_ttls: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    cache_max_entries: int = DEFAULT_MAX_ENTRIES

    enrich_batch_size: int = ENRICH_BATCH_SIZE
    enrich_batch_delay_s: float = ENRICH_BATCH_DELAY_S
    page_delay_s: float = LEDGER_PAGE_DELAY_S

    min_followers: int = MIN_FOLLOWERS
    min_score: float = 0.0
    lens_min_score: float = LENS_MIN_SCORE
    target_pool_size: int = LENS_TARGET_POOL_SIZE
    snapshot_path: str = "public/data/lens-users.json"


def load_settings() -> Settings:
    load_dotenv()

    neynar_api_key = _getenv("NEYNAR_API_KEY", "").strip()
    neynar_api_base = _getenv("NEYNAR_API_BASE", NEYNAR_API_BASE).strip()
    lenscan_api_base = _getenv("LENSCAN_API_BASE", LENSCAN_API_BASE).strip()
    web3bio_api_base = _getenv("WEB3BIO_API_BASE", WEB3BIO_API_BASE).strip()
    web3bio_api_key = _getenv("WEB3BIO_API_KEY", "").strip()

    http_timeout_s = _getenv_float("PROFILEPOOL_HTTP_TIMEOUT_S", str(DEFAULT_TIMEOUT_S))
    max_retries = _getenv_int("PROFILEPOOL_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))
    retry_base_delay_s = _getenv_float("PROFILEPOOL_RETRY_BASE_DELAY_S", str(DEFAULT_BASE_DELAY_S))

    rate_limit = _getenv_int("PROFILEPOOL_RATE_LIMIT", str(DEFAULT_REQUEST_LIMIT))
    rate_window_s = _getenv_float("PROFILEPOOL_RATE_WINDOW_S", str(DEFAULT_WINDOW_S))

    cache_ttls = _parse_ttls(_getenv("PROFILEPOOL_CACHE_TTLS", ""))
    cache_max_entries = _getenv_int("PROFILEPOOL_CACHE_MAX_ENTRIES", str(DEFAULT_MAX_ENTRIES))

    enrich_batch_size = _getenv_int("PROFILEPOOL_ENRICH_BATCH_SIZE", str(ENRICH_BATCH_SIZE))
    enrich_batch_delay_s = _getenv_float("PROFILEPOOL_ENRICH_BATCH_DELAY_S", str(ENRICH_BATCH_DELAY_S))
    page_delay_s = _getenv_float("PROFILEPOOL_PAGE_DELAY_S", str(LEDGER_PAGE_DELAY_S))

    min_followers = _getenv_int("PROFILEPOOL_MIN_FOLLOWERS", str(MIN_FOLLOWERS))
    min_score = _getenv_float("PROFILEPOOL_MIN_SCORE", "0")
    lens_min_score = _getenv_float("PROFILEPOOL_LENS_MIN_SCORE", str(LENS_MIN_SCORE))
    target_pool_size = _getenv_int("PROFILEPOOL_TARGET_POOL_SIZE", str(LENS_TARGET_POOL_SIZE))
    snapshot_path = _getenv("PROFILEPOOL_SNAPSHOT_PATH", "public/data/lens-users.json").strip()

    if http_timeout_s <= 0:
        raise ValueError("PROFILEPOOL_HTTP_TIMEOUT_S must be > 0")
    for name, value in (
        ("PROFILEPOOL_MAX_RETRIES", max_retries),
        ("PROFILEPOOL_RETRY_BASE_DELAY_S", retry_base_delay_s),
        ("PROFILEPOOL_RATE_LIMIT", rate_limit),
        ("PROFILEPOOL_ENRICH_BATCH_DELAY_S", enrich_batch_delay_s),
        ("PROFILEPOOL_PAGE_DELAY_S", page_delay_s),
        ("PROFILEPOOL_MIN_FOLLOWERS", min_followers),
        ("PROFILEPOOL_TARGET_POOL_SIZE", target_pool_size),
    ):
        if value < 0:
            raise ValueError(f"{name} must be >= 0")
    if rate_window_s <= 0:
        raise ValueError("PROFILEPOOL_RATE_WINDOW_S must be > 0")
    if cache_max_entries < 1:
        raise ValueError("PROFILEPOOL_CACHE_MAX_ENTRIES must be >= 1")
    if enrich_batch_size < 1:
        raise ValueError("PROFILEPOOL_ENRICH_BATCH_SIZE must be >= 1")

    return Settings(
        neynar_api_key=neynar_api_key,
        neynar_api_base=neynar_api_base,
        lenscan_api_base=lenscan_api_base,
        web3bio_api_base=web3bio_api_base,
        web3bio_api_key=web3bio_api_key,
        http_timeout_s=http_timeout_s,
        max_retries=max_retries,
        retry_base_delay_s=retry_base_delay_s,
        rate_limit=rate_limit,
        rate_window_s=rate_window_s,
        cache_ttls=cache_ttls,
        cache_max_entries=cache_max_entries,
        enrich_batch_size=enrich_batch_size,
        enrich_batch_delay_s=enrich_batch_delay_s,
        page_delay_s=page_delay_s,
        min_followers=min_followers,
        min_score=min_score,
        lens_min_score=lens_min_score,
        target_pool_size=target_pool_size,
        snapshot_path=snapshot_path,
    )

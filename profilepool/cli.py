from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from profilepool.aggregator import DEFAULT_USER_COUNT, QUERY_TYPES, ProfileAggregator
from profilepool.cache import ResponseCache
from profilepool.config import Settings, load_settings
from profilepool.errors import ProfilePoolError
from profilepool.lens_api import LenscanClient, Web3BioClient
from profilepool.lens_collect import LensRewardsCollector
from profilepool.models import Profile
from profilepool.neynar_api import NeynarClient
from profilepool.rate_limit import RateBudget
from profilepool.reporting import build_snapshot, write_snapshot
from profilepool.scoring import score_profile
from profilepool.sources import (
    ActiveFeedSource,
    CuratedSource,
    RewardRecipientSource,
    SearchSource,
    TrendingFeedSource,
)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_aggregator(s: Settings) -> ProfileAggregator:
    budget = RateBudget(limit=s.rate_limit, window_s=s.rate_window_s)
    client = NeynarClient(
        api_key=s.neynar_api_key,
        base_url=s.neynar_api_base,
        timeout_s=s.http_timeout_s,
        max_retries=s.max_retries,
        base_delay_s=s.retry_base_delay_s,
        budget=budget,
    )
    if not client.enabled:
        logger.warning("NEYNAR_API_KEY not set: discovery will fall back to placeholder profiles")
    return ProfileAggregator(
        active=ActiveFeedSource(client),
        trending=TrendingFeedSource(client),
        curated=CuratedSource(client),
        search=SearchSource(client),
        client=client,
        cache=ResponseCache(ttls=s.cache_ttls, max_entries=s.cache_max_entries),
        budget=budget,
        min_score=s.min_score,
    )


def build_lens_collector(s: Settings, snapshot_path: Optional[str] = None) -> LensRewardsCollector:
    # Lenscan and web3.bio are separate providers, each with its own allowance
    ledger = LenscanClient(
        base_url=s.lenscan_api_base,
        timeout_s=s.http_timeout_s,
        max_retries=s.max_retries,
        base_delay_s=s.retry_base_delay_s,
        budget=RateBudget(limit=s.rate_limit, window_s=s.rate_window_s),
    )
    resolver = Web3BioClient(
        base_url=s.web3bio_api_base,
        api_key=s.web3bio_api_key,
        timeout_s=s.http_timeout_s,
        max_retries=s.max_retries,
        base_delay_s=s.retry_base_delay_s,
        budget=RateBudget(limit=s.rate_limit, window_s=s.rate_window_s),
    )
    recipients = RewardRecipientSource(
        ledger=ledger,
        resolver=resolver,
        page_delay_s=s.page_delay_s,
        batch_size=s.enrich_batch_size,
        batch_delay_s=s.enrich_batch_delay_s,
    )
    return LensRewardsCollector(
        ledger=ledger,
        recipients=recipients,
        snapshot_path=snapshot_path or s.snapshot_path,
        min_score=s.lens_min_score,
        target_count=s.target_pool_size,
    )


def _print_profiles(profiles: List[Profile]) -> None:
    print(f"{'Rank':<6} {'Username':<28} {'Network':<10} {'Followers':>10} {'Score':>7}")
    print("-" * 65)
    for rank, p in enumerate(profiles, start=1):
        print(f"{rank:<6} {p.username[:27]:<28} {p.network:<10} {p.follower_count:>10} {score_profile(p):>7.0f}")


def cmd_discover(
    count: int,
    min_followers: Optional[int],
    query_type: str,
    search_term: Optional[str],
    out: Optional[str],
) -> None:
    s = load_settings()
    agg = build_aggregator(s)
    profiles = agg.discover(
        count,
        min_followers=s.min_followers if min_followers is None else min_followers,
        type=query_type,
        search_term=search_term,
    )
    _print_profiles(profiles)
    if out:
        write_snapshot(out, build_snapshot(profiles))
        print(f"Snapshot: {out}")
    print(f"OK: discovered {len(profiles)}/{count} {query_type} profiles")


def cmd_lookup(fids: List[int]) -> None:
    s = load_settings()
    agg = build_aggregator(s)
    profiles = agg.lookup(fids)
    _print_profiles(profiles)
    missing = len(set(fids)) - len(profiles)
    if missing:
        print(f"WARNING: {missing} FID(s) not found")
    print(f"OK: looked up {len(profiles)} profiles")


def cmd_collect_lens(out: Optional[str]) -> None:
    s = load_settings()
    collector = build_lens_collector(s, snapshot_path=out)
    pool = collector.collect()
    print(f"OK: collected {len(pool)} Lens profiles")
    if pool:
        print(f"Snapshot: {collector.snapshot_path}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="profilepool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_discover = sub.add_parser("discover", help="Discover a ranked pool of game-ready profiles")
    p_discover.add_argument("--count", type=int, default=DEFAULT_USER_COUNT)
    p_discover.add_argument("--min-followers", type=int, default=None,
                            help="Follower floor (default: PROFILEPOOL_MIN_FOLLOWERS)")
    p_discover.add_argument("--type", dest="query_type", choices=QUERY_TYPES, default="trending")
    p_discover.add_argument("--search", type=str, default=None, help="Search term (with --type search)")
    p_discover.add_argument("--out", type=str, default=None, help="Write the pool as a JSON snapshot")

    p_lookup = sub.add_parser("lookup", help="Fetch Farcaster users by FID")
    p_lookup.add_argument("fids", type=int, nargs="+")

    p_lens = sub.add_parser("collect-lens", help="Build the Lens pool from rewards recipients")
    p_lens.add_argument("--out", type=str, default=None, help="Snapshot path (default: PROFILEPOOL_SNAPSHOT_PATH)")

    args = parser.parse_args(argv)
    setup_logging(bool(args.verbose))

    try:
        if args.cmd == "discover":
            cmd_discover(
                count=int(args.count),
                min_followers=args.min_followers,
                query_type=str(args.query_type),
                search_term=args.search,
                out=args.out,
            )
            return
        if args.cmd == "lookup":
            cmd_lookup([int(f) for f in args.fids])
            return
        if args.cmd == "collect-lens":
            cmd_collect_lens(out=args.out)
            return
    except (ProfilePoolError, ValueError) as e:
        raise SystemExit(f"ERROR: {e}")

    raise SystemExit("Unknown command")

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from profilepool.cache import ResponseCache
from profilepool.errors import ProfilePoolError, RateLimitedError
from profilepool.models import Profile
from profilepool.neynar_api import NeynarClient, parse_user
from profilepool.rate_limit import RateBudget
from profilepool.scoring import score_profiles
from profilepool.selection import select_profiles
from profilepool.sources import FALLBACK_SOURCE, MIN_FOLLOWERS

logger = logging.getLogger(__name__)

DEFAULT_USER_COUNT = 16
ACTIVE_STEP_MAX = 15
QUERY_TYPES = ("trending", "active", "quality", "search")

# (type, count) queries pre-fetched by warm_up()
WARM_UP_QUERIES: Tuple[Tuple[str, int], ...] = (("trending", 20), ("active", 15), ("quality", 15))


class ProfileAggregator:
    """
    Discovery entry point: runs the source fallback chain, scores and ranks.

    Sources are tried in priority order, each only while the pool is still
    short. A failing source contributes zero profiles and the chain moves on;
    nothing is retried at this level.
    """

    def __init__(
        self,
        *,
        active: Any,
        trending: Any,
        curated: Any,
        search: Any = None,
        client: Optional[NeynarClient] = None,
        cache: Optional[ResponseCache] = None,
        budget: Optional[RateBudget] = None,
        min_score: float = 0.0,
    ):
        self.active = active
        self.trending = trending
        self.curated = curated
        self.search = search
        self.client = client
        self.cache = cache if cache is not None else ResponseCache()
        self.budget = budget
        self.min_score = min_score

    def _plan(self, query_type: str, count: int) -> List[Tuple[Any, int]]:
        """(source, max profiles to ask it for) in priority order."""
        if query_type == "search":
            return [(self.search, count)]
        if query_type == "quality":
            return [(self.curated, count)]
        return [
            (self.active, min(ACTIVE_STEP_MAX, count)),
            (self.trending, count),
            (self.curated, count),
        ]

    def _check_budget(self) -> None:
        if self.budget is not None and not self.budget.can_make_request():
            raise RateLimitedError(self.budget.get_status())

    def discover(
        self,
        count: int = DEFAULT_USER_COUNT,
        min_followers: int = MIN_FOLLOWERS,
        type: str = "trending",
        search_term: Optional[str] = None,
    ) -> List[Profile]:
        """
        Build a ranked pool of at most count game-ready profiles.

        Args:
            count: Pool size wanted; 0 returns [] without any request
            min_followers: Follower floor for feed sources (curated and search ignore it)
            type: "trending", "active", "quality" or "search"
            search_term: Required for type="search"

        Returns:
            Profiles sorted by quality score, best first. May be shorter than
            count; an empty list is a normal outcome.

        Raises:
            ValueError: invalid arguments
            RateLimitedError: budget exhausted before anything was collected
        """
        if count < 0:
            raise ValueError("count must be >= 0")
        if min_followers < 0:
            raise ValueError("min_followers must be >= 0")
        if type not in QUERY_TYPES:
            raise ValueError(f"Unknown query type {type!r}, expected one of {', '.join(QUERY_TYPES)}")
        if type == "search":
            if not (search_term or "").strip():
                raise ValueError("search_term is required for type='search'")
            if self.search is None:
                raise ValueError("No search source configured")
        if count == 0:
            return []

        params: Dict[str, Any] = {
            "count": count,
            "min_followers": min_followers,
            "type": type,
            "search_term": search_term if type == "search" else None,
        }
        cached = self.cache.get(params)
        if cached is not None:
            return list(cached)

        self._check_budget()

        filters = {"min_followers": min_followers, "search_term": search_term}
        collected: Dict[Tuple[str, str], Profile] = {}
        usernames: Set[str] = set()
        rate_limited = False

        for source, limit in self._plan(type, count):
            need = min(limit, count - len(collected))
            if need <= 0:
                continue
            name = getattr(source, "name", "source")
            # Later sources skip what earlier ones already supplied
            step_filters = dict(filters, exclude_ids=set(collected), exclude_usernames=set(usernames))
            try:
                profiles = source.fetch(need, step_filters)
            except RateLimitedError as e:
                if not collected:
                    raise
                logger.warning("Source %s rate limited, keeping %d profiles: %s", name, len(collected), e)
                rate_limited = True
                continue
            except Exception as e:
                # One broken source never fails discovery
                logger.warning("Source %s failed, skipping: %s", name, e)
                continue

            added = 0
            for p in profiles:
                if len(collected) >= count:
                    break
                if p.identity in collected or p.username.lower() in usernames:
                    continue
                collected[p.identity] = p
                usernames.add(p.username.lower())
                added += 1
            logger.info("Source %s added %d profiles (%d/%d)", name, added, len(collected), count)

        scored = score_profiles(collected.values())
        result = [sp.profile for sp in select_profiles(scored, count, self.min_score)]

        if not result or rate_limited or any(p.source == FALLBACK_SOURCE for p in result):
            logger.info("Not caching degraded %s pool of %d profiles", type, len(result))
        else:
            self.cache.set(params, tuple(result))
        return result

    def lookup(self, fids: Iterable[int]) -> List[Profile]:
        """
        Fetch specific Farcaster users by FID, in the order requested.
        Unknown FIDs are left out.
        """
        fid_list: List[int] = list(dict.fromkeys(int(f) for f in fids))
        if not fid_list:
            return []
        if self.client is None:
            raise ProfilePoolError("No Neynar client configured for lookup")

        params = {"type": "lookup", "fids": fid_list}
        cached = self.cache.get(params)
        if cached is not None:
            return list(cached)

        self._check_budget()
        by_fid: Dict[int, Profile] = {}
        for raw in self.client.fetch_users_bulk(fid_list):
            p = parse_user(raw, source="lookup")
            if p is not None:
                by_fid[int(p.id)] = p
        result = tuple(by_fid[f] for f in fid_list if f in by_fid)
        self.cache.set(params, result)
        return list(result)

    def warm_up(self, queries: Sequence[Tuple[str, int]] = WARM_UP_QUERIES) -> int:
        """
        Pre-populate the cache with the common discovery queries.

        Returns:
            Number of queries that completed
        """
        done = 0
        for query_type, count in queries:
            if self.budget is not None and not self.budget.can_make_request():
                logger.warning("Rate budget exhausted, skipping cache warm-up")
                break
            try:
                profiles = self.discover(count, type=query_type)
            except ProfilePoolError as e:
                logger.warning("Warm-up of %s failed: %s", query_type, e)
                continue
            done += 1
            logger.info("Warmed %s cache with %d profiles", query_type, len(profiles))
        return done

"""
Source adapters.

Every adapter exposes fetch(count, filters) -> List[Profile] and hides its
provider's payload shape behind the canonical Profile. Provider errors are
raised as ProfilePoolError subclasses; deciding whether a failure is fatal is
left to the caller.
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from profilepool.errors import ProfilePoolError, RateLimitedError
from profilepool.lens_api import LenscanClient, Web3BioClient
from profilepool.models import FARCASTER, Profile, RewardRecord
from profilepool.neynar_api import NeynarClient, cast_engagement, parse_user
from profilepool.utils import as_dict, shuffled

logger = logging.getLogger(__name__)

MIN_FOLLOWERS = 100
MAX_FEED_PAGES = 5

# Known-good Farcaster accounts used as the last-resort pool
DEFAULT_CURATED_FIDS: Tuple[int, ...] = (
    3, 2, 1, 5650, 575, 99, 213, 315, 2433, 1309, 3621, 602,
    6131, 194, 239, 8513, 1371, 5577, 1048, 6553, 3289, 2486, 1842, 457,
)

FALLBACK_USERNAMES: Tuple[str, ...] = (
    "vitalik", "dwr", "balajis", "linda", "jessepollak", "rish", "manan", "ted",
    "horsefacts", "proxystudio", "keccers", "july", "varunsrin", "colin",
    "davidfurlong", "nolanz", "trevor", "luc", "schmoodles", "gami",
)
FALLBACK_SOURCE = "fallback"

LEDGER_PAGE_SIZE = 25
LEDGER_MAX_RECIPIENTS = 500
LEDGER_PAGE_DELAY_S = 1.5
ENRICH_BATCH_SIZE = 10
ENRICH_BATCH_DELAY_S = 1.0


def qualifies(p: Profile, min_followers: int) -> bool:
    """Game-ready: enough followers, an avatar and a username."""
    return p.follower_count >= min_followers and p.is_usable()


def _min_followers(filters: Optional[Mapping[str, Any]]) -> int:
    value = as_dict(filters).get("min_followers")
    return MIN_FOLLOWERS if value is None else int(value)


@dataclass
class TrendingFeedSource:
    """Unique authors of the Neynar trending feed."""

    client: NeynarClient
    time_window: str = "24h"
    max_pages: int = MAX_FEED_PAGES
    rng: Optional[random.Random] = None
    name: str = "trending"

    def fetch(self, count: int, filters: Optional[Mapping[str, Any]] = None) -> List[Profile]:
        if count <= 0:
            return []
        min_followers = _min_followers(filters)

        authors: Dict[Tuple[str, str], Profile] = {}
        tallies: Dict[Tuple[str, str], List[int]] = {}
        cursor: Optional[str] = None

        for page in range(1, self.max_pages + 1):
            casts, cursor = self.client.feed_page(cursor=cursor, time_window=self.time_window)
            for cast in casts:
                author = parse_user(as_dict(cast.get("author")), source=self.name)
                if author is None:
                    continue
                key = author.identity
                if key not in authors:
                    if len(authors) >= count or not qualifies(author, min_followers):
                        continue
                    authors[key] = author
                    tallies[key] = [0, 0, 0]
                for i, n in enumerate(cast_engagement(cast)):
                    tallies[key][i] += n

            logger.debug("%s feed page %d: %d qualifying authors", self.name, page, len(authors))
            if len(authors) >= count or not cursor or not casts:
                break

        profiles = [
            replace(p, like_count=tallies[k][0], recast_count=tallies[k][1], reply_count=tallies[k][2])
            for k, p in authors.items()
        ]
        return shuffled(profiles, self.rng)


@dataclass
class ActiveFeedSource(TrendingFeedSource):
    """Authors trending over the last hour, i.e. currently active users."""

    time_window: str = "1h"
    name: str = "active"


def fallback_profiles(fids: Sequence[int] = DEFAULT_CURATED_FIDS) -> Iterator[Profile]:
    """
    Deterministic placeholder profiles, endless.

    The first ones reuse the given FIDs; after that synthetic FIDs from 1000
    upward are used. Same index, same profile.
    """
    i = 0
    while True:
        fid = fids[i] if i < len(fids) else 1000 + i
        if i < len(FALLBACK_USERNAMES):
            username = FALLBACK_USERNAMES[i]
        else:
            username = f"user{i}"
        yield Profile(
            id=fid,
            network=FARCASTER,
            username=username,
            display_name=f"Farcaster User {i + 1}",
            pfp_url=f"/game-photos/{(i % 8) + 1}.avif",
            bio="Building the future of social",
            follower_count=1000 + i * 123,
            following_count=100 + i * 47,
            verified_addresses=(f"0x{i:040x}",),
            source=FALLBACK_SOURCE,
        )
        i += 1


@dataclass
class CuratedSource:
    """
    Allow-listed accounts, looked up in bulk.

    Last resort of the discovery chain: when the lookup fails or comes back
    short the remainder is filled with placeholder profiles, so fetch() always
    returns exactly count profiles. No follower floor is applied.

    filters may carry "exclude_ids" (Profile.identity tuples) and
    "exclude_usernames" for profiles the caller already has; those are never
    sampled nor returned, so the count still holds after merging.
    """

    client: Optional[NeynarClient] = None
    fids: Sequence[int] = DEFAULT_CURATED_FIDS
    rng: Optional[random.Random] = None
    name: str = "curated"

    def fetch(self, count: int, filters: Optional[Mapping[str, Any]] = None) -> List[Profile]:
        if count <= 0:
            return []

        f = as_dict(filters)
        taken_ids: Set[Tuple[str, str]] = set(f.get("exclude_ids") or ())
        taken_names: Set[str] = {str(u).lower() for u in (f.get("exclude_usernames") or ())}

        def take(p: Profile) -> bool:
            if p.identity in taken_ids or p.username.lower() in taken_names:
                return False
            taken_ids.add(p.identity)
            taken_names.add(p.username.lower())
            return True

        candidates = [fid for fid in self.fids if (FARCASTER, str(fid)) not in taken_ids]
        sample = shuffled(candidates, self.rng)[:2 * count]
        profiles: List[Profile] = []

        if self.client is not None and self.client.enabled and sample:
            try:
                raw_users = self.client.fetch_users_bulk(sample)
            except ProfilePoolError as e:
                logger.warning("Curated bulk lookup failed, using placeholders: %s", e)
                raw_users = []
            for raw in raw_users:
                p = parse_user(raw, source=self.name)
                if p is None or not p.is_usable() or not take(p):
                    continue
                profiles.append(p)
                if len(profiles) >= count:
                    break

        if len(profiles) < count:
            for p in fallback_profiles(self.fids):
                if len(profiles) >= count:
                    break
                if take(p):
                    profiles.append(p)

        return profiles


@dataclass
class SearchSource:
    client: NeynarClient
    max_pages: int = MAX_FEED_PAGES
    name: str = "search"

    def fetch(self, count: int, filters: Optional[Mapping[str, Any]] = None) -> List[Profile]:
        term = str(as_dict(filters).get("search_term") or "").strip()
        if not term:
            raise ValueError("search requires a non-empty search_term")
        if count <= 0:
            return []

        found: Dict[Tuple[str, str], Profile] = {}
        cursor: Optional[str] = None
        for _ in range(self.max_pages):
            users, cursor = self.client.search_users_page(term, cursor=cursor)
            for raw in users:
                p = parse_user(raw, source=self.name)
                # Search results skip the follower floor
                if p is None or not p.is_usable() or p.identity in found:
                    continue
                found[p.identity] = p
                if len(found) >= count:
                    break
            if len(found) >= count or not cursor or not users:
                break
        return list(found.values())


@dataclass
class RewardRecipientSource:
    """
    Lens accounts that received rewards from given distributions.

    Recipients come from the Lenscan ledger, paged largest amount first, and
    are resolved to Lens profiles through web3.bio in fixed-size concurrent
    batches. Reward amount and distribution are joined onto each profile.
    """

    ledger: LenscanClient
    resolver: Web3BioClient
    distribution_ids: Sequence[str] = ()
    page_size: int = LEDGER_PAGE_SIZE
    max_recipients: int = LEDGER_MAX_RECIPIENTS
    page_delay_s: float = LEDGER_PAGE_DELAY_S
    batch_size: int = ENRICH_BATCH_SIZE
    batch_delay_s: float = ENRICH_BATCH_DELAY_S
    sleep: Callable[[float], None] = field(default=time.sleep)
    name: str = "rewards"

    def fetch_recipients(self, distribution_id: str, limit: Optional[int] = None) -> List[RewardRecord]:
        """
        Page through one distribution's transfers.

        A page shorter than requested is the last one. A failed page ends
        pagination; whatever was collected before it is returned.
        """
        limit = self.max_recipients if limit is None else limit
        records: List[RewardRecord] = []
        page = 1
        while len(records) < limit:
            want = min(self.page_size, limit - len(records))
            try:
                rows = self.ledger.fetch_transfers_page(distribution_id, page=page, limit=want)
            except ProfilePoolError as e:
                logger.warning("Ledger page %d of %s failed, stopping: %s", page, distribution_id, e)
                break

            records.extend(rows[:want])
            logger.info("Distribution %s page %d: %d recipients (%d total)",
                        distribution_id, page, len(rows), len(records))
            if len(rows) < want:
                break
            page += 1
            if self.page_delay_s > 0 and len(records) < limit:
                self.sleep(self.page_delay_s)
        return records

    def _resolve(self, address: str) -> Optional[Profile]:
        try:
            return self.resolver.fetch_lens_profile(address)
        except RateLimitedError:
            # A spent budget ends the whole run, not just this address
            raise
        except ProfilePoolError as e:
            logger.debug("No Lens profile for %s: %s", address, e)
            return None

    def enrich(self, records: Sequence[RewardRecord], limit: Optional[int] = None) -> List[Profile]:
        """
        Resolve recipients to usable Lens profiles, batch by batch.

        Within a batch the lookups run concurrently; batches are separated by
        batch_delay_s. Stops early once limit profiles have been resolved.
        Lookup failures skip the address; RateLimitedError propagates.
        """
        by_address: Dict[str, RewardRecord] = {}
        for r in records:
            # Transfers arrive largest first; keep that one per address
            by_address.setdefault(r.address_key, r)
        unique = list(by_address.values())

        profiles: List[Profile] = []
        batch_size = max(1, self.batch_size)
        n_batches = (len(unique) + batch_size - 1) // batch_size
        with ThreadPoolExecutor(max_workers=batch_size) as pool:
            for start in range(0, len(unique), batch_size):
                batch = unique[start:start + batch_size]
                resolved = pool.map(self._resolve, [r.recipient.strip() for r in batch])
                for reward, p in zip(batch, resolved):
                    if p is None or not p.is_usable():
                        continue
                    profiles.append(
                        replace(p, reward_amount=reward.amount, distribution_id=reward.distribution_id)
                    )
                logger.info("Resolved batch %d/%d: %d Lens profiles so far",
                            start // batch_size + 1, n_batches, len(profiles))

                if limit is not None and len(profiles) >= limit:
                    break
                if self.batch_delay_s > 0 and start + batch_size < len(unique):
                    self.sleep(self.batch_delay_s)

        return profiles if limit is None else profiles[:limit]

    def fetch(self, count: int, filters: Optional[Mapping[str, Any]] = None) -> List[Profile]:
        if count <= 0:
            return []
        dist_ids = as_dict(filters).get("distribution_ids") or self.distribution_ids
        records: List[RewardRecord] = []
        for dist_id in dist_ids:
            records.extend(self.fetch_recipients(str(dist_id)))
        return self.enrich(records, limit=count)

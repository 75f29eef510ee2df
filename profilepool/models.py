from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

FARCASTER = "farcaster"
LENS = "lens"


@dataclass(frozen=True)
class Profile:
    id: Union[int, str]
    network: str
    username: str
    display_name: str
    pfp_url: str
    bio: str = ""
    follower_count: int = 0
    following_count: int = 0
    power_badge: bool = False
    verified_addresses: Tuple[str, ...] = ()
    like_count: int = 0
    recast_count: int = 0
    reply_count: int = 0
    owner_address: Optional[str] = None
    lens_handle: Optional[str] = None
    reward_amount: Optional[int] = None
    distribution_id: Optional[str] = None
    source: str = ""

    @property
    def identity(self) -> Tuple[str, str]:
        """(network, id) with addresses compared case-insensitively."""
        return (self.network, str(self.id).lower())

    @property
    def engagement_total(self) -> int:
        return self.like_count + self.recast_count + self.reply_count

    def is_usable(self) -> bool:
        return bool(self.username) and bool(self.pfp_url)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "network": self.network,
            "username": self.username,
            "displayName": self.display_name,
            "pfpUrl": self.pfp_url,
            "bio": self.bio,
            "followerCount": self.follower_count,
            "followingCount": self.following_count,
            "powerBadge": self.power_badge,
            "verifiedAddresses": list(self.verified_addresses),
            "source": self.source,
        }
        if self.engagement_total:
            out["engagement"] = {
                "likes": self.like_count,
                "recasts": self.recast_count,
                "replies": self.reply_count,
            }
        if self.owner_address:
            out["ownedBy"] = self.owner_address
        if self.lens_handle:
            out["lensHandle"] = self.lens_handle
        if self.reward_amount is not None:
            # Smallest unit, kept as a string so JSON readers don't lose precision
            out["rewardAmount"] = str(self.reward_amount)
        if self.distribution_id:
            out["distributionId"] = self.distribution_id
        return out


@dataclass(frozen=True)
class RewardRecord:
    recipient: str
    amount: int
    distribution_id: str
    block_number: int = 0
    log_index: int = 0
    tx_hash: str = ""

    @property
    def address_key(self) -> str:
        return self.recipient.strip().lower()


@dataclass(frozen=True)
class LensDistribution:
    distribution_id: str
    token: str
    initial_amount: int
    sent_count: int
    sent_amount: int


@dataclass(frozen=True)
class ScoredProfile:
    profile: Profile
    score: float
    components: Dict[str, float] = field(default_factory=dict)

    @property
    def display_score(self) -> int:
        return int(round(self.score))

    def to_dict(self) -> Dict[str, Any]:
        out = self.profile.to_dict()
        out["gameScore"] = self.display_score
        return out


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    fetched_at: float
    query_type: str
    ttl_s: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at <= self.ttl_s


@dataclass(frozen=True)
class RateBudgetStatus:
    count: int
    limit: int
    window_remaining_s: float
    is_blocked: bool

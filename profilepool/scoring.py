from __future__ import annotations

import math
from typing import Dict, Iterable, List

from profilepool.models import Profile, ScoredProfile

# Scoring constants
FOLLOWER_WEIGHT = 10.0
FOLLOWER_CAP = 50.0
RATIO_MIN = 0.05
RATIO_MAX = 3.0
RATIO_BONUS = 10.0
POWER_BADGE_BONUS = 15.0
BIO_MIN_LENGTH = 20
BIO_BONUS = 10.0
ENGAGEMENT_DIVISOR = 10.0
ENGAGEMENT_CAP = 20.0
VERIFIED_ADDRESS_BONUS = 10.0
LOW_FOLLOWER_FLOOR = 10
LOW_FOLLOWER_PENALTY = -10.0


def follower_component(follower_count: int) -> float:
    # Logarithmic so mega-accounts don't crowd out everyone else
    return min(math.log10(max(follower_count, 1)) * FOLLOWER_WEIGHT, FOLLOWER_CAP)


def engagement_component(total: int) -> float:
    return min(max(total, 0) / ENGAGEMENT_DIVISOR, ENGAGEMENT_CAP)


def score_components(p: Profile) -> Dict[str, float]:
    """
    Break a profile's quality score into its additive parts.

    Components:
    - followers: log10(followers) * 10, capped at 50
    - ratio: following/followers between 0.05 and 3.0 (organic account)
    - power_badge: verified power/engagement flag
    - bio: bio longer than 20 characters
    - engagement: (likes + recasts + replies) / 10, capped at 20
    - verified_addresses: at least one verified wallet
    - low_followers: penalty under 10 followers
    """
    ratio_bonus = 0.0
    if p.follower_count > 0:
        ratio = p.following_count / p.follower_count
        if RATIO_MIN <= ratio <= RATIO_MAX:
            ratio_bonus = RATIO_BONUS

    return {
        "followers": follower_component(p.follower_count),
        "ratio": ratio_bonus,
        "power_badge": POWER_BADGE_BONUS if p.power_badge else 0.0,
        "bio": BIO_BONUS if len((p.bio or "").strip()) > BIO_MIN_LENGTH else 0.0,
        "engagement": engagement_component(p.engagement_total),
        "verified_addresses": VERIFIED_ADDRESS_BONUS if p.verified_addresses else 0.0,
        "low_followers": LOW_FOLLOWER_PENALTY if p.follower_count < LOW_FOLLOWER_FLOOR else 0.0,
    }


def score_profile(p: Profile) -> float:
    """Deterministic quality score, never negative. Unrounded; round only for display."""
    return max(sum(score_components(p).values()), 0.0)


def score_profiles(profiles: Iterable[Profile]) -> List[ScoredProfile]:
    """Score profiles, keeping their discovery order."""
    scored: List[ScoredProfile] = []
    for p in profiles:
        components = score_components(p)
        scored.append(
            ScoredProfile(
                profile=p,
                score=max(sum(components.values()), 0.0),
                components=components,
            )
        )
    return scored

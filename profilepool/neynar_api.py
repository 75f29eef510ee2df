from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests

from profilepool.errors import ProfilePoolError, ProviderResponseError
from profilepool.fetch import (
    DEFAULT_BASE_DELAY_S,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_S,
    build_session,
    fetch_with_retry,
    read_json,
)
from profilepool.models import FARCASTER, Profile
from profilepool.rate_limit import RateBudget
from profilepool.utils import as_dict, pick, safe_int

logger = logging.getLogger(__name__)

NEYNAR_API_BASE = "https://api.neynar.com/v2/farcaster"

# Provider maximum for /feed/trending
MAX_TRENDING_LIMIT = 10
MAX_BULK_FIDS = 100
MAX_SEARCH_LIMIT = 10


@dataclass
class NeynarClient:
    api_key: str
    base_url: str = NEYNAR_API_BASE
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    budget: Optional[RateBudget] = None
    session: requests.Session = field(default_factory=build_session)
    sleep: Callable[[float], None] = time.sleep

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET a Neynar endpoint and return the decoded JSON object."""
        if not self.api_key:
            raise ProfilePoolError("NEYNAR_API_KEY not configured")

        url = f"{self.base_url.rstrip('/')}{path}"
        resp = fetch_with_retry(
            self.session,
            url,
            params=params,
            headers={"x-api-key": self.api_key},
            max_retries=self.max_retries,
            timeout_s=self.timeout_s,
            base_delay_s=self.base_delay_s,
            budget=self.budget,
            sleep=self.sleep,
        )
        data = read_json(resp)
        if not isinstance(data, dict):
            raise ProviderResponseError(f"Neynar returned {type(data).__name__} for {path}, expected object")
        return data

    def feed_page(
        self,
        limit: int = MAX_TRENDING_LIMIT,
        cursor: Optional[str] = None,
        time_window: str = "24h",
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        Fetch one page of the trending feed.

        Args:
            limit: Casts per page (provider caps at 10)
            cursor: Cursor returned by the previous page
            time_window: Trending window, e.g. "1h" for recent activity, "24h"

        Returns:
            (casts, next_cursor); next_cursor is None on the last page
        """
        params: Dict[str, Any] = {
            "limit": max(1, min(limit, MAX_TRENDING_LIMIT)),
            "time_window": time_window,
        }
        if cursor:
            params["cursor"] = cursor

        data = self._get("/feed/trending", params)
        casts = data.get("casts") or []
        next_cursor = as_dict(data.get("next")).get("cursor") or None
        return [c for c in casts if isinstance(c, dict)], next_cursor

    def fetch_users_bulk(self, fids: Iterable[int]) -> List[Dict[str, Any]]:
        """Bulk-fetch raw users by FID (chunked to the provider maximum)."""
        fid_list = [int(f) for f in fids]
        users: List[Dict[str, Any]] = []
        for i in range(0, len(fid_list), MAX_BULK_FIDS):
            chunk = fid_list[i:i + MAX_BULK_FIDS]
            logger.debug("Bulk lookup of %d FIDs", len(chunk))
            data = self._get("/user/bulk", {"fids": ",".join(str(f) for f in chunk)})
            users.extend(u for u in (data.get("users") or []) if isinstance(u, dict))
        return users

    def search_users_page(
        self,
        query: str,
        limit: int = MAX_SEARCH_LIMIT,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        params: Dict[str, Any] = {"q": query, "limit": max(1, min(limit, MAX_SEARCH_LIMIT))}
        if cursor:
            params["cursor"] = cursor

        data = self._get("/user/search", params)
        result = as_dict(data.get("result"))
        users = result.get("users") or []
        next_cursor = as_dict(result.get("next")).get("cursor") or None
        return [u for u in users if isinstance(u, dict)], next_cursor


def parse_user(raw: Dict[str, Any], source: str = "") -> Optional[Profile]:
    """
    Normalize a Neynar user object (snake_case or camelCase) to a Profile.
    Returns None when the object has no FID.
    """
    try:
        fid = safe_int(pick(raw, "fid"), default=-1)
        if fid < 0:
            return None

        username = str(pick(raw, "username", default="") or "").lstrip("@")
        display_name = str(pick(raw, "display_name", "displayName", default="") or "")
        pfp_url = pick(raw, "pfp_url", "pfpUrl", default="")
        if isinstance(pfp_url, dict):
            pfp_url = pfp_url.get("url", "")

        # v2 nests bio under profile.bio.text; older payloads have a flat bio
        bio = pick(raw, "bio", default=None)
        if bio is None:
            bio = as_dict(as_dict(raw.get("profile")).get("bio")).get("text", "")

        addresses = as_dict(pick(raw, "verified_addresses", "verifiedAddresses", default={}))
        verified: List[str] = []
        for key in ("eth_addresses", "ethAddresses", "sol_addresses", "solAddresses"):
            verified.extend(str(a) for a in (addresses.get(key) or []) if a)
        if not verified:
            verified.extend(str(a) for a in (raw.get("verifications") or []) if a)

        return Profile(
            id=fid,
            network=FARCASTER,
            username=username,
            display_name=display_name or username,
            pfp_url=str(pfp_url or ""),
            bio=str(bio or ""),
            follower_count=safe_int(pick(raw, "follower_count", "followerCount")),
            following_count=safe_int(pick(raw, "following_count", "followingCount")),
            power_badge=bool(pick(raw, "power_badge", "powerBadge", default=False)),
            verified_addresses=tuple(dict.fromkeys(verified)),
            source=source,
        )
    except (KeyError, ValueError, TypeError, AttributeError):
        return None


def cast_engagement(cast: Dict[str, Any]) -> Tuple[int, int, int]:
    """(likes, recasts, replies) of a cast, across the payload shapes Neynar has used."""
    reactions = as_dict(cast.get("reactions"))
    likes = safe_int(pick(reactions, "likes_count", "likesCount"))
    if not likes and isinstance(reactions.get("likes"), list):
        likes = len(reactions["likes"])
    recasts = safe_int(pick(reactions, "recasts_count", "recastsCount"))
    if not recasts and isinstance(reactions.get("recasts"), list):
        recasts = len(reactions["recasts"])
    replies = safe_int(pick(reactions, "replies_count", "repliesCount"))
    if not replies:
        replies = safe_int(as_dict(cast.get("replies")).get("count"))
    return likes, recasts, replies

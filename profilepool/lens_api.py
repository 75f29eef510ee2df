"""
Lens Protocol providers.

- LenscanClient reads the Lens rewards ledger through Lenscan's tRPC batch
  endpoint (request input and response are both keyed by numeric index).
- Web3BioClient resolves a wallet address to its Lens profile.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from profilepool.errors import ProviderResponseError
from profilepool.fetch import (
    DEFAULT_BASE_DELAY_S,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_S,
    build_session,
    fetch_with_retry,
    read_json,
)
from profilepool.models import LENS, LensDistribution, Profile, RewardRecord
from profilepool.rate_limit import RateBudget
from profilepool.utils import as_dict, pick, safe_int

logger = logging.getLogger(__name__)

LENSCAN_API_BASE = "https://lenscan.io/api/trpc"
WEB3BIO_API_BASE = "https://api.web3.bio"


def _trpc_result(data: Any, index: int) -> Any:
    """Pull result.data.json out of one slot of a tRPC batch response."""
    if not isinstance(data, list) or len(data) <= index:
        raise ProviderResponseError(f"tRPC batch response has no slot {index}")
    slot = as_dict(data[index])
    if "error" in slot:
        raise ProviderResponseError(f"tRPC slot {index} error: {slot['error']}")
    return as_dict(as_dict(slot.get("result")).get("data")).get("json")


@dataclass
class LenscanClient:
    base_url: str = LENSCAN_API_BASE
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    budget: Optional[RateBudget] = None
    session: requests.Session = field(default_factory=build_session)
    sleep: Callable[[float], None] = time.sleep

    def _batch(self, procedures: str, batch_input: Dict[str, Any]) -> Any:
        url = f"{self.base_url.rstrip('/')}/{procedures}"
        resp = fetch_with_retry(
            self.session,
            url,
            params={"batch": 1, "input": json.dumps(batch_input, separators=(",", ":"))},
            max_retries=self.max_retries,
            timeout_s=self.timeout_s,
            base_delay_s=self.base_delay_s,
            budget=self.budget,
            sleep=self.sleep,
        )
        return read_json(resp)

    def fetch_distributions(self, limit: int = 20) -> List[LensDistribution]:
        data = self._batch(
            "rewards.overview,rewards.distributions",
            {
                "0": {"json": None, "meta": {"values": ["undefined"]}},
                "1": {"json": {"limit": limit}},
            },
        )
        rows = _trpc_result(data, 1) or []
        distributions: List[LensDistribution] = []
        for row in rows if isinstance(rows, list) else []:
            d = parse_distribution(row)
            if d:
                distributions.append(d)
        return distributions

    def fetch_transfers_page(self, distribution_id: str, page: int, limit: int) -> List[RewardRecord]:
        """
        Fetch one page of reward transfers for a distribution, largest first.

        Args:
            distribution_id: Lens rewards distribution id
            page: 1-based page number
            limit: Page size

        Returns:
            Transfers on this page; fewer than limit means it is the last page
        """
        data = self._batch(
            "rewards.distributionLogicalBatches,rewards.transfersByDistribution",
            {
                "0": {"json": {"distributionId": distribution_id}},
                "1": {
                    "json": {
                        "distributionId": distribution_id,
                        "limit": limit,
                        "cursor": None,
                        "page": page,
                        "recipient": None,
                        "fromBlock": None,
                        "toBlock": None,
                        "amountMin": None,
                        "amountMax": None,
                        "logicalBatch": None,
                        "sortBy": "amount",
                        "sortOrder": "desc",
                    },
                    "meta": {
                        "values": {
                            "cursor": ["undefined"],
                            "recipient": ["undefined"],
                            "fromBlock": ["undefined"],
                            "toBlock": ["undefined"],
                            "amountMin": ["undefined"],
                            "amountMax": ["undefined"],
                        }
                    },
                },
            },
        )
        payload = as_dict(_trpc_result(data, 1))
        rows = payload.get("transfers") or []
        records: List[RewardRecord] = []
        for row in rows if isinstance(rows, list) else []:
            r = parse_transfer(row, distribution_id)
            if r:
                records.append(r)
        return records


@dataclass
class Web3BioClient:
    base_url: str = WEB3BIO_API_BASE
    api_key: str = ""
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    budget: Optional[RateBudget] = None
    session: requests.Session = field(default_factory=build_session)
    sleep: Callable[[float], None] = time.sleep

    def fetch_lens_profile(self, address: str) -> Optional[Profile]:
        """Resolve an address to its Lens profile; None when it has none."""
        url = f"{self.base_url.rstrip('/')}/profile/lens/{address}"
        headers = {"X-API-KEY": self.api_key} if self.api_key else None
        resp = fetch_with_retry(
            self.session,
            url,
            headers=headers,
            max_retries=self.max_retries,
            timeout_s=self.timeout_s,
            base_delay_s=self.base_delay_s,
            budget=self.budget,
            sleep=self.sleep,
        )
        if resp.status_code == 404:
            logger.debug("No Lens profile for %s", address)
            return None
        data = read_json(resp)
        if isinstance(data, list):
            data = data[0] if data else {}
        return parse_web3bio_profile(as_dict(data))


def parse_distribution(raw: Any) -> Optional[LensDistribution]:
    row = as_dict(raw)
    dist_id = pick(row, "distributionId", "distribution_id")
    if dist_id is None:
        return None
    return LensDistribution(
        distribution_id=str(dist_id),
        token=str(row.get("token") or ""),
        initial_amount=safe_int(pick(row, "initialAmount", "initial_amount")),
        sent_count=safe_int(pick(row, "sentCount", "sent_count")),
        sent_amount=safe_int(pick(row, "sentAmount", "sent_amount")),
    )


def parse_transfer(raw: Any, distribution_id: str) -> Optional[RewardRecord]:
    row = as_dict(raw)
    recipient = str(row.get("recipient") or "").strip()
    if not recipient:
        return None
    return RewardRecord(
        recipient=recipient,
        amount=safe_int(row.get("amount")),
        distribution_id=distribution_id,
        block_number=safe_int(pick(row, "blockNumber", "block_number")),
        log_index=safe_int(pick(row, "logIndex", "log_index")),
        tx_hash=str(pick(row, "txHash", "tx_hash", default="") or ""),
    )


def parse_web3bio_profile(data: Dict[str, Any]) -> Optional[Profile]:
    """Normalize a web3.bio profile; only Lens identities are accepted."""
    if data.get("platform") != "lens" or not data.get("identity"):
        return None

    identity = str(data["identity"])
    handle = identity[:-len(".lens")] if identity.endswith(".lens") else identity
    address = str(data.get("address") or "")
    social = as_dict(data.get("social"))

    return Profile(
        id=address or identity,
        network=LENS,
        username=f"lens/{handle}",
        display_name=str(data.get("displayName") or handle),
        pfp_url=str(data.get("avatar") or ""),
        bio=str(data.get("description") or ""),
        follower_count=safe_int(social.get("follower")),
        following_count=safe_int(social.get("following")),
        owner_address=address or None,
        lens_handle=identity,
        source="web3bio",
    )

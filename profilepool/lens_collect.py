from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from profilepool.errors import ProfilePoolError
from profilepool.lens_api import LenscanClient
from profilepool.models import LensDistribution, RewardRecord, ScoredProfile
from profilepool.reporting import build_snapshot, write_snapshot
from profilepool.scoring import score_profiles
from profilepool.selection import select_profiles
from profilepool.sources import RewardRecipientSource

logger = logging.getLogger(__name__)

MIN_DISTRIBUTION_RECIPIENTS = 50
MAX_DISTRIBUTIONS = 3
DISTRIBUTION_FETCH_LIMIT = 20
LENS_MIN_SCORE = 20.0
LENS_TARGET_POOL_SIZE = 300


def pick_distributions(
    distributions: List[LensDistribution],
    min_recipients: int = MIN_DISTRIBUTION_RECIPIENTS,
    limit: int = MAX_DISTRIBUTIONS,
) -> List[LensDistribution]:
    """The most active distributions: more than min_recipients transfers, busiest first."""
    active = [d for d in distributions if d.sent_count > min_recipients]
    active.sort(key=lambda d: d.sent_count, reverse=True)
    return active[:limit]


@dataclass
class LensRewardsCollector:
    """
    One Lens collection run: rewards ledger -> recipients -> Lens profiles ->
    scored pool -> JSON snapshot.
    """

    ledger: LenscanClient
    recipients: RewardRecipientSource
    snapshot_path: Optional[str] = None
    min_score: float = LENS_MIN_SCORE
    target_count: int = LENS_TARGET_POOL_SIZE

    def collect(self) -> List[ScoredProfile]:
        """
        Run the collection and write the snapshot.

        A spent rate budget raises RateLimitedError before anything is written,
        so a truncated pool never replaces the previous snapshot.
        """
        distributions = pick_distributions(self.ledger.fetch_distributions(limit=DISTRIBUTION_FETCH_LIMIT))
        if not distributions:
            logger.warning("No Lens reward distributions with more than %d recipients", MIN_DISTRIBUTION_RECIPIENTS)
            return []

        records: List[RewardRecord] = []
        for d in distributions:
            logger.info("Collecting recipients of distribution %s (%d sent)", d.distribution_id, d.sent_count)
            records.extend(self.recipients.fetch_recipients(d.distribution_id))

        profiles = self.recipients.enrich(records)
        logger.info("Resolved %d Lens profiles from %d reward transfers", len(profiles), len(records))

        pool = select_profiles(score_profiles(profiles), self.target_count, self.min_score)
        logger.info("Selected %d Lens profiles scoring >= %.0f", len(pool), self.min_score)

        if self.snapshot_path:
            try:
                write_snapshot(self.snapshot_path, build_snapshot(pool))
            except OSError as e:
                raise ProfilePoolError(f"Could not write snapshot {self.snapshot_path}: {e}") from e
            logger.info("Wrote snapshot to %s", self.snapshot_path)
        return pool

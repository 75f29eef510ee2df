from __future__ import annotations

import json
import os
from typing import Any, Dict, Sequence, Union

from profilepool.models import Profile, ScoredProfile
from profilepool.utils import utc_now_iso

SNAPSHOT_VERSION = "1.0.0"


def ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def build_snapshot(
    pool: Sequence[Union[ScoredProfile, Profile]],
    version: str = SNAPSHOT_VERSION,
) -> Dict[str, Any]:
    """
    Snapshot of one run's final ranked pool.
    Scored entries carry their display score as "gameScore".
    """
    users = [entry.to_dict() for entry in pool]
    return {
        "collectedAt": utc_now_iso(),
        "version": version,
        "count": len(users),
        "users": users,
    }


def write_snapshot(path: str, snapshot: Dict[str, Any]) -> str:
    # Each run replaces the file wholesale
    ensure_parent_dir(path)
    payload = json.dumps(snapshot, indent=2, sort_keys=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(payload)
    return path

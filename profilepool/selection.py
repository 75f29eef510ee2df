from __future__ import annotations

from typing import Dict, List, Sequence

from profilepool.models import ScoredProfile


def dedupe_by_username(scored: Sequence[ScoredProfile]) -> List[ScoredProfile]:
    """
    Keep one profile per username, the higher scoring one.

    The survivor keeps the discovery position of the first occurrence so the
    later stable sort still breaks ties by discovery order.
    """
    position: Dict[str, int] = {}
    unique: List[ScoredProfile] = []
    for sp in scored:
        name = sp.profile.username.lower()
        idx = position.get(name)
        if idx is None:
            position[name] = len(unique)
            unique.append(sp)
        elif sp.score > unique[idx].score:
            unique[idx] = sp
    return unique


def select_profiles(
    scored: Sequence[ScoredProfile],
    target_count: int,
    min_score: float = 0.0,
) -> List[ScoredProfile]:
    """
    Build the final ranked pool.

    Args:
        scored: Scored profiles in discovery order
        target_count: Maximum pool size
        min_score: Profiles scoring below this are dropped

    Returns:
        Profiles sorted by score descending (ties in discovery order).
        Empty when nothing qualifies.
    """
    if target_count <= 0:
        return []

    unique = dedupe_by_username(scored)
    # sorted() is stable, so equal scores keep discovery order
    ranked = sorted(unique, key=lambda sp: sp.score, reverse=True)
    return [sp for sp in ranked if sp.score >= min_score][:target_count]

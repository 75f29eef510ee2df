from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, TypeVar

T = TypeVar("T")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def safe_int(value: Any, default: int = 0) -> int:
    """Coerce provider numbers (int, float, numeric string) to int."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


def pick(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Return the first non-None value among keys.
    Providers mix snake_case and camelCase, e.g. pick(u, "pfp_url", "pfpUrl").
    """
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def as_dict(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def shuffled(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    out = list(items)
    (rng or random).shuffle(out)
    return out

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

_NO_JSON = object()


class FakeResponse:
    """Just enough of requests.Response for read_json()."""

    def __init__(self, data: Any = _NO_JSON, status_code: int = 200, text: Optional[str] = None, url: str = ""):
        self._data = data
        self.status_code = status_code
        self.text = text if text is not None else ("" if data is _NO_JSON else str(data))
        self.url = url

    def json(self) -> Any:
        if self._data is _NO_JSON:
            raise ValueError("No JSON object could be decoded")
        return self._data


class FakeSession:
    """
    Stands in for requests.Session.

    Routes are matched by URL substring, first match wins. Each route holds a
    queue of responses (or exceptions to raise); the last item repeats once
    the queue is down to one.
    """

    def __init__(self) -> None:
        self.routes: List[Tuple[str, List[Any]]] = []
        self.calls: List[Dict[str, Any]] = []

    def add(self, url_part: str, *items: Any) -> "FakeSession":
        self.routes.append((url_part, list(items)))
        return self

    def add_json(self, url_part: str, data: Any, status_code: int = 200) -> "FakeSession":
        return self.add(url_part, FakeResponse(data, status_code=status_code, url=url_part))

    def calls_to(self, url_part: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if url_part in c["url"]]

    def request(self, method, url, params=None, headers=None, json=None, timeout=None):
        self.calls.append(
            {"method": method, "url": url, "params": params, "headers": headers, "json": json, "timeout": timeout}
        )
        for url_part, queue in self.routes:
            if url_part in url:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, BaseException):
                    raise item
                if item.url == url_part or not item.url:
                    item.url = url
                return item
        return FakeResponse({"error": "not found"}, status_code=404, url=url)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Sleeper:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def neynar_user(fid: int, username: Optional[str] = None, followers: int = 500, following: int = 200,
                pfp: Optional[str] = "https://img.example/pfp.png", **extra: Any) -> Dict[str, Any]:
    """Raw Neynar v2 user payload."""
    user: Dict[str, Any] = {
        "object": "user",
        "fid": fid,
        "username": username if username is not None else f"user{fid}",
        "display_name": f"User {fid}",
        "pfp_url": pfp,
        "profile": {"bio": {"text": "gm, building onchain games every day"}},
        "follower_count": followers,
        "following_count": following,
        "verified_addresses": {"eth_addresses": [f"0x{fid:040x}"], "sol_addresses": []},
        "power_badge": False,
    }
    user.update(extra)
    return user


def neynar_cast(author: Dict[str, Any], likes: int = 0, recasts: int = 0, replies: int = 0) -> Dict[str, Any]:
    return {
        "hash": f"0x{author['fid']:x}",
        "author": author,
        "reactions": {"likes_count": likes, "recasts_count": recasts},
        "replies": {"count": replies},
    }


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()


@pytest.fixture
def make_user():
    return neynar_user


@pytest.fixture
def make_cast():
    return neynar_cast


@pytest.fixture
def make_response():
    return FakeResponse

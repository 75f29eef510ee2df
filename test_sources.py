from __future__ import annotations

import random

import pytest
import requests

from profilepool.errors import ProviderHTTPError, RateLimitedError
from profilepool.lens_api import LenscanClient, Web3BioClient, parse_web3bio_profile
from profilepool.models import FARCASTER, LENS, RewardRecord
from profilepool.neynar_api import NeynarClient, cast_engagement, parse_user
from profilepool.rate_limit import RateBudget
from profilepool.sources import (
    DEFAULT_CURATED_FIDS,
    FALLBACK_SOURCE,
    ActiveFeedSource,
    CuratedSource,
    RewardRecipientSource,
    SearchSource,
    TrendingFeedSource,
    fallback_profiles,
)


def _client(session, sleeper) -> NeynarClient:
    return NeynarClient(api_key="test-key", session=session, sleep=sleeper, base_delay_s=0)


# --- normalization -------------------------------------------------------


def test_parse_user_handles_snake_and_camel_case(make_user):
    snake = parse_user(make_user(3, "dwr", followers=1000, following=300), source="trending")
    camel = parse_user({
        "fid": 3,
        "username": "dwr",
        "displayName": "User 3",
        "pfpUrl": {"url": "https://img.example/pfp.png"},
        "bio": "gm, building onchain games every day",
        "followerCount": 1000,
        "followingCount": 300,
        "verifiedAddresses": {"ethAddresses": ["0x" + "0" * 39 + "3"]},
    }, source="trending")

    assert snake == camel
    assert snake.network == FARCASTER
    assert snake.pfp_url == "https://img.example/pfp.png"
    assert snake.verified_addresses == ("0x" + "0" * 39 + "3",)


def test_parse_user_without_fid_is_rejected():
    assert parse_user({"username": "ghost"}) is None


def test_parse_user_falls_back_to_username_for_display_name(make_user):
    p = parse_user(make_user(7, "seven", display_name=""))
    assert p.display_name == "seven"


def test_cast_engagement_shapes(make_user, make_cast):
    assert cast_engagement(make_cast(make_user(1), likes=4, recasts=2, replies=1)) == (4, 2, 1)
    legacy = {"reactions": {"likes": [{}, {}, {}], "recasts": [{}]}, "replies": {"count": 2}}
    assert cast_engagement(legacy) == (3, 1, 2)


def test_web3bio_profile_normalization():
    p = parse_web3bio_profile({
        "address": "0xAbC0000000000000000000000000000000000001",
        "identity": "stani.lens",
        "platform": "lens",
        "displayName": "Stani",
        "avatar": "https://img.example/stani.png",
        "description": "Lens founder",
        "social": {"follower": 120000, "following": 800},
    })
    assert p.network == LENS
    assert p.username == "lens/stani"
    assert p.lens_handle == "stani.lens"
    assert p.owner_address == "0xAbC0000000000000000000000000000000000001"
    assert p.follower_count == 120000
    assert p.identity == (LENS, "0xabc0000000000000000000000000000000000001")
    assert parse_web3bio_profile({"platform": "farcaster", "identity": "dwr"}) is None


# --- feed adapters -------------------------------------------------------


def test_feed_keeps_only_qualifying_unique_authors(fake_session, sleeper, make_user, make_cast):
    good = [make_user(i, followers=150 + i) for i in range(1, 4)]
    no_avatar = make_user(10, pfp="")
    too_small = make_user(11, followers=99)
    casts = [make_cast(u, likes=10) for u in good] + [
        make_cast(no_avatar), make_cast(too_small), make_cast(good[0], likes=5, replies=2),
    ]
    fake_session.add_json("/feed/trending", {"casts": casts, "next": {"cursor": None}})

    source = TrendingFeedSource(_client(fake_session, sleeper), rng=random.Random(1))
    out = source.fetch(10, {"min_followers": 100})

    assert sorted(p.id for p in out) == [1, 2, 3]
    first = next(p for p in out if p.id == 1)
    assert (first.like_count, first.reply_count) == (15, 2)
    assert all(p.source == "trending" for p in out)
    assert fake_session.calls[0]["params"]["time_window"] == "24h"
    assert fake_session.calls[0]["headers"] == {"x-api-key": "test-key"}


def test_feed_pages_until_count_reached(fake_session, sleeper, make_user, make_cast, make_response):
    page1 = {"casts": [make_cast(make_user(i)) for i in range(1, 4)], "next": {"cursor": "c2"}}
    page2 = {"casts": [make_cast(make_user(i)) for i in range(4, 7)], "next": {"cursor": "c3"}}
    fake_session.add("/feed/trending", make_response(page1), make_response(page2))

    out = ActiveFeedSource(_client(fake_session, sleeper)).fetch(5)
    assert len(out) == 5
    assert len(fake_session.calls) == 2
    assert fake_session.calls[1]["params"]["cursor"] == "c2"
    assert fake_session.calls[0]["params"]["time_window"] == "1h"


def test_feed_stops_at_page_cap(fake_session, sleeper, make_user, make_cast):
    fake_session.add_json("/feed/trending", {"casts": [make_cast(make_user(1))], "next": {"cursor": "more"}})
    out = TrendingFeedSource(_client(fake_session, sleeper), max_pages=5).fetch(10)
    assert len(out) == 1
    assert len(fake_session.calls) == 5


def test_feed_zero_follower_floor_accepts_everyone(fake_session, sleeper, make_user, make_cast):
    fake_session.add_json("/feed/trending", {"casts": [make_cast(make_user(1, followers=0))], "next": {}})
    out = TrendingFeedSource(_client(fake_session, sleeper)).fetch(3, {"min_followers": 0})
    assert [p.follower_count for p in out] == [0]


def test_feed_without_api_key_raises(fake_session, sleeper):
    client = NeynarClient(api_key="", session=fake_session, sleep=sleeper)
    with pytest.raises(RuntimeError):
        TrendingFeedSource(client).fetch(3)
    assert fake_session.calls == []


# --- curated -------------------------------------------------------------


def test_curated_samples_twice_the_need(fake_session, sleeper, make_user):
    fake_session.add_json("/user/bulk", {"users": [make_user(f, followers=5) for f in DEFAULT_CURATED_FIDS]})
    out = CuratedSource(_client(fake_session, sleeper), rng=random.Random(7)).fetch(4)

    requested = fake_session.calls[0]["params"]["fids"].split(",")
    assert len(requested) == 8
    assert set(int(f) for f in requested) <= set(DEFAULT_CURATED_FIDS)
    assert len(out) == 4
    # curated results bypass the follower floor
    assert all(p.follower_count == 5 for p in out)


def test_curated_falls_back_to_placeholders_when_lookup_fails(fake_session, sleeper):
    fake_session.add("/user/bulk", requests.exceptions.ConnectionError("down"))
    out = CuratedSource(_client(fake_session, sleeper)).fetch(30)
    assert len(out) == 30
    assert all(p.source == FALLBACK_SOURCE for p in out)
    assert len({p.identity for p in out}) == 30
    assert len({p.username for p in out}) == 30


def test_curated_without_client_needs_no_network():
    out = CuratedSource(None).fetch(8)
    assert len(out) == 8
    assert all(p.is_usable() for p in out)


def test_curated_skips_excluded_profiles_when_sampling(fake_session, sleeper, make_user):
    fake_session.add_json("/user/bulk", {"users": [make_user(f) for f in range(1, 11)]})
    filters = {"exclude_ids": {(FARCASTER, "1"), (FARCASTER, "2")}, "exclude_usernames": {"user3"}}
    out = CuratedSource(_client(fake_session, sleeper), fids=tuple(range(1, 11))).fetch(4, filters)

    requested = {int(f) for f in fake_session.calls[0]["params"]["fids"].split(",")}
    assert requested.isdisjoint({1, 2})
    assert len(out) == 4
    assert not {p.id for p in out} & {1, 2, 3}


def test_curated_placeholders_skip_excluded_profiles():
    filters = {"exclude_ids": {(FARCASTER, "1")}, "exclude_usernames": {"DWR"}}
    out = CuratedSource(None, fids=(1, 2, 3)).fetch(3, filters)
    assert [p.id for p in out] == [3, 1003, 1004]
    assert [p.username for p in out] == ["balajis", "linda", "jessepollak"]


def test_fallback_profiles_are_deterministic():
    gen_a, gen_b = fallback_profiles(), fallback_profiles()
    a = [next(gen_a) for _ in range(25)]
    b = [next(gen_b) for _ in range(25)]
    assert a == b
    assert a[0].id == DEFAULT_CURATED_FIDS[0]
    assert a[24].id == 1024


# --- search --------------------------------------------------------------


def test_search_has_no_follower_floor(fake_session, sleeper, make_user):
    users = [make_user(1, followers=0), make_user(2, pfp=None), make_user(3, username="")]
    fake_session.add_json("/user/search", {"result": {"users": users, "next": {"cursor": None}}})
    out = SearchSource(_client(fake_session, sleeper)).fetch(5, {"search_term": "gm"})
    assert [p.id for p in out] == [1]
    assert fake_session.calls[0]["params"]["q"] == "gm"


def test_search_requires_a_term(fake_session, sleeper):
    with pytest.raises(ValueError):
        SearchSource(_client(fake_session, sleeper)).fetch(5, {"search_term": "  "})


# --- rewards ledger ------------------------------------------------------


def _transfers(n: int, start: int = 0):
    return [
        {"recipient": f"0x{i:040x}", "amount": str(10**18 * (1000 - i)), "blockNumber": 100 + i,
         "logIndex": i, "txHash": f"0xtx{i}"}
        for i in range(start, start + n)
    ]


def _trpc(payload):
    return [{"result": {"data": {"json": None}}}, {"result": {"data": {"json": payload}}}]


def _rewards_source(session, sleeper, **kw) -> RewardRecipientSource:
    return RewardRecipientSource(
        ledger=LenscanClient(session=session, sleep=sleeper, base_delay_s=0),
        resolver=Web3BioClient(session=session, sleep=sleeper, base_delay_s=0),
        sleep=sleeper,
        **kw,
    )


def test_ledger_short_page_ends_pagination(fake_session, sleeper, make_response):
    fake_session.add(
        "transfersByDistribution",
        make_response(_trpc({"transfers": _transfers(25)})),
        make_response(_trpc({"transfers": _transfers(7, start=25)})),
    )
    records = _rewards_source(fake_session, sleeper).fetch_recipients("dist-1")

    assert len(records) == 32
    assert len(fake_session.calls) == 2
    assert sleeper.delays == [1.5]
    assert records[0].amount == 10**18 * 1000
    assert records[0].distribution_id == "dist-1"
    assert '"page":2' in fake_session.calls[1]["params"]["input"]


def test_ledger_page_failure_stops_pagination(fake_session, sleeper, make_response):
    fake_session.add(
        "transfersByDistribution",
        make_response(_trpc({"transfers": _transfers(25)})),
        make_response({"error": "bad gateway"}, status_code=502),
    )
    records = _rewards_source(fake_session, sleeper).fetch_recipients("dist-1")
    assert len(records) == 25
    assert len(fake_session.calls) == 2


def test_ledger_respects_recipient_limit(fake_session, sleeper, make_response):
    fake_session.add("transfersByDistribution", make_response(_trpc({"transfers": _transfers(25)})))
    records = _rewards_source(fake_session, sleeper, max_recipients=60).fetch_recipients("d")
    assert len(records) == 60
    # last page only asks for what is still missing
    assert '"limit":10' in fake_session.calls[-1]["params"]["input"]


def test_enrich_joins_rewards_and_batches(fake_session, sleeper, make_response):
    records = [RewardRecord(recipient=f"0x{i:040X}", amount=1000 + i, distribution_id="d1") for i in range(12)]
    for i in range(12):
        addr = f"0x{i:040X}"
        if i == 5:
            fake_session.add(addr, make_response({"error": "not found"}, status_code=404))
            continue
        fake_session.add_json(addr, {
            "address": addr.lower(),
            "identity": f"user{i}.lens",
            "platform": "lens",
            "avatar": "https://img.example/a.png",
            "social": {"follower": 50, "following": 10},
        })

    profiles = _rewards_source(fake_session, sleeper, batch_size=10, batch_delay_s=1.0).enrich(records)

    assert len(profiles) == 11
    assert sleeper.delays == [1.0]
    by_handle = {p.lens_handle: p for p in profiles}
    assert by_handle["user3.lens"].reward_amount == 1003
    assert by_handle["user3.lens"].distribution_id == "d1"
    assert "user5.lens" not in by_handle


def test_reward_amounts_survive_serialization(fake_session, sleeper):
    rec = RewardRecord(recipient="0xAA", amount=10**21, distribution_id="d")
    fake_session.add_json("/profile/lens/0xAA", {"address": "0xaa", "identity": "big.lens", "platform": "lens",
                                                 "avatar": "https://img.example/a.png"})
    (p,) = _rewards_source(fake_session, sleeper).enrich([rec])
    assert p.to_dict()["rewardAmount"] == str(10**21)
    assert p.to_dict()["ownedBy"] == "0xaa"


def test_unreachable_resolver_skips_address(fake_session, sleeper):
    fake_session.add("/profile/lens/", requests.exceptions.ConnectionError("down"))
    rec = RewardRecord(recipient="0xbb", amount=1, distribution_id="d")
    assert _rewards_source(fake_session, sleeper).enrich([rec]) == []


def test_spent_resolver_budget_aborts_enrichment(fake_session, sleeper, clock):
    fake_session.add_json("/profile/lens/", {"address": "0xaa", "identity": "someone.lens", "platform": "lens",
                                             "avatar": "https://img.example/a.png"})
    source = RewardRecipientSource(
        ledger=LenscanClient(session=fake_session, sleep=sleeper),
        resolver=Web3BioClient(session=fake_session, sleep=sleeper, budget=RateBudget(limit=2, clock=clock)),
        sleep=sleeper,
    )
    records = [RewardRecord(recipient=f"0x{i:040x}", amount=1, distribution_id="d") for i in range(10)]
    with pytest.raises(RateLimitedError):
        source.enrich(records)
    assert len(fake_session.calls) == 2


def test_redirect_loop_skips_address_without_retrying(fake_session, sleeper):
    fake_session.add("/profile/lens/", requests.exceptions.TooManyRedirects("loop"))
    records = [RewardRecord(recipient=f"0x{i:040x}", amount=1, distribution_id="d") for i in range(3)]
    assert _rewards_source(fake_session, sleeper).enrich(records) == []
    assert len(fake_session.calls) == 3
    assert sleeper.delays == []


def test_lenscan_slot_error_is_a_provider_failure(fake_session, sleeper):
    fake_session.add_json("rewards.distributions", [{"result": {}}, {"error": {"message": "boom"}}])
    with pytest.raises(RuntimeError):
        LenscanClient(session=fake_session, sleep=sleeper).fetch_distributions()


def test_lenscan_distributions(fake_session, sleeper):
    fake_session.add_json("rewards.distributions", _trpc([
        {"distributionId": "a", "token": "GHO", "initialAmount": "100", "sentCount": 80, "sentAmount": "90"},
        {"token": "no-id"},
    ]))
    (d,) = LenscanClient(session=fake_session, sleep=sleeper).fetch_distributions(limit=20)
    assert (d.distribution_id, d.sent_count, d.initial_amount) == ("a", 80, 100)
    assert '"limit":20' in fake_session.calls[0]["params"]["input"]


def test_http_error_from_web3bio_propagates_from_client(fake_session, sleeper, make_response):
    fake_session.add("/profile/lens/", make_response({"error": "down"}, status_code=500))
    with pytest.raises(ProviderHTTPError):
        Web3BioClient(session=fake_session, sleep=sleeper).fetch_lens_profile("0xcc")

"""Unit tests for the in-memory key-value store."""

import pytest

from neural_seed.services.exceptions import StoreUnavailableError


@pytest.mark.asyncio
async def test_values_expire(store, clock):
    await store.set("k", "v", ttl=10)
    clock.advance(9)
    assert await store.get("k") == "v"
    assert await store.ttl("k") == 1

    clock.advance(1)
    assert await store.get("k") is None
    assert await store.ttl("k") == -2


@pytest.mark.asyncio
async def test_only_if_absent_respects_expiry(store, clock):
    assert await store.set("marker", "1", ttl=5, only_if_absent=True) is True
    assert await store.set("marker", "2", only_if_absent=True) is False

    clock.advance(5)
    assert await store.set("marker", "3", only_if_absent=True) is True


@pytest.mark.asyncio
async def test_plain_set_clears_expiry(store):
    await store.set("k", "v", ttl=10)
    await store.set("k", "w")
    assert await store.ttl("k") == -1


@pytest.mark.asyncio
async def test_list_ranges(store):
    await store.rpush("l", "a", "b", "c", "d")
    assert await store.lrange("l", 0, -1) == ["a", "b", "c", "d"]
    assert await store.lrange("l", -2, -1) == ["c", "d"]
    assert await store.lrange("l", -50, -1) == ["a", "b", "c", "d"]
    assert await store.lrange("missing", 0, -1) == []

    await store.lpush("l", "y", "x")
    assert await store.lrange("l", 0, 1) == ["x", "y"]


@pytest.mark.asyncio
async def test_wrong_type_is_an_error(store):
    await store.set("k", "v")
    with pytest.raises(StoreUnavailableError):
        await store.rpush("k", "x")


@pytest.mark.asyncio
async def test_scan_keys_matches_glob(store):
    await store.set("message:c1:1:a", "x")
    await store.set("message:c10:1:a", "x")
    await store.set("conversation:u:c1", "x")

    assert await store.scan_keys("message:c1:*") == ["message:c1:1:a"]


@pytest.mark.asyncio
async def test_pipeline_runs_everything_then_reports_failure(store):
    await store.set("text", "v")

    with pytest.raises(StoreUnavailableError, match="1 of 3"):
        await store.pipeline().set("a", "1").rpush("text", "x").set("b", "2").execute()

    # No rollback: commands around the failure still applied
    assert await store.get("a") == "1"
    assert await store.get("b") == "2"


@pytest.mark.asyncio
async def test_incrby_and_persist(store):
    assert await store.incrby("n", 2) == 2
    assert await store.incrby("n", 3) == 5
    await store.expire("n", 60)
    assert await store.persist("n") is True
    assert await store.ttl("n") == -1

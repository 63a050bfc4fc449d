"""Tests for SCAN-based key iteration."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from rediskeyscanner.errors import ScanConnectionError
from rediskeyscanner.iterator import PatternIterator


async def drain(iterator):
    return [batch async for batch in iterator]


@pytest.mark.asyncio
async def test_batches_cover_keyspace(fake_redis):
    """Test that every key is delivered once across pages of the requested size."""
    for i in range(25):
        fake_redis.set(f"key:{i:02d}")

    iterator = PatternIterator(fake_redis, "*", 10)
    batches = await drain(iterator)

    assert [len(batch) for batch in batches] == [10, 10, 5]
    assert sorted(key for batch in batches for key in batch) == sorted(fake_redis.keys)
    assert iterator.exhausted is True
    assert fake_redis.scan_calls == [0, 10, 20]


@pytest.mark.asyncio
async def test_pattern_and_count_passed_to_scan(fake_redis):
    for name in ("one", "two", "three", "four"):
        fake_redis.set(name)

    batches = await drain(PatternIterator(fake_redis, "t*", 100))

    assert sorted(batches[0]) == ["three", "two"]


@pytest.mark.asyncio
async def test_empty_pages_are_skipped(fake_redis):
    """Test that pages with no matching keys are not delivered."""
    for i in range(10):
        fake_redis.set(f"a:{i}")
    fake_redis.set("z:match")

    iterator = PatternIterator(fake_redis, "z:*", 5)
    batches = await drain(iterator)

    assert batches == [["z:match"]]
    assert iterator.pages_requested == 3


@pytest.mark.asyncio
async def test_empty_keyspace_exhausts_immediately(fake_redis):
    iterator = PatternIterator(fake_redis, "*", 10)

    assert await drain(iterator) == []
    assert iterator.exhausted is True
    assert fake_redis.scan_calls == [0]


@pytest.mark.asyncio
async def test_pause_stops_delivery(fake_redis):
    """Test that no batch is delivered after pause and exhaustion is not signalled."""
    for i in range(30):
        fake_redis.set(f"key:{i:02d}")

    iterator = PatternIterator(fake_redis, "*", 10)
    first = await iterator.__anext__()
    iterator.pause()

    assert len(first) == 10
    assert await drain(iterator) == []
    assert iterator.paused is True
    assert iterator.exhausted is False
    assert fake_redis.scan_calls == [0]


@pytest.mark.asyncio
async def test_pause_during_request_drops_page(fake_redis):
    """Test that a page requested before pause() is not delivered after it."""
    for i in range(30):
        fake_redis.set(f"key:{i:02d}")

    iterator = PatternIterator(fake_redis, "*", 10)
    original_scan = fake_redis.scan

    async def scan_then_pause(**kwargs):
        result = await original_scan(**kwargs)
        iterator.pause()
        return result

    fake_redis.scan = scan_then_pause

    assert await drain(iterator) == []
    assert iterator.exhausted is False


@pytest.mark.asyncio
async def test_exhausted_iterator_is_not_restartable(fake_redis):
    fake_redis.set("only")
    iterator = PatternIterator(fake_redis, "*", 10)

    assert await drain(iterator) == [["only"]]
    assert await drain(iterator) == []
    assert fake_redis.scan_calls == [0]


@pytest.mark.asyncio
async def test_scan_failure_raises_connection_error(fake_redis):
    fake_redis.scan_error = RedisConnectionError("Connection reset by peer")

    with pytest.raises(ScanConnectionError, match="SCAN failed"):
        await drain(PatternIterator(fake_redis, "*", 10))


@pytest.mark.asyncio
async def test_should_stop_checked_before_every_request(fake_redis):
    """Test that the stop check runs between empty pages, not only on delivery."""
    for i in range(50):
        fake_redis.set(f"a:{i:02d}")

    iterator = PatternIterator(fake_redis, "z:*", 5, should_stop=lambda: len(fake_redis.scan_calls) >= 3)

    assert await drain(iterator) == []
    assert len(fake_redis.scan_calls) == 3
    assert iterator.paused is True
    assert iterator.exhausted is False


@pytest.mark.asyncio
async def test_exhaustion_wins_over_should_stop(fake_redis):
    fake_redis.set("a")

    iterator = PatternIterator(fake_redis, "*", 10, should_stop=lambda: bool(fake_redis.scan_calls))

    assert await drain(iterator) == [["a"]]
    assert iterator.exhausted is True
    assert iterator.paused is False

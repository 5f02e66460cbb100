from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from application.services.rating_service import RatingService
from domain.exceptions.rates import (
    InvalidRangeError,
    RateLimitedError,
    RateNotFoundError,
    RecordNotFoundError,
    StoreError,
    StoreWriteFailed,
)
from domain.models.rate import RateSource
from infrastructure.persistence.repositories.memory import InMemoryRateStore
from infrastructure.providers.coinapi import MAX_LIMIT
from rate_factories import COIN, FIAT, T0, FakeExchangeClient, make_rate


def failing_store(**overrides) -> AsyncMock:
    """InMemoryRateStore-shaped mock whose given methods raise or return as told."""
    mock_store = AsyncMock(spec=InMemoryRateStore)
    for name, behaviour in overrides.items():
        if isinstance(behaviour, Exception):
            getattr(mock_store, name).side_effect = behaviour
        else:
            getattr(mock_store, name).return_value = behaviour
    return mock_store


class TestLatest:
    @pytest.mark.asyncio
    async def test_serves_stored_rate_without_exchange_call(self, store, exchange):
        stored = make_rate(5, "41000")
        await store.add(stored)
        service = RatingService(store, exchange)

        result = await service.latest(COIN, FIAT)

        assert result.rate.value == Decimal("41000")
        assert result.source is RateSource.STORE
        assert not result.write_failed
        assert exchange.rate_calls == []

    @pytest.mark.asyncio
    async def test_empty_store_falls_back_and_persists(self, store, exchange):
        service = RatingService(store, exchange)

        result = await service.latest(COIN, FIAT)

        assert result.source is RateSource.EXCHANGE
        assert result.rate.value == Decimal("43000.5")
        assert exchange.rate_calls == [(COIN, FIAT, None)]
        assert (await store.latest(COIN, FIAT)).value == Decimal("43000.5")

    @pytest.mark.asyncio
    async def test_store_read_failure_falls_back(self, exchange):
        mock_store = failing_store(latest=StoreError("connection reset"))
        service = RatingService(mock_store, exchange)

        result = await service.latest(COIN, FIAT)

        assert result.rate == exchange.rate
        mock_store.add.assert_awaited_once_with(exchange.rate)

    @pytest.mark.asyncio
    async def test_write_failure_is_advisory(self, exchange):
        mock_store = failing_store(
            latest=RecordNotFoundError("empty"),
            add=StoreWriteFailed("disk full"),
        )
        service = RatingService(mock_store, exchange)

        result = await service.latest(COIN, FIAT)

        assert result.rate == exchange.rate
        assert result.write_failed
        assert isinstance(result.write_error, StoreWriteFailed)

    @pytest.mark.asyncio
    async def test_generic_store_error_on_write_becomes_store_write_failed(self, exchange):
        mock_store = failing_store(latest=RecordNotFoundError("empty"), add=StoreError("boom"))
        service = RatingService(mock_store, exchange)

        result = await service.latest(COIN, FIAT)

        assert isinstance(result.write_error, StoreWriteFailed)

    @pytest.mark.asyncio
    async def test_fetch_error_propagates_unchanged(self, store):
        error = RateLimitedError("limit reached", status_code=429)
        service = RatingService(store, FakeExchangeClient(error=error))

        with pytest.raises(RateLimitedError) as exc_info:
            await service.latest(COIN, FIAT)

        assert exc_info.value is error


class TestAt:
    @pytest.mark.asyncio
    async def test_store_hit_within_tolerance(self, store, exchange):
        await store.add(make_rate(2, "101"))
        service = RatingService(store, exchange)

        result = await service.at(COIN, FIAT, T0)

        assert result.rate.value == Decimal("101")
        assert result.source is RateSource.STORE
        assert exchange.rate_calls == []

    @pytest.mark.asyncio
    async def test_miss_fetches_at_instant_and_persists(self, store):
        wanted = T0 + timedelta(hours=3)
        fetched = make_rate(180, "99")
        exchange = FakeExchangeClient(rate=fetched)
        service = RatingService(store, exchange)

        result = await service.at(COIN, FIAT, wanted)

        assert result.rate == fetched
        assert result.source is RateSource.EXCHANGE
        assert exchange.rate_calls == [(COIN, FIAT, wanted)]
        assert (await store.at(COIN, FIAT, wanted)).value == Decimal("99")

    @pytest.mark.asyncio
    async def test_miss_with_write_failure_still_returns_rate(self):
        fetched = make_rate(0, "123.45")
        mock_store = failing_store(at=RecordNotFoundError("miss"), add=StoreWriteFailed("read-only"))
        service = RatingService(mock_store, FakeExchangeClient(rate=fetched))

        result = await service.at(COIN, FIAT, T0)

        assert result.rate == fetched
        assert result.write_failed

    @pytest.mark.asyncio
    async def test_fetch_not_found_propagates(self, store):
        service = RatingService(store, FakeExchangeClient(error=RateNotFoundError("no data")))

        with pytest.raises(RateNotFoundError):
            await service.at(COIN, FIAT, T0)


class TestRange:
    @pytest.mark.asyncio
    async def test_uncovered_range_returns_exactly_what_exchange_returned(self, store):
        await store.add(make_rate(-60, "50"))
        fetched = [make_rate(10, "130"), make_rate(11, "131")]
        exchange = FakeExchangeClient(rates=fetched)
        service = RatingService(store, exchange)
        start, end = T0 + timedelta(minutes=10), T0 + timedelta(minutes=12)

        rates = await service.range(COIN, FIAT, start, end)

        assert rates == fetched
        assert exchange.range_calls == [(COIN, FIAT, start, end, MAX_LIMIT)]
        assert await store.count_for_range(COIN, FIAT, start, end) == 2

    @pytest.mark.asyncio
    async def test_covered_range_served_from_store(self, store):
        await store.add_batch([make_rate(0, "100"), make_rate(1, "110")])
        exchange = FakeExchangeClient(rates=[make_rate(2, "999")])
        service = RatingService(store, exchange)

        rates = await service.range(COIN, FIAT, T0, T0 + timedelta(minutes=5))

        assert [r.value for r in rates] == [Decimal("110"), Decimal("100")]
        assert exchange.range_calls == []

    @pytest.mark.asyncio
    async def test_write_failure_is_a_hard_error(self):
        mock_store = failing_store(count_for_range=0, add_batch=StoreWriteFailed("constraint"))
        service = RatingService(mock_store, FakeExchangeClient(rates=[make_rate(0)]))

        with pytest.raises(StoreWriteFailed):
            await service.range(COIN, FIAT, T0, T0 + timedelta(minutes=5))

    @pytest.mark.asyncio
    async def test_count_failure_propagates(self, exchange):
        mock_store = failing_store(count_for_range=StoreError("down"))
        service = RatingService(mock_store, exchange)

        with pytest.raises(StoreError):
            await service.range(COIN, FIAT, T0, T0 + timedelta(minutes=5))
        assert exchange.range_calls == []

    @pytest.mark.asyncio
    async def test_reversed_bounds_rejected(self, store, exchange):
        service = RatingService(store, exchange)

        with pytest.raises(InvalidRangeError):
            await service.range(COIN, FIAT, T0 + timedelta(minutes=5), T0)

    @pytest.mark.asyncio
    async def test_custom_page_limit_is_passed_to_exchange(self, store):
        exchange = FakeExchangeClient(rates=[])
        service = RatingService(store, exchange, page_limit=10)

        assert await service.range(COIN, FIAT, T0, T0 + timedelta(minutes=5)) == []
        assert exchange.range_calls[0][-1] == 10


class TestAverage:
    @pytest.mark.asyncio
    async def test_covered_average_comes_from_store(self, store):
        await store.add_batch([make_rate(0, "100"), make_rate(1, "110"), make_rate(2, "120")])
        exchange = FakeExchangeClient(rates=[make_rate(1, "999")])
        service = RatingService(store, exchange)

        result = await service.average(COIN, FIAT, T0, T0 + timedelta(minutes=2))

        assert result.value == Decimal("110")
        assert result.source is RateSource.STORE
        assert result.count == 3
        assert exchange.range_calls == []

    @pytest.mark.asyncio
    async def test_uncovered_single_value(self, store):
        await store.add_batch([make_rate(0, "100"), make_rate(1, "110"), make_rate(2, "120")])
        exchange = FakeExchangeClient(rates=[make_rate(11, "130")])
        service = RatingService(store, exchange)

        result = await service.average(COIN, FIAT, T0 + timedelta(minutes=10), T0 + timedelta(minutes=12))

        assert result.value == Decimal("130")
        assert result.source is RateSource.EXCHANGE
        assert len(exchange.range_calls) == 1

    @pytest.mark.asyncio
    async def test_uncovered_mean_uses_decimal_arithmetic(self, store):
        values = ["0.1", "0.2", "0.4"]
        exchange = FakeExchangeClient(rates=[make_rate(i, v) for i, v in enumerate(values)])
        service = RatingService(store, exchange)

        result = await service.average(COIN, FIAT, T0, T0 + timedelta(minutes=2))

        assert result.value == (Decimal("0.1") + Decimal("0.2") + Decimal("0.4")) / 3
        assert result.count == 3
        assert await store.count_for_range(COIN, FIAT, T0, T0 + timedelta(minutes=2)) == 3

    @pytest.mark.asyncio
    async def test_empty_upstream_range_is_not_found(self, store):
        service = RatingService(store, FakeExchangeClient(rates=[]))

        with pytest.raises(RateNotFoundError):
            await service.average(COIN, FIAT, T0, T0 + timedelta(minutes=2))

    @pytest.mark.asyncio
    async def test_write_failure_keeps_the_mean(self):
        mock_store = failing_store(count_for_range=0, add_batch=StoreWriteFailed("down"))
        exchange = FakeExchangeClient(rates=[make_rate(0, "10"), make_rate(1, "20")])
        service = RatingService(mock_store, exchange)

        result = await service.average(COIN, FIAT, T0, T0 + timedelta(minutes=1))

        assert result.value == Decimal("15")
        assert result.write_failed

    @pytest.mark.asyncio
    async def test_exchange_error_propagates(self, store):
        error = RateLimitedError("limit reached", status_code=429)
        service = RatingService(store, FakeExchangeClient(error=error))

        with pytest.raises(RateLimitedError) as exc_info:
            await service.average(COIN, FIAT, T0, T0 + timedelta(minutes=1))

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_equal_bounds_are_not_special_cased(self, store):
        await store.add(make_rate(0, "100"))
        exchange = FakeExchangeClient(rates=[make_rate(0, "999")])
        service = RatingService(store, exchange)

        result = await service.average(COIN, FIAT, T0, T0)

        assert result.value == Decimal("100")
        assert result.source is RateSource.STORE

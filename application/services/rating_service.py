import logging
from datetime import datetime
from decimal import Decimal

from domain.exceptions.rates import (
    InvalidRangeError,
    RateNotFoundError,
    StoreError,
    StoreWriteFailed,
)
from domain.models.rate import AverageResult, Rate, RateResult, RateSource
from infrastructure.persistence.repositories.base import RateStore
from infrastructure.providers.base import ExchangeClient
from infrastructure.providers.coinapi import MAX_LIMIT

logger = logging.getLogger(__name__)


class RatingService:
    """
    Cache-aside rating orchestrator.

    Reads go to the rate store first and fall back to the exchange on a miss;
    freshly fetched rates are written back. Exchange errors are never masked.
    Write-back failures only downgrade single-rate answers to advisory
    (``RateResult.write_error``) but fail range answers outright.
    """

    def __init__(self, store: RateStore, exchange: ExchangeClient, page_limit: int = MAX_LIMIT):
        self.store = store
        self.exchange = exchange
        self.page_limit = page_limit

    async def _store_one(self, rate: Rate) -> StoreWriteFailed | None:
        try:
            await self.store.add(rate)
        except StoreError as e:
            logger.error(f"Failed to store {rate.coin}/{rate.fiat} rate at {rate.timestamp}: {e}")
            return e if isinstance(e, StoreWriteFailed) else StoreWriteFailed(str(e))
        return None

    async def refresh_latest(self, coin: str, fiat: str) -> RateResult:
        """Fetch the current rate from the exchange and persist it."""
        rate = await self.exchange.fetch_rate(coin, fiat, None)
        write_error = await self._store_one(rate)
        return RateResult(rate=rate, source=RateSource.EXCHANGE, write_error=write_error)

    async def latest(self, coin: str, fiat: str) -> RateResult:
        try:
            rate = await self.store.latest(coin, fiat)
            return RateResult(rate=rate, source=RateSource.STORE)
        except StoreError as e:
            logger.warning(f"No stored latest rate for {coin}/{fiat}, asking {self.exchange.name}: {e}")

        return await self.refresh_latest(coin, fiat)

    async def at(self, coin: str, fiat: str, timestamp: datetime) -> RateResult:
        try:
            rate = await self.store.at(coin, fiat, timestamp)
            return RateResult(rate=rate, source=RateSource.STORE)
        except StoreError as e:
            logger.warning(f"No stored {coin}/{fiat} rate at {timestamp}, asking {self.exchange.name}: {e}")

        rate = await self.exchange.fetch_rate(coin, fiat, timestamp)
        write_error = await self._store_one(rate)
        return RateResult(rate=rate, source=RateSource.EXCHANGE, write_error=write_error)

    async def _stored_count(self, coin: str, fiat: str, start: datetime, end: datetime) -> int:
        if start > end:
            raise InvalidRangeError(f"range start {start} is after end {end}")
        # Any stored row inside the window counts as coverage, gaps included.
        return await self.store.count_for_range(coin, fiat, start, end)

    async def range(self, coin: str, fiat: str, start: datetime, end: datetime) -> list[Rate]:
        count = await self._stored_count(coin, fiat, start, end)
        if count:
            return await self.store.range(coin, fiat, start, end)

        logger.info(f"{coin}/{fiat} range {start} - {end} not stored, fetching from {self.exchange.name}")
        rates = await self.exchange.fetch_range(coin, fiat, start, end, self.page_limit)

        try:
            await self.store.add_batch(rates)
        except StoreError as e:
            logger.error(f"Failed to store {len(rates)} {coin}/{fiat} rates: {e}")
            if isinstance(e, StoreWriteFailed):
                raise
            raise StoreWriteFailed(str(e)) from e

        return rates

    async def average(self, coin: str, fiat: str, start: datetime, end: datetime) -> AverageResult:
        count = await self._stored_count(coin, fiat, start, end)
        if count:
            value = await self.store.average_for_range(coin, fiat, start, end)
            return AverageResult(value=value, source=RateSource.STORE, count=count)

        logger.info(f"{coin}/{fiat} range {start} - {end} not stored, fetching from {self.exchange.name}")
        rates = await self.exchange.fetch_range(coin, fiat, start, end, self.page_limit)
        if not rates:
            raise RateNotFoundError(f"no {coin}/{fiat} rates between {start} and {end}")

        value = sum((r.value for r in rates), Decimal(0)) / len(rates)

        write_error = None
        try:
            await self.store.add_batch(rates)
        except StoreError as e:
            logger.error(f"Failed to store {len(rates)} {coin}/{fiat} rates: {e}")
            write_error = e if isinstance(e, StoreWriteFailed) else StoreWriteFailed(str(e))

        return AverageResult(
            value=value, source=RateSource.EXCHANGE, count=len(rates), write_error=write_error
        )

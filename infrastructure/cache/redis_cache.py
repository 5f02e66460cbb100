import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal

from redis import asyncio as redis
from redis.exceptions import RedisError

from domain.exceptions.rates import InvalidRateError
from domain.models.rate import Rate

logger = logging.getLogger(__name__)


class RedisRateCache:
    """Latest-rate cache in front of the SQL store. Failures degrade to a miss."""

    def __init__(self, redis_client: redis.Redis, ttl: timedelta = timedelta(minutes=5)):
        self.redis = redis_client
        self.ttl = ttl

    def _make_latest_key(self, coin: str, fiat: str) -> str:
        return f"rate:latest:{coin}:{fiat}"

    async def get_latest(self, coin: str, fiat: str) -> Rate | None:
        key = self._make_latest_key(coin, fiat)
        try:
            data = await self.redis.get(key)
        except RedisError as e:
            logger.warning(f"Redis read failed for {key}: {e}")
            return None

        if not data:
            return None

        try:
            rate_dict = json.loads(data)
            return Rate(
                id=rate_dict.get("id"),
                timestamp=datetime.fromisoformat(rate_dict["timestamp"]),
                coin=rate_dict["coin"],
                fiat=rate_dict["fiat"],
                value=Decimal(rate_dict["value"]),
            )
        except (ValueError, KeyError, ArithmeticError, InvalidRateError) as e:
            logger.warning(f"Discarding malformed cache entry {key}: {e}")
            return None

    async def set_latest(self, rate: Rate) -> None:
        key = self._make_latest_key(rate.coin, rate.fiat)

        rate_dict = {
            "id": rate.id,
            "timestamp": rate.timestamp.isoformat(),
            "coin": rate.coin,
            "fiat": rate.fiat,
            "value": str(rate.value),
        }

        try:
            await self.redis.setex(key, self.ttl, json.dumps(rate_dict))
        except RedisError as e:
            logger.warning(f"Redis write failed for {key}: {e}")

    async def set_latest_if_newer(self, rate: Rate) -> None:
        cached = await self.get_latest(rate.coin, rate.fiat)
        if cached is None or rate.timestamp >= cached.timestamp:
            await self.set_latest(rate)

    async def invalidate(self, coin: str, fiat: str) -> None:
        key = self._make_latest_key(coin, fiat)
        try:
            await self.redis.delete(key)
        except RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")

    async def close(self) -> None:
        await self.redis.aclose()

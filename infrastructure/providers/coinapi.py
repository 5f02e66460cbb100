import asyncio
import contextlib
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from domain.exceptions.rates import (
    BadRequestError,
    ExchangeError,
    ExchangeNotFoundError,
    ExchangeTransportError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidRangeError,
    InvalidTimestampError,
    RateLimitedError,
)
from domain.models.rate import Rate
from domain.timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

MAX_LIMIT = 5000
PERIOD_INTERVAL = "5MIN"
COINAPI_PROD_URL = "https://rest.coinapi.io"
COINAPI_SANDBOX_URL = "https://rest-sandbox.coinapi.io"

# 550 is CoinAPI's "no data" status.
STATUS_ERRORS: dict[int, type[ExchangeError]] = {
    400: BadRequestError,
    401: InvalidCredentialsError,
    403: ForbiddenError,
    429: RateLimitedError,
    550: ExchangeNotFoundError,
}


def _coerce_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return parse_timestamp(value)
        except InvalidTimestampError as e:
            raise ValueError(str(e)) from e
    return value


class CoinAPIExchangeRate(BaseModel):
    time: datetime
    asset_id_base: str = Field(min_length=1)
    asset_id_quote: str = Field(min_length=1)
    rate: Decimal = Field(ge=0)

    @field_validator("time", mode="before")
    @classmethod
    def parse_time(cls, v: Any) -> Any:
        return _coerce_timestamp(v)

    def to_rate(self) -> Rate:
        return Rate(
            timestamp=self.time,
            coin=self.asset_id_base,
            fiat=self.asset_id_quote,
            value=self.rate,
        )


class CoinAPICandle(BaseModel):
    time_period_start: datetime | None = None
    time_period_end: datetime
    price_open: Decimal | None = None
    price_high: Decimal | None = None
    price_low: Decimal | None = None
    price_close: Decimal = Field(ge=0)
    volume_traded: Decimal | None = None
    trades_count: int | None = None

    @field_validator("time_period_start", "time_period_end", mode="before")
    @classmethod
    def parse_times(cls, v: Any) -> Any:
        return _coerce_timestamp(v)


CANDLES = TypeAdapter(list[CoinAPICandle])


class CoinAPIClient:
    """
    CoinAPI REST client.

    Once CoinAPI answers 429 the client latches: every later call raises
    RateLimitedError without touching the network. Build a new instance to recover.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = COINAPI_PROD_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10,
        period: str = PERIOD_INTERVAL,
        retry_attempts: int = 3,
        retry_backoff: float = 1,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.period = period
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._limit_reached = asyncio.Event()

    @property
    def name(self) -> str:
        return "coinapi"

    @property
    def limit_reached(self) -> bool:
        return self._limit_reached.is_set()

    def _raise_if_limited(self) -> None:
        if self._limit_reached.is_set():
            raise RateLimitedError("CoinAPI request limit reached", status_code=429)

    async def _send(self, url: str, params: dict) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, min=self.retry_backoff, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                response = await self._client.get(
                    url, params=params, headers={"X-CoinAPI-Key": self.api_key}
                )
        return response

    async def _request(self, path: str, params: dict) -> Any:
        self._raise_if_limited()
        url = f"{self.base_url}/{path}"
        logger.debug(f"CoinAPI GET {url} {params}")

        try:
            response = await self._send(url, params)
        except httpx.RequestError as e:
            raise ExchangeTransportError(f"CoinAPI request failed: {e.__class__.__name__}") from e

        status = response.status_code
        if not response.is_success:
            message = None
            with contextlib.suppress(Exception):
                message = response.json().get("error")
            detail = message or response.text[:200]

            if status == 429:
                self._limit_reached.set()
                logger.warning("CoinAPI request limit reached; further calls are blocked")

            error_class = STATUS_ERRORS.get(status, ExchangeError)
            raise error_class(f"CoinAPI HTTP error {status}: {detail}", status_code=status)

        try:
            return response.json(parse_float=Decimal)
        except ValueError as e:
            raise ExchangeError(f"CoinAPI response parsing error: {str(e)}", status_code=status) from e

    async def fetch_rate(self, coin: str, fiat: str, at: datetime | None = None) -> Rate:
        params = {}
        if at is not None:
            params["time"] = format_timestamp(at)

        data = await self._request(f"v1/exchangerate/{coin}/{fiat}", params)
        try:
            exchange_rate = CoinAPIExchangeRate.model_validate(data)
        except ValidationError as e:
            raise ExchangeError(f"CoinAPI returned an invalid exchange rate: {e}") from e
        return exchange_rate.to_rate()

    async def fetch_range(
        self,
        coin: str,
        fiat: str,
        start: datetime,
        end: datetime | None,
        limit: int = MAX_LIMIT,
    ) -> list[Rate]:
        self._raise_if_limited()
        if start is None:
            raise InvalidRangeError("range start must be provided")

        params = {
            "period_id": self.period,
            "time_start": format_timestamp(start),
            "limit": str(limit),
            "include_empty_items": "false",
        }
        if end is not None:
            params["time_end"] = format_timestamp(end)

        data = await self._request(f"v1/ohlcv/{coin}/{fiat}/history", params)
        try:
            candles = CANDLES.validate_python(data)
        except ValidationError as e:
            raise ExchangeError(f"CoinAPI returned invalid candles: {e}") from e

        return [
            Rate(timestamp=candle.time_period_end, coin=coin, fiat=fiat, value=candle.price_close)
            for candle in candles
        ]

    async def fetch_range_from(
        self, coin: str, fiat: str, start: datetime, limit: int = MAX_LIMIT
    ) -> list[Rate]:
        return await self.fetch_range(coin, fiat, start, None, limit)

    async def close(self) -> None:
        await self._client.aclose()

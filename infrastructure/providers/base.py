from datetime import datetime
from typing import Protocol

from domain.models.rate import Rate


class ExchangeClient(Protocol):
    """Upstream market-data provider, reduced to what the rating service calls."""

    @property
    def name(self) -> str:
        ...

    async def fetch_rate(self, coin: str, fiat: str, at: datetime | None = None) -> Rate:
        """Rate at ``at``, or the current rate when ``at`` is None."""
        ...

    async def fetch_range(
        self, coin: str, fiat: str, start: datetime, end: datetime | None, limit: int
    ) -> list[Rate]:
        ...

    async def fetch_range_from(
        self, coin: str, fiat: str, start: datetime, limit: int
    ) -> list[Rate]:
        ...

    async def close(self) -> None:
        ...

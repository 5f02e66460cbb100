from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from domain.models.rate import Rate

# At() resolves a timestamp to the first rate inside [t, t + AT_TOLERANCE].
AT_TOLERANCE = timedelta(minutes=5)


class RateStore(Protocol):
	"""
	Persistence contract the rating service depends on.

	Misses raise RecordNotFoundError, other read failures StoreError and write
	failures StoreWriteFailed. Inserting a rate whose (coin, fiat, timestamp)
	already exists is silently ignored.
	"""

	async def add(self, rate: Rate) -> None: ...

	async def add_batch(self, rates: list[Rate]) -> None: ...

	async def latest(self, coin: str, fiat: str) -> Rate: ...

	async def oldest(self, coin: str, fiat: str) -> Rate: ...

	async def at(self, coin: str, fiat: str, timestamp: datetime) -> Rate: ...

	async def range(self, coin: str, fiat: str, start: datetime, end: datetime) -> list[Rate]:
		"""Rates within [start, end], newest first."""
		...

	async def count_for_range(self, coin: str, fiat: str, start: datetime, end: datetime) -> int: ...

	async def average_for_range(
		self, coin: str, fiat: str, start: datetime, end: datetime
	) -> Decimal: ...

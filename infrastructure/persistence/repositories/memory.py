from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal

from domain.exceptions.rates import RecordNotFoundError
from domain.models.rate import Rate
from domain.timestamps import ensure_utc
from infrastructure.persistence.repositories.base import AT_TOLERANCE


class InMemoryRateStore:
	"""Dictionary-backed RateStore for tests and local runs without a database."""

	def __init__(self, tolerance: timedelta = AT_TOLERANCE):
		self.tolerance = tolerance
		self._rates: dict[tuple[str, str, datetime], Rate] = {}
		self._next_id = 1

	def __len__(self) -> int:
		return len(self._rates)

	async def add(self, rate: Rate) -> None:
		key = (rate.coin, rate.fiat, rate.timestamp)
		if key in self._rates:
			return
		self._rates[key] = replace(rate, id=self._next_id)
		self._next_id += 1

	async def add_batch(self, rates: list[Rate]) -> None:
		for rate in rates:
			await self.add(rate)

	def _pair(self, coin: str, fiat: str) -> list[Rate]:
		rates = [r for r in self._rates.values() if r.coin == coin and r.fiat == fiat]
		return sorted(rates, key=lambda r: r.timestamp)

	def _window(self, coin: str, fiat: str, start: datetime, end: datetime) -> list[Rate]:
		start, end = ensure_utc(start), ensure_utc(end)
		return [r for r in self._pair(coin, fiat) if start <= r.timestamp <= end]

	async def latest(self, coin: str, fiat: str) -> Rate:
		rates = self._pair(coin, fiat)
		if not rates:
			raise RecordNotFoundError(f'no rates stored for {coin}/{fiat}')
		return rates[-1]

	async def oldest(self, coin: str, fiat: str) -> Rate:
		rates = self._pair(coin, fiat)
		if not rates:
			raise RecordNotFoundError(f'no rates stored for {coin}/{fiat}')
		return rates[0]

	async def at(self, coin: str, fiat: str, timestamp: datetime) -> Rate:
		timestamp = ensure_utc(timestamp)
		matches = self._window(coin, fiat, timestamp, timestamp + self.tolerance)
		if not matches:
			raise RecordNotFoundError(f'no {coin}/{fiat} rate near {timestamp.isoformat()}')
		return matches[0]

	async def range(self, coin: str, fiat: str, start: datetime, end: datetime) -> list[Rate]:
		return list(reversed(self._window(coin, fiat, start, end)))

	async def count_for_range(self, coin: str, fiat: str, start: datetime, end: datetime) -> int:
		return len(self._window(coin, fiat, start, end))

	async def average_for_range(
		self, coin: str, fiat: str, start: datetime, end: datetime
	) -> Decimal:
		rates = self._window(coin, fiat, start, end)
		if not rates:
			raise RecordNotFoundError(f'no {coin}/{fiat} rates between {start} and {end}')
		return sum((r.value for r in rates), Decimal(0)) / len(rates)

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import Select, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from domain.exceptions.rates import RecordNotFoundError, StoreError, StoreWriteFailed
from domain.models.rate import Rate
from domain.timestamps import ensure_utc
from infrastructure.cache.redis_cache import RedisRateCache
from infrastructure.persistence.database import Database
from infrastructure.persistence.models.rate import RateDB
from infrastructure.persistence.repositories.base import AT_TOLERANCE

logger = logging.getLogger(__name__)

# Keeps each INSERT under the bind-parameter limits of SQLite and asyncpg.
INSERT_CHUNK_SIZE = 1000

DB_ERRORS = (SQLAlchemyError, OSError)


class SqlRateStore:
	def __init__(
		self,
		database: Database,
		cache: RedisRateCache | None = None,
		tolerance: timedelta = AT_TOLERANCE,
	):
		self.database = database
		self.cache = cache
		self.tolerance = tolerance

	def _insert_statement(self, rows: list[dict]):
		dialect = self.database.dialect
		if dialect == 'postgresql':
			stmt = postgresql.insert(RateDB)
		elif dialect == 'sqlite':
			stmt = sqlite.insert(RateDB)
		else:
			raise StoreWriteFailed(f'unsupported database dialect: {dialect}')
		return stmt.values(rows).on_conflict_do_nothing(index_elements=['coin', 'fiat', 'date'])

	async def add(self, rate: Rate) -> None:
		await self.add_batch([rate])

	async def add_batch(self, rates: list[Rate]) -> None:
		if not rates:
			return

		rows = [
			{'date': r.timestamp, 'rate': r.value, 'coin': r.coin, 'fiat': r.fiat}
			for r in rates
		]
		try:
			async with self.database.session() as session:
				for i in range(0, len(rows), INSERT_CHUNK_SIZE):
					await session.execute(self._insert_statement(rows[i:i + INSERT_CHUNK_SIZE]))
		except DB_ERRORS as e:
			logger.error(f'Failed to insert {len(rows)} rates: {e}')
			raise StoreWriteFailed(f'failed to store {len(rows)} rates') from e

		if self.cache is not None:
			for coin, fiat in {(r.coin, r.fiat) for r in rates}:
				await self._refresh_cached_latest(coin, fiat)

	async def _refresh_cached_latest(self, coin: str, fiat: str) -> None:
		# A batch may be older than what is already stored, so the cache
		# always follows the newest stored row, not the newest written one.
		try:
			newest = await self._first(
				self._pair_query(coin, fiat).order_by(RateDB.date.desc()),
				f'no rates stored for {coin}/{fiat}',
			)
		except StoreError as e:
			logger.warning(f'Could not read newest {coin}/{fiat} rate, dropping cached latest: {e}')
			await self.cache.invalidate(coin, fiat)
			return
		await self.cache.set_latest(newest)

	@staticmethod
	def _pair_query(coin: str, fiat: str) -> Select:
		return select(RateDB).where(RateDB.coin == coin, RateDB.fiat == fiat)

	@staticmethod
	def _to_domain(row: RateDB) -> Rate:
		return Rate(
			id=row.id,
			timestamp=ensure_utc(row.date),
			coin=row.coin,
			fiat=row.fiat,
			value=Decimal(row.rate),
		)

	async def _first(self, stmt: Select, missing: str) -> Rate:
		try:
			async with self.database.session() as session:
				row = (await session.execute(stmt.limit(1))).scalars().first()
		except DB_ERRORS as e:
			logger.error(f'Rate query failed: {e}')
			raise StoreError('rate query failed') from e

		if row is None:
			raise RecordNotFoundError(missing)
		return self._to_domain(row)

	async def _scalar(self, stmt: Select):
		try:
			async with self.database.session() as session:
				return (await session.execute(stmt)).scalar()
		except DB_ERRORS as e:
			logger.error(f'Rate aggregate query failed: {e}')
			raise StoreError('rate aggregate query failed') from e

	async def _column(self, stmt: Select) -> list:
		try:
			async with self.database.session() as session:
				return list((await session.execute(stmt)).scalars().all())
		except DB_ERRORS as e:
			logger.error(f'Rate aggregate query failed: {e}')
			raise StoreError('rate aggregate query failed') from e

	async def latest(self, coin: str, fiat: str) -> Rate:
		if self.cache is not None:
			cached = await self.cache.get_latest(coin, fiat)
			if cached is not None:
				return cached

		rate = await self._first(
			self._pair_query(coin, fiat).order_by(RateDB.date.desc()),
			f'no rates stored for {coin}/{fiat}',
		)
		if self.cache is not None:
			await self.cache.set_latest_if_newer(rate)
		return rate

	async def oldest(self, coin: str, fiat: str) -> Rate:
		return await self._first(
			self._pair_query(coin, fiat).order_by(RateDB.date.asc()),
			f'no rates stored for {coin}/{fiat}',
		)

	async def at(self, coin: str, fiat: str, timestamp: datetime) -> Rate:
		timestamp = ensure_utc(timestamp)
		stmt = (
			self._pair_query(coin, fiat)
			.where(RateDB.date.between(timestamp, timestamp + self.tolerance))
			.order_by(RateDB.date.asc())
		)
		return await self._first(stmt, f'no {coin}/{fiat} rate near {timestamp.isoformat()}')

	async def range(self, coin: str, fiat: str, start: datetime, end: datetime) -> list[Rate]:
		stmt = (
			self._pair_query(coin, fiat)
			.where(RateDB.date.between(ensure_utc(start), ensure_utc(end)))
			.order_by(RateDB.date.desc())
		)
		try:
			async with self.database.session() as session:
				rows = (await session.execute(stmt)).scalars().all()
		except DB_ERRORS as e:
			logger.error(f'Rate range query failed: {e}')
			raise StoreError('rate range query failed') from e

		return [self._to_domain(row) for row in rows]

	async def count_for_range(self, coin: str, fiat: str, start: datetime, end: datetime) -> int:
		stmt = (
			select(func.count())
			.select_from(RateDB)
			.where(
				RateDB.coin == coin,
				RateDB.fiat == fiat,
				RateDB.date.between(ensure_utc(start), ensure_utc(end)),
			)
		)
		return int(await self._scalar(stmt) or 0)

	async def average_for_range(
		self, coin: str, fiat: str, start: datetime, end: datetime
	) -> Decimal:
		window = (
			RateDB.coin == coin,
			RateDB.fiat == fiat,
			RateDB.date.between(ensure_utc(start), ensure_utc(end)),
		)
		if self.database.dialect == 'sqlite':
			# SQLite averages in floating point; sum the stored decimals instead.
			values = await self._column(select(RateDB.rate).where(*window))
			average = sum(values, Decimal(0)) / len(values) if values else None
		else:
			average = await self._scalar(select(func.avg(RateDB.rate)).where(*window))

		if average is None:
			raise RecordNotFoundError(f'no {coin}/{fiat} rates between {start} and {end}')
		return Decimal(average)

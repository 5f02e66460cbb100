from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, Text, TypeDecorator, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
	pass


class ExactDecimal(TypeDecorator):
	"""
	NUMERIC where the backend has one. SQLite only has REAL affinity for
	numerics, so there the value is kept as its decimal string.
	"""

	impl = Numeric
	cache_ok = True

	def __init__(self, precision: int = 28, scale: int = 12):
		super().__init__(precision=precision, scale=scale)
		self.precision = precision
		self.scale = scale

	def load_dialect_impl(self, dialect):
		if dialect.name == 'sqlite':
			return dialect.type_descriptor(Text())
		return dialect.type_descriptor(Numeric(precision=self.precision, scale=self.scale))

	def process_bind_param(self, value, dialect):
		if value is None or dialect.name != 'sqlite':
			return value
		return str(Decimal(value))

	def process_result_value(self, value, dialect):
		if value is None or isinstance(value, Decimal):
			return value
		return Decimal(str(value))


class RateDB(Base):
	__tablename__ = 'rates'

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
	rate: Mapped[Decimal] = mapped_column(ExactDecimal(precision=28, scale=12), nullable=False)
	coin: Mapped[str] = mapped_column(Text, nullable=False)
	fiat: Mapped[str] = mapped_column(Text, nullable=False)

	__table_args__ = (
		Index('idx_rates_pair_date', 'coin', 'fiat', 'date'),
		UniqueConstraint('coin', 'fiat', 'date', name='uq_rates_coin_fiat_date'),
	)

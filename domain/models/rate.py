from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from domain.exceptions.rates import InvalidRateError, StoreWriteFailed
from domain.timestamps import ensure_utc


@dataclass(frozen=True)
class Rate:
    timestamp: datetime
    coin: str
    fiat: str
    value: Decimal
    id: int | None = None

    def __post_init__(self):
        if not isinstance(self.timestamp, datetime):
            raise InvalidRateError('rate must have a timestamp')
        if self.timestamp.replace(tzinfo=None) == datetime.min:
            raise InvalidRateError('rate timestamp must not be the zero time')
        if not self.coin or not self.fiat:
            raise InvalidRateError('rate coin and fiat must not be empty')
        if not isinstance(self.value, Decimal):
            raise InvalidRateError(f'rate value must be a Decimal, got {type(self.value).__name__}')
        if not self.value.is_finite() or self.value < 0:
            raise InvalidRateError(f'rate value must be a non-negative number, got {self.value}')

        object.__setattr__(self, 'timestamp', ensure_utc(self.timestamp))


class RateSource(str, Enum):
    STORE = 'store'
    EXCHANGE = 'exchange'


@dataclass(frozen=True)
class RateResult:
    rate: Rate
    source: RateSource
    write_error: StoreWriteFailed | None = None  # set when a fetched rate could not be persisted

    @property
    def write_failed(self) -> bool:
        return self.write_error is not None


@dataclass(frozen=True)
class AverageResult:
    value: Decimal
    source: RateSource
    count: int | None = None
    write_error: StoreWriteFailed | None = None

    @property
    def write_failed(self) -> bool:
        return self.write_error is not None

from datetime import UTC, datetime

from domain.exceptions.rates import InvalidTimestampError

# CoinAPI accepts and emits ISO 8601 in UTC with a trailing "Z".
DATETIME_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
DATE_FORMAT = '%Y-%m-%d'


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime(DATETIME_FORMAT)


def parse_timestamp(value: str | None) -> datetime:
    """
    Parse an RFC 3339 / ISO 8601 date-time or a bare YYYY-MM-DD date.

    Bare dates resolve to midnight UTC. Fractional seconds longer than six
    digits (CoinAPI sends seven) are truncated.
    """
    if not value:
        raise InvalidTimestampError('no timestamp provided')

    text = value.strip()
    try:
        return ensure_utc(datetime.strptime(text, DATE_FORMAT))
    except ValueError:
        pass

    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    text = _trim_fraction(text)

    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError as e:
        raise InvalidTimestampError(f'timestamp is not valid: {value!r}') from e


def _trim_fraction(text: str) -> str:
    dot = text.find('.')
    if dot == -1:
        return text
    end = dot + 1
    while end < len(text) and text[end].isdigit():
        end += 1
    digits = text[dot + 1:end]
    if len(digits) <= 6:
        return text
    return text[:dot + 1] + digits[:6] + text[end:]

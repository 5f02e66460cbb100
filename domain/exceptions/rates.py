class RatingError(Exception):
    pass


class InvalidRateError(RatingError):
    pass


class InvalidTimestampError(RatingError):
    pass


class InvalidRangeError(RatingError):
    pass


class RateNotFoundError(RatingError):
    pass


class ExchangeError(RatingError):
    """Upstream market-data failure. Carries the HTTP status when there was one."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BadRequestError(ExchangeError):
    pass


class RateLimitedError(ExchangeError):
    pass


class InvalidCredentialsError(ExchangeError):
    pass


class ForbiddenError(ExchangeError):
    pass


class ExchangeNotFoundError(ExchangeError, RateNotFoundError):
    pass


class ExchangeTransportError(ExchangeError):
    pass


class StoreError(RatingError):
    pass


class RecordNotFoundError(StoreError):
    pass


class StoreWriteFailed(StoreError):
    pass

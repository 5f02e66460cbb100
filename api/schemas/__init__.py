from .responses import ErrorResponse, RangeResponse, RatePoint, RateResponse, decimal_to_str

__all__ = [
	'ErrorResponse',
	'RangeResponse',
	'RatePoint',
	'RateResponse',
	'decimal_to_str',
]

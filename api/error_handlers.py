import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.exceptions.rates import (
	InvalidRangeError,
	InvalidTimestampError,
	RateNotFoundError,
	RatingError,
)

logger = logging.getLogger(__name__)

UNABLE_TO_SERVICE = 'unable to service request at the moment'


def register_exception_handlers(app: FastAPI) -> None:
	@app.exception_handler(InvalidTimestampError)
	async def invalid_timestamp_handler(request: Request, exc: InvalidTimestampError):
		return JSONResponse(status_code=400, content={'error': str(exc)})

	@app.exception_handler(InvalidRangeError)
	async def invalid_range_handler(request: Request, exc: InvalidRangeError):
		return JSONResponse(status_code=400, content={'error': str(exc)})

	@app.exception_handler(RateNotFoundError)
	async def not_found_handler(request: Request, exc: RateNotFoundError):
		return JSONResponse(status_code=404, content={'error': str(exc)})

	@app.exception_handler(RatingError)
	async def rating_error_handler(request: Request, exc: RatingError):
		logger.error(f'{request.url.path} failed: {exc.__class__.__name__}: {exc}')
		return JSONResponse(status_code=500, content={'error': UNABLE_TO_SERVICE})

	@app.exception_handler(TimeoutError)
	async def timeout_handler(request: Request, exc: TimeoutError):
		logger.error(f'{request.url.path} exceeded its deadline')
		return JSONResponse(status_code=500, content={'error': UNABLE_TO_SERVICE})

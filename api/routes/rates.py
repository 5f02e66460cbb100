import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_rating_service
from api.schemas import ErrorResponse, RangeResponse, RatePoint, RateResponse, decimal_to_str
from application.services import RatingService
from config.settings import Settings, get_settings
from domain.exceptions.rates import InvalidTimestampError
from domain.timestamps import parse_timestamp

router = APIRouter(tags=['rates'])

ERROR_RESPONSES = {
	400: {'model': ErrorResponse},
	404: {'model': ErrorResponse},
	500: {'model': ErrorResponse},
}


def _parse_bound(value: str | None, name: str):
	try:
		return parse_timestamp(value)
	except InvalidTimestampError as e:
		raise InvalidTimestampError(f'{name} timestamp value is invalid') from e


@router.get(
	'/latest',
	response_model=RateResponse,
	status_code=status.HTTP_200_OK,
	responses=ERROR_RESPONSES,
	summary='Latest exchange rate',
)
async def get_latest(
	service: Annotated[RatingService, Depends(get_rating_service)],
	settings: Annotated[Settings, Depends(get_settings)],
) -> RateResponse:
	async with asyncio.timeout(settings.REQUEST_TIMEOUT_SECONDS):
		result = await service.latest(settings.COIN, settings.FIAT)
	return RateResponse(data=decimal_to_str(result.rate.value))


@router.get(
	'/at',
	response_model=RateResponse,
	status_code=status.HTTP_200_OK,
	responses=ERROR_RESPONSES,
	summary='Exchange rate at a point in time',
)
async def get_at(
	service: Annotated[RatingService, Depends(get_rating_service)],
	settings: Annotated[Settings, Depends(get_settings)],
	t: Annotated[str | None, Query(description='RFC 3339 date-time or YYYY-MM-DD')] = None,
) -> RateResponse:
	timestamp = parse_timestamp(t)
	async with asyncio.timeout(settings.REQUEST_TIMEOUT_SECONDS):
		result = await service.at(settings.COIN, settings.FIAT, timestamp)
	return RateResponse(data=decimal_to_str(result.rate.value))


@router.get(
	'/avg',
	response_model=RateResponse,
	status_code=status.HTTP_200_OK,
	responses=ERROR_RESPONSES,
	summary='Average exchange rate over a time range',
)
async def get_average(
	service: Annotated[RatingService, Depends(get_rating_service)],
	settings: Annotated[Settings, Depends(get_settings)],
	from_: Annotated[str | None, Query(alias='from')] = None,
	to: Annotated[str | None, Query()] = None,
) -> RateResponse:
	start = _parse_bound(from_, 'from')
	end = _parse_bound(to, 'to')

	async with asyncio.timeout(settings.REQUEST_TIMEOUT_SECONDS):
		# A single-instant average is just a point lookup.
		if start == end:
			result = await service.at(settings.COIN, settings.FIAT, start)
			return RateResponse(data=decimal_to_str(result.rate.value))

		average = await service.average(settings.COIN, settings.FIAT, start, end)
	return RateResponse(data=decimal_to_str(average.value))


@router.get(
	'/range',
	response_model=RangeResponse,
	status_code=status.HTTP_200_OK,
	responses=ERROR_RESPONSES,
	summary='Exchange rates within a time range',
)
async def get_range(
	service: Annotated[RatingService, Depends(get_rating_service)],
	settings: Annotated[Settings, Depends(get_settings)],
	from_: Annotated[str | None, Query(alias='from')] = None,
	to: Annotated[str | None, Query()] = None,
) -> RangeResponse:
	start = _parse_bound(from_, 'from')
	end = _parse_bound(to, 'to')

	async with asyncio.timeout(settings.REQUEST_TIMEOUT_SECONDS):
		rates = await service.range(settings.COIN, settings.FIAT, start, end)
	return RangeResponse(
		data=[RatePoint(time=r.timestamp, rate=decimal_to_str(r.value)) for r in rates]
	)

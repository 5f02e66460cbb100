from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


def decimal_to_str(value: Decimal) -> str:
	"""Plain notation without trailing zeros, e.g. 110.000 -> '110'."""
	return format(value.normalize(), 'f')


class RateResponse(BaseModel):
	data: str = Field(..., description='Exchange rate as a decimal string')

	model_config = ConfigDict(json_schema_extra={'example': {'data': '43012.5521'}})


class RatePoint(BaseModel):
	time: datetime = Field(..., description='When the rate was valid')
	rate: str = Field(..., description='Exchange rate as a decimal string')


class RangeResponse(BaseModel):
	data: list[RatePoint] = Field(..., description='Rates within the range, newest first')


class ErrorResponse(BaseModel):
	error: str = Field(..., description='What went wrong')

	model_config = ConfigDict(
		json_schema_extra={'example': {'error': 'unable to service request at the moment'}}
	)

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
	DATABASE_URL: str = 'sqlite+aiosqlite:///./rates.db'

	# Empty disables the latest-rate cache.
	REDIS_URL: str = ''

	COINAPI_URL: str = 'https://rest.coinapi.io'
	COINAPI_API_KEY: str = ''
	COINAPI_PERIOD: str = '5MIN'
	COINAPI_TIMEOUT: int = 10
	COINAPI_RETRY_ATTEMPTS: int = 3

	# Tracked pair
	COIN: str = 'BTC'
	FIAT: str = 'USD'

	REFRESH_INTERVAL_SECONDS: float = 60
	REQUEST_TIMEOUT_SECONDS: float = 10

	# Application
	APP_NAME: str = 'Crypto Rate Tracker'
	HOST: str = '0.0.0.0'
	PORT: int = 8000
	DEBUG: bool = False
	LOG_LEVEL: str = 'INFO'
	LOG_DIRECTORY: str = ''

	model_config = SettingsConfigDict(env_file='.env', case_sensitive=False, extra='ignore')

	@field_validator('DATABASE_URL')
	@classmethod
	def use_async_driver(cls, v: str) -> str:
		for prefix in ('postgresql://', 'postgres://'):
			if v.startswith(prefix):
				return 'postgresql+asyncpg://' + v[len(prefix):]
		return v

	@field_validator('COIN', 'FIAT')
	@classmethod
	def uppercase_asset(cls, v: str) -> str:
		return v.upper()


@lru_cache
def get_settings() -> Settings:
	return Settings()

import logging

from redis.asyncio import Redis

from application.services import LatestRateRefresher, RatingService
from config.settings import Settings
from infrastructure.cache.redis_cache import RedisRateCache
from infrastructure.persistence.database import Database
from infrastructure.persistence.repositories.rate import SqlRateStore
from infrastructure.providers import CoinAPIClient

logger = logging.getLogger(__name__)


class AppDependencies:
	"""Container for application-wide singleton dependencies."""

	db: Database | None = None
	redis_client: Redis | None = None
	exchange: CoinAPIClient | None = None
	rating_service: RatingService | None = None
	refresher: LatestRateRefresher | None = None


deps = AppDependencies()


def init_dependencies(settings: Settings) -> None:
	"""Initialize all singleton dependencies. Called at app startup."""
	logger.info('Initializing dependencies...')

	deps.db = Database(settings.DATABASE_URL)

	cache = None
	if settings.REDIS_URL:
		deps.redis_client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
		cache = RedisRateCache(deps.redis_client)
	else:
		logger.info('REDIS_URL not set, latest-rate cache disabled')

	deps.exchange = CoinAPIClient(
		api_key=settings.COINAPI_API_KEY,
		base_url=settings.COINAPI_URL,
		timeout=settings.COINAPI_TIMEOUT,
		period=settings.COINAPI_PERIOD,
		retry_attempts=settings.COINAPI_RETRY_ATTEMPTS,
	)
	deps.rating_service = RatingService(
		store=SqlRateStore(deps.db, cache=cache),
		exchange=deps.exchange,
	)
	deps.refresher = LatestRateRefresher(
		deps.rating_service,
		coin=settings.COIN,
		fiat=settings.FIAT,
		interval=settings.REFRESH_INTERVAL_SECONDS,
	)
	logger.info('Dependencies initialized')


async def cleanup_dependencies() -> None:
	logger.info('Cleaning up dependencies...')

	if deps.refresher:
		await deps.refresher.stop()
	if deps.exchange:
		await deps.exchange.close()
	if deps.redis_client:
		await deps.redis_client.aclose()
	if deps.db:
		await deps.db.close()

	logger.info('Cleanup complete')


def get_rating_service() -> RatingService:
	if deps.rating_service is None:
		raise RuntimeError('Rating service not initialized')
	return deps.rating_service

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import cleanup_dependencies, deps, init_dependencies
from api.error_handlers import UNABLE_TO_SERVICE, register_exception_handlers
from api.routes import rates
from config.logger import configure_logging
from config.settings import get_settings

settings = get_settings()

configure_logging(settings.LOG_LEVEL, settings.LOG_DIRECTORY)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	logger.info(f'Starting {settings.APP_NAME} for {settings.COIN}/{settings.FIAT}...')

	init_dependencies(settings)
	if deps.db is None or deps.refresher is None:
		raise RuntimeError('Dependencies not initialized')
	await deps.db.create_tables()
	logger.info('Database tables created')

	stop_event = asyncio.Event()
	deps.refresher.start(stop_event)

	logger.info('Application ready')

	yield

	logger.info('Shutting down...')
	stop_event.set()
	await cleanup_dependencies()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
	logger.error(f'Unhandled exception: {exc}', exc_info=True)
	return JSONResponse(status_code=500, content={'error': UNABLE_TO_SERVICE})


app.include_router(rates.router)
register_exception_handlers(app)


def run() -> None:
	import uvicorn

	uvicorn.run(
		'api.main:app',
		host=settings.HOST,
		port=settings.PORT,
		reload=settings.DEBUG,
		log_level=settings.LOG_LEVEL.lower(),
	)


if __name__ == '__main__':
	run()

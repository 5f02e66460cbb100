import asyncio
import logging
from enum import Enum

from application.services.rating_service import RatingService
from domain.exceptions.rates import RatingError

logger = logging.getLogger(__name__)


class RefresherState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class LatestRateRefresher:
    """
    Background task that keeps the latest rate of one pair warm.

    It refreshes once on start, then once per interval until the stop event is
    set or the task is cancelled. Failed refreshes are logged and the loop
    carries on with the next tick.
    """

    def __init__(self, rating_service: RatingService, coin: str, fiat: str, interval: float = 60):
        """
        Args:
            rating_service: Orchestrator whose fetch-and-store path is used
            coin: Crypto asset to track (e.g. "BTC")
            fiat: Fiat currency to track (e.g. "USD")
            interval: Seconds between refreshes (default: 60)
        """
        self.rating_service = rating_service
        self.coin = coin
        self.fiat = fiat
        self.interval = interval
        self.state = RefresherState.IDLE
        self.cycles = 0
        self.failures = 0
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    async def refresh_once(self) -> bool:
        self.cycles += 1
        try:
            result = await self.rating_service.refresh_latest(self.coin, self.fiat)
        except RatingError as e:
            self.failures += 1
            logger.error(f"Latest {self.coin}/{self.fiat} refresh failed: {e}")
            return False
        except Exception as e:
            self.failures += 1
            logger.error(f"Unexpected error refreshing {self.coin}/{self.fiat}: {e}", exc_info=True)
            return False

        if result.write_failed:
            self.failures += 1
            logger.error(
                f"Fetched {self.coin}/{self.fiat} rate {result.rate.value} but could not store it: "
                f"{result.write_error}"
            )
            return False

        logger.info(f"Refreshed {self.coin}/{self.fiat}: {result.rate.value} at {result.rate.timestamp.isoformat()}")
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        if self.state is not RefresherState.IDLE:
            raise RuntimeError(f"refresher cannot run from state {self.state.value}")

        self.state = RefresherState.RUNNING
        logger.info(f"Latest rate refresher started for {self.coin}/{self.fiat}, every {self.interval}s")

        try:
            if not await self.refresh_once():
                logger.error("Initial latest rate refresh failed; retrying on the next tick")

            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                except TimeoutError:
                    await self.refresh_once()
        except asyncio.CancelledError:
            logger.info("Latest rate refresher cancelled")
            raise
        finally:
            self.state = RefresherState.STOPPED
            logger.info(f"Latest rate refresher stopped after {self.cycles} cycles ({self.failures} failed)")

    def start(self, stop_event: asyncio.Event | None = None) -> asyncio.Task:
        if self._task is not None:
            raise RuntimeError("refresher already started")

        self._stop_event = stop_event or asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event), name="latest-rate-refresher")
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to finish."""
        if self._task is None or self._stop_event is None:
            return

        self._stop_event.set()
        await self._task

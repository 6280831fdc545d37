import asyncio
import logging
from typing import Any, Awaitable, Callable, NoReturn, Optional, Set

logger = logging.getLogger(__name__)


class PeriodicJob:
    """
    Fixed-period background timer.

    Each tick runs in its own task so the period does not drift with the
    job's duration. A tick that fires while the previous run is still
    awaiting I/O is skipped, never run alongside it. Manual triggers go
    through the same guard via run_once().
    """

    def __init__(
        self,
        name: str,
        interval: float,
        action: Callable[[], Awaitable[Any]],
    ) -> None:
        self.name = name
        self.interval = interval
        self.action = action
        self._in_flight = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run_once(self) -> Optional[Any]:
        """Runs the job now. Returns None if a run is already in flight."""
        if self._in_flight:
            logger.warning("[%s] Previous run still in flight, skipping", self.name)
            return None

        self._in_flight = True
        try:
            return await self.action()
        except Exception:
            # Keep the timer alive; the next tick gets a fresh try
            logger.exception("[%s] Run failed", self.name)
            return None
        finally:
            self._in_flight = False

    async def run_forever(self) -> NoReturn:
        while True:
            await asyncio.sleep(self.interval)
            task = asyncio.create_task(self.run_once())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

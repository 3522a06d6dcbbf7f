"""
Background worker that physically removes long-expired stories.

Listings never depend on this: expired stories are already filtered out at
query time. The reaper only keeps the table from growing without bound.
"""
import asyncio
import logging
from datetime import timedelta

from .crud import StoryStore
from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


class StoryReaper:
    """Periodically purges stories that expired more than ``grace`` ago"""

    def __init__(self, stories: StoryStore, interval: float = 3600, grace: timedelta = timedelta(hours=24)):
        self.stories = stories
        self.interval = interval
        self.grace = grace
        self.running = False
        self.purged_count = 0
        self.error_count = 0
        self._task: asyncio.Task | None = None

    def start(self):
        """Schedule the loop on the running event loop"""
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def run(self):
        self.running = True
        logger.info({'msg': 'reaper_started', 'interval': self.interval})
        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception({'msg': 'reaper_error', 'error': type(e).__name__})
                self.error_count += 1
            await asyncio.sleep(self.interval)

    async def run_once(self) -> int:
        try:
            purged = await self.stories.purge_expired(self.grace)
        except PersistenceFailure as e:
            self.error_count += 1
            logger.error({'msg': 'reaper_failed', 'error': e.message})
            return 0
        self.purged_count += purged
        if purged:
            logger.info({'msg': 'reaper_purged', 'count': purged})
        return purged

    async def stop(self):
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info({'msg': 'reaper_stopped', 'purged': self.purged_count})

"""
Periodic background sweep that expires lapsed scheduled attempts and
finalizes in-progress attempts that ran past their deadline.
"""

import asyncio
import logging
from typing import Optional

from ..services.submission_service import SubmissionService, SweepResult

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, submissions: SubmissionService, interval_seconds: float):
        self.submissions = submissions
        self.interval_seconds = interval_seconds
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> Optional[SweepResult]:
        try:
            return await self.submissions.sweep()
        except Exception as e:
            logger.error(f"Expiry sweep failed: {str(e)}", exc_info=True)
            return None

    async def _loop(self) -> None:
        logger.info(f"Expiry sweeper running every {self.interval_seconds}s")
        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.get_running_loop().create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Expiry sweeper stopped")

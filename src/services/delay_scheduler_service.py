"""
Delay Scheduler Service
Background service that resumes conversations paused at delay nodes.
"""
import asyncio
import traceback
from typing import Optional, TYPE_CHECKING
from utils.log_utils import LogUtil

if TYPE_CHECKING:
    from services.execution_coordinator_service import ExecutionCoordinatorService


class DelaySchedulerService:
    """
    Periodically asks the coordinator to resume cursors whose delay has elapsed.
    """

    def __init__(
        self,
        log_util: LogUtil,
        execution_coordinator_service: "ExecutionCoordinatorService",
        check_interval_seconds: int = 5
    ):
        self.log_util = log_util
        self.execution_coordinator_service = execution_coordinator_service
        self.check_interval_seconds = check_interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """
        Start the background scheduler task.
        """
        if self._running:
            self.log_util.warning(
                service_name="DelaySchedulerService",
                message="Scheduler is already running"
            )
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        self.log_util.info(
            service_name="DelaySchedulerService",
            message=f"Delay scheduler started, checking every {self.check_interval_seconds} seconds"
        )

    async def stop(self):
        """
        Stop the background scheduler task.
        """
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.log_util.info(
            service_name="DelaySchedulerService",
            message="Delay scheduler stopped"
        )

    async def run_once(self) -> int:
        processed = await self.execution_coordinator_service.tick_due_delays()
        if processed:
            self.log_util.info(
                service_name="DelaySchedulerService",
                message=f"Resumed {processed} delayed conversation(s)"
            )
        return processed

    async def _scheduler_loop(self):
        """
        Main scheduler loop.
        """
        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.log_util.error(
                    service_name="DelaySchedulerService",
                    message=f"Error in scheduler loop: {str(e)}"
                )
                self.log_util.error(
                    service_name="DelaySchedulerService",
                    message=f"Traceback: {traceback.format_exc()}"
                )
                # Wait before retrying to avoid tight error loop
                await asyncio.sleep(self.check_interval_seconds)

"""
Background scheduler for the audit log retention sweep.

Uses APScheduler to run ``LogQueryEngine.cleanup`` on a cron schedule. The
sweep is started by the application, never by the engine itself.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from packages.audit_store import LogLevel
from packages.structured_logging import get_logger

from .engine import DEFAULT_DAYS_TO_KEEP, LogQueryEngine

logger = get_logger(__name__)

RETENTION_JOB_ID = "audit_retention_sweep"


class RetentionScheduler:
    """
    Cron-driven retention sweep.

    **Usage**:
    ```python
    scheduler = RetentionScheduler(engine, days_to_keep=90, cron="0 3 * * *")
    scheduler.start()  # inside a running event loop

    # ... application runs ...

    scheduler.stop()
    ```
    """

    def __init__(
        self,
        engine: LogQueryEngine,
        days_to_keep: int = DEFAULT_DAYS_TO_KEEP,
        cron: str = "0 3 * * *",
        timezone: str = "UTC",
    ):
        """
        Initialize scheduler.

        Args:
            engine: Engine whose cleanup is invoked
            days_to_keep: Retention window passed to cleanup
            cron: Standard 5-field crontab expression
            timezone: Timezone for the cron schedule

        Raises:
            ValueError: If the cron expression is invalid
        """
        self.engine = engine
        self.days_to_keep = days_to_keep
        self.trigger = CronTrigger.from_crontab(cron, timezone=timezone)
        self.scheduler = AsyncIOScheduler(timezone=timezone)

        logger.info(
            "retention_scheduler_initialized",
            days_to_keep=days_to_keep,
            cron=cron,
            timezone=timezone,
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """
        Start the background scheduler. Safe to call multiple times.
        """
        if self.scheduler.running:
            logger.warning("retention_scheduler_already_running")
            return

        self.scheduler.add_job(
            self.run_once,
            trigger=self.trigger,
            id=RETENTION_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

        logger.info("retention_scheduler_started", days_to_keep=self.days_to_keep)

    def stop(self, wait: bool = True) -> None:
        """
        Stop the background scheduler.

        Args:
            wait: If True, wait for a running sweep to complete
        """
        if not self.scheduler.running:
            logger.warning("retention_scheduler_not_running")
            return

        self.scheduler.shutdown(wait=wait)
        logger.info("retention_scheduler_stopped")

    def run_once(self) -> int | None:
        """
        Run one sweep.

        Returns:
            Number of deleted records, or None if the sweep failed
        """
        try:
            return self.engine.cleanup(self.days_to_keep)
        except Exception as e:
            logger.error("retention_sweep_failed", error=str(e), exc_info=True)
            self.engine.log_system(
                "Scheduled log cleanup failed",
                level=LogLevel.ERROR,
                details={"days_to_keep": self.days_to_keep},
                tags=["cleanup", "maintenance", "failed"],
                error=e,
            )
            return None

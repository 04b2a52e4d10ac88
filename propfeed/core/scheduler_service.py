"""
Scheduler service for the periodic feed refresh.

Uses APScheduler to fire the refresh on a cron schedule. One refresh cycle
is Transport -> decode -> normalize -> one cache write. The scheduler is a
two-state machine (idle, running): a fire while running is refused and
logged, never queued, and a failed cycle leaves the cached snapshot alone.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from propfeed.core.cache_store import CacheStore
from propfeed.core.errors import (
    CacheError,
    FeedError,
    InvalidScheduleError,
    ScheduleConflict,
    TransportError,
)

logger = logging.getLogger(__name__)

JOB_ID = "feed_refresh"

PROPERTIES_NAMESPACE = "properties"
SNAPSHOT_KEY = "all"
FEED_META_NAMESPACE = "feed-meta"
LAST_EXECUTION_KEY = "last-execution"

TRIGGER_TIMER = "timer"
TRIGGER_MANUAL = "manual"


class SchedulerPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class RunOutcome:
    """Result of one refresh cycle."""
    success: bool
    trigger: str
    started_at: datetime
    finished_at: datetime
    property_count: int = 0
    feed_name: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round((self.finished_at - self.started_at).total_seconds(), 3),
            "property_count": self.property_count,
            "feed_name": self.feed_name,
            "reason": self.reason,
        }


@dataclass
class ScheduleState:
    """Process-lifetime scheduler state, mutated only by state transitions."""
    cron_expression: str
    timezone: str
    phase: SchedulerPhase = SchedulerPhase.IDLE
    last_run_at: Optional[datetime] = None
    last_outcome: Optional[RunOutcome] = None

    @property
    def running(self) -> bool:
        return self.phase is SchedulerPhase.RUNNING


def validate_cron_expression(expression: str, tz: str = "UTC") -> CronTrigger:
    """
    Build a trigger from a five-field cron expression.

    Args:
        expression: Cron expression (minute hour day month day_of_week)
        tz: Timezone name the expression is evaluated in

    Returns:
        CronTrigger for the expression

    Raises:
        InvalidScheduleError: If the expression or timezone is rejected
    """
    if not isinstance(expression, str) or len(expression.split()) != 5:
        raise InvalidScheduleError(str(expression), "expected five fields")
    try:
        return CronTrigger.from_crontab(expression.strip(), timezone=tz)
    except (ValueError, TypeError, KeyError) as e:
        raise InvalidScheduleError(expression, str(e)) from e


class IngestionScheduler:
    """
    Runs the feed refresh on a cron schedule or on demand.

    Timer fires and manual triggers go through the same guard: while a cycle
    runs, any new request is refused with a logged ScheduleConflict.
    """

    def __init__(
        self,
        ingestor,
        cache: CacheStore,
        cron_expression: str = "0 6 * * *",
        tz: str = "Europe/Madrid",
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            ingestor: Object with an async load() returning a PropertyCollection
            cache: Cache store receiving the snapshot
            cron_expression: Five-field cron expression
            tz: Timezone for the cron expression
            scheduler: APScheduler instance (created when omitted)
        """
        self._trigger = validate_cron_expression(cron_expression, tz)
        self._ingestor = ingestor
        self._cache = cache
        self._scheduler = scheduler or AsyncIOScheduler(timezone=tz)
        self.state = ScheduleState(cron_expression=cron_expression.strip(), timezone=tz)

    # -------------------------------------------------------------------------
    # Timer lifecycle
    # -------------------------------------------------------------------------

    @property
    def timer_active(self) -> bool:
        return bool(self._scheduler.running and self._scheduler.get_job(JOB_ID))

    def start(self) -> None:
        """Register the refresh job and start the timer. Needs a running event loop."""
        if self._scheduler.running:
            logger.info("Scheduler already running")
            return

        self._scheduler.add_job(
            self._on_timer,
            trigger=self._trigger,
            id=JOB_ID,
            name="Feed refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        self._scheduler.start()
        logger.info(
            f"Scheduler started: '{self.state.cron_expression}' ({self.state.timezone}), "
            f"next run {self._next_run_time()}"
        )

    def shutdown(self) -> None:
        """Stop the timer. A cycle in progress is not interrupted."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def update_schedule(self, cron_expression: str) -> None:
        """
        Replace the cron schedule.

        The new expression is validated first; an invalid one raises
        InvalidScheduleError and leaves the current schedule untouched.
        """
        trigger = validate_cron_expression(cron_expression, self.state.timezone)

        if self._scheduler.get_job(JOB_ID):
            self._scheduler.reschedule_job(JOB_ID, trigger=trigger)

        self._trigger = trigger
        self.state.cron_expression = cron_expression.strip()
        logger.info(f"Refresh schedule updated: '{self.state.cron_expression}'")

    def _next_run_time(self) -> Optional[datetime]:
        job = self._scheduler.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job else None

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _begin(self, trigger: str) -> datetime:
        """Idle -> Running. Raises ScheduleConflict when already running."""
        if self.state.running:
            raise ScheduleConflict(f"{trigger} refresh refused: a refresh is already running")
        started_at = datetime.now(timezone.utc)
        self.state.phase = SchedulerPhase.RUNNING
        self.state.last_run_at = started_at
        return started_at

    def _finish(self, outcome: Optional[RunOutcome]) -> None:
        """Running -> Idle, recording the outcome when there is one."""
        self.state.phase = SchedulerPhase.IDLE
        if outcome is None:
            return

        self.state.last_outcome = outcome
        try:
            self._cache.set(FEED_META_NAMESPACE, LAST_EXECUTION_KEY, outcome.to_dict())
        except CacheError as e:
            logger.warning(f"Could not record execution history: {e}")

    async def _on_timer(self) -> None:
        await self.run_refresh(trigger=TRIGGER_TIMER)

    async def refresh_now(self) -> Optional[RunOutcome]:
        """Manual trigger; same guard as a timer fire."""
        return await self.run_refresh(trigger=TRIGGER_MANUAL)

    async def run_refresh(self, trigger: str = TRIGGER_MANUAL) -> Optional[RunOutcome]:
        """
        Run one refresh cycle unless one is already running.

        Args:
            trigger: What requested the cycle ('timer' or 'manual')

        Returns:
            RunOutcome of the cycle, or None if it was refused
        """
        try:
            started_at = self._begin(trigger)
        except ScheduleConflict as e:
            logger.warning(f"Skipping refresh: {e.message}")
            return None

        outcome: Optional[RunOutcome] = None
        try:
            outcome = await self._refresh_cycle(trigger, started_at)
            return outcome
        finally:
            self._finish(outcome)

    async def _refresh_cycle(self, trigger: str, started_at: datetime) -> RunOutcome:
        logger.info(f"Starting {trigger} feed refresh")
        try:
            collection = await self._ingestor.load()
            if not self._cache.set(PROPERTIES_NAMESPACE, SNAPSHOT_KEY, collection):
                raise CacheError("snapshot write rejected", namespace=PROPERTIES_NAMESPACE)

        except FeedError as e:
            reason = e.reason if isinstance(e, TransportError) else e.message
            logger.error(f"Feed refresh failed ({type(e).__name__}): {e}; cached data kept")
            return RunOutcome(
                success=False,
                trigger=trigger,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                reason=reason,
            )
        except Exception as e:
            logger.error(f"Unexpected error in feed refresh: {e}", exc_info=True)
            return RunOutcome(
                success=False,
                trigger=trigger,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                reason=f"{type(e).__name__}: {e}",
            )

        logger.info(
            f"Feed refresh completed: {collection.total} properties from {collection.feed_name}"
        )
        return RunOutcome(
            success=True,
            trigger=trigger,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            property_count=collection.total,
            feed_name=collection.feed_name,
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        next_run = self._next_run_time() if self._scheduler.running else None
        try:
            history = self._cache.get(FEED_META_NAMESPACE, LAST_EXECUTION_KEY)
        except CacheError:
            history = None

        return {
            "running": self.state.running,
            "phase": self.state.phase.value,
            "cron_expression": self.state.cron_expression,
            "timezone": self.state.timezone,
            "timer_active": self.timer_active,
            "last_run_at": self.state.last_run_at.isoformat() if self.state.last_run_at else None,
            "last_outcome": self.state.last_outcome.to_dict() if self.state.last_outcome else None,
            "last_execution": history,
            "next_run_at": next_run.isoformat() if next_run else None,
        }

# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: Single-flight periodic job on APScheduler.
# ============================================================================
"""Single-flight scheduler base.

Every run goes `idle -> running -> (skipped | completed | errored)`. A run
that finds another one in progress returns `skipped/already_running`
instead of queuing. Runs never raise: the top-level failure is recorded
and `last_run` is always refreshed.
"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from enum import Enum
from typing import Any, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-not-found]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-not-found]
from pytz import timezone

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass
class RunSummary:
    """Outcome of one scheduler run."""

    state: RunState
    reason: str | None = None
    error: str | None = None
    counts: dict[str, int] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def bump(self, key: str, amount: int = 1) -> None:
        self.counts[key] = self.counts.get(key, 0) + amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "reason": self.reason,
            "error": self.error,
            "counts": dict(self.counts),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SingleFlightScheduler:
    """Base class: subclasses implement `_run()`."""

    name = "scheduler"

    def __init__(
        self,
        interval_seconds: int,
        enabled: bool = True,
        send_interval_seconds: float = 0.0,
        timezone_name: str = "America/Sao_Paulo",
        db_timeout_seconds: float = 8.0,
    ):
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.send_interval_seconds = send_interval_seconds
        self.tz = timezone(timezone_name)
        self.db_timeout_seconds = db_timeout_seconds

        self.state = RunState.IDLE
        self.last_run: datetime | None = None
        self.last_result: RunSummary | None = None

        self._running = False
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Register the interval job and start the underlying scheduler."""
        if not self.enabled:
            logger.info(f"{self.__class__.__name__} is disabled, skipping start")
            return

        if self._is_running:
            logger.warning(f"{self.__class__.__name__} already running")
            return

        scheduler = AsyncIOScheduler(timezone=self.tz)
        self._scheduler = scheduler
        scheduler.add_job(
            self.run_once,
            IntervalTrigger(seconds=self.interval_seconds, timezone=self.tz),
            id=f"{self.name}_job",
            name=f"{self.name} scheduler",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._is_running = True
        logger.info(f"{self.__class__.__name__} started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self._scheduler and self._is_running:
            self._scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info(f"{self.__class__.__name__} stopped")

    @property
    def is_running(self) -> bool:
        """Whether the periodic job is registered and started."""
        return self._is_running

    def get_jobs_info(self) -> list[dict[str, Any]]:
        if not self._scheduler:
            return []

        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                }
            )
        return jobs

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "state": self.state.value,
            "running": self._running,
            "started": self._is_running,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "jobs": self.get_jobs_info(),
        }

    # =========================================================================
    # Run
    # =========================================================================

    async def run_once(self) -> RunSummary:
        """Execute one run unless another is in progress."""
        if self._running:
            logger.info(f"[{self.name}] previous run still active, skipping")
            return RunSummary(state=RunState.SKIPPED, reason="already_running")

        self._running = True
        self.state = RunState.RUNNING
        started_at = self.now()
        try:
            summary = await self._run()
        except Exception as e:
            logger.error(f"[{self.name}] run failed: {e}", exc_info=True)
            summary = RunSummary(state=RunState.ERRORED, error=str(e))
        finally:
            self._running = False

        summary.started_at = started_at
        summary.finished_at = self.now()
        self.state = summary.state
        self.last_run = summary.finished_at
        self.last_result = summary
        logger.info(f"[{self.name}] run {summary.state.value} reason={summary.reason} counts={summary.counts}")
        return summary

    async def _run(self) -> RunSummary:
        raise NotImplementedError

    # =========================================================================
    # Helpers
    # =========================================================================

    def now(self) -> datetime:
        return datetime.now(UTC)

    def local_today(self) -> date:
        return self.now().astimezone(self.tz).date()

    def day_window(self, offset_days: int = 0) -> tuple[datetime, datetime]:
        """UTC bounds of the clinic-local day `offset_days` from today."""
        day = self.local_today() + timedelta(days=offset_days)
        start = self.tz.localize(datetime.combine(day, time.min))
        end = self.tz.localize(datetime.combine(day + timedelta(days=1), time.min))
        return start.astimezone(UTC), end.astimezone(UTC)

    async def with_db_timeout(self, awaitable: Awaitable[T]) -> T:
        """Bound a datastore call. Raises TimeoutError."""
        return await asyncio.wait_for(awaitable, timeout=self.db_timeout_seconds)

    async def pace(self, index: int) -> None:
        """Fixed pause between provider calls, none before the first."""
        if index > 0 and self.send_interval_seconds > 0:
            await asyncio.sleep(self.send_interval_seconds)


async def record_outbound_safely(ledger, entry, scope: str) -> None:
    """Ledger write after a send; a failure is logged and never undoes the send."""
    try:
        await ledger.record_outbound(entry)
    except Exception as e:
        logger.error(
            f"[{scope}] ledger write failed for appointment {entry.appointment_id} "
            f"(status={entry.status.value}, provider_message_id={entry.provider_message_id}): {e}",
            exc_info=True,
        )

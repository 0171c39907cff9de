"""Periodic jobs of the messaging domain."""

from .base import RunState, RunSummary, SingleFlightScheduler
from .dispatch_scheduler import DispatchScheduler
from .reminder_scheduler import ReminderScheduler
from .retry_scheduler import RetryScheduler

__all__ = [
    "DispatchScheduler",
    "ReminderScheduler",
    "RetryScheduler",
    "RunState",
    "RunSummary",
    "SingleFlightScheduler",
]

"""Periodic task scheduling driven by human-readable interval expressions.

Expressions look like ``every 2 hours``, ``every 30 minutes``, ``every 1 day``,
``hourly`` or ``daily``. The scheduler is a single asyncio task that sleeps for
the interval and then awaits the callback; a failing run is logged and the loop
carries on with the next one.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from moviesync.services.datetime_service import now_utc

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

_UNITS: dict[str, str] = {
    "s": "seconds",
    "sec": "seconds",
    "secs": "seconds",
    "second": "seconds",
    "seconds": "seconds",
    "m": "minutes",
    "min": "minutes",
    "mins": "minutes",
    "minute": "minutes",
    "minutes": "minutes",
    "h": "hours",
    "hr": "hours",
    "hrs": "hours",
    "hour": "hours",
    "hours": "hours",
    "d": "days",
    "day": "days",
    "days": "days",
}

_ALIASES: dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
}

_EVERY_RE = re.compile(r"^every\s+(?:(\d+)\s*)?([a-z]+)$")


def parse_interval(expression: str) -> timedelta:
    """Parse an interval expression into a positive ``timedelta``.

    ``every hour`` is accepted as shorthand for ``every 1 hour``.

    Raises:
        ValueError: If the expression is empty, unknown, or not positive.
    """
    normalized = " ".join(expression.strip().lower().split())
    if normalized in _ALIASES:
        return _ALIASES[normalized]

    match = _EVERY_RE.match(normalized)
    if match is None or match.group(2) not in _UNITS:
        msg = (
            f"Invalid sync interval {expression!r}: expected 'every <n> "
            "seconds|minutes|hours|days', 'hourly' or 'daily'"
        )
        raise ValueError(msg)

    amount = int(match.group(1)) if match.group(1) is not None else 1
    if amount <= 0:
        msg = f"Invalid sync interval {expression!r}: amount must be positive"
        raise ValueError(msg)
    try:
        return timedelta(**{_UNITS[match.group(2)]: amount})
    except OverflowError as exc:
        msg = f"Invalid sync interval {expression!r}: amount too large"
        raise ValueError(msg) from exc


class PeriodicScheduler:
    """Runs a zero-argument coroutine function on a fixed interval.

    Thread-safety: intended for a single event loop. ``start`` and ``stop`` must
    be called from the loop that owns the task.
    """

    def __init__(
        self,
        name: str,
        interval: timedelta,
        callback: Callable[[], Awaitable[object]],
    ) -> None:
        if interval <= timedelta(0):
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)
        self._name = name
        self._interval = interval
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._next_run_at: datetime | None = None
        self.runs = 0
        self.failures = 0

    @property
    def interval(self) -> timedelta:
        return self._interval

    @property
    def is_running(self) -> bool:
        """Whether the background loop is alive."""
        return self._task is not None and not self._task.done()

    @property
    def next_run_at(self) -> datetime | None:
        """UTC time of the next scheduled run, or None when stopped."""
        return self._next_run_at if self.is_running else None

    def start(self) -> None:
        """Start the background loop. Calling it while running is a no-op."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(), name=f"scheduler:{self._name}"
        )
        logger.info("Scheduler %s started (interval: %s)", self._name, self._interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task = self._task
        self._task = None
        self._next_run_at = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler %s stopped", self._name)

    async def run_once(self) -> None:
        """Invoke the callback once, logging instead of raising on failure."""
        self.runs += 1
        try:
            await self._callback()
        except Exception as exc:
            self.failures += 1
            logger.error("Scheduled run of %s failed: %s", self._name, exc, exc_info=True)

    async def _run_loop(self) -> None:
        seconds = self._interval.total_seconds()
        while True:
            self._next_run_at = now_utc() + self._interval
            await asyncio.sleep(seconds)
            logger.info("Starting scheduled run of %s", self._name)
            await self.run_once()

"""Cancelable interval polling for out-of-band confirmation.

One asyncio task per session. The task sleeps, awaits the check, and only
then schedules the next sleep, so a slow check never overlaps the next one.
There is no timeout here; the owner decides when to give up and calls stop().
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Union

from utils.timezone import now_utc, seconds_since

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pending:
    """Not confirmed yet; keep waiting."""


@dataclass(frozen=True)
class Confirmed:
    """The side channel confirmed. Polling stops automatically."""

    payload: Any = None


@dataclass(frozen=True)
class Error:
    """The check failed transiently. Logged; polling continues."""

    reason: str = ""


PollResult = Union[Pending, Confirmed, Error]
PollCheck = Callable[[], Awaitable[PollResult]]


class PollingSession:
    """
    Periodic check until confirmed or stopped.

    Usage:
        session = PollingSession(interval_seconds=2.0, target="a@b.com")
        session.start(check, on_confirmed=handle)
        ...
        session.stop()  # idempotent
    """

    def __init__(self, interval_seconds: float, target: str = ""):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.interval_seconds = interval_seconds
        self.target = target
        self.since: datetime | None = None
        self.checks = 0
        self.outstanding = 0
        self._task: asyncio.Task | None = None
        self._stopped = False
        self._confirmed: Confirmed | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def confirmed(self) -> Confirmed | None:
        return self._confirmed

    @property
    def elapsed_seconds(self) -> float:
        """Time since start(); 0 before the session starts."""
        if self.since is None:
            return 0.0
        return seconds_since(self.since)

    def start(
        self,
        check: PollCheck,
        on_confirmed: Callable[[Any], None] | None = None,
    ) -> None:
        """
        Begin polling on the running event loop.

        Raises:
            RuntimeError: If the session was already started
        """
        if self._task is not None or self._stopped:
            raise RuntimeError("PollingSession can only be started once")

        self.since = now_utc()
        self._task = asyncio.get_running_loop().create_task(self._run(check, on_confirmed))
        logger.info(f"Polling started (target={self.target}, interval={self.interval_seconds}s)")

    def stop(self) -> None:
        """Cancel the timer and discard any in-flight result. Safe to call twice."""
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info(f"Polling stopped (target={self.target}, checks={self.checks})")

    async def wait(self) -> Confirmed | None:
        """Wait until the session ends. Returns the confirmation, or None if stopped."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._stopped:
                    raise
        return self._confirmed

    async def _run(self, check: PollCheck, on_confirmed) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval_seconds)
            if self._stopped:
                return

            result = await self._check_once(check)
            if self._stopped:
                # stop() raced the check; its result belongs to nobody
                return

            if isinstance(result, Confirmed):
                self._confirmed = result
                # Finish from inside the task; stop() would cancel ourselves
                self._stopped = True
                logger.info(f"Polling confirmed (target={self.target}, checks={self.checks})")
                if on_confirmed is not None:
                    on_confirmed(result.payload)
                return

            if isinstance(result, Error):
                logger.debug(f"Poll check failed (target={self.target}): {result.reason}")

    async def _check_once(self, check: PollCheck) -> PollResult:
        self.checks += 1
        self.outstanding += 1
        try:
            return await check()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return Error(reason=str(e))
        finally:
            self.outstanding -= 1

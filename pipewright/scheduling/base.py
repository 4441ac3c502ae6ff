"""Base task scheduler interface for engine actions."""

from __future__ import annotations

import abc
import asyncio
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Tuple, TypeVar

from ..contracts import ScheduledAction, utcnow

RawActionT = TypeVar("RawActionT")


class BaseScheduler(Generic[RawActionT], metaclass=abc.ABCMeta):
    """Abstract scheduler holding one-shot and recurring engine actions.

    Delivery is at-least-once: an action claimed by ``due`` that is never
    acknowledged may be seen again after a restart on durable backends.
    """

    poll_interval: float = 0.1

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def add(self, action: ScheduledAction) -> ScheduledAction:
        """Store an action until it becomes due."""
        raise NotImplementedError

    @abc.abstractmethod
    async def cancel(self, action: str, args: Optional[Dict[str, Any]] = None) -> int:
        """Remove pending actions matching ``action`` and ``args``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def pending(self, action: Optional[str] = None) -> List[ScheduledAction]:
        """List actions that have not been claimed yet."""
        raise NotImplementedError

    @abc.abstractmethod
    async def claim_due(
        self, now: datetime
    ) -> List[Tuple[RawActionT, ScheduledAction]]:
        """Atomically remove and return actions whose ``run_at`` has passed."""
        raise NotImplementedError

    async def ack(self, raw_action: RawActionT) -> None:
        """Acknowledge a processed action (no-op by default)."""
        pass

    # ------------------------------------------------------------------
    async def schedule_once(
        self,
        run_at: Optional[datetime],
        action: str,
        args: Optional[Dict[str, Any]] = None,
    ) -> ScheduledAction:
        return await self.add(
            ScheduledAction(action=action, args=args or {}, run_at=run_at or utcnow())
        )

    async def schedule_recurring(
        self,
        first_run: datetime,
        interval_seconds: int,
        action: str,
        args: Optional[Dict[str, Any]] = None,
    ) -> ScheduledAction:
        return await self.add(
            ScheduledAction(
                action=action,
                args=args or {},
                run_at=first_run,
                interval_seconds=interval_seconds,
            )
        )

    async def _claim(self, now: datetime) -> List[Tuple[RawActionT, ScheduledAction]]:
        claimed = await self.claim_due(now)
        for _, scheduled in claimed:
            if scheduled.interval_seconds:
                next_run = scheduled.run_at + timedelta(seconds=scheduled.interval_seconds)
                await self.add(scheduled.model_copy(update={"run_at": next_run}))
        return claimed

    async def due(self, now: Optional[datetime] = None) -> List[ScheduledAction]:
        """Claim due actions, re-arming recurring ones for their next run."""
        claimed = await self._claim(now or utcnow())
        return [scheduled for _, scheduled in claimed]

    async def subscribe(
        self, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawActionT, ScheduledAction]]:
        """Yield due actions as they become ready.

        Args:
            lifespan: Maximum time in seconds to keep polling. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            claimed = await self._claim(utcnow())
            for raw, scheduled in claimed:
                yield raw, scheduled
            if not claimed:
                await asyncio.sleep(self.poll_interval)

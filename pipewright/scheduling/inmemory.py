"""In-memory scheduler for tests and single-process runs."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..contracts import ScheduledAction
from .base import BaseScheduler


class InMemoryScheduler(BaseScheduler[str]):
    """Keep scheduled actions in a process-local list."""

    def __init__(self) -> None:
        self._actions: List[ScheduledAction] = []
        self._lock = asyncio.Lock()

    async def add(self, action: ScheduledAction) -> ScheduledAction:
        async with self._lock:
            self._actions.append(action)
        return action

    async def cancel(self, action: str, args: Optional[Dict[str, Any]] = None) -> int:
        async with self._lock:
            keep = [a for a in self._actions if not a.matches(action, args)]
            removed = len(self._actions) - len(keep)
            self._actions = keep
        return removed

    async def pending(self, action: Optional[str] = None) -> List[ScheduledAction]:
        return [a for a in self._actions if action is None or a.action == action]

    async def claim_due(self, now: datetime) -> List[Tuple[str, ScheduledAction]]:
        async with self._lock:
            ready = sorted(
                (a for a in self._actions if a.run_at <= now), key=lambda a: a.run_at
            )
            ids = {a.action_id for a in ready}
            self._actions = [a for a in self._actions if a.action_id not in ids]
        return [(a.action_id, a) for a in ready]

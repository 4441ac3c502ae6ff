"""Redis scheduler for cross-process execution."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import ScheduledAction
from .base import BaseScheduler

logger = logging.getLogger(__name__)


class RedisScheduler(BaseScheduler[str]):
    """Sorted-set backed scheduler scored by ``run_at``."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key: str = "pipewright:schedule",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.key = key
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    @staticmethod
    def _parse(member: str) -> Optional[ScheduledAction]:
        try:
            return ScheduledAction.model_validate_json(member)
        except ValidationError as e:
            logger.error(f"Dropping unreadable scheduled action: {e}")
            return None

    async def add(self, action: ScheduledAction) -> ScheduledAction:
        client = await self._client()
        await client.zadd(self.key, {action.model_dump_json(): action.run_at.timestamp()})
        return action

    async def cancel(self, action: str, args: Optional[Dict[str, Any]] = None) -> int:
        client = await self._client()
        removed = 0
        for member in await client.zrange(self.key, 0, -1):
            scheduled = self._parse(member)
            if scheduled and scheduled.matches(action, args):
                removed += await client.zrem(self.key, member)
        return removed

    async def pending(self, action: Optional[str] = None) -> List[ScheduledAction]:
        client = await self._client()
        result = []
        for member in await client.zrange(self.key, 0, -1):
            scheduled = self._parse(member)
            if scheduled and (action is None or scheduled.action == action):
                result.append(scheduled)
        return result

    async def claim_due(self, now: datetime) -> List[Tuple[str, ScheduledAction]]:
        client = await self._client()
        claimed = []
        for member in await client.zrangebyscore(self.key, 0, now.timestamp()):
            # zrem succeeds for exactly one competing worker
            if not await client.zrem(self.key, member):
                continue
            scheduled = self._parse(member)
            if scheduled:
                claimed.append((member, scheduled))
        return claimed

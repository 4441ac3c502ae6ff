"""Per-flow-step prompt queue stored inside the flow configuration."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .contracts import QueuedPrompt, utcnow
from .errors import FlowNotFound
from .persistence.repository import JobRepository

logger = logging.getLogger(__name__)


class PromptQueue:
    """FIFO of prompts kept at ``flow_config[flow_step_id]["prompt_queue"]``."""

    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository
        self._lock = asyncio.Lock()

    async def _load(self, flow_id: int) -> dict:
        flow = await self._repository.get_flow(flow_id)
        if flow is None:
            raise FlowNotFound(flow_id)
        return flow.flow_config

    async def list(self, flow_id: int, flow_step_id: str) -> List[QueuedPrompt]:
        flow_config = await self._load(flow_id)
        raw = flow_config.get(flow_step_id, {}).get("prompt_queue", [])
        return [QueuedPrompt.model_validate(item) for item in raw]

    async def add(
        self,
        flow_id: int,
        flow_step_id: str,
        prompt: str,
        added_at: Optional[str] = None,
    ) -> bool:
        """Append a prompt to the back of the queue."""
        if not prompt.strip():
            return False
        async with self._lock:
            flow_config = await self._load(flow_id)
            if flow_step_id not in flow_config:
                logger.error(
                    f"Cannot queue prompt, unknown step flow_id={flow_id} flow_step_id={flow_step_id}"
                )
                return False
            item = QueuedPrompt(prompt=prompt, added_at=added_at or utcnow())
            step = flow_config[flow_step_id]
            step["prompt_queue"] = [*step.get("prompt_queue", []), item.model_dump(mode="json")]
            saved = await self._repository.update_flow_config(flow_id, flow_config)
        if saved:
            logger.debug(f"Queued prompt flow_id={flow_id} flow_step_id={flow_step_id}")
        return saved

    async def pop(self, flow_id: int, flow_step_id: str) -> Optional[QueuedPrompt]:
        """Remove and return the oldest prompt, ``None`` when empty."""
        async with self._lock:
            flow_config = await self._load(flow_id)
            step = flow_config.get(flow_step_id)
            if not step or not step.get("prompt_queue"):
                return None
            head, *rest = step["prompt_queue"]
            step["prompt_queue"] = rest
            if not await self._repository.update_flow_config(flow_id, flow_config):
                return None
        return QueuedPrompt.model_validate(head)

    async def clear(self, flow_id: int, flow_step_id: str) -> int:
        async with self._lock:
            flow_config = await self._load(flow_id)
            step = flow_config.get(flow_step_id)
            if not step:
                return 0
            count = len(step.get("prompt_queue", []))
            step["prompt_queue"] = []
            await self._repository.update_flow_config(flow_id, flow_config)
        return count

"""Worker loop that drains due scheduler actions into the flow engine."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .constants import EXECUTE_STEP, RUN_FLOW_NOW
from .contracts import AgentType, ScheduledAction
from .engine import FlowEngine
from .logs import agent_scope
from .scheduling.base import BaseScheduler

logger = logging.getLogger(__name__)

ActionHandler = Callable[[Dict[str, Any]], Awaitable[bool]]


class Worker:
    """Executes engine actions by listening to the scheduler."""

    def __init__(self, scheduler: BaseScheduler, engine: FlowEngine) -> None:
        self._scheduler = scheduler
        self._engine = engine
        self._handlers: Dict[str, ActionHandler] = {
            RUN_FLOW_NOW: lambda args: engine.run_flow_now(
                args["flow_id"], args.get("job_id")
            ),
            EXECUTE_STEP: lambda args: engine.execute_step(
                args["job_id"], args["flow_step_id"]
            ),
        }
        self.processed = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Poll the scheduler and run every due action until ``lifespan`` ends."""
        await self._scheduler.connect()
        try:
            async for raw_action, action in self._scheduler.subscribe(lifespan=lifespan):
                await self.handle(action)
                await self._scheduler.ack(raw_action)
        finally:
            await self._scheduler.disconnect()

    async def drain(self, max_actions: int = 1000) -> int:
        """Run due actions until none are left; return how many ran.

        Steps enqueue their successor for immediate execution, so draining
        runs whole jobs to completion in-process.
        """
        count = 0
        while count < max_actions:
            due = await self._scheduler.due()
            if not due:
                break
            for action in due:
                await self.handle(action)
                count += 1
        return count

    async def handle(self, action: ScheduledAction) -> bool:
        handler = self._handlers.get(action.action)
        if handler is None:
            logger.error(f"Unknown scheduled action '{action.action}' action_id={action.action_id}")
            return False
        with agent_scope(AgentType.PIPELINE):
            try:
                result = await handler(action.args)
            except Exception:
                logger.exception(
                    f"Scheduled action failed action={action.action} args={action.args}"
                )
                return False
        self.processed += 1
        return result

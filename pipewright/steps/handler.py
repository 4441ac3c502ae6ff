"""Steps that confirm the agent already ran their handler tool."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..ai.tools.result_finder import ToolResultFinder
from ..contracts import DataPacket
from .base import Step, prepend


class HandlerStep(Step):
    """Emit one packet per handler whose tool result is present.

    When the agent did not execute any expected handler tool the step
    returns ``[]`` and the engine fails the job.
    """

    def validate_configuration(self) -> Optional[str]:
        if not self.handler_slugs():
            return f"{self.step_type} step requires handler_slug or handler_slugs"
        return None

    async def execute_step(self) -> List[DataPacket]:
        slugs = self.handler_slugs()
        found = ToolResultFinder.find_all(self.data, slugs)
        missing = [s for s in slugs if s not in found]
        if missing:
            self.log(logging.WARNING, "Handler tool result missing", handlers=missing)
        if not found:
            self.log(logging.ERROR, "AI did not execute any handler tool for this step")
            return []

        outputs = []
        for slug, result in found.items():
            tool_result = result.metadata.get("tool_result")
            outputs.append(
                DataPacket.create(
                    type=self.step_type,
                    title=f"{self.step_type.capitalize()} complete: {slug}",
                    body=tool_result if tool_result is not None else result.content.body,
                    flow_step_id=self.flow_step_id,
                    handler_used=slug,
                    tool_result=tool_result,
                    **{f"{self.step_type}_success": True},
                )
            )
        return prepend(outputs, self.data)


class PublishStep(HandlerStep):
    step_type = "publish"


class UpdateStep(HandlerStep):
    step_type = "update"

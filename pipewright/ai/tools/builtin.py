"""Tools shipped with pipewright."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from ...contracts import ToolDefinition, ToolParameter, ToolResult
from ...engine_data import EngineData
from ...persistence.repository import JobRepository
from ...status import JobStatus
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

SKIP_ITEM = "skip_item"


class SkipItemTool:
    """Finish the job as ``agent_skipped`` instead of continuing the flow."""

    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository

    async def handle_tool_call(
        self, parameters: Dict[str, Any], tool: ToolDefinition
    ) -> ToolResult:
        job_id = parameters.get("job_id")
        if not job_id:
            return ToolResult(
                success=False, tool_name=tool.name, error="skip_item needs a job context"
            )
        reason = str(parameters.get("reason", "")).strip() or "skipped by agent"
        status = JobStatus.skipped(reason).to_string()
        await EngineData(job_id, repository=self._repository).set_status_override(status)
        logger.info(f"Agent skipped item job_id={job_id} reason={reason}")
        return ToolResult(
            success=True,
            tool_name=tool.name,
            data={"job_status": status, "message": f"Item skipped: {reason}"},
        )


def skip_item_tools(
    handler_config: Dict[str, Any], engine_data: Dict[str, Any]
) -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name=SKIP_ITEM,
            class_ref=SKIP_ITEM,
            description=(
                "Skip the current item when it is not relevant. The job ends without "
                "running the remaining steps."
            ),
            parameters={
                "reason": ToolParameter(
                    type="string",
                    required=True,
                    description="Why the item is being skipped",
                )
            },
        )
    ]


def register_builtin_tools(
    registry: ToolRegistry,
    repository: JobRepository,
    fetch_handlers: Iterable[str] = (),
) -> None:
    """Register ``skip_item`` for every fetch handler slug."""
    registry.register_implementation(SKIP_ITEM, lambda: SkipItemTool(repository))
    for slug in fetch_handlers:
        registry.register_handler_tools(slug, skip_item_tools)

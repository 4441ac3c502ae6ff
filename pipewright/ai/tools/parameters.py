"""Parameter assembly for tool calls."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...constants import HANDLER_SIDE_CHANNEL_KEYS
from ...contracts import AgentType, DataPacket, ToolDefinition


class ToolContext(BaseModel):
    """Identifiers and job context handed to every tool call."""

    agent_type: AgentType = AgentType.PIPELINE
    job_id: Optional[int] = None
    flow_step_id: Optional[str] = None
    session_id: Optional[str] = None
    engine_data: Dict[str, Any] = Field(default_factory=dict)

    def base_parameters(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"agent_type": self.agent_type.value}
        for key in ("job_id", "flow_step_id", "session_id"):
            value = getattr(self, key)
            if value is not None:
                params[key] = value
        return params


def missing_required(tool: ToolDefinition, ai_params: Dict[str, Any]) -> List[str]:
    return [
        name
        for name, spec in tool.parameters.items()
        if spec.required and ai_params.get(name) in (None, "")
    ]


def build_parameters(
    tool: ToolDefinition,
    ai_params: Dict[str, Any],
    data_packets: List[DataPacket],
    context: ToolContext,
) -> Dict[str, Any]:
    """Layer parameters so that later sources override earlier ones.

    Order: context ids, content/title from the newest packet, tool metadata,
    engine data side-channel values (handler tools only), AI arguments.
    """
    params = context.base_parameters()

    if data_packets:
        newest = data_packets[0]
        if "content" in tool.parameters:
            params["content"] = newest.content.body
        if "title" in tool.parameters:
            params["title"] = newest.content.title

    params["tool_definition"] = tool.model_dump()
    if tool.handler:
        params["handler_config"] = tool.handler_config
        for key in HANDLER_SIDE_CHANNEL_KEYS:
            value = context.engine_data.get(key)
            if value:
                params[key] = value

    params.update(ai_params)
    return params

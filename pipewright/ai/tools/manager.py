"""Enablement rules deciding which registered tools an agent may see."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from ...contracts import AgentType, ToolDefinition
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolManager:
    def __init__(
        self, registry: ToolRegistry, enabled_tools: Optional[Dict[str, bool]] = None
    ) -> None:
        self._registry = registry
        # ``None`` means every configured tool is enabled
        self._enabled_tools = enabled_tools

    def is_globally_enabled(self, tool_name: str) -> bool:
        if self._enabled_tools is None:
            return True
        return bool(self._enabled_tools.get(tool_name, False))

    def is_configured(self, tool: ToolDefinition) -> bool:
        return not tool.requires_config or self._registry.is_configured(tool.name)

    def is_tool_available(
        self, tool: ToolDefinition, disabled_tools: Iterable[str] = ()
    ) -> bool:
        """Handler tools pass on handler match; the rest must pass every check."""
        if tool.handler:
            return True
        if tool.name in set(disabled_tools):
            return False
        return self.is_globally_enabled(tool.name) and self.is_configured(tool)

    def step_disabled_tools(
        self, pipeline_step_id: Optional[str], engine_data: Dict[str, Any]
    ) -> set[str]:
        if not pipeline_step_id:
            return set()
        step = engine_data.get("pipeline_config", {}).get(pipeline_step_id, {})
        return set(step.get("disabled_tools") or [])

    def available_global_tools(
        self, disabled_tools: Iterable[str] = ()
    ) -> Dict[str, ToolDefinition]:
        disabled = set(disabled_tools)
        return {
            name: tool
            for name, tool in self._registry.global_tools().items()
            if self.is_tool_available(tool, disabled)
        }

    def available_agent_tools(
        self, agent_type: AgentType, disabled_tools: Iterable[str] = ()
    ) -> Dict[str, ToolDefinition]:
        disabled = set(disabled_tools)
        return {
            name: tool
            for name, tool in self._registry.agent_tools(agent_type).items()
            if self.is_tool_available(tool, disabled)
        }

    def chat_tools(self) -> Dict[str, ToolDefinition]:
        tools = self.available_global_tools()
        tools.update(self.available_agent_tools(AgentType.CHAT))
        return tools

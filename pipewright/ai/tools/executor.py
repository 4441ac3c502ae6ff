"""Tool discovery for a step and guarded tool execution."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Optional

from ...contracts import AgentType, DataPacket, ToolDefinition, ToolResult
from ...errors import ToolImplementationNotFound
from .manager import ToolManager
from .parameters import ToolContext, build_parameters, missing_required
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


def _display_name(tool_name: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in tool_name.replace("_", " ").split(" "))


def _handler_slugs(step_config: Optional[Dict[str, Any]]) -> List[str]:
    if not step_config:
        return []
    slugs = step_config.get("handler_slugs")
    if slugs:
        return list(slugs)
    slug = step_config.get("handler_slug")
    return [slug] if slug else []


def _handler_config(step_config: Dict[str, Any], slug: str) -> Dict[str, Any]:
    configs = step_config.get("handler_configs") or {}
    if slug in configs:
        return configs[slug]
    return step_config.get("handler_config") or {}


class ToolExecutor:
    """Collect the tools an agent may call and run them without raising."""

    def __init__(
        self,
        registry: ToolRegistry,
        manager: Optional[ToolManager] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.manager = manager or ToolManager(registry)
        self.timeout_seconds = timeout_seconds

    def get_available_tools(
        self,
        previous_step_config: Optional[Dict[str, Any]],
        next_step_config: Optional[Dict[str, Any]],
        pipeline_step_id: Optional[str],
        engine_data: Optional[Dict[str, Any]] = None,
        agent_type: AgentType = AgentType.PIPELINE,
    ) -> Dict[str, ToolDefinition]:
        engine_data = engine_data or {}
        tools: Dict[str, ToolDefinition] = {}
        for step_config in (previous_step_config, next_step_config):
            for slug in _handler_slugs(step_config):
                tools.update(
                    self.registry.handler_tools(
                        slug, _handler_config(step_config, slug), engine_data
                    )
                )

        disabled = self.manager.step_disabled_tools(pipeline_step_id, engine_data)
        for name, tool in self.manager.available_global_tools(disabled).items():
            tools.setdefault(name, tool)
        for name, tool in self.manager.available_agent_tools(agent_type, disabled).items():
            tools.setdefault(name, tool)
        return tools

    def get_available_tools_for_chat(self) -> Dict[str, ToolDefinition]:
        return self.manager.chat_tools()

    # ------------------------------------------------------------------
    async def execute_tool(
        self,
        tool_name: str,
        ai_params: Dict[str, Any],
        available_tools: Dict[str, ToolDefinition],
        data_packets: List[DataPacket],
        flow_step_id: Optional[str] = None,
        extra_context: Optional[ToolContext] = None,
    ) -> ToolResult:
        """Run one tool call and always return a structured result."""
        tool = available_tools.get(tool_name)
        if tool is None:
            return ToolResult(success=False, tool_name=tool_name, error=f"Tool '{tool_name}' not found")

        ai_params = ai_params or {}
        missing = missing_required(tool, ai_params)
        if missing:
            return ToolResult(
                success=False,
                tool_name=tool_name,
                error=(
                    f"{_display_name(tool_name)} requires the following parameters: "
                    f"{', '.join(missing)}. Please provide these parameters and try again."
                ),
            )

        context = extra_context or ToolContext()
        if flow_step_id is not None:
            context = context.model_copy(update={"flow_step_id": flow_step_id})
        params = build_parameters(tool, ai_params, data_packets, context)

        try:
            implementation = self.registry.resolve(tool.class_ref)
        except ToolImplementationNotFound as e:
            logger.error(f"Tool '{tool_name}' cannot be resolved: {e}")
            return ToolResult(success=False, tool_name=tool_name, error=str(e))
        except Exception as e:
            logger.exception(f"Tool '{tool_name}' implementation failed to load job_id={context.job_id}")
            return ToolResult(success=False, tool_name=tool_name, error=str(e))

        method = getattr(implementation, tool.method, None)
        if not callable(method):
            return ToolResult(
                success=False,
                tool_name=tool_name,
                error=f"Tool implementation '{tool.class_ref}' has no method '{tool.method}'",
            )

        try:
            if inspect.iscoroutinefunction(method):
                call = method(params, tool)
            else:
                call = asyncio.to_thread(method, params, tool)
            raw = await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                f"Tool '{tool_name}' timed out after {self.timeout_seconds}s "
                f"job_id={context.job_id} flow_step_id={context.flow_step_id}"
            )
            return ToolResult(
                success=False,
                tool_name=tool_name,
                error=f"Tool '{tool_name}' timed out after {self.timeout_seconds} seconds",
            )
        except Exception as e:
            logger.exception(
                f"Tool '{tool_name}' raised job_id={context.job_id} flow_step_id={context.flow_step_id}"
            )
            return ToolResult(success=False, tool_name=tool_name, error=str(e))

        return self._normalize(raw, tool_name)

    @staticmethod
    def _normalize(raw: Any, tool_name: str) -> ToolResult:
        if isinstance(raw, ToolResult):
            return raw if raw.tool_name else raw.model_copy(update={"tool_name": tool_name})
        if isinstance(raw, dict) and "success" in raw:
            return ToolResult(
                success=bool(raw["success"]),
                tool_name=raw.get("tool_name") or tool_name,
                data=raw.get("data"),
                error=raw.get("error"),
            )
        return ToolResult(success=True, tool_name=tool_name, data=raw)

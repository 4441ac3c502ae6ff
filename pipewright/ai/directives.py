"""System directives prepended to every provider request."""

from __future__ import annotations

from typing import Any, Callable, Dict, List

from ..contracts import AgentType, ConversationMessage, ToolDefinition
from ..navigator import FlowNavigator

Directive = Callable[[Dict[str, ToolDefinition], Dict[str, Any]], List[str]]


def _core_directive(tools: Dict[str, ToolDefinition], context: Dict[str, Any]) -> List[str]:
    if not tools:
        return ["Answer directly. No tools are available in this conversation."]
    return [
        "You can call the tools listed with this request. Call a tool only when it "
        "moves the task forward and use the exact parameter names it declares. "
        "Tool results are returned to you as tool messages."
    ]


def workflow_outline(flow_config: Dict[str, Dict[str, Any]], current: str | None) -> str:
    """Render ``FETCH (rss) -> AI (YOU ARE HERE) -> PUBLISH (blog)``."""
    navigator = FlowNavigator(flow_config)
    parts: List[str] = []
    order = 0
    while (flow_step_id := navigator.step_at(order)) is not None:
        step = flow_config[flow_step_id]
        label = str(step.get("step_type", "")).upper()
        slugs = step.get("handler_slugs") or ([step["handler_slug"]] if step.get("handler_slug") else [])
        if slugs:
            label += f" ({', '.join(slugs)})"
        if flow_step_id == current:
            label += " (YOU ARE HERE)"
        parts.append(label)
        order += 1
    return " -> ".join(parts)


def _pipeline_directive(tools: Dict[str, ToolDefinition], context: Dict[str, Any]) -> List[str]:
    engine_data = context.get("engine_data") or {}
    outputs = [
        "You are a pipeline agent processing one item of an automated workflow. "
        "Finish the step by calling the handler tool for the next step with complete "
        "parameters. Do not ask questions; nobody is reading your replies."
    ]
    handler_tools = sorted(name for name, tool in tools.items() if tool.handler)
    if handler_tools:
        outputs.append(f"Handler tools for this step: {', '.join(handler_tools)}.")

    pipeline_step_id = context.get("pipeline_step_id")
    step = engine_data.get("pipeline_config", {}).get(pipeline_step_id or "", {})
    system_prompt = (step.get("system_prompt") or "").strip()
    if system_prompt:
        content = ""
        outline = workflow_outline(engine_data.get("flow_config", {}), context.get("flow_step_id"))
        if outline:
            content += f"WORKFLOW: {outline}\n\n"
        content += f"PIPELINE GOALS:\n{system_prompt}"
        outputs.append(content)
    return outputs


def _chat_directive(tools: Dict[str, ToolDefinition], context: Dict[str, Any]) -> List[str]:
    return [
        "You are the operator's assistant for building and running content pipelines. "
        "Explain what you change and confirm the result of every tool call."
    ]


def _system_directive(tools: Dict[str, ToolDefinition], context: Dict[str, Any]) -> List[str]:
    return [
        "You are running an unattended maintenance task. Keep replies short and "
        "report the outcome of each action."
    ]


AGENT_DIRECTIVES: Dict[AgentType, Directive] = {
    AgentType.PIPELINE: _pipeline_directive,
    AgentType.CHAT: _chat_directive,
    AgentType.SYSTEM: _system_directive,
}


def build_directives(
    agent_type: AgentType, tools: Dict[str, ToolDefinition], context: Dict[str, Any]
) -> List[ConversationMessage]:
    texts = _core_directive(tools, context) + AGENT_DIRECTIVES[AgentType(agent_type)](tools, context)
    return [ConversationMessage(role="system", content=text) for text in texts]

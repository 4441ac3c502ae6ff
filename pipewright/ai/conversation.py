"""Multi-turn conversation loop between an AI provider and the tool executor."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..constants import DEFAULT_MAX_TURNS
from ..contracts import (
    AgentType,
    ConversationMessage,
    DataPacket,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from .directives import build_directives
from .providers import AIProvider
from .tools.executor import ToolExecutor
from .tools.parameters import ToolContext

logger = logging.getLogger(__name__)


class ToolExecutionRecord(BaseModel):
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result: ToolResult
    is_handler_tool: bool = False
    turn_count: int
    tool_call_id: str


class ConversationState(BaseModel):
    """Resumable state of one conversation; messages are append-only."""

    messages: List[ConversationMessage] = Field(default_factory=list)
    turn_count: int = 0
    completed: bool = False
    tool_execution_results: List[ToolExecutionRecord] = Field(default_factory=list)
    last_tool_calls: List[ToolCall] = Field(default_factory=list)

    def answered_call_ids(self) -> set[str]:
        """Tool call ids answered since the last assistant message."""
        answered: set[str] = set()
        for message in reversed(self.messages):
            if message.role == "assistant":
                break
            if message.role == "tool":
                answered.add(message.metadata.get("tool_call_id", ""))
        return answered

    def pending_tool_calls(self) -> List[ToolCall]:
        """Calls of the last assistant message that have no tool message yet."""
        for message in reversed(self.messages):
            if message.role == "assistant":
                done = self.answered_call_ids()
                return [c for c in message.tool_calls if c.id not in done]
        return []


class ConversationResult(BaseModel):
    state: ConversationState
    max_turns_reached: bool = False
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.state.completed

    @property
    def messages(self) -> List[ConversationMessage]:
        return self.state.messages

    @property
    def turn_count(self) -> int:
        return self.state.turn_count

    @property
    def final_content(self) -> str:
        for message in reversed(self.state.messages):
            if message.role == "assistant" and message.content:
                return str(message.content)
        return ""


class ConversationLoop:
    """Drive an AI provider until it stops requesting tools.

    The loop mutates and returns the ``ConversationState`` it was given so a
    caller can persist it and resume later (``single_turn`` polling).
    """

    def __init__(
        self,
        executor: ToolExecutor,
        max_turns: int = DEFAULT_MAX_TURNS,
        provider_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._executor = executor
        self._max_turns = max_turns
        self._provider_timeout = provider_timeout_seconds

    async def run(
        self,
        state: ConversationState,
        tools: Dict[str, ToolDefinition],
        provider: AIProvider,
        provider_name: str,
        model: str,
        agent_type: AgentType = AgentType.PIPELINE,
        context: Optional[Dict[str, Any]] = None,
        max_turns: Optional[int] = None,
        single_turn: bool = False,
    ) -> ConversationResult:
        context = context or {}
        if max_turns is None:
            max_turns = self._max_turns
        if state.completed:
            return ConversationResult(state=state)

        tool_context = ToolContext(
            agent_type=agent_type,
            job_id=context.get("job_id"),
            flow_step_id=context.get("flow_step_id"),
            session_id=context.get("session_id"),
            engine_data=context.get("engine_data") or {},
        )
        data_packets: List[DataPacket] = context.get("data_packets") or []

        pending = state.pending_tool_calls()
        if pending:
            # resumed after an interruption between the reply and its tool calls
            done = await self._execute_calls(state, pending, tools, data_packets, tool_context)
            state.turn_count += 1
            if done and agent_type == AgentType.PIPELINE:
                state.completed = True
                return ConversationResult(state=state)
            if single_turn:
                return ConversationResult(state=state)

        while True:
            if state.turn_count >= max_turns:
                logger.warning(
                    f"Conversation hit max turns ({max_turns}) without completing "
                    f"job_id={tool_context.job_id} session_id={tool_context.session_id}"
                )
                return ConversationResult(state=state, max_turns_reached=True)

            request = build_directives(agent_type, tools, context) + state.messages
            try:
                response = await asyncio.wait_for(
                    provider.complete(request, tools, provider_name, model),
                    timeout=self._provider_timeout,
                )
            except asyncio.TimeoutError:
                error = f"AI provider timed out after {self._provider_timeout} seconds"
                logger.error(f"{error} job_id={tool_context.job_id} turn={state.turn_count + 1}")
                return ConversationResult(state=state, error=error)
            except Exception as e:
                logger.exception(
                    f"AI provider request failed job_id={tool_context.job_id} turn={state.turn_count + 1}"
                )
                return ConversationResult(state=state, error=str(e) or type(e).__name__)

            state.messages.append(
                ConversationMessage(
                    role="assistant",
                    content=response.content,
                    tool_calls=response.tool_calls,
                    metadata={"turn": state.turn_count + 1},
                )
            )
            state.last_tool_calls = list(response.tool_calls)

            if not response.tool_calls:
                state.turn_count += 1
                state.completed = True
                return ConversationResult(state=state)

            done = await self._execute_calls(
                state, response.tool_calls, tools, data_packets, tool_context
            )
            state.turn_count += 1
            if done and agent_type == AgentType.PIPELINE:
                state.completed = True
                return ConversationResult(state=state)
            if single_turn:
                return ConversationResult(state=state)

    async def _execute_calls(
        self,
        state: ConversationState,
        calls: List[ToolCall],
        tools: Dict[str, ToolDefinition],
        data_packets: List[DataPacket],
        tool_context: ToolContext,
    ) -> bool:
        """Run tool calls in order; return whether a handler tool succeeded."""
        handler_succeeded = False
        for call in calls:
            if call.id in state.answered_call_ids():
                continue
            result = await self._executor.execute_tool(
                call.name,
                call.parameters,
                tools,
                data_packets,
                flow_step_id=tool_context.flow_step_id,
                extra_context=tool_context,
            )
            tool = tools.get(call.name)
            is_handler = bool(tool and tool.handler)
            state.messages.append(
                ConversationMessage(
                    role="tool",
                    content=result.model_dump(mode="json", exclude={"tool_name"}),
                    metadata={
                        "tool_call_id": call.id,
                        "tool_name": call.name,
                        "success": result.success,
                        "turn": state.turn_count + 1,
                    },
                )
            )
            state.tool_execution_results.append(
                ToolExecutionRecord(
                    tool_name=call.name,
                    parameters=call.parameters,
                    result=result,
                    is_handler_tool=is_handler,
                    turn_count=state.turn_count + 1,
                    tool_call_id=call.id,
                )
            )
            if not result.success:
                logger.warning(
                    f"Tool '{call.name}' failed job_id={tool_context.job_id}: {result.error}"
                )
            handler_succeeded = handler_succeeded or (is_handler and result.success)
        return handler_succeeded

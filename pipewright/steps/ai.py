"""The ``ai`` step: run the pipeline agent over the incoming packets."""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

from ..ai.conversation import (
    ConversationLoop,
    ConversationResult,
    ConversationState,
    ToolExecutionRecord,
)
from ..ai.providers import AIProvider
from ..ai.tools.executor import ToolExecutor
from ..ai.tools.result_finder import HANDLER_COMPLETE, TOOL_RESULT
from ..config import EngineSettings
from ..contracts import AgentType, ConversationMessage, DataPacket, ToolDefinition
from ..navigator import FlowNavigator
from ..queue import PromptQueue
from .base import Step, prepend

logger = logging.getLogger(__name__)

TITLE_LIMIT = 100


class AIStep(Step):
    step_type = "ai"

    def __init__(
        self,
        loop: ConversationLoop,
        executor: ToolExecutor,
        provider: Optional[AIProvider],
        prompt_queue: PromptQueue,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        super().__init__()
        self._loop = loop
        self._executor = executor
        self._provider = provider
        self._queue = prompt_queue
        self._settings = settings or EngineSettings()

    async def _select_prompt(self) -> str:
        """Use the configured message, otherwise take the next queued prompt."""
        user_message = (self.flow_step_config.get("user_message") or "").strip()
        if user_message:
            return user_message
        flow_id = self.engine.flow_id
        if not isinstance(flow_id, int):
            return ""
        queued = await self._queue.pop(flow_id, self.flow_step_id)
        if queued is None:
            return ""
        await self.engine.set_prompt_backup(
            self.flow_step_id, queued.prompt, queued.added_at.isoformat()
        )
        self.log(logging.INFO, "Using queued prompt")
        return queued.prompt

    def _build_messages(self, prompt: str) -> List[ConversationMessage]:
        messages: List[ConversationMessage] = []
        if self.data:
            packets = [p.model_dump(mode="json") for p in self.data]
            messages.append(
                ConversationMessage(
                    role="user", content=json.dumps({"data_packets": packets}, indent=2)
                )
            )
        image_url = self.engine.get("image_url")
        if image_url:
            messages.append(ConversationMessage(role="user", content=f"Attached image: {image_url}"))
        if prompt:
            messages.append(ConversationMessage(role="user", content=prompt))
        return messages

    def _gather_tools(self, pipeline_step_id: str) -> Dict[str, ToolDefinition]:
        flow_config = self.engine.flow_config()
        navigator = FlowNavigator(flow_config)
        previous_id = navigator.previous_step(self.flow_step_id)
        next_id = navigator.next_step(self.flow_step_id)
        return self._executor.get_available_tools(
            flow_config.get(previous_id) if previous_id else None,
            flow_config.get(next_id) if next_id else None,
            pipeline_step_id,
            self.engine.data,
            AgentType.PIPELINE,
        )

    async def execute_step(self) -> List[DataPacket]:
        pipeline_step_id = self.flow_step_config.get("pipeline_step_id", "")
        pipeline_step = self.engine.pipeline_step_config(pipeline_step_id)
        provider_name = pipeline_step.get("provider") or self._settings.default_provider
        model = pipeline_step.get("model") or self._settings.default_model
        if self._provider is None or not provider_name or not model:
            self.log(logging.ERROR, "AI provider or model not configured", pipeline_step_id=pipeline_step_id)
            return self.failure("ai_provider_missing").add_to(self.data)

        prompt = await self._select_prompt()
        messages = self._build_messages(prompt)
        if not messages:
            self.log(logging.ERROR, "No input packets and no prompt for AI step")
            return self.failure("ai_input_missing").add_to(self.data)

        tools = self._gather_tools(pipeline_step_id)
        self.log(logging.DEBUG, "Starting conversation", tools=sorted(tools))
        result = await self._loop.run(
            ConversationState(messages=messages),
            tools,
            self._provider,
            provider_name,
            model,
            agent_type=AgentType.PIPELINE,
            context={
                "job_id": self.job_id,
                "flow_step_id": self.flow_step_id,
                "pipeline_step_id": pipeline_step_id,
                "engine_data": self.engine.data,
                "data_packets": self.data,
            },
            max_turns=self._settings.max_turns,
        )
        if result.error:
            self.log(logging.ERROR, "AI processing failed", error=result.error)
            return self.failure("ai_processing_failed", detail=result.error).add_to(self.data)
        if result.max_turns_reached:
            self.log(logging.WARNING, "Conversation stopped at max turns", turns=result.turn_count)

        return prepend(self.process_loop_results(result, tools), self.data)

    def process_loop_results(
        self, result: ConversationResult, tools: Dict[str, ToolDefinition]
    ) -> List[DataPacket]:
        """Convert the conversation into packets, oldest first."""
        records = {r.tool_call_id: r for r in result.state.tool_execution_results}
        packets: List[DataPacket] = []
        for message in result.messages:
            if message.role == "assistant" and message.content:
                packets.append(self._response_packet(message))
            elif message.role == "tool":
                record = records.get(message.metadata.get("tool_call_id", ""))
                if record is not None:
                    packets.append(self._tool_packet(record, tools))
        return packets

    def _response_packet(self, message: ConversationMessage) -> DataPacket:
        content = str(message.content)
        turn = message.metadata.get("turn", 0)
        first_line = content.strip().split("\n", 1)[0].strip()
        if first_line and len(first_line) <= TITLE_LIMIT:
            title = first_line
        elif message.tool_calls:
            title = f"AI Tool Execution - Turn {turn}"
        else:
            title = f"AI Response - Turn {turn}"
        return DataPacket.create(
            type="ai_response",
            title=title,
            body=content,
            flow_step_id=self.flow_step_id,
            conversation_turn=turn,
            has_tool_calls=bool(message.tool_calls),
        )

    def _tool_packet(
        self, record: ToolExecutionRecord, tools: Dict[str, ToolDefinition]
    ) -> DataPacket:
        tool = tools.get(record.tool_name)
        handler = tool.handler if tool else None
        if record.is_handler_tool and record.result.success:
            return DataPacket.create(
                type=HANDLER_COMPLETE,
                title=f"Handler Tool Executed: {record.tool_name}",
                body=record.result.data,
                flow_step_id=self.flow_step_id,
                tool_name=record.tool_name,
                handler_tool=handler,
                tool_parameters=record.parameters,
                handler_config=tool.handler_config if tool else {},
                tool_result=record.result.data,
                conversation_turn=record.turn_count,
            )
        return DataPacket.create(
            type=TOOL_RESULT,
            title=f"Tool Result: {record.tool_name}",
            body=record.result.data if record.result.success else record.result.error,
            flow_step_id=self.flow_step_id,
            tool_name=record.tool_name,
            handler_tool=handler,
            tool_parameters=record.parameters,
            tool_success=record.result.success,
            tool_result=record.result.data,
            tool_error=record.result.error,
            conversation_turn=record.turn_count,
        )

"""AI provider adapters."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field
from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import ModelRequestParameters
from pydantic_ai.tools import ToolDefinition as ModelToolDefinition

from ..contracts import ConversationMessage, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)


class ProviderResponse(BaseModel):
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)


class AIProvider(Protocol):
    """Adapter that sends one request to an AI model."""

    async def complete(
        self,
        messages: List[ConversationMessage],
        tools: Dict[str, ToolDefinition],
        provider: str,
        model: str,
    ) -> ProviderResponse:
        """Return the assistant reply and any tool calls it requested."""


def _text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str)


def to_model_messages(messages: List[ConversationMessage]) -> List[ModelMessage]:
    """Convert conversation history into pydantic-ai request/response messages."""
    result: List[ModelMessage] = []
    pending: List[Any] = []

    def flush() -> None:
        if pending:
            result.append(ModelRequest(parts=list(pending)))
            pending.clear()

    for message in messages:
        if message.role == "system":
            pending.append(SystemPromptPart(content=_text(message.content)))
        elif message.role == "user":
            pending.append(UserPromptPart(content=_text(message.content)))
        elif message.role == "tool":
            pending.append(
                ToolReturnPart(
                    tool_name=message.metadata.get("tool_name", ""),
                    content=message.content,
                    tool_call_id=message.metadata.get("tool_call_id", ""),
                )
            )
        else:
            flush()
            parts: List[Any] = []
            if message.content:
                parts.append(TextPart(content=_text(message.content)))
            for call in message.tool_calls:
                parts.append(
                    ToolCallPart(
                        tool_name=call.name, args=call.parameters, tool_call_id=call.id
                    )
                )
            result.append(ModelResponse(parts=parts))
    flush()
    return result


def to_model_tools(tools: Dict[str, ToolDefinition]) -> List[ModelToolDefinition]:
    return [
        ModelToolDefinition(
            name=name,
            description=tool.description,
            parameters_json_schema=tool.json_schema(),
        )
        for name, tool in tools.items()
    ]


class PydanticAIProvider:
    """Provider backed by ``pydantic_ai.direct.model_request``.

    ``provider`` and ``model`` are joined into a pydantic-ai model name such
    as ``openai:gpt-4o``.
    """

    def __init__(self, model_settings: Optional[Dict[str, Any]] = None) -> None:
        self._model_settings = model_settings

    async def complete(
        self,
        messages: List[ConversationMessage],
        tools: Dict[str, ToolDefinition],
        provider: str,
        model: str,
    ) -> ProviderResponse:
        model_name = f"{provider}:{model}" if provider else model
        response = await model_request(
            model_name,
            to_model_messages(messages),
            model_settings=self._model_settings,
            model_request_parameters=ModelRequestParameters(
                function_tools=to_model_tools(tools)
            ),
        )
        text: List[str] = []
        calls: List[ToolCall] = []
        for part in response.parts:
            if isinstance(part, TextPart):
                text.append(part.content)
            elif isinstance(part, ToolCallPart):
                calls.append(
                    ToolCall(
                        id=part.tool_call_id,
                        name=part.tool_name,
                        parameters=part.args_as_dict(),
                    )
                )
        logger.debug(f"Provider response model={model_name} tool_calls={len(calls)}")
        return ProviderResponse(content="".join(text), tool_calls=calls)

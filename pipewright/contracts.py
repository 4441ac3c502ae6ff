"""Core contracts for the pipewright workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import DIRECT
from .status import PENDING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


EntityId = Union[int, Literal["direct"]]

JobSource = Literal["flow", "chat", "system", "api", "direct"]
VALID_SOURCES = ("flow", "chat", "system", "api", "direct")


class AgentType(str, Enum):
    """Which agent is driving a conversation."""

    PIPELINE = "pipeline"
    CHAT = "chat"
    SYSTEM = "system"


class PacketContent(BaseModel):
    title: str = ""
    body: Any = ""


class DataPacket(BaseModel):
    """One step's structured output, chained to the next step."""

    type: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    content: PacketContent = Field(default_factory=PacketContent)
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        type: str,
        title: str = "",
        body: Any = "",
        **metadata: Any,
    ) -> "DataPacket":
        return cls(type=type, content=PacketContent(title=title, body=body), metadata=metadata)

    def add_to(self, packets: List["DataPacket"]) -> List["DataPacket"]:
        """Return a new list with this packet prepended (newest first)."""
        return [self, *packets]

    @property
    def is_failure(self) -> bool:
        return self.metadata.get("success") is False


class QueuedPrompt(BaseModel):
    prompt: str
    added_at: datetime = Field(default_factory=utcnow)


class StepConfig(BaseModel):
    """Configuration of a single flow step.

    Stored as plain JSON inside ``Flow.flow_config``; unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow")

    step_type: str
    execution_order: int
    pipeline_step_id: str = ""
    flow_id: Optional[EntityId] = None
    pipeline_id: Optional[EntityId] = None
    handler_slug: Optional[str] = None
    handler_slugs: Optional[List[str]] = None
    handler_config: Dict[str, Any] = Field(default_factory=dict)
    handler_configs: Optional[Dict[str, Dict[str, Any]]] = None
    user_message: Optional[str] = None
    disabled_tools: List[str] = Field(default_factory=list)
    prompt_queue: List[QueuedPrompt] = Field(default_factory=list)

    def resolved_handler_slugs(self) -> List[str]:
        if self.handler_slugs:
            return list(self.handler_slugs)
        return [self.handler_slug] if self.handler_slug else []

    def handler_config_for(self, slug: str) -> Dict[str, Any]:
        if self.handler_configs and slug in self.handler_configs:
            return self.handler_configs[slug]
        return self.handler_config


class Pipeline(BaseModel):
    pipeline_id: int
    name: str = ""
    description: str = ""
    pipeline_config: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Flow(BaseModel):
    flow_id: int
    pipeline_id: int
    name: str = ""
    description: str = ""
    flow_config: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    scheduling_config: Dict[str, Any] = Field(default_factory=lambda: {"interval": "manual"})
    last_run_at: Optional[datetime] = None

    def step_config(self, flow_step_id: str) -> Optional[StepConfig]:
        raw = self.flow_config.get(flow_step_id)
        return StepConfig.model_validate(raw) if raw else None


class Job(BaseModel):
    job_id: int
    pipeline_id: EntityId
    flow_id: EntityId
    source: JobSource = "flow"
    label: Optional[str] = None
    status: str = PENDING
    engine_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_direct(self) -> bool:
        return self.flow_id == DIRECT


class ProcessedItem(BaseModel):
    flow_step_id: str
    source_type: str
    item_identifier: str
    job_id: int
    processed_at: datetime = Field(default_factory=utcnow)


class ToolCall(BaseModel):
    """A tool invocation requested by the AI provider."""

    id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")
    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant", "tool", "system"]
    content: Any = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ToolParameter(BaseModel):
    type: str = "string"
    required: bool = False
    description: str = ""


class ToolDefinition(BaseModel):
    """Schema-described callable an AI agent may invoke."""

    name: str
    class_ref: str
    method: str = "handle_tool_call"
    description: str = ""
    parameters: Dict[str, ToolParameter] = Field(default_factory=dict)
    handler: Optional[str] = None
    handler_config: Dict[str, Any] = Field(default_factory=dict)
    requires_config: bool = False

    def json_schema(self) -> Dict[str, Any]:
        """JSON schema of the parameters, as sent to providers."""
        return {
            "type": "object",
            "properties": {
                name: {"type": p.type, "description": p.description}
                for name, p in self.parameters.items()
            },
            "required": [name for name, p in self.parameters.items() if p.required],
        }


class ToolResult(BaseModel):
    success: bool
    tool_name: str
    data: Any = None
    error: Optional[str] = None


class ScheduledAction(BaseModel):
    """An engine action queued on the task scheduler."""

    action_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    action: str
    args: Dict[str, Any] = Field(default_factory=dict)
    run_at: datetime = Field(default_factory=utcnow)
    interval_seconds: Optional[int] = None

    def matches(self, action: str, args: Optional[Dict[str, Any]] = None) -> bool:
        if self.action != action:
            return False
        return args is None or self.args == args

"""pipewright: step-by-step workflow execution with a tool-calling AI agent."""

from .contracts import DataPacket, Flow, Job, Pipeline, ToolDefinition, ToolResult
from .engine import FlowEngine
from .engine_data import EngineData
from .persistence import get_repository
from .runtime import Runtime, build_runtime
from .scheduling import get_scheduler
from .status import JobStatus
from .steps import FetchStep, Step, StepTypeRegistry

__version__ = "0.3.0"
__all__ = [
    "DataPacket",
    "EngineData",
    "FetchStep",
    "Flow",
    "FlowEngine",
    "Job",
    "JobStatus",
    "Pipeline",
    "Runtime",
    "Step",
    "StepTypeRegistry",
    "ToolDefinition",
    "ToolResult",
    "build_runtime",
    "get_repository",
    "get_scheduler",
]

"""Step types and their registry."""

from .ai import AIStep
from .base import Step, StepPayload, prepend
from .fetch import FetchStep
from .handler import HandlerStep, PublishStep, UpdateStep
from .registry import StepTypeRegistry

__all__ = [
    "AIStep",
    "FetchStep",
    "HandlerStep",
    "PublishStep",
    "Step",
    "StepPayload",
    "StepTypeRegistry",
    "UpdateStep",
    "prepend",
]

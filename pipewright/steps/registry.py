"""Step type registry mapping ``step_type`` slugs to factories."""

from __future__ import annotations

from typing import Callable, Dict, List

from ..errors import StepTypeNotFound
from .base import Step

StepFactory = Callable[[], Step]


class StepTypeRegistry:
    def __init__(self) -> None:
        self._factories: Dict[str, StepFactory] = {}

    def register(self, step_type: str, factory: StepFactory) -> None:
        if not step_type:
            raise ValueError("step_type must be a non-empty string")
        if not callable(factory):
            raise ValueError(f"Factory for step type '{step_type}' is not callable")
        if step_type in self._factories:
            raise ValueError(f"Step type '{step_type}' is already registered")
        self._factories[step_type] = factory

    def resolve(self, step_type: str) -> Step:
        """Return a fresh step instance for ``step_type``."""
        factory = self._factories.get(step_type)
        if factory is None:
            raise StepTypeNotFound(step_type)
        return factory()

    def list(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, step_type: str) -> bool:
        return step_type in self._factories

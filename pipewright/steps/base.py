"""Base class shared by every step type."""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import DataPacket
from ..engine_data import EngineData

logger = logging.getLogger(__name__)


class StepPayload(BaseModel):
    """Everything a step receives for one execution."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    job_id: int
    flow_step_id: str
    data: List[DataPacket] = Field(default_factory=list)
    engine: EngineData


def prepend(packets: List[DataPacket], data: List[DataPacket]) -> List[DataPacket]:
    """Prepend packets given oldest first so the newest ends up at index 0."""
    for packet in packets:
        data = packet.add_to(data)
    return data


class Step(abc.ABC):
    """A unit of work in a flow.

    ``execute`` unpacks the payload, validates the step configuration and
    turns any exception from ``execute_step`` into a failure packet so the
    engine can finalize the job with a readable reason.
    """

    step_type: str = ""

    def __init__(self) -> None:
        self.job_id: int = 0
        self.flow_step_id: str = ""
        self.data: List[DataPacket] = []
        self.engine: Optional[EngineData] = None
        self.flow_step_config: Dict[str, Any] = {}

    async def execute(self, payload: StepPayload) -> List[DataPacket]:
        self.job_id = payload.job_id
        self.flow_step_id = payload.flow_step_id
        self.data = list(payload.data)
        self.engine = payload.engine
        self.flow_step_config = payload.engine.flow_step_config(payload.flow_step_id)

        error = self.validate_configuration()
        if error:
            self.log(logging.ERROR, f"Invalid step configuration: {error}")
            return self.failure(error).add_to(self.data)

        try:
            return await self.execute_step()
        except Exception as e:
            logger.exception(
                f"{self.step_type} step raised job_id={self.job_id} flow_step_id={self.flow_step_id}"
            )
            return self.failure(f"{type(e).__name__}: {e}").add_to(self.data)

    def validate_configuration(self) -> Optional[str]:
        """Return an error message when the step cannot run."""
        return None

    @abc.abstractmethod
    async def execute_step(self) -> List[DataPacket]:
        """Run the step and return the packet list with new outputs prepended."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    def handler_slugs(self) -> List[str]:
        slugs = self.flow_step_config.get("handler_slugs")
        if slugs:
            return list(slugs)
        slug = self.flow_step_config.get("handler_slug")
        return [slug] if slug else []

    def failure(self, error: str, **metadata: Any) -> DataPacket:
        return DataPacket.create(
            type=f"{self.step_type or 'step'}_error",
            title=f"{self.step_type or 'Step'} failed",
            body=error,
            success=False,
            error=error,
            flow_step_id=self.flow_step_id,
            **metadata,
        )

    def log(self, level: int, message: str, **context: Any) -> None:
        details = " ".join(f"{k}={v}" for k, v in context.items())
        logger.log(
            level,
            f"{message} job_id={self.job_id} flow_step_id={self.flow_step_id} "
            f"step_type={self.step_type} {details}".rstrip(),
        )

"""Base class for integrator-supplied fetch steps."""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Optional

from ..contracts import DataPacket
from ..persistence.repository import JobRepository
from .base import Step, prepend


class FetchStep(Step):
    """Pull new items from a source and stage them as packets.

    Subclasses implement ``fetch`` and call ``mark_processed`` for every item
    they return so later runs can tell "nothing new" apart from failure.
    """

    step_type = "fetch"
    source_type: str = "fetch"

    def __init__(self, repository: JobRepository) -> None:
        super().__init__()
        self._repository = repository

    def validate_configuration(self) -> Optional[str]:
        if not self.handler_slugs():
            return "fetch step requires handler_slug"
        return None

    @property
    def handler_config(self) -> Dict[str, Any]:
        return self.flow_step_config.get("handler_config") or {}

    async def is_processed(self, item_identifier: str) -> bool:
        return await self._repository.is_item_processed(
            self.flow_step_id, self.source_type, item_identifier
        )

    async def mark_processed(self, item_identifier: str) -> bool:
        return await self._repository.add_processed_item(
            self.flow_step_id, self.source_type, item_identifier, self.job_id
        )

    async def stage(self, **values: Any) -> None:
        """Store side-channel values (``source_url``, ``image_url``) for handler tools."""
        await self.engine.merge(values)

    @abc.abstractmethod
    async def fetch(self) -> List[DataPacket]:
        """Return new items oldest first; ``[]`` when nothing is new."""
        raise NotImplementedError

    async def execute_step(self) -> List[DataPacket]:
        items = await self.fetch()
        if not items:
            self.log(logging.INFO, "No new items")
            return []
        return prepend(items, self.data)

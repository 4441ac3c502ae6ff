"""Staging storage for the data packets passed between steps."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from pydantic import TypeAdapter

from .config import PacketStorageConfig
from .constants import DIRECT
from .contracts import DataPacket, EntityId

logger = logging.getLogger(__name__)

_packet_list = TypeAdapter(List[DataPacket])


class PacketStore(Protocol):
    """Protocol for data packet staging backends."""

    async def store(
        self, job_id: int, packets: List[DataPacket], flow_id: EntityId = DIRECT
    ) -> bool:
        """Persist the newest-first packet list of a job."""

    async def retrieve_by_job(self, job_id: int) -> List[DataPacket]:
        """Return the staged packets of a job, ``[]`` when none."""

    async def cleanup(self, job_id: int) -> bool:
        """Remove every staged packet of a job."""


class InMemoryPacketStore(PacketStore):
    def __init__(self) -> None:
        self._packets: Dict[int, List[DataPacket]] = {}

    async def store(
        self, job_id: int, packets: List[DataPacket], flow_id: EntityId = DIRECT
    ) -> bool:
        self._packets[job_id] = [p.model_copy(deep=True) for p in packets]
        return True

    async def retrieve_by_job(self, job_id: int) -> List[DataPacket]:
        return [p.model_copy(deep=True) for p in self._packets.get(job_id, [])]

    async def cleanup(self, job_id: int) -> bool:
        return self._packets.pop(job_id, None) is not None


class FilesystemPacketStore(PacketStore):
    """Store packets as JSON under ``<base>/flow_<id>/job_<id>/packets.json``."""

    FILENAME = "packets.json"

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)

    def _job_dir(self, job_id: int, flow_id: EntityId) -> Path:
        return self.base_path / f"flow_{flow_id}" / f"job_{job_id}"

    def _find_job_dir(self, job_id: int) -> Optional[Path]:
        matches = sorted(self.base_path.glob(f"flow_*/job_{job_id}"))
        return matches[0] if matches else None

    def _write(self, job_id: int, packets: List[DataPacket], flow_id: EntityId) -> None:
        existing = self._find_job_dir(job_id)
        target = self._job_dir(job_id, flow_id)
        if existing and existing != target:
            shutil.rmtree(existing)
        target.mkdir(parents=True, exist_ok=True)
        (target / self.FILENAME).write_bytes(_packet_list.dump_json(packets))

    def _read(self, job_id: int) -> List[DataPacket]:
        job_dir = self._find_job_dir(job_id)
        if job_dir is None or not (job_dir / self.FILENAME).exists():
            return []
        return _packet_list.validate_json((job_dir / self.FILENAME).read_bytes())

    def _remove(self, job_id: int) -> bool:
        job_dir = self._find_job_dir(job_id)
        if job_dir is None:
            return False
        shutil.rmtree(job_dir)
        return True

    async def store(
        self, job_id: int, packets: List[DataPacket], flow_id: EntityId = DIRECT
    ) -> bool:
        await asyncio.to_thread(self._write, job_id, packets, flow_id)
        return True

    async def retrieve_by_job(self, job_id: int) -> List[DataPacket]:
        return await asyncio.to_thread(self._read, job_id)

    async def cleanup(self, job_id: int) -> bool:
        removed = await asyncio.to_thread(self._remove, job_id)
        if removed:
            logger.debug(f"Cleaned staged packets job_id={job_id}")
        return removed


def get_packet_store(config: Optional[PacketStorageConfig] = None) -> PacketStore:
    """Return a packet store for the configured backend."""
    config = config or PacketStorageConfig()
    if config.backend == "filesystem":
        return FilesystemPacketStore(config.base_path)
    if config.backend == "inmemory":
        return InMemoryPacketStore()
    raise ValueError(f"Unsupported packet storage backend: {config.backend}")

"""Locate the packet recording a handler tool's execution."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from ...contracts import DataPacket

logger = logging.getLogger(__name__)

HANDLER_COMPLETE = "ai_handler_complete"
TOOL_RESULT = "tool_result"


class ToolResultFinder:
    @staticmethod
    def matches(packet: DataPacket, handler_slug: str) -> bool:
        metadata = packet.metadata
        if packet.type == HANDLER_COMPLETE:
            return metadata.get("handler_tool") == handler_slug
        if packet.type == TOOL_RESULT:
            return metadata.get("handler_tool") == handler_slug and bool(
                metadata.get("tool_success")
            )
        return False

    @classmethod
    def find(
        cls,
        data_packets: List[DataPacket],
        handler_slug: str,
        flow_step_id: Optional[str] = None,
    ) -> Optional[DataPacket]:
        """Return the newest packet produced by ``handler_slug``, if any."""
        for packet in data_packets:
            if cls.matches(packet, handler_slug):
                return packet
        logger.error(
            f"No tool result found for handler '{handler_slug}' flow_step_id={flow_step_id} "
            f"packet_types={[p.type for p in data_packets]}"
        )
        return None

    @classmethod
    def find_all(
        cls, data_packets: List[DataPacket], handler_slugs: Iterable[str]
    ) -> Dict[str, DataPacket]:
        found: Dict[str, DataPacket] = {}
        for slug in handler_slugs:
            for packet in data_packets:
                if cls.matches(packet, slug):
                    found[slug] = packet
                    break
        return found

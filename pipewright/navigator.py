"""Linear navigation over a flow's ``execution_order`` chain."""

from __future__ import annotations

from typing import Any, Dict, Optional


class FlowNavigator:
    """Resolve neighbouring steps of a flow configuration."""

    def __init__(self, flow_config: Dict[str, Dict[str, Any]]) -> None:
        self._by_order: Dict[int, str] = {}
        for flow_step_id, step in flow_config.items():
            order = step.get("execution_order")
            if isinstance(order, int):
                self._by_order.setdefault(order, flow_step_id)
        self._flow_config = flow_config

    def step_at(self, execution_order: int) -> Optional[str]:
        return self._by_order.get(execution_order)

    def first_step(self) -> Optional[str]:
        return self.step_at(0)

    def _order_of(self, flow_step_id: str) -> Optional[int]:
        order = self._flow_config.get(flow_step_id, {}).get("execution_order")
        return order if isinstance(order, int) else None

    def next_step(self, flow_step_id: str) -> Optional[str]:
        order = self._order_of(flow_step_id)
        return None if order is None else self.step_at(order + 1)

    def previous_step(self, flow_step_id: str) -> Optional[str]:
        order = self._order_of(flow_step_id)
        if order is None or order == 0:
            return None
        return self.step_at(order - 1)

"""Logging helpers: agent-scoped records and CLI setup."""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from .contracts import AgentType

_current_agent: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "pipewright_agent_type", default=None
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(agent_type)s] %(name)s: %(message)s"


def current_agent_type() -> Optional[str]:
    return _current_agent.get()


@contextmanager
def agent_scope(agent_type: Union[AgentType, str]) -> Iterator[None]:
    """Tag log records emitted inside the block with ``agent_type``."""
    value = agent_type.value if isinstance(agent_type, AgentType) else str(agent_type)
    token = _current_agent.set(value)
    try:
        yield
    finally:
        _current_agent.reset(token)


class AgentTypeFilter(logging.Filter):
    """Copy the active agent type onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.agent_type = _current_agent.get() or "-"
        return True


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.addFilter(AgentTypeFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("pipewright")
    root.handlers = [handler]
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False

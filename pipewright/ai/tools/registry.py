"""Registry of AI tools and the implementations behind them."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ...contracts import AgentType, ToolDefinition
from ...errors import ToolImplementationNotFound, ToolRegistrationError

logger = logging.getLogger(__name__)

ToolSource = Union[ToolDefinition, Callable[[], ToolDefinition]]
HandlerToolProvider = Callable[[Dict[str, Any], Dict[str, Any]], Iterable[ToolDefinition]]
ImplementationFactory = Callable[[], Any]
ConfigurationCheck = Callable[[], bool]


class ToolRegistry:
    """Map tool names and class references to definitions and implementations.

    Global and agent tools may be registered as zero-argument callables that
    build the definition on first use; resolved definitions are cached until
    ``clear_cache`` is called.
    """

    def __init__(self) -> None:
        self._implementations: Dict[str, ImplementationFactory] = {}
        self._handler_providers: Dict[str, List[HandlerToolProvider]] = {}
        self._global_sources: List[ToolSource] = []
        self._agent_sources: Dict[AgentType, List[ToolSource]] = {}
        self._config_checks: Dict[str, ConfigurationCheck] = {}
        self._global_cache: Optional[Dict[str, ToolDefinition]] = None
        self._agent_cache: Dict[AgentType, Dict[str, ToolDefinition]] = {}

    # ------------------------------------------------------------------
    # Registration
    def register_implementation(self, class_ref: str, factory: ImplementationFactory) -> None:
        if not class_ref:
            raise ToolRegistrationError("class_ref must be a non-empty string")
        if not callable(factory):
            raise ToolRegistrationError(f"Factory for '{class_ref}' is not callable")
        if class_ref in self._implementations:
            raise ToolRegistrationError(f"Implementation '{class_ref}' is already registered")
        self._implementations[class_ref] = factory

    def register_handler_tools(self, handler_slug: str, provider: HandlerToolProvider) -> None:
        if not callable(provider):
            raise ToolRegistrationError(f"Tool provider for '{handler_slug}' is not callable")
        self._handler_providers.setdefault(handler_slug, []).append(provider)

    def register_global_tool(self, tool: ToolSource) -> None:
        self._check_source(tool)
        self._global_sources.append(tool)
        self._global_cache = None

    def register_agent_tool(self, agent_type: AgentType, tool: ToolSource) -> None:
        self._check_source(tool)
        self._agent_sources.setdefault(AgentType(agent_type), []).append(tool)
        self._agent_cache.pop(AgentType(agent_type), None)

    def register_configuration_check(self, tool_name: str, check: ConfigurationCheck) -> None:
        if not callable(check):
            raise ToolRegistrationError(f"Configuration check for '{tool_name}' is not callable")
        self._config_checks[tool_name] = check

    @staticmethod
    def _check_source(tool: Any) -> None:
        if not isinstance(tool, ToolDefinition) and not callable(tool):
            raise ToolRegistrationError(
                f"Tool must be a ToolDefinition or a callable returning one, got {type(tool)!r}"
            )

    # ------------------------------------------------------------------
    # Lookup
    def _resolve_sources(self, sources: Iterable[ToolSource]) -> Dict[str, ToolDefinition]:
        tools: Dict[str, ToolDefinition] = {}
        for source in sources:
            tool = source if isinstance(source, ToolDefinition) else source()
            if not isinstance(tool, ToolDefinition):
                logger.error(f"Lazy tool source returned {type(tool)!r}, ignoring")
                continue
            if tool.handler:
                logger.warning(f"Handler-scoped tool '{tool.name}' registered as global, ignoring")
                continue
            tools[tool.name] = tool
        return tools

    def global_tools(self) -> Dict[str, ToolDefinition]:
        if self._global_cache is None:
            self._global_cache = self._resolve_sources(self._global_sources)
        return dict(self._global_cache)

    def agent_tools(self, agent_type: AgentType) -> Dict[str, ToolDefinition]:
        agent_type = AgentType(agent_type)
        if agent_type not in self._agent_cache:
            self._agent_cache[agent_type] = self._resolve_sources(
                self._agent_sources.get(agent_type, [])
            )
        return dict(self._agent_cache[agent_type])

    def handler_tools(
        self,
        handler_slug: str,
        handler_config: Optional[Dict[str, Any]] = None,
        engine_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, ToolDefinition]:
        """Definitions contributed for one handler, stamped with its slug."""
        handler_config = handler_config or {}
        tools: Dict[str, ToolDefinition] = {}
        for provider in self._handler_providers.get(handler_slug, []):
            for tool in provider(handler_config, engine_data or {}):
                tools[tool.name] = tool.model_copy(
                    update={"handler": handler_slug, "handler_config": handler_config}
                )
        return tools

    def is_configured(self, tool_name: str) -> bool:
        check = self._config_checks.get(tool_name)
        if check is None:
            return False
        try:
            return bool(check())
        except Exception:
            logger.exception(f"Configuration check failed for tool '{tool_name}'")
            return False

    def resolve(self, class_ref: str) -> Any:
        factory = self._implementations.get(class_ref)
        if factory is None:
            raise ToolImplementationNotFound(class_ref)
        return factory()

    def clear_cache(self) -> None:
        self._global_cache = None
        self._agent_cache.clear()

import pytest

from pipewright.ai.tools import ToolManager, ToolRegistry
from pipewright.contracts import AgentType, ToolDefinition
from pipewright.errors import ToolImplementationNotFound, ToolRegistrationError


def _tool(name, **kwargs):
    return ToolDefinition(name=name, class_ref=f"impl.{name}", **kwargs)


def test_implementations_resolve_fresh_instances():
    registry = ToolRegistry()
    registry.register_implementation("impl.search", object)

    assert registry.resolve("impl.search") is not registry.resolve("impl.search")
    with pytest.raises(ToolRegistrationError):
        registry.register_implementation("impl.search", object)
    with pytest.raises(ToolRegistrationError):
        registry.register_implementation("", object)
    with pytest.raises(ToolImplementationNotFound):
        registry.resolve("impl.unknown")


def test_lazy_global_tools_are_cached_until_cleared():
    registry = ToolRegistry()
    builds = []

    def build():
        builds.append(1)
        return _tool("web_search")

    registry.register_global_tool(build)
    registry.register_global_tool(_tool("calculator"))

    assert set(registry.global_tools()) == {"web_search", "calculator"}
    registry.global_tools()
    assert len(builds) == 1

    registry.clear_cache()
    registry.global_tools()
    assert len(builds) == 2

    with pytest.raises(ToolRegistrationError):
        registry.register_global_tool("not a tool")


def test_handler_scoped_tool_is_not_accepted_as_global():
    registry = ToolRegistry()
    registry.register_global_tool(_tool("publish", handler="blog"))
    assert registry.global_tools() == {}


def test_handler_tools_are_stamped_with_slug_and_config():
    registry = ToolRegistry()
    seen = {}

    def provider(handler_config, engine_data):
        seen.update(handler_config=handler_config, engine_data=engine_data)
        return [_tool("publish_blog")]

    registry.register_handler_tools("blog", provider)
    tools = registry.handler_tools("blog", {"site": "x"}, {"source_url": "u"})

    assert tools["publish_blog"].handler == "blog"
    assert tools["publish_blog"].handler_config == {"site": "x"}
    assert seen["engine_data"] == {"source_url": "u"}
    assert registry.handler_tools("unknown") == {}


def test_agent_tools_are_kept_per_agent_type():
    registry = ToolRegistry()
    registry.register_agent_tool(AgentType.CHAT, _tool("create_flow"))

    assert set(registry.agent_tools(AgentType.CHAT)) == {"create_flow"}
    assert registry.agent_tools(AgentType.PIPELINE) == {}


def test_configuration_checks():
    registry = ToolRegistry()

    def broken():
        raise RuntimeError("no credentials file")

    registry.register_configuration_check("search", lambda: True)
    registry.register_configuration_check("broken", broken)

    assert registry.is_configured("search")
    assert not registry.is_configured("broken")
    assert not registry.is_configured("unchecked")


def test_manager_opt_out_when_no_settings():
    registry = ToolRegistry()
    registry.register_global_tool(_tool("web_search"))
    registry.register_global_tool(_tool("needs_key", requires_config=True))

    tools = ToolManager(registry).available_global_tools()

    assert set(tools) == {"web_search"}


def test_manager_enabled_tools_and_step_disabled():
    registry = ToolRegistry()
    registry.register_global_tool(_tool("web_search"))
    registry.register_global_tool(_tool("fetch_page"))
    registry.register_global_tool(_tool("needs_key", requires_config=True))
    registry.register_configuration_check("needs_key", lambda: True)
    manager = ToolManager(registry, {"web_search": True, "needs_key": True})

    assert set(manager.available_global_tools()) == {"web_search", "needs_key"}

    engine_data = {"pipeline_config": {"ai_step": {"disabled_tools": ["web_search"]}}}
    disabled = manager.step_disabled_tools("ai_step", engine_data)
    assert disabled == {"web_search"}
    assert set(manager.available_global_tools(disabled)) == {"needs_key"}
    assert manager.step_disabled_tools(None, engine_data) == set()


def test_handler_tools_bypass_enablement():
    manager = ToolManager(ToolRegistry(), {})
    handler_tool = _tool("publish", handler="blog")

    assert manager.is_tool_available(handler_tool, disabled_tools=["publish"])
    assert not manager.is_tool_available(_tool("publish"))


def test_chat_tools_merge_global_and_chat_agent_tools():
    registry = ToolRegistry()
    registry.register_global_tool(_tool("web_search"))
    registry.register_agent_tool(AgentType.CHAT, _tool("create_flow"))
    registry.register_agent_tool(AgentType.PIPELINE, _tool("pipeline_only"))

    assert set(ToolManager(registry).chat_tools()) == {"web_search", "create_flow"}

import asyncio

import pytest

from pipewright.ai.tools import ToolContext, ToolExecutor, ToolRegistry, ToolResultFinder
from pipewright.contracts import AgentType, DataPacket, ToolDefinition, ToolParameter, ToolResult


def _publish_tool(**kwargs):
    return ToolDefinition(
        name="publish_post",
        class_ref="impl.publish",
        parameters={
            "title": ToolParameter(required=True),
            "content": ToolParameter(),
        },
        **kwargs,
    )


class SyncTool:
    def __init__(self):
        self.calls = []

    def handle_tool_call(self, parameters, tool):
        self.calls.append(parameters)
        return {"posted": True}


class SlowTool:
    async def handle_tool_call(self, parameters, tool):
        await asyncio.sleep(1)


class FailingTool:
    async def handle_tool_call(self, parameters, tool):
        raise ConnectionError("service unavailable")


class WrongSignatureTool:
    async def handle_tool_call(self, parameters):
        return parameters


def _broken_factory():
    raise RuntimeError("client init failed")


@pytest.mark.asyncio
async def test_unknown_tool_and_missing_parameters():
    executor = ToolExecutor(ToolRegistry())
    tools = {"publish_post": _publish_tool()}

    unknown = await executor.execute_tool("nope", {}, tools, [])
    assert unknown.success is False
    assert unknown.error == "Tool 'nope' not found"

    missing = await executor.execute_tool("publish_post", {"title": ""}, tools, [])
    assert missing.success is False
    assert missing.error == (
        "Publish Post requires the following parameters: title. "
        "Please provide these parameters and try again."
    )


@pytest.mark.asyncio
async def test_parameters_layer_packets_side_channel_and_ai_args(recording_tool):
    registry = ToolRegistry()
    impl = recording_tool(result={"id": 7})
    registry.register_implementation("impl.publish", lambda: impl)
    tool = _publish_tool(handler="blog", handler_config={"site": "s"})
    packets = [
        DataPacket.create("fetch", title="Packet title", body="Packet body"),
        DataPacket.create("fetch", title="Older", body="Older body"),
    ]
    context = ToolContext(
        job_id=3,
        engine_data={"source_url": "https://src", "image_url": "", "other": "x"},
    )

    result = await ToolExecutor(registry).execute_tool(
        "publish_post",
        {"title": "AI title"},
        {"publish_post": tool},
        packets,
        flow_step_id="ai_1",
        extra_context=context,
    )

    assert result == ToolResult(success=True, tool_name="publish_post", data={"id": 7})
    (params,) = impl.calls
    assert params["title"] == "AI title"
    assert params["content"] == "Packet body"
    assert params["source_url"] == "https://src"
    assert "image_url" not in params
    assert "other" not in params
    assert params["handler_config"] == {"site": "s"}
    assert params["tool_definition"]["name"] == "publish_post"
    assert params["job_id"] == 3
    assert params["flow_step_id"] == "ai_1"
    assert params["agent_type"] == AgentType.PIPELINE.value


@pytest.mark.asyncio
async def test_non_handler_tools_get_no_side_channel():
    registry = ToolRegistry()
    impl = SyncTool()
    registry.register_implementation("impl.publish", lambda: impl)

    result = await ToolExecutor(registry).execute_tool(
        "publish_post",
        {"title": "t"},
        {"publish_post": _publish_tool()},
        [],
        extra_context=ToolContext(engine_data={"source_url": "https://src"}),
    )

    assert result.success
    assert result.data == {"posted": True}
    assert "source_url" not in impl.calls[0]
    assert "handler_config" not in impl.calls[0]


@pytest.mark.asyncio
async def test_failures_are_returned_not_raised():
    registry = ToolRegistry()
    registry.register_implementation("impl.fail", FailingTool)
    registry.register_implementation("impl.slow", SlowTool)
    registry.register_implementation("impl.broken", _broken_factory)
    registry.register_implementation("impl.wrong", WrongSignatureTool)
    tools = {
        "fail": ToolDefinition(name="fail", class_ref="impl.fail"),
        "slow": ToolDefinition(name="slow", class_ref="impl.slow"),
        "ghost": ToolDefinition(name="ghost", class_ref="impl.ghost"),
        "nomethod": ToolDefinition(name="nomethod", class_ref="impl.fail", method="missing"),
        "broken": ToolDefinition(name="broken", class_ref="impl.broken"),
        "wrong": ToolDefinition(name="wrong", class_ref="impl.wrong"),
    }
    executor = ToolExecutor(registry, timeout_seconds=0.05)

    failed = await executor.execute_tool("fail", {}, tools, [])
    assert failed.error == "service unavailable"
    slow = await executor.execute_tool("slow", {}, tools, [])
    assert "timed out" in slow.error
    ghost = await executor.execute_tool("ghost", {}, tools, [])
    assert "impl.ghost" in ghost.error
    nomethod = await executor.execute_tool("nomethod", {}, tools, [])
    assert nomethod.error == "Tool implementation 'impl.fail' has no method 'missing'"
    broken = await executor.execute_tool("broken", {}, tools, [])
    assert broken.error == "client init failed"
    wrong = await executor.execute_tool("wrong", {}, tools, [])
    assert "positional argument" in wrong.error
    assert not any(r.success for r in (failed, slow, ghost, nomethod, broken, wrong))


def test_available_tools_from_adjacent_handler_steps():
    registry = ToolRegistry()
    registry.register_handler_tools(
        "blog", lambda config, data: [ToolDefinition(name="publish_blog", class_ref="b")]
    )
    registry.register_handler_tools(
        "wiki", lambda config, data: [ToolDefinition(name="update_wiki", class_ref="w")]
    )
    registry.register_global_tool(ToolDefinition(name="web_search", class_ref="s"))
    executor = ToolExecutor(registry)

    tools = executor.get_available_tools(
        {"handler_slug": "wiki", "handler_config": {"page": 1}},
        {"handler_slugs": ["blog"], "handler_configs": {"blog": {"site": "b"}}},
        "ai_step",
        {"pipeline_config": {}},
    )

    assert set(tools) == {"publish_blog", "update_wiki", "web_search"}
    assert tools["publish_blog"].handler_config == {"site": "b"}
    assert tools["update_wiki"].handler_config == {"page": 1}
    assert executor.get_available_tools(None, None, None) == {"web_search": tools["web_search"]}


def _result_packet(slug, success=True, type="tool_result"):
    return DataPacket.create(type, handler_tool=slug, tool_success=success)


def test_result_finder_prefers_newest_successful_match():
    newest = _result_packet("blog")
    packets = [
        _result_packet("blog", success=False),
        newest,
        _result_packet("blog"),
        DataPacket.create("fetch"),
    ]

    assert ToolResultFinder.find(packets, "blog") is newest
    assert ToolResultFinder.find(packets, "wiki") is None


def test_result_finder_accepts_handler_complete_packets():
    complete = _result_packet("wiki", success=False, type="ai_handler_complete")
    found = ToolResultFinder.find_all([complete, _result_packet("blog")], ["wiki", "blog", "x"])

    assert set(found) == {"wiki", "blog"}
    assert found["wiki"] is complete

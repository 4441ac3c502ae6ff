import pytest

from pipewright.ai.conversation import ConversationResult, ConversationState, ToolExecutionRecord
from pipewright.contracts import ConversationMessage, DataPacket, ToolDefinition, ToolResult
from pipewright.engine_data import EngineData
from pipewright.errors import StepTypeNotFound
from pipewright.steps import AIStep, PublishStep, Step, StepPayload, StepTypeRegistry, UpdateStep, prepend


def _payload(step_config, data=None, flow_step_id="s1", extra=None):
    engine = EngineData(
        1,
        {
            "job": {"job_id": 1, "flow_id": "direct", "pipeline_id": "direct"},
            "flow_config": {flow_step_id: step_config},
            "pipeline_config": {},
            **(extra or {}),
        },
    )
    return StepPayload(job_id=1, flow_step_id=flow_step_id, data=data or [], engine=engine)


def _handler_complete(slug, result):
    return DataPacket.create(
        "ai_handler_complete", title="done", body=result, handler_tool=slug, tool_result=result
    )


def test_registry():
    registry = StepTypeRegistry()
    registry.register("publish", PublishStep)

    assert isinstance(registry.resolve("publish"), PublishStep)
    assert registry.resolve("publish") is not registry.resolve("publish")
    assert "publish" in registry
    assert registry.list() == ["publish"]
    with pytest.raises(ValueError):
        registry.register("publish", UpdateStep)
    with pytest.raises(ValueError):
        registry.register("", UpdateStep)
    with pytest.raises(StepTypeNotFound):
        registry.resolve("teleport")


def test_prepend_keeps_newest_first():
    old = DataPacket.create("fetch", title="old")
    a = DataPacket.create("x", title="a")
    b = DataPacket.create("x", title="b")
    assert [p.content.title for p in prepend([a, b], [old])] == ["b", "a", "old"]


@pytest.mark.asyncio
async def test_handler_step_emits_packet_for_found_result():
    data = [_handler_complete("blog", {"url": "https://blog/1"}), DataPacket.create("fetch")]

    result = await PublishStep().execute(_payload({"handler_slug": "blog"}, data))

    assert len(result) == 3
    published = result[0]
    assert published.type == "publish"
    assert published.metadata["handler_used"] == "blog"
    assert published.metadata["publish_success"] is True
    assert published.metadata["tool_result"] == {"url": "https://blog/1"}
    assert published.content.body == {"url": "https://blog/1"}


@pytest.mark.asyncio
async def test_handler_step_with_several_handlers_keeps_found_ones():
    data = [_handler_complete("wiki", {"page": 2})]

    result = await UpdateStep().execute(_payload({"handler_slugs": ["blog", "wiki"]}, data))

    assert [p.metadata.get("handler_used") for p in result] == ["wiki", None]
    assert result[0].metadata["update_success"] is True


@pytest.mark.asyncio
async def test_handler_step_without_tool_result_returns_empty():
    result = await PublishStep().execute(
        _payload({"handler_slug": "blog"}, [DataPacket.create("ai_response")])
    )
    assert result == []


@pytest.mark.asyncio
async def test_handler_step_requires_handler():
    (failure,) = await PublishStep().execute(_payload({}))
    assert failure.is_failure
    assert failure.metadata["error"] == "publish step requires handler_slug or handler_slugs"


class ExplodingStep(Step):
    step_type = "boom"

    async def execute_step(self):
        raise ValueError("bad input")


@pytest.mark.asyncio
async def test_exceptions_become_failure_packets():
    (failure,) = await ExplodingStep().execute(_payload({}))
    assert failure.type == "boom_error"
    assert failure.metadata["error"] == "ValueError: bad input"
    assert failure.metadata["flow_step_id"] == "s1"


@pytest.mark.asyncio
async def test_ai_step_without_provider_fails():
    step = AIStep(loop=None, executor=None, provider=None, prompt_queue=None)
    (failure,) = await step.execute(_payload({"user_message": "hi"}))
    assert failure.metadata["error"] == "ai_provider_missing"


@pytest.mark.asyncio
async def test_ai_step_without_input_fails(scripted_provider):
    step = AIStep(loop=None, executor=None, provider=scripted_provider(), prompt_queue=None)
    step_config = {"pipeline_step_id": "p"}
    payload = _payload(
        step_config, extra={"pipeline_config": {"p": {"provider": "test", "model": "m"}}}
    )
    (failure,) = await step.execute(payload)
    assert failure.metadata["error"] == "ai_input_missing"


def test_ai_step_converts_conversation_to_packets():
    step = AIStep(loop=None, executor=None, provider=None, prompt_queue=None)
    step.flow_step_id = "ai_1"
    publish = ToolDefinition(name="publish_blog", class_ref="x", handler="blog")
    search = ToolDefinition(name="search", class_ref="y")
    state = ConversationState(
        messages=[
            ConversationMessage(role="user", content="go"),
            ConversationMessage(role="assistant", content="x" * 150, metadata={"turn": 1}),
            ConversationMessage(role="tool", metadata={"tool_call_id": "c1"}),
            ConversationMessage(role="assistant", content="Posting now\nmore", metadata={"turn": 2}),
            ConversationMessage(role="tool", metadata={"tool_call_id": "c2"}),
        ],
        tool_execution_results=[
            ToolExecutionRecord(
                tool_name="search",
                result=ToolResult(success=False, tool_name="search", error="quota"),
                turn_count=1,
                tool_call_id="c1",
            ),
            ToolExecutionRecord(
                tool_name="publish_blog",
                parameters={"title": "t"},
                result=ToolResult(success=True, tool_name="publish_blog", data={"id": 1}),
                is_handler_tool=True,
                turn_count=2,
                tool_call_id="c2",
            ),
        ],
    )

    packets = step.process_loop_results(
        ConversationResult(state=state), {"publish_blog": publish, "search": search}
    )

    assert [p.type for p in packets] == [
        "ai_response",
        "tool_result",
        "ai_response",
        "ai_handler_complete",
    ]
    assert packets[0].content.title == "AI Response - Turn 1"
    assert packets[1].metadata["tool_success"] is False
    assert packets[1].content.body == "quota"
    assert packets[2].content.title == "Posting now"
    handler = packets[3]
    assert handler.metadata["handler_tool"] == "blog"
    assert handler.metadata["tool_parameters"] == {"title": "t"}
    assert handler.metadata["tool_result"] == {"id": 1}

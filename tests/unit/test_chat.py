import pytest

from pipewright.ai.chat import ChatService
from pipewright.ai.conversation import ConversationLoop
from pipewright.ai.providers import ProviderResponse
from pipewright.ai.tools import ToolExecutor, ToolRegistry
from pipewright.config import EngineSettings
from pipewright.contracts import AgentType, ToolCall, ToolDefinition
from pipewright.errors import SessionNotFound


def _service(provider, recording_tool, max_turns=4):
    registry = ToolRegistry()
    impl = recording_tool(result={"flow_id": 1})
    registry.register_implementation("impl.create_flow", lambda: impl)
    registry.register_agent_tool(
        AgentType.CHAT, ToolDefinition(name="create_flow", class_ref="impl.create_flow")
    )
    executor = ToolExecutor(registry)
    settings = EngineSettings(max_turns=max_turns, default_provider="test", default_model="m")
    return ChatService(ConversationLoop(executor), executor, provider, settings), impl


def _create_call(call_id="c1"):
    return ProviderResponse(
        content="Creating", tool_calls=[ToolCall(id=call_id, name="create_flow")]
    )


@pytest.mark.asyncio
async def test_polling_advances_one_turn_at_a_time(scripted_provider, recording_tool):
    provider = scripted_provider([_create_call(), ProviderResponse(content="Flow created.")])
    chat, impl = _service(provider, recording_tool)

    first = await chat.send_message("Make me a flow")
    assert not first.completed
    assert first.turn_count == 1
    assert [c.name for c in first.last_tool_calls] == ["create_flow"]
    assert len(impl.calls) == 1
    assert impl.calls[0]["session_id"] == first.session_id
    assert impl.calls[0]["agent_type"] == "chat"

    second = await chat.continue_session(first.session_id)
    assert second.completed
    assert second.response == "Flow created."

    # polling a completed session returns the stored result
    third = await chat.continue_session(first.session_id)
    assert third == second
    assert len(provider.requests) == 2
    assert provider.requests[0]["tools"] == ["create_flow"]
    assert provider.requests[0]["provider"] == "test"


@pytest.mark.asyncio
async def test_follow_up_message_gets_fresh_turn_budget(scripted_provider, recording_tool):
    provider = scripted_provider(
        [_create_call("c1"), _create_call("c2"), ProviderResponse(content="again")]
    )
    chat, _ = _service(provider, recording_tool, max_turns=2)

    first = await chat.send_message("one", single_turn=False)
    assert first.max_turns_reached
    assert first.turn_count == 2

    second = await chat.send_message("two", session_id=first.session_id, single_turn=False)
    assert second.completed
    assert second.response == "again"
    assert second.turn_count == 3

    session = await chat.get_session(first.session_id)
    assert session.status == "completed"
    users = [m.content for m in session.state.messages if m.role == "user"]
    assert users == ["one", "two"]


@pytest.mark.asyncio
async def test_unknown_session(scripted_provider, recording_tool):
    chat, _ = _service(scripted_provider(), recording_tool)

    with pytest.raises(SessionNotFound):
        await chat.send_message("hi", session_id="missing")
    with pytest.raises(SessionNotFound):
        await chat.continue_session("missing")


@pytest.mark.asyncio
async def test_provider_error_finishes_session(scripted_provider, recording_tool):
    chat, _ = _service(scripted_provider([RuntimeError("boom")]), recording_tool)

    response = await chat.send_message("hi")

    assert response.error == "boom"
    assert not response.completed
    assert (await chat.get_session(response.session_id)).status == "completed"

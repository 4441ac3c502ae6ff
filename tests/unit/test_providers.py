from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)

from pipewright.ai.providers import to_model_messages, to_model_tools
from pipewright.contracts import ConversationMessage, ToolCall, ToolDefinition, ToolParameter


def test_history_is_grouped_into_requests_and_responses():
    messages = [
        ConversationMessage(role="system", content="be nice"),
        ConversationMessage(role="user", content="hello"),
        ConversationMessage(
            role="assistant",
            content="searching",
            tool_calls=[ToolCall(id="c1", name="search", parameters={"q": "x"})],
        ),
        ConversationMessage(
            role="tool",
            content={"success": True, "data": [1]},
            metadata={"tool_call_id": "c1", "tool_name": "search"},
        ),
        ConversationMessage(role="user", content={"structured": True}),
    ]

    converted = to_model_messages(messages)

    assert [type(m) for m in converted] == [ModelRequest, ModelResponse, ModelRequest]
    system, user = converted[0].parts
    assert isinstance(system, SystemPromptPart) and system.content == "be nice"
    assert isinstance(user, UserPromptPart) and user.content == "hello"
    text, call = converted[1].parts
    assert isinstance(text, TextPart) and text.content == "searching"
    assert isinstance(call, ToolCallPart)
    assert (call.tool_name, call.tool_call_id, call.args) == ("search", "c1", {"q": "x"})
    tool_return, follow_up = converted[2].parts
    assert isinstance(tool_return, ToolReturnPart)
    assert tool_return.tool_call_id == "c1"
    assert follow_up.content == '{"structured": true}'


def test_assistant_without_text_has_only_tool_parts():
    messages = [ConversationMessage(role="assistant", tool_calls=[ToolCall(name="a")])]
    (response,) = to_model_messages(messages)
    assert [type(p) for p in response.parts] == [ToolCallPart]


def test_tools_carry_json_schema():
    tool = ToolDefinition(
        name="publish",
        class_ref="x",
        description="Publish",
        parameters={"title": ToolParameter(required=True, description="Title")},
    )

    (converted,) = to_model_tools({"publish": tool})

    assert converted.name == "publish"
    assert converted.description == "Publish"
    assert converted.parameters_json_schema == {
        "type": "object",
        "properties": {"title": {"type": "string", "description": "Title"}},
        "required": ["title"],
    }

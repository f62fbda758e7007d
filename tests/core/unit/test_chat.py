"""
Unit tests for the Chat conversation engine.

Provider traffic goes through an httpx.MockTransport speaking the OpenAI
chat completions format.
"""
import asyncio
import json

import httpx
import pytest
from pydantic import BaseModel

from polychat.core.chat import Chat
from polychat.core.models import Attachment, Message, ModelInfo, Role
from polychat.core.observers import InMemoryMessageStore
from polychat.core.providers.anthropic_provider import AnthropicProvider
from polychat.core.providers.gemini_tools import GoogleSearchTool
from polychat.exceptions import (
    AIAuthenticationError, AIConfigError, AIRateLimitError, AIServerError, UnsupportedCapabilityError,
)
from polychat.tools.models import Halt, ToolCall, ToolParameter, ToolResult
from polychat.tools.tool import Tool, function_tool


def completion(content=None, tool_calls=None, prompt_tokens=10, completion_tokens=5):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [
            {"id": call_id, "type": "function", "function": {"name": name, "arguments": json.dumps(args)}}
            for call_id, name, args in tool_calls
        ]
    return {
        "model": "gpt-4.1-nano-2025-04-14",
        "choices": [{"message": message, "finish_reason": "tool_calls" if tool_calls else "stop"}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def replies(*bodies):
    """Handler answering successive requests with the given (status, body) pairs or bodies."""
    queue = iter(bodies)

    def handler(request):
        reply = next(queue)
        if isinstance(reply, tuple):
            return httpx.Response(reply[0], json=reply[1])
        return httpx.Response(200, json=reply)

    return handler


def sent_json(request: httpx.Request):
    return json.loads(request.content)


@function_tool
def weather(city: str):
    """Current weather for a city."""
    return f"15C and sunny in {city}"


class StopTool(Tool):
    description = "Ends the conversation"
    parameters = {"reason": ToolParameter(type="string")}

    def execute(self, reason):
        return self.halt(f"stopped: {reason}")


@pytest.fixture
def make_chat(config, mock_http, mock_logger):
    def factory(*bodies, model="gpt-4.1-nano", **kwargs):
        client = mock_http(replies(*bodies))
        chat = Chat(model, config=config, http_client=client, logger=mock_logger, **kwargs)
        return chat, client
    return factory


class TestConfiguration:

    def test_resolves_model_and_provider(self, make_chat):
        chat, _ = make_chat()
        assert chat.model.id == "gpt-4.1-nano"
        assert chat.provider.PROVIDER_NAME == "openai"

    def test_default_model_from_config(self, config, mock_http):
        config.configure(default_model="claude-sonnet-4")
        chat = Chat(config=config, http_client=mock_http(replies()))
        assert chat.model.id == "claude-sonnet-4-20250514"
        assert isinstance(chat.provider, AnthropicProvider)

    def test_with_model_keeps_history(self, make_chat):
        chat, _ = make_chat()
        chat.add_message(role=Role.USER, content="Hi")
        chat.with_model("claude-sonnet-4")
        assert isinstance(chat.provider, AnthropicProvider)
        assert len(chat.messages) == 1

    def test_assume_model_exists(self, make_chat):
        chat, _ = make_chat(model="my-finetune", provider="openai", assume_model_exists=True)
        assert chat.model.id == "my-finetune"
        assert chat.model.supports_vision

    def test_assume_model_exists_needs_provider(self, make_chat):
        with pytest.raises(AIConfigError):
            make_chat(model="my-finetune", assume_model_exists=True)

    def test_with_instructions(self, make_chat):
        chat, _ = make_chat()
        chat.with_instructions("Be brief").with_instructions("Use French")
        assert [m.content for m in chat.messages] == ["Be brief", "Use French"]
        chat.with_instructions("Be verbose", replace=True)
        assert [m.content for m in chat.messages] == ["Be verbose"]
        assert chat.messages[0].role == Role.SYSTEM

    def test_with_tool_accepts_functions_and_classes(self, make_chat):
        def lookup(query: str):
            return query

        chat, _ = make_chat()
        chat.with_tools(weather, StopTool, lookup)
        assert [t.name for t in chat.tools] == ["weather", "stop", "lookup"]
        chat.with_tools(weather, replace=True)
        assert [t.name for t in chat.tools] == ["weather"]

    def test_with_tool_requires_function_calling(self, make_chat):
        chat, _ = make_chat(model=ModelInfo(id="plain", provider="openai"))
        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            chat.with_tool(weather)
        assert exc_info.value.capability == "function calling"

    def test_builtin_tool_from_another_provider(self, make_chat):
        chat, _ = make_chat()
        with pytest.raises(UnsupportedCapabilityError):
            chat.with_tool(GoogleSearchTool())

    def test_with_schema_requires_structured_output(self, make_chat):
        chat, _ = make_chat(model="gpt-oss")
        with pytest.raises(UnsupportedCapabilityError):
            chat.with_schema({"type": "object"})

    def test_with_schema_from_pydantic_model(self, make_chat):
        class Person(BaseModel):
            name: str

        chat, _ = make_chat()
        chat.with_schema(Person)
        assert chat._schema["properties"]["name"]["type"] == "string"
        chat.with_schema(None)
        assert chat._schema is None

    def test_messages_is_a_copy(self, make_chat):
        chat, _ = make_chat()
        chat.messages.append(Message(role=Role.USER, content="sneaky"))
        assert chat.messages == []

    def test_initial_messages_and_reset(self, make_chat):
        history = [Message(role=Role.USER, content="a"), Message(role=Role.ASSISTANT, content="b")]
        chat, _ = make_chat(messages=history)
        assert chat.messages == history
        chat.reset_messages()
        assert chat.messages == []


@pytest.mark.asyncio
class TestAsk:

    async def test_ask_appends_user_and_assistant(self, make_chat):
        chat, client = make_chat(completion("Hello there", prompt_tokens=12, completion_tokens=3))

        reply = await chat.with_temperature(0.3).ask("Hi")

        assert reply.role == Role.ASSISTANT
        assert reply.content == "Hello there"
        assert reply.input_tokens == 12
        assert reply.output_tokens == 3
        assert reply.model_id == "gpt-4.1-nano-2025-04-14"
        assert [m.role for m in chat.messages] == [Role.USER, Role.ASSISTANT]
        assert chat.messages[-1] is reply

        payload = sent_json(client.requests[0])
        assert payload["messages"] == [{"role": "user", "content": "Hi"}]
        assert payload["temperature"] == 0.3
        assert "tools" not in payload

    async def test_missing_usage_counts_as_zero(self, make_chat):
        body = completion("ok")
        del body["usage"]
        chat, _ = make_chat(body)
        reply = await chat.ask("Hi")
        assert reply.input_tokens == 0
        assert reply.output_tokens == 0

    async def test_params_and_headers_reach_the_request(self, make_chat):
        chat, client = make_chat(completion("ok"))
        await chat.with_params(user="u-42").with_headers({"X-Trace": "t1"}, X_Other="o").ask("Hi")

        assert sent_json(client.requests[0])["user"] == "u-42"
        assert client.requests[0].headers["X-Trace"] == "t1"

    async def test_reasoning_model_temperature(self, make_chat):
        chat, client = make_chat(completion("ok"), model="o3-mini")
        await chat.with_temperature(0.2).ask("Hi")
        assert sent_json(client.requests[0])["temperature"] == 1.0

    async def test_failure_restores_history(self, make_chat, mock_logger):
        store = InMemoryMessageStore()
        chat, client = make_chat(
            (401, {"error": {"message": "Incorrect API key provided", "code": "invalid_api_key"}}),
            observer=store,
        )
        chat.with_instructions("Be brief")

        with pytest.raises(AIAuthenticationError):
            await chat.ask("Hi")

        assert len(chat.messages) == 1
        assert store.records == {}
        assert len(client.requests) == 1
        mock_logger.error.assert_called()

    async def test_cancellation_restores_history(self, make_chat, config, mock_http):
        async def hang(request):
            await asyncio.sleep(10)

        store = InMemoryMessageStore()
        chat = Chat("gpt-4.1-nano", config=config, http_client=mock_http(hang), observer=store)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(chat.ask("Hi"), timeout=0.05)

        assert chat.messages == []
        assert store.records == {}

    async def test_attachments(self, make_chat, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("remember the milk")
        chat, client = make_chat(completion("Got it"))

        await chat.ask("Read these", attachments=["https://example.com/cat.png", str(notes)])

        user = chat.messages[0]
        assert [a.filename for a in user.attachments] == ["cat.png", "notes.txt"]
        parts = sent_json(client.requests[0])["messages"][0]["content"]
        assert parts[1]["image_url"]["url"] == "https://example.com/cat.png"

    async def test_image_needs_vision(self, make_chat):
        chat, client = make_chat(model="o3-mini")
        with pytest.raises(UnsupportedCapabilityError):
            await chat.ask("What is this?", attachments=[Attachment.from_url("https://example.com/cat.png")])
        assert chat.messages == []
        assert client.requests == []

    async def test_structured_output(self, make_chat):
        chat, client = make_chat(completion('{"name": "Ada", "age": 36}'))
        chat.with_schema({"title": "person", "type": "object",
                          "properties": {"name": {"type": "string"}, "age": {"type": "integer"}}})

        reply = await chat.ask("Who wrote the first program?")

        assert reply.content == {"name": "Ada", "age": 36}
        assert reply.text() == '{"name": "Ada", "age": 36}'
        assert sent_json(client.requests[0])["response_format"]["type"] == "json_schema"

    async def test_structured_output_not_json(self, make_chat, mock_logger):
        chat, _ = make_chat(completion("Sorry, no."))
        chat.with_schema({"type": "object"})
        reply = await chat.ask("Who?")
        assert reply.content == "Sorry, no."
        mock_logger.warning.assert_called()


@pytest.mark.asyncio
class TestToolLoop:

    async def test_tool_round(self, make_chat):
        chat, client = make_chat(
            completion(tool_calls=[("call_1", "weather", {"city": "Berlin"})]),
            completion("It is 15C and sunny in Berlin."),
        )
        calls, results = [], []
        chat.with_tool(weather).on_tool_call(calls.append).on_tool_result(results.append)

        reply = await chat.ask("Weather in Berlin?")

        assert reply.content == "It is 15C and sunny in Berlin."
        assert [m.role for m in chat.messages] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        tool_message = chat.messages[2]
        assert tool_message.tool_call_id == "call_1"
        assert tool_message.content == "15C and sunny in Berlin"
        assert calls == [ToolCall(id="call_1", name="weather", arguments={"city": "Berlin"})]
        assert results == [ToolResult(success=True, result="15C and sunny in Berlin", tool_name="weather")]

        second = sent_json(client.requests[1])
        assert second["messages"][2] == {"role": "tool", "content": "15C and sunny in Berlin",
                                         "tool_call_id": "call_1"}
        assert second["tools"][0]["function"]["name"] == "weather"

    async def test_halt_stops_the_loop(self, make_chat):
        chat, client = make_chat(completion(tool_calls=[("call_1", "stop", {"reason": "done"})]))
        chat.with_tool(StopTool)

        result = await chat.ask("Stop please")

        assert isinstance(result, Halt)
        assert result.content == "stopped: done"
        assert len(client.requests) == 1
        assert [m.role for m in chat.messages] == [Role.USER, Role.ASSISTANT, Role.TOOL]
        assert chat.messages[-1].content == "stopped: done"

    async def test_unknown_tool_is_reported_to_the_model(self, make_chat):
        chat, client = make_chat(
            completion(tool_calls=[("call_1", "teleport", {})]),
            completion("I cannot do that."),
        )
        chat.with_tool(weather)

        await chat.ask("Beam me up")

        error = json.loads(chat.messages[2].content)
        assert "teleport" in error["error"]
        assert len(client.requests) == 2

    async def test_tool_failure_is_reported_to_the_model(self, make_chat):
        @function_tool
        def broken():
            raise RuntimeError("disk full")

        chat, _ = make_chat(
            completion(tool_calls=[("call_1", "broken", {})]),
            completion("That failed."),
        )
        chat.with_tool(broken)

        await chat.ask("Try it")

        assert json.loads(chat.messages[2].content) == {"error": "RuntimeError: disk full"}

    async def test_failure_in_later_round_restores_history(self, make_chat, config):
        config.configure(max_retries=0)
        store = InMemoryMessageStore()
        chat, client = make_chat(
            completion(tool_calls=[("call_1", "weather", {"city": "Oslo"})]),
            (429, {"error": {"message": "Rate limit reached"}}),
            observer=store,
        )
        chat.with_tool(weather).with_instructions("Be brief")

        with pytest.raises(AIRateLimitError):
            await chat.ask("Weather in Oslo?")

        assert [m.role for m in chat.messages] == [Role.SYSTEM]
        assert store.records == {}
        assert len(client.requests) == 2

    async def test_cancellation_during_a_tool_restores_history(self, make_chat):
        @function_tool
        async def slow_lookup(city: str):
            await asyncio.sleep(10)
            return city

        store = InMemoryMessageStore()
        chat, client = make_chat(
            completion(tool_calls=[("call_1", "slow_lookup", {"city": "Lima"})]),
            observer=store,
        )
        chat.with_tool(slow_lookup)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(chat.ask("Weather in Lima?"), timeout=0.2)

        assert chat.messages == []
        assert store.records == {}
        assert len(client.requests) == 1

    async def test_callback_error_during_tools_leaves_no_unanswered_calls(self, make_chat):
        chat, _ = make_chat(
            completion(tool_calls=[("call_1", "weather", {"city": "Rome"}),
                                   ("call_2", "weather", {"city": "Oslo"})]),
        )
        results = []

        def on_result(result):
            results.append(result)
            if len(results) == 2:
                raise RuntimeError("listener failed")

        chat.with_tool(weather).on_tool_result(on_result)

        with pytest.raises(RuntimeError):
            await chat.ask("Weather in Rome and Oslo?")

        assert chat.messages == []

    async def test_complete_rolls_back_its_own_messages(self, make_chat, config):
        config.configure(max_retries=0)
        chat, _ = make_chat(
            completion(tool_calls=[("call_1", "weather", {"city": "Oslo"})]),
            (500, {"error": {"message": "boom", "type": "server_error"}}),
        )
        chat.with_tool(weather)
        question = chat.add_message(role=Role.USER, content="Weather in Oslo?")

        with pytest.raises(AIServerError):
            await chat.complete()

        assert chat.messages == [question]

    async def test_callbacks_order(self, make_chat):
        chat, _ = make_chat(
            completion(tool_calls=[("call_1", "weather", {"city": "Rome"})]),
            completion("Sunny."),
        )
        events = []
        (chat.with_tool(weather)
            .on_new_message(lambda: events.append("new"))
            .on_end_message(lambda m: events.append(f"end:{m.role.value}"))
            .on_tool_call(lambda c: events.append("call"))
            .on_tool_result(lambda r: events.append("result")))

        await chat.ask("Weather in Rome?")

        assert events == ["new", "end:assistant", "new", "call", "result", "end:tool", "new", "end:assistant"]


@pytest.mark.asyncio
class TestStreaming:

    @staticmethod
    def sse(*chunks):
        events = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks)
        return (events + "data: [DONE]\n\n").encode()

    async def test_stream_ends_once(self, config, mock_http):
        body = self.sse(
            {"model": "gpt-4.1-nano", "choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo wor"}}]},
            {"choices": [{"delta": {"content": "ld"}, "finish_reason": "stop"}]},
            {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 3}},
        )
        client = mock_http(lambda request: httpx.Response(200, content=body))
        store = InMemoryMessageStore()
        chat = Chat("gpt-4.1-nano", config=config, http_client=client, observer=store)
        ended, received = [], []
        chat.on_end_message(ended.append)

        reply = await chat.ask("Hi", on_delta=received.append)

        assert [d.content for d in received if d.content] == ["Hel", "lo wor", "ld"]
        assert reply.content == "Hello world"
        assert reply.output_tokens == 3
        assert ended == [reply]
        assert store.completed() == [reply]
        assert sent_json(client.requests[0])["stream"] is True

    async def test_async_delta_callback(self, config, mock_http):
        body = self.sse({"choices": [{"delta": {"content": "hi"}}]})
        chat = Chat("gpt-4.1-nano", config=config,
                    http_client=mock_http(lambda request: httpx.Response(200, content=body)))
        received = []

        async def on_delta(delta):
            received.append(delta.content)

        await chat.ask("Hi", on_delta=on_delta)
        assert "hi" in received

    async def test_streaming_capability_required(self, make_chat):
        chat, _ = make_chat(model=ModelInfo(id="plain", provider="openai"))
        with pytest.raises(UnsupportedCapabilityError):
            await chat.ask("Hi", on_delta=lambda d: None)
        assert chat.messages == []


@pytest.mark.asyncio
class TestResources:

    async def test_owned_client_is_closed(self, config):
        async with Chat("gpt-4.1-nano", config=config) as chat:
            client = chat._http_client
        assert client.is_closed

    async def test_injected_client_stays_open(self, make_chat):
        chat, client = make_chat()
        await chat.aclose()
        assert not client.is_closed

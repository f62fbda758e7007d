"""
Unit tests for the HTTP exchange, retries and error handling in BaseProvider.

Requests go through an httpx.MockTransport; OpenAI and Anthropic adapters
supply the wire format.
"""
import json

import httpx
import pytest

from polychat.core.models import ChatRequest, Message, ModelInfo, Role, StreamDelta
from polychat.core.providers.anthropic_provider import AnthropicProvider
from polychat.core.providers.gemini_provider import GeminiProvider
from polychat.core.providers.openai_provider import OpenAIProvider
from polychat.exceptions import (
    AIAuthenticationError, AINetworkError, AIOverloadedError, AIRateLimitError, AIServerError,
    AITimeoutError, AIUnknownError,
)

OPENAI_OK = {
    "model": "gpt-4.1-nano",
    "choices": [{"message": {"role": "assistant", "content": "Hello"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 3, "completion_tokens": 1},
}


def openai_sse(*chunks) -> bytes:
    events = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks)
    return (events + "data: [DONE]\n\n").encode()


def content_chunk(text):
    return {"choices": [{"delta": {"content": text}}]}


@pytest.fixture
def request_():
    return ChatRequest(model="gpt-4.1-nano", messages=[Message(role=Role.USER, content="Hi")])


@pytest.fixture
def make_provider(config, mock_logger):
    def factory(client, provider_class=OpenAIProvider, model_id="gpt-4.1-nano", provider="openai"):
        model = ModelInfo(id=model_id, provider=provider)
        return provider_class(model=model, config=config, http_client=client, logger=mock_logger)
    return factory


@pytest.mark.asyncio
class TestComplete:

    async def test_non_streaming_success(self, mock_http, make_provider, request_):
        client = mock_http(lambda request: httpx.Response(200, json=OPENAI_OK))
        provider = make_provider(client)

        response = await provider.complete(request_)

        assert response.content == "Hello"
        assert response.usage.input_tokens == 3
        sent = client.requests[0]
        assert sent.url == "https://api.openai.com/v1/chat/completions"
        assert sent.headers["Authorization"] == "Bearer test-openai-key"
        assert json.loads(sent.content)["messages"] == [{"role": "user", "content": "Hi"}]

    async def test_request_headers_are_added(self, mock_http, make_provider):
        client = mock_http(lambda request: httpx.Response(200, json=OPENAI_OK))
        provider = make_provider(client)

        await provider.complete(ChatRequest(model="gpt-4.1-nano", headers={"X-Trace": "abc"}))
        assert client.requests[0].headers["X-Trace"] == "abc"

    async def test_retries_transient_failures(self, mock_http, make_provider, request_):
        replies = iter([
            httpx.Response(429, json={"error": {"message": "Rate limit reached"}}),
            httpx.Response(503, json={"error": {"message": "busy"}}),
            httpx.Response(200, json=OPENAI_OK),
        ])
        client = mock_http(lambda request: next(replies))
        provider = make_provider(client)

        response = await provider.complete(request_)

        assert response.content == "Hello"
        assert len(client.requests) == 3

    async def test_gives_up_after_budget(self, mock_http, make_provider, request_):
        client = mock_http(lambda request: httpx.Response(500, json={"error": {"message": "boom"}}))
        provider = make_provider(client)

        with pytest.raises(AIServerError) as exc_info:
            await provider.complete(request_)
        # max_retries is 2 in the test config
        assert len(client.requests) == 3
        assert exc_info.value.status_code == 500

    async def test_authentication_error_is_not_retried(self, mock_http, make_provider, request_):
        client = mock_http(lambda request: httpx.Response(
            401, json={"error": {"message": "Incorrect API key provided", "code": "invalid_api_key"}}))
        provider = make_provider(client)

        with pytest.raises(AIAuthenticationError):
            await provider.complete(request_)
        assert len(client.requests) == 1

    async def test_timeouts_are_classified_and_retried(self, mock_http, make_provider, request_):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        client = mock_http(handler)
        provider = make_provider(client)

        with pytest.raises(AITimeoutError):
            await provider.complete(request_)
        assert len(client.requests) == 3

    async def test_connection_errors(self, mock_http, make_provider, request_, config):
        config.configure(max_retries=0)

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = make_provider(mock_http(handler))
        with pytest.raises(AINetworkError):
            await provider.complete(request_)

    async def test_invalid_json_body(self, mock_http, make_provider, request_):
        client = mock_http(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(AIUnknownError):
            await make_provider(client).complete(request_)

    async def test_error_in_successful_body(self, mock_http, make_provider, request_):
        client = mock_http(lambda request: httpx.Response(
            200, json={"error": {"message": "Overloaded", "type": "overloaded_error"}}))
        provider = make_provider(client, AnthropicProvider, "claude-sonnet-4-20250514", "anthropic")

        with pytest.raises(AIOverloadedError):
            await provider.complete(request_)
        assert len(client.requests) == 3


@pytest.mark.asyncio
class TestStreaming:

    async def test_deltas_reach_callback(self, mock_http, make_provider, request_):
        body = openai_sse(
            {"model": "gpt-4.1-nano", "choices": [{"delta": {"content": "Hel"}}]},
            content_chunk("lo wor"),
            content_chunk("ld"),
            {"choices": [{"delta": {}, "finish_reason": "stop"}],
             "usage": {"prompt_tokens": 2, "completion_tokens": 3}},
        )
        client = mock_http(lambda request: httpx.Response(
            200, content=body, headers={"content-type": "text/event-stream"}))
        provider = make_provider(client)
        received = []

        response = await provider.complete(request_.model_copy(update={"stream": True}), on_delta=received.append)

        assert "".join(d.content for d in received if d.content) == "Hello world"
        assert received[-1].is_final
        assert response.content == "Hello world"
        assert response.usage.output_tokens == 3
        assert json.loads(client.requests[0].content)["stream"] is True

    async def test_async_callback(self, mock_http, make_provider, request_):
        client = mock_http(lambda request: httpx.Response(200, content=openai_sse(content_chunk("hi"))))
        received = []

        async def on_delta(delta: StreamDelta):
            received.append(delta)

        await make_provider(client).complete(request_.model_copy(update={"stream": True}), on_delta=on_delta)
        assert received[0].content == "hi"

    async def test_failure_before_delivery_is_retried(self, mock_http, make_provider, request_):
        replies = iter([
            httpx.Response(529, content=b'{"error": {"message": "Overloaded", "type": "overloaded_error"}}\n\n'),
            httpx.Response(200, content=openai_sse(content_chunk("ok"))),
        ])
        client = mock_http(lambda request: next(replies))
        received = []

        response = await make_provider(client).complete(
            request_.model_copy(update={"stream": True}), on_delta=received.append)

        assert response.content == "ok"
        assert len(client.requests) == 2

    async def test_failure_after_delivery_is_not_retried(self, mock_http, make_provider, request_):
        body = (b'data: {"choices": [{"delta": {"content": "partial"}}]}\n\n'
                b'event: error\ndata: {"error": {"message": "The server had an error", "type": "server_error"}}\n\n')
        client = mock_http(lambda request: httpx.Response(200, content=body))
        received = []

        with pytest.raises(AIServerError):
            await make_provider(client).complete(request_.model_copy(update={"stream": True}),
                                                 on_delta=received.append)
        assert [d.content for d in received] == ["partial"]
        assert len(client.requests) == 1

    async def test_anthropic_in_band_overloaded(self, mock_http, make_provider, request_, config):
        config.configure(max_retries=0)
        body = (b'event: error\n'
                b'data: {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}\n\n')
        client = mock_http(lambda request: httpx.Response(200, content=body))
        provider = make_provider(client, AnthropicProvider, "claude-sonnet-4-20250514", "anthropic")

        with pytest.raises(AIOverloadedError):
            await provider.complete(request_.model_copy(update={"stream": True}), on_delta=lambda d: None)

    async def test_metadata_before_failure_does_not_block_retry(self, mock_http, make_provider, request_):
        start = (b'event: message_start\n'
                 b'data: {"type": "message_start", "message": {"model": "claude-sonnet-4-20250514", '
                 b'"usage": {"input_tokens": 5}}}\n\n')
        overloaded = (b'event: error\n'
                      b'data: {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}\n\n')
        answer = (b'event: content_block_delta\n'
                  b'data: {"type": "content_block_delta", "index": 0, '
                  b'"delta": {"type": "text_delta", "text": "ok"}}\n\n'
                  b'event: message_stop\ndata: {"type": "message_stop"}\n\n')
        replies = iter([
            httpx.Response(200, content=start + overloaded),
            httpx.Response(200, content=start + answer),
        ])
        client = mock_http(lambda request: next(replies))
        provider = make_provider(client, AnthropicProvider, "claude-sonnet-4-20250514", "anthropic")
        received = []

        response = await provider.complete(request_.model_copy(update={"stream": True}), on_delta=received.append)

        assert response.content == "ok"
        assert len(client.requests) == 2
        assert [d.content for d in received if d.content] == ["ok"]

    async def test_gemini_chunk_error(self, mock_http, make_provider, request_, config):
        config.configure(max_retries=0)
        body = b'{"error": {"code": 529, "message": "Service overloaded", "status": "RESOURCE_EXHAUSTED"}}\n\n'
        client = mock_http(lambda request: httpx.Response(529, content=body))
        provider = make_provider(client, GeminiProvider, "gemini-2.5-flash", "gemini")

        with pytest.raises(AIOverloadedError) as exc_info:
            await provider.complete(request_.model_copy(update={"stream": True}), on_delta=lambda d: None)
        assert exc_info.value.status_code == 529
        assert client.requests[0].url.params["alt"] == "sse"

    async def test_rate_limit_while_streaming(self, mock_http, make_provider, request_, config):
        config.configure(max_retries=0)
        client = mock_http(lambda request: httpx.Response(429, json={"error": {"message": "slow down"}}))
        with pytest.raises(AIRateLimitError):
            await make_provider(client).complete(request_.model_copy(update={"stream": True}),
                                                 on_delta=lambda d: None)


@pytest.mark.asyncio
class TestClientOwnership:

    async def test_injected_client_is_not_closed(self, mock_http, make_provider):
        client = mock_http(lambda request: httpx.Response(200, json=OPENAI_OK))
        provider = make_provider(client)
        await provider.aclose()
        assert not client.is_closed

    async def test_owned_client_is_closed(self, make_provider):
        provider = make_provider(None)
        client = provider._client()
        await provider.aclose()
        assert client.is_closed

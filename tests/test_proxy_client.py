import asyncio
import json

import httpx
import pytest

from enrichproxy.llm.errors import (
    RateLimitExhaustedError,
    UpstreamDecodeError,
    UpstreamStatusError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from enrichproxy.llm.proxy_client import ProxyClient, UpstreamResponse
from enrichproxy.models.chat import ChatRequest

BASE_URL = "https://upstream.test/api/v1"


def _request(stream: bool = False) -> ChatRequest:
    return ChatRequest.model_validate({
        "model": "openai/gpt-4o",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": stream,
        "temperature": 0.3,
    })


def _client(handler, **kwargs) -> ProxyClient:
    kwargs.setdefault("initial_backoff", 0.01)
    return ProxyClient(
        api_key="sk-test",
        base_url=BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def reply(status_code: int, **kwargs):
    return lambda: httpx.Response(status_code, **kwargs)


class Recorder:
    """MockTransport handler replaying scripted replies; the last one repeats."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.replies) > 1:
            return self.replies.pop(0)()
        return self.replies[0]()


class FailingStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"data: {\"id\": 1}\n\n"
        raise httpx.ReadError("connection reset")


class StallingStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"data: {\"id\": 1}\n\n"
        raise httpx.ReadTimeout("read timed out")


def test_retries_once_after_rate_limit():
    recorder = Recorder(
        reply(429, json={"error": "slow down"}),
        reply(200, json={"id": "chatcmpl-1"}),
    )

    async def scenario():
        client = _client(recorder)
        try:
            return await client.send(_request())
        finally:
            await client.aclose()

    body = asyncio.run(scenario())

    assert len(recorder.requests) == 2
    assert json.loads(body) == {"id": "chatcmpl-1"}


def test_rate_limit_exhausted_after_max_retries():
    recorder = Recorder(reply(429, text="too many"))

    async def scenario():
        client = _client(recorder, max_retries=3)
        await client.send(_request())

    with pytest.raises(RateLimitExhaustedError) as exc_info:
        asyncio.run(scenario())

    assert len(recorder.requests) == 3
    assert exc_info.value.attempts == 3
    assert "rate limited after 3 retries" in str(exc_info.value)


def test_backoff_doubles_between_attempts(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("enrichproxy.llm.proxy_client.asyncio.sleep", fake_sleep)
    recorder = Recorder(reply(429))

    async def scenario():
        client = _client(recorder, max_retries=4, initial_backoff=0.5)
        await client.send(_request())

    with pytest.raises(RateLimitExhaustedError):
        asyncio.run(scenario())

    assert delays == [0.5, 1.0, 2.0]


def test_cancel_during_backoff_returns_promptly():
    first_attempt = None
    recorder_calls = []

    def handler(request):
        recorder_calls.append(request)
        first_attempt.set()
        return httpx.Response(429)

    async def scenario():
        nonlocal first_attempt
        first_attempt = asyncio.Event()
        client = _client(handler, initial_backoff=30.0)
        task = asyncio.create_task(client.send(_request()))
        await first_attempt.wait()
        await asyncio.sleep(0.05)

        loop = asyncio.get_running_loop()
        start = loop.time()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return loop.time() - start

    elapsed = asyncio.run(scenario())

    assert elapsed < 1.0
    assert len(recorder_calls) == 1


def test_other_status_is_not_retried():
    recorder = Recorder(reply(500, text="internal"))

    async def scenario():
        await _client(recorder).send(_request())

    with pytest.raises(UpstreamStatusError) as exc_info:
        asyncio.run(scenario())

    assert len(recorder.requests) == 1
    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "internal"


def test_transport_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    async def scenario():
        await _client(handler).send(_request())

    with pytest.raises(UpstreamTransportError):
        asyncio.run(scenario())

    assert len(calls) == 1


def test_request_deadline_surfaces_as_timeout():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    async def scenario():
        await _client(handler, request_timeout=0.05).send(_request())

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(scenario())


def test_streaming_uses_stream_timeout():
    async def handler(request):
        await asyncio.sleep(0.2)
        return httpx.Response(200, content=b"data: [DONE]\n\n")

    async def scenario(stream):
        client = _client(handler, request_timeout=0.05, stream_timeout=5)
        result = await client.send(_request(stream=stream))
        async with result:
            return [line async for line in result.aiter_lines() if line]

    assert asyncio.run(scenario(stream=True)) == ["data: [DONE]"]

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(scenario(stream=False))


def test_httpx_read_timeout_mid_stream_is_timeout():
    recorder = Recorder(reply(200, stream=StallingStream()))

    async def scenario():
        upstream = await _client(recorder).send(_request(stream=True))
        async with upstream:
            async for _ in upstream.aiter_lines():
                pass

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(scenario())


def test_httpx_read_timeout_reading_body_is_timeout():
    recorder = Recorder(reply(200, stream=StallingStream()))

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(_client(recorder).send(_request()))


def test_headers_and_payload_passthrough():
    recorder = Recorder(reply(200, json={}))

    async def scenario():
        client = _client(recorder, referer="https://example.test", title="tester")
        await client.send(_request())

    asyncio.run(scenario())

    sent = recorder.requests[0]
    assert str(sent.url) == f"{BASE_URL}/chat/completions"
    assert sent.headers["Authorization"] == "Bearer sk-test"
    assert sent.headers["Content-Type"] == "application/json"
    assert sent.headers["HTTP-Referer"] == "https://example.test"
    assert sent.headers["X-Title"] == "tester"
    assert json.loads(sent.content) == {
        "model": "openai/gpt-4o",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": False,
        "temperature": 0.3,
    }


def test_streaming_returns_open_response_read_line_by_line():
    recorder = Recorder(reply(
        200,
        headers={"Content-Type": "text/event-stream"},
        content=b"data: {\"a\": 1}\n\ndata: [DONE]\n\n",
    ))

    async def scenario():
        upstream = await _client(recorder).send(_request(stream=True))
        assert isinstance(upstream, UpstreamResponse)
        async with upstream:
            lines = [line async for line in upstream.aiter_lines()]
        return lines, upstream.is_closed

    lines, closed = asyncio.run(scenario())

    assert [line for line in lines if line] == ['data: {"a": 1}', "data: [DONE]"]
    assert closed


def test_mid_stream_read_error_is_typed():
    recorder = Recorder(reply(200, stream=FailingStream()))

    async def scenario():
        upstream = await _client(recorder).send(_request(stream=True))
        lines = []
        try:
            async for line in upstream.aiter_lines():
                lines.append(line)
        finally:
            await upstream.aclose()
        return lines

    with pytest.raises(UpstreamTransportError):
        asyncio.run(scenario())


class CountingResponse:
    def __init__(self):
        self.close_calls = 0

    async def aclose(self):
        self.close_calls += 1


def test_upstream_response_closes_exactly_once():
    inner = CountingResponse()

    async def scenario():
        upstream = UpstreamResponse(inner, asyncio.get_running_loop().time() + 10)
        async with upstream:
            pass
        await upstream.aclose()
        await upstream.aclose()
        return upstream.is_closed

    assert asyncio.run(scenario()) is True
    assert inner.close_calls == 1


def test_list_models():
    recorder = Recorder(reply(200, json={
        "data": [
            {"id": "openai/gpt-4o", "object": "model", "context_length": 128000},
            {"id": "anthropic/claude-3-haiku"},
        ]
    }))

    async def scenario():
        return await _client(recorder).list_models()

    models = asyncio.run(scenario())

    assert [m.id for m in models] == ["openai/gpt-4o", "anthropic/claude-3-haiku"]
    assert models[0].model_extra["context_length"] == 128000
    assert recorder.requests[0].url.path.endswith("/models")
    assert recorder.requests[0].headers["Authorization"] == "Bearer sk-test"


def test_list_models_null_data_is_empty():
    recorder = Recorder(reply(200, json={"data": None}))

    assert asyncio.run(_client(recorder).list_models()) == []


def test_list_models_errors_are_not_retried():
    recorder = Recorder(reply(429, text="slow"))

    with pytest.raises(UpstreamStatusError) as exc_info:
        asyncio.run(_client(recorder).list_models())

    assert exc_info.value.status_code == 429
    assert len(recorder.requests) == 1


def test_list_models_bad_json_is_decode_error():
    recorder = Recorder(reply(200, text="<html>oops</html>"))

    with pytest.raises(UpstreamDecodeError):
        asyncio.run(_client(recorder).list_models())


def test_list_models_deadline_surfaces_as_timeout():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json={"data": []})

    async def scenario():
        loop = asyncio.get_running_loop()
        start = loop.time()
        with pytest.raises(UpstreamTimeoutError):
            await _client(handler, request_timeout=0.05).list_models()
        return loop.time() - start

    assert asyncio.run(scenario()) < 2.0

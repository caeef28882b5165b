import asyncio
import json

import httpx
import pytest

from enrichproxy.llm.ollama_client import OllamaClient


def _client(handler) -> OllamaClient:
    return OllamaClient(
        "http://ollama.test:11434/",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_chat_sends_schema_as_format():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": '{"score": 0.5}'}})

    schema = {"type": "object"}
    content = asyncio.run(_client(handler).chat("phi3.5", [{"role": "user", "content": "hi"}], schema))

    assert content == '{"score": 0.5}'
    assert str(seen[0].url) == "http://ollama.test:11434/api/chat"
    assert json.loads(seen[0].content) == {
        "model": "phi3.5",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": False,
        "format": schema,
    }


def test_embed_returns_first_vector():
    def handler(request):
        assert json.loads(request.content) == {"model": "nomic-embed-text", "input": "hello"}
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]})

    vector = asyncio.run(_client(handler).embed("nomic-embed-text", "hello"))

    assert vector == [0.1, 0.2, 0.3]


def test_embed_without_vectors_raises():
    with pytest.raises(ValueError):
        asyncio.run(_client(lambda r: httpx.Response(200, json={"embeddings": []})).embed("m", "x"))


def test_list_models():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "phi3.5:latest"}, {"name": "nomic-embed-text"}]})

    assert asyncio.run(_client(handler).list_models()) == ["phi3.5:latest", "nomic-embed-text"]


def test_error_status_raises():
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(_client(lambda r: httpx.Response(500, text="model not found")).chat("m", []))

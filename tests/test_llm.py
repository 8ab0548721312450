from __future__ import annotations

import json

import httpx
import pytest

from ragchat.config import RagConfig
from ragchat.errors import ChatModelFailure
from ragchat.llm import MockChatModel, OllamaChatModel, build_chat_model


def _client(handler) -> httpx.Client:
    return httpx.Client(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


def test_mock_chat_model_echoes_last_user_message() -> None:
    model = MockChatModel()
    messages = [
        {"role": "system", "content": "rules"},
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "second question"},
    ]

    completion = model.complete(messages)

    assert completion.text == "MOCK_ANSWER: second question"
    assert completion.model == "mock"
    assert model.complete(messages, model="override").model == "override"


def test_ollama_chat_model_sends_non_streaming_request() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"model": "llama3.1", "message": {"role": "assistant", "content": "Hi!"}})

    model = OllamaChatModel("llama3.1", endpoint="http://ollama.test", client=_client(handler))

    completion = model.complete([{"role": "user", "content": "Hello"}])

    assert completion.text == "Hi!"
    assert completion.model == "llama3.1"
    assert seen["path"] == "/api/chat"
    assert seen["body"] == {
        "model": "llama3.1",
        "messages": [{"role": "user", "content": "Hello"}],
        "stream": False,
    }


def test_ollama_chat_model_honours_model_override() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["model"] = json.loads(request.content)["model"]
        return httpx.Response(200, json={"message": {"content": "ok"}})

    model = OllamaChatModel("llama3.1", endpoint="http://ollama.test", client=_client(handler))

    assert model.complete([{"role": "user", "content": "x"}], model="mistral").model == "mistral"
    assert seen["model"] == "mistral"


def test_ollama_chat_model_wraps_http_errors() -> None:
    model = OllamaChatModel(
        "llama3.1",
        endpoint="http://ollama.test",
        client=_client(lambda request: httpx.Response(503, text="overloaded")),
    )

    with pytest.raises(ChatModelFailure):
        model.complete([{"role": "user", "content": "x"}])


def test_ollama_chat_model_wraps_timeouts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("too slow", request=request)

    model = OllamaChatModel("llama3.1", endpoint="http://ollama.test", client=_client(handler))

    with pytest.raises(ChatModelFailure, match="timed out"):
        model.complete([{"role": "user", "content": "x"}])


def test_ollama_chat_model_rejects_malformed_payload() -> None:
    model = OllamaChatModel(
        "llama3.1",
        endpoint="http://ollama.test",
        client=_client(lambda request: httpx.Response(200, json={"done": True})),
    )

    with pytest.raises(ChatModelFailure):
        model.complete([{"role": "user", "content": "x"}])


def test_build_chat_model_selects_backend() -> None:
    assert isinstance(build_chat_model(RagConfig()), MockChatModel)
    assert isinstance(build_chat_model(RagConfig(chat_backend="ollama")), OllamaChatModel)
    with pytest.raises(ValueError):
        build_chat_model(RagConfig(chat_backend="unknown"))

"""Tests for the LLM provider clients and the chat service."""
import json

import httpx
import pytest

from backend import redis_backend
from chat_service import ChatService, build_prompt
from errors import ProviderError
from model_configs import ModelConfigStore
from providers import (
    AnthropicProvider,
    CustomProvider,
    GenerationRequest,
    OllamaProvider,
    OpenAICompatibleProvider,
    ZaiProvider,
    get_provider,
    list_ollama_models,
)
from schemas.models import ModelConfig


def make_request():
    return GenerationRequest(
        system_prompt="You are Ada.",
        prompt="User: hi",
        character_name="Ada",
        user_message="hi",
    )


def recording_transport(status=200, body=None, captured=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        return httpx.Response(status, json=body if body is not None else {})

    return httpx.MockTransport(handler)


async def test_ollama_generate_request_shape():
    captured = []
    provider = OllamaProvider(transport=recording_transport(body={"response": "Hello!"}, captured=captured))
    config = ModelConfig(provider="ollama", model="llama3:latest", baseUrl="http://ollama:11434/", temperature=0.5, maxTokens=128)

    text = await provider.generate(make_request(), config)

    assert text == "Hello!"
    [request] = captured
    assert str(request.url) == "http://ollama:11434/api/generate"
    body = json.loads(request.content)
    assert body["model"] == "llama3:latest"
    assert body["stream"] is False
    assert body["system"] == "You are Ada."
    assert body["options"]["temperature"] == 0.5
    assert body["options"]["num_predict"] == 128


async def test_openai_compatible_request_shape():
    captured = []
    provider = OpenAICompatibleProvider(transport=recording_transport(
        body={"choices": [{"message": {"content": "Hi from GPT"}}]}, captured=captured,
    ))
    config = ModelConfig(provider="openai", model="gpt-4o-mini", apiKey="sk-test", baseUrl="https://llm.local/v1")

    assert await provider.generate(make_request(), config) == "Hi from GPT"
    [request] = captured
    assert str(request.url) == "https://llm.local/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    messages = json.loads(request.content)["messages"]
    assert messages[0] == {"role": "system", "content": "You are Ada."}
    assert messages[1]["role"] == "user"


async def test_zai_uses_its_own_base_url():
    captured = []
    provider = ZaiProvider(transport=recording_transport(
        body={"choices": [{"message": {"content": "ok"}}]}, captured=captured,
    ))

    await provider.generate(make_request(), ModelConfig(provider="zai", apiKey="zai-key"))

    assert str(captured[0].url) == "https://api.z.ai/v1/chat/completions"


async def test_custom_provider_requires_base_url_and_accepts_content_field():
    provider = CustomProvider(transport=recording_transport(body={"content": "plain"}))

    with pytest.raises(ProviderError):
        await provider.generate(make_request(), ModelConfig(provider="custom"))
    assert await provider.generate(make_request(), ModelConfig(provider="custom", baseUrl="http://gw/chat")) == "plain"


async def test_anthropic_request_shape():
    captured = []
    provider = AnthropicProvider(transport=recording_transport(body={"content": [{"text": "Bonjour"}]}, captured=captured))

    text = await provider.generate(make_request(), ModelConfig(provider="anthropic", apiKey="ak"))

    assert text == "Bonjour"
    assert captured[0].headers["x-api-key"] == "ak"
    assert captured[0].headers["anthropic-version"] == "2023-06-01"


async def test_missing_api_key_is_an_auth_error(monkeypatch):
    monkeypatch.setattr(OpenAICompatibleProvider, "default_api_key", None)
    provider = OpenAICompatibleProvider(transport=recording_transport())

    with pytest.raises(ProviderError) as exc_info:
        await provider.generate(make_request(), ModelConfig(provider="openai"))
    assert exc_info.value.kind == "auth"


@pytest.mark.parametrize("status,kind", [(429, "rate_limit"), (401, "auth"), (403, "auth"), (500, "http")])
async def test_http_errors_are_typed(status, kind):
    provider = OllamaProvider(transport=recording_transport(status=status))

    with pytest.raises(ProviderError) as exc_info:
        await provider.generate(make_request(), ModelConfig(provider="ollama"))
    assert exc_info.value.kind == kind


async def test_timeout_is_typed():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    provider = OllamaProvider(transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderError) as exc_info:
        await provider.generate(make_request(), ModelConfig(provider="ollama"))
    assert exc_info.value.kind == "timeout"


def test_unknown_provider():
    with pytest.raises(ProviderError):
        get_provider("carrier-pigeon")


async def test_list_ollama_models_filters_embedding_and_code_models():
    transport = recording_transport(body={"models": [
        {"name": "llama3:latest"}, {"name": "nomic-embed-text"}, {"name": "codellama:7b"}, {"name": "qwen:7b-chat"},
    ]})

    assert await list_ollama_models("http://ollama:11434", transport=transport) == ["llama3:latest", "qwen:7b-chat"]


def test_build_prompt_labels_speakers():
    character = {"id": "c1", "name": "Ada"}
    history = [
        {"senderType": "user", "content": "What is 2+2?"},
        {"senderType": "character", "content": "Four.", "character": {"id": "c1", "name": "Ada"}},
    ]

    prompt = build_prompt(character, "And 3+3?", history)

    assert "User: What is 2+2?" in prompt
    assert "Ada: Four." in prompt
    assert prompt.index("Ada: Four.") < prompt.index("User: And 3+3?")


async def test_chat_service_uses_character_model_config():
    captured = []
    service = ChatService(
        ModelConfigStore(redis_backend),
        transport=recording_transport(body={"response": "  Hello from Ada  "}, captured=captured),
    )
    character = {
        "id": "c1",
        "name": "Ada",
        "systemPrompt": "You are Ada.",
        "modelConfig": {"provider": "ollama", "model": "mistral:instruct"},
    }

    reply = await service.generate_response(character, "hi", [{"senderType": "user", "content": "earlier"}])

    assert reply == "Hello from Ada"
    body = json.loads(captured[0].content)
    assert body["model"] == "mistral:instruct"
    assert "User: earlier" in body["prompt"]


async def test_chat_service_rejects_empty_reply():
    service = ChatService(ModelConfigStore(redis_backend), transport=recording_transport(body={"response": "   "}))
    character = {"id": "c1", "name": "Ada", "systemPrompt": "x", "modelConfig": {"provider": "ollama"}}

    with pytest.raises(ProviderError) as exc_info:
        await service.generate_response(character, "hi", [])
    assert exc_info.value.kind == "empty"

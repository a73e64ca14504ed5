from dataclasses import dataclass
from typing import Optional

import httpx

from constants import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_BASE_URL,
    LLM_TIMEOUT_SECONDS,
    OLLAMA_BASE_URL,
    OLLAMA_MODEL,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    ZAI_API_KEY,
    ZAI_BASE_URL,
)
from errors import ProviderError
from schemas.models import ModelConfig
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class GenerationRequest:
    system_prompt: str
    prompt: str
    character_name: str
    user_message: str


def _raise_for_status(provider: str, response: httpx.Response):
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise ProviderError("rate_limit", f"{provider} rate limit exceeded")
    if status in (401, 403):
        raise ProviderError("auth", f"{provider} rejected the credentials ({status})")
    raise ProviderError("http", f"{provider} API error: {status}")


class LLMProvider:
    name = "base"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = LLM_TIMEOUT_SECONDS):
        self.transport = transport
        self.timeout = timeout

    async def generate(self, request: GenerationRequest, config: ModelConfig) -> str:
        raise NotImplementedError

    async def _post(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        logger.debug(f"Calling {self.name} at {url} (model={payload.get('model')})")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderError("timeout", f"{self.name} request timed out") from e
        except httpx.HTTPError as e:
            raise ProviderError("http", f"{self.name} request failed: {e}") from e
        _raise_for_status(self.name, response)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("http", f"{self.name} returned invalid JSON") from e


class OllamaProvider(LLMProvider):
    name = "ollama"

    async def generate(self, request: GenerationRequest, config: ModelConfig) -> str:
        base_url = (config.baseUrl or OLLAMA_BASE_URL).rstrip("/")
        data = await self._post(f"{base_url}/api/generate", {
            "model": config.model or OLLAMA_MODEL,
            "system": request.system_prompt,
            "prompt": request.prompt,
            "stream": False,
            "options": {
                "temperature": config.temperature,
                "num_predict": config.maxTokens,
                "top_p": 0.9,
                "repeat_penalty": 1.1,
            },
        })
        return data.get("response") or ""


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions style APIs (OpenAI, Z.ai, self-hosted gateways)."""

    name = "openai"
    default_base_url = OPENAI_BASE_URL
    default_api_key = OPENAI_API_KEY
    default_model = "gpt-3.5-turbo"
    requires_api_key = True

    def _url(self, config: ModelConfig) -> str:
        return f"{(config.baseUrl or self.default_base_url).rstrip('/')}/chat/completions"

    async def generate(self, request: GenerationRequest, config: ModelConfig) -> str:
        api_key = config.apiKey or self.default_api_key
        if self.requires_api_key and not api_key:
            raise ProviderError("auth", f"{self.name} API key is required")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        data = await self._post(self._url(config), {
            "model": config.model or self.default_model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.prompt},
            ],
            "temperature": config.temperature,
            "max_tokens": config.maxTokens,
        }, headers=headers)
        return self._extract(data)

    def _extract(self, data: dict) -> str:
        choices = data.get("choices") or []
        if choices:
            return (choices[0].get("message") or {}).get("content") or ""
        return ""


class ZaiProvider(OpenAICompatibleProvider):
    name = "zai"
    default_base_url = ZAI_BASE_URL
    default_api_key = ZAI_API_KEY
    default_model = "glm-4"


class CustomProvider(OpenAICompatibleProvider):
    name = "custom"
    default_api_key = None
    default_model = "custom"
    requires_api_key = False

    def _url(self, config: ModelConfig) -> str:
        if not config.baseUrl:
            raise ProviderError("http", "Base URL is required for custom API")
        return config.baseUrl

    def _extract(self, data: dict) -> str:
        return super()._extract(data) or data.get("content") or ""


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    async def generate(self, request: GenerationRequest, config: ModelConfig) -> str:
        api_key = config.apiKey or ANTHROPIC_API_KEY
        if not api_key:
            raise ProviderError("auth", "anthropic API key is required")
        base_url = (config.baseUrl or ANTHROPIC_BASE_URL).rstrip("/")
        data = await self._post(f"{base_url}/v1/messages", {
            "model": config.model or "claude-3-sonnet-20240229",
            "system": request.system_prompt,
            "max_tokens": config.maxTokens,
            "temperature": config.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }, headers={"x-api-key": api_key, "anthropic-version": "2023-06-01"})
        content = data.get("content") or []
        return content[0].get("text", "") if content else ""


class TemplateProvider(LLMProvider):
    """Offline provider producing a canned acknowledgement; useful for demos and tests."""

    name = "template"

    async def generate(self, request: GenerationRequest, config: ModelConfig) -> str:
        return f'{request.character_name}: I understand you said "{request.user_message}". Let me think about that...'


PROVIDERS = {
    "ollama": OllamaProvider,
    "openai": OpenAICompatibleProvider,
    "zai": ZaiProvider,
    "custom": CustomProvider,
    "anthropic": AnthropicProvider,
    "template": TemplateProvider,
}


def get_provider(name: str, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = LLM_TIMEOUT_SECONDS) -> LLMProvider:
    try:
        provider_cls = PROVIDERS[name]
    except KeyError:
        raise ProviderError("http", f"Unknown provider: {name}")
    return provider_cls(transport=transport, timeout=timeout)


async def list_ollama_models(base_url: str = OLLAMA_BASE_URL, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 5.0) -> list[str]:
    """Names of chat-capable models served by Ollama (embedding and code models are skipped)."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(f"{base_url.rstrip('/')}/api/tags")
    except httpx.TimeoutException as e:
        raise ProviderError("timeout", "ollama request timed out") from e
    except httpx.HTTPError as e:
        raise ProviderError("http", f"ollama request failed: {e}") from e
    _raise_for_status("ollama", response)
    try:
        names = [m.get("name", "") for m in response.json().get("models", [])]
    except ValueError as e:
        raise ProviderError("http", "ollama returned invalid JSON") from e
    return [
        name for name in names
        if name and not any(tag in name.lower() for tag in ("embed", "code"))
    ]

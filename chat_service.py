from typing import Optional

import httpx

from constants import LLM_TIMEOUT_SECONDS
from errors import ProviderError
from model_configs import ModelConfigStore, model_config_store
from providers import GenerationRequest, get_provider
from logging_config import get_logger

logger = get_logger(__name__)


def build_prompt(character: dict, message: str, recent_messages: list) -> str:
    """Conversation prompt for a character reply: recent history followed by the new user message."""
    name = character["name"]
    lines = []
    for item in recent_messages:
        if item.get("senderType") == "user":
            speaker = "User"
        elif item.get("senderType") == "system":
            speaker = "System"
        else:
            speaker = (item.get("character") or {}).get("name") or name
        lines.append(f"{speaker}: {item.get('content', '')}")
    history = "\n".join(lines) if lines else "(no previous messages)"
    return (
        f"Conversation so far:\n{history}\n\n"
        f"User: {message}\n\n"
        f"Reply as {name}. Stay consistent with your character and with what has been said. "
        f"Answer with the reply only, without explanations."
    )


class ChatService:
    """Generates character replies through the configured LLM provider."""

    def __init__(self, model_configs: ModelConfigStore, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = LLM_TIMEOUT_SECONDS):
        self.model_configs = model_configs
        self.transport = transport
        self.timeout = timeout

    async def generate_response(self, character: dict, message: str, recent_messages: list) -> str:
        config = self.model_configs.resolve(character.get("modelConfig"))
        provider = get_provider(config.provider, transport=self.transport, timeout=self.timeout)
        request = GenerationRequest(
            system_prompt=character.get("systemPrompt") or f"You are {character['name']}.",
            prompt=build_prompt(character, message, recent_messages),
            character_name=character["name"],
            user_message=message,
        )
        logger.info(f"Generating reply for character {character['id']} via {config.provider} ({config.model}), history={len(recent_messages)}")
        text = await provider.generate(request, config)
        text = (text or "").strip()
        if not text:
            raise ProviderError("empty", f"{config.provider} returned an empty reply")
        return text


chat_service = ChatService(model_config_store)

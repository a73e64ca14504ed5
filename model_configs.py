import json
from typing import Optional

from backend import RedisBackend, redis_backend
from constants import DEFAULT_MODEL_PROVIDER, OLLAMA_BASE_URL, OLLAMA_MODEL
from redis_keys import REDIS_MODEL_CONFIGS_KEY, REDIS_MODEL_DEFAULT_KEY
from schemas.models import ModelConfig
from logging_config import get_logger

logger = get_logger(__name__)


class ModelConfigStore:
    """Named model configurations kept in Redis, plus which one is the default."""

    def __init__(self, backend: RedisBackend):
        self.backend = backend

    @property
    def _redis(self):
        return self.backend.redis_client

    def list(self) -> dict[str, ModelConfig]:
        raw = self._redis.hgetall(REDIS_MODEL_CONFIGS_KEY)
        return {name: ModelConfig.model_validate_json(value) for name, value in raw.items()}

    def get(self, name: str) -> Optional[ModelConfig]:
        value = self._redis.hget(REDIS_MODEL_CONFIGS_KEY, name)
        if value is None:
            return None
        return ModelConfig.model_validate_json(value)

    def save(self, name: str, config: ModelConfig) -> ModelConfig:
        logger.info(f"Saving model config {name} (provider={config.provider}, model={config.model})")
        self._redis.hset(REDIS_MODEL_CONFIGS_KEY, name, config.model_dump_json())
        return config

    def delete(self, name: str) -> bool:
        deleted = self._redis.hdel(REDIS_MODEL_CONFIGS_KEY, name)
        if deleted and self._redis.get(REDIS_MODEL_DEFAULT_KEY) == name:
            self._redis.delete(REDIS_MODEL_DEFAULT_KEY)
        logger.info(f"Deleted model config {name}: {bool(deleted)}")
        return bool(deleted)

    def get_default_name(self) -> Optional[str]:
        return self._redis.get(REDIS_MODEL_DEFAULT_KEY)

    def set_default(self, name: str) -> bool:
        if not self._redis.hexists(REDIS_MODEL_CONFIGS_KEY, name):
            return False
        self._redis.set(REDIS_MODEL_DEFAULT_KEY, name)
        logger.info(f"Default model config set to {name}")
        return True

    def get_default(self) -> ModelConfig:
        """The stored default config, or one built from the environment."""
        name = self.get_default_name()
        if name:
            config = self.get(name)
            if config:
                return config
        if DEFAULT_MODEL_PROVIDER == "ollama":
            return ModelConfig(provider="ollama", model=OLLAMA_MODEL, baseUrl=OLLAMA_BASE_URL)
        return ModelConfig(provider=DEFAULT_MODEL_PROVIDER)

    def resolve(self, character_config) -> ModelConfig:
        """Overlay a character's own model config on top of the default."""
        default = self.get_default()
        if not character_config:
            return default
        if isinstance(character_config, str):
            try:
                character_config = json.loads(character_config)
            except json.JSONDecodeError:
                logger.warning("Ignoring unparseable character model config")
                return default
        if isinstance(character_config, ModelConfig):
            character_config = character_config.model_dump(exclude_unset=True)
        overrides = {k: v for k, v in character_config.items() if v is not None}
        if overrides.get("provider") and overrides["provider"] != default.provider:
            # A different provider must not inherit the default's endpoint or key
            base = ModelConfig(provider=overrides["provider"], temperature=default.temperature, maxTokens=default.maxTokens)
        else:
            base = default
        return ModelConfig.model_validate({**base.model_dump(), **overrides})


model_config_store = ModelConfigStore(redis_backend)

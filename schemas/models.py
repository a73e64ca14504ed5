from pydantic import BaseModel, Field
from typing import Literal, Optional

Provider = Literal["ollama", "openai", "zai", "anthropic", "custom", "template"]


class ModelConfig(BaseModel):
    provider: Provider = "ollama"
    model: Optional[str] = None
    apiKey: Optional[str] = None
    baseUrl: Optional[str] = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    maxTokens: int = Field(default=2048, gt=0)

class ModelConfigListResponse(BaseModel):
    configs: dict[str, ModelConfig]
    default: Optional[str] = None
    ollamaModels: list[str] = []

class OllamaModelsResponse(BaseModel):
    models: list[str]
    count: int

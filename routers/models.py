from fastapi import APIRouter, HTTPException

from constants import OLLAMA_BASE_URL
from errors import ProviderError
from model_configs import model_config_store
from providers import list_ollama_models
from schemas.models import ModelConfig, ModelConfigListResponse, OllamaModelsResponse
from logging_config import get_logger

logger = get_logger(__name__)

models_router = APIRouter(prefix="/models", tags=["models"])


def _masked(config: ModelConfig) -> ModelConfig:
    if config.apiKey:
        return config.model_copy(update={"apiKey": "***"})
    return config


@models_router.get("/", response_model=ModelConfigListResponse)
async def list_model_configs():
    configs = {name: _masked(config) for name, config in model_config_store.list().items()}
    try:
        ollama_models = await list_ollama_models(OLLAMA_BASE_URL)
    except ProviderError as e:
        logger.warning(f"Ollama unavailable while listing models: {e}")
        ollama_models = []
    return ModelConfigListResponse(
        configs=configs,
        default=model_config_store.get_default_name(),
        ollamaModels=ollama_models,
    )


@models_router.get("/ollama", response_model=OllamaModelsResponse)
async def get_ollama_models():
    try:
        models = await list_ollama_models(OLLAMA_BASE_URL)
    except ProviderError as e:
        logger.error(f"Failed to list Ollama models: {e}")
        raise HTTPException(status_code=502, detail=f"Ollama unavailable: {e}")
    return OllamaModelsResponse(models=models, count=len(models))


@models_router.put("/default/{name}")
async def set_default_model_config(name: str):
    if not model_config_store.set_default(name):
        raise HTTPException(status_code=404, detail="Model config not found")
    return {"message": f"Default model config set to {name}"}


@models_router.put("/{name}", response_model=ModelConfig)
async def save_model_config(name: str, config: ModelConfig):
    if config.apiKey == "***":
        # A masked key echoed back from a listing keeps the stored one
        existing = model_config_store.get(name)
        config = config.model_copy(update={"apiKey": existing.apiKey if existing else None})
    return _masked(model_config_store.save(name, config))


@models_router.delete("/{name}")
async def delete_model_config(name: str):
    if not model_config_store.delete(name):
        raise HTTPException(status_code=404, detail="Model config not found")
    return {"message": "Model config deleted"}

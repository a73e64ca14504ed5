import time

from fastapi import APIRouter
import redis

from backend import redis_backend, utc_now_iso
from constants import APP_VERSION, OLLAMA_BASE_URL
from errors import ProviderError
from providers import list_ollama_models
from logging_config import get_logger

logger = get_logger(__name__)

health_router = APIRouter(tags=["health"])

STARTED_AT = time.monotonic()


@health_router.get("/health")
async def health():
    """
    Service health report.

    Returns:
    - status: always "healthy" if the process answers
    - database: "connected" or "disconnected" (Redis)
    - stats: character, chat room and message counts when Redis is reachable
    - ollama: reachability of the local Ollama server and its model count
    """
    report = {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "version": APP_VERSION,
    }

    try:
        redis_backend.ping()
        report["database"] = "connected"
        report["stats"] = redis_backend.stats()
    except redis.RedisError as e:
        logger.warning(f"Health check: Redis unavailable: {e}")
        report["database"] = "disconnected"
        report["databaseError"] = str(e)

    try:
        models = await list_ollama_models(OLLAMA_BASE_URL, timeout=5.0)
        report["ollama"] = {"status": "connected", "models": len(models)}
    except ProviderError as e:
        report["ollama"] = {"status": "disconnected", "error": str(e)}

    return report

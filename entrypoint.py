import uvicorn
import os
from logging_config import setup_logging

# Setup logging before importing app
log_level = os.getenv("LOG_LEVEL", "DEBUG")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)

from app import app
from backend import redis_backend
from constants import REDIS_HOST, REDIS_PORT
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    # Fail fast when Redis is unreachable
    redis_backend.ping()
    logger.info(f"Redis reachable at {REDIS_HOST}:{REDIS_PORT}")
    logger.info(f"Starting character chat relay on {host}:{port}")
    uvicorn.run(app, host=host, port=port)

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.chatrooms import chatrooms_router
from routers.characters import characters_router
from routers.models import models_router
from routers.health import health_router
from relay import chat_relay
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

app = FastAPI(title="Character Chat Relay")

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chatrooms_router)
app.include_router(characters_router)
app.include_router(models_router)
app.include_router(health_router)

logger.info("FastAPI application initialized")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Real-time chat relay.

    Frames are JSON envelopes ``{"event": ..., "data": ...}`` in both directions.
    Inbound events: join-room, leave-room, chat-message, request-ai-response.
    Outbound events: message, joined-room, left-room, new-message, error.
    """
    await websocket.accept()
    connection_id = await chat_relay.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected normally for connection {connection_id}")
                break
            # Clients may send JSON in text or binary frames
            data = message.get("text")
            if data is None and message.get("bytes") is not None:
                try:
                    data = message["bytes"].decode("utf-8")
                except UnicodeDecodeError:
                    data = None
            if data is None:
                logger.warning(f"Undecodable frame from connection {connection_id}")
                await chat_relay.emit_error(websocket, "Invalid payload", "VALIDATION_ERROR")
                continue
            logger.debug(f"Received frame from connection {connection_id}")
            await chat_relay.dispatch(connection_id, websocket, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        await chat_relay.disconnect(connection_id)

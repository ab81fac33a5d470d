from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import uuid
import structlog

from .schema.events import GenerationSnapshotEvent
from contextforge.domain.errors import GenerationNotFoundError

logger = structlog.get_logger(__name__)

router = APIRouter()

# Policy violation, used for unknown generation ids
CLOSE_UNKNOWN_GENERATION = 1008


@router.websocket("/ws/generations/{generation_id}")
async def generation_websocket(websocket: WebSocket, generation_id: str):
    """Stream a generation record: one snapshot per change, then close after the terminal one"""

    state = websocket.app.state
    record_store = state.record_store
    connection_manager = state.connection_manager

    try:
        await record_store.get(generation_id)
    except GenerationNotFoundError:
        await websocket.close(code=CLOSE_UNKNOWN_GENERATION, reason="Unknown generation")
        return

    connection_id = str(uuid.uuid4())
    await connection_manager.connect(websocket, connection_id, generation_id)

    try:
        async for record in record_store.subscribe(generation_id):
            sent = await connection_manager.send_event(connection_id, GenerationSnapshotEvent.from_record(record))
            if not sent:
                return
    except WebSocketDisconnect:
        logger.info("Client disconnected", connection_id=connection_id, generation_id=generation_id)
    except Exception:
        logger.exception("Generation stream failed", connection_id=connection_id, generation_id=generation_id)
        await connection_manager.send_error(connection_id, "Generation stream failed", "STREAM_ERROR")
    finally:
        await connection_manager.disconnect(connection_id)

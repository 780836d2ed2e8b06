# devconnect/api/websocket.py
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException, status
import json
import logging

from ..core.security import verify_token
from ..services.websocket_manager import websocket_manager, WebSocketConnection

router = APIRouter()
logger = logging.getLogger(__name__)

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str):
    """Transport relay: JSON frames ``{"event", "data", "ack"}`` in, ``{"event", "data"}`` out."""
    try:
        payload = verify_token(token, "access")
        user_id = payload["sub"]
    except HTTPException as e:
        logger.error(f"WebSocket authentication failed: {e.detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=f"Authentication failed: {e.detail}")
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, user_id)
    await websocket_manager.connect(connection)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
                event = frame["event"]
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.error(f"Invalid frame received from {user_id}: {data}")
                await connection.send_frame({"error": "Invalid frame format"})
                continue

            try:
                result = await websocket_manager.handle_event(connection, event, frame.get("data"))
            except Exception as e:
                logger.error(f"Unhandled error routing {event} for user {user_id}: {e}", exc_info=True)
                await connection.send_frame({"error": "An unexpected server error occurred."})
                continue

            if frame.get("ack") is not None:
                await connection.send_frame({"event": "ack", "ack": frame["ack"], "data": result})
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected gracefully for user {user_id}")
    finally:
        await websocket_manager.disconnect(connection)

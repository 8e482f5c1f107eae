"""WebSocket endpoint with JWT authentication and channel multiplexing."""

from __future__ import annotations

import json
import uuid

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from wastewatch.auth.jwt import verify_token
from wastewatch.ws.manager import manager

logger = structlog.get_logger()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = Query(...)) -> None:
    """
    Single WebSocket endpoint.

    Protocol:
        Client -> Server:
            {"action": "subscribe", "channel": "reports"}
            {"action": "unsubscribe", "channel": "reports"}
            {"action": "ping"}

        Server -> Client:
            {"channel": "reports", "data": {"table": "reports", "event": "UPDATE", "id": "..."}}
            {"type": "notification", "payload": {...}}
            {"type": "pong"}
            {"type": "error", "message": "..."}
            {"type": "subscribed", "channel": "reports"}
            {"type": "unsubscribed", "channel": "reports"}
    """
    try:
        payload = verify_token(token, expected_type="access")
        user_id = str(payload["sub"])
        role = str(payload.get("role", "resident"))
    except Exception as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    conn_id = str(uuid.uuid4())
    await manager.connect(websocket, conn_id, user_id, role)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            action = msg.get("action")
            channel = msg.get("channel", "")
            if action == "subscribe":
                if await manager.subscribe(conn_id, channel):
                    await websocket.send_json({"type": "subscribed", "channel": channel})
                else:
                    await websocket.send_json({"type": "error", "message": f"Invalid channel: {channel}"})
            elif action == "unsubscribe":
                await manager.unsubscribe(conn_id, channel)
                await websocket.send_json({"type": "unsubscribed", "channel": channel})
            elif action == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        await manager.disconnect(conn_id)
    except Exception:
        logger.exception("ws_error", conn_id=conn_id)
        await manager.disconnect(conn_id)

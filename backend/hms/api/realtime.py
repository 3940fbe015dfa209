"""
Push channel endpoint — ``/ws/notifications?userId=...&userRole=...``.

One connection per active client session, registered with the hub under
(user_id, role). The server only ever pushes; the only inbound message it
understands is ``{"type": "ping"}``, answered with ``{"type": "pong"}``.
"""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from hms.auth.roles import parse_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    user_id = websocket.query_params.get("userId")
    role = parse_role(websocket.query_params.get("userRole"))
    if not user_id or role is None:
        await websocket.close(code=1008)
        return

    hub = websocket.app.state.hub
    await websocket.accept()
    hub.register(websocket, user_id, role.value)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("WebSocket message parse error from %s", user_id)
                continue
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket, user_id)

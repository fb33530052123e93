import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from analytics_app.dependencies import get_broadcaster
from analytics_app.services.realtime import RealtimeBroadcaster

logger = structlog.get_logger()

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/analytics")
async def analytics_socket(websocket: WebSocket, broadcaster: RealtimeBroadcaster = Depends(get_broadcaster)):
    """
    Admin realtime feed.

    Client messages:
        {"action": "authenticate", "token": "<jwt>"}
        {"action": "ping"}
    """
    await websocket.accept()
    broadcaster.connect(websocket)
    try:
        while True:
            message = await websocket.receive_json()
            action = message.get("action") if isinstance(message, dict) else None

            if action == "authenticate":
                await broadcaster.authenticate(websocket, message.get("token") or "")
            elif action == "ping":
                await websocket.send_json({"event": "pong"})
            else:
                await websocket.send_json({"event": "error", "data": {"error": "Unknown action"}})
    except WebSocketDisconnect:
        pass
    except ValueError:
        # receive_json on a non-JSON frame
        logger.debug("Malformed realtime message, closing")
        await websocket.close(code=1003)
    finally:
        broadcaster.disconnect(websocket)

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from procurement.services.fanout import rfp_channel

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """
    Dashboard channel. Every connection receives global proposal-update events;
    {"action": "join-rfp", "rfpId": N} adds the rfp-N channel, "leave-rfp" removes it.
    """
    hub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.info("Ignoring non-JSON WebSocket frame")
                continue
            if not isinstance(message, dict):
                continue
            action = message.get("action")
            rfp_id = message.get("rfpId")
            if rfp_id is None or action not in ("join-rfp", "leave-rfp"):
                logger.info("Ignoring WebSocket message with action=%s", action)
                continue
            if action == "join-rfp":
                await hub.join(websocket, rfp_channel(rfp_id))
            else:
                await hub.leave(websocket, rfp_channel(rfp_id))
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(websocket)

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.app.core.roles import InvalidRoleError, parse_role

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws/{role}")
async def station_websocket(websocket: WebSocket, role: str):
    """WebSocket feed of new and completed tickets for one station."""
    try:
        role = parse_role(role)
    except InvalidRoleError as e:
        await websocket.close(code=1008, reason=str(e))
        return

    fleet = websocket.app.state.fleet
    ws_manager = fleet.notifier
    await ws_manager.connect(websocket, role)

    try:
        while True:
            data = await websocket.receive_json()

            # Handle ping/pong for keepalive
            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})

            # Station staff finished an order
            elif data.get("type") == "ticket_complete":
                order_id = data.get("order_id")
                if order_id:
                    updated = await fleet.router.mark_completed(str(order_id), role)
                    await websocket.send_json(
                        {"type": "ticket_complete_ack", "order_id": str(order_id), "updated": updated}
                    )

    except WebSocketDisconnect:
        logger.info("Station client disconnected normally")
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error: %s", e, exc_info=True)
        await ws_manager.disconnect(websocket)

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from src.adapters.api.dependencies import get_fleet_runtime
from src.adapters.realtime.websocket_observer_channel import WebSocketObserverChannel
from src.app.services.fleet_runtime import FleetRuntime
from src.domain.exceptions import FleetError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tracking"])


def _error_frame(code: str, detail: str, vehicle_id: str | None = None) -> dict[str, Any]:
    return {"type": "error", "error": code, "detail": detail, "vehicle_id": vehicle_id}


@router.websocket("/ws/tracking")
async def tracking(
    websocket: WebSocket,
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> None:
    """Observer protocol.

    Inbound frames: {"action": "join" | "leave", "vehicle_id": "..."}.
    Outbound frames: a "snapshot" right after each join, then
    "location_changed" / "status_changed" / "vehicle_updated" events, and
    "error" replies. Every outbound frame goes through the broker so only
    the connection's sender task writes to the socket.
    """

    await websocket.accept()
    broker = runtime.broker
    connection_id = uuid4().hex
    broker.connect(connection_id, WebSocketObserverChannel(websocket))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                broker.notify(connection_id, _error_frame("validation_error", "Invalid JSON"))
                continue

            action = frame.get("action") if isinstance(frame, dict) else None
            vehicle_id = frame.get("vehicle_id") if isinstance(frame, dict) else None
            if action not in {"join", "leave"} or not isinstance(vehicle_id, str):
                broker.notify(
                    connection_id,
                    _error_frame(
                        "validation_error",
                        "Expected {'action': 'join'|'leave', 'vehicle_id': str}",
                    ),
                )
                continue

            if action == "leave":
                broker.leave(connection_id, vehicle_id)
                continue

            try:
                broker.join(connection_id, vehicle_id)
            except FleetError as exc:
                broker.notify(
                    connection_id, _error_frame(exc.code, str(exc), vehicle_id=vehicle_id)
                )
    except WebSocketDisconnect:
        logger.debug("Observer %s went away", connection_id)
    finally:
        broker.disconnect(connection_id)

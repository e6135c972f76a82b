from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from fastapi import WebSocket

from src.app.ports.output import IObserverChannel


@dataclass(slots=True)
class WebSocketObserverChannel(IObserverChannel):
    websocket: WebSocket

    async def send(self, message: Mapping[str, Any]) -> None:
        await self.websocket.send_json(dict(message))

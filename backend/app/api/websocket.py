# backend/app/api/websocket.py
"""
Push channel for live call events.

The call manager publishes call_started, lead_score, nudge and call_ended
events; every connected CSR screen receives them. A screen may narrow what
it gets with {"type": "subscribe", "events": ["nudge", ...]}.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.utils.logger import logger

router = APIRouter()

CALL_EVENT_TYPES = frozenset({"call_started", "lead_score", "nudge", "call_ended"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CallEventHub:
    """Fan-out of call events to subscribed screens. Shared as `manager`."""

    def __init__(self) -> None:
        # socket -> event types it wants (None = everything)
        self.subscribers: Dict[WebSocket, Optional[Set[str]]] = {}
        self._lock = asyncio.Lock()
        self.published = 0

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self.subscribers[websocket] = None
        logger.info(f"[WS] Screen connected ({len(self.subscribers)} total)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.subscribers.pop(websocket, None)
        logger.info(f"[WS] Screen disconnected ({len(self.subscribers)} total)")

    async def subscribe(self, websocket: WebSocket, events: Iterable[Any]) -> Set[str]:
        wanted = {e for e in events if isinstance(e, str) and e in CALL_EVENT_TYPES}
        async with self._lock:
            if websocket in self.subscribers:
                self.subscribers[websocket] = wanted or None
        return wanted

    async def broadcast(self, event: Dict[str, Any]) -> None:
        """Deliver one event; screens whose send fails are dropped."""
        event_type = event.get("type")
        async with self._lock:
            targets = [ws for ws, wanted in self.subscribers.items() if wanted is None or event_type in wanted]
        if not targets:
            return

        self.published += 1
        failed = []
        for ws in targets:
            try:
                await ws.send_json(event)
            except Exception as e:
                logger.warning(f"[WS] Dropping screen after failed {event_type} send: {e}")
                failed.append(ws)

        if failed:
            async with self._lock:
                for ws in failed:
                    self.subscribers.pop(ws, None)


manager = CallEventHub()


@router.websocket("/ws")
async def call_events(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        await websocket.send_json({
            "type": "connection",
            "status": "connected",
            "events": sorted(CALL_EVENT_TYPES),
            "timestamp": _now(),
        })

        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON format", "timestamp": _now()})
                continue
            if not isinstance(msg, dict):
                continue

            kind = msg.get("type")
            if kind == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})
            elif kind == "subscribe":
                events = msg.get("events") if isinstance(msg.get("events"), list) else []
                wanted = await manager.subscribe(websocket, events)
                await websocket.send_json({"type": "subscribed", "events": sorted(wanted), "timestamp": _now()})

    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"[WS] Connection error: {e}")
        await manager.disconnect(websocket)


def get_connection_count() -> int:
    return len(manager.subscribers)

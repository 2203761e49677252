"""
WebSocket hub — pushes room change notifications to connected players.

URL: /ws/{room_id}?userId={user_id}

Connection flow:
  1. Validate room exists and the caller is a member
  2. Send a private "connected" message with the full public snapshot
  3. Forward every room change as a "room_changed" snapshot
  4. Answer "ping" with "pong"

Snapshots are advisory and may arrive twice; clients re-fetch through the
HTTP API whenever one arrives instead of applying deltas. All game actions go
through the HTTP routes, never through this socket.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from agents.room_manager import RoomLifecycleManager, get_room_manager
from services.notifier import RoomSubscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


async def _snapshot(manager: RoomLifecycleManager, room_id: str) -> Dict[str, Any]:
    state = await manager.get_room_state(room_id)
    return {
        "room": state["room"],
        "players": state["players"],
    }


async def _forward_changes(ws: WebSocket, manager: RoomLifecycleManager, changes: RoomSubscription) -> None:
    async for _room in changes:
        # Re-read rather than trusting the queued snapshot, which may be stale
        await ws.send_json({"type": "room_changed", **await _snapshot(manager, changes.room_id)})


@router.websocket("/ws/{room_id}")
async def websocket_endpoint(
    ws: WebSocket,
    room_id: str,
    userId: str = Query(..., description="Authenticated caller identity"),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    # ── Validate room and membership ──────────────────────────────────────────
    room = await manager.store.get_room(room_id)
    players = await manager.store.get_players(room_id) if room else []
    if not room or not any(p.user_id == userId for p in players):
        # Same close code either way: room existence is not leaked
        await ws.close(code=4403, reason="Not a member of this room")
        return

    await ws.accept()
    # Subscribe before the first snapshot so no change falls in between
    changes = manager.notifier.on_room_changed(room_id)
    forwarder: Optional[asyncio.Task] = None
    logger.debug(f"[{room_id}] {userId} subscribed to room changes")

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        await ws.send_json({"type": "connected", **await _snapshot(manager, room_id)})
        forwarder = asyncio.create_task(_forward_changes(ws, manager, changes))
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "Invalid JSON", "code": "PARSE_ERROR"})
                continue

            msg_type = data.get("type", "") if isinstance(data, dict) else ""
            if msg_type == "ping":
                await ws.send_json({"type": "pong"})
            elif msg_type == "refresh":
                await ws.send_json({"type": "room_changed", **await _snapshot(manager, room_id)})
            else:
                await ws.send_json({
                    "type": "error",
                    "message": f"Unknown message type: '{msg_type}'",
                    "code": "UNKNOWN_TYPE",
                })
    except WebSocketDisconnect:
        pass
    finally:
        if forwarder is not None:
            forwarder.cancel()
            # Collect the task's outcome; a send on a closed socket ends it with an error
            results = await asyncio.gather(forwarder, return_exceptions=True)
            failure = results[0]
            if isinstance(failure, Exception) and not isinstance(failure, WebSocketDisconnect):
                logger.debug(f"[{room_id}] Change forwarder for {userId} stopped: {failure!r}")
        changes.close()
        logger.debug(f"[{room_id}] {userId} unsubscribed")

"""
Explicit per-caller session context.

Clients used to keep identity/room/player ids in ambient browser storage; the
backend instead receives them as one object built from the authenticated
request. The context carries no game invariants: it is created on the first
authenticated call and cleared when the caller leaves a room.
"""
from typing import Optional

from pydantic import BaseModel


class SessionContext(BaseModel):
    user_id: str
    room_id: Optional[str] = None
    room_code: Optional[str] = None
    player_id: Optional[str] = None

    def enter_room(self, room_id: str, room_code: str, player_id: str) -> "SessionContext":
        return self.model_copy(update={
            "room_id": room_id,
            "room_code": room_code,
            "player_id": player_id,
        })

    def leave_room(self) -> "SessionContext":
        return SessionContext(user_id=self.user_id)

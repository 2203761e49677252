"""
Post-game reveal — the only read path that exposes every player's secret.

Room members only, and only once the room is in RESULT. The status is checked
again right before secrets are read, so a reveal racing a replay never leaks
the new deal.
"""
import logging
from typing import Any, Dict

from errors import AuthorizationError, ValidationError
from models.game import Role, RoomStatus
from services.store import EntityStore

logger = logging.getLogger(__name__)


class ResultRevealer:

    def __init__(self, store: EntityStore):
        self.store = store

    async def reveal(self, room_id: str, user_id: str) -> Dict[str, Any]:
        room = await self.store.get_room(room_id)
        players = await self.store.get_players(room_id) if room else []
        # Same error for unknown rooms and non-members: existence is not leaked
        if not room or not any(p.user_id == user_id for p in players):
            raise AuthorizationError("Not a member of this room", "not_a_member")
        if room.status != RoomStatus.RESULT:
            raise ValidationError("Game is not finished yet", "game_not_finished")

        secrets = {s.player_id: s for s in await self.store.get_secrets(room_id)}
        history = await self.store.get_vote_results(room_id)

        room = await self.store.get_room(room_id)
        if not room or room.status != RoomStatus.RESULT:
            raise ValidationError("Game is not finished yet", "game_not_finished")

        reveals = []
        for p in players:
            secret = secrets.get(p.id)
            role = secret.role if secret else Role.CIVILIAN
            reveals.append({
                "id": p.id,
                "name": p.name,
                "user_id": p.user_id,
                "is_alive": p.is_alive,
                "role": role.value,
                "word": secret.word if secret else None,
                "mr_white_answer": (
                    secret.mr_white_answer if secret and role == Role.MR_WHITE else None
                ),
            })

        final = history[-1] if history else None
        logger.info("[%s] Results revealed to %s", room_id, user_id)
        return {
            "room_id": room_id,
            "winner": final.winner.value if final and final.winner else None,
            "players": reveals,
            "rounds": [r.model_dump(mode="json") for r in history],
        }

"""
In-process EntityStore.

Used for local play and the test-suite. Every method body runs without an
await, so each call is atomic with respect to the asyncio event loop. That
gives conditional inserts, the begin_game batch and the commit_round
compare-and-swap for free within a single process.
"""
from typing import Any, Dict, List, Optional, Tuple

from errors import ConflictError
from models.game import (
    Player, PlayerSecret, Room, Vote, VoteResult,
)
from services.store import EntityStore, check_round_open, normalize_code


def _apply(model, updates: Dict[str, Any]):
    """Return a re-validated copy so enum/nested fields keep their types."""
    return type(model).model_validate({**model.model_dump(), **updates})


class MemoryStore(EntityStore):

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._codes: Dict[str, str] = {}  # room_code → room_id
        self._players: Dict[str, Dict[str, Player]] = {}  # room_id → {player_id: Player}
        self._secrets: Dict[str, Dict[str, PlayerSecret]] = {}
        self._votes: Dict[str, Dict[Tuple[int, str], Vote]] = {}  # (round, voter_id) → Vote
        self._results: Dict[str, Dict[int, VoteResult]] = {}

    # ── Rooms ─────────────────────────────────────────────────────────────────

    async def create_room(self, room: Room) -> Room:
        code = normalize_code(room.room_code)
        if code in self._codes:
            raise ConflictError(f"Room code {code} is already taken", "room_code_collision")
        room = room.model_copy(update={"room_code": code})
        self._rooms[room.id] = room
        self._codes[code] = room.id
        return room.model_copy(deep=True)

    async def get_room(self, room_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        return room.model_copy(deep=True) if room else None

    async def get_room_by_code(self, room_code: str) -> Optional[Room]:
        room_id = self._codes.get(normalize_code(room_code))
        return await self.get_room(room_id) if room_id else None

    async def update_room(self, room_id: str, updates: Dict[str, Any]) -> None:
        self._rooms[room_id] = _apply(self._rooms[room_id], updates)

    # ── Players ───────────────────────────────────────────────────────────────

    async def add_player(self, player: Player) -> Player:
        room_players = self._players.setdefault(player.room_id, {})
        if any(p.user_id == player.user_id for p in room_players.values()):
            raise ConflictError("You have already joined this room", "already_joined")
        if any(p.name == player.name for p in room_players.values()):
            raise ConflictError(f"The name '{player.name}' is already used in this room", "duplicate_name")
        room_players[player.id] = player
        return player.model_copy()

    async def get_player(self, room_id: str, player_id: str) -> Optional[Player]:
        player = self._players.get(room_id, {}).get(player_id)
        return player.model_copy() if player else None

    async def get_players(self, room_id: str) -> List[Player]:
        players = sorted(self._players.get(room_id, {}).values(), key=lambda p: p.joined_at)
        return [p.model_copy() for p in players]

    async def update_player(self, room_id: str, player_id: str, updates: Dict[str, Any]) -> None:
        room_players = self._players[room_id]
        room_players[player_id] = _apply(room_players[player_id], updates)

    async def update_all_players(self, room_id: str, updates: Dict[str, Any]) -> None:
        room_players = self._players.get(room_id, {})
        for pid, player in list(room_players.items()):
            room_players[pid] = _apply(player, updates)

    async def remove_player(self, room_id: str, player_id: str) -> None:
        self._players.get(room_id, {}).pop(player_id, None)

    # ── Secrets ───────────────────────────────────────────────────────────────

    async def begin_game(
        self, room_id: str, secrets: List[PlayerSecret], room_updates: Dict[str, Any]
    ) -> None:
        # Build everything first, then swap in. A failure leaves the old state intact.
        room = _apply(self._rooms[room_id], room_updates)
        players = {
            pid: _apply(p, {"is_alive": True, "is_ready": False})
            for pid, p in self._players.get(room_id, {}).items()
        }
        new_secrets = {s.player_id: s.model_copy() for s in secrets}

        self._players[room_id] = players
        self._secrets[room_id] = new_secrets
        self._votes[room_id] = {}
        self._results[room_id] = {}
        self._rooms[room_id] = room

    async def get_secret(self, room_id: str, player_id: str) -> Optional[PlayerSecret]:
        secret = self._secrets.get(room_id, {}).get(player_id)
        return secret.model_copy() if secret else None

    async def get_secrets(self, room_id: str) -> List[PlayerSecret]:
        return [s.model_copy() for s in self._secrets.get(room_id, {}).values()]

    async def update_secret(self, room_id: str, player_id: str, updates: Dict[str, Any]) -> None:
        room_secrets = self._secrets[room_id]
        room_secrets[player_id] = _apply(room_secrets[player_id], updates)

    # ── Votes ─────────────────────────────────────────────────────────────────

    async def insert_vote(self, vote: Vote) -> Vote:
        room_votes = self._votes.setdefault(vote.room_id, {})
        key = (vote.round, vote.voter_id)
        if key in room_votes:
            raise ConflictError("You have already voted this round", "duplicate_vote")
        room_votes[key] = vote
        return vote.model_copy()

    async def get_votes(self, room_id: str, round: int) -> List[Vote]:
        votes = [v for (r, _), v in self._votes.get(room_id, {}).items() if r == round]
        return sorted((v.model_copy() for v in votes), key=lambda v: v.created_at)

    # ── Vote results ──────────────────────────────────────────────────────────

    async def get_vote_result(self, room_id: str, round: int) -> Optional[VoteResult]:
        result = self._results.get(room_id, {}).get(round)
        return result.model_copy() if result else None

    async def get_vote_results(self, room_id: str) -> List[VoteResult]:
        results = self._results.get(room_id, {})
        return [results[r].model_copy() for r in sorted(results)]

    async def commit_round(
        self,
        room_id: str,
        round: int,
        result: VoteResult,
        *,
        expect_pending: bool,
        room_updates: Optional[Dict[str, Any]] = None,
        player_updates: Optional[Dict[str, Dict[str, Any]]] = None,
        secret_updates: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        existing = self._results.get(room_id, {}).get(round)
        check_round_open(self._rooms.get(room_id), existing, round, expect_pending)

        # Validate all updates before writing any of them.
        room = _apply(self._rooms[room_id], room_updates or {})
        players = self._players.get(room_id, {})
        new_players = {
            pid: _apply(players[pid], updates) for pid, updates in (player_updates or {}).items()
        }
        secrets = self._secrets.get(room_id, {})
        new_secrets = {
            pid: _apply(secrets[pid], updates) for pid, updates in (secret_updates or {}).items()
        }

        players.update(new_players)
        secrets.update(new_secrets)
        self._results.setdefault(room_id, {})[round] = result.model_copy()
        self._rooms[room_id] = room

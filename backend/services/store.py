"""
Entity store contract.

The game engine only talks to this interface. Two backends implement it:
  - MemoryStore       (services/memory_store.py)   — local play and tests
  - FirestoreService  (services/firestore_service.py) — deployments

Beyond plain keyed CRUD the engine needs four guarantees from a backend:
  1. Conditional insert for rooms (unique join code), players (unique name and
     unique identity per room) and votes (unique per room/round/voter).
     Violations raise ConflictError with the matching stable code.
  2. begin_game() replaces a room's secrets, votes and results, resets players
     and moves the room to PLAYING in one atomic write.
  3. commit_round() applies every write of a tally (elimination, VoteResult,
     room status/round) as one compare-and-swap against the room's current
     status/round and the round's existing VoteResult.
  4. Storage failures surface as InternalError, never as raw client errors.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from config import settings
from errors import ConflictError
from models.game import Player, PlayerSecret, Room, RoomStatus, Vote, VoteResult


def normalize_code(code: str) -> str:
    """Join codes are matched case-insensitively and stored upper-case."""
    return code.strip().upper()


def check_round_open(
    room: Optional[Room], existing: Optional[VoteResult], round: int, expect_pending: bool
) -> None:
    """Compare-and-swap guard shared by every commit_round implementation."""
    if room is None or room.status != RoomStatus.VOTING or room.current_round != round:
        raise ConflictError(
            f"Round {round} has already been resolved", "tally_in_progress"
        )
    pending = existing is not None and existing.awaiting_guess
    if existing is not None and not pending:
        raise ConflictError(f"Round {round} has already been resolved", "tally_in_progress")
    if pending != expect_pending:
        raise ConflictError(f"Round {round} changed during the tally", "tally_in_progress")


class EntityStore(ABC):

    # ── Rooms ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_room(self, room: Room) -> Room:
        """Insert unless another room already holds room.room_code."""

    @abstractmethod
    async def get_room(self, room_id: str) -> Optional[Room]: ...

    @abstractmethod
    async def get_room_by_code(self, room_code: str) -> Optional[Room]: ...

    @abstractmethod
    async def update_room(self, room_id: str, updates: Dict[str, Any]) -> None: ...

    # ── Players ───────────────────────────────────────────────────────────────

    @abstractmethod
    async def add_player(self, player: Player) -> Player:
        """Insert unless the name or the user_id is already present in the room."""

    @abstractmethod
    async def get_player(self, room_id: str, player_id: str) -> Optional[Player]: ...

    @abstractmethod
    async def get_players(self, room_id: str) -> List[Player]:
        """All players of the room in join order."""

    @abstractmethod
    async def update_player(self, room_id: str, player_id: str, updates: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def update_all_players(self, room_id: str, updates: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def remove_player(self, room_id: str, player_id: str) -> None: ...

    # ── Secrets ───────────────────────────────────────────────────────────────

    @abstractmethod
    async def begin_game(
        self, room_id: str, secrets: List[PlayerSecret], room_updates: Dict[str, Any]
    ) -> None:
        """
        Atomically: delete the room's secrets, votes and vote results; reset
        every player to alive/not-ready; write `secrets`; apply `room_updates`.
        Nothing is applied if any part fails.
        """

    @abstractmethod
    async def get_secret(self, room_id: str, player_id: str) -> Optional[PlayerSecret]: ...

    @abstractmethod
    async def get_secrets(self, room_id: str) -> List[PlayerSecret]: ...

    @abstractmethod
    async def update_secret(self, room_id: str, player_id: str, updates: Dict[str, Any]) -> None: ...

    # ── Votes ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def insert_vote(self, vote: Vote) -> Vote:
        """Insert unless (room, round, voter) already voted."""

    @abstractmethod
    async def get_votes(self, room_id: str, round: int) -> List[Vote]: ...

    # ── Vote results ──────────────────────────────────────────────────────────

    @abstractmethod
    async def get_vote_result(self, room_id: str, round: int) -> Optional[VoteResult]: ...

    @abstractmethod
    async def get_vote_results(self, room_id: str) -> List[VoteResult]:
        """Round history, oldest first."""

    @abstractmethod
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
        """
        Transactionally record the outcome of a round.

        Precondition checked inside the transaction: the room is VOTING at
        `round`, and the round has no VoteResult (expect_pending=False) or a
        VoteResult still awaiting a Mr. White guess (expect_pending=True).
        Otherwise ConflictError("tally_in_progress") and nothing is written.
        """


_store: Optional[EntityStore] = None


def get_store() -> EntityStore:
    """Lazy singleton, initialised on first call, not at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    Use as a FastAPI dependency: Depends(get_store)
    """
    global _store
    if _store is None:
        if settings.store_backend == "firestore":
            from services.firestore_service import FirestoreService
            _store = FirestoreService()
        else:
            from services.memory_store import MemoryStore
            _store = MemoryStore()
    return _store

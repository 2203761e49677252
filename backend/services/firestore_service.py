import asyncio
import hashlib
import logging
import os
from typing import Optional, List, Dict, Any

from google.api_core.exceptions import Conflict, GoogleAPICallError

from config import settings
from errors import ConflictError, GameError, InternalError
from models.game import Player, PlayerSecret, Room, Vote, VoteResult
from services.store import EntityStore, check_round_open, normalize_code

logger = logging.getLogger(__name__)


def _doc(model) -> Dict[str, Any]:
    """JSON-safe dict (datetimes → ISO strings, enums → values) for Firestore."""
    return model.model_dump(mode="json")


def claim_id(value: str) -> str:
    """Document id for a uniqueness claim on free text.
    Display names and identities may contain '/', '.', '__x__' and other
    characters Firestore rejects in ids, so the claim is keyed by a digest."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class FirestoreService(EntityStore):
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop. Switch to AsyncClient once stable.

    Layout:
      room_codes/{CODE}                       — unique join-code claim → room_id
      rooms/{room_id}
      rooms/{room_id}/players/{player_id}
      rooms/{room_id}/names/{sha256(name)}    — unique display-name claim
      rooms/{room_id}/members/{sha256(user)}  — one player per identity claim
      rooms/{room_id}/secrets/{player_id}
      rooms/{room_id}/votes/{round}_{voter}   — unique vote per round
      rooms/{room_id}/vote_results/{round}
    """

    def __init__(self, client=None, transactional=None):
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        if settings.google_application_credentials:
            os.environ.setdefault("GOOGLE_APPLICATION_CREDENTIALS", settings.google_application_credentials)
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        self.db = client or firestore.Client(project=settings.google_cloud_project or None)
        self._transactional_wrapper = transactional or firestore.transactional

    async def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except (GameError, Conflict):
            raise
        except GoogleAPICallError as exc:
            logger.error("Firestore call failed: %s", exc)
            raise InternalError("Storage request failed") from exc

    def _transactional(self, fn):
        """Wrap fn(transaction) so Firestore retries it on contention."""
        return lambda: self._transactional_wrapper(fn)(self.db.transaction())

    # ── Collection helpers ────────────────────────────────────────────────────

    def _code_ref(self, code: str):
        return self.db.collection("room_codes").document(code)

    def _room_ref(self, room_id: str):
        return self.db.collection("rooms").document(room_id)

    def _players_ref(self, room_id: str):
        return self._room_ref(room_id).collection("players")

    def _name_claim_ref(self, room_id: str, name: str):
        return self._room_ref(room_id).collection("names").document(claim_id(name))

    def _member_claim_ref(self, room_id: str, user_id: str):
        return self._room_ref(room_id).collection("members").document(claim_id(user_id))

    def _secrets_ref(self, room_id: str):
        return self._room_ref(room_id).collection("secrets")

    def _votes_ref(self, room_id: str):
        return self._room_ref(room_id).collection("votes")

    def _results_ref(self, room_id: str):
        return self._room_ref(room_id).collection("vote_results")

    # ── Rooms ─────────────────────────────────────────────────────────────────

    async def create_room(self, room: Room) -> Room:
        room = room.model_copy(update={"room_code": normalize_code(room.room_code)})

        def _create(transaction):
            code_ref = self._code_ref(room.room_code)
            if code_ref.get(transaction=transaction).exists:
                raise ConflictError(
                    f"Room code {room.room_code} is already taken", "room_code_collision"
                )
            transaction.create(code_ref, {"room_id": room.id})
            transaction.set(self._room_ref(room.id), _doc(room))

        await self._run(self._transactional(_create))
        return room

    async def get_room(self, room_id: str) -> Optional[Room]:
        doc = await self._run(lambda: self._room_ref(room_id).get())
        if doc.exists:
            return Room(**doc.to_dict())
        return None

    async def get_room_by_code(self, room_code: str) -> Optional[Room]:
        code = normalize_code(room_code)
        if not code:
            return None
        doc = await self._run(lambda: self._code_ref(code).get())
        if not doc.exists:
            return None
        return await self.get_room(doc.to_dict()["room_id"])

    async def update_room(self, room_id: str, updates: Dict[str, Any]):
        await self._run(lambda: self._room_ref(room_id).update(updates))

    # ── Players ───────────────────────────────────────────────────────────────

    async def add_player(self, player: Player) -> Player:
        room_id = player.room_id
        member_ref = self._member_claim_ref(room_id, player.user_id)
        name_ref = self._name_claim_ref(room_id, player.name)

        def _add(transaction):
            # Identity first: a retried join by the same caller is "already joined"
            if member_ref.get(transaction=transaction).exists:
                raise ConflictError("You have already joined this room", "already_joined")
            if name_ref.get(transaction=transaction).exists:
                raise ConflictError(
                    f"The name '{player.name}' is already used in this room", "duplicate_name"
                )
            transaction.create(member_ref, {"player_id": player.id, "user_id": player.user_id})
            transaction.create(name_ref, {"player_id": player.id, "name": player.name})
            transaction.set(self._players_ref(room_id).document(player.id), _doc(player))

        try:
            await self._run(self._transactional(_add))
        except Conflict as exc:
            # Lost a race on one of the claim documents; report whichever claim won
            member = await self._run(lambda: member_ref.get())
            if member.exists:
                raise ConflictError("You have already joined this room", "already_joined") from exc
            raise ConflictError(
                f"The name '{player.name}' is already used in this room", "duplicate_name"
            ) from exc
        return player

    async def get_player(self, room_id: str, player_id: str) -> Optional[Player]:
        doc = await self._run(lambda: self._players_ref(room_id).document(player_id).get())
        if doc.exists:
            return Player(**doc.to_dict())
        return None

    async def get_players(self, room_id: str) -> List[Player]:
        docs = await self._run(lambda: list(self._players_ref(room_id).stream()))
        players = [Player(**d.to_dict()) for d in docs]
        return sorted(players, key=lambda p: p.joined_at)

    async def update_player(self, room_id: str, player_id: str, updates: Dict[str, Any]):
        await self._run(lambda: self._players_ref(room_id).document(player_id).update(updates))

    async def update_all_players(self, room_id: str, updates: Dict[str, Any]):
        def _update_all():
            batch = self.db.batch()
            for doc in self._players_ref(room_id).stream():
                batch.update(doc.reference, updates)
            batch.commit()

        await self._run(_update_all)

    async def remove_player(self, room_id: str, player_id: str):
        player = await self.get_player(room_id, player_id)
        if not player:
            return

        def _remove():
            batch = self.db.batch()
            batch.delete(self._players_ref(room_id).document(player_id))
            batch.delete(self._name_claim_ref(room_id, player.name))
            batch.delete(self._member_claim_ref(room_id, player.user_id))
            batch.commit()

        await self._run(_remove)

    # ── Secrets ───────────────────────────────────────────────────────────────

    async def begin_game(
        self, room_id: str, secrets: List[PlayerSecret], room_updates: Dict[str, Any]
    ) -> None:
        def _begin(transaction):
            # All reads before any write (Firestore transaction rule)
            stale = [
                *self._secrets_ref(room_id).stream(transaction=transaction),
                *self._votes_ref(room_id).stream(transaction=transaction),
                *self._results_ref(room_id).stream(transaction=transaction),
            ]
            players = list(self._players_ref(room_id).stream(transaction=transaction))

            for doc in stale:
                transaction.delete(doc.reference)
            for doc in players:
                transaction.update(doc.reference, {"is_alive": True, "is_ready": False})
            for secret in secrets:
                transaction.set(self._secrets_ref(room_id).document(secret.player_id), _doc(secret))
            transaction.update(self._room_ref(room_id), room_updates)

        await self._run(self._transactional(_begin))

    async def get_secret(self, room_id: str, player_id: str) -> Optional[PlayerSecret]:
        doc = await self._run(lambda: self._secrets_ref(room_id).document(player_id).get())
        if doc.exists:
            return PlayerSecret(**doc.to_dict())
        return None

    async def get_secrets(self, room_id: str) -> List[PlayerSecret]:
        docs = await self._run(lambda: list(self._secrets_ref(room_id).stream()))
        return [PlayerSecret(**d.to_dict()) for d in docs]

    async def update_secret(self, room_id: str, player_id: str, updates: Dict[str, Any]):
        await self._run(lambda: self._secrets_ref(room_id).document(player_id).update(updates))

    # ── Votes ─────────────────────────────────────────────────────────────────

    async def insert_vote(self, vote: Vote) -> Vote:
        ref = self._votes_ref(vote.room_id).document(vote.key)
        try:
            await self._run(lambda: ref.create(_doc(vote)))
        except Conflict as exc:
            raise ConflictError("You have already voted this round", "duplicate_vote") from exc
        return vote

    async def get_votes(self, room_id: str, round: int) -> List[Vote]:
        ref = self._votes_ref(room_id).where("round", "==", round)
        docs = await self._run(lambda: list(ref.stream()))
        votes = [Vote(**d.to_dict()) for d in docs]
        return sorted(votes, key=lambda v: v.created_at)

    # ── Vote results ──────────────────────────────────────────────────────────

    async def get_vote_result(self, room_id: str, round: int) -> Optional[VoteResult]:
        doc = await self._run(lambda: self._results_ref(room_id).document(str(round)).get())
        if doc.exists:
            return VoteResult(**doc.to_dict())
        return None

    async def get_vote_results(self, room_id: str) -> List[VoteResult]:
        docs = await self._run(lambda: list(self._results_ref(room_id).stream()))
        results = [VoteResult(**d.to_dict()) for d in docs]
        return sorted(results, key=lambda r: r.round)

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
        room_ref = self._room_ref(room_id)
        result_ref = self._results_ref(room_id).document(str(round))

        def _commit(transaction):
            room_snap = room_ref.get(transaction=transaction)
            result_snap = result_ref.get(transaction=transaction)
            room = Room(**room_snap.to_dict()) if room_snap.exists else None
            existing = VoteResult(**result_snap.to_dict()) if result_snap.exists else None
            check_round_open(room, existing, round, expect_pending)

            transaction.set(result_ref, _doc(result))
            for player_id, updates in (player_updates or {}).items():
                transaction.update(self._players_ref(room_id).document(player_id), updates)
            for player_id, updates in (secret_updates or {}).items():
                transaction.update(self._secrets_ref(room_id).document(player_id), updates)
            if room_updates:
                transaction.update(room_ref, room_updates)

        await self._run(self._transactional(_commit))

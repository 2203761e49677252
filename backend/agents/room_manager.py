"""
Room Lifecycle Manager — Pure deterministic Python.

Responsibilities:
- Room creation, joining, readiness and settings (lobby)
- Phase transitions: lobby → playing → voting → playing … → result → lobby
- Vote casting and the tally pipeline:
    VoteTallyEngine → MrWhiteGuessHandler (if Mr. White is out) → WinConditionEvaluator
- Secret reads for the owning player

Every mutation validates its preconditions before writing anything. Tallies
are serialized per room with an asyncio.Lock, and the writes of a round are
committed through EntityStore.commit_round, which re-checks room status/round
inside a transaction. Either guard alone keeps a double-submitted tally from
eliminating twice; together they cover both one process and several.
"""
import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence, Tuple

from agents.mr_white import MrWhiteGuessHandler, mr_white_handler
from agents.role_assigner import RoleAssigner, role_assigner
from agents.vote_tally import VoteTallyEngine, vote_tally_engine
from agents.win_conditions import WinConditionEvaluator, win_evaluator
from config import settings
from errors import (
    AuthorizationError, ConflictError, InternalError, NotFoundError, ValidationError,
)
from models.game import (
    Player, PlayerSecret, Role, Room, RoomSettings, RoomStatus, TallyOutcome,
    TallyResult, Vote, VoteCount, VoteResult, Winner,
)
from services.notifier import RoomNotifier, get_notifier
from services.store import EntityStore, get_store

logger = logging.getLogger(__name__)


class RoomLifecycleManager:
    """
    Authoritative state machine for one or many rooms.
    All methods read/write through the injected EntityStore.
    """

    SETUP_STATUSES = (RoomStatus.LOBBY, RoomStatus.RESULT)

    def __init__(
        self,
        store: EntityStore,
        notifier: Optional[RoomNotifier] = None,
        assigner: Optional[RoleAssigner] = None,
        tally_engine: Optional[VoteTallyEngine] = None,
        guess_handler: Optional[MrWhiteGuessHandler] = None,
        evaluator: Optional[WinConditionEvaluator] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.notifier = notifier or get_notifier()
        self.assigner = assigner or role_assigner
        self.tally_engine = tally_engine or vote_tally_engine
        self.guess_handler = guess_handler or mr_white_handler
        self.evaluator = evaluator or win_evaluator
        self.rng = rng or random.SystemRandom()
        # Per-room serialization of start/tally. In-process only; commit_round
        # is the cross-process guard. Entries live only while a caller holds or
        # waits on the lock.
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    # ── Helpers ───────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _room_lock(self, room_id: str):
        if room_id not in self._locks:
            self._locks[room_id] = asyncio.Lock()
        lock = self._locks[room_id]
        self._lock_holders[room_id] = self._lock_holders.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[room_id] -= 1
            if not self._lock_holders[room_id]:
                del self._lock_holders[room_id]
                del self._locks[room_id]

    def _generate_code(self) -> str:
        alphabet = settings.room_code_alphabet
        return "".join(self.rng.choice(alphabet) for _ in range(settings.room_code_length))

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("A display name is required", "missing_field")
        return cleaned

    async def _require_room(self, room_id: str) -> Room:
        room = await self.store.get_room(room_id)
        if not room:
            raise NotFoundError("Room not found", "room_not_found")
        return room

    @staticmethod
    def _require_host(room: Room, caller_id: str) -> None:
        if room.host_id != caller_id:
            raise AuthorizationError("Only the host can do that", "not_host")

    async def _require_member(self, room_id: str, user_id: str) -> Tuple[Room, Player]:
        """Room + the caller's player. Unknown rooms look exactly like non-membership."""
        room = await self.store.get_room(room_id)
        players = await self.store.get_players(room_id) if room else []
        player = next((p for p in players if p.user_id == user_id), None)
        if not room or not player:
            raise AuthorizationError("Not a member of this room", "not_a_member")
        return room, player

    async def _notify(self, room_id: str) -> None:
        room = await self.store.get_room(room_id)
        if room:
            self.notifier.publish(room)

    # ── Lobby ─────────────────────────────────────────────────────────────────

    async def create_room(
        self, host_id: str, host_name: Optional[str] = None
    ) -> Tuple[Room, Optional[Player]]:
        """Create a lobby with a fresh join code. Optionally seat the host as the first player."""
        name = self._clean_name(host_name) if host_name is not None else None
        room_settings = RoomSettings(
            undercover_count=settings.default_undercover_count,
            mr_white_count=settings.default_mr_white_count,
        )

        room: Optional[Room] = None
        for attempt in range(settings.room_code_attempts):
            candidate = Room(room_code=self._generate_code(), host_id=host_id, settings=room_settings)
            try:
                room = await self.store.create_room(candidate)
                break
            except ConflictError as exc:
                if exc.code != "room_code_collision":
                    raise
                logger.warning(f"Room code collision on attempt {attempt + 1}/{settings.room_code_attempts}")
        if room is None:
            raise ConflictError("Could not allocate a room code, please retry", "room_code_collision")

        player = None
        if name is not None:
            player = await self.store.add_player(Player(room_id=room.id, user_id=host_id, name=name))
        logger.info(f"[{room.id}] Room {room.room_code} created by host {host_id}")
        return room, player

    async def join_room(self, room_code: str, user_id: str, name: str) -> Tuple[Room, Player]:
        name = self._clean_name(name)
        room = await self.store.get_room_by_code(room_code or "")
        if not room:
            raise NotFoundError("Room not found", "room_not_found")
        if room.status != RoomStatus.LOBBY:
            raise ValidationError("The game has already started", "game_already_started")

        player = await self.store.add_player(Player(room_id=room.id, user_id=user_id, name=name))
        logger.info(f"[{room.id}] Player {player.id} ({name}) joined")
        await self._notify(room.id)
        return room, player

    async def leave_room(self, room_id: str, user_id: str) -> None:
        room, player = await self._require_member(room_id, user_id)
        if room.status != RoomStatus.LOBBY:
            raise ValidationError("Players can only leave from the lobby", "wrong_phase")
        if room.host_id == user_id:
            players = await self.store.get_players(room_id)
            if len(players) > 1:
                raise ValidationError("The host cannot leave while others are in the room", "host_cannot_leave")
        await self.store.remove_player(room_id, player.id)
        logger.info(f"[{room_id}] Player {player.id} left")
        await self._notify(room_id)

    async def update_settings(self, room_id: str, caller_id: str, room_settings: RoomSettings) -> Room:
        """Stored verbatim; role counts are checked against the roster at start."""
        room = await self._require_room(room_id)
        self._require_host(room, caller_id)
        if room.status not in self.SETUP_STATUSES:
            raise ValidationError("Settings cannot change during a game", "wrong_phase")
        await self.store.update_room(room_id, {"settings": room_settings.model_dump()})
        await self._notify(room_id)
        return await self._require_room(room_id)

    async def toggle_ready(self, room_id: str, player_id: str, caller_id: str) -> Player:
        room = await self._require_room(room_id)
        player = await self.store.get_player(room_id, player_id)
        if not player:
            raise NotFoundError("Player not found", "player_not_found")
        if player.user_id != caller_id:
            raise AuthorizationError("You can only change your own ready state", "not_owner")
        if room.status not in self.SETUP_STATUSES:
            raise ValidationError("Ready state is only used before a game", "wrong_phase")
        await self.store.update_player(room_id, player_id, {"is_ready": not player.is_ready})
        await self._notify(room_id)
        return player.model_copy(update={"is_ready": not player.is_ready})

    # ── Phase transitions ─────────────────────────────────────────────────────

    async def start_game(self, room_id: str, caller_id: str) -> Room:
        """
        Deal a new game. Works from the lobby and from a finished game (replay).

        Old secrets, votes and results are cleared and the new deal is written
        in the same atomic batch that moves the room to PLAYING/round 1, so a
        failed write leaves the room exactly as it was.
        """
        async with self._room_lock(room_id):
            room = await self._require_room(room_id)
            self._require_host(room, caller_id)
            if room.status not in self.SETUP_STATUSES:
                raise ValidationError("The game has already started", "already_started")

            players = await self.store.get_players(room_id)
            if len(players) < settings.min_players:
                raise ValidationError(
                    f"Need at least {settings.min_players} players to start; got {len(players)}.",
                    "not_enough_players",
                )
            if not all(p.is_ready for p in players):
                raise ValidationError("Not all players are ready", "not_all_ready")

            assignment = self.assigner.assign(players, room.settings)
            try:
                await self.store.begin_game(
                    room_id,
                    assignment.secrets,
                    {"status": RoomStatus.PLAYING.value, "current_round": 1},
                )
            except InternalError:
                logger.error(f"[{room_id}] Failed to write secrets, game not started")
                raise

        logger.info(
            f"[{room_id}] Game started with {len(players)} players "
            f"({room.settings.undercover_count} undercover, {room.settings.mr_white_count} Mr. White)"
        )
        await self._notify(room_id)
        return await self._require_room(room_id)

    async def start_voting(self, room_id: str, caller_id: str) -> Room:
        room = await self._require_room(room_id)
        self._require_host(room, caller_id)
        if room.status != RoomStatus.PLAYING:
            raise ValidationError("Voting can only start during play", "wrong_phase")
        await self.store.update_room(room_id, {"status": RoomStatus.VOTING.value})
        logger.info(f"[{room_id}] Voting opened for round {room.current_round}")
        await self._notify(room_id)
        return await self._require_room(room_id)

    async def reset_to_lobby(self, room_id: str, caller_id: str) -> Room:
        """Play again: back to the lobby with everyone alive and not ready."""
        async with self._room_lock(room_id):
            room, _ = await self._require_member(room_id, caller_id)
            if room.status not in self.SETUP_STATUSES:
                raise ValidationError("A game in progress cannot be reset", "wrong_phase")
            await self.store.update_room(room_id, {"status": RoomStatus.LOBBY.value, "current_round": 0})
            await self.store.update_all_players(room_id, {"is_ready": False, "is_alive": True})
        logger.info(f"[{room_id}] Room reset to lobby")
        await self._notify(room_id)
        return await self._require_room(room_id)

    def _advance_round(self, room: Room) -> Dict[str, Any]:
        logger.info(f"[{room.id}] Round {room.current_round} → {room.current_round + 1}")
        return {"status": RoomStatus.PLAYING.value, "current_round": room.current_round + 1}

    def _end_game(self, room: Room, winner: Winner) -> Dict[str, Any]:
        logger.info(f"[{room.id}] Game over in round {room.current_round} — winner: {winner.value}")
        return {"status": RoomStatus.RESULT.value}

    # ── Voting ────────────────────────────────────────────────────────────────

    async def cast_vote(
        self, room_id: str, round: int, voter_id: str, target_id: str, caller_id: str
    ) -> Vote:
        room = await self._require_room(room_id)
        if room.status != RoomStatus.VOTING:
            raise ValidationError("Votes can only be cast during the voting phase", "wrong_phase")
        if round != room.current_round:
            raise ValidationError(
                f"Round {round} is not the current round ({room.current_round})", "stale_round"
            )

        voter = await self.store.get_player(room_id, voter_id)
        if not voter:
            raise NotFoundError("Player not found", "player_not_found")
        if voter.user_id != caller_id:
            raise AuthorizationError("You can only vote as yourself", "not_owner")
        if not voter.is_alive:
            raise ValidationError("Eliminated players cannot vote", "player_eliminated")

        target = await self.store.get_player(room_id, target_id)
        if not target or not target.is_alive:
            raise ValidationError("Vote target must be an alive player", "invalid_target")

        vote = await self.store.insert_vote(Vote(
            room_id=room_id, round=round, voter_id=voter_id, target_player_id=target_id,
        ))
        logger.info(f"[{room_id}] Vote cast in round {round} by {voter_id}")
        await self._notify(room_id)
        return vote

    async def get_vote_progress(self, room_id: str, user_id: str) -> Dict[str, Any]:
        """Who has voted this round. Targets stay hidden until the tally."""
        room, _ = await self._require_member(room_id, user_id)
        players = await self.store.get_players(room_id)
        alive_ids = {p.id for p in players if p.is_alive}
        votes = await self.store.get_votes(room_id, room.current_round)
        voted = [v.voter_id for v in votes if v.voter_id in alive_ids]
        return {
            "round": room.current_round,
            "alive_count": len(alive_ids),
            "vote_count": len(voted),
            "voted": voted,
        }

    async def get_vote_history(self, room_id: str, user_id: str) -> List[Dict[str, Any]]:
        await self._require_member(room_id, user_id)
        results = await self.store.get_vote_results(room_id)
        return [r.model_dump(mode="json") for r in results]

    # ── Tally pipeline ────────────────────────────────────────────────────────

    async def tally(self, room_id: str, caller_id: str, guess: Optional[str] = None) -> TallyResult:
        """
        Resolve the current round.

        Outcomes:
          tie            — nobody eliminated, next round
          eliminated     — one player out, game continues, next round
          awaiting_guess — Mr. White out, round stays open until a guess arrives
          game_over      — a faction won; room moves to RESULT

        Calling again after the round resolved returns the recorded outcome
        unchanged.
        """
        room = await self._require_room(room_id)
        self._require_host(room, caller_id)

        async with self._room_lock(room_id):
            room = await self._require_room(room_id)
            players = await self.store.get_players(room_id)

            if room.status != RoomStatus.VOTING:
                if room.status in (RoomStatus.PLAYING, RoomStatus.RESULT):
                    replay = await self._replay_last_result(room, players)
                    if replay:
                        return replay
                raise ValidationError("Votes can only be tallied during the voting phase", "wrong_phase")

            round_ = room.current_round
            votes = await self.store.get_votes(room_id, round_)
            existing = await self.store.get_vote_result(room_id, round_)

            if existing and existing.awaiting_guess:
                eliminated_id = existing.eliminated_player_id
                secret = await self.store.get_secret(room_id, eliminated_id)
                summary = self._summary(players, votes, eliminated_id)
                return await self._resolve_mr_white(
                    room, players, eliminated_id, secret, guess, summary, expect_pending=True,
                )
            if existing:
                return self._to_tally_result(existing, self._summary(players, votes, existing.eliminated_player_id))

            alive = [p for p in players if p.is_alive]
            counted = self.tally_engine.tally(alive, votes)

            if counted.is_tie:
                result = VoteResult(room_id=room_id, round=round_)
                await self._commit(room, result, expect_pending=False, room_updates=self._advance_round(room))
                return self._to_tally_result(result, counted.summary)

            eliminated_id = counted.eliminated_id
            secret = await self.store.get_secret(room_id, eliminated_id)
            role = secret.role if secret else Role.CIVILIAN
            if self.guess_handler.applies_to(role):
                return await self._resolve_mr_white(
                    room, players, eliminated_id, secret, guess, counted.summary, expect_pending=False,
                )
            return await self._finish_elimination(
                room, players, eliminated_id, secret, counted.summary, expect_pending=False,
            )

    async def _resolve_mr_white(
        self,
        room: Room,
        players: Sequence[Player],
        eliminated_id: str,
        secret: Optional[PlayerSecret],
        guess: Optional[str],
        summary: List[VoteCount],
        expect_pending: bool,
    ) -> TallyResult:
        round_ = room.current_round
        answer = self.guess_handler.effective_guess(guess, secret.mr_white_answer if secret else None)
        player_updates = {eliminated_id: {"is_alive": False}}

        if answer is None:
            result = self.guess_handler.awaiting_result(room.id, round_, eliminated_id)
            if not expect_pending:
                await self._commit(room, result, expect_pending=False, player_updates=player_updates)
            return self._to_tally_result(result, summary)

        secret_updates = {eliminated_id: {"mr_white_answer": answer.strip()}} if secret else None
        civilian_word = await self._civilian_word(room.id)
        if self.guess_handler.is_correct(answer, civilian_word):
            result = self.guess_handler.winning_result(room.id, round_, eliminated_id)
            await self._commit(
                room, result,
                expect_pending=expect_pending,
                room_updates=self._end_game(room, Winner.MR_WHITE),
                player_updates=player_updates,
                secret_updates=secret_updates,
            )
            return self._to_tally_result(result, summary)

        logger.info(f"[{room.id}] Mr. White guessed wrong — game continues")
        return await self._finish_elimination(
            room, players, eliminated_id, secret, summary,
            expect_pending=expect_pending, secret_updates=secret_updates,
        )

    async def _finish_elimination(
        self,
        room: Room,
        players: Sequence[Player],
        eliminated_id: str,
        secret: Optional[PlayerSecret],
        summary: List[VoteCount],
        expect_pending: bool,
        secret_updates: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> TallyResult:
        role = secret.role if secret else Role.CIVILIAN
        remaining = [p for p in players if p.is_alive and p.id != eliminated_id]
        roles = {s.player_id: s.role for s in await self.store.get_secrets(room.id)}
        winner = self.evaluator.evaluate(roles.get(p.id, Role.CIVILIAN) for p in remaining)

        if winner:
            result = VoteResult(
                room_id=room.id,
                round=room.current_round,
                eliminated_player_id=eliminated_id,
                eliminated_role=role,
                eliminated_word=secret.word if secret else None,
                game_over=True,
                winner=winner,
            )
            room_updates = self._end_game(room, winner)
        else:
            result = VoteResult(
                room_id=room.id,
                round=room.current_round,
                eliminated_player_id=eliminated_id,
                eliminated_role=role,
            )
            room_updates = self._advance_round(room)

        await self._commit(
            room, result,
            expect_pending=expect_pending,
            room_updates=room_updates,
            player_updates={eliminated_id: {"is_alive": False}},
            secret_updates=secret_updates,
        )
        return self._to_tally_result(result, summary)

    async def _commit(self, room: Room, result: VoteResult, *, expect_pending: bool, **updates) -> None:
        await self.store.commit_round(
            room.id, room.current_round, result, expect_pending=expect_pending, **updates
        )
        await self._notify(room.id)

    async def _civilian_word(self, room_id: str) -> Optional[str]:
        for secret in await self.store.get_secrets(room_id):
            if secret.role == Role.CIVILIAN and secret.word:
                return secret.word
        return None

    def _summary(
        self, players: Sequence[Player], votes: Sequence[Vote], eliminated_id: Optional[str]
    ) -> List[VoteCount]:
        """Vote summary over the players who were alive when the round was voted."""
        candidates = [p for p in players if p.is_alive or p.id == eliminated_id]
        return self.tally_engine.count(candidates, votes).summary

    async def _replay_last_result(self, room: Room, players: Sequence[Player]) -> Optional[TallyResult]:
        results = await self.store.get_vote_results(room.id)
        if not results:
            return None
        last = results[-1]
        votes = await self.store.get_votes(room.id, last.round)
        logger.info(f"[{room.id}] Round {last.round} already tallied — returning recorded result")
        return self._to_tally_result(last, self._summary(players, votes, last.eliminated_player_id))

    @staticmethod
    def _to_tally_result(result: VoteResult, summary: List[VoteCount]) -> TallyResult:
        if result.awaiting_guess:
            outcome = TallyOutcome.AWAITING_GUESS
        elif result.game_over:
            outcome = TallyOutcome.GAME_OVER
        elif result.eliminated_player_id is None:
            outcome = TallyOutcome.TIE
        else:
            outcome = TallyOutcome.ELIMINATED
        return TallyResult(
            outcome=outcome,
            round=result.round,
            eliminated_id=result.eliminated_player_id,
            eliminated_role=result.eliminated_role,
            eliminated_word=result.eliminated_word,
            winner=result.winner,
            vote_summary=summary,
        )

    # ── Secrets ───────────────────────────────────────────────────────────────

    async def get_secret(self, room_id: str, user_id: str) -> Dict[str, Any]:
        """The caller's own role and word, never anyone else's."""
        room, player = await self._require_member(room_id, user_id)
        secret = None
        if room.status != RoomStatus.LOBBY:
            secret = await self.store.get_secret(room_id, player.id)
        if not secret:
            raise NotFoundError("No secret dealt for you yet", "secret_not_found")
        return {
            "player_id": player.id,
            "role": secret.role.value,
            "word": secret.word,
            "mr_white_answer": secret.mr_white_answer,
        }

    async def submit_mr_white_answer(self, room_id: str, user_id: str, answer: str) -> None:
        """Mr. White stores a guess ahead of time; the tally uses it when no guess is passed."""
        room, player = await self._require_member(room_id, user_id)
        if room.status not in (RoomStatus.PLAYING, RoomStatus.VOTING):
            raise ValidationError("Answers can only be stored during a game", "wrong_phase")
        cleaned = (answer or "").strip()
        if not cleaned:
            raise ValidationError("An answer is required", "missing_field")
        secret = await self.store.get_secret(room_id, player.id)
        if not secret or secret.role != Role.MR_WHITE:
            raise AuthorizationError("Only Mr. White can store an answer", "not_mr_white")
        await self.store.update_secret(room_id, player.id, {"mr_white_answer": cleaned})
        logger.info(f"[{room_id}] Mr. White stored an answer")

    # ── Public reads ──────────────────────────────────────────────────────────

    async def get_room_state(self, room_id: str) -> Dict[str, Any]:
        """Public room snapshot. Roles and words are never included."""
        room = await self._require_room(room_id)
        players = await self.store.get_players(room_id)
        return {
            "room": room.to_public(),
            "players": [p.to_public() for p in players],
            "player_count": len(players),
        }

    async def get_room_by_code(self, room_code: str) -> Dict[str, Any]:
        room = await self.store.get_room_by_code(room_code or "")
        if not room:
            raise NotFoundError("Room not found", "room_not_found")
        return await self.get_room_state(room.id)


_room_manager: Optional[RoomLifecycleManager] = None


def get_room_manager() -> RoomLifecycleManager:
    """Lazy singleton wired to the configured store and notifier.
    Use as a FastAPI dependency: Depends(get_room_manager)
    """
    global _room_manager
    if _room_manager is None:
        _room_manager = RoomLifecycleManager(get_store(), get_notifier())
    return _room_manager

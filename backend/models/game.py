from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid

from models.session import SessionContext


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    CIVILIAN = "civilian"
    UNDERCOVER = "undercover"
    MR_WHITE = "mrwhite"  # holds no word; may win outright by guessing the civilian word


class RoomStatus(str, Enum):
    LOBBY = "lobby"      # waiting for players to join and ready up
    PLAYING = "playing"  # words dealt, discussion in progress
    VOTING = "voting"
    RESULT = "result"    # game over, reveal available


class Winner(str, Enum):
    CIVILIAN = "civilian"
    UNDERCOVER = "undercover"  # the whole non-civilian faction (undercover + mrwhite)
    MR_WHITE = "mrwhite"


class TallyOutcome(str, Enum):
    TIE = "tie"
    ELIMINATED = "eliminated"
    AWAITING_GUESS = "awaiting_guess"
    GAME_OVER = "game_over"


class RoomSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    undercover_count: int = Field(1, alias="undercoverCount")
    mr_white_count: int = Field(0, alias="mrWhiteCount")

    @property
    def special_count(self) -> int:
        return self.undercover_count + self.mr_white_count


class Room(BaseModel):
    id: str = Field(default_factory=_new_id)
    room_code: str
    status: RoomStatus = RoomStatus.LOBBY
    current_round: int = 0
    host_id: str
    settings: RoomSettings = Field(default_factory=RoomSettings)
    created_at: datetime = Field(default_factory=_utcnow)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "room_code": self.room_code,
            "status": self.status.value,
            "current_round": self.current_round,
            "host_id": self.host_id,
            "settings": self.settings.model_dump(by_alias=True),
        }


class Player(BaseModel):
    id: str = Field(default_factory=_new_id)
    room_id: str
    user_id: str
    name: str
    is_ready: bool = False
    is_alive: bool = True
    joined_at: datetime = Field(default_factory=_utcnow)

    def to_public(self) -> Dict[str, Any]:
        """Safe representation. Secrets live in PlayerSecret, never here."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "is_ready": self.is_ready,
            "is_alive": self.is_alive,
        }


class PlayerSecret(BaseModel):
    player_id: str
    room_id: str
    user_id: str
    role: Role
    word: Optional[str] = None  # None for Mr. White
    mr_white_answer: Optional[str] = None


class Vote(BaseModel):
    room_id: str
    round: int
    voter_id: str
    target_player_id: str
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> str:
        return f"{self.round}_{self.voter_id}"


class VoteResult(BaseModel):
    room_id: str
    round: int
    eliminated_player_id: Optional[str] = None  # None on a tie
    eliminated_role: Optional[Role] = None
    eliminated_word: Optional[str] = None  # only recorded once the game is over
    game_over: bool = False
    winner: Optional[Winner] = None
    awaiting_guess: bool = False  # Mr. White eliminated, guess not yet resolved
    created_at: datetime = Field(default_factory=_utcnow)


class VoteCount(BaseModel):
    player_id: str
    name: str
    votes: int


class TallyResult(BaseModel):
    outcome: TallyOutcome
    round: int
    eliminated_id: Optional[str] = None
    eliminated_role: Optional[Role] = None
    eliminated_word: Optional[str] = None
    winner: Optional[Winner] = None
    vote_summary: List[VoteCount] = []


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    host_name: Optional[str] = None  # when set, the host joins as the first player


class CreateRoomResponse(BaseModel):
    room_id: str
    room_code: str
    player_id: Optional[str] = None


class JoinRoomRequest(BaseModel):
    room_code: str
    name: str


class JoinRoomResponse(BaseModel):
    room: Dict[str, Any]
    player: Dict[str, Any]
    session: Optional[SessionContext] = None


class CastVoteRequest(BaseModel):
    round: int
    voter_id: str
    target_id: str


class TallyRequest(BaseModel):
    guess: Optional[str] = None


class MrWhiteAnswerRequest(BaseModel):
    answer: str

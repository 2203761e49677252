"""
Role Assignment — deterministic role shuffling over a curated word list.

Responsibilities:
- Pick one civilian/undercover word pair for the game
- Shuffle the roster and deal undercover, Mr. White and civilian roles
- Produce exactly one PlayerSecret per player

Called once by the RoomLifecycleManager when the host starts a game. The
assigner never touches storage: the manager writes the secrets as a single
batch so a failed write leaves no partial deal behind.
"""
import logging
import random
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel

from agents.word_pairs import WORD_PAIRS
from errors import ValidationError
from models.game import Player, PlayerSecret, Role, RoomSettings

logger = logging.getLogger(__name__)


class Assignment(BaseModel):
    civilian_word: str
    undercover_word: str
    secrets: List[PlayerSecret]


class RoleAssigner:
    """
    Deals secret roles and words for a new game.

    The first `undercover_count` players of the shuffled roster become
    undercover, the next `mr_white_count` become Mr. White (no word), and
    everyone else is a civilian.
    """

    MIN_PLAYERS = 3

    def __init__(
        self,
        word_pairs: Optional[Sequence[Tuple[str, str]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.word_pairs = list(word_pairs or WORD_PAIRS)
        self.rng = rng or random.SystemRandom()

    def pick_words(self) -> Tuple[str, str]:
        """Return (civilian_word, undercover_word). Pairs are unordered, so the
        side dealt to civilians is chosen at random too."""
        first, second = self.rng.choice(self.word_pairs)
        if self.rng.random() < 0.5:
            return first, second
        return second, first

    def shuffle(self, players: Sequence[Player]) -> List[Player]:
        # Fisher–Yates, walking down from the end
        roster = list(players)
        for i in range(len(roster) - 1, 0, -1):
            j = self.rng.randint(0, i)
            roster[i], roster[j] = roster[j], roster[i]
        return roster

    def assign(self, players: Sequence[Player], settings: RoomSettings) -> Assignment:
        n = len(players)
        u = settings.undercover_count
        m = settings.mr_white_count
        if n < self.MIN_PLAYERS:
            raise ValidationError(
                f"Need at least {self.MIN_PLAYERS} players to start; got {n}.",
                "not_enough_players",
            )
        if u < 1 or m < 0:
            raise ValidationError(
                "A game needs at least one undercover and a non-negative Mr. White count.",
                "invalid_settings",
            )
        if settings.special_count >= n:
            raise ValidationError(
                f"Too many special roles ({u} undercover + {m} Mr. White) for {n} players.",
                "too_many_special_roles",
            )

        civilian_word, undercover_word = self.pick_words()
        secrets: List[PlayerSecret] = []
        for i, player in enumerate(self.shuffle(players)):
            if i < u:
                role, word = Role.UNDERCOVER, undercover_word
            elif i < u + m:
                role, word = Role.MR_WHITE, None
            else:
                role, word = Role.CIVILIAN, civilian_word
            secrets.append(PlayerSecret(
                player_id=player.id,
                room_id=player.room_id,
                user_id=player.user_id,
                role=role,
                word=word,
            ))

        logger.info(
            "Dealt %d secrets: %d undercover, %d Mr. White, %d civilian",
            n, u, m, n - u - m,
        )
        return Assignment(
            civilian_word=civilian_word,
            undercover_word=undercover_word,
            secrets=secrets,
        )


# Module-level singleton
role_assigner = RoleAssigner()

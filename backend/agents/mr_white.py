"""
Mr. White's last chance.

When Mr. White is voted out they get one guess at the civilian word. A
correct guess wins the game outright, whatever else is still alive. Until a
guess arrives the round stays open: the elimination is recorded, but the
round does not advance and no win condition is checked.
"""
import logging
from typing import Optional

from models.game import Role, VoteResult, Winner

logger = logging.getLogger(__name__)


class MrWhiteGuessHandler:

    def applies_to(self, role: Optional[Role]) -> bool:
        return role == Role.MR_WHITE

    def effective_guess(self, guess: Optional[str], stored_answer: Optional[str]) -> Optional[str]:
        """An explicit guess wins over the answer Mr. White stored earlier.
        Blank strings count as no guess at all."""
        for candidate in (guess, stored_answer):
            if candidate is not None and candidate.strip():
                return candidate
        return None

    def is_correct(self, guess: Optional[str], civilian_word: Optional[str]) -> bool:
        """Exact, case-sensitive match after trimming surrounding whitespace."""
        if not guess or not civilian_word:
            return False
        answer = guess.strip()
        return bool(answer) and answer == civilian_word.strip()

    def awaiting_result(self, room_id: str, round: int, eliminated_id: str) -> VoteResult:
        logger.info("[%s] Mr. White eliminated in round %d — awaiting guess", room_id, round)
        return VoteResult(
            room_id=room_id,
            round=round,
            eliminated_player_id=eliminated_id,
            eliminated_role=Role.MR_WHITE,
            game_over=False,
            winner=None,
            awaiting_guess=True,
        )

    def winning_result(self, room_id: str, round: int, eliminated_id: str) -> VoteResult:
        logger.info("[%s] Mr. White guessed the civilian word — Mr. White wins", room_id)
        return VoteResult(
            room_id=room_id,
            round=round,
            eliminated_player_id=eliminated_id,
            eliminated_role=Role.MR_WHITE,
            eliminated_word=None,
            game_over=True,
            winner=Winner.MR_WHITE,
        )


# Module-level singleton
mr_white_handler = MrWhiteGuessHandler()

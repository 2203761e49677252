"""
Win condition checks.

Civilians win once no undercover or Mr. White is left alive. The non-civilian
faction (undercover and Mr. White together) wins when it survives down to the
last two players.
"""
from typing import Iterable, Optional

from models.game import Role, Winner


class WinConditionEvaluator:

    FINAL_PLAYER_COUNT = 2

    def evaluate(self, alive_roles: Iterable[Role]) -> Optional[Winner]:
        """Return the winning faction, or None if the game continues."""
        roles = list(alive_roles)
        non_civilians = sum(1 for r in roles if r != Role.CIVILIAN)

        if non_civilians == 0:
            return Winner.CIVILIAN
        if len(roles) <= self.FINAL_PLAYER_COUNT:
            return Winner.UNDERCOVER
        return None


# Module-level singleton
win_evaluator = WinConditionEvaluator()

"""
Vote tallying — pure counting, no storage.

A round resolves only when every alive player has voted. Counts are taken
over alive players only; anyone nobody voted for still appears with 0.
A tie at the top means nobody is eliminated this round.
"""
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from errors import ValidationError
from models.game import Player, Vote, VoteCount

logger = logging.getLogger(__name__)


class VoteTally(BaseModel):
    counts: Dict[str, int]
    summary: List[VoteCount]
    leaders: List[str]  # player ids holding the maximum count

    @property
    def is_tie(self) -> bool:
        return len(self.leaders) != 1

    @property
    def eliminated_id(self) -> Optional[str]:
        return None if self.is_tie else self.leaders[0]


class VoteTallyEngine:

    def ensure_complete(self, alive_players: Sequence[Player], votes: Sequence[Vote]) -> None:
        """Raise unless every alive player has a vote in for this round."""
        alive_ids = {p.id for p in alive_players}
        voted = {v.voter_id for v in votes if v.voter_id in alive_ids}
        if len(voted) != len(alive_ids):
            raise ValidationError(
                f"Not all votes are in yet ({len(voted)}/{len(alive_ids)})",
                "votes_incomplete",
            )

    def count(self, candidates: Sequence[Player], votes: Sequence[Vote]) -> VoteTally:
        """
        Count votes for `candidates` (the alive players).

        Votes targeting anyone outside `candidates` are ignored. The summary is
        sorted by votes descending, ties kept in join order.
        """
        counts: Dict[str, int] = {p.id: 0 for p in candidates}
        for vote in votes:
            if vote.target_player_id in counts:
                counts[vote.target_player_id] += 1

        summary = sorted(
            (VoteCount(player_id=p.id, name=p.name, votes=counts[p.id]) for p in candidates),
            key=lambda c: -c.votes,
        )
        max_votes = max(counts.values(), default=0)
        leaders = [pid for pid, count in counts.items() if count == max_votes]
        return VoteTally(counts=counts, summary=summary, leaders=leaders)

    def tally(self, alive_players: Sequence[Player], votes: Sequence[Vote]) -> VoteTally:
        self.ensure_complete(alive_players, votes)
        result = self.count(alive_players, votes)
        if result.is_tie:
            logger.info("Vote tie between %s — no elimination", result.leaders)
        else:
            logger.info(
                "Vote result: %s eliminated with %d votes",
                result.eliminated_id, result.counts[result.eliminated_id],
            )
        return result


# Module-level singleton
vote_tally_engine = VoteTallyEngine()

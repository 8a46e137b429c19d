"""Agent queue: roster, score ledger and ranking."""

from .ledger import ScoreLedger
from .ranking import RankingTable, rank_key
from .roster import AgentRoster

__all__ = [
    "ScoreLedger",
    "RankingTable",
    "rank_key",
    "AgentRoster",
]

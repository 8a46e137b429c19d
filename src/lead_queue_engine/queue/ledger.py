"""Append-only score ledger for queue agents."""

import logging
import sqlite3
from datetime import datetime
from typing import Callable, Iterator, Optional

from ..core.errors import AgentNotFound, LedgerIntegrityFault
from ..storage.database import QueueDatabase
from ..storage.models import LedgerAction, ScoreLedgerEntry

logger = logging.getLogger(__name__)


class ScoreLedger:
    """Record of point deltas per agent; the score is the running sum.

    Every score change, automatic or administrative, goes through
    ``record_event``. The cached ``agent_queue.score`` column moves in the
    same transaction as the appended entry, but reads that need the true
    score use ``current_score`` which sums the ledger itself.
    """

    def __init__(self, db: QueueDatabase, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    def record_event(
        self,
        agent_id: str,
        action: LedgerAction,
        points: int,
        description: Optional[str] = None,
        lead_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None
    ) -> int:
        """Append an entry. Returns the new entry id.

        Pass ``conn`` to make the entry part of a larger transaction.
        """
        if conn is None:
            with self.db.connection() as conn:
                return self.record_event(agent_id, action, points, description, lead_id, conn)

        if self.db.get_agent(agent_id, conn) is None:
            raise AgentNotFound(agent_id)

        entry_id = self.db.insert_ledger_entry(
            conn, agent_id, action, int(points), description, lead_id, self.clock()
        )
        logger.debug(f"Ledger {entry_id}: {agent_id} {action.value} {points:+d}")
        return entry_id

    def current_score(self, agent_id: str) -> int:
        """Sum of all ledger points for the agent."""
        return self.db.ledger_sum(agent_id)

    def cached_score(self, agent_id: str) -> int:
        agent = self.db.get_agent(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent.score

    def verify(self, agent_id: str):
        """Raise LedgerIntegrityFault if the cached score diverged."""
        cached = self.cached_score(agent_id)
        ledger = self.current_score(agent_id)
        if cached != ledger:
            raise LedgerIntegrityFault(agent_id, cached, ledger)

    def reconcile(self, agent_id: str) -> bool:
        """Repair a diverged cache from the ledger, with an audit record.

        Returns True if the cache was corrected.
        """
        try:
            self.verify(agent_id)
            return False
        except LedgerIntegrityFault as fault:
            logger.warning(f"Reconciling score cache: {fault}")
            return self.db.overwrite_cached_score(
                agent_id,
                fault.cached,
                fault.ledger,
                note=str(fault),
                at=self.clock(),
            )

    def history(
        self,
        agent_id: str,
        limit: int = 50,
        cursor: Optional[int] = None
    ) -> Iterator[ScoreLedgerEntry]:
        """Yield up to ``limit`` entries newest first, older than ``cursor``.

        Pass the id of the last entry seen as ``cursor`` to get the next page.
        Calling again with the same arguments restarts the same sequence.
        """
        if limit <= 0:
            return
        yield from self.db.ledger_page(agent_id, limit, before_id=cursor)

    def iter_history(self, agent_id: str, page_size: int = 100) -> Iterator[ScoreLedgerEntry]:
        """Walk the agent's whole history lazily, one page at a time."""
        cursor = None
        while True:
            page = list(self.history(agent_id, page_size, cursor))
            yield from page
            if len(page) < page_size:
                return
            cursor = page[-1].id

    def manual_adjustment(self, agent_id: str, points: int, description: str) -> int:
        """Administrative delta. A description is mandatory."""
        if not description or not description.strip():
            raise ValueError("Manual adjustments require a description")
        entry_id = self.record_event(
            agent_id, LedgerAction.MANUAL_ADJUSTMENT, points, description.strip()
        )
        logger.info(f"Manual score adjustment for {agent_id}: {points:+d} ({description})")
        return entry_id

    def set_score(self, agent_id: str, new_score: int, reason: str) -> Optional[int]:
        """Bring the agent's score to ``new_score`` with one adjustment entry.

        Returns the entry id, or None when the score is already there.
        """
        if new_score < 0:
            raise ValueError("Score must be a non-negative integer")
        if not reason or not reason.strip():
            raise ValueError("Manual adjustments require a description")

        # Sum and delta are computed under the write lock
        with self.db.connection(immediate=True) as conn:
            if self.db.get_agent(agent_id, conn) is None:
                raise AgentNotFound(agent_id)
            prior = conn.execute(
                "SELECT COALESCE(SUM(points), 0) FROM score_ledger WHERE agent_id = ?",
                (agent_id,)
            ).fetchone()[0]
            delta = new_score - prior
            if delta == 0:
                return None
            description = f"{reason.strip()} (set score {prior} -> {new_score})"
            entry_id = self.record_event(
                agent_id, LedgerAction.MANUAL_ADJUSTMENT, delta, description, conn=conn
            )

        logger.info(f"Score for {agent_id} set to {new_score} ({delta:+d})")
        return entry_id

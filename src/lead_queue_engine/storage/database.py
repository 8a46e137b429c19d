"""SQLite storage for the lead queue with conditional (compare-and-set) updates."""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Generator, Iterable, Set

from .models import (
    AgentQueueEntry,
    AgentStatus,
    DistributionMode,
    DistributionSettings,
    Lead,
    LeadEvent,
    LeadOffer,
    LeadSource,
    LeadStatus,
    LedgerAction,
    OfferOutcome,
    ScoreLedgerEntry,
)
from ..core.errors import StorageFault


def to_ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp so that string order matches time order."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def from_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class QueueDatabase:
    """SQLite database holding agents, leads, offers and the score ledger."""

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 30.0):
        """Initialize database connection."""
        if db_path is None:
            db_path = Path.home() / ".lead-queue-engine" / "queue.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

        self._init_db()

    @contextmanager
    def connection(self, immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection; commits on success, rolls back on any error.

        ``immediate`` takes the write lock up front so reads made inside the
        transaction cannot go stale before its writes land.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StorageFault(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageFault(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")

            # Agents participating in distribution (never hard-deleted)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS agent_queue (
                    agent_id TEXT PRIMARY KEY,
                    team_id TEXT NOT NULL DEFAULT 'default',
                    score INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'ACTIVE',

                    active_lead_count INTEGER NOT NULL DEFAULT 0,
                    bonus_lead_count INTEGER NOT NULL DEFAULT 0,
                    total_accepted INTEGER NOT NULL DEFAULT 0,
                    total_rejected INTEGER NOT NULL DEFAULT 0,
                    total_expired INTEGER NOT NULL DEFAULT 0,

                    last_activity_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            # Append-only score ledger
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS score_ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    points INTEGER NOT NULL,
                    description TEXT,
                    lead_id TEXT,
                    created_at TEXT NOT NULL,

                    FOREIGN KEY (agent_id) REFERENCES agent_queue(agent_id)
                )
            """)
            cursor.execute("""
                CREATE TRIGGER IF NOT EXISTS score_ledger_no_update
                BEFORE UPDATE ON score_ledger
                BEGIN
                    SELECT RAISE(ABORT, 'score_ledger is append-only');
                END
            """)
            cursor.execute("""
                CREATE TRIGGER IF NOT EXISTS score_ledger_no_delete
                BEFORE DELETE ON score_ledger
                BEGIN
                    SELECT RAISE(ABORT, 'score_ledger is append-only');
                END
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS leads (
                    lead_id TEXT PRIMARY KEY,
                    team_id TEXT NOT NULL DEFAULT 'default',
                    property_ref TEXT NOT NULL,
                    contact_ref TEXT NOT NULL,

                    status TEXT NOT NULL DEFAULT 'PENDING',
                    distribution_mode TEXT NOT NULL,
                    reservation_ttl_seconds INTEGER NOT NULL,
                    source TEXT NOT NULL DEFAULT 'board',
                    referrer_agent_id TEXT,

                    reserved_agent_id TEXT,
                    reserved_until TEXT,
                    assigned_agent_id TEXT,

                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    responded_at TEXT,
                    completed_at TEXT,
                    last_contact_at TEXT,

                    version INTEGER NOT NULL DEFAULT 0,

                    CHECK (status != 'RESERVED'
                           OR (reserved_agent_id IS NOT NULL AND reserved_until IS NOT NULL))
                )
            """)

            # One row per reservation granted; the exclusion set of a lead
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS lead_offers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    lead_id TEXT NOT NULL,
                    agent_id TEXT NOT NULL,
                    offered_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    outcome TEXT NOT NULL DEFAULT 'PENDING',
                    resolved_at TEXT,
                    via TEXT NOT NULL DEFAULT 'policy',

                    FOREIGN KEY (lead_id) REFERENCES leads(lead_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS lead_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    lead_id TEXT NOT NULL,
                    from_status TEXT,
                    to_status TEXT NOT NULL,
                    agent_id TEXT,
                    detail TEXT,
                    created_at TEXT NOT NULL,

                    FOREIGN KEY (lead_id) REFERENCES leads(lead_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS distribution_settings (
                    team_id TEXT PRIMARY KEY,
                    mode TEXT NOT NULL,
                    reservation_ttl_seconds INTEGER,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS integrity_audit (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    cached_score INTEGER NOT NULL,
                    ledger_score INTEGER NOT NULL,
                    note TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            # Indexes for common queries
            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_offers_one_pending
                ON lead_offers(lead_id) WHERE outcome = 'PENDING'
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_ledger_agent ON score_ledger(agent_id, id DESC)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_leads_status ON leads(status, reserved_until)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_offers_lead ON lead_offers(lead_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_lead ON lead_events(lead_id)
            """)

    # === ROW MAPPING ===

    def _row_to_agent(self, row: sqlite3.Row) -> AgentQueueEntry:
        """Convert a database row to an AgentQueueEntry."""
        return AgentQueueEntry(
            agent_id=row["agent_id"],
            team_id=row["team_id"],
            score=row["score"],
            status=AgentStatus(row["status"]),
            active_lead_count=row["active_lead_count"],
            bonus_lead_count=row["bonus_lead_count"],
            total_accepted=row["total_accepted"],
            total_rejected=row["total_rejected"],
            total_expired=row["total_expired"],
            last_activity_at=from_ts(row["last_activity_at"]),
            created_at=from_ts(row["created_at"]),
        )

    def _row_to_lead(self, row: sqlite3.Row) -> Lead:
        """Convert a database row to a Lead."""
        return Lead(
            lead_id=row["lead_id"],
            team_id=row["team_id"],
            property_ref=row["property_ref"],
            contact_ref=row["contact_ref"],
            status=LeadStatus(row["status"]),
            distribution_mode=DistributionMode(row["distribution_mode"]),
            reservation_ttl_seconds=row["reservation_ttl_seconds"],
            source=LeadSource(row["source"]),
            referrer_agent_id=row["referrer_agent_id"],
            reserved_agent_id=row["reserved_agent_id"],
            reserved_until=from_ts(row["reserved_until"]),
            assigned_agent_id=row["assigned_agent_id"],
            created_at=from_ts(row["created_at"]),
            updated_at=from_ts(row["updated_at"]),
            responded_at=from_ts(row["responded_at"]),
            completed_at=from_ts(row["completed_at"]),
            last_contact_at=from_ts(row["last_contact_at"]),
            version=row["version"],
        )

    def _row_to_entry(self, row: sqlite3.Row) -> ScoreLedgerEntry:
        return ScoreLedgerEntry(
            id=row["id"],
            agent_id=row["agent_id"],
            action=LedgerAction(row["action"]),
            points=row["points"],
            description=row["description"],
            lead_id=row["lead_id"],
            created_at=from_ts(row["created_at"]),
        )

    def _row_to_offer(self, row: sqlite3.Row) -> LeadOffer:
        return LeadOffer(
            id=row["id"],
            lead_id=row["lead_id"],
            agent_id=row["agent_id"],
            offered_at=from_ts(row["offered_at"]),
            expires_at=from_ts(row["expires_at"]),
            outcome=OfferOutcome(row["outcome"]),
            resolved_at=from_ts(row["resolved_at"]),
            via=row["via"],
        )

    def _row_to_event(self, row: sqlite3.Row) -> LeadEvent:
        return LeadEvent(
            id=row["id"],
            lead_id=row["lead_id"],
            from_status=LeadStatus(row["from_status"]) if row["from_status"] else None,
            to_status=LeadStatus(row["to_status"]),
            agent_id=row["agent_id"],
            detail=row["detail"],
            created_at=from_ts(row["created_at"]),
        )

    # === AGENTS ===

    def insert_agent(self, entry: AgentQueueEntry) -> bool:
        """Insert an agent; returns False if it already exists."""
        with self.connection() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO agent_queue (
                    agent_id, team_id, score, status, bonus_lead_count,
                    last_activity_at, created_at
                ) VALUES (?, ?, 0, ?, ?, ?, ?)
            """, (
                entry.agent_id,
                entry.team_id,
                entry.status.value,
                entry.bonus_lead_count,
                to_ts(entry.last_activity_at),
                to_ts(entry.created_at),
            ))
            return cursor.rowcount == 1

    def get_agent(
        self,
        agent_id: str,
        conn: Optional[sqlite3.Connection] = None
    ) -> Optional[AgentQueueEntry]:
        """Get an agent queue entry by id."""
        if conn is not None:
            row = conn.execute(
                "SELECT * FROM agent_queue WHERE agent_id = ?", (agent_id,)
            ).fetchone()
            return self._row_to_agent(row) if row else None

        with self.connection() as conn:
            return self.get_agent(agent_id, conn)

    def list_agents(
        self,
        team_id: Optional[str] = None,
        status: Optional[AgentStatus] = None
    ) -> List[AgentQueueEntry]:
        """List agents with reservation counts filled in."""
        query = """
            SELECT a.*, (
                SELECT COUNT(*) FROM leads l
                WHERE l.status = 'RESERVED' AND l.reserved_agent_id = a.agent_id
            ) AS reserved_lead_count
            FROM agent_queue a WHERE 1=1
        """
        params: List[Any] = []

        if team_id:
            query += " AND a.team_id = ?"
            params.append(team_id)

        if status:
            query += " AND a.status = ?"
            params.append(status.value)

        with self.connection() as conn:
            agents = []
            for row in conn.execute(query, params).fetchall():
                agent = self._row_to_agent(row)
                agent.reserved_lead_count = row["reserved_lead_count"]
                agents.append(agent)
            return agents

    def set_agent_status(self, agent_id: str, status: AgentStatus, now: datetime) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE agent_queue SET status = ?, last_activity_at = ? WHERE agent_id = ?",
                (status.value, to_ts(now), agent_id)
            )
            return cursor.rowcount == 1

    def add_bonus_leads(self, agent_id: str, count: int) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE agent_queue SET bonus_lead_count = MAX(0, bonus_lead_count + ?) WHERE agent_id = ?",
                (count, agent_id)
            )
            return cursor.rowcount == 1

    def bump_agent_counters(
        self,
        conn: sqlite3.Connection,
        agent_id: str,
        now: Optional[datetime] = None,
        **deltas: int
    ):
        """Increment agent counters (e.g. total_accepted=1) inside a transaction."""
        allowed = {"active_lead_count", "total_accepted", "total_rejected", "total_expired"}
        sets = []
        params: List[Any] = []
        for column, delta in deltas.items():
            if column not in allowed:
                raise ValueError(f"Unknown counter: {column}")
            sets.append(f"{column} = MAX(0, {column} + ?)")
            params.append(delta)
        if now is not None:
            sets.append("last_activity_at = ?")
            params.append(to_ts(now))
        if not sets:
            return
        params.append(agent_id)
        conn.execute(f"UPDATE agent_queue SET {', '.join(sets)} WHERE agent_id = ?", params)

    def agent_response_times(self, agent_ids: Optional[Iterable[str]] = None) -> Dict[str, float]:
        """Average seconds between offer and acceptance, per agent."""
        query = """
            SELECT agent_id, offered_at, resolved_at FROM lead_offers
            WHERE outcome = 'ACCEPTED' AND resolved_at IS NOT NULL
        """
        params: List[Any] = []
        if agent_ids is not None:
            ids = list(agent_ids)
            if not ids:
                return {}
            query += f" AND agent_id IN ({', '.join('?' * len(ids))})"
            params.extend(ids)

        totals: Dict[str, List[float]] = {}
        with self.connection() as conn:
            for row in conn.execute(query, params).fetchall():
                seconds = (from_ts(row["resolved_at"]) - from_ts(row["offered_at"])).total_seconds()
                totals.setdefault(row["agent_id"], []).append(max(0.0, seconds))

        return {aid: sum(values) / len(values) for aid, values in totals.items()}

    # === LEADS ===

    def insert_lead(self, lead: Lead) -> Lead:
        """Insert a new lead and its creation event."""
        with self.connection() as conn:
            conn.execute("""
                INSERT INTO leads (
                    lead_id, team_id, property_ref, contact_ref, status,
                    distribution_mode, reservation_ttl_seconds, source, referrer_agent_id,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                lead.lead_id,
                lead.team_id,
                lead.property_ref,
                lead.contact_ref,
                lead.status.value,
                lead.distribution_mode.value,
                lead.reservation_ttl_seconds,
                lead.source.value,
                lead.referrer_agent_id,
                to_ts(lead.created_at),
                to_ts(lead.updated_at),
            ))
            self.insert_event(
                conn, lead.lead_id, None, lead.status,
                agent_id=lead.referrer_agent_id, detail="created", at=lead.created_at
            )
        return lead

    def get_lead(
        self,
        lead_id: str,
        conn: Optional[sqlite3.Connection] = None
    ) -> Optional[Lead]:
        """Get a lead by ID."""
        if conn is not None:
            row = conn.execute("SELECT * FROM leads WHERE lead_id = ?", (lead_id,)).fetchone()
            return self._row_to_lead(row) if row else None

        with self.connection() as conn:
            return self.get_lead(lead_id, conn)

    def list_leads(
        self,
        status: Optional[LeadStatus] = None,
        team_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Lead]:
        """Get leads with optional filters, newest first."""
        query = "SELECT * FROM leads WHERE 1=1"
        params: List[Any] = []

        if status:
            query += " AND status = ?"
            params.append(status.value)

        if team_id:
            query += " AND team_id = ?"
            params.append(team_id)

        if agent_id:
            query += " AND (reserved_agent_id = ? OR assigned_agent_id = ?)"
            params.extend([agent_id, agent_id])

        query += " ORDER BY created_at DESC, lead_id LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self.connection() as conn:
            return [self._row_to_lead(row) for row in conn.execute(query, params).fetchall()]

    def find_lapsed_reservations(self, now: datetime) -> List[str]:
        """Lead ids whose reservation deadline has passed."""
        with self.connection() as conn:
            cursor = conn.execute("""
                SELECT lead_id FROM leads
                WHERE status = 'RESERVED' AND reserved_until <= ?
                ORDER BY reserved_until
            """, (to_ts(now),))
            return [row[0] for row in cursor.fetchall()]

    def find_leads_in(self, statuses: Iterable[LeadStatus], created_before: Optional[datetime] = None) -> List[str]:
        """Lead ids in any of the given statuses, oldest first."""
        values = [s.value for s in statuses]
        query = f"SELECT lead_id FROM leads WHERE status IN ({', '.join('?' * len(values))})"
        params: List[Any] = list(values)
        if created_before is not None:
            query += " AND created_at <= ?"
            params.append(to_ts(created_before))
        query += " ORDER BY created_at"
        with self.connection() as conn:
            return [row[0] for row in conn.execute(query, params).fetchall()]

    def find_available_since(self, cutoff: datetime) -> List[str]:
        """AVAILABLE lead ids that entered AVAILABLE at or before ``cutoff``."""
        with self.connection() as conn:
            cursor = conn.execute("""
                SELECT l.lead_id FROM leads l
                WHERE l.status = 'AVAILABLE' AND COALESCE(
                    (SELECT MAX(e.created_at) FROM lead_events e
                     WHERE e.lead_id = l.lead_id AND e.to_status = 'AVAILABLE'),
                    l.updated_at
                ) <= ?
                ORDER BY l.created_at
            """, (to_ts(cutoff),))
            return [row[0] for row in cursor.fetchall()]

    def compare_and_set_lead(
        self,
        conn: sqlite3.Connection,
        lead_id: str,
        expected: Iterable[LeadStatus],
        changes: Dict[str, Any],
        now: datetime,
        conditions: Optional[Dict[str, Any]] = None,
        live_at: Optional[datetime] = None,
        lapsed_at: Optional[datetime] = None
    ) -> bool:
        """Apply changes only if the lead is still in an expected state.

        ``conditions`` adds equality predicates (e.g. the reservation holder);
        ``live_at`` additionally requires ``reserved_until > live_at`` and
        ``lapsed_at`` requires ``reserved_until <= lapsed_at``.
        Returns True if this caller won the update.
        """
        sets = []
        params: List[Any] = []
        for column, value in changes.items():
            sets.append(f"{column} = ?")
            if isinstance(value, datetime):
                value = to_ts(value)
            elif isinstance(value, (LeadStatus, DistributionMode, LeadSource)):
                value = value.value
            params.append(value)
        sets.append("updated_at = ?")
        params.append(to_ts(now))
        sets.append("version = version + 1")

        statuses = [s.value for s in expected]
        where = ["lead_id = ?", f"status IN ({', '.join('?' * len(statuses))})"]
        params.append(lead_id)
        params.extend(statuses)

        for column, value in (conditions or {}).items():
            where.append(f"{column} = ?")
            params.append(value)

        if live_at is not None:
            where.append("reserved_until > ?")
            params.append(to_ts(live_at))

        if lapsed_at is not None:
            where.append("reserved_until <= ?")
            params.append(to_ts(lapsed_at))

        cursor = conn.execute(
            f"UPDATE leads SET {', '.join(sets)} WHERE {' AND '.join(where)}",
            params
        )
        return cursor.rowcount == 1

    def update_contact(self, lead_id: str, at: datetime) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE leads SET last_contact_at = ?, updated_at = ? WHERE lead_id = ?",
                (to_ts(at), to_ts(at), lead_id)
            )
            return cursor.rowcount == 1

    # === OFFERS ===

    def insert_offer(self, conn: sqlite3.Connection, offer: LeadOffer) -> int:
        cursor = conn.execute("""
            INSERT INTO lead_offers (lead_id, agent_id, offered_at, expires_at, outcome, via)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            offer.lead_id,
            offer.agent_id,
            to_ts(offer.offered_at),
            to_ts(offer.expires_at),
            offer.outcome.value,
            offer.via,
        ))
        return cursor.lastrowid

    def resolve_offer(
        self,
        conn: sqlite3.Connection,
        lead_id: str,
        agent_id: str,
        outcome: OfferOutcome,
        at: datetime
    ) -> Optional[LeadOffer]:
        """Close the pending offer for a lead, returning it."""
        row = conn.execute("""
            SELECT * FROM lead_offers
            WHERE lead_id = ? AND agent_id = ? AND outcome = 'PENDING'
        """, (lead_id, agent_id)).fetchone()
        if not row:
            return None
        conn.execute(
            "UPDATE lead_offers SET outcome = ?, resolved_at = ? WHERE id = ?",
            (outcome.value, to_ts(at), row["id"])
        )
        offer = self._row_to_offer(row)
        offer.outcome = outcome
        offer.resolved_at = at
        return offer

    def offered_agents(self, lead_id: str) -> Set[str]:
        """Agents already offered this lead (its exclusion set)."""
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT DISTINCT agent_id FROM lead_offers WHERE lead_id = ?", (lead_id,)
            )
            return {row[0] for row in cursor.fetchall()}

    def last_offer(self, conn: sqlite3.Connection, lead_id: str, agent_id: str) -> Optional[LeadOffer]:
        row = conn.execute("""
            SELECT * FROM lead_offers WHERE lead_id = ? AND agent_id = ?
            ORDER BY id DESC LIMIT 1
        """, (lead_id, agent_id)).fetchone()
        return self._row_to_offer(row) if row else None

    def list_offers(
        self,
        lead_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        since: Optional[datetime] = None
    ) -> List[LeadOffer]:
        query = "SELECT * FROM lead_offers WHERE 1=1"
        params: List[Any] = []
        if lead_id:
            query += " AND lead_id = ?"
            params.append(lead_id)
        if agent_id:
            query += " AND agent_id = ?"
            params.append(agent_id)
        if since:
            query += " AND offered_at >= ?"
            params.append(to_ts(since))
        query += " ORDER BY id"
        with self.connection() as conn:
            return [self._row_to_offer(row) for row in conn.execute(query, params).fetchall()]

    # === EVENTS ===

    def insert_event(
        self,
        conn: sqlite3.Connection,
        lead_id: str,
        from_status: Optional[LeadStatus],
        to_status: LeadStatus,
        agent_id: Optional[str] = None,
        detail: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> int:
        cursor = conn.execute("""
            INSERT INTO lead_events (lead_id, from_status, to_status, agent_id, detail, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            lead_id,
            from_status.value if from_status else None,
            to_status.value,
            agent_id,
            detail,
            to_ts(at or datetime.now()),
        ))
        return cursor.lastrowid

    def get_events(self, lead_id: str, limit: int = 100) -> List[LeadEvent]:
        """Status history for a lead, oldest first."""
        with self.connection() as conn:
            cursor = conn.execute("""
                SELECT * FROM lead_events WHERE lead_id = ?
                ORDER BY id LIMIT ?
            """, (lead_id, limit))
            return [self._row_to_event(row) for row in cursor.fetchall()]

    # === LEDGER ===

    def insert_ledger_entry(
        self,
        conn: sqlite3.Connection,
        agent_id: str,
        action: LedgerAction,
        points: int,
        description: Optional[str],
        lead_id: Optional[str],
        at: datetime
    ) -> int:
        """Append a ledger entry and move the cached score by the same delta."""
        cursor = conn.execute("""
            INSERT INTO score_ledger (agent_id, action, points, description, lead_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (agent_id, action.value, points, description, lead_id, to_ts(at)))
        entry_id = cursor.lastrowid
        conn.execute(
            "UPDATE agent_queue SET score = score + ?, last_activity_at = ? WHERE agent_id = ?",
            (points, to_ts(at), agent_id)
        )
        return entry_id

    def ledger_sum(self, agent_id: str) -> int:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(points), 0) FROM score_ledger WHERE agent_id = ?",
                (agent_id,)
            ).fetchone()
            return row[0]

    def ledger_page(
        self,
        agent_id: str,
        limit: int,
        before_id: Optional[int] = None
    ) -> List[ScoreLedgerEntry]:
        """Entries newest first, strictly older than ``before_id``."""
        query = "SELECT * FROM score_ledger WHERE agent_id = ?"
        params: List[Any] = [agent_id]
        if before_id is not None:
            query += " AND id < ?"
            params.append(before_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self.connection() as conn:
            return [self._row_to_entry(row) for row in conn.execute(query, params).fetchall()]

    def ledger_entries_since(self, since: Optional[datetime] = None) -> List[ScoreLedgerEntry]:
        query = "SELECT * FROM score_ledger"
        params: List[Any] = []
        if since:
            query += " WHERE created_at >= ?"
            params.append(to_ts(since))
        query += " ORDER BY id"
        with self.connection() as conn:
            return [self._row_to_entry(row) for row in conn.execute(query, params).fetchall()]

    def overwrite_cached_score(self, agent_id: str, cached: int, ledger: int, note: str, at: datetime) -> bool:
        """Reset the cached score to the ledger sum, leaving an audit row."""
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE agent_queue SET score = ? WHERE agent_id = ? AND score = ?",
                (ledger, agent_id, cached)
            )
            if cursor.rowcount != 1:
                return False
            conn.execute("""
                INSERT INTO integrity_audit (agent_id, cached_score, ledger_score, note, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (agent_id, cached, ledger, note, to_ts(at)))
            return True

    def get_audit_log(self, agent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM integrity_audit"
        params: List[Any] = []
        if agent_id:
            query += " WHERE agent_id = ?"
            params.append(agent_id)
        query += " ORDER BY id"
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    # === SETTINGS ===

    def get_settings(self, team_id: str) -> Optional[DistributionSettings]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM distribution_settings WHERE team_id = ?", (team_id,)
            ).fetchone()
            if not row:
                return None
            return DistributionSettings(
                team_id=row["team_id"],
                mode=DistributionMode(row["mode"]),
                reservation_ttl_seconds=row["reservation_ttl_seconds"],
                updated_at=from_ts(row["updated_at"]),
            )

    def save_settings(self, settings: DistributionSettings) -> DistributionSettings:
        with self.connection() as conn:
            conn.execute("""
                INSERT INTO distribution_settings (team_id, mode, reservation_ttl_seconds, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(team_id) DO UPDATE SET
                    mode = excluded.mode,
                    reservation_ttl_seconds = excluded.reservation_ttl_seconds,
                    updated_at = excluded.updated_at
            """, (
                settings.team_id,
                settings.mode.value,
                settings.reservation_ttl_seconds,
                to_ts(settings.updated_at),
            ))
        return settings

    # === STATS ===

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        with self.connection() as conn:
            cursor = conn.cursor()

            cursor.execute("SELECT COUNT(*) FROM leads")
            total = cursor.fetchone()[0]

            cursor.execute("SELECT status, COUNT(*) FROM leads GROUP BY status")
            status_counts = {row[0]: row[1] for row in cursor.fetchall()}

            cursor.execute("SELECT status, COUNT(*) FROM agent_queue GROUP BY status")
            agent_counts = {row[0]: row[1] for row in cursor.fetchall()}

            cursor.execute("SELECT COUNT(*) FROM score_ledger")
            ledger_entries = cursor.fetchone()[0]

            return {
                "total_leads": total,
                "leads_by_status": status_counts,
                "agents_by_status": agent_counts,
                "ledger_entries": ledger_entries,
            }

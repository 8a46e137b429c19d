"""Read-side metrics over leads, offers and the score ledger."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..core.config import QueueConfig
from ..core.errors import AgentNotFound
from ..queue.ledger import ScoreLedger
from ..queue.ranking import RankingTable
from ..storage.database import QueueDatabase, from_ts, to_ts
from ..storage.models import AgentStatus, Lead, LeadStatus

logger = logging.getLogger(__name__)

SOURCES = ("all", "board", "direct")

Window = Union[int, timedelta]

EMPTY_FIGURES = {
    "offers": 0,
    "accepted": 0,
    "rejected": 0,
    "expired": 0,
    "acceptance_rate": 0.0,
    "avg_response_time": None,
}


def _pct(part: float, whole: float) -> float:
    """Percentage rounded to 2 places; 0 when there is nothing to divide."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def _as_delta(window: Window) -> timedelta:
    if isinstance(window, timedelta):
        delta = window
    else:
        delta = timedelta(days=window)
    if delta.total_seconds() <= 0:
        raise ValueError("Window must be positive")
    return delta


def _lead_summary(lead: Lead) -> Dict[str, Any]:
    return {
        "lead_id": lead.lead_id,
        "property_ref": lead.property_ref,
        "status": lead.status.value,
        "reserved_until": lead.reserved_until.isoformat() if lead.reserved_until else None,
        "responded_at": lead.responded_at.isoformat() if lead.responded_at else None,
        "last_contact_at": lead.last_contact_at.isoformat() if lead.last_contact_at else None,
        "created_at": lead.created_at.isoformat(),
    }


class MetricsAggregator:
    """Dashboard figures. Never writes; empty data yields zeros or None."""

    def __init__(
        self,
        db: QueueDatabase,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.db = db
        self.config = config or QueueConfig()
        self.clock = clock
        self.ranking = RankingTable(db, self.config)
        self.ledger = ScoreLedger(db, clock)

    def _lead_filter(self, since: datetime, source: str, alias: str = "") -> Tuple[str, List[Any]]:
        if source not in SOURCES:
            raise ValueError(f"Unknown source filter: {source}")
        prefix = f"{alias}." if alias else ""
        clause = f"{prefix}created_at >= ?"
        params: List[Any] = [to_ts(since)]
        if source != "all":
            clause += f" AND {prefix}source = ?"
            params.append(source)
        return clause, params

    def overview(self, window: Window = 30, source: str = "all") -> Dict[str, Any]:
        """Totals and rates for leads created within ``window`` (days)."""
        now = self.clock()
        since = now - _as_delta(window)
        where, params = self._lead_filter(since, source)

        with self.db.connection() as conn:
            status_counts = {s.value: 0 for s in LeadStatus}
            for row in conn.execute(
                f"SELECT status, COUNT(*) FROM leads WHERE {where} GROUP BY status", params
            ).fetchall():
                status_counts[row[0]] = row[1]

            response_times = []
            days: Dict[str, int] = {}
            for row in conn.execute(
                f"SELECT created_at, responded_at FROM leads WHERE {where} ORDER BY created_at",
                params
            ).fetchall():
                created = from_ts(row["created_at"])
                key = created.date().isoformat()
                days[key] = days.get(key, 0) + 1
                if row["responded_at"]:
                    seconds = (from_ts(row["responded_at"]) - created).total_seconds()
                    response_times.append(max(0.0, seconds))

            offer_where, offer_params = self._lead_filter(since, source, alias="l")
            sla_breaches = conn.execute(f"""
                SELECT COUNT(*) FROM lead_offers o JOIN leads l ON l.lead_id = o.lead_id
                WHERE o.outcome = 'EXPIRED' AND o.offered_at >= ? AND {offer_where}
            """, [to_ts(since)] + offer_params).fetchone()[0]

            agent_counts = {row[0]: row[1] for row in conn.execute(
                "SELECT status, COUNT(*) FROM agent_queue GROUP BY status"
            ).fetchall()}
            available_now = conn.execute(
                "SELECT COUNT(*) FROM leads WHERE status = 'AVAILABLE'"
            ).fetchone()[0]

        total = sum(status_counts.values())
        converted = status_counts["ACCEPTED"] + status_counts["COMPLETED"]
        responded = len(response_times)

        return {
            "window_days": round(_as_delta(window).total_seconds() / 86400, 2),
            "source": source,
            "since": since.isoformat(),
            "total_agents": sum(agent_counts.values()),
            "active_agents": agent_counts.get(AgentStatus.ACTIVE.value, 0),
            "total_leads": total,
            "available_leads": available_now,
            "converted_leads": converted,
            "leads_by_status": status_counts,
            "conversion_rate": _pct(converted, total),
            "response_rate": _pct(responded, total),
            "avg_response_time": _mean(response_times),
            "sla_breaches": sla_breaches,
            "leads_by_day": [{"date": day, "count": count} for day, count in sorted(days.items())],
        }

    def _offer_figures(self, since: Optional[datetime], agent_ids: Optional[List[str]] = None) -> Dict[str, Dict[str, Any]]:
        """Per-agent offer outcomes and response times since ``since``."""
        figures: Dict[str, Dict[str, Any]] = {}
        for offer in self.db.list_offers(since=since):
            if agent_ids is not None and offer.agent_id not in agent_ids:
                continue
            entry = figures.setdefault(offer.agent_id, {
                "offers": 0, "accepted": 0, "rejected": 0, "expired": 0, "_times": [],
            })
            entry["offers"] += 1
            outcome = offer.outcome.value.lower()
            if outcome in entry:
                entry[outcome] += 1
            if offer.response_seconds is not None:
                entry["_times"].append(offer.response_seconds)

        for entry in figures.values():
            resolved = entry["accepted"] + entry["rejected"] + entry["expired"]
            entry["acceptance_rate"] = _pct(entry["accepted"], resolved)
            entry["avg_response_time"] = _mean(entry.pop("_times"))
        return figures

    def top_agents(self, window: Window = 30, limit: int = 10, team_id: str = "default") -> List[Dict[str, Any]]:
        """Ranked ACTIVE agents with their window performance."""
        since = self.clock() - _as_delta(window)
        entries = self.ranking.entries(team_id)[:max(limit, 0)]
        figures = self._offer_figures(since, [e.agent_id for e in entries])

        result = []
        for entry in entries:
            result.append({
                "agent_id": entry.agent_id,
                "position": entry.position,
                "score": entry.score,
                "active_leads": entry.active_lead_count,
                "total_accepted": entry.total_accepted,
                "total_rejected": entry.total_rejected,
                "total_expired": entry.total_expired,
                "avg_response_time": entry.avg_response_time,
                "window": figures.get(entry.agent_id, dict(EMPTY_FIGURES)),
            })
        return result

    def agent_detail(self, agent_id: str, window: Optional[Window] = None, history_limit: int = 10) -> Dict[str, Any]:
        """One agent's standing, workload and follow-up debt.

        ``pending_reply`` lists live reservations waiting on the agent's
        accept or reject; there is no conversation inbox to count replies from.
        ``stalled_leads`` are accepted leads with no contact for
        ``stale_after_days``.
        """
        agent = self.db.get_agent(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)

        now = self.clock()
        since = now - _as_delta(window) if window is not None else None
        stale_before = now - self.config.stale_after

        held = self.db.list_leads(agent_id=agent_id, limit=10000)
        active = [l for l in held if l.status == LeadStatus.ACCEPTED]
        pending_reply = [
            l for l in held
            if l.status == LeadStatus.RESERVED and l.reserved_agent_id == agent_id
            and l.reserved_until and l.reserved_until > now
        ]
        stalled = [
            l for l in active
            if (l.last_contact_at or l.responded_at or l.created_at) <= stale_before
        ]

        figures = self._offer_figures(since, [agent_id]).get(agent_id, dict(EMPTY_FIGURES))

        return {
            "agent_id": agent.agent_id,
            "team_id": agent.team_id,
            "status": agent.status.value,
            "score": agent.score,
            "position": self.ranking.position_of(agent_id),
            "bonus_lead_count": agent.bonus_lead_count,
            "total_accepted": agent.total_accepted,
            "total_rejected": agent.total_rejected,
            "total_expired": agent.total_expired,
            "active_leads": [_lead_summary(l) for l in active],
            "pending_reply": [_lead_summary(l) for l in pending_reply],
            "stalled_leads": [_lead_summary(l) for l in stalled],
            "window": figures,
            "history": [
                {
                    "id": e.id,
                    "action": e.action.value,
                    "points": e.points,
                    "description": e.description,
                    "lead_id": e.lead_id,
                    "created_at": e.created_at.isoformat(),
                }
                for e in self.ledger.history(agent_id, limit=history_limit)
            ],
        }

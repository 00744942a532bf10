"""Per-entity scent state: emitters carry scents, smellers track what they sense."""

from __future__ import annotations

from dataclasses import dataclass, field

from .smell_ticket import Scent, SmellTicket


@dataclass
class ScentEmitter:
    """An entity that gives off one or more scents."""
    entity_id: str
    scents: list[Scent] = field(default_factory=list)
    configured: list[str] = field(default_factory=list)  # definition ids from config
    tags: set[str] = field(default_factory=set)

    def find(self, instance_id: str) -> Scent | None:
        for scent in self.scents:
            if scent.instance_id == instance_id:
                return scent
        return None


@dataclass
class Smeller:
    """Detector bookkeeping for one entity.

    Three independent gates pace the pipeline: detection scan, pending
    ticket refresh, and delivery processing.  All times are clock seconds.
    """
    entity_id: str
    detection_interval: float = 10.0
    update_interval: float = 5.0
    processing_interval_range: tuple[float, float] = (10.0, 30.0)
    tags: set[str] = field(default_factory=set)
    active: bool = True

    pending: list[SmellTicket] = field(default_factory=list)
    cooldowns: dict[str, float] = field(default_factory=dict)   # instance_id -> next eligible time
    scan_gates: dict[str, float] = field(default_factory=dict)  # instance_id -> next scan time
    next_detection_time: float = 0.0
    next_update_time: float = 0.0
    next_processing_time: float = 0.0

    def find_ticket(self, instance_id: str) -> SmellTicket | None:
        for ticket in self.pending:
            if ticket.instance_id == instance_id:
                return ticket
        return None

    def upsert(self, ticket: SmellTicket) -> bool:
        """Add a ticket unless one for the same instance is already pending.

        An existing ticket is kept; it takes the newcomer's priority,
        origin and distance only when the newcomer ranks strictly higher.
        Returns True if the ticket was appended.
        """
        existing = self.find_ticket(ticket.instance_id)
        if existing is None:
            self.pending.append(ticket)
            return True
        if ticket.priority > existing.priority:
            existing.priority = ticket.priority
            existing.origin = ticket.origin
            existing.distance = ticket.distance
        return False

    def discard(self, ticket: SmellTicket) -> None:
        self.pending = [t for t in self.pending if t is not ticket]

    def purge_instance(self, instance_id: str) -> int:
        """Remove every pending ticket for an instance; returns how many."""
        before = len(self.pending)
        self.pending = [t for t in self.pending if t.instance_id != instance_id]
        return before - len(self.pending)

    def forget(self, instance_id: str) -> None:
        """Drop scan gate and cooldown state for a destroyed instance."""
        self.scan_gates.pop(instance_id, None)
        self.cooldowns.pop(instance_id, None)

    def is_on_cooldown(self, instance_id: str, now: float, min_pending: int = 3) -> bool:
        """Cooldowns only bite once enough tickets compete for attention."""
        next_time = self.cooldowns.get(instance_id)
        if not next_time:
            return False
        if len(self.pending) < min_pending:
            return False
        return next_time > now

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "active": self.active,
            "tags": sorted(self.tags),
            "pending": [t.to_dict() for t in self.pending],
            "cooldowns": dict(self.cooldowns),
            "next_detection_time": self.next_detection_time,
            "next_update_time": self.next_update_time,
            "next_processing_time": self.next_processing_time,
        }

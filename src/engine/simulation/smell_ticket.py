"""Scent instances and the pending-smell tickets smellers keep for them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from .scent_providers import MapCoordinates
from .scents import ScentDefinition

# Priority assigned to anything beyond far range -- ranks last, never wins
OUT_OF_RANGE_PRIORITY = -999.0

# Floor on the closeness factor so a zero-distance scent does not degenerate
_MIN_DISTANCE_FACTOR = 0.1


@dataclass(frozen=True)
class Scent:
    """One live scent on an emitter.  instance_id is the cooldown/dedup key."""
    scent_id: str
    instance_id: str

    @classmethod
    def create(cls, scent_id: str) -> Scent:
        return cls(scent_id=scent_id, instance_id=str(uuid.uuid4()))


@dataclass
class SmellTicket:
    """A smeller's pending, perceptible sighting of one scent instance."""
    source: str
    scent_id: str
    instance_id: str
    origin: MapCoordinates
    created_at: float
    distance: float
    priority: float = 0.1  # unmultiplied; see ranking()

    def ranking(self, definition: ScentDefinition) -> float:
        """Sort value: stored priority times the definition's current multiplier."""
        return self.priority * definition.priority_multiplier

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "scent_id": self.scent_id,
            "instance_id": self.instance_id,
            "map_id": self.origin.map_id,
            "origin": list(self.origin.position),
            "created_at": self.created_at,
            "distance": round(self.distance, 3),
            "priority": round(self.priority, 4),
        }


def compute_priority(distance: float, close_range: float, far_range: float) -> float:
    """Deterministic proximity priority.

    Close range: 3.0 flat plus up to 3.0 more as the source gets closer.
    Far range: 1.0 plus up to 2.0 more as the source gets closer.
    """
    if distance > far_range:
        return OUT_OF_RANGE_PRIORITY
    priority = 1.0
    if distance <= close_range:
        factor = max(close_range - distance, _MIN_DISTANCE_FACTOR)
        priority += 2.0 + 3.0 * factor / close_range
    else:
        factor = max(far_range - distance, _MIN_DISTANCE_FACTOR)
        priority += 2.0 * factor / far_range
    return priority


def delivery_chance(detection_chance: float, ranking: float) -> float:
    """Percent chance a ticket is smelled on one delivery roll.

    High-ranked tickets (ranking > 2.0) scale the base chance by their
    ranking.  Result is clamped to [0, 100].
    """
    chance = float(detection_chance)
    if ranking > 2.0:
        chance *= max(ranking, 1.0)
    return min(max(chance, 0.0), 100.0)

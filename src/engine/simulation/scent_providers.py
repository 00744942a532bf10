"""Collaborators the scent scheduler consumes from its host.

The scheduler never looks entities up itself.  Positions, line of sight,
consent, time and notification delivery are all reached through the small
protocols below so the host (simulation engine, game server, tests) can plug
in whatever it already has.

In-memory implementations are provided for headless use and tests:
  - InMemoryWorld: entity positions + map ids
  - OpenVisibility / TerrainVisibility: range-only or terrain-backed LOS
  - ConsentRegistry: per-entity consent grants + exempt (admin) entities
  - SimClock / MonotonicClock: manually advanced or wall-clock time
  - CollectingSink / EventBusSink: keep notifications or publish them
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence, TypeVar, runtime_checkable

T = TypeVar("T")

Vec2 = tuple[float, float]

NOTIFICATION_TOPIC = "smell_notification"


@dataclass(frozen=True)
class MapCoordinates:
    """A position on a specific map."""
    map_id: str
    position: Vec2


@dataclass(frozen=True)
class SmellNotification:
    """A delivered smell: what the recipient perceived and from whom."""
    recipient: str
    source: str
    message_key: str
    severity: str = "medium"  # "medium" or "caution"
    scent_id: str = ""
    instance_id: str = ""
    direct: bool = False
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipient": self.recipient,
            "source": self.source,
            "message_key": self.message_key,
            "severity": self.severity,
            "scent_id": self.scent_id,
            "instance_id": self.instance_id,
            "direct": self.direct,
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class PositionProvider(Protocol):
    def world_position(self, entity_id: str) -> Vec2 | None: ...

    def map_position(self, entity_id: str) -> MapCoordinates | None: ...


class VisibilityProvider(Protocol):
    def has_unobstructed_path(self, origin: Vec2, target: Vec2, max_range: float) -> bool: ...


class PermissionProvider(Protocol):
    def has_consent(self, entity_id: str, key: str) -> bool: ...

    def is_exempt(self, entity_id: str) -> bool: ...


class Clock(Protocol):
    def now(self) -> float: ...


class RandomSource(Protocol):
    """Subset of random.Random the scheduler draws from."""

    def random(self) -> float: ...

    def uniform(self, a: float, b: float) -> float: ...

    def randint(self, a: int, b: int) -> int: ...

    def choice(self, seq: Sequence[T]) -> T: ...


class NotificationSink(Protocol):
    def deliver(self, notification: SmellNotification) -> None: ...


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

class InMemoryWorld:
    """Entity positions kept in a dict -- the simplest PositionProvider."""

    def __init__(self, default_map: str = "map-0") -> None:
        self._default_map = default_map
        self._positions: dict[str, MapCoordinates] = {}

    def place(self, entity_id: str, position: Vec2, map_id: str | None = None) -> None:
        """Place (or move) an entity."""
        self._positions[entity_id] = MapCoordinates(
            map_id=map_id or self._default_map,
            position=(float(position[0]), float(position[1])),
        )

    def remove(self, entity_id: str) -> None:
        self._positions.pop(entity_id, None)

    def world_position(self, entity_id: str) -> Vec2 | None:
        coords = self._positions.get(entity_id)
        return coords.position if coords is not None else None

    def map_position(self, entity_id: str) -> MapCoordinates | None:
        return self._positions.get(entity_id)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._positions


class OpenVisibility:
    """No obstacles: any target within range is visible."""

    def has_unobstructed_path(self, origin: Vec2, target: Vec2, max_range: float) -> bool:
        return distance_between(origin, target) <= max_range


class TerrainVisibility:
    """Range check plus line of sight from a terrain map.

    Works with any object exposing ``line_of_sight(pos_a, pos_b) -> bool``
    (e.g. the simulation TerrainMap).
    """

    def __init__(self, terrain_map: Any) -> None:
        self._terrain_map = terrain_map

    def set_terrain(self, terrain_map: Any) -> None:
        self._terrain_map = terrain_map

    def has_unobstructed_path(self, origin: Vec2, target: Vec2, max_range: float) -> bool:
        if distance_between(origin, target) > max_range:
            return False
        if self._terrain_map is None:
            return True
        return bool(self._terrain_map.line_of_sight(origin, target))


@dataclass
class ConsentRegistry:
    """Per-entity consent grants.  Exempt entities (admins) pass every gate."""
    grants: dict[str, set[str]] = field(default_factory=dict)
    exempt: set[str] = field(default_factory=set)

    def grant(self, entity_id: str, key: str) -> None:
        self.grants.setdefault(entity_id, set()).add(key)

    def revoke(self, entity_id: str, key: str) -> None:
        self.grants.get(entity_id, set()).discard(key)

    def has_consent(self, entity_id: str, key: str) -> bool:
        return key in self.grants.get(entity_id, ())

    def is_exempt(self, entity_id: str) -> bool:
        return entity_id in self.exempt


class SimClock:
    """Simulation time advanced explicitly by the tick loop."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, dt: float) -> float:
        if dt < 0:
            raise ValueError(f"Cannot move the clock backwards (dt={dt})")
        self._now += dt
        return self._now


class MonotonicClock:
    """Wall-clock seconds from time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class CollectingSink:
    """Keeps every delivered notification in order."""

    def __init__(self) -> None:
        self.notifications: list[SmellNotification] = []

    def deliver(self, notification: SmellNotification) -> None:
        self.notifications.append(notification)

    def drain(self) -> list[SmellNotification]:
        out = self.notifications
        self.notifications = []
        return out


class EventBusSink:
    """Publishes notifications as dicts on an EventBus-like object."""

    def __init__(self, event_bus: Any, topic: str = NOTIFICATION_TOPIC) -> None:
        self._event_bus = event_bus
        self._topic = topic

    def deliver(self, notification: SmellNotification) -> None:
        self._event_bus.publish(self._topic, notification.to_dict())


def distance_between(a: Vec2, b: Vec2) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])

"""Simulation subsystem — scent emission, detection and smell delivery."""
from .scent_providers import (
    CollectingSink,
    ConsentRegistry,
    EventBusSink,
    InMemoryWorld,
    MapCoordinates,
    MonotonicClock,
    OpenVisibility,
    SimClock,
    SmellNotification,
    TerrainVisibility,
)
from .scent_system import ExamineDescription, ScentSchedulerContext, ScentSystem
from .scents import (
    ScentConfigError,
    ScentDefinition,
    ScentRegistry,
    load_scent_definitions,
    registry_from_dicts,
)
from .smell_ticket import Scent, SmellTicket, compute_priority, delivery_chance
from .smeller import ScentEmitter, Smeller

__all__ = [
    "CollectingSink",
    "ConsentRegistry",
    "EventBusSink",
    "ExamineDescription",
    "InMemoryWorld",
    "MapCoordinates",
    "MonotonicClock",
    "OpenVisibility",
    "Scent",
    "ScentConfigError",
    "ScentDefinition",
    "ScentEmitter",
    "ScentRegistry",
    "ScentSchedulerContext",
    "ScentSystem",
    "SimClock",
    "SmellNotification",
    "SmellTicket",
    "Smeller",
    "TerrainVisibility",
    "compute_priority",
    "delivery_chance",
    "load_scent_definitions",
    "registry_from_dicts",
]

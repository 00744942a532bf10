"""ScentDefinition -- static configuration for one class of scent.

Definitions are loaded from JSON files (a list of objects, or an object with
a ``"scents"`` list) and indexed by id in a ScentRegistry.  A definition may
name one or more parents; any field it does not set is inherited from them,
later parents overriding earlier ones.  Abstract definitions only exist to be
inherited from and can never be put on an emitter.

Usage:
    registry = load_scent_definitions("scenarios/scents/default.json")
    proto = registry.get("scent_smoke")
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Iterable

from loguru import logger

DEFAULT_CONSENT_KEY = "CanSmellLewdScents"

# Field defaults for definitions that never set (or inherit) a value
_DEFAULTS: dict[str, Any] = {
    "close_range": 2.0,
    "far_range": 7.0,
    "msgs_direct": (),
    "msgs_close": (),
    "msgs_far": (),
    "msgs_examine": (),
    "min_cooldown": 120,
    "max_cooldown": 300,
    "detection_chance": 15,
    "detection_interval": 10,
    "direct_only": False,
    "requires_visibility": False,
    "restricted": False,
    "stinky": False,
    "consent_key": DEFAULT_CONSENT_KEY,
    "priority_multiplier": 1.0,
    "preventing_tags": frozenset(),
    "blocking_tags": frozenset(),
}

_MESSAGE_FIELDS = ("msgs_direct", "msgs_close", "msgs_far", "msgs_examine")
_TAG_FIELDS = ("preventing_tags", "blocking_tags")


class ScentConfigError(Exception):
    """Malformed scent configuration: unknown id, bad values, missing messages."""


@dataclass(frozen=True)
class ScentDefinition:
    """Immutable description of a scent class."""

    id: str
    close_range: float = 2.0
    far_range: float = 7.0
    msgs_direct: tuple[str, ...] = ()
    msgs_close: tuple[str, ...] = ()
    msgs_far: tuple[str, ...] = ()
    msgs_examine: tuple[str, ...] = ()
    min_cooldown: int = 120          # seconds
    max_cooldown: int = 300          # seconds
    detection_chance: int = 15       # percent per delivery roll
    detection_interval: int = 10     # seconds between scans of one instance
    direct_only: bool = False
    requires_visibility: bool = False
    restricted: bool = False
    stinky: bool = False
    consent_key: str = DEFAULT_CONSENT_KEY
    priority_multiplier: float = 1.0
    preventing_tags: frozenset[str] = field(default_factory=frozenset)  # on the emitter
    blocking_tags: frozenset[str] = field(default_factory=frozenset)    # on the smeller
    abstract: bool = False
    parents: tuple[str, ...] = ()

    @property
    def has_messages(self) -> bool:
        return bool(self.msgs_direct or self.msgs_close or self.msgs_far)

    @property
    def severity(self) -> str:
        return "caution" if self.stinky else "medium"

    def validate(self) -> None:
        """Raise ScentConfigError if any field is out of range."""
        if self.abstract:
            return
        if not self.close_range < self.far_range:
            raise ScentConfigError(
                f"Scent {self.id!r}: close_range ({self.close_range}) must be "
                f"less than far_range ({self.far_range})"
            )
        if self.close_range <= 0:
            raise ScentConfigError(f"Scent {self.id!r}: close_range must be positive")
        if self.min_cooldown < 0 or self.min_cooldown > self.max_cooldown:
            raise ScentConfigError(
                f"Scent {self.id!r}: need 0 <= min_cooldown <= max_cooldown, "
                f"got {self.min_cooldown}..{self.max_cooldown}"
            )
        if not 0 <= self.detection_chance <= 100:
            raise ScentConfigError(
                f"Scent {self.id!r}: detection_chance must be 0-100, got {self.detection_chance}"
            )
        if self.detection_interval < 0:
            raise ScentConfigError(f"Scent {self.id!r}: detection_interval must be >= 0")
        if self.priority_multiplier <= 0:
            raise ScentConfigError(f"Scent {self.id!r}: priority_multiplier must be > 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "close_range": self.close_range,
            "far_range": self.far_range,
            "msgs_direct": list(self.msgs_direct),
            "msgs_close": list(self.msgs_close),
            "msgs_far": list(self.msgs_far),
            "msgs_examine": list(self.msgs_examine),
            "min_cooldown": self.min_cooldown,
            "max_cooldown": self.max_cooldown,
            "detection_chance": self.detection_chance,
            "detection_interval": self.detection_interval,
            "direct_only": self.direct_only,
            "requires_visibility": self.requires_visibility,
            "restricted": self.restricted,
            "stinky": self.stinky,
            "priority_multiplier": self.priority_multiplier,
            "preventing_tags": sorted(self.preventing_tags),
            "blocking_tags": sorted(self.blocking_tags),
        }


def _coerce(name: str, value: Any) -> Any:
    if name in _MESSAGE_FIELDS:
        if isinstance(value, str):
            return (value,)
        return tuple(value)
    if name in _TAG_FIELDS:
        if isinstance(value, str):
            return frozenset((value,))
        return frozenset(value)
    try:
        if name in ("close_range", "far_range", "priority_multiplier"):
            return float(value)
        if name in ("min_cooldown", "max_cooldown", "detection_chance", "detection_interval"):
            number = float(value)
            if not number.is_integer():
                raise ScentConfigError(f"{name} must be a whole number, got {value!r}")
            return int(number)
    except (TypeError, ValueError) as e:
        raise ScentConfigError(f"{name}: invalid value {value!r}") from e
    return value


class ScentRegistry:
    """Id-indexed store of resolved scent definitions.

    Raw entries are kept so that inheritance is resolved lazily and cached;
    a definition resolves to exactly the fields set on it or on its parents.
    """

    def __init__(self) -> None:
        self._order: list[str] = []
        self._raw: dict[str, dict[str, Any]] = {}
        self._built: dict[str, ScentDefinition] = {}
        self._resolved: dict[str, ScentDefinition] = {}

    def __contains__(self, scent_id: object) -> bool:
        return scent_id in self._raw or scent_id in self._built

    def __len__(self) -> int:
        return len(self._order)

    def add(self, data: dict[str, Any]) -> None:
        """Register one raw definition entry (not yet resolved)."""
        scent_id = data.get("id")
        if not scent_id or not isinstance(scent_id, str):
            raise ScentConfigError(f"Scent definition without a string id: {data!r}")
        if scent_id in self:
            raise ScentConfigError(f"Duplicate scent definition id {scent_id!r}")
        known = {f.name for f in fields(ScentDefinition)} | {"parent"}
        unknown = set(data) - known
        if unknown:
            raise ScentConfigError(
                f"Scent {scent_id!r}: unknown field(s) {sorted(unknown)}"
            )
        self._raw[scent_id] = dict(data)
        self._order.append(scent_id)
        self._resolved.clear()

    def add_definition(self, definition: ScentDefinition) -> None:
        """Register an already built definition (no inheritance applied)."""
        definition.validate()
        if definition.id in self:
            raise ScentConfigError(f"Duplicate scent definition id {definition.id!r}")
        self._built[definition.id] = definition
        self._order.append(definition.id)

    def get(self, scent_id: str) -> ScentDefinition:
        """Return the resolved definition or raise ScentConfigError."""
        built = self._built.get(scent_id)
        if built is not None:
            return built
        cached = self._resolved.get(scent_id)
        if cached is not None:
            return cached
        if scent_id not in self._raw:
            raise ScentConfigError(f"Unknown scent definition id {scent_id!r}")
        definition = self._resolve(scent_id)
        self._resolved[scent_id] = definition
        return definition

    def try_get(self, scent_id: str) -> ScentDefinition | None:
        try:
            return self.get(scent_id)
        except ScentConfigError:
            return None

    def concrete(self) -> list[ScentDefinition]:
        """All non-abstract definitions, in registration order."""
        result = []
        for scent_id in self._order:
            definition = self.get(scent_id)
            if not definition.abstract:
                result.append(definition)
        return result

    def validate_all(self) -> None:
        for scent_id in self._order:
            self.get(scent_id)

    def _merged_fields(self, scent_id: str, chain: tuple[str, ...]) -> dict[str, Any]:
        if scent_id in chain:
            raise ScentConfigError(
                f"Scent inheritance cycle: {' -> '.join(chain + (scent_id,))}"
            )
        built = self._built.get(scent_id)
        if built is not None:
            return {
                f.name: getattr(built, f.name)
                for f in fields(ScentDefinition)
                if f.name not in ("id", "abstract", "parents")
            }
        raw = self._raw.get(scent_id)
        if raw is None:
            raise ScentConfigError(
                f"Scent {chain[-1]!r} names unknown parent {scent_id!r}"
            )
        merged: dict[str, Any] = {}
        for parent_id in _parent_ids(raw):
            merged.update(self._merged_fields(parent_id, chain + (scent_id,)))
        for key, value in raw.items():
            if key in ("id", "parent", "parents", "abstract"):
                continue
            merged[key] = _coerce(key, value)
        return merged

    def _resolve(self, scent_id: str) -> ScentDefinition:
        raw = self._raw[scent_id]
        values = dict(_DEFAULTS)
        values.update(self._merged_fields(scent_id, ()))
        try:
            definition = ScentDefinition(
                id=scent_id,
                abstract=bool(raw.get("abstract", False)),
                parents=_parent_ids(raw),
                **values,
            )
        except (TypeError, ValueError) as e:
            raise ScentConfigError(f"Scent {scent_id!r}: {e}") from e
        definition.validate()
        return definition


def _parent_ids(raw: dict[str, Any]) -> tuple[str, ...]:
    parents = raw.get("parents", raw.get("parent", ()))
    if isinstance(parents, str):
        return (parents,)
    return tuple(parents)


def registry_from_dicts(entries: Iterable[dict[str, Any]]) -> ScentRegistry:
    """Build and fully validate a registry from raw definition dicts."""
    registry = ScentRegistry()
    for entry in entries:
        registry.add(entry)
    registry.validate_all()
    return registry


def load_scent_definitions(*paths: str | Path) -> ScentRegistry:
    """Load one or more JSON definition files into a single registry."""
    entries: list[dict[str, Any]] = []
    for path in paths:
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ScentConfigError(f"Cannot read scent definitions from {path}: {e}") from e
        if isinstance(data, dict):
            data = data.get("scents", [])
        if not isinstance(data, list):
            raise ScentConfigError(f"{path}: expected a list of scent definitions")
        entries.extend(data)
        logger.info(f"Scent definitions: {len(data)} entries from {path}")
    registry = registry_from_dicts(entries)
    logger.info(f"Scent registry ready: {len(registry.concrete())} concrete definitions")
    return registry

"""ScentSystem -- proximity scent detection and smell notification scheduler.

Architecture
------------
Emitters carry live Scent instances.  Smellers periodically scan their
surroundings, keep a list of pending SmellTickets for scents they could
perceive, and every so often roll to actually smell one of them.

The host drives everything through ``advance(dt)`` from its update loop.
Each call:

  1. Checks the global throttle on ScentSchedulerContext.  Sweeps never run
     more often than ``scent_base_detection_cooldown`` seconds, however many
     smellers there are.
  2. For every active smeller, in this fixed order, each step behind its own
     per-smeller gate:
       a. detect_smells -- scan emitters, upsert tickets for eligible scents
       b. update_pending_smells -- re-measure tickets, prune stale ones
       c. process_pending_smells -- rank tickets, roll, deliver at most one

Eligibility (``can_detect``) is one predicate shared by all three steps so
that scan, refresh and delivery can never disagree about what is
perceptible.  It short-circuits on range and consent before any cooldown
or random work happens.

Delivery picks a message *key* and hands a SmellNotification to the sink;
localisation and rendering belong to the host.

Errors:
  ScentConfigError (bad definitions, missing message pools) is caught per
  ticket and per smeller, logged, and the offending ticket dropped -- it
  never escapes advance().  Missing entities or removed scents are ordinary
  misses: the ticket is pruned quietly.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from .scent_providers import (
    CollectingSink,
    MapCoordinates,
    OpenVisibility,
    SimClock,
    SmellNotification,
    distance_between,
)
from .scents import ScentConfigError, ScentDefinition, ScentRegistry
from .smell_ticket import (
    OUT_OF_RANGE_PRIORITY,
    Scent,
    SmellTicket,
    compute_priority,
    delivery_chance,
)
from .smeller import ScentEmitter, Smeller

if TYPE_CHECKING:
    from app.config import Settings

    from .scent_providers import (
        Clock,
        NotificationSink,
        PermissionProvider,
        PositionProvider,
        RandomSource,
        VisibilityProvider,
    )

logger = logging.getLogger("engine.scent")

EXAMINE_ONE = "scent-examine-one"
EXAMINE_TWO = "scent-examine-two"
EXAMINE_MULTIPLE = "scent-examine-multiple"


@dataclass
class ScentSchedulerContext:
    """Scheduler-wide state shared by every smeller."""
    next_detection_time: float = 0.0
    sweeps: int = 0


@dataclass
class ExamineDescription:
    """What an examiner notices about an emitter's scents."""
    template: str
    params: dict[str, object] = field(default_factory=dict)
    scent_keys: list[str] = field(default_factory=list)


class _NoPermissions:
    """Nobody has consent and nobody is exempt."""

    def has_consent(self, entity_id: str, key: str) -> bool:
        return False

    def is_exempt(self, entity_id: str) -> bool:
        return False


class ScentSystem:
    """Tick-driven scent scheduler for all emitters and smellers."""

    def __init__(
        self,
        registry: ScentRegistry,
        world: PositionProvider,
        visibility: VisibilityProvider | None = None,
        permissions: PermissionProvider | None = None,
        clock: Clock | None = None,
        rng: RandomSource | None = None,
        sink: NotificationSink | None = None,
        settings: Settings | None = None,
        context: ScentSchedulerContext | None = None,
    ) -> None:
        if settings is None:
            from app.config import settings as app_settings
            settings = app_settings
        self._settings = settings
        self._registry = registry
        self._world = world
        self._visibility = visibility if visibility is not None else OpenVisibility()
        self._permissions = permissions if permissions is not None else _NoPermissions()

        # Without an external clock the system keeps simulation time itself
        self._owns_clock = clock is None
        self._clock = clock if clock is not None else SimClock()
        self._rng = rng if rng is not None else random.Random(settings.scent_rng_seed)
        self._sink = sink if sink is not None else CollectingSink()
        self.context = context if context is not None else ScentSchedulerContext()

        self._base_cooldown = settings.scent_base_detection_cooldown
        self._min_pending = settings.scent_cooldown_min_pending

        self._emitters: dict[str, ScentEmitter] = {}
        self._smellers: dict[str, Smeller] = {}
        self._instances: dict[str, str] = {}  # instance_id -> emitter entity_id

    # -- accessors --

    @property
    def registry(self) -> ScentRegistry:
        return self._registry

    @property
    def world(self) -> PositionProvider:
        return self._world

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    @property
    def clock(self) -> Clock:
        return self._clock

    def now(self) -> float:
        return self._clock.now()

    def get_smeller(self, entity_id: str) -> Smeller | None:
        return self._smellers.get(entity_id)

    def get_emitter(self, entity_id: str) -> ScentEmitter | None:
        return self._emitters.get(entity_id)

    @property
    def smellers(self) -> list[Smeller]:
        return list(self._smellers.values())

    @property
    def emitters(self) -> list[ScentEmitter]:
        return list(self._emitters.values())

    def is_live(self, instance_id: str) -> bool:
        return instance_id in self._instances

    # -- lifecycle --

    def on_emitter_spawned(
        self,
        entity_id: str,
        definition_ids: Iterable[str] = (),
        tags: Iterable[str] = (),
    ) -> ScentEmitter:
        """Register an emitter and create one scent per configured definition.

        Unknown or abstract ids are logged and skipped so one bad entry
        cannot stop the entity from spawning.
        """
        if entity_id in self._emitters:
            self.on_emitter_removed(entity_id)
        emitter = ScentEmitter(
            entity_id=entity_id,
            configured=list(definition_ids),
            tags=set(tags),
        )
        self._emitters[entity_id] = emitter
        for scent_id in emitter.configured:
            try:
                self.add_scent(entity_id, scent_id)
            except ScentConfigError as e:
                logger.error(f"Emitter {entity_id}: skipping scent {scent_id!r}: {e}")
        return emitter

    def add_scent(self, entity_id: str, scent_id: str) -> Scent:
        """Attach a new scent instance to an emitter."""
        emitter = self._emitters[entity_id]
        definition = self._registry.get(scent_id)
        if definition.abstract:
            raise ScentConfigError(f"Scent {scent_id!r} is abstract and cannot be emitted")
        scent = Scent.create(scent_id)
        emitter.scents.append(scent)
        self._instances[scent.instance_id] = entity_id
        logger.debug(f"Scent added: {scent_id} ({scent.instance_id}) on {entity_id}")
        return scent

    def remove_scent(self, entity_id: str, instance_id: str) -> bool:
        emitter = self._emitters.get(entity_id)
        if emitter is None:
            return False
        scent = emitter.find(instance_id)
        if scent is None:
            return False
        emitter.scents.remove(scent)
        self._forget_instance(instance_id)
        return True

    def on_emitter_removed(self, entity_id: str) -> None:
        emitter = self._emitters.pop(entity_id, None)
        if emitter is None:
            return
        for scent in emitter.scents:
            self._forget_instance(scent.instance_id)

    def _forget_instance(self, instance_id: str) -> None:
        # Pending tickets are left for refresh to prune
        self._instances.pop(instance_id, None)
        for smeller in self._smellers.values():
            smeller.forget(instance_id)

    def on_detector_spawned(self, entity_id: str, tags: Iterable[str] = ()) -> Smeller:
        """Register a smeller (idempotent: an existing smeller is returned)."""
        smeller = self._smellers.get(entity_id)
        if smeller is not None:
            smeller.tags.update(tags)
            return smeller
        smeller = Smeller(
            entity_id=entity_id,
            detection_interval=self._settings.scent_detection_interval,
            update_interval=self._settings.scent_pending_update_interval,
            processing_interval_range=(
                self._settings.scent_processing_interval_min,
                self._settings.scent_processing_interval_max,
            ),
            tags=set(tags),
        )
        self._smellers[entity_id] = smeller
        return smeller

    def on_detector_removed(self, entity_id: str) -> None:
        self._smellers.pop(entity_id, None)

    def set_detector_active(self, entity_id: str, active: bool) -> None:
        self._smellers[entity_id].active = active

    # -- tick --

    def advance(self, dt: float) -> list[SmellNotification]:
        """Run one host tick.  Returns the notifications delivered in it."""
        if self._owns_clock:
            self._clock.advance(dt)
        now = self._clock.now()
        if self.context.next_detection_time > now:
            return []
        self.context.next_detection_time = now + self._base_cooldown
        self.context.sweeps += 1

        delivered: list[SmellNotification] = []
        for smeller in list(self._smellers.values()):
            if not smeller.active:
                continue
            try:
                self.detect_smells(smeller, now)
                self.update_pending_smells(smeller, now)
                notification = self.process_pending_smells(smeller, now)
            except ScentConfigError as e:
                logger.error(f"Scent configuration defect for smeller {smeller.entity_id}: {e}")
                continue
            if notification is not None:
                delivered.append(notification)
        return delivered

    # -- eligibility --

    def consent_ok(self, entity_id: str, definition: ScentDefinition) -> bool:
        """Restricted scents need an exemption or an explicit consent grant."""
        if not definition.restricted:
            return True
        if self._permissions.is_exempt(entity_id):
            return True
        return self._permissions.has_consent(entity_id, definition.consent_key)

    def _conditions_ok(self, smeller: Smeller, definition: ScentDefinition, source: str) -> bool:
        emitter = self._emitters.get(source)
        if emitter is None:
            return False
        if definition.preventing_tags & emitter.tags:
            return False
        if definition.blocking_tags & smeller.tags:
            return False
        return True

    def can_detect(
        self,
        smeller: Smeller,
        definition: ScentDefinition,
        instance_id: str,
        source: str,
        origin: MapCoordinates,
        distance: float,
        now: float | None = None,
    ) -> bool:
        """Whether *smeller* can passively perceive one scent instance right now."""
        if distance > definition.far_range:
            return False
        if definition.detection_chance <= 0:
            return False
        if definition.direct_only:
            return False
        if not self.consent_ok(smeller.entity_id, definition):
            return False
        if not self._conditions_ok(smeller, definition, source):
            return False
        if now is None:
            now = self._clock.now()
        if smeller.is_on_cooldown(instance_id, now, self._min_pending):
            return False
        if definition.requires_visibility:
            smeller_pos = self._world.world_position(smeller.entity_id)
            if smeller_pos is None:
                return False
            if not self._visibility.has_unobstructed_path(
                smeller_pos, origin.position, definition.far_range,
            ):
                return False
        return True

    # -- detection --

    def detect_smells(self, smeller: Smeller, now: float) -> int:
        """Scan every emitter for perceptible scents.  Returns tickets added."""
        if smeller.next_detection_time > now:
            return 0
        smeller.next_detection_time = now + smeller.detection_interval

        smeller_coords = self._world.map_position(smeller.entity_id)
        if smeller_coords is None:
            return 0

        added = 0
        for emitter in self._emitters.values():
            if not emitter.scents:
                continue
            if emitter.entity_id == smeller.entity_id:
                continue  # don't smell yourself
            coords = self._world.map_position(emitter.entity_id)
            if coords is None or coords.map_id != smeller_coords.map_id:
                continue
            distance = distance_between(smeller_coords.position, coords.position)

            for scent in emitter.scents:
                definition = self._registry.try_get(scent.scent_id)
                if definition is None:
                    logger.error(f"Emitter {emitter.entity_id} carries unknown scent {scent.scent_id!r}")
                    continue
                if smeller.scan_gates.get(scent.instance_id, 0.0) > now:
                    continue
                smeller.scan_gates[scent.instance_id] = now + definition.detection_interval
                if not self.can_detect(
                    smeller, definition, scent.instance_id,
                    emitter.entity_id, coords, distance, now,
                ):
                    continue

                ticket = SmellTicket(
                    source=emitter.entity_id,
                    scent_id=scent.scent_id,
                    instance_id=scent.instance_id,
                    origin=coords,
                    created_at=now,
                    distance=distance,
                    priority=compute_priority(distance, definition.close_range, definition.far_range),
                )
                if smeller.upsert(ticket):
                    added += 1
        return added

    # -- refresh --

    def _remeasure(self, smeller_pos: tuple[float, float], ticket: SmellTicket) -> bool:
        """Move a ticket's origin/distance to where its source is now."""
        coords = self._world.map_position(ticket.source)
        if coords is None:
            return False
        ticket.origin = coords
        ticket.distance = distance_between(smeller_pos, coords.position)
        return True

    def update_pending_smells(self, smeller: Smeller, now: float) -> int:
        """Re-measure pending tickets and prune the ones no longer perceptible.

        Never delivers.  Returns the number of tickets removed.
        """
        if not smeller.pending:
            return 0
        if smeller.next_update_time > now:
            return 0
        smeller.next_update_time = now + smeller.update_interval

        smeller_coords = self._world.map_position(smeller.entity_id)
        removed = 0
        for ticket in list(smeller.pending):
            definition = self._registry.try_get(ticket.scent_id)
            if definition is None:
                logger.error(f"Dropping ticket for unknown scent {ticket.scent_id!r}")
                smeller.discard(ticket)
                removed += 1
                continue
            if (
                smeller_coords is None
                or not self.is_live(ticket.instance_id)
                or not self._remeasure(smeller_coords.position, ticket)
                or ticket.distance > definition.far_range
                or ticket.origin.map_id != smeller_coords.map_id
                or not self.can_detect(
                    smeller, definition, ticket.instance_id,
                    ticket.source, ticket.origin, ticket.distance, now,
                )
            ):
                smeller.discard(ticket)
                removed += 1
                continue
            ticket.priority = compute_priority(
                ticket.distance, definition.close_range, definition.far_range,
            )
        return removed

    # -- delivery --

    def _ranking(self, ticket: SmellTicket) -> float:
        definition = self._registry.try_get(ticket.scent_id)
        if definition is None:
            return OUT_OF_RANGE_PRIORITY
        return ticket.ranking(definition)

    def process_pending_smells(self, smeller: Smeller, now: float) -> SmellNotification | None:
        """Roll for the highest ranked tickets; deliver at most one."""
        if smeller.next_processing_time > now:
            return None
        low, high = smeller.processing_interval_range
        smeller.next_processing_time = now + self._rng.uniform(low, high)

        if not smeller.pending:
            return None

        # Stable: equal rankings keep insertion order tick to tick
        ordered = sorted(smeller.pending, key=self._ranking, reverse=True)
        for ticket in ordered:
            if not self.is_live(ticket.instance_id):
                logger.debug(f"Pruning ticket for removed scent {ticket.instance_id}")
                smeller.discard(ticket)
                continue
            definition = self._registry.try_get(ticket.scent_id)
            if definition is None:
                logger.error(f"Dropping ticket for unknown scent {ticket.scent_id!r}")
                smeller.discard(ticket)
                continue
            if not self.can_detect(
                smeller, definition, ticket.instance_id,
                ticket.source, ticket.origin, ticket.distance, now,
            ):
                smeller.discard(ticket)
                continue

            chance = delivery_chance(definition.detection_chance, ticket.ranking(definition))
            roll = self._rng.random() * 100.0
            if roll >= chance:
                continue  # not this time; stays pending

            smeller.discard(ticket)
            try:
                return self.smell(smeller, ticket, definition, now)
            except ScentConfigError as e:
                logger.error(
                    f"Scent {definition.id!r} could not be delivered to "
                    f"{smeller.entity_id}, ticket dropped: {e}"
                )
                return None
        return None

    def _message_pool(
        self,
        definition: ScentDefinition,
        distance: float,
        direct: bool,
    ) -> tuple[str, ...]:
        if direct:
            if not definition.msgs_direct:
                raise ScentConfigError(
                    f"Scent {definition.id!r} was smelled directly but has no direct messages"
                )
            return definition.msgs_direct
        if distance <= definition.close_range:
            if not definition.msgs_close:
                raise ScentConfigError(
                    f"Scent {definition.id!r} was smelled at close range but has no close messages"
                )
            return definition.msgs_close
        if not definition.msgs_far:
            raise ScentConfigError(
                f"Scent {definition.id!r} was smelled at far range but has no far messages"
            )
        return definition.msgs_far

    def smell(
        self,
        smeller: Smeller,
        ticket: SmellTicket,
        definition: ScentDefinition,
        now: float,
        direct: bool = False,
    ) -> SmellNotification | None:
        """Deliver one ticket: set the cooldown, pick a message, notify the sink."""
        if not self.consent_ok(smeller.entity_id, definition):
            return None

        cooldown = self._rng.randint(definition.min_cooldown, definition.max_cooldown)
        smeller.cooldowns[ticket.instance_id] = now + cooldown

        smeller_pos = self._world.world_position(smeller.entity_id)
        found = smeller_pos is not None and self._remeasure(smeller_pos, ticket)

        # Any other pending ticket for this scent is superseded
        smeller.purge_instance(ticket.instance_id)

        if not found:
            logger.debug(f"Smell source {ticket.source} vanished before delivery")
            return None
        if not definition.has_messages:
            raise ScentConfigError(f"Scent {definition.id!r} has no messages defined")
        if definition.direct_only and not direct:
            return None
        if not direct and ticket.distance > definition.far_range:
            return None

        messages = self._message_pool(definition, ticket.distance, direct)
        notification = SmellNotification(
            recipient=smeller.entity_id,
            source=ticket.source,
            message_key=self._rng.choice(messages),
            severity=definition.severity,
            scent_id=definition.id,
            instance_id=ticket.instance_id,
            direct=direct,
            timestamp=now,
        )
        self._sink.deliver(notification)
        logger.debug(
            f"{smeller.entity_id} smelled {definition.id} from {ticket.source} "
            f"({'direct' if direct else f'{ticket.distance:.1f}m'})"
        )
        return notification

    # -- direct smelling --

    def can_direct_detect(self, detector_id: str, emitter_id: str) -> bool:
        """Whether the detector is close enough to deliberately sniff the emitter."""
        if detector_id not in self._smellers or emitter_id not in self._emitters:
            return False
        smeller_coords = self._world.map_position(detector_id)
        emitter_coords = self._world.map_position(emitter_id)
        if smeller_coords is None or emitter_coords is None:
            return False
        if smeller_coords.map_id != emitter_coords.map_id:
            return False
        return self._visibility.has_unobstructed_path(
            smeller_coords.position,
            emitter_coords.position,
            self._settings.scent_direct_interaction_range,
        )

    def request_direct_detection(self, detector_id: str, emitter_id: str) -> SmellNotification | None:
        """Deliberately sniff an emitter: no roll, direct messages only.

        Prefers scents that are off cooldown and allowed by consent, falling
        back to any scent the emitter has.  Raises KeyError for unknown
        entities and ScentConfigError for a definition that cannot be
        delivered directly.
        """
        smeller = self._smellers[detector_id]
        emitter = self._emitters[emitter_id]
        now = self._clock.now()

        candidates: list[Scent] = []
        for scent in emitter.scents:
            definition = self._registry.try_get(scent.scent_id)
            if definition is None:
                continue
            if smeller.is_on_cooldown(scent.instance_id, now, self._min_pending):
                continue
            if not self.consent_ok(detector_id, definition):
                continue
            candidates.append(scent)
        if not candidates:
            candidates = list(emitter.scents)
        if not candidates:
            return None

        chosen = self._rng.choice(candidates)
        definition = self._registry.get(chosen.scent_id)
        smeller_pos = self._world.world_position(detector_id)
        coords = self._world.map_position(emitter_id)
        if smeller_pos is None or coords is None:
            return None
        distance = distance_between(smeller_pos, coords.position)
        ticket = SmellTicket(
            source=emitter_id,
            scent_id=chosen.scent_id,
            instance_id=chosen.instance_id,
            origin=coords,
            created_at=now,
            distance=distance,
            priority=compute_priority(distance, definition.close_range, definition.far_range),
        )
        return self.smell(smeller, ticket, definition, now, direct=True)

    # -- examine --

    def examine(self, examiner_id: str, emitter_id: str) -> ExamineDescription | None:
        """Describe an emitter's scents for an examine tooltip.

        One random examine key per scent; None when nothing is describable.
        """
        emitter = self._emitters.get(emitter_id)
        if emitter is None or not emitter.scents:
            return None
        keys: list[str] = []
        for scent in emitter.scents:
            definition = self._registry.try_get(scent.scent_id)
            if definition is None or not definition.msgs_examine:
                continue
            keys.append(self._rng.choice(definition.msgs_examine))
        if not keys:
            return None

        params: dict[str, object] = {"scenter": emitter_id, "examiner": examiner_id}
        if len(keys) == 1:
            template = EXAMINE_ONE
            params["scent"] = keys[0]
        elif len(keys) == 2:
            template = EXAMINE_TWO
            params["scent1"] = keys[0]
            params["scent2"] = keys[1]
        else:
            template = EXAMINE_MULTIPLE
            params["scents"] = keys[:-1]
            params["lastscent"] = keys[-1]
        return ExamineDescription(template=template, params=params, scent_keys=keys)

    # -- state --

    def get_state(self) -> dict:
        return {
            "now": self._clock.now(),
            "next_detection_time": self.context.next_detection_time,
            "sweeps": self.context.sweeps,
            "emitters": len(self._emitters),
            "smellers": len(self._smellers),
            "live_scents": len(self._instances),
        }

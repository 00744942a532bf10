"""Tests for priority math, delivery chance, SmellTicket and Smeller bookkeeping."""

from __future__ import annotations

import pytest

from engine.simulation.scent_providers import MapCoordinates
from engine.simulation.scents import ScentDefinition
from engine.simulation.smell_ticket import (
    OUT_OF_RANGE_PRIORITY,
    Scent,
    SmellTicket,
    compute_priority,
    delivery_chance,
)
from engine.simulation.smeller import ScentEmitter, Smeller


def _ticket(instance_id: str = "i1", priority: float = 1.0, distance: float = 1.0) -> SmellTicket:
    return SmellTicket(
        source="src",
        scent_id="scent_test",
        instance_id=instance_id,
        origin=MapCoordinates("map-0", (distance, 0.0)),
        created_at=0.0,
        distance=distance,
        priority=priority,
    )


pytestmark = pytest.mark.unit


class TestComputePriority:
    def test_out_of_range(self):
        assert compute_priority(7.01, 2.0, 7.0) == OUT_OF_RANGE_PRIORITY
        assert compute_priority(100.0, 2.0, 7.0) == -999.0

    def test_close_range(self):
        # 1 + 2 + 3 * (2 - 1) / 2
        assert compute_priority(1.0, 2.0, 7.0) == pytest.approx(4.5)

    def test_zero_distance_is_max(self):
        assert compute_priority(0.0, 2.0, 7.0) == pytest.approx(6.0)

    def test_close_boundary_uses_floor(self):
        # factor floored at 0.1: 1 + 2 + 3 * 0.1 / 2
        assert compute_priority(2.0, 2.0, 7.0) == pytest.approx(3.15)

    def test_far_range(self):
        # 1 + 2 * (7 - 5) / 7
        assert compute_priority(5.0, 2.0, 7.0) == pytest.approx(1.0 + 4.0 / 7.0)

    def test_far_boundary_uses_floor(self):
        assert compute_priority(7.0, 2.0, 7.0) == pytest.approx(1.0 + 0.2 / 7.0)

    def test_close_always_beats_far(self):
        assert compute_priority(2.0, 2.0, 7.0) > compute_priority(2.0001, 2.0, 7.0)

    @pytest.mark.parametrize("close_range,far_range", [(2.0, 7.0), (0.5, 3.0), (6.0, 7.0), (1.0, 40.0)])
    def test_non_increasing_with_distance(self, close_range, far_range):
        steps = 400
        previous = None
        for i in range(steps + 1):
            d = far_range * i / steps
            p = compute_priority(d, close_range, far_range)
            if previous is not None:
                assert p <= previous + 1e-12
            previous = p

    def test_not_randomized(self):
        values = {compute_priority(3.3, 2.0, 7.0) for _ in range(20)}
        assert len(values) == 1


class TestDeliveryChance:
    def test_low_ranking_uses_base(self):
        assert delivery_chance(15, 1.5) == 15.0
        assert delivery_chance(15, 2.0) == 15.0

    def test_high_ranking_scales(self):
        assert delivery_chance(15, 4.0) == pytest.approx(60.0)

    def test_clamped_to_100(self):
        assert delivery_chance(50, 4.5) == 100.0

    def test_clamped_to_zero(self):
        assert delivery_chance(15, -999.0) == 15.0
        assert delivery_chance(0, 5.0) == 0.0


class TestSmellTicket:
    def test_ranking_applies_multiplier(self):
        ticket = _ticket(priority=2.0)
        assert ticket.ranking(ScentDefinition(id="x", priority_multiplier=1.5)) == pytest.approx(3.0)
        assert ticket.priority == 2.0

    def test_to_dict(self):
        data = _ticket(priority=4.5).to_dict()
        assert data["instance_id"] == "i1"
        assert data["map_id"] == "map-0"
        assert data["origin"] == [1.0, 0.0]

    def test_scent_create_unique(self):
        a = Scent.create("scent_test")
        b = Scent.create("scent_test")
        assert a.scent_id == b.scent_id
        assert a.instance_id != b.instance_id


class TestSmeller:
    def test_upsert_appends_new(self):
        smeller = Smeller("nose")
        assert smeller.upsert(_ticket("a"))
        assert smeller.upsert(_ticket("b"))
        assert [t.instance_id for t in smeller.pending] == ["a", "b"]

    def test_upsert_higher_updates_existing(self):
        smeller = Smeller("nose")
        original = _ticket("a", priority=1.5, distance=5.0)
        smeller.upsert(original)
        assert not smeller.upsert(_ticket("a", priority=4.0, distance=1.0))
        assert smeller.pending == [original]
        assert original.priority == 4.0
        assert original.distance == 1.0
        assert original.origin.position == (1.0, 0.0)

    def test_upsert_lower_discarded(self):
        smeller = Smeller("nose")
        original = _ticket("a", priority=4.0, distance=1.0)
        smeller.upsert(original)
        assert not smeller.upsert(_ticket("a", priority=4.0, distance=3.0))
        assert original.distance == 1.0

    def test_discard_by_identity(self):
        smeller = Smeller("nose")
        a = _ticket("a")
        smeller.upsert(a)
        smeller.discard(_ticket("zzz"))
        assert smeller.pending == [a]
        smeller.discard(a)
        assert smeller.pending == []

    def test_purge_instance(self):
        smeller = Smeller("nose")
        smeller.pending = [_ticket("a"), _ticket("b"), _ticket("a")]
        assert smeller.purge_instance("a") == 2
        assert [t.instance_id for t in smeller.pending] == ["b"]

    def test_cooldown_needs_entry(self):
        smeller = Smeller("nose", pending=[_ticket(str(i)) for i in range(5)])
        assert not smeller.is_on_cooldown("x", now=0.0)

    def test_cooldown_zero_entry_ignored(self):
        smeller = Smeller("nose", pending=[_ticket(str(i)) for i in range(5)])
        smeller.cooldowns["x"] = 0.0
        assert not smeller.is_on_cooldown("x", now=-1.0)

    def test_cooldown_ignored_below_min_pending(self):
        smeller = Smeller("nose", pending=[_ticket("a"), _ticket("b")])
        smeller.cooldowns["x"] = 50.0
        assert not smeller.is_on_cooldown("x", now=10.0)
        smeller.pending.append(_ticket("c"))
        assert smeller.is_on_cooldown("x", now=10.0)
        assert not smeller.is_on_cooldown("x", now=50.0)

    def test_custom_min_pending(self):
        smeller = Smeller("nose", pending=[_ticket("a")])
        smeller.cooldowns["x"] = 50.0
        assert smeller.is_on_cooldown("x", now=10.0, min_pending=1)

    def test_to_dict(self):
        smeller = Smeller("nose", tags={"b", "a"})
        smeller.upsert(_ticket("a"))
        data = smeller.to_dict()
        assert data["entity_id"] == "nose"
        assert data["tags"] == ["a", "b"]
        assert len(data["pending"]) == 1


class TestScentEmitter:
    def test_find(self):
        scent = Scent.create("scent_test")
        emitter = ScentEmitter("src", scents=[scent])
        assert emitter.find(scent.instance_id) is scent
        assert emitter.find("nope") is None

from __future__ import annotations

from dataclasses import replace
from typing import List, Sequence

from .events import EventLog, EventType
from .factory import VehicleFactory
from .road_network import LaneIndex, Roadway
from .vehicles import Vehicle


class TripLifecycleManager:
    """
    Closed-population churn:
    every vehicle that completed its planned trip leaves the freeway and is
    replaced, in the same tick, by a fresh vehicle at position 0 of a
    uniformly random lane. When the drawn lane is occupied around position 0
    the lane is redrawn among the clear ones; if no lane is clear the first
    draw stands.
    """

    def __init__(self, factory: VehicleFactory, roadway: Roadway, next_id: int) -> None:
        self.factory = factory
        self.roadway = roadway
        self.next_id = next_id

    @classmethod
    def for_population(
        cls,
        factory: VehicleFactory,
        roadway: Roadway,
        vehicles: Sequence[Vehicle],
    ) -> "TripLifecycleManager":
        next_id = max((v.id for v in vehicles), default=-1) + 1
        return cls(factory, roadway, next_id)

    def process(self, vehicles: Sequence[Vehicle], events: EventLog) -> List[Vehicle]:
        """Remove finished vehicles and spawn one replacement for each."""
        remaining: List[Vehicle] = []
        finished: List[Vehicle] = []
        for v in vehicles:
            if v.trip_completed:
                finished.append(v)
            else:
                remaining.append(v)

        for v in finished:
            events.emit(EventType.EXIT, v)

        if not finished:
            return remaining

        index = LaneIndex.build(remaining, self.roadway)
        for _ in finished:
            new_vehicle = self.spawn(index)
            index.insert(new_vehicle)
            remaining.append(new_vehicle)
            events.emit(EventType.ENTER, new_vehicle)

        return remaining

    def spawn(self, index: LaneIndex) -> Vehicle:
        lane = self.factory.random_lane()
        v = self.factory.create(self.next_id, lane=lane, position=0.0)
        self.next_id += 1

        if self._entry_is_clear(index, v, lane):
            return v
        clear = [c for c in range(self.roadway.num_lanes) if self._entry_is_clear(index, v, c)]
        if not clear:
            return v
        return replace(v, lane=clear[int(self.factory.rng.integers(len(clear)))])

    def _entry_is_clear(self, index: LaneIndex, v: Vehicle, lane: int) -> bool:
        """No body within its length plus the standstill gap of position 0."""
        standstill = self.factory.params.min_standstill_gap

        leader = index.leader(lane, v.position, v.id)
        if leader is not None:
            ahead = self.roadway.gap(v.position, leader.position) * 1000.0
            if ahead < leader.length + standstill:
                return False

        follower = index.follower(lane, v.position, v.id)
        if follower is not None:
            behind = self.roadway.gap(follower.position, v.position) * 1000.0
            if behind < v.length + standstill:
                return False

        return True

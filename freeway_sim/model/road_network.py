from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

from .vehicles import Vehicle


@dataclass(frozen=True)
class Roadway:
    """
    Closed circular freeway:
    every lane shares the same length, lanes are plain indices and
    adjacency is index +/- 1 (lane 0 is the rightmost lane).
    """

    length: float                # [km]
    num_lanes: int

    def wrap(self, position: float) -> float:
        """Map a position into [0, length)."""
        wrapped = position % self.length
        # float modulo can round up to exactly length
        if wrapped >= self.length or wrapped < 0.0:
            return 0.0
        return wrapped

    def gap(self, follower_pos: float, leader_pos: float) -> float:
        """Circular distance [km] from follower to leader, looking forward."""
        d = leader_pos - follower_pos
        if d < 0.0:
            d += self.length
        return d

    def adjacent_lanes(self, lane: int) -> List[int]:
        return [c for c in (lane - 1, lane + 1) if 0 <= c < self.num_lanes]

    def clamp_lane(self, lane: int) -> int:
        return min(max(int(lane), 0), self.num_lanes - 1)

    @property
    def rightmost_lane(self) -> int:
        return 0

    @property
    def leftmost_lane(self) -> int:
        return self.num_lanes - 1


LaneKey = Tuple[float, int]


class LaneIndex:
    """
    Per-lane ordered index of vehicles keyed by (position, id).

    Leader/follower queries are O(log n) bisections instead of a filter+sort
    per vehicle. Vehicles can be inserted, removed or moved between lanes
    incrementally; the stored objects are whatever was inserted (usually the
    snapshot of the previous tick).
    """

    def __init__(self, roadway: Roadway) -> None:
        self.roadway = roadway
        self._keys: List[List[LaneKey]] = [[] for _ in range(roadway.num_lanes)]
        self._vehicles: Dict[int, Vehicle] = {}

    @classmethod
    def build(cls, vehicles: Iterable[Vehicle], roadway: Roadway) -> "LaneIndex":
        index = cls(roadway)
        for v in vehicles:
            index._vehicles[v.id] = v
            index._keys[v.lane].append((v.position, v.id))
        for keys in index._keys:
            keys.sort()
        return index

    # ------------------------ MUTATION ------------------------

    def insert(self, v: Vehicle) -> None:
        self._vehicles[v.id] = v
        insort(self._keys[v.lane], (v.position, v.id))

    def remove(self, v: Vehicle) -> None:
        current = self._vehicles.pop(v.id)
        keys = self._keys[current.lane]
        key = (current.position, current.id)
        i = bisect_left(keys, key)
        if i < len(keys) and keys[i] == key:
            del keys[i]

    def move(self, v: Vehicle, new_lane: int) -> Vehicle:
        """Re-file a vehicle under another lane and return the moved copy."""
        current = self._vehicles[v.id]
        self.remove(current)
        moved = replace(current, lane=new_lane)
        self.insert(moved)
        return moved

    # ------------------------ QUERIES ------------------------

    def get(self, vehicle_id: int) -> Vehicle:
        return self._vehicles[vehicle_id]

    def leader(self, lane: int, position: float, vehicle_id: int) -> Optional[Vehicle]:
        """Nearest vehicle ahead in `lane` (circularly), other than `vehicle_id`."""
        keys = self._keys[lane]
        n = len(keys)
        if n == 0:
            return None
        i = bisect_right(keys, (position, vehicle_id))
        for offset in range(n):
            _, vid = keys[(i + offset) % n]
            if vid != vehicle_id:
                return self._vehicles[vid]
        return None

    def follower(self, lane: int, position: float, vehicle_id: int) -> Optional[Vehicle]:
        """Nearest vehicle behind in `lane` (circularly), other than `vehicle_id`."""
        keys = self._keys[lane]
        n = len(keys)
        if n == 0:
            return None
        i = bisect_left(keys, (position, vehicle_id)) - 1
        for offset in range(n):
            _, vid = keys[(i - offset) % n]
            if vid != vehicle_id:
                return self._vehicles[vid]
        return None

    def leader_of(self, v: Vehicle) -> Optional[Vehicle]:
        return self.leader(v.lane, v.position, v.id)

    def follower_of(self, v: Vehicle) -> Optional[Vehicle]:
        return self.follower(v.lane, v.position, v.id)

    def __len__(self) -> int:
        return len(self._vehicles)

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

from .vehicles import Vehicle


class EventType(str, Enum):
    EXIT = "exit"
    ENTER = "enter"
    LANE_CHANGE = "laneChange"


@dataclass(frozen=True)
class VehicleEvent:
    type: EventType
    vehicle_id: int
    name: str
    position: float
    speed: float
    lane: Optional[int] = None

    @classmethod
    def of(cls, event_type: EventType, v: Vehicle) -> "VehicleEvent":
        return cls(
            type=event_type,
            vehicle_id=v.id,
            name=v.name,
            position=v.position,
            speed=v.speed,
            lane=v.lane,
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "vehicleId": self.vehicle_id,
            "name": self.name,
            "position": self.position,
            "speed": self.speed,
            "lane": self.lane,
        }


class EventLog:
    """
    Ordered events emitted by one tick.

    The engine never keeps a log after returning it; consumers either iterate
    it or call drain() to take ownership of the events.
    """

    def __init__(self) -> None:
        self._events: List[VehicleEvent] = []

    def emit(self, event_type: EventType, v: Vehicle) -> VehicleEvent:
        event = VehicleEvent.of(event_type, v)
        self._events.append(event)
        return event

    def drain(self) -> List[VehicleEvent]:
        events, self._events = self._events, []
        return events

    def of_type(self, event_type: EventType) -> List[VehicleEvent]:
        return [e for e in self._events if e.type == event_type]

    def counts(self) -> Dict[str, int]:
        out = {t.value: 0 for t in EventType}
        for e in self._events:
            out[e.type.value] += 1
        return out

    def __iter__(self) -> Iterator[VehicleEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

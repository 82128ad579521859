"""Ordered, de-duplicated collection of delivery stops."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Iterator

from ...models.domain import WorkingSetItem
from .errors import DuplicateFacility, InvalidReorder


def _copy(item: WorkingSetItem, **changes) -> WorkingSetItem:
    return replace(item, requisition_ids=list(item.requisition_ids), **changes)


@dataclass(slots=True, frozen=True)
class WorkingSetTotals:
    stop_count: int
    slot_demand: int
    weight_kg: float
    volume_m3: float


class WorkingSet:
    """Stops in visiting order.

    ``sequence`` on every item always equals its index; each mutation
    renumbers before returning. Items are copied on the way in and out so
    callers cannot break that from the outside.
    """

    def __init__(self, items: Iterable[WorkingSetItem] = ()) -> None:
        self._items: list[WorkingSetItem] = []
        self.add_many(items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[WorkingSetItem]:
        return iter(self.items)

    def __contains__(self, facility_id: object) -> bool:
        return any(item.facility_id == facility_id for item in self._items)

    @property
    def items(self) -> tuple[WorkingSetItem, ...]:
        return tuple(_copy(item) for item in self._items)

    @property
    def facility_ids(self) -> list[str]:
        return [item.facility_id for item in self._items]

    def get(self, facility_id: str) -> WorkingSetItem | None:
        for item in self._items:
            if item.facility_id == facility_id:
                return _copy(item)
        return None

    def requisition_map(self) -> dict[str, list[str]]:
        return {item.facility_id: list(item.requisition_ids) for item in self._items}

    @property
    def totals(self) -> WorkingSetTotals:
        return WorkingSetTotals(
            stop_count=len(self._items),
            slot_demand=sum(item.slot_demand for item in self._items),
            weight_kg=sum(item.weight_kg or 0.0 for item in self._items),
            volume_m3=sum(item.volume_m3 or 0.0 for item in self._items),
        )

    def add(self, item: WorkingSetItem, *, strict: bool = False) -> bool:
        """Append a stop; returns False (or raises when ``strict``) if it is already present."""
        if item.facility_id in self:
            if strict:
                raise DuplicateFacility(item.facility_id)
            return False
        self._items.append(_copy(item, sequence=len(self._items)))
        return True

    def add_many(self, items: Iterable[WorkingSetItem]) -> int:
        return sum(1 for item in items if self.add(item))

    def remove(self, facility_id: str) -> bool:
        remaining = [item for item in self._items if item.facility_id != facility_id]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        self._renumber()
        return True

    def reorder(self, from_index: int, to_index: int) -> None:
        length = len(self._items)
        if not (0 <= from_index < length and 0 <= to_index < length):
            raise InvalidReorder(from_index, to_index, length)
        if from_index == to_index:
            return
        moved = self._items.pop(from_index)
        self._items.insert(to_index, moved)
        self._renumber()

    def clear(self) -> None:
        self._items = []

    def set_items(self, items: Iterable[WorkingSetItem]) -> None:
        self._items = []
        self.add_many(items)

    def _renumber(self) -> None:
        for index, item in enumerate(self._items):
            item.sequence = index

"""Slot assignment engine: maps working-set stops onto a vehicle's tiered slot grid.

Slots are addressed as ``"<tier_name>-<slot_number>"`` with slot numbers
starting at 1 inside each tier. Tiers are always walked in ascending
``order``; the greedy auto-assign fills the grid in that order using the
working-set order of the stops, ignoring weight and volume ceilings.

Two fill modes exist for auto-assign:

* ``SlotFillMode.SINGLE`` - every stop takes exactly one slot regardless of
  its ``slot_demand``.
* ``SlotFillMode.DEMAND`` - a stop reserves ``max(1, slot_demand)``
  contiguous free slots inside a single tier, or is left unassigned when no
  such run exists.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Iterable, Sequence

from ...models.domain import SlotAssignment, SlotInfo, Tier, WorkingSetItem
from .errors import InvalidSlotKey, InvalidTierConfiguration
from .working_set import WorkingSet

logger = logging.getLogger(__name__)


class SlotFillMode(str, Enum):
    SINGLE = "single"
    DEMAND = "demand"


def slot_key(tier_name: str, slot_number: int) -> str:
    return f"{tier_name}-{slot_number}"


def validate_tiers(tiers: Iterable[Tier]) -> list[Tier]:
    """Return the tiers sorted by ``order`` after checking names and orders are unique."""
    ordered = sorted(tiers, key=lambda tier: tier.order)
    names: set[str] = set()
    orders: set[int] = set()
    for tier in ordered:
        if not tier.name:
            raise InvalidTierConfiguration("Tier name must not be empty.")
        if tier.slot_count < 0:
            raise InvalidTierConfiguration(f"Tier '{tier.name}' has a negative slot count ({tier.slot_count}).")
        if tier.name in names:
            raise InvalidTierConfiguration(f"Duplicate tier name '{tier.name}'.")
        if tier.order in orders:
            raise InvalidTierConfiguration(f"Duplicate tier order {tier.order} (tier '{tier.name}').")
        names.add(tier.name)
        orders.add(tier.order)
    return ordered


class SlotAssignmentEngine:
    def __init__(self, tiers: Iterable[Tier] = (), fill_mode: SlotFillMode | str = SlotFillMode.SINGLE) -> None:
        self.fill_mode = SlotFillMode(fill_mode)
        self._tiers: list[Tier] = validate_tiers(tiers)
        self._assignments: dict[str, SlotAssignment] = {}

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def tiers(self) -> tuple[Tier, ...]:
        return tuple(self._tiers)

    def configure(self, tiers: Iterable[Tier]) -> None:
        """Install a new tier layout; existing assignments belong to the old layout and are dropped."""
        self._tiers = validate_tiers(tiers)
        self._assignments = {}

    def parse_slot_key(self, key: str) -> tuple[Tier, int]:
        tier_name, sep, number_text = key.rpartition("-")
        if not sep or not tier_name:
            raise InvalidSlotKey(key, "expected '<tier_name>-<slot_number>'")
        try:
            number = int(number_text)
        except ValueError as exc:
            raise InvalidSlotKey(key, f"slot number '{number_text}' is not an integer") from exc
        for tier in self._tiers:
            if tier.name == tier_name:
                if 1 <= number <= tier.slot_count:
                    return tier, number
                raise InvalidSlotKey(key, f"tier '{tier_name}' has slots 1..{tier.slot_count}")
        raise InvalidSlotKey(key, f"unknown tier '{tier_name}'")

    def slots(self) -> list[SlotInfo]:
        grid: list[SlotInfo] = []
        for tier in self._tiers:
            for number in range(1, tier.slot_count + 1):
                key = slot_key(tier.name, number)
                grid.append(
                    SlotInfo(
                        slot_key=key,
                        tier_name=tier.name,
                        tier_order=tier.order,
                        slot_number=number,
                        capacity_kg=tier.capacity_kg,
                        capacity_m3=tier.capacity_m3,
                        assignment=self._assignments.get(key),
                    )
                )
        return grid

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def assignments(self) -> dict[str, SlotAssignment]:
        return dict(self._assignments)

    def get(self, key: str) -> SlotAssignment | None:
        return self._assignments.get(key)

    @property
    def total_slots(self) -> int:
        return sum(tier.slot_count for tier in self._tiers)

    @property
    def assigned_slots(self) -> int:
        return len(self._assignments)

    @property
    def available_slots(self) -> int:
        return max(0, self.total_slots - self.assigned_slots)

    @property
    def utilization_pct(self) -> int:
        total = self.total_slots
        if total <= 0:
            return 0
        # Round half up.
        return min(100, int(100 * self.assigned_slots / total + 0.5))

    @property
    def is_overflow(self) -> bool:
        return self.assigned_slots > self.total_slots

    @property
    def assigned_facility_ids(self) -> set[str]:
        return {assignment.facility_id for assignment in self._assignments.values()}

    def slots_for(self, facility_id: str) -> list[str]:
        return [key for key, assignment in self._assignments.items() if assignment.facility_id == facility_id]

    def unassigned_facilities(self, working_set: WorkingSet | Sequence[WorkingSetItem]) -> list[WorkingSetItem]:
        placed = self.assigned_facility_ids
        return [item for item in working_set if item.facility_id not in placed]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def assign(self, key: str, item: WorkingSetItem, requisition_ids: Sequence[str] | None = None) -> SlotAssignment:
        """Place ``item`` in ``key``, replacing any occupant and releasing the item's other slots."""
        tier, number = self.parse_slot_key(key)
        for held in self.slots_for(item.facility_id):
            if held != key:
                del self._assignments[held]
        assignment = self._build(tier, number, item, requisition_ids)
        self._assignments[assignment.slot_key] = assignment
        return assignment

    def unassign(self, key: str) -> bool:
        return self._assignments.pop(key, None) is not None

    def clear(self) -> None:
        self._assignments = {}

    def prune(self, valid_facility_ids: Iterable[str]) -> list[str]:
        """Drop assignments whose facility is no longer valid; returns the released slot keys."""
        valid = set(valid_facility_ids)
        stale = [key for key, assignment in self._assignments.items() if assignment.facility_id not in valid]
        for key in stale:
            del self._assignments[key]
        if stale:
            logger.debug(f"Released {len(stale)} slot(s) held by removed facilities: {stale}")
        return stale

    def auto_assign(self, working_set: WorkingSet | Sequence[WorkingSetItem]) -> list[str]:
        """Fill empty slots from the unassigned stops; returns the newly filled slot keys."""
        pending = self.unassigned_facilities(working_set)
        if not pending:
            return []
        if self.fill_mode is SlotFillMode.DEMAND:
            filled = self._auto_assign_by_demand(pending)
        else:
            filled = self._auto_assign_single(pending)
        if filled:
            logger.info(
                f"Auto-assigned {len(filled)} slot(s); {self.assigned_slots}/{self.total_slots} in use "
                f"({self.utilization_pct}%)"
            )
        return filled

    def _auto_assign_single(self, pending: list[WorkingSetItem]) -> list[str]:
        queue = deque(pending)
        filled: list[str] = []
        for info in self.slots():
            if not queue:
                break
            if info.is_assigned:
                continue
            item = queue.popleft()
            tier, number = self.parse_slot_key(info.slot_key)
            self._assignments[info.slot_key] = self._build(tier, number, item, None)
            filled.append(info.slot_key)
        return filled

    def _auto_assign_by_demand(self, pending: list[WorkingSetItem]) -> list[str]:
        filled: list[str] = []
        for item in pending:
            if self.available_slots == 0:
                break
            run = self._find_free_run(max(1, item.slot_demand))
            if run is None:
                logger.debug(f"No run of {max(1, item.slot_demand)} free slots for facility {item.facility_id}")
                continue
            tier, numbers = run
            for number in numbers:
                assignment = self._build(tier, number, item, None)
                self._assignments[assignment.slot_key] = assignment
                filled.append(assignment.slot_key)
        return filled

    def _find_free_run(self, length: int) -> tuple[Tier, list[int]] | None:
        for tier in self._tiers:
            run: list[int] = []
            for number in range(1, tier.slot_count + 1):
                if slot_key(tier.name, number) in self._assignments:
                    run = []
                    continue
                run.append(number)
                if len(run) == length:
                    return tier, run
        return None

    @staticmethod
    def _build(
        tier: Tier,
        number: int,
        item: WorkingSetItem,
        requisition_ids: Sequence[str] | None,
    ) -> SlotAssignment:
        return SlotAssignment(
            slot_key=slot_key(tier.name, number),
            facility_id=item.facility_id,
            facility_name=item.facility_name,
            requisition_ids=list(requisition_ids if requisition_ids is not None else item.requisition_ids),
            tier_name=tier.name,
            slot_number=number,
            slot_demand=item.slot_demand,
            weight_kg=item.weight_kg,
            volume_m3=item.volume_m3,
        )

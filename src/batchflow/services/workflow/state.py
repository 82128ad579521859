"""Read-only snapshot of a workflow session."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from ...models.domain import (
    AiOptimizationOptions,
    Priority,
    RoutePoint,
    SlotAssignment,
    SourceMethod,
    SourceSubOption,
    StartLocation,
    Tier,
    TimeWindow,
    WorkingSetItem,
)

FIRST_STEP = 1
LAST_STEP = 5
STEP_LABELS: dict[int, str] = {
    1: "Source",
    2: "Schedule",
    3: "Batch",
    4: "Route",
    5: "Review",
}


@dataclass(slots=True, frozen=True)
class SessionState:
    current_step: int = FIRST_STEP
    source_method: Optional[SourceMethod] = None
    source_sub_option: Optional[SourceSubOption] = None
    schedule_title: Optional[str] = None
    start_location: Optional[StartLocation] = None
    planned_date: Optional[str] = None
    time_window: Optional[TimeWindow] = None
    working_set: tuple[WorkingSetItem, ...] = ()
    ai_optimization_options: AiOptimizationOptions = field(default_factory=AiOptimizationOptions)
    suggested_vehicle_id: Optional[str] = None
    notes: Optional[str] = None
    batch_name: Optional[str] = None
    priority: Priority = "medium"
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    tiers: tuple[Tier, ...] = ()
    slot_assignments: dict[str, SlotAssignment] = field(default_factory=dict)
    optimized_route: tuple[RoutePoint, ...] = ()
    total_distance_km: Optional[float] = None
    estimated_duration_min: Optional[float] = None
    pre_batch_id: Optional[str] = None

    @property
    def start_location_id(self) -> Optional[str]:
        return self.start_location.id if self.start_location else None

    @property
    def start_location_type(self) -> str:
        return self.start_location.type if self.start_location else "warehouse"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["start_location_id"] = self.start_location_id
        data["start_location_type"] = self.start_location_type
        return data

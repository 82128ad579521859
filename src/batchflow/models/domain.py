"""Domain models for the batch workflow: stops, vehicle tiers, slots, routes and payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

SourceMethod = Literal["ready", "upload", "manual"]
SourceSubOption = Literal["manual_scheduling", "ai_optimization"]
StartLocationType = Literal["warehouse", "facility"]
TimeWindow = Literal["morning", "afternoon", "evening", "all_day"]
Priority = Literal["low", "medium", "high", "urgent"]
PreBatchStatus = Literal["draft", "ready", "converted", "cancelled"]

SOURCE_METHODS: tuple[str, ...] = ("ready", "upload", "manual")
SOURCE_SUB_OPTIONS: tuple[str, ...] = ("manual_scheduling", "ai_optimization")
START_LOCATION_TYPES: tuple[str, ...] = ("warehouse", "facility")
TIME_WINDOWS: tuple[str, ...] = ("morning", "afternoon", "evening", "all_day")
PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "urgent")
PRE_BATCH_STATUSES: tuple[str, ...] = ("draft", "ready", "converted", "cancelled")


@dataclass(slots=True)
class WorkingSetItem:
    """One stop in the working set, with the requisitions folded into it."""

    facility_id: str
    facility_name: str
    requisition_ids: list[str] = field(default_factory=list)
    slot_demand: int = 1
    facility_code: Optional[str] = None
    lga: Optional[str] = None
    zone: Optional[str] = None
    weight_kg: Optional[float] = None
    volume_m3: Optional[float] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    eta: Optional[str] = None
    sequence: int = 0

    def __post_init__(self) -> None:
        if self.slot_demand < 0:
            raise ValueError(f"slot_demand must be >= 0 (got {self.slot_demand}) for facility {self.facility_id}.")


@dataclass(slots=True, frozen=True)
class Tier:
    """A named capacity partition of a vehicle, e.g. a shelf level."""

    name: str
    order: int
    slot_count: int
    capacity_kg: Optional[float] = None
    capacity_m3: Optional[float] = None


@dataclass(slots=True)
class SlotAssignment:
    slot_key: str
    facility_id: str
    facility_name: str
    requisition_ids: list[str]
    tier_name: str
    slot_number: int
    slot_demand: int = 1
    weight_kg: Optional[float] = None
    volume_m3: Optional[float] = None


@dataclass(slots=True, frozen=True)
class SlotInfo:
    """One cell of the rendered slot grid."""

    slot_key: str
    tier_name: str
    tier_order: int
    slot_number: int
    capacity_kg: Optional[float] = None
    capacity_m3: Optional[float] = None
    assignment: Optional[SlotAssignment] = None

    @property
    def is_assigned(self) -> bool:
        return self.assignment is not None


@dataclass(slots=True, frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(slots=True, frozen=True)
class StopLocation:
    facility_id: str
    lat: float
    lng: float


@dataclass(slots=True, frozen=True)
class RoutePoint:
    facility_id: str
    lat: float
    lng: float
    sequence: int


@dataclass(slots=True, frozen=True)
class RouteOptimizationResult:
    route: list[RoutePoint]
    total_distance_km: float
    estimated_duration_min: float


@dataclass(slots=True, frozen=True)
class AiOptimizationOptions:
    shortest_distance: bool = False
    fastest_route: bool = False
    efficiency: bool = False
    priority_complex: bool = False


@dataclass(slots=True, frozen=True)
class StartLocation:
    id: str
    type: StartLocationType = "warehouse"
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def coordinates(self) -> Coordinates | None:
        if self.lat is None or self.lng is None:
            return None
        return Coordinates(lat=self.lat, lng=self.lng)


@dataclass(slots=True)
class DraftPayload:
    """Everything the draft store needs to persist a pre-batch at step 2."""

    source_method: SourceMethod
    source_sub_option: Optional[SourceSubOption]
    schedule_title: str
    start_location_id: str
    start_location_type: StartLocationType
    planned_date: str
    time_window: Optional[TimeWindow]
    facility_order: list[str]
    facility_requisition_map: dict[str, list[str]]
    ai_optimization_options: Optional[dict[str, bool]]
    suggested_vehicle_id: Optional[str]
    notes: Optional[str]


@dataclass(slots=True)
class CommitPayload:
    """Everything the batch store needs to convert a pre-batch into a delivery batch."""

    pre_batch_id: str
    batch_name: str
    vehicle_id: str
    driver_id: Optional[str]
    priority: Priority
    slot_assignments: dict[str, dict]
    optimized_route: list[dict]
    total_distance_km: Optional[float]
    estimated_duration_min: Optional[float]
    notes: Optional[str]


@dataclass(slots=True)
class DraftRecord:
    """A persisted pre-batch as read back from a store."""

    id: str
    source_method: SourceMethod
    source_sub_option: Optional[SourceSubOption] = None
    schedule_title: str = ""
    start_location_id: str = ""
    start_location_type: StartLocationType = "warehouse"
    planned_date: Optional[str] = None
    time_window: Optional[TimeWindow] = None
    facility_order: list[str] = field(default_factory=list)
    facility_requisition_map: dict[str, list[str]] = field(default_factory=dict)
    ai_optimization_options: Optional[dict[str, bool]] = None
    suggested_vehicle_id: Optional[str] = None
    notes: Optional[str] = None
    status: PreBatchStatus = "draft"
    converted_batch_id: Optional[str] = None


@dataclass(slots=True)
class Facility:
    id: str
    name: str
    code: Optional[str] = None
    lga: Optional[str] = None
    zone: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


@dataclass(slots=True)
class Vehicle:
    id: str
    model: str
    plate_number: Optional[str] = None
    capacity_m3: Optional[float] = None
    max_weight_kg: Optional[float] = None
    tiers: list[Tier] = field(default_factory=list)


@dataclass(slots=True)
class Driver:
    id: str
    name: str
    phone: Optional[str] = None
    status: Optional[str] = None


@dataclass(slots=True)
class Warehouse:
    id: str
    name: str
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

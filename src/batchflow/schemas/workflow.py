"""Batch workflow request/response schemas."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.domain import Tier, WorkingSetItem


class CreateWorkflowRequest(BaseModel):
    pre_batch_id: Optional[str] = Field(default=None, description="Saved draft to reopen.")
    start_step: int = Field(default=2, ge=1, le=3, description="Step the reopened draft starts at.")


class SourceUpdate(BaseModel):
    source_method: Optional[str] = None
    source_sub_option: Optional[str] = None


class ScheduleUpdate(BaseModel):
    schedule_title: Optional[str] = None
    start_location_id: Optional[str] = None
    start_location_type: str = "warehouse"
    start_lat: Optional[float] = Field(None, ge=-90, le=90)
    start_lng: Optional[float] = Field(None, ge=-180, le=180)
    planned_date: Optional[date] = None
    time_window: Optional[str] = None
    notes: Optional[str] = None
    suggested_vehicle_id: Optional[str] = None


class AiOptionsUpdate(BaseModel):
    shortest_distance: Optional[bool] = None
    fastest_route: Optional[bool] = None
    efficiency: Optional[bool] = None
    priority_complex: Optional[bool] = None


class BatchUpdate(BaseModel):
    batch_name: Optional[str] = None
    priority: Optional[str] = None


class TierModel(BaseModel):
    tier_name: str
    tier_order: int
    slot_count: int = Field(..., ge=0)
    capacity_kg: Optional[float] = Field(None, ge=0)
    capacity_m3: Optional[float] = Field(None, ge=0)

    def to_domain(self) -> Tier:
        return Tier(
            name=self.tier_name,
            order=self.tier_order,
            slot_count=self.slot_count,
            capacity_kg=self.capacity_kg,
            capacity_m3=self.capacity_m3,
        )


class VehicleRequest(BaseModel):
    vehicle_id: str
    tiers: Optional[List[TierModel]] = Field(
        default=None,
        description="Slot layout. When omitted it is read from the vehicle's tiered_config.",
    )


class DriverRequest(BaseModel):
    driver_id: Optional[str] = None


class WorkingSetItemModel(BaseModel):
    facility_id: str
    facility_name: str
    requisition_ids: List[str] = Field(default_factory=list)
    slot_demand: int = Field(default=1, ge=0)
    facility_code: Optional[str] = None
    lga: Optional[str] = None
    zone: Optional[str] = None
    weight_kg: Optional[float] = Field(None, ge=0)
    volume_m3: Optional[float] = Field(None, ge=0)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    eta: Optional[str] = None

    def to_domain(self) -> WorkingSetItem:
        return WorkingSetItem(**self.model_dump())


class WorkingSetAddRequest(BaseModel):
    items: List[WorkingSetItemModel] = Field(..., min_length=1)
    replace: bool = Field(default=False, description="Replace the whole working set instead of appending.")


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int


class SlotAssignRequest(BaseModel):
    facility_id: str
    requisition_ids: Optional[List[str]] = None


class WorkflowResponse(BaseModel):
    workflow_id: str
    state: Dict[str, Any]


class OperationResponse(WorkflowResponse):
    result: Dict[str, Any] = Field(default_factory=dict)

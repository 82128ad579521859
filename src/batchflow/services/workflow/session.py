"""Workflow session: the five-step state machine that turns a working set into a delivery batch.

Steps: 1 Source -> 2 Schedule -> 3 Batch -> 4 Route -> 5 Review.

A session owns one ``WorkingSet``, one ``SlotAssignmentEngine`` and one
``RouteStage`` and is the only thing that mutates them, so the invariants
that span them (no slot or route may reference a stop that left the working
set) are restored inside the same call that broke them.

The three collaborator calls (optimize, save draft, confirm) are coroutines.
Each has an ``OperationState``; a second call while the first is pending is
refused with ``OperationPending``, every other action stays available.
A failed call leaves the session exactly as it was.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Protocol, Sequence

from ...config import settings
from ...models.domain import (
    PRIORITIES,
    SOURCE_METHODS,
    SOURCE_SUB_OPTIONS,
    START_LOCATION_TYPES,
    TIME_WINDOWS,
    AiOptimizationOptions,
    CommitPayload,
    Coordinates,
    DraftPayload,
    DraftRecord,
    Facility,
    RouteOptimizationResult,
    RoutePoint,
    SlotAssignment,
    SlotInfo,
    StartLocation,
    StopLocation,
    Tier,
    WorkingSetItem,
)
from .errors import ExternalCallFailed, InvalidTransition, OperationPending, UnknownFacility
from .route_stage import RouteOptimizer, RouteStage, ensure_permutation
from .slots import SlotAssignmentEngine, SlotFillMode
from .state import FIRST_STEP, LAST_STEP, SessionState
from .validation import ChecklistItem, review_checklist, validation_errors
from .working_set import WorkingSet, WorkingSetTotals

logger = logging.getLogger(__name__)

OPTIMIZE = "optimize"
SAVE_DRAFT = "save_draft"
CONFIRM = "confirm"
RESUMABLE_STEPS = (1, 2, 3)


class BatchStore(Protocol):
    async def create_draft(self, payload: DraftPayload) -> str:
        ...

    async def convert_draft_to_batch(self, payload: CommitPayload) -> str:
        ...


class OperationStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True)
class OperationState:
    status: OperationStatus = OperationStatus.IDLE
    error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status is OperationStatus.PENDING


def _require_choice(value: Optional[str], allowed: Sequence[str], field_name: str, *, optional: bool = False) -> None:
    if value is None and optional:
        return
    if value not in allowed:
        raise ValueError(f"Invalid {field_name} '{value}'. Expected one of: {', '.join(allowed)}")


def _normalize_date(value: date | str | None) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()[:10]
    text = value.strip()
    if not text:
        return None
    # Accept full timestamps; only the calendar date is kept.
    return date.fromisoformat(text[:10]).isoformat()


class WorkflowSession:
    def __init__(
        self,
        optimizer: RouteOptimizer | None = None,
        store: BatchStore | None = None,
        *,
        slot_fill_mode: SlotFillMode | str | None = None,
    ) -> None:
        self.optimizer = optimizer
        self.store = store
        self.slot_fill_mode = SlotFillMode(slot_fill_mode or settings.slot_fill_mode)
        self._operations: dict[str, OperationState] = {
            name: OperationState() for name in (OPTIMIZE, SAVE_DRAFT, CONFIRM)
        }
        self._generation = 0
        self._reset_fields()

    def _reset_fields(self) -> None:
        self._current_step = FIRST_STEP
        self._source_method: Optional[str] = None
        self._source_sub_option: Optional[str] = None
        self._schedule_title: Optional[str] = None
        self._start_location: Optional[StartLocation] = None
        self._planned_date: Optional[str] = None
        self._time_window: Optional[str] = None
        self._working_set = WorkingSet()
        self._ai_options = AiOptimizationOptions()
        self._suggested_vehicle_id: Optional[str] = None
        self._notes: Optional[str] = None
        self._batch_name: Optional[str] = None
        self._priority = "medium"
        self._vehicle_id: Optional[str] = None
        self._driver_id: Optional[str] = None
        self._slots = SlotAssignmentEngine(fill_mode=self.slot_fill_mode)
        self._route = RouteStage()
        self._pre_batch_id: Optional[str] = None
        # Draft auto-created by a confirm whose conversion failed; reused on retry.
        self._confirm_draft: Optional[tuple[DraftPayload, str]] = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return SessionState(
            current_step=self._current_step,
            source_method=self._source_method,
            source_sub_option=self._source_sub_option,
            schedule_title=self._schedule_title,
            start_location=self._start_location,
            planned_date=self._planned_date,
            time_window=self._time_window,
            working_set=self._working_set.items,
            ai_optimization_options=self._ai_options,
            suggested_vehicle_id=self._suggested_vehicle_id,
            notes=self._notes,
            batch_name=self._batch_name,
            priority=self._priority,
            vehicle_id=self._vehicle_id,
            driver_id=self._driver_id,
            tiers=self._slots.tiers,
            slot_assignments=self._slots.assignments,
            optimized_route=self._route.optimized_route,
            total_distance_km=self._route.total_distance_km,
            estimated_duration_min=self._route.estimated_duration_min,
            pre_batch_id=self._pre_batch_id,
        )

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def pre_batch_id(self) -> Optional[str]:
        return self._pre_batch_id

    @property
    def working_set(self) -> tuple[WorkingSetItem, ...]:
        return self._working_set.items

    @property
    def totals(self) -> WorkingSetTotals:
        return self._working_set.totals

    @property
    def slot_assignments(self) -> dict[str, SlotAssignment]:
        return self._slots.assignments

    @property
    def slot_engine(self) -> SlotAssignmentEngine:
        """The slot engine, for derived values only; mutate through the session actions."""
        return self._slots

    @property
    def optimized_route(self) -> tuple[RoutePoint, ...]:
        return self._route.optimized_route

    def slots(self) -> list[SlotInfo]:
        return self._slots.slots()

    def unassigned_facilities(self) -> list[WorkingSetItem]:
        return self._slots.unassigned_facilities(self._working_set)

    def operation(self, name: str) -> OperationState:
        state = self._operations[name]
        return OperationState(status=state.status, error=state.error)

    def can_proceed(self, step: int | None = None) -> bool:
        return not self.validation_errors(step)

    def validation_errors(self, step: int | None = None) -> list[str]:
        return validation_errors(self.state, step)

    def review_checklist(self) -> list[ChecklistItem]:
        return review_checklist(self.state)

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view of the session, including derived values."""
        state = self.state
        data = state.to_dict()
        data.update(
            can_proceed=self.can_proceed(),
            validation_errors=self.validation_errors(),
            totals=asdict(self.totals),
            slot_summary={
                "total_slots": self._slots.total_slots,
                "assigned_slots": self._slots.assigned_slots,
                "available_slots": self._slots.available_slots,
                "utilization_pct": self._slots.utilization_pct,
                "is_overflow": self._slots.is_overflow,
                "fill_mode": self.slot_fill_mode.value,
            },
            unassigned_facility_ids=[item.facility_id for item in self.unassigned_facilities()],
            operations={name: {"status": op.status.value, "error": op.error} for name, op in self._operations.items()},
            review_checklist=[asdict(item) for item in review_checklist(state)],
        )
        return data

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next_step(self) -> int:
        step = self._current_step
        if step >= LAST_STEP:
            raise InvalidTransition(step, "already at the final step")
        errors = self.validation_errors(step)
        if errors:
            raise InvalidTransition(step, "; ".join(errors))
        self._current_step = step + 1
        return self._current_step

    def previous_step(self) -> int:
        if self._current_step > FIRST_STEP:
            self._current_step -= 1
        return self._current_step

    def go_to_step(self, step: int) -> None:
        """Jump without the ``can_proceed`` guard; for opening a resumed draft only."""
        if not isinstance(step, int) or not FIRST_STEP <= step <= LAST_STEP:
            raise ValueError(f"Step must be between {FIRST_STEP} and {LAST_STEP} (got {step!r}).")
        self._current_step = step

    def reset_workflow(self) -> None:
        self._generation += 1
        self._reset_fields()
        for op in self._operations.values():
            if not op.is_pending:
                op.status = OperationStatus.IDLE
                op.error = None

    # ------------------------------------------------------------------
    # Step 1: source
    # ------------------------------------------------------------------

    def set_source_method(self, method: str) -> None:
        _require_choice(method, SOURCE_METHODS, "source method")
        self._source_method = method

    def set_source_sub_option(self, option: Optional[str]) -> None:
        _require_choice(option, SOURCE_SUB_OPTIONS, "source sub-option", optional=True)
        self._source_sub_option = option

    # ------------------------------------------------------------------
    # Step 2: schedule header, working set, decision support
    # ------------------------------------------------------------------

    def set_schedule_title(self, title: Optional[str]) -> None:
        self._schedule_title = title

    def set_start_location(
        self,
        location_id: str,
        location_type: str = "warehouse",
        *,
        lat: float | None = None,
        lng: float | None = None,
    ) -> None:
        _require_choice(location_type, START_LOCATION_TYPES, "start location type")
        self._start_location = StartLocation(id=location_id, type=location_type, lat=lat, lng=lng)

    def set_planned_date(self, planned_date: date | str | None) -> None:
        self._planned_date = _normalize_date(planned_date)

    def set_time_window(self, window: Optional[str]) -> None:
        _require_choice(window, TIME_WINDOWS, "time window", optional=True)
        self._time_window = window

    def set_notes(self, notes: Optional[str]) -> None:
        self._notes = notes

    def add_to_working_set(self, item: WorkingSetItem) -> bool:
        added = self._working_set.add(item)
        if added:
            self._route.invalidate()
        return added

    def add_many_to_working_set(self, items: Iterable[WorkingSetItem]) -> int:
        added = self._working_set.add_many(items)
        if added:
            self._route.invalidate()
        return added

    def set_working_set(self, items: Iterable[WorkingSetItem]) -> None:
        self._working_set.set_items(items)
        self._slots.prune(self._working_set.facility_ids)
        self._route.invalidate()

    def remove_from_working_set(self, facility_id: str) -> bool:
        removed = self._working_set.remove(facility_id)
        if removed:
            self._slots.prune(self._working_set.facility_ids)
            self._route.invalidate()
        return removed

    def reorder_working_set(self, from_index: int, to_index: int) -> None:
        self._working_set.reorder(from_index, to_index)

    def clear_working_set(self) -> None:
        self._working_set.clear()
        self._slots.clear()
        self._route.invalidate()

    def set_ai_optimization_options(self, **options: bool) -> AiOptimizationOptions:
        known = {f.name for f in fields(AiOptimizationOptions)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(f"Unknown AI optimization option(s): {', '.join(unknown)}")
        self._ai_options = replace(self._ai_options, **{key: bool(value) for key, value in options.items()})
        return self._ai_options

    def toggle_ai_option(self, name: str) -> AiOptimizationOptions:
        current = getattr(self._ai_options, name, None)
        if not isinstance(current, bool):
            raise ValueError(f"Unknown AI optimization option: {name}")
        return self.set_ai_optimization_options(**{name: not current})

    def set_suggested_vehicle(self, vehicle_id: Optional[str]) -> None:
        self._suggested_vehicle_id = vehicle_id

    # ------------------------------------------------------------------
    # Step 3: batch details and slots
    # ------------------------------------------------------------------

    def set_batch_name(self, name: Optional[str]) -> None:
        self._batch_name = name

    def set_priority(self, priority: str) -> None:
        _require_choice(priority, PRIORITIES, "priority")
        self._priority = priority

    def commit_vehicle(self, vehicle_id: str, tiers: Iterable[Tier] = ()) -> None:
        """Commit a vehicle and its slot layout; assignments made for the previous layout are dropped."""
        self._slots.configure(tiers)
        self._vehicle_id = vehicle_id

    def assign_driver(self, driver_id: Optional[str]) -> None:
        self._driver_id = driver_id

    def assign_facility_to_slot(
        self,
        slot_key: str,
        facility_id: str,
        requisition_ids: Sequence[str] | None = None,
    ) -> SlotAssignment:
        item = self._working_set.get(facility_id)
        if item is None:
            raise UnknownFacility(facility_id)
        return self._slots.assign(slot_key, item, requisition_ids)

    def unassign_slot(self, slot_key: str) -> bool:
        return self._slots.unassign(slot_key)

    def auto_assign_slots(self) -> list[str]:
        return self._slots.auto_assign(self._working_set)

    def clear_slot_assignments(self) -> None:
        self._slots.clear()

    # ------------------------------------------------------------------
    # Step 4: route
    # ------------------------------------------------------------------

    def set_optimized_route(
        self,
        route: Sequence[RoutePoint],
        total_distance_km: float | None,
        estimated_duration_min: float | None,
    ) -> None:
        ensure_permutation(route, self._working_set.facility_ids)
        self._route.set_route(route, total_distance_km, estimated_duration_min)

    async def optimize_route(self) -> RouteOptimizationResult:
        self._ensure_idle(OPTIMIZE)
        stops, start = self._route_inputs()

        async def call():
            if self.optimizer is None:
                raise RuntimeError("No route optimizer is configured.")
            return await self._route.optimize(
                self.optimizer,
                stops,
                start,
                self._ai_options,
                current_facility_ids=lambda: self._working_set.facility_ids,
            )

        return await self._run(OPTIMIZE, call)

    def _route_inputs(self) -> tuple[list[StopLocation], Coordinates]:
        if not self._working_set:
            raise ValueError("The working set is empty.")
        start = self._start_location.coordinates if self._start_location else None
        if start is None:
            raise ValueError("The start location has no coordinates.")
        missing = [item.facility_id for item in self._working_set if item.lat is None or item.lng is None]
        if missing:
            raise ValueError(f"Facilities without coordinates: {', '.join(missing)}")
        stops = [
            StopLocation(facility_id=item.facility_id, lat=item.lat, lng=item.lng)
            for item in self._working_set
        ]
        return stops, start

    # ------------------------------------------------------------------
    # Draft / commit
    # ------------------------------------------------------------------

    def _draft_payload(self) -> DraftPayload:
        is_ai = self._source_sub_option == "ai_optimization"
        return DraftPayload(
            source_method=self._source_method,
            source_sub_option=self._source_sub_option,
            schedule_title=self._schedule_title,
            start_location_id=self._start_location.id,
            start_location_type=self._start_location.type,
            planned_date=self._planned_date,
            time_window=self._time_window,
            facility_order=self._working_set.facility_ids,
            facility_requisition_map=self._working_set.requisition_map(),
            ai_optimization_options=asdict(self._ai_options) if is_ai else None,
            suggested_vehicle_id=self._suggested_vehicle_id,
            notes=self._notes,
        )

    def _commit_payload(self, pre_batch_id: str) -> CommitPayload:
        return CommitPayload(
            pre_batch_id=pre_batch_id,
            batch_name=self._batch_name.strip(),
            vehicle_id=self._vehicle_id,
            driver_id=self._driver_id,
            priority=self._priority,
            slot_assignments={key: asdict(value) for key, value in self._slots.assignments.items()},
            optimized_route=[asdict(point) for point in self._route.optimized_route],
            total_distance_km=self._route.total_distance_km,
            estimated_duration_min=self._route.estimated_duration_min,
            notes=self._notes,
        )

    async def save_draft(self) -> str:
        """Persist steps 1-2 as a pre-batch; the session keeps going with ``pre_batch_id`` set."""
        self._ensure_idle(SAVE_DRAFT)
        if self._current_step != 2:
            raise InvalidTransition(self._current_step, "drafts can only be saved from the schedule step")
        errors = self.validation_errors(2)
        if errors:
            raise InvalidTransition(2, "; ".join(errors))

        payload = self._draft_payload()
        generation = self._generation

        async def call() -> str:
            pre_batch_id = await self._require_store().create_draft(payload)
            if generation == self._generation:
                self._pre_batch_id = pre_batch_id
            logger.info(f"Saved draft {pre_batch_id} with {len(payload.facility_order)} facilities")
            return pre_batch_id

        return await self._run(SAVE_DRAFT, call)

    async def confirm(self) -> str:
        """Convert the session into a delivery batch; on success the session is reset."""
        self._ensure_idle(CONFIRM)
        if self._current_step != LAST_STEP:
            raise InvalidTransition(self._current_step, "batches can only be confirmed from the review step")
        errors = self.validation_errors(LAST_STEP)
        if not self._pre_batch_id:
            errors += self.validation_errors(2)
        if errors:
            raise InvalidTransition(LAST_STEP, "; ".join(errors))

        existing_draft = self._pre_batch_id
        draft_payload = None if existing_draft else self._draft_payload()
        if draft_payload is not None and self._confirm_draft and self._confirm_draft[0] == draft_payload:
            existing_draft = self._confirm_draft[1]
        commit_payload = self._commit_payload(existing_draft or "")
        generation = self._generation

        async def call() -> str:
            store = self._require_store()
            pre_batch_id = existing_draft
            if pre_batch_id is None:
                pre_batch_id = await store.create_draft(draft_payload)
                logger.info(f"Saved draft {pre_batch_id} before confirming")
                if generation == self._generation:
                    self._confirm_draft = (draft_payload, pre_batch_id)
            batch_id = await store.convert_draft_to_batch(replace(commit_payload, pre_batch_id=pre_batch_id))
            logger.info(f"Converted draft {pre_batch_id} into batch {batch_id}")
            if generation == self._generation:
                self.reset_workflow()
            return batch_id

        return await self._run(CONFIRM, call)

    def resume(
        self,
        draft: DraftRecord,
        facilities: Mapping[str, Facility] | Iterable[Facility] | None = None,
        *,
        start_step: int = 2,
        start_coordinates: Coordinates | None = None,
    ) -> None:
        """Load a saved draft into a fresh session and open it at ``start_step``."""
        if start_step not in RESUMABLE_STEPS:
            raise ValueError(f"A draft can only be reopened at steps {RESUMABLE_STEPS} (got {start_step}).")
        if draft.status in ("converted", "cancelled"):
            raise ValueError(f"Draft {draft.id} is {draft.status} and cannot be resumed.")

        if facilities is None:
            lookup: dict[str, Facility] = {}
        elif isinstance(facilities, Mapping):
            lookup = dict(facilities)
        else:
            lookup = {facility.id: facility for facility in facilities}

        items = []
        for facility_id in draft.facility_order:
            facility = lookup.get(facility_id)
            items.append(
                WorkingSetItem(
                    facility_id=facility_id,
                    facility_name=facility.name if facility else facility_id,
                    facility_code=facility.code if facility else None,
                    lga=facility.lga if facility else None,
                    zone=facility.zone if facility else None,
                    lat=facility.lat if facility else None,
                    lng=facility.lng if facility else None,
                    requisition_ids=list(draft.facility_requisition_map.get(facility_id, [])),
                )
            )

        self.reset_workflow()
        self.set_source_method(draft.source_method)
        self.set_source_sub_option(draft.source_sub_option)
        self.set_schedule_title(draft.schedule_title)
        self.set_start_location(
            draft.start_location_id,
            draft.start_location_type,
            lat=start_coordinates.lat if start_coordinates else None,
            lng=start_coordinates.lng if start_coordinates else None,
        )
        self.set_planned_date(draft.planned_date)
        self.set_time_window(draft.time_window)
        if draft.ai_optimization_options:
            self.set_ai_optimization_options(**draft.ai_optimization_options)
        self.set_suggested_vehicle(draft.suggested_vehicle_id)
        self.set_notes(draft.notes)
        self.add_many_to_working_set(items)
        self._pre_batch_id = draft.id
        self.go_to_step(start_step)
        logger.info(f"Resumed draft {draft.id} at step {start_step} with {len(items)} facilities")

    # ------------------------------------------------------------------
    # Operation bookkeeping
    # ------------------------------------------------------------------

    def _require_store(self) -> BatchStore:
        if self.store is None:
            raise RuntimeError("No batch store is configured.")
        return self.store

    def _ensure_idle(self, name: str) -> None:
        if self._operations[name].is_pending:
            raise OperationPending(name)

    async def _run(self, name: str, call: Callable[[], Awaitable[Any]]) -> Any:
        op = self._operations[name]
        op.status = OperationStatus.PENDING
        op.error = None
        try:
            result = await call()
        except asyncio.CancelledError:
            op.status = OperationStatus.IDLE
            raise
        except ExternalCallFailed as exc:
            op.status = OperationStatus.ERROR
            op.error = str(exc.cause)
            raise
        except Exception as exc:
            op.status = OperationStatus.ERROR
            op.error = str(exc)
            logger.warning(f"{name} failed: {exc}")
            raise ExternalCallFailed(name, exc) from exc
        op.status = OperationStatus.SUCCESS
        return result

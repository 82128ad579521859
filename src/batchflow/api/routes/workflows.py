"""Batch workflow endpoints: one open session per workflow id."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...schemas.workflow import (
    AiOptionsUpdate,
    BatchUpdate,
    CreateWorkflowRequest,
    DriverRequest,
    OperationResponse,
    ReorderRequest,
    ScheduleUpdate,
    SlotAssignRequest,
    SourceUpdate,
    VehicleRequest,
    WorkflowResponse,
    WorkingSetAddRequest,
)
from ...services.workflow import (
    ExternalCallFailed,
    InvalidTransition,
    OperationPending,
    SessionRegistry,
    UnknownSession,
    WorkflowError,
    WorkflowSession,
)

router = APIRouter(prefix="/workflows", tags=["workflows"])


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, UnknownSession):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidTransition, OperationPending)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ExternalCallFailed):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, (WorkflowError, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logging.exception(f"Unexpected workflow error: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Workflow operation failed: {str(exc)}",
    )


def _session(registry: SessionRegistry, workflow_id: str) -> WorkflowSession:
    try:
        return registry.get(workflow_id)
    except UnknownSession as exc:
        raise _http_error(exc) from exc


def _response(workflow_id: str, session: WorkflowSession) -> WorkflowResponse:
    return WorkflowResponse(workflow_id=workflow_id, state=session.snapshot())


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    payload: CreateWorkflowRequest | None = None,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    """Open a new workflow, or reopen a saved draft when ``pre_batch_id`` is given."""
    payload = payload or CreateWorkflowRequest()
    try:
        if payload.pre_batch_id:
            workflow_id, session = await registry.resume(payload.pre_batch_id, payload.start_step)
        else:
            workflow_id, session = registry.create()
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> WorkflowResponse:
    return _response(workflow_id, _session(registry, workflow_id))


@router.delete("/{workflow_id}", status_code=status.HTTP_200_OK)
def cancel_workflow(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict:
    """Discard the workflow without saving anything."""
    try:
        registry.drop(workflow_id)
    except Exception as exc:
        raise _http_error(exc) from exc
    return {"success": True, "message": f"Workflow {workflow_id} cancelled"}


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


@router.post("/{workflow_id}/next", response_model=WorkflowResponse)
def next_step(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    try:
        session.next_step()
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.post("/{workflow_id}/previous", response_model=WorkflowResponse)
def previous_step(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    session.previous_step()
    return _response(workflow_id, session)


@router.post("/{workflow_id}/reset", response_model=WorkflowResponse)
def reset_workflow(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    session.reset_workflow()
    return _response(workflow_id, session)


@router.get("/{workflow_id}/validation")
def validation(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict:
    session = _session(registry, workflow_id)
    return {
        "step": session.current_step,
        "can_proceed": session.can_proceed(),
        "errors": session.validation_errors(),
        "review_checklist": session.snapshot()["review_checklist"],
    }


# ---------------------------------------------------------------------------
# Field updates
# ---------------------------------------------------------------------------


@router.patch("/{workflow_id}/source", response_model=WorkflowResponse)
def update_source(
    workflow_id: str,
    payload: SourceUpdate,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    try:
        if "source_method" in payload.model_fields_set and payload.source_method is not None:
            session.set_source_method(payload.source_method)
        if "source_sub_option" in payload.model_fields_set:
            session.set_source_sub_option(payload.source_sub_option)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.patch("/{workflow_id}/schedule", response_model=WorkflowResponse)
def update_schedule(
    workflow_id: str,
    payload: ScheduleUpdate,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    fields_set = payload.model_fields_set
    try:
        if "schedule_title" in fields_set:
            session.set_schedule_title(payload.schedule_title)
        if payload.start_location_id:
            lat, lng = payload.start_lat, payload.start_lng
            if (lat is None or lng is None) and payload.start_location_type == "warehouse":
                directory = registry.directory()
                warehouse = directory.get_warehouse(payload.start_location_id) if directory else None
                if warehouse is not None:
                    lat, lng = warehouse.lat, warehouse.lng
            session.set_start_location(
                payload.start_location_id,
                payload.start_location_type,
                lat=lat,
                lng=lng,
            )
        if "planned_date" in fields_set:
            session.set_planned_date(payload.planned_date)
        if "time_window" in fields_set:
            session.set_time_window(payload.time_window)
        if "notes" in fields_set:
            session.set_notes(payload.notes)
        if "suggested_vehicle_id" in fields_set:
            session.set_suggested_vehicle(payload.suggested_vehicle_id)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.patch("/{workflow_id}/ai-options", response_model=WorkflowResponse)
def update_ai_options(
    workflow_id: str,
    payload: AiOptionsUpdate,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    session.set_ai_optimization_options(**payload.model_dump(exclude_none=True))
    return _response(workflow_id, session)


@router.patch("/{workflow_id}/batch", response_model=WorkflowResponse)
def update_batch(
    workflow_id: str,
    payload: BatchUpdate,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    try:
        if "batch_name" in payload.model_fields_set:
            session.set_batch_name(payload.batch_name)
        if payload.priority is not None:
            session.set_priority(payload.priority)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.post("/{workflow_id}/vehicle", response_model=WorkflowResponse)
def commit_vehicle(
    workflow_id: str,
    payload: VehicleRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    """Commit a vehicle; its tier layout replaces the slot grid and clears assignments."""
    session = _session(registry, workflow_id)
    try:
        if payload.tiers is not None:
            tiers = [tier.to_domain() for tier in payload.tiers]
        else:
            directory = registry.directory()
            vehicle = directory.get_vehicle(payload.vehicle_id) if directory else None
            if directory is not None and vehicle is None:
                raise ValueError(f"Vehicle '{payload.vehicle_id}' not found")
            tiers = vehicle.tiers if vehicle else []
        session.commit_vehicle(payload.vehicle_id, tiers)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.post("/{workflow_id}/driver", response_model=WorkflowResponse)
def assign_driver(
    workflow_id: str,
    payload: DriverRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    session.assign_driver(payload.driver_id)
    return _response(workflow_id, session)


# ---------------------------------------------------------------------------
# Working set
# ---------------------------------------------------------------------------


@router.post("/{workflow_id}/working-set", response_model=OperationResponse)
def add_to_working_set(
    workflow_id: str,
    payload: WorkingSetAddRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> OperationResponse:
    session = _session(registry, workflow_id)
    items = [item.to_domain() for item in payload.items]
    try:
        if payload.replace:
            session.set_working_set(items)
            added = len(session.working_set)
        else:
            added = session.add_many_to_working_set(items)
    except Exception as exc:
        raise _http_error(exc) from exc
    return OperationResponse(workflow_id=workflow_id, state=session.snapshot(), result={"added": added})


@router.delete("/{workflow_id}/working-set/{facility_id}", response_model=WorkflowResponse)
def remove_from_working_set(
    workflow_id: str,
    facility_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    if not session.remove_from_working_set(facility_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Facility {facility_id} is not in the working set",
        )
    return _response(workflow_id, session)


@router.post("/{workflow_id}/working-set/reorder", response_model=WorkflowResponse)
def reorder_working_set(
    workflow_id: str,
    payload: ReorderRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    try:
        session.reorder_working_set(payload.from_index, payload.to_index)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.delete("/{workflow_id}/working-set", response_model=WorkflowResponse)
def clear_working_set(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    session.clear_working_set()
    return _response(workflow_id, session)


# ---------------------------------------------------------------------------
# Slots
# ---------------------------------------------------------------------------


@router.put("/{workflow_id}/slots/{slot_key}", response_model=WorkflowResponse)
def assign_slot(
    workflow_id: str,
    slot_key: str,
    payload: SlotAssignRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    try:
        session.assign_facility_to_slot(slot_key, payload.facility_id, payload.requisition_ids)
    except Exception as exc:
        raise _http_error(exc) from exc
    return _response(workflow_id, session)


@router.delete("/{workflow_id}/slots/{slot_key}", response_model=WorkflowResponse)
def unassign_slot(
    workflow_id: str,
    slot_key: str,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkflowResponse:
    session = _session(registry, workflow_id)
    session.unassign_slot(slot_key)
    return _response(workflow_id, session)


@router.post("/{workflow_id}/slots/auto-assign", response_model=OperationResponse)
def auto_assign_slots(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> OperationResponse:
    session = _session(registry, workflow_id)
    filled = session.auto_assign_slots()
    return OperationResponse(workflow_id=workflow_id, state=session.snapshot(), result={"filled_slots": filled})


# ---------------------------------------------------------------------------
# Long-running operations
# ---------------------------------------------------------------------------


@router.post("/{workflow_id}/route/optimize", response_model=OperationResponse)
async def optimize_route(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> OperationResponse:
    session = _session(registry, workflow_id)
    try:
        result = await session.optimize_route()
    except Exception as exc:
        raise _http_error(exc) from exc
    return OperationResponse(
        workflow_id=workflow_id,
        state=session.snapshot(),
        result={
            "total_distance_km": result.total_distance_km,
            "estimated_duration_min": result.estimated_duration_min,
            "stops": len(result.route),
        },
    )


@router.post("/{workflow_id}/draft", response_model=OperationResponse)
async def save_draft(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> OperationResponse:
    session = _session(registry, workflow_id)
    try:
        pre_batch_id = await session.save_draft()
    except Exception as exc:
        raise _http_error(exc) from exc
    return OperationResponse(workflow_id=workflow_id, state=session.snapshot(), result={"pre_batch_id": pre_batch_id})


@router.post("/{workflow_id}/confirm", response_model=OperationResponse)
async def confirm(workflow_id: str, registry: SessionRegistry = Depends(get_registry)) -> OperationResponse:
    """Create the delivery batch; the session is reset and closed once the batch exists."""
    session = _session(registry, workflow_id)
    try:
        batch_id = await session.confirm()
    except Exception as exc:
        raise _http_error(exc) from exc
    state = session.snapshot()
    if workflow_id in registry:
        registry.drop(workflow_id)
    return OperationResponse(workflow_id=workflow_id, state=state, result={"batch_id": batch_id})

"""Per-step validation rules and the final review checklist.

Everything here is a pure function of a ``SessionState``; the session uses
``can_proceed`` to guard ``next_step`` and the composite actions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .state import SessionState


@dataclass(slots=True, frozen=True)
class ChecklistItem:
    label: str
    ok: bool
    value: str
    required: bool = True


def _filled(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def _source_errors(state: SessionState) -> list[str]:
    errors: list[str] = []
    if not state.source_method:
        errors.append("Please select a source method")
    elif state.source_method == "ready" and not state.source_sub_option:
        errors.append("Please select a scheduling option")
    return errors


def _schedule_errors(state: SessionState) -> list[str]:
    errors: list[str] = []
    if not _filled(state.schedule_title):
        errors.append("Schedule title is required")
    if not state.start_location_id:
        errors.append("Start location is required")
    if not _filled(state.planned_date):
        errors.append("Planned date is required")
    if not state.working_set:
        errors.append("Please add at least one facility to the schedule")
    return errors


def _batch_errors(state: SessionState) -> list[str]:
    errors: list[str] = []
    if not _filled(state.batch_name):
        errors.append("Batch name is required")
    if not state.vehicle_id:
        errors.append("Vehicle selection is required")
    return errors


def _review_errors(state: SessionState) -> list[str]:
    return [item.label + " is missing" for item in review_checklist(state) if item.required and not item.ok]


def validation_errors(state: SessionState, step: int | None = None) -> list[str]:
    """Messages for every required field of ``step`` (default: the current step) that is unset."""
    step = state.current_step if step is None else step
    if step == 1:
        return _source_errors(state)
    if step == 2:
        return _schedule_errors(state)
    if step == 3:
        return _batch_errors(state)
    if step == 4:
        # Optimization is optional.
        return []
    if step == 5:
        return _review_errors(state)
    return [f"Unknown step {step}"]


def can_proceed(state: SessionState, step: int | None = None) -> bool:
    return not validation_errors(state, step)


def review_checklist(state: SessionState) -> list[ChecklistItem]:
    stop_count = len(state.working_set)
    distance = state.total_distance_km
    return [
        ChecklistItem(
            label="Batch name",
            ok=_filled(state.batch_name),
            value=state.batch_name or "Not set",
        ),
        ChecklistItem(
            label="Vehicle selected",
            ok=bool(state.vehicle_id),
            value=state.vehicle_id or "Not selected",
        ),
        ChecklistItem(
            label="Facilities added",
            ok=stop_count > 0,
            value=f"{stop_count} facilities",
        ),
        ChecklistItem(
            label="Route optimized",
            ok=bool(state.optimized_route),
            value=f"{distance:.1f} km" if state.optimized_route and distance is not None else "Not optimized",
            required=False,
        ),
    ]

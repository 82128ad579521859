"""Batch creation workflow core."""

from .errors import (
    DuplicateFacility,
    ExternalCallFailed,
    InvalidReorder,
    InvalidSlotKey,
    InvalidTierConfiguration,
    InvalidTransition,
    OperationPending,
    UnknownFacility,
    WorkflowError,
)
from .registry import SessionRegistry, UnknownSession
from .route_stage import RouteOptimizer, RouteStage
from .session import BatchStore, OperationState, OperationStatus, WorkflowSession
from .slots import SlotAssignmentEngine, SlotFillMode, slot_key
from .state import SessionState
from .validation import ChecklistItem, can_proceed, review_checklist, validation_errors
from .working_set import WorkingSet, WorkingSetTotals

__all__ = [
    "BatchStore",
    "ChecklistItem",
    "DuplicateFacility",
    "ExternalCallFailed",
    "InvalidReorder",
    "InvalidSlotKey",
    "InvalidTierConfiguration",
    "InvalidTransition",
    "OperationPending",
    "OperationState",
    "OperationStatus",
    "RouteOptimizer",
    "RouteStage",
    "SessionRegistry",
    "SessionState",
    "SlotAssignmentEngine",
    "SlotFillMode",
    "UnknownFacility",
    "UnknownSession",
    "WorkflowError",
    "WorkflowSession",
    "WorkingSet",
    "WorkingSetTotals",
    "can_proceed",
    "review_checklist",
    "slot_key",
    "validation_errors",
]

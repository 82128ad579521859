"""Errors raised by the batch workflow core."""

from __future__ import annotations


class WorkflowError(ValueError):
    """Base class for actions the workflow refuses synchronously."""


class InvalidTransition(WorkflowError):
    def __init__(self, step: int, reason: str) -> None:
        self.step = step
        self.reason = reason
        super().__init__(f"Cannot leave step {step}: {reason}")


class InvalidSlotKey(WorkflowError):
    def __init__(self, slot_key: str, reason: str = "no such tier/slot on the committed vehicle") -> None:
        self.slot_key = slot_key
        super().__init__(f"Invalid slot key '{slot_key}': {reason}")


class InvalidReorder(WorkflowError, IndexError):
    def __init__(self, from_index: int, to_index: int, length: int) -> None:
        self.from_index = from_index
        self.to_index = to_index
        super().__init__(f"Cannot move item {from_index} -> {to_index} in a working set of {length} items")


class InvalidTierConfiguration(WorkflowError):
    pass


class DuplicateFacility(WorkflowError):
    def __init__(self, facility_id: str) -> None:
        self.facility_id = facility_id
        super().__init__(f"Facility '{facility_id}' is already in the working set")


class UnknownFacility(WorkflowError):
    def __init__(self, facility_id: str) -> None:
        self.facility_id = facility_id
        super().__init__(f"Facility '{facility_id}' is not in the working set")


class OperationPending(WorkflowError):
    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"'{operation}' is already in progress")


class ExternalCallFailed(RuntimeError):
    """A collaborator call (optimize, save draft, confirm) failed; session state is unchanged."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")

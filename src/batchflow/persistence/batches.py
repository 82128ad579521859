"""Draft (pre-batch) and delivery batch persistence.

Two interchangeable stores implement the session's ``BatchStore`` protocol:
``SupabaseBatchStore`` writes to the ``scheduler_pre_batches`` and
``delivery_batches`` tables, ``FileBatchStore`` keeps one JSON document per
record under the data root. ``get_batch_store`` picks Supabase when it is
configured.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, fields
from typing import Any, Iterable, Sequence

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import CommitPayload, DraftPayload, DraftRecord
from .filesystem import FileStorage, utc_timestamp

logger = logging.getLogger(__name__)

PRE_BATCH_TABLE = "scheduler_pre_batches"
BATCH_TABLE = "delivery_batches"
DRAFTS = "drafts"
BATCHES = "batches"
DEFAULT_MEDICATION_TYPE = "Mixed"

_DRAFT_FIELDS = {f.name for f in fields(DraftRecord)}


def time_from_window(time_window: str | None) -> str:
    """Dispatch time stored on the batch for a planned time window."""
    return {
        "morning": "08:00:00",
        "afternoon": "13:00:00",
        "evening": "18:00:00",
    }.get(time_window or "", "06:00:00")


def normalize_id(value: Any) -> str | None:
    """Map empty / 'null' / 'undefined' identifiers to None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text in ("null", "undefined", "None"):
        return None
    return text


def draft_row(payload: DraftPayload) -> dict[str, Any]:
    row = asdict(payload)
    row["start_location_id"] = normalize_id(payload.start_location_id)
    row["suggested_vehicle_id"] = normalize_id(payload.suggested_vehicle_id)
    if not row["start_location_id"]:
        raise ValueError("Start location is required")
    if not payload.facility_order:
        raise ValueError("A draft needs at least one facility")
    row["status"] = "draft"
    return row


def row_to_draft(row: dict[str, Any]) -> DraftRecord:
    data = {key: value for key, value in row.items() if key in _DRAFT_FIELDS}
    data["id"] = str(row["id"])
    data["facility_order"] = list(row.get("facility_order") or [])
    data["facility_requisition_map"] = {
        str(key): list(value or []) for key, value in (row.get("facility_requisition_map") or {}).items()
    }
    if data.get("planned_date") is not None:
        data["planned_date"] = str(data["planned_date"])[:10]
    return DraftRecord(**data)


def batch_row(draft: DraftRecord, payload: CommitPayload) -> dict[str, Any]:
    """Delivery batch row built from a stored draft plus the step 3-5 choices."""
    vehicle_id = normalize_id(payload.vehicle_id)
    driver_id = normalize_id(payload.driver_id)
    warehouse_id = normalize_id(draft.start_location_id)
    pre_batch_id = normalize_id(payload.pre_batch_id)
    if not vehicle_id:
        raise ValueError("Vehicle ID is required")
    if not warehouse_id:
        raise ValueError("Warehouse ID is required")
    if not pre_batch_id:
        raise ValueError("Pre-batch ID is required")

    return {
        "name": payload.batch_name,
        "warehouse_id": warehouse_id,
        "facility_ids": list(draft.facility_order),
        "scheduled_date": draft.planned_date,
        "scheduled_time": time_from_window(draft.time_window),
        "vehicle_id": vehicle_id,
        "driver_id": driver_id,
        "status": "assigned" if driver_id else "planned",
        "priority": payload.priority,
        "pre_batch_id": pre_batch_id,
        "slot_assignments": payload.slot_assignments,
        "optimized_route": payload.optimized_route or [],
        "total_distance": payload.total_distance_km or 0,
        "estimated_duration": payload.estimated_duration_min or 0,
        "medication_type": DEFAULT_MEDICATION_TYPE,
        "total_quantity": len(draft.facility_order) or 1,
        "notes": payload.notes or draft.notes or None,
    }


def _ensure_convertible(draft: DraftRecord | None, pre_batch_id: str) -> DraftRecord:
    if draft is None:
        raise ValueError(f"Pre-batch '{pre_batch_id}' not found")
    if draft.status in ("converted", "cancelled"):
        raise ValueError(f"Pre-batch '{pre_batch_id}' is already {draft.status}")
    return draft


class SupabaseBatchStore:
    def __init__(self, client: Any | None = None, *, workspace_id: str | None = None) -> None:
        self.client = client if client is not None else get_supabase_client()
        if self.client is None:
            raise ValueError("Supabase is not configured.")
        self.workspace_id = workspace_id

    async def create_draft(self, payload: DraftPayload) -> str:
        return await asyncio.to_thread(self._create_draft, payload)

    async def get_draft(self, pre_batch_id: str) -> DraftRecord | None:
        return await asyncio.to_thread(self._get_draft, pre_batch_id)

    async def list_drafts(self, status: Sequence[str] | None = None) -> list[DraftRecord]:
        return await asyncio.to_thread(self._list_drafts, status)

    async def cancel_draft(self, pre_batch_id: str) -> None:
        await asyncio.to_thread(self._set_status, pre_batch_id, "cancelled", None)

    async def convert_draft_to_batch(self, payload: CommitPayload) -> str:
        return await asyncio.to_thread(self._convert, payload)

    def _create_draft(self, payload: DraftPayload) -> str:
        row = draft_row(payload)
        if self.workspace_id:
            row["workspace_id"] = self.workspace_id
        response = self.client.table(PRE_BATCH_TABLE).insert(row).execute()
        if not response.data:
            raise RuntimeError("Supabase returned no row for the new pre-batch")
        pre_batch_id = str(response.data[0]["id"])
        logger.info(f"Created pre-batch {pre_batch_id} ({len(payload.facility_order)} facilities)")
        return pre_batch_id

    def _get_draft(self, pre_batch_id: str) -> DraftRecord | None:
        response = self.client.table(PRE_BATCH_TABLE).select("*").eq("id", pre_batch_id).limit(1).execute()
        rows = response.data or []
        return row_to_draft(rows[0]) if rows else None

    def _list_drafts(self, status: Sequence[str] | None) -> list[DraftRecord]:
        query = self.client.table(PRE_BATCH_TABLE).select("*").order("created_at", desc=True)
        if status:
            query = query.in_("status", list(status))
        response = query.execute()
        return [row_to_draft(row) for row in (response.data or [])]

    def _set_status(self, pre_batch_id: str, status: str, converted_batch_id: str | None) -> None:
        updates: dict[str, Any] = {"status": status}
        if converted_batch_id:
            updates["converted_batch_id"] = converted_batch_id
        self.client.table(PRE_BATCH_TABLE).update(updates).eq("id", pre_batch_id).execute()

    def _convert(self, payload: CommitPayload) -> str:
        draft = _ensure_convertible(self._get_draft(payload.pre_batch_id), payload.pre_batch_id)
        row = batch_row(draft, payload)
        response = self.client.table(BATCH_TABLE).insert(row).execute()
        if not response.data:
            raise RuntimeError("Supabase returned no row for the new delivery batch")
        batch_id = str(response.data[0]["id"])
        self._set_status(draft.id, "converted", batch_id)
        logger.info(f"Converted pre-batch {draft.id} into delivery batch {batch_id}")
        return batch_id


class FileBatchStore:
    def __init__(self, storage: FileStorage | None = None) -> None:
        self.storage = storage or FileStorage()

    async def create_draft(self, payload: DraftPayload) -> str:
        row = draft_row(payload)
        pre_batch_id = str(uuid.uuid4())
        row.update(id=pre_batch_id, converted_batch_id=None, created_at=utc_timestamp())
        self.storage.write_json(self.storage.record_path(DRAFTS, pre_batch_id), row)
        logger.info(f"Saved pre-batch {pre_batch_id} to {self.storage.root / DRAFTS}")
        return pre_batch_id

    async def get_draft(self, pre_batch_id: str) -> DraftRecord | None:
        row = self.storage.read_json(self.storage.record_path(DRAFTS, pre_batch_id))
        return row_to_draft(row) if row else None

    async def list_drafts(self, status: Sequence[str] | None = None) -> list[DraftRecord]:
        rows: Iterable[dict] = self.storage.iter_json(DRAFTS)
        drafts = [row_to_draft(row) for row in rows if not status or row.get("status") in status]
        return drafts

    async def cancel_draft(self, pre_batch_id: str) -> None:
        self._set_status(pre_batch_id, "cancelled", None)

    async def get_batch(self, batch_id: str) -> dict | None:
        return self.storage.read_json(self.storage.record_path(BATCHES, batch_id))

    async def convert_draft_to_batch(self, payload: CommitPayload) -> str:
        draft = _ensure_convertible(await self.get_draft(payload.pre_batch_id), payload.pre_batch_id)
        row = batch_row(draft, payload)
        batch_id = str(uuid.uuid4())
        row.update(id=batch_id, created_at=utc_timestamp())
        self.storage.write_json(self.storage.record_path(BATCHES, batch_id), row)
        self._set_status(draft.id, "converted", batch_id)
        logger.info(f"Converted pre-batch {draft.id} into batch {batch_id}")
        return batch_id

    def _set_status(self, pre_batch_id: str, status: str, converted_batch_id: str | None) -> None:
        path = self.storage.record_path(DRAFTS, pre_batch_id)
        row = self.storage.read_json(path)
        if row is None:
            raise ValueError(f"Pre-batch '{pre_batch_id}' not found")
        row["status"] = status
        if converted_batch_id:
            row["converted_batch_id"] = converted_batch_id
        row["updated_at"] = utc_timestamp()
        self.storage.write_json(path, row)


def get_batch_store() -> SupabaseBatchStore | FileBatchStore:
    client = get_supabase_client() if settings.supabase_configured else None
    if client is None:
        logger.info("Supabase not configured - drafts and batches will be saved to files")
        return FileBatchStore()
    return SupabaseBatchStore(client)

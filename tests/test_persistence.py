import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from src.batchflow.models.domain import CommitPayload, DraftPayload
from src.batchflow.persistence.batches import (
    FileBatchStore,
    SupabaseBatchStore,
    normalize_id,
    time_from_window,
)
from src.batchflow.persistence.filesystem import FileStorage


def _draft_payload(**overrides) -> DraftPayload:
    data = dict(
        source_method="ready",
        source_sub_option="manual_scheduling",
        schedule_title="Monday run",
        start_location_id="WH-1",
        start_location_type="warehouse",
        planned_date="2026-03-02",
        time_window="afternoon",
        facility_order=["F1", "F2"],
        facility_requisition_map={"F1": ["R1"], "F2": []},
        ai_optimization_options=None,
        suggested_vehicle_id=None,
        notes="ring the bell",
    )
    data.update(overrides)
    return DraftPayload(**data)


def _commit_payload(pre_batch_id: str, **overrides) -> CommitPayload:
    data = dict(
        pre_batch_id=pre_batch_id,
        batch_name="Batch A",
        vehicle_id="V-1",
        driver_id=None,
        priority="high",
        slot_assignments={"Upper-1": {"facility_id": "F1"}},
        optimized_route=[{"facility_id": "F2", "sequence": 0}, {"facility_id": "F1", "sequence": 1}],
        total_distance_km=12.5,
        estimated_duration_min=40.0,
        notes=None,
    )
    data.update(overrides)
    return CommitPayload(**data)


def test_file_storage_round_trips_json(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    path = storage.record_path("drafts", "abc")

    storage.write_json(path, {"id": "abc", "facility_order": ["F1"]})

    assert path == tmp_path / "drafts" / "abc.json"
    assert storage.read_json(path) == {"id": "abc", "facility_order": ["F1"]}
    assert list(storage.iter_json("drafts")) == [{"id": "abc", "facility_order": ["F1"]}]
    assert not path.with_suffix(".json.tmp").exists()


def test_file_storage_missing_record_is_none(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    assert storage.read_json(storage.record_path("drafts", "nope")) is None


@pytest.mark.parametrize("record_id", ["", "../etc", "a/b", ".hidden"])
def test_file_storage_rejects_unsafe_ids(tmp_path: Path, record_id: str) -> None:
    storage = FileStorage(root=tmp_path)
    with pytest.raises(ValueError):
        storage.record_path("drafts", record_id)


@pytest.mark.parametrize(
    "window,expected",
    [("morning", "08:00:00"), ("afternoon", "13:00:00"), ("evening", "18:00:00"), ("all_day", "06:00:00"), (None, "06:00:00")],
)
def test_time_from_window(window, expected):
    assert time_from_window(window) == expected


@pytest.mark.parametrize("value,expected", [(None, None), ("", None), ("null", None), ("undefined", None), (" V-1 ", "V-1")])
def test_normalize_id(value, expected):
    assert normalize_id(value) == expected


def test_file_store_saves_and_lists_drafts(tmp_path: Path) -> None:
    store = FileBatchStore(FileStorage(root=tmp_path))

    pre_batch_id = asyncio.run(store.create_draft(_draft_payload()))
    draft = asyncio.run(store.get_draft(pre_batch_id))

    assert draft.id == pre_batch_id
    assert draft.status == "draft"
    assert draft.facility_order == ["F1", "F2"]
    assert draft.facility_requisition_map == {"F1": ["R1"], "F2": []}
    assert [d.id for d in asyncio.run(store.list_drafts(["draft"]))] == [pre_batch_id]
    assert asyncio.run(store.list_drafts(["converted"])) == []


def test_file_store_rejects_draft_without_start_location(tmp_path: Path) -> None:
    store = FileBatchStore(FileStorage(root=tmp_path))
    with pytest.raises(ValueError):
        asyncio.run(store.create_draft(_draft_payload(start_location_id="")))


def test_file_store_converts_draft_into_batch(tmp_path: Path) -> None:
    store = FileBatchStore(FileStorage(root=tmp_path))
    pre_batch_id = asyncio.run(store.create_draft(_draft_payload()))

    batch_id = asyncio.run(store.convert_draft_to_batch(_commit_payload(pre_batch_id)))

    batch = asyncio.run(store.get_batch(batch_id))
    draft = asyncio.run(store.get_draft(pre_batch_id))
    assert batch["name"] == "Batch A"
    assert batch["warehouse_id"] == "WH-1"
    assert batch["facility_ids"] == ["F1", "F2"]
    assert batch["scheduled_time"] == "13:00:00"
    assert batch["status"] == "planned"
    assert batch["notes"] == "ring the bell"
    assert batch["total_distance"] == 12.5
    assert draft.status == "converted"
    assert draft.converted_batch_id == batch_id


def test_file_store_refuses_to_convert_twice(tmp_path: Path) -> None:
    store = FileBatchStore(FileStorage(root=tmp_path))
    pre_batch_id = asyncio.run(store.create_draft(_draft_payload()))
    asyncio.run(store.convert_draft_to_batch(_commit_payload(pre_batch_id, driver_id="D-1")))

    with pytest.raises(ValueError):
        asyncio.run(store.convert_draft_to_batch(_commit_payload(pre_batch_id)))


def test_file_store_cancel_draft(tmp_path: Path) -> None:
    store = FileBatchStore(FileStorage(root=tmp_path))
    pre_batch_id = asyncio.run(store.create_draft(_draft_payload()))

    asyncio.run(store.cancel_draft(pre_batch_id))

    assert asyncio.run(store.get_draft(pre_batch_id)).status == "cancelled"
    with pytest.raises(ValueError):
        asyncio.run(store.cancel_draft("missing"))


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self.client = client
        self.table = table
        self.action = "select"
        self.values = None
        self.filters = []

    def select(self, *_args, **_kwargs):
        self.action = "select"
        return self

    def insert(self, values):
        self.action = "insert"
        self.values = values
        return self

    def update(self, values):
        self.action = "update"
        self.values = values
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, *_args, **_kwargs):
        return self

    def limit(self, *_args):
        return self

    def execute(self):
        rows = self.client.tables.setdefault(self.table, [])
        if self.action == "insert":
            row = dict(self.values, id=f"{self.table}-{len(rows) + 1}")
            rows.append(row)
            return SimpleNamespace(data=[row])
        matched = [row for row in rows if all(check(row) for check in self.filters)]
        if self.action == "update":
            for row in matched:
                row.update(self.values)
        return SimpleNamespace(data=[dict(row) for row in matched])


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


def test_supabase_store_creates_and_converts_draft() -> None:
    client = FakeSupabase()
    store = SupabaseBatchStore(client)

    pre_batch_id = asyncio.run(store.create_draft(_draft_payload(time_window="morning")))
    batch_id = asyncio.run(store.convert_draft_to_batch(_commit_payload(pre_batch_id, driver_id="D-9")))

    batch_row = client.tables["delivery_batches"][0]
    draft_row = client.tables["scheduler_pre_batches"][0]
    assert pre_batch_id == "scheduler_pre_batches-1"
    assert batch_id == "delivery_batches-1"
    assert batch_row["scheduled_time"] == "08:00:00"
    assert batch_row["status"] == "assigned"
    assert batch_row["pre_batch_id"] == pre_batch_id
    assert draft_row["status"] == "converted"
    assert draft_row["converted_batch_id"] == batch_id


def test_supabase_store_reports_missing_draft() -> None:
    store = SupabaseBatchStore(FakeSupabase())
    assert asyncio.run(store.get_draft("missing")) is None
    with pytest.raises(ValueError):
        asyncio.run(store.convert_draft_to_batch(_commit_payload("missing")))


def test_supabase_store_filters_drafts_by_status() -> None:
    client = FakeSupabase()
    store = SupabaseBatchStore(client)
    first = asyncio.run(store.create_draft(_draft_payload()))
    asyncio.run(store.create_draft(_draft_payload()))
    asyncio.run(store.cancel_draft(first))

    drafts = asyncio.run(store.list_drafts(["draft"]))

    assert len(drafts) == 1
    assert drafts[0].id != first

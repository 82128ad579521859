from types import SimpleNamespace

import pytest

from src.batchflow.data.directory import Directory, parse_tiers, working_set_item


class FakeQuery:
    def __init__(self, rows: list[dict]) -> None:
        self.rows = rows
        self.filters = []

    def select(self, *_args):
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def limit(self, *_args):
        return self

    def execute(self):
        return SimpleNamespace(data=[row for row in self.rows if all(check(row) for check in self.filters)])


class FakeSupabase:
    def __init__(self, tables: dict[str, list[dict]]) -> None:
        self.tables = tables

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self.tables.get(name, []))


@pytest.fixture
def directory() -> Directory:
    return Directory(
        FakeSupabase(
            {
                "facilities": [
                    {"id": "F1", "name": "Clinic One", "warehouse_code": "C-01", "lga": "Ikeja", "service_zone": "North", "lat": "6.6", "lng": "3.35"},
                    {"id": "F2", "name": "Clinic Two", "lat": None, "lng": None},
                ],
                "vehicles": [
                    {
                        "id": "V-1",
                        "model": "Hilux",
                        "plate_number": "ABC-123",
                        "capacity": 3.5,
                        "max_weight": 1200,
                        "tiered_config": {
                            "tiers": [
                                {"tier_name": "Lower", "tier_order": 2, "slot_count": 4, "capacity_kg": 600},
                                {"tier_name": "Upper", "tier_order": 1, "slot_count": 2},
                            ]
                        },
                    }
                ],
                "warehouses": [{"id": "WH-1", "name": "Central Store", "lat": 6.5, "lng": 3.3}],
                "drivers": [{"id": "D-1", "name": "Ada", "phone": "0800", "status": "available"}],
            }
        )
    )


def test_parse_tiers_sorts_by_order_and_skips_bad_entries():
    tiers = parse_tiers({"tiers": [{"tier_name": "B", "tier_order": 2, "slot_count": 1}, {"tier_order": 1}, {"tier_name": "A", "tier_order": 1, "slot_count": "3"}]})
    assert [(tier.name, tier.slot_count) for tier in tiers] == [("A", 3), ("B", 1)]


def test_parse_tiers_handles_missing_config():
    assert parse_tiers(None) == []
    assert parse_tiers({}) == []


def test_get_vehicle_parses_tiered_config(directory: Directory):
    vehicle = directory.get_vehicle("V-1")

    assert vehicle.plate_number == "ABC-123"
    assert vehicle.max_weight_kg == 1200.0
    assert [tier.name for tier in vehicle.tiers] == ["Upper", "Lower"]
    assert vehicle.tiers[1].capacity_kg == 600.0
    assert directory.get_vehicle("V-404") is None


def test_list_facilities_keeps_requested_order(directory: Directory):
    facilities = directory.list_facilities(["F2", "F1"])

    assert [facility.id for facility in facilities] == ["F2", "F1"]
    assert facilities[1].code == "C-01"
    assert facilities[1].zone == "North"
    assert facilities[1].lat == pytest.approx(6.6)
    assert directory.list_facilities([]) == []


def test_working_set_item_from_facility(directory: Directory):
    facility = directory.list_facilities(["F1"])[0]
    item = working_set_item(facility, ["R1"])

    assert item.facility_id == "F1"
    assert item.facility_name == "Clinic One"
    assert item.requisition_ids == ["R1"]
    assert item.slot_demand == 1


def test_warehouses_and_drivers(directory: Directory):
    assert directory.get_warehouse("WH-1").name == "Central Store"
    assert [warehouse.id for warehouse in directory.list_warehouses()] == ["WH-1"]
    assert directory.list_drivers()[0].name == "Ada"
    assert len(directory.list_vehicles()) == 1

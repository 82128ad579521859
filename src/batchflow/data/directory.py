"""Read-only lookups of facilities, vehicles, drivers and warehouses in Supabase."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ..db.supabase import get_supabase_client
from ..models.domain import Driver, Facility, Tier, Vehicle, WorkingSetItem, Warehouse

logger = logging.getLogger(__name__)


def _float_or_none(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_tiers(tiered_config: Any) -> list[Tier]:
    """Tiers from a vehicle's ``tiered_config`` column, sorted by tier order.

    Accepts either ``{"tiers": [...]}`` or a bare list of tier objects.
    """
    if not tiered_config:
        return []
    raw = tiered_config.get("tiers") if isinstance(tiered_config, dict) else tiered_config
    tiers: list[Tier] = []
    for entry in raw or []:
        try:
            tiers.append(
                Tier(
                    name=str(entry["tier_name"]),
                    order=int(entry.get("tier_order", len(tiers) + 1)),
                    slot_count=int(entry.get("slot_count") or 0),
                    capacity_kg=_float_or_none(entry.get("capacity_kg")),
                    capacity_m3=_float_or_none(entry.get("capacity_m3")),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid tier entry {entry!r}: {e}")
    return sorted(tiers, key=lambda tier: tier.order)


def facility_from_row(row: dict[str, Any]) -> Facility:
    return Facility(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        code=row.get("warehouse_code") or row.get("code"),
        lga=row.get("lga"),
        zone=row.get("service_zone") or row.get("zone"),
        lat=_float_or_none(row.get("lat")),
        lng=_float_or_none(row.get("lng")),
    )


def working_set_item(facility: Facility, requisition_ids: Iterable[str] = ()) -> WorkingSetItem:
    """Working-set entry for a facility picked from the directory."""
    return WorkingSetItem(
        facility_id=facility.id,
        facility_name=facility.name,
        facility_code=facility.code,
        lga=facility.lga,
        zone=facility.zone,
        lat=facility.lat,
        lng=facility.lng,
        requisition_ids=list(requisition_ids),
    )


class Directory:
    def __init__(self, client: Any | None = None) -> None:
        self.client = client if client is not None else get_supabase_client()
        if self.client is None:
            raise ValueError("Supabase is not configured.")

    def list_facilities(self, ids: Iterable[str] | None = None) -> list[Facility]:
        query = self.client.table("facilities").select("*")
        if ids is not None:
            wanted = list(ids)
            if not wanted:
                return []
            query = query.in_("id", wanted)
        response = query.execute()
        facilities = [facility_from_row(row) for row in (response.data or [])]
        if ids is not None:
            # Keep the caller's order.
            position = {facility_id: index for index, facility_id in enumerate(wanted)}
            facilities.sort(key=lambda facility: position.get(facility.id, len(position)))
        return facilities

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        response = self.client.table("vehicles").select("*").eq("id", vehicle_id).limit(1).execute()
        rows = response.data or []
        return self._vehicle(rows[0]) if rows else None

    def list_vehicles(self) -> list[Vehicle]:
        response = self.client.table("vehicles").select("*").execute()
        return [self._vehicle(row) for row in (response.data or [])]

    def list_drivers(self) -> list[Driver]:
        response = self.client.table("drivers").select("*").execute()
        return [
            Driver(id=str(row["id"]), name=str(row.get("name") or ""), phone=row.get("phone"), status=row.get("status"))
            for row in (response.data or [])
        ]

    def list_warehouses(self) -> list[Warehouse]:
        response = self.client.table("warehouses").select("*").execute()
        return [self._warehouse(row) for row in (response.data or [])]

    def get_warehouse(self, warehouse_id: str) -> Warehouse | None:
        response = self.client.table("warehouses").select("*").eq("id", warehouse_id).limit(1).execute()
        rows = response.data or []
        return self._warehouse(rows[0]) if rows else None

    @staticmethod
    def _vehicle(row: dict[str, Any]) -> Vehicle:
        return Vehicle(
            id=str(row["id"]),
            model=str(row.get("model") or ""),
            plate_number=row.get("plate_number") or row.get("plateNumber"),
            capacity_m3=_float_or_none(row.get("capacity")),
            max_weight_kg=_float_or_none(row.get("max_weight")),
            tiers=parse_tiers(row.get("tiered_config")),
        )

    @staticmethod
    def _warehouse(row: dict[str, Any]) -> Warehouse:
        return Warehouse(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            address=row.get("address"),
            lat=_float_or_none(row.get("lat")),
            lng=_float_or_none(row.get("lng")),
        )

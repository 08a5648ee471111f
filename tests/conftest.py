"""
Pytest fixtures for the supply ledger test suite.

Provides:
- Structured logging configuration and capture
- In-memory and SQLite-backed key-path stores
- A deterministic clock, actors and purge capabilities
- A raw-record dataset builder that writes camelCase store documents
"""

import json
import logging
from io import StringIO
from typing import Any

import pytest
from datetime import datetime

from supply_config import SupplyConfig, get_active_config
from supply_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from supply_kernel.domain.authorization import Actor, authorize_purge
from supply_kernel.domain.clock import DeterministicClock
from supply_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from supply_kernel.store.base import KeyPathStore, join_path
from supply_kernel.store.memory import InMemoryStore
from supply_kernel.store.sql import SqlAlchemyStore


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture supply_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, purge_service):
            purge_service.purge(...)
            logs = captured_logs()
            assert any(r["message"] == "purge_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("supply_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Configuration, clock, actors
# =============================================================================


@pytest.fixture
def config() -> SupplyConfig:
    return get_active_config()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime.fromisoformat("2024-02-01T09:00:00+00:00"))


@pytest.fixture
def admin_actor() -> Actor:
    return Actor(uid="u-admin", email="admin@example.org", role="System Administrator")


@pytest.fixture
def encoder_actor() -> Actor:
    return Actor(uid="u-encoder", email="encoder@example.org", role="Encoder", facility_id="F1")


@pytest.fixture
def admin_authorization(admin_actor):
    return authorize_purge(admin_actor)


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def sql_store():
    """SqlAlchemyStore on a private in-memory SQLite database."""
    init_engine_from_url("sqlite://")
    create_tables()
    yield SqlAlchemyStore(get_session_factory(), max_retries=5)
    drop_tables()
    reset_engine()


@pytest.fixture(params=["memory", "sql"])
def any_store(request) -> KeyPathStore:
    """Runs a test once per store backend."""
    return request.getfixturevalue(f"{request.param}_store")


# =============================================================================
# Dataset builder
# =============================================================================


class StoreDataset:
    """
    Fluent builder for raw store documents.

    Every method writes one camelCase record under ``/<collection>/<id>``
    exactly as the write screens would, and returns ``self``.
    """

    def __init__(self):
        self.tree: dict[str, dict[str, Any]] = {}

    def _put(self, collection: str, record_id: str, record: dict[str, Any]) -> "StoreDataset":
        self.tree.setdefault(collection, {})[record_id] = record
        return self

    # -- master data ---------------------------------------------------------

    def facility(self, facility_id: str, name: str, status: str = "Active"):
        return self._put("facilities", facility_id, {"name": name, "status": status})

    def supplier(self, supplier_id: str, name: str):
        return self._put("suppliers", supplier_id, {"name": name})

    def item_master(self, item_id: str, name: str, unit: str = "pcs", item_type: str = "Consumable"):
        return self._put(
            "itemMasters", item_id, {"name": name, "unit": unit, "itemType": item_type}
        )

    def storage_location(self, location_id: str, name: str, facility_id: str):
        return self._put(
            "storageLocations", location_id, {"name": name, "facilityId": facility_id}
        )

    def batch(
        self,
        batch_id: str,
        item_master_id: str,
        quantity: int,
        storage_location_id: str = "L1",
        is_consignment: bool = False,
        **extra: Any,
    ):
        return self._put(
            "inventoryItems",
            batch_id,
            {
                "itemMasterId": item_master_id,
                "quantity": quantity,
                "storageLocationId": storage_location_id,
                "isConsignment": is_consignment,
                **extra,
            },
        )

    # -- logs ----------------------------------------------------------------

    def receive(
        self,
        log_id: str,
        timestamp: str,
        lines: list[tuple[str, int]],
        affected: list[str],
        facility_id: str = "F1",
        supplier_id: str = "S1",
        control_number: str | None = None,
        is_consignment: bool = False,
    ):
        return self._put(
            "receiveLogs",
            log_id,
            {
                "controlNumber": control_number or f"RV-{log_id}",
                "timestamp": timestamp,
                "facilityId": facility_id,
                "supplierId": supplier_id,
                "items": [{"itemMasterId": m, "quantity": q} for m, q in lines],
                "affectedInventoryItemIds": affected,
                "isConsignment": is_consignment,
            },
        )

    def voucher(
        self,
        table: str,
        log_id: str,
        timestamp: str,
        items: list[tuple[str, int]],
        facility_id: str = "F1",
        control_number: str | None = None,
        **extra: Any,
    ):
        return self._put(
            table,
            log_id,
            {
                "controlNumber": control_number or f"CN-{log_id}",
                "timestamp": timestamp,
                "facilityId": facility_id,
                "items": [{"inventoryItemId": b, "quantity": q} for b, q in items],
                **extra,
            },
        )

    def dispense(self, log_id: str, timestamp: str, items, **kwargs: Any):
        kwargs.setdefault("dispensedTo", "Ward A")
        return self.voucher("dispenseLogs", log_id, timestamp, items, **kwargs)

    def ris(self, log_id: str, timestamp: str, items, **kwargs: Any):
        kwargs.setdefault("requestedBy", "Nursing")
        return self.voucher("risLogs", log_id, timestamp, items, **kwargs)

    def write_off(self, log_id: str, timestamp: str, items, **kwargs: Any):
        kwargs.setdefault("reason", "Expired")
        return self.voucher("writeOffLogs", log_id, timestamp, items, **kwargs)

    def supplier_return(self, log_id: str, timestamp: str, items, **kwargs: Any):
        kwargs.setdefault("supplierId", "S1")
        return self.voucher("returnLogs", log_id, timestamp, items, **kwargs)

    def internal_return(self, log_id: str, timestamp: str, items, **kwargs: Any):
        kwargs.setdefault("returnedBy", "Ward A")
        return self.voucher("internalReturnLogs", log_id, timestamp, items, **kwargs)

    def transfer(
        self,
        log_id: str,
        timestamp: str,
        items: list[tuple[str, int]],
        status: str = "Pending",
        from_facility_id: str = "F1",
        to_facility_id: str = "F2",
        acknowledged: str | None = None,
        received: list[tuple[str, int]] | None = None,
        is_consignment: bool = False,
    ):
        record: dict[str, Any] = {
            "controlNumber": f"TR-{log_id}",
            "timestamp": timestamp,
            "fromFacilityId": from_facility_id,
            "toFacilityId": to_facility_id,
            "items": [{"inventoryItemId": b, "quantity": q} for b, q in items],
            "status": status,
            "isConsignment": is_consignment,
        }
        if acknowledged:
            record["acknowledgementTimestamp"] = acknowledged
        if received is not None:
            record["receivedItems"] = [{"inventoryItemId": b, "quantity": q} for b, q in received]
        return self._put("transferLogs", log_id, record)

    def adjustment(
        self,
        log_id: str,
        timestamp: str,
        batch_id: str,
        item_master_id: str,
        from_quantity: int,
        to_quantity: int,
        facility_id: str = "F1",
        is_consignment: bool = False,
    ):
        return self._put(
            "adjustmentLogs",
            log_id,
            {
                "controlNumber": f"ADJ-{log_id}",
                "timestamp": timestamp,
                "facilityId": facility_id,
                "inventoryItemId": batch_id,
                "itemMasterId": item_master_id,
                "fromQuantity": from_quantity,
                "toQuantity": to_quantity,
                "reason": "Recount",
                "isConsignment": is_consignment,
            },
        )

    def physical_count(
        self,
        count_id: str,
        name: str,
        lines: list[tuple[str, int, int | None]],
        status: str = "Completed",
        reviewed: str | None = "2024-01-20T10:00:00+00:00",
        facility_id: str = "F1",
    ):
        record: dict[str, Any] = {
            "name": name,
            "facilityId": facility_id,
            "status": status,
            "items": [
                {
                    "inventoryItemId": b,
                    "systemQuantity": system,
                    "countedQuantity": counted,
                    "reasonCode": "Damaged",
                }
                for b, system, counted in lines
            ],
        }
        if reviewed:
            record["reviewedTimestamp"] = reviewed
        return self._put("physicalCounts", count_id, record)

    def consumption(self, log_id: str, dispense_log_id: str, facility_id: str = "F1"):
        return self._put(
            "consignmentConsumptionLogs",
            log_id,
            {
                "dispenseLogId": dispense_log_id,
                "controlNumber": f"CC-{log_id}",
                "facilityId": facility_id,
                "timestamp": "2024-01-05T10:00:00+00:00",
            },
        )

    # -- output --------------------------------------------------------------

    def build(self) -> dict[str, dict[str, Any]]:
        return json.loads(json.dumps(self.tree))

    def load_into(self, store: KeyPathStore) -> KeyPathStore:
        store.update(
            {
                join_path(collection, record_id): record
                for collection, records in self.build().items()
                for record_id, record in records.items()
            }
        )
        return store


@pytest.fixture
def dataset() -> StoreDataset:
    """Empty builder pre-seeded with the reference master data."""
    return (
        StoreDataset()
        .facility("F1", "Main Pharmacy")
        .facility("F2", "Annex Clinic")
        .supplier("S1", "Acme Corp")
        .storage_location("L1", "Shelf A", "F1")
        .storage_location("L2", "Shelf B", "F2")
        .item_master("M1", "Paracetamol 500mg", unit="tab")
        .item_master("M2", "Amoxicillin 250mg", unit="cap")
    )


@pytest.fixture
def scenario(dataset) -> StoreDataset:
    """
    Receive R1 (+50, creates B1), Dispense D1 (-10 from B1), Adjustment A1
    (40 -> 38) for item M1 at facility F1.
    """
    return (
        dataset.batch("B1", "M1", 38)
        .receive("R1", "2024-01-01T08:00:00+00:00", [("M1", 50)], affected=["B1"])
        .dispense("D1", "2024-01-05T10:00:00+00:00", [("B1", 10)])
        .adjustment("A1", "2024-01-10T15:00:00+00:00", "B1", "M1", 40, 38)
    )

"""Tests for parsing raw store dicts into typed records."""

from datetime import timezone
from zoneinfo import ZoneInfo

import pytest

from supply_kernel.domain.records import (
    AdjustmentLog,
    DispenseLog,
    LogTable,
    PhysicalCountStatus,
    ReceiveLog,
    TransferLog,
    TransferStatus,
    parse_batch,
    parse_facility,
    parse_record,
    parse_timestamp,
)
from supply_kernel.exceptions import MalformedRecordError


class TestParseTimestamp:
    def test_aware_value_kept(self):
        parsed = parse_timestamp("2024-01-01T08:00:00+08:00")
        assert parsed.utcoffset().total_seconds() == 8 * 3600

    def test_naive_value_read_in_default_zone(self):
        parsed = parse_timestamp("2024-01-01T08:00:00", ZoneInfo("Asia/Manila"))
        assert parsed.tzinfo == ZoneInfo("Asia/Manila")

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            parse_timestamp("")


class TestParseRecord:
    def test_receive(self):
        record = parse_record(
            LogTable.RECEIVE,
            {
                "id": "R1",
                "controlNumber": "RV-1",
                "timestamp": "2024-01-01T08:00:00Z",
                "facilityId": "F1",
                "supplierId": "S1",
                "items": [{"itemMasterId": "M1", "quantity": "50"}],
                "affectedInventoryItemIds": ["B1"],
            },
        )
        assert isinstance(record, ReceiveLog)
        assert record.items[0].quantity == 50
        assert record.affected_inventory_item_ids == ("B1",)
        assert record.timestamp.tzinfo is not None

    def test_dispense_items(self):
        record = parse_record(
            LogTable.DISPENSE,
            {
                "id": "D1",
                "timestamp": "2024-01-05T10:00:00+00:00",
                "items": [{"inventoryItemId": "B1", "quantity": 10}],
                "dispensedTo": "Ward A",
            },
        )
        assert isinstance(record, DispenseLog)
        assert record.log_table is LogTable.DISPENSE
        assert record.items[0].inventory_item_id == "B1"
        assert record.dispensed_to == "Ward A"

    def test_transfer_defaults_to_pending(self):
        record = parse_record(
            LogTable.TRANSFER,
            {"id": "T1", "timestamp": "2024-01-05T10:00:00+00:00", "items": []},
        )
        assert isinstance(record, TransferLog)
        assert record.status is TransferStatus.PENDING
        assert not record.is_acknowledged

    def test_adjustment_variance(self):
        record = parse_record(
            LogTable.ADJUSTMENT,
            {
                "id": "A1",
                "timestamp": "2024-01-10T15:00:00+00:00",
                "inventoryItemId": "B1",
                "itemMasterId": "M1",
                "fromQuantity": 40,
                "toQuantity": 38,
            },
        )
        assert isinstance(record, AdjustmentLog)
        assert record.variance == -2

    def test_count_keeps_missing_counted_quantity(self):
        record = parse_record(
            LogTable.PHYSICAL_COUNT,
            {
                "id": "PC1",
                "status": "Completed",
                "items": [{"inventoryItemId": "B1", "systemQuantity": 4}],
            },
        )
        assert record.status is PhysicalCountStatus.COMPLETED
        assert record.items[0].counted_quantity is None

    @pytest.mark.parametrize(
        "raw",
        [
            {"timestamp": "2024-01-01T00:00:00+00:00", "items": []},
            {"id": "D1", "items": []},
            {"id": "D1", "timestamp": "not a date", "items": []},
            {"id": "D1", "timestamp": "2024-01-01T00:00:00+00:00", "items": [{"quantity": 1}]},
            {"id": "D1", "timestamp": "2024-01-01T00:00:00+00:00", "items": [{"inventoryItemId": "B1", "quantity": "x"}]},
        ],
    )
    def test_malformed_dispense_raises_typed_error(self, raw):
        with pytest.raises(MalformedRecordError) as exc_info:
            parse_record(LogTable.DISPENSE, raw, timezone.utc)
        assert exc_info.value.log_table == "dispenseLogs"
        assert exc_info.value.code == "MALFORMED_RECORD"


class TestParseMasters:
    def test_batch(self):
        batch = parse_batch(
            {"id": "B1", "itemMasterId": "M1", "quantity": 5, "isConsignment": True}
        )
        assert batch.quantity == 5
        assert batch.is_consignment is True

    def test_batch_without_item_master(self):
        with pytest.raises(MalformedRecordError):
            parse_batch({"id": "B1", "quantity": 5})

    def test_facility_without_name(self):
        assert parse_facility({"id": "F9"}).name == "N/A"

"""
Tests for per-record normalization rules.

Each rule is exercised against a small LedgerContext built by hand: one
item master M1 with a standard batch B1 and a consignment batch C1.
"""

from datetime import datetime, timezone

import pytest

from supply_kernel.domain.ledger import EntryType, LedgerView
from supply_kernel.domain.normalizer import (
    LedgerContext,
    consumption_source_id,
    index_consumption_logs,
    normalize,
    record_in_view,
)
from supply_kernel.domain.records import (
    AdjustmentLog,
    ConsignmentConsumptionLog,
    CountLine,
    DispenseLog,
    InternalReturnLog,
    InventoryBatch,
    LogTable,
    PhysicalCount,
    PhysicalCountStatus,
    ReceiveLine,
    ReceiveLog,
    ReturnLog,
    TransactionItem,
    TransferLog,
    TransferStatus,
    WriteOffLog,
)
from supply_kernel.exceptions import UnsupportedLogTypeError

T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
T1 = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)

PREFIXES = ("dispense", "ris", "ro", "woff")


def _context(view=LedgerView.STANDARD, consumption=None, purgeable=None):
    return LedgerContext(
        view=view,
        facility_names={"F1": "Main Pharmacy", "F2": "Annex Clinic"},
        supplier_names={"S1": "Acme Corp"},
        batches={
            "B1": InventoryBatch(id="B1", item_master_id="M1", quantity=10),
            "C1": InventoryBatch(id="C1", item_master_id="M1", quantity=5, is_consignment=True),
        },
        consumption_by_source=consumption or {},
        purgeable_tables=frozenset(purgeable if purgeable is not None else LogTable),
    )


def _dispense(items, log_id="D1", control="DV-1"):
    return DispenseLog(
        id=log_id,
        control_number=control,
        timestamp=T0,
        facility_id="F1",
        items=tuple(TransactionItem(b, q) for b, q in items),
        dispensed_to="Ward A",
    )


class TestReceive:
    def _log(self, is_consignment=False, supplier="S1"):
        return ReceiveLog(
            id="R1",
            control_number="RV-1",
            timestamp=T0,
            facility_id="F1",
            supplier_id=supplier,
            items=(ReceiveLine("M1", 50), ReceiveLine("M2", 20)),
            affected_inventory_item_ids=("B1", "B2"),
            is_consignment=is_consignment,
        )

    def test_one_row_per_line(self):
        rows = normalize(self._log(), _context())
        assert [(r.item_master_id, r.quantity_in) for r in rows] == [("M1", 50), ("M2", 20)]
        assert rows[0].type == EntryType.RECEIVE.value
        assert rows[0].details == "From: Acme Corp"
        assert rows[0].affected_inventory_item_ids == ("B1", "B2")

    def test_other_stock_family_is_skipped(self):
        assert normalize(self._log(is_consignment=True), _context()) == []
        assert len(normalize(self._log(is_consignment=True), _context(LedgerView.CONSIGNMENT))) == 2

    def test_unknown_supplier_renders_not_available(self):
        ctx = _context()
        rows = normalize(self._log(supplier="S404"), ctx)
        assert rows[0].details == "From: N/A"
        assert ("supplier", "S404") in [(e.kind, e.ref_id) for e in ctx.unresolved]


class TestVouchers:
    def test_dispense_is_outbound_per_batch_line(self):
        rows = normalize(_dispense([("B1", 4)]), _context())
        assert len(rows) == 1
        assert rows[0].quantity_out == 4
        assert rows[0].quantity_in == 0
        assert rows[0].details == "To: Ward A"
        assert rows[0].facility_name == "Main Pharmacy"

    def test_line_with_unknown_batch_is_dropped(self):
        ctx = _context()
        rows = normalize(_dispense([("B404", 1), ("B1", 2)]), ctx)
        assert [r.quantity_out for r in rows] == [2]
        assert ("batch", "B404") in [(e.kind, e.ref_id) for e in ctx.unresolved]

    def test_lines_filtered_by_batch_consignment_flag(self):
        log = _dispense([("B1", 1), ("C1", 2)])
        assert [r.quantity_out for r in normalize(log, _context())] == [1]
        assert [r.quantity_out for r in normalize(log, _context(LedgerView.CONSIGNMENT))] == [2]

    def test_transaction_items_are_the_logs_own_lines(self):
        first = normalize(_dispense([("B1", 1)], log_id="D1"), _context())[0]
        second = normalize(_dispense([("B1", 3)], log_id="D2"), _context())[0]
        assert first.transaction_items == (TransactionItem("B1", 1),)
        assert second.transaction_items == (TransactionItem("B1", 3),)

    def test_consumption_logs_attached(self):
        ctx = _context(consumption={"D1": ("CC1",)})
        rows = normalize(_dispense([("B1", 1)]), ctx)
        assert rows[0].consumption_log_ids == ("CC1",)

    def test_consignment_write_off_hidden_from_standard_view(self):
        log = WriteOffLog(
            id="W1",
            control_number="C-WO-0001",
            timestamp=T0,
            facility_id="F1",
            items=(TransactionItem("B1", 1),),
            reason="Expired",
        )
        assert normalize(log, _context()) == []

    def test_internal_return_is_inbound(self):
        log = InternalReturnLog(
            id="IR1",
            control_number="IR-1",
            timestamp=T0,
            facility_id="F1",
            items=(TransactionItem("B1", 3),),
            returned_by="Ward B",
        )
        row = normalize(log, _context())[0]
        assert row.quantity_in == 3
        assert row.details == "From: Ward B"

    def test_supplier_return_follows_consignment_return_flag(self):
        log = ReturnLog(
            id="RT1",
            control_number="RT-1",
            timestamp=T0,
            facility_id="F1",
            items=(TransactionItem("C1", 1),),
            is_consignment_return=True,
        )
        assert normalize(log, _context()) == []
        assert normalize(log, _context(LedgerView.CONSIGNMENT))[0].details == "To Supplier"

    def test_purgeability_comes_from_view_policy(self):
        rows = normalize(_dispense([("B1", 1)]), _context(purgeable=[LogTable.RECEIVE]))
        assert rows[0].is_purgeable is False

    def test_rows_carry_their_view(self):
        log = _dispense([("B1", 1), ("C1", 2)])
        assert normalize(log, _context())[0].view is LedgerView.STANDARD
        assert normalize(log, _context(LedgerView.CONSIGNMENT))[0].view is LedgerView.CONSIGNMENT


class TestTransfer:
    def _log(self, status=TransferStatus.PENDING, ack=None, received=()):
        return TransferLog(
            id="T1",
            control_number="TR-1",
            timestamp=T0,
            from_facility_id="F1",
            to_facility_id="F2",
            items=(TransactionItem("B1", 5),),
            status=status,
            acknowledgement_timestamp=ack,
            received_items=received,
        )

    def test_pending_transfer_is_out_only(self):
        rows = normalize(self._log(), _context())
        assert [(r.type, r.quantity_out) for r in rows] == [(EntryType.TRANSFER_OUT.value, 5)]
        assert rows[0].details == "To: Annex Clinic"

    def test_received_transfer_books_in_at_acknowledgement(self):
        rows = normalize(self._log(TransferStatus.RECEIVED, ack=T1), _context())
        assert [r.type for r in rows] == [EntryType.TRANSFER_OUT.value, EntryType.TRANSFER_IN.value]
        assert rows[1].date == T1
        assert rows[1].facility_id == "F2"
        assert rows[1].quantity_in == 5

    def test_discrepancy_uses_received_quantity(self):
        rows = normalize(
            self._log(TransferStatus.DISCREPANCY, ack=T1, received=(TransactionItem("B1", 3),)),
            _context(),
        )
        assert rows[1].quantity_in == 3

    def test_discrepancy_with_nothing_received_has_no_in_row(self):
        rows = normalize(self._log(TransferStatus.DISCREPANCY, ack=T1), _context())
        assert [r.type for r in rows] == [EntryType.TRANSFER_OUT.value]


class TestAdjustmentAndCount:
    def test_adjustment_signed_variance(self):
        log = AdjustmentLog(
            id="A1",
            control_number="ADJ-1",
            timestamp=T0,
            facility_id="F1",
            inventory_item_id="B1",
            item_master_id="M1",
            from_quantity=40,
            to_quantity=38,
        )
        row = normalize(log, _context())[0]
        assert row.quantity_out == 2
        assert row.transaction_items == (TransactionItem("B1", -2),)

    def _count(self, status=PhysicalCountStatus.COMPLETED, reviewed=T1, lines=None):
        return PhysicalCount(
            id="PC1",
            name="January count",
            facility_id="F1",
            status=status,
            items=lines
            or (
                CountLine("B1", 10, 7, "Damaged"),
                CountLine("B1", 10, 10),
                CountLine("C1", 5, 6),
            ),
            reviewed_timestamp=reviewed,
        )

    def test_completed_count_emits_variance_rows_only(self):
        rows = normalize(self._count(), _context())
        assert len(rows) == 1
        assert rows[0].quantity_out == 3
        assert rows[0].type == EntryType.COUNT_ADJUSTMENT.value
        assert rows[0].details == "Variance Reason: Damaged"
        assert rows[0].is_purgeable is False

    def test_count_lines_filtered_by_view(self):
        rows = normalize(self._count(), _context(LedgerView.CONSIGNMENT))
        assert [(r.quantity_in, r.quantity_out) for r in rows] == [(1, 0)]

    @pytest.mark.parametrize(
        "status,reviewed",
        [(PhysicalCountStatus.PENDING_REVIEW, T1), (PhysicalCountStatus.COMPLETED, None)],
    )
    def test_unreviewed_count_is_ignored(self, status, reviewed):
        assert normalize(self._count(status=status, reviewed=reviewed), _context()) == []


class TestConsumptionIndex:
    def test_prefix_stripped(self):
        assert consumption_source_id("dispense-D1", PREFIXES) == "D1"
        assert consumption_source_id("woff-W1", PREFIXES) == "W1"
        assert consumption_source_id("D1", PREFIXES) == "D1"

    def test_index_groups_by_source(self):
        logs = [
            ConsignmentConsumptionLog("CC1", "dispense-D1", "CC-1", "F1", T0),
            ConsignmentConsumptionLog("CC2", "D1", "CC-2", "F1", T0),
            ConsignmentConsumptionLog("CC3", "ris-X1", "CC-3", "F1", T0),
        ]
        assert index_consumption_logs(logs, PREFIXES) == {"D1": ("CC1", "CC2"), "X1": ("CC3",)}

    def test_consumption_log_is_never_rendered(self):
        log = ConsignmentConsumptionLog("CC1", "D1", "CC-1", "F1", T0)
        assert normalize(log, _context()) == []


class TestDispatch:
    def test_unknown_record_type_raises(self):
        with pytest.raises(UnsupportedLogTypeError):
            normalize(object(), _context())


class TestRecordInView:
    BATCHES = _context().batches

    def test_voucher_follows_its_batches(self):
        assert record_in_view(_dispense([("B1", 1)]), LedgerView.STANDARD, self.BATCHES)
        assert not record_in_view(_dispense([("C1", 1)]), LedgerView.STANDARD, self.BATCHES)
        assert record_in_view(_dispense([("C1", 1)]), LedgerView.CONSIGNMENT, self.BATCHES)

    def test_voucher_with_no_known_batch_fits_either_view(self):
        log = _dispense([("B404", 1)])
        assert record_in_view(log, LedgerView.STANDARD, self.BATCHES)
        assert record_in_view(log, LedgerView.CONSIGNMENT, self.BATCHES)

    def test_receive_uses_its_own_flag(self):
        log = ReceiveLog(
            id="CR1",
            control_number="RV-2",
            timestamp=T0,
            facility_id="F1",
            supplier_id="S1",
            items=(ReceiveLine("M1", 5),),
            affected_inventory_item_ids=("C1",),
            is_consignment=True,
        )
        assert not record_in_view(log, LedgerView.STANDARD, self.BATCHES)
        assert record_in_view(log, LedgerView.CONSIGNMENT, self.BATCHES)

    def test_supplier_return_checks_flag_and_batches(self):
        log = ReturnLog(
            id="RT1",
            control_number="RT-1",
            timestamp=T0,
            facility_id="F1",
            items=(TransactionItem("B1", 1),),
            is_consignment_return=True,
        )
        assert not record_in_view(log, LedgerView.STANDARD, self.BATCHES)
        assert not record_in_view(log, LedgerView.CONSIGNMENT, self.BATCHES)

    def test_consignment_write_off_prefix(self):
        log = WriteOffLog(
            id="W1",
            control_number="C-WO-0001",
            timestamp=T0,
            facility_id="F1",
            items=(TransactionItem("B1", 1),),
            reason="Expired",
        )
        assert not record_in_view(log, LedgerView.STANDARD, self.BATCHES)

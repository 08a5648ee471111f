"""
Contract tests run against every key-path store backend.

Covers:
- Path validation before anything is written
- Reads at collection, record and field depth
- All-or-nothing multi-path updates with increments
- Required paths checked inside the update
- transact read-modify-write
"""

import pytest

from supply_kernel.exceptions import InvalidPathError, MissingPathError, OptimisticLockError
from supply_kernel.store.base import join_path, split_path


class TestPaths:
    def test_split_and_join(self):
        assert split_path("/inventoryItems/B1/quantity") == ("inventoryItems", "B1", "quantity")
        assert join_path("inventoryItems", "B1") == "/inventoryItems/B1"

    @pytest.mark.parametrize("path", ["", "/", "/a.b", "/logs/#1", "/x/$y", "/a/[0]"])
    def test_invalid_paths(self, path):
        with pytest.raises(InvalidPathError):
            split_path(path)


class TestReads:
    def test_missing_path_is_none(self, any_store):
        assert any_store.read("/inventoryItems/B404") is None
        assert any_store.read("/inventoryItems") is None
        assert any_store.read_collection("inventoryItems") == []
        assert not any_store.exists("/inventoryItems/B404")

    def test_read_collection_injects_keys(self, any_store):
        any_store.update(
            {
                "/facilities/F1": {"name": "Main Pharmacy"},
                "/facilities/F2": {"name": "Annex Clinic"},
            }
        )
        records = sorted(any_store.read_collection("facilities"), key=lambda r: r["id"])
        assert records == [
            {"id": "F1", "name": "Main Pharmacy"},
            {"id": "F2", "name": "Annex Clinic"},
        ]

    def test_read_field(self, any_store):
        any_store.update({"/inventoryItems/B1": {"quantity": 5, "itemMasterId": "M1"}})
        assert any_store.read("/inventoryItems/B1/quantity") == 5
        assert any_store.read("/inventoryItems/B1") == {"quantity": 5, "itemMasterId": "M1"}

    def test_reads_are_copies(self, any_store):
        any_store.update({"/inventoryItems/B1": {"quantity": 5, "tags": ["a"]}})
        value = any_store.read("/inventoryItems/B1")
        value["tags"].append("b")
        assert any_store.read("/inventoryItems/B1/tags") == ["a"]


class TestUpdate:
    def test_none_deletes_and_prunes(self, any_store):
        any_store.update({"/dispenseLogs/D1": {"controlNumber": "DV-1"}})
        any_store.update({"/dispenseLogs/D1": None})
        assert any_store.read("/dispenseLogs/D1") is None
        assert any_store.read("/dispenseLogs") is None

    def test_deleting_last_field_removes_record(self, any_store):
        any_store.update({"/inventoryItems/B1": {"quantity": 5}})
        any_store.update({"/inventoryItems/B1/quantity": None})
        assert any_store.read("/inventoryItems/B1") is None

    def test_deletes_and_increments_land_together(self, any_store):
        any_store.update(
            {
                "/dispenseLogs/D1": {"controlNumber": "DV-1"},
                "/inventoryItems/B1": {"quantity": 30},
            }
        )
        any_store.update(
            {"/dispenseLogs/D1": None},
            increments={"/inventoryItems/B1/quantity": 10},
        )
        assert any_store.read("/dispenseLogs/D1") is None
        assert any_store.read("/inventoryItems/B1/quantity") == 40

    def test_increment_of_missing_value_starts_at_zero(self, any_store):
        any_store.update({}, increments={"/inventoryItems/B1/quantity": -3})
        assert any_store.read("/inventoryItems/B1/quantity") == -3

    def test_failed_unit_writes_nothing(self, any_store):
        any_store.update(
            {
                "/dispenseLogs/D1": {"controlNumber": "DV-1"},
                "/inventoryItems/B1": {"quantity": "not a number"},
            }
        )
        with pytest.raises(TypeError):
            any_store.update(
                {"/dispenseLogs/D1": None},
                increments={"/inventoryItems/B1/quantity": 1},
            )
        assert any_store.read("/dispenseLogs/D1") == {"controlNumber": "DV-1"}

    def test_overlapping_paths_rejected_before_write(self, any_store):
        with pytest.raises(InvalidPathError):
            any_store.update({"/inventoryItems/B1": {"quantity": 1}, "/inventoryItems/B1/quantity": 2})
        with pytest.raises(InvalidPathError):
            any_store.update({"/inventoryItems/B1": None}, increments={"/inventoryItems/B1": 1})
        assert any_store.read("/inventoryItems") is None

    def test_non_integer_increment_rejected(self, any_store):
        with pytest.raises(InvalidPathError):
            any_store.update({}, increments={"/inventoryItems/B1/quantity": 1.5})

    def test_collection_write_replaces_collection(self, any_store):
        any_store.update({"/suppliers/S1": {"name": "Old"}})
        any_store.update({"/suppliers": {"S2": {"name": "Acme Corp"}}})
        assert any_store.read("/suppliers") == {"S2": {"name": "Acme Corp"}}

    def test_required_paths_present_applies(self, any_store):
        any_store.update(
            {
                "/dispenseLogs/D1": {"controlNumber": "DV-1"},
                "/inventoryItems/B1": {"quantity": 30},
            }
        )
        any_store.update(
            {"/dispenseLogs/D1": None},
            increments={"/inventoryItems/B1/quantity": 10},
            require_present=["/dispenseLogs/D1"],
        )
        assert any_store.read("/dispenseLogs/D1") is None
        assert any_store.read("/inventoryItems/B1/quantity") == 40

    def test_missing_required_path_writes_nothing(self, any_store):
        any_store.update(
            {
                "/dispenseLogs/D2": {"controlNumber": "DV-2"},
                "/inventoryItems/B1": {"quantity": 30},
            }
        )
        with pytest.raises(MissingPathError) as exc_info:
            any_store.update(
                {"/dispenseLogs/D1": None, "/dispenseLogs/D2": None},
                increments={"/inventoryItems/B1/quantity": 10},
                require_present=["/dispenseLogs/D2", "/dispenseLogs/D1"],
            )
        assert exc_info.value.path == "/dispenseLogs/D1"
        assert exc_info.value.code == "MISSING_PATH"
        assert any_store.read("/dispenseLogs/D2") == {"controlNumber": "DV-2"}
        assert any_store.read("/inventoryItems/B1/quantity") == 30


class TestTransact:
    def test_read_modify_write(self, any_store):
        any_store.update({"/inventoryItems/B1": {"quantity": 5}})
        result = any_store.transact("/inventoryItems/B1/quantity", lambda q: q * 2)
        assert result == 10
        assert any_store.read("/inventoryItems/B1/quantity") == 10

    def test_increment_helper(self, any_store):
        any_store.update({"/inventoryItems/B1": {"quantity": 5, "itemMasterId": "M1"}})
        assert any_store.increment("/inventoryItems/B1/quantity", 7) == 12
        assert any_store.read("/inventoryItems/B1/itemMasterId") == "M1"

    def test_returning_none_deletes(self, any_store):
        any_store.update({"/counters/c": {"value": 1}})
        any_store.transact("/counters/c", lambda current: None)
        assert any_store.read("/counters/c") is None


class TestMemoryStoreConcurrency:
    def test_lost_race_is_retried(self, memory_store):
        memory_store.update({"/counters/c": 1})
        calls = []

        def bump(current):
            calls.append(current)
            if len(calls) == 1:
                memory_store.update({"/counters/c": 100})
            return current + 1

        assert memory_store.transact("/counters/c", bump) == 101
        assert calls == [1, 100]

    def test_concurrent_increments_are_not_lost(self, memory_store):
        import threading

        def worker():
            for _ in range(25):
                memory_store.increment("/inventoryItems/B1/quantity", 1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert memory_store.read("/inventoryItems/B1/quantity") == 200

    def test_gives_up_after_max_retries(self):
        from supply_kernel.store.memory import InMemoryStore

        store = InMemoryStore({"counters": {"c": 0}}, max_retries=3)

        def always_loses(current):
            store.update({"/counters/c": (store.read("/counters/c") or 0) + 1})
            return current

        with pytest.raises(OptimisticLockError) as exc_info:
            store.transact("/counters/c", always_loses)
        assert exc_info.value.attempts == 3

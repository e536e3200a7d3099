"""Tests for the table registry: claims, PINs, release and transfer."""

import threading

import pytest

from dineflow.db.models import RestaurantTable, DiningSession
from dineflow.errors import TableOccupied, TableNotFound, InvalidPin, Conflict
from dineflow.services import tables, sessions


def _table(storage, table_id):
    return storage.run(lambda db: db.get(RestaurantTable, table_id))


class TestClaimTable:

    def test_claim_free_table_returns_pin_and_session(self, storage, seeded):
        table_id = seeded["tables"][0]
        result = storage.run(tables.claim_table, table_id, None, "waiter1")

        assert len(result["pin"]) == 4 and result["pin"].isdigit()
        table = _table(storage, table_id)
        assert table.occupied is True
        assert table.current_session_id == result["session_id"]
        assert table.current_pin == result["pin"]

    def test_claim_occupied_table_conflicts(self, storage, seeded):
        table_id = seeded["tables"][0]
        storage.run(tables.claim_table, table_id, None)

        with pytest.raises(TableOccupied):
            storage.run(tables.claim_table, table_id, None)

    def test_claim_unknown_table(self, storage, seeded):
        with pytest.raises(TableNotFound):
            storage.run(tables.claim_table, 9999, None)

    @pytest.mark.slow
    def test_concurrent_claims_exactly_one_wins(self, storage, seeded):
        table_id = seeded["tables"][1]
        num_threads = 6
        results, errors = [], []
        lock = threading.Lock()
        barrier = threading.Barrier(num_threads)

        def claim():
            barrier.wait()
            try:
                res = storage.run(tables.claim_table, table_id, None)
                with lock:
                    results.append(res)
            except Exception as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=claim) for _ in range(num_threads)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 1
        assert len(errors) == num_threads - 1
        assert all(isinstance(e, TableOccupied) for e in errors)

        active = storage.run(lambda db: db.query(DiningSession).filter_by(table_id=table_id, status="active").count())
        assert active == 1


class TestPinAndRelease:

    def test_verify_pin_by_number_and_id(self, storage, seeded):
        table_id = seeded["tables"][0]
        claim = storage.run(tables.claim_table, table_id, None)

        by_id = storage.run(tables.verify_pin, table_id, claim["pin"])
        by_number = storage.run(tables.verify_pin, "1", claim["pin"])
        assert by_id["session_id"] == claim["session_id"]
        assert by_number["session_id"] == claim["session_id"]

    def test_wrong_pin_rejected(self, storage, seeded):
        table_id = seeded["tables"][0]
        claim = storage.run(tables.claim_table, table_id, None)
        wrong = "0000" if claim["pin"] != "0000" else "1111"

        with pytest.raises(InvalidPin):
            storage.run(tables.verify_pin, table_id, wrong)

    def test_free_table_has_no_valid_pin(self, storage, seeded):
        with pytest.raises(InvalidPin):
            storage.run(tables.verify_pin, seeded["tables"][2], "1234")

    def test_release_cancels_session_and_frees_table(self, storage, seeded):
        table_id = seeded["tables"][0]
        claim = storage.run(tables.claim_table, table_id, None)

        result = storage.run(tables.release_table, table_id, "waiter1")

        assert result["cancelled_session_id"] == claim["session_id"]
        table = _table(storage, table_id)
        assert table.occupied is False
        assert table.current_session_id is None
        session = storage.run(sessions.get_session, claim["session_id"])
        assert session.status == "cancelled"

        # Table can be claimed again.
        again = storage.run(tables.claim_table, table_id, None)
        assert again["session_id"] != claim["session_id"]

    def test_release_free_table_is_noop(self, storage, seeded):
        result = storage.run(tables.release_table, seeded["tables"][3], "waiter1")
        assert result["cancelled_session_id"] is None


class TestTransferAndCreate:

    def test_transfer_moves_session_and_pin(self, storage, seeded):
        source, destination = seeded["tables"][0], seeded["tables"][1]
        claim = storage.run(tables.claim_table, source, None)

        storage.run(tables.transfer_table, claim["session_id"], destination, "waiter1")

        assert _table(storage, source).occupied is False
        moved = _table(storage, destination)
        assert moved.occupied is True
        assert moved.current_session_id == claim["session_id"]
        assert moved.current_pin == claim["pin"]
        assert storage.run(sessions.get_session, claim["session_id"]).table_id == destination

    def test_transfer_to_occupied_table_fails_and_keeps_source(self, storage, seeded):
        first = storage.run(tables.claim_table, seeded["tables"][0], None)
        storage.run(tables.claim_table, seeded["tables"][1], None)

        with pytest.raises(TableOccupied):
            storage.run(tables.transfer_table, first["session_id"], seeded["tables"][1], "waiter1")

        assert _table(storage, seeded["tables"][0]).current_session_id == first["session_id"]

    def test_create_table_duplicate_number(self, storage, seeded):
        created = storage.run(tables.create_table, "Patio-1", 6)
        assert created.capacity == 6
        with pytest.raises(Conflict):
            storage.run(tables.create_table, "Patio-1", 2)

    def test_list_tables(self, storage, seeded):
        listed = storage.run(tables.list_tables)
        assert [t.table_number for t in listed] == ["1", "2", "3", "4"]

    def test_generate_pin_is_four_digits(self):
        for _ in range(50):
            pin = tables.generate_pin()
            assert len(pin) == 4 and pin.isdigit()

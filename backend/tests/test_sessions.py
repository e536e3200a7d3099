"""Tests for sessions and diners: joining, name uniqueness, rejoin and termination."""

import threading
from datetime import timedelta

import pytest

from dineflow.db.models import Diner, RestaurantTable, AuditLog
from dineflow.errors import NameTaken, InvalidPin, SessionNotActive, ValidationError, DinerNotFound
from dineflow.services import sessions, tables, orders
from dineflow.utils.time_utils import utcnow


@pytest.fixture
def open_session(storage, seeded):
    joined = storage.run(sessions.create_or_join_session, seeded["tables"][0], "Alice")
    return joined


class TestJoin:

    def test_first_diner_starts_session_and_gets_pin(self, storage, seeded):
        joined = storage.run(sessions.create_or_join_session, seeded["tables"][0], "Alice")

        assert joined["is_new_session"] is True
        assert joined["pin"] and len(joined["pin"]) == 4
        assert joined["diner"]["name"] == "Alice"
        table = storage.run(lambda db: db.get(RestaurantTable, seeded["tables"][0]))
        assert table.occupied is True
        assert table.current_session_id == joined["session_id"]

    def test_second_diner_joins_existing_session_with_pin(self, storage, seeded, open_session):
        second = storage.run(
            sessions.create_or_join_session, seeded["tables"][0], "Bob", open_session["pin"]
        )
        assert second["is_new_session"] is False
        assert second["session_id"] == open_session["session_id"]
        assert second["pin"] is None

    def test_wrong_pin_rejected(self, storage, seeded, open_session):
        wrong = "0000" if open_session["pin"] != "0000" else "9999"
        with pytest.raises(InvalidPin):
            storage.run(sessions.create_or_join_session, seeded["tables"][0], "Bob", wrong)

    def test_blank_name_rejected(self, storage, seeded):
        with pytest.raises(ValidationError):
            storage.run(sessions.create_or_join_session, seeded["tables"][0], "   ")

    def test_name_taken_is_case_insensitive(self, storage, seeded, open_session):
        with pytest.raises(NameTaken):
            storage.run(sessions.add_or_rejoin_diner, open_session["session_id"], "  ALICE ")

    def test_same_name_in_other_session_is_fine(self, storage, seeded, open_session):
        other = storage.run(sessions.create_or_join_session, seeded["tables"][1], "Alice")
        assert other["session_id"] != open_session["session_id"]


class TestRejoin:

    def test_returning_diner_keeps_id_and_orders(self, storage, seeded, open_session):
        session_id = open_session["session_id"]
        diner_id = open_session["diner"]["id"]
        order = storage.run(orders.add_to_cart, session_id, "Alice", seeded["menu"]["burger"])

        storage.run(sessions.leave_session, session_id, "Alice")
        left = storage.run(lambda db: db.get(Diner, diner_id))
        assert left.is_active is False
        assert left.logout_time is not None

        diner, rejoined = storage.run(sessions.add_or_rejoin_diner, session_id, "alice")
        assert rejoined is True
        assert diner.id == diner_id
        assert diner.is_active is True
        assert diner.logout_time is None

        still_there = storage.run(orders.list_orders, session_id)
        assert [o.id for o in still_there] == [order.id]

        count = storage.run(lambda db: db.query(Diner).filter_by(session_id=session_id).count())
        assert count == 1

    def test_leave_is_audited_as_logout(self, storage, open_session):
        session_id = open_session["session_id"]
        storage.run(sessions.leave_session, session_id, "Alice")

        entries = storage.run(
            lambda db: db.query(AuditLog).filter_by(session_id=session_id, action="diner_deactivated").all()
        )
        assert len(entries) == 1
        assert entries[0].details["reason"] == "logout"

    @pytest.mark.slow
    def test_concurrent_same_name_joins_one_wins(self, storage, seeded, open_session):
        session_id = open_session["session_id"]
        names = ["Chris", "chris", "CHRIS", " Chris "]
        results, errors = [], []
        lock = threading.Lock()
        barrier = threading.Barrier(len(names))

        def join(name):
            barrier.wait()
            try:
                res = storage.run(sessions.add_or_rejoin_diner, session_id, name)
                with lock:
                    results.append(res)
            except Exception as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=join, args=(n,)) for n in names]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 1
        assert all(isinstance(e, NameTaken) for e in errors), errors
        active = storage.run(
            lambda db: db.query(Diner).filter_by(session_id=session_id, name_key="chris", is_active=True).count()
        )
        assert active == 1


class TestLifecycle:

    def test_touch_updates_last_active_only(self, storage, seeded, open_session):
        session_id = open_session["session_id"]
        diner_id = open_session["diner"]["id"]
        later = utcnow() + timedelta(minutes=5)

        diner = storage.run(sessions.touch_diner, session_id, diner_id, later)
        assert diner.last_active == later
        assert diner.is_active is True

    def test_touch_unknown_diner(self, storage, seeded, open_session):
        with pytest.raises(DinerNotFound):
            storage.run(sessions.touch_diner, open_session["session_id"], 12345)

    def test_terminate_frees_table_and_blocks_joins(self, storage, seeded, open_session):
        session_id = open_session["session_id"]
        session = storage.run(sessions.terminate_session, session_id, "completed", "waiter1")

        assert session.status == "completed"
        assert session.ended_at is not None
        table = storage.run(lambda db: db.get(RestaurantTable, seeded["tables"][0]))
        assert table.occupied is False

        with pytest.raises(SessionNotActive):
            storage.run(sessions.add_or_rejoin_diner, session_id, "Zed")
        with pytest.raises(SessionNotActive):
            storage.run(sessions.terminate_session, session_id, "cancelled", "waiter1")

    def test_next_join_after_termination_starts_new_session(self, storage, seeded, open_session):
        storage.run(sessions.terminate_session, open_session["session_id"], "cancelled", "waiter1")
        fresh = storage.run(sessions.create_or_join_session, seeded["tables"][0], "Alice")
        assert fresh["is_new_session"] is True
        assert fresh["session_id"] != open_session["session_id"]

    def test_daily_reset_closes_everything(self, storage, seeded, open_session):
        storage.run(tables.claim_table, seeded["tables"][1], None)
        storage.run(orders.add_to_cart, open_session["session_id"], "Alice", seeded["menu"]["burger"])

        summary = storage.run(sessions.daily_reset, "manager1")

        assert summary["sessions_closed"] == 2
        assert summary["tables_cleared"] == 2
        assert summary["cart_orders_deleted"] == 1
        assert storage.run(sessions.list_active_sessions) == []
        entries = storage.run(lambda db: db.query(AuditLog).filter_by(action="daily_reset").count())
        assert entries == 1

    def test_session_detail_lists_diners(self, storage, seeded, open_session):
        storage.run(sessions.add_or_rejoin_diner, open_session["session_id"], "Bob")
        detail = storage.run(sessions.get_session_detail, open_session["session_id"])
        assert detail["table_number"] == "1"
        assert detail["active_diners"] == ["Alice", "Bob"]

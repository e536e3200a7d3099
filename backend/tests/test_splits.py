"""Tests for shared-order splitting and display prices."""

from datetime import timedelta

import pytest

from dineflow.errors import DinerNotFound, InvalidParticipantCount, SplitAlreadyActive, ValidationError
from dineflow.services import orders, payments, sessions, splits
from dineflow.utils.time_utils import utcnow


@pytest.fixture
def table_session(storage, seeded):
    joined = storage.run(sessions.create_or_join_session, seeded["tables"][0], "Alice")
    for name in ("Bob", "Carol"):
        storage.run(sessions.add_or_rejoin_diner, joined["session_id"], name)
    return joined["session_id"]


@pytest.fixture
def shared_platters(storage, seeded, table_session):
    """Two platters (2 x 100.00) marked shared and confirmed."""
    order = storage.run(
        orders.add_to_cart, table_session, "Alice", seeded["menu"]["platter"], 2, None, True
    )
    storage.run(orders.confirm_cart, table_session)
    return order.id


class TestArithmetic:

    @pytest.mark.parametrize("original,count,expected", [
        (20000, 3, 6667),
        (10000, 3, 3333),
        (1000, 4, 250),
        (5, 2, 3),
        (1, 3, 0),
    ])
    def test_per_person_price_rounds_half_up(self, original, count, expected):
        assert splits.per_person_price(original, count) == expected

    def test_allocate_shares_sums_to_original(self):
        shares = splits.allocate_shares(20000, ["Alice", "Bob", "Carol"])
        assert shares == {"Alice": 6667, "Bob": 6667, "Carol": 6666}
        assert sum(shares.values()) == 20000

    def test_per_person_price_rejects_zero(self):
        with pytest.raises(InvalidParticipantCount):
            splits.per_person_price(100, 0)


class TestCreateSplit:

    def test_three_way_split(self, storage, table_session, shared_platters):
        split = storage.run(splits.create_split, shared_platters, ["Alice", "Bob", "Carol"])

        assert split.original_price == 20000
        assert split.split_count == 3
        assert split.split_price == 6667
        assert abs(split.split_price * 3 - split.original_price) <= 1
        assert sum(split.shares.values()) == 20000

        order = storage.run(orders.get_order, shared_platters)
        assert order.split_bill_id == split.id

    def test_participants_deduplicated_case_insensitively(self, storage, table_session, shared_platters):
        with pytest.raises(InvalidParticipantCount):
            storage.run(splits.create_split, shared_platters, ["Alice", "alice ", "ALICE"])

    def test_single_participant_rejected(self, storage, table_session, shared_platters):
        with pytest.raises(InvalidParticipantCount):
            storage.run(splits.create_split, shared_platters, ["Alice"])

    def test_second_active_split_rejected(self, storage, table_session, shared_platters):
        storage.run(splits.create_split, shared_platters, ["Alice", "Bob"])
        with pytest.raises(SplitAlreadyActive):
            storage.run(splits.create_split, shared_platters, ["Alice", "Carol"])
        assert len(storage.run(splits.list_splits, table_session)) == 1

    def test_unshared_order_cannot_be_split(self, storage, seeded, table_session):
        order = storage.run(orders.add_to_cart, table_session, "Bob", seeded["menu"]["burger"])
        with pytest.raises(ValidationError):
            storage.run(splits.create_split, order.id, ["Alice", "Bob"])

    def test_voided_order_cannot_be_split(self, storage, table_session, shared_platters):
        storage.run(orders.void_order, shared_platters, "dropped", "waiter1")
        with pytest.raises(ValidationError):
            storage.run(splits.create_split, shared_platters, ["Alice", "Bob"])


class TestDissolveAndDisplay:

    def test_display_price_keeps_unit_price(self, storage, table_session, shared_platters):
        before = storage.run(splits.display_price, shared_platters)
        assert before["is_split"] is False
        assert before["each_price"] == 10000
        assert before["per_person_price"] == 20000

        storage.run(splits.create_split, shared_platters, ["Alice", "Bob", "Carol"])

        after = storage.run(splits.display_price, shared_platters)
        assert after["is_split"] is True
        assert after["each_price"] == 10000
        assert after["split_count"] == 3
        assert after["per_person_price"] == 6667
        assert after["line_total"] == 20000

    def test_dissolve_unlinks_order_and_allows_new_split(self, storage, table_session, shared_platters):
        split = storage.run(splits.create_split, shared_platters, ["Alice", "Bob"])

        dissolved = storage.run(splits.dissolve_split, split.id)
        assert dissolved.status == "completed"
        assert storage.run(orders.get_order, shared_platters).split_bill_id is None
        # Dissolving again is harmless.
        storage.run(splits.dissolve_split, split.id)

        again = storage.run(splits.create_split, shared_platters, ["Alice", "Bob", "Carol"])
        assert again.id != split.id
        assert [s.id for s in storage.run(splits.list_splits, table_session)] == [again.id]

    def test_void_dissolves_split(self, storage, table_session, shared_platters):
        split = storage.run(splits.create_split, shared_platters, ["Alice", "Bob"])
        storage.run(orders.void_order, shared_platters, "spilled", "waiter1")

        assert storage.run(splits.get_split, split.id).status == "completed"
        assert storage.run(splits.list_splits, table_session) == []


class TestCartLineSplits:

    @pytest.fixture
    def cart_platter(self, storage, seeded, table_session):
        """One shared platter (100.00) still in the cart, split Alice/Bob."""
        order = storage.run(
            orders.add_to_cart, table_session, "Alice", seeded["menu"]["platter"], 1, None, True
        )
        split = storage.run(splits.create_split, order.id, ["Alice", "Bob"])
        return order.id, split.id

    def test_quantity_change_reprices_split(self, storage, table_session, cart_platter):
        order_id, split_id = cart_platter
        storage.run(orders.update_cart_item, order_id, quantity=3)
        storage.run(orders.confirm_cart, table_session)

        split = storage.run(splits.get_split, split_id)
        assert split.status == "active"
        assert split.original_price == 30000
        assert split.split_price == 15000
        assert split.shares == {"Alice": 15000, "Bob": 15000}

        bill = storage.run(payments.compute_bill, table_session)
        assert bill["subtotal"] == 30000
        assert storage.run(payments.compute_bill, table_session, "Bob")["subtotal"] == 15000

    def test_unsharing_dissolves_split(self, storage, table_session, cart_platter):
        order_id, split_id = cart_platter
        order = storage.run(orders.update_cart_item, order_id, is_shared=False)

        assert order.split_bill_id is None
        assert storage.run(splits.get_split, split_id).status == "completed"
        assert storage.run(splits.list_splits, table_session) == []
        assert storage.run(payments.compute_bill, table_session, "Bob")["subtotal"] == 0

    def test_removing_line_dissolves_split(self, storage, table_session, cart_platter):
        order_id, split_id = cart_platter
        assert storage.run(orders.update_cart_item, order_id, quantity=0) is None

        assert storage.run(splits.list_splits, table_session) == []
        assert storage.run(splits.get_split, split_id).status == "completed"

    def test_clearing_cart_dissolves_split(self, storage, table_session, cart_platter):
        _, split_id = cart_platter
        assert storage.run(orders.clear_cart, table_session) == 1

        assert storage.run(splits.list_splits, table_session) == []
        assert storage.run(splits.get_split, split_id).status == "completed"

    def test_purging_stale_cart_dissolves_split(self, storage, table_session, cart_platter):
        _, split_id = cart_platter
        later = utcnow() + timedelta(hours=25)
        assert storage.run(orders.purge_stale, table_session, timedelta(hours=24), later) == 1

        assert storage.run(splits.list_splits, table_session) == []
        assert storage.run(splits.get_split, split_id).status == "completed"


class TestParticipants:

    def test_participant_must_be_a_diner(self, storage, table_session, shared_platters):
        with pytest.raises(DinerNotFound):
            storage.run(splits.create_split, shared_platters, ["Alice", "Ghost"])
        assert storage.run(splits.list_splits, table_session) == []

    def test_participants_use_diner_display_names(self, storage, table_session, shared_platters):
        split = storage.run(splits.create_split, shared_platters, ["alice", " BOB "])
        assert split.participants == ["Alice", "Bob"]
        assert set(split.shares) == {"Alice", "Bob"}

    def test_departed_diner_can_still_share(self, storage, table_session, shared_platters):
        storage.run(sessions.leave_session, table_session, "Carol")
        split = storage.run(splits.create_split, shared_platters, ["Alice", "Carol"])
        assert split.participants == ["Alice", "Carol"]

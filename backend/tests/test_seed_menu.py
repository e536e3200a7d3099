"""
Tests for table/menu seeding and menu utilities.

Covers idempotent seeding, case-insensitive menu upserts and
price conversion to cents.
"""

import json

import pytest

from dineflow.db.models import MenuItem, RestaurantTable
from dineflow.errors import ValidationError
from dineflow.services.menu import list_menu, normalize_item_name, to_cents, upsert_menu_item
from scripts.seed_tables import DEFAULT_MENU, load_menu_json, seed


@pytest.fixture
def sample_menu():
    """Create a sample menu for testing."""
    return {
        "Salads": [
            {"name": "Greek Salad", "price": 9.99},
            {"name": "Tomato Salad", "price": 7.50, "hidden": True},
        ],
        "Grilled": [
            {"name": "Lamb Chops", "price": 25.00},
        ],
    }


class TestMenuUtilities:

    def test_to_cents(self):
        assert to_cents(12.5) == 1250
        assert to_cents("9.99") == 999
        assert to_cents(0) == 0

    @pytest.mark.parametrize("bad", [-1, "abc", None])
    def test_to_cents_rejects_bad_prices(self, bad):
        with pytest.raises(ValidationError):
            to_cents(bad)

    def test_normalize_item_name(self):
        assert normalize_item_name("Greek Salad") == "greek salad"
        assert normalize_item_name("  LAMB CHOPS  ") == "lamb chops"
        assert normalize_item_name("Grilled-Fish") == "grilled-fish"


class TestUpsertMenuItem:

    def test_creates_new_item(self, storage):
        item = storage.run(upsert_menu_item, {"name": "Test Item", "price": 12.50, "category": "kitchen"})
        assert item.id is not None
        assert item.price == 1250
        assert item.category == "kitchen"
        assert item.is_available is True

    def test_updates_by_case_insensitive_name(self, storage):
        first = storage.run(upsert_menu_item, {"name": "Original Item", "price": 10.00})
        second = storage.run(upsert_menu_item, {"name": "ORIGINAL ITEM", "price": 11.00, "hidden": True})

        assert second.id == first.id
        assert second.price == 1100
        assert second.is_available is False
        assert storage.run(lambda db: db.query(MenuItem).count()) == 1

    def test_requires_name(self, storage):
        with pytest.raises(ValidationError):
            storage.run(upsert_menu_item, {"name": "  ", "price": 1})


class TestSeed:

    def test_seed_creates_tables_and_menu(self, storage, sample_menu):
        stats = storage.run(seed, 5, sample_menu)

        assert stats == {"tables_created": 5, "menu_items": 3}
        numbers = storage.run(lambda db: [t.table_number for t in db.query(RestaurantTable).order_by(RestaurantTable.id)])
        assert numbers == ["1", "2", "3", "4", "5"]
        visible = [item.name for item in storage.run(list_menu)]
        assert "Tomato Salad" not in visible
        assert set(visible) == {"Greek Salad", "Lamb Chops"}

    def test_seed_is_idempotent(self, storage, sample_menu):
        storage.run(seed, 3, sample_menu)
        again = storage.run(seed, 4, sample_menu)

        assert again["tables_created"] == 1
        assert storage.run(lambda db: db.query(RestaurantTable).count()) == 4
        assert storage.run(lambda db: db.query(MenuItem).count()) == 3

    def test_default_menu_seeds(self, storage):
        stats = storage.run(seed, 1, DEFAULT_MENU)
        assert stats["menu_items"] == sum(len(items) for items in DEFAULT_MENU.values())

    def test_load_menu_json(self, tmp_path, sample_menu):
        menu_file = tmp_path / "menu.json"
        menu_file.write_text(json.dumps(sample_menu), encoding="utf-8")
        assert load_menu_json(str(menu_file)) == sample_menu

        with pytest.raises(FileNotFoundError):
            load_menu_json(str(tmp_path / "missing.json"))

"""
Seed restaurant tables and menu items.

Idempotent: tables are matched by table number and menu items by
(case-insensitive) name, so re-running only updates prices/availability.

Usage:
    python -m scripts.seed_tables [--tables 12] [--menu-file path/to/menu.json]

Environment:
    APP_DATABASE_URL: Database connection (default: sqlite:///./dineflow.db)

Menu file format: {"<category>": [{"name": "...", "price": 12.5, "hidden": false}, ...]}
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_MENU = {
    "starters": [
        {"name": "Garlic Bread", "price": 4.50},
        {"name": "Calamari", "price": 9.00},
    ],
    "mains": [
        {"name": "Grilled Chicken", "price": 15.00},
        {"name": "Seafood Platter", "price": 200.00},
        {"name": "Mushroom Risotto", "price": 13.50},
    ],
    "drinks": [
        {"name": "Lemonade", "price": 3.00},
        {"name": "House Wine (glass)", "price": 6.50},
    ],
}


def load_menu_json(menu_file: str) -> Dict[str, Any]:
    if not os.path.exists(menu_file):
        raise FileNotFoundError(f"Menu file not found: {menu_file}")
    with open(menu_file, 'r', encoding='utf-8') as f:
        menu = json.load(f)
    logger.info(f"Loaded menu from {menu_file} with {len(menu)} categories")
    return menu


def seed(db: Session, table_count: int, menu_dict: Dict[str, Any], capacity: int = 4) -> Dict[str, int]:
    from dineflow.db.models import RestaurantTable
    from dineflow.services.menu import upsert_menu_item

    stats = {"tables_created": 0, "menu_items": 0}

    existing = set(db.execute(select(RestaurantTable.table_number)).scalars().all())
    for number in range(1, table_count + 1):
        if str(number) in existing:
            continue
        db.add(RestaurantTable(table_number=str(number), capacity=capacity))
        stats["tables_created"] += 1

    for category, items in menu_dict.items():
        if not isinstance(items, list):
            logger.warning(f"Skipping section '{category}' - not a list")
            continue
        for item in items:
            upsert_menu_item(db, {"category": category, **item})
            stats["menu_items"] += 1
    return stats


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Seed DineFlow tables and menu")
    parser.add_argument("--tables", type=int, default=12, help="Number of tables to ensure exist")
    parser.add_argument("--capacity", type=int, default=4, help="Seats per new table")
    parser.add_argument("--menu-file", default=None, help="Menu JSON (defaults to a small demo menu)")
    args = parser.parse_args(argv)

    from dineflow.storage import SQLAlchemyStorage

    menu_dict = load_menu_json(args.menu_file) if args.menu_file else DEFAULT_MENU
    storage = SQLAlchemyStorage()
    try:
        stats = storage.run(seed, args.tables, menu_dict, args.capacity)
    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        return 1
    finally:
        storage.close()

    logger.info(f"Seed complete: {stats}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

# src/scripts/load_data.py
from __future__ import annotations

import logging
import os
import sys

from src.io.db_io import create_schema, load_table_from_file

logger = logging.getLogger(__name__)

# Порядок важен: справочники раньше фактов, на которые они ссылаются
LOAD_ORDER = (
    "data_pharmacy",
    "data_globalproduct",
    "data_internalproduct",
    "data_order",
    "data_productorder",
    "data_inventorysnapshot",
    "data_sales",
)


def load_all(directory: str) -> int:
    """
    Создаёт схему и загружает выгрузки вида <directory>/<table>.csv (или .xlsx).
    Отсутствующие файлы пропускаются.
    """
    create_schema()
    total = 0
    for table in LOAD_ORDER:
        for ext in (".csv", ".xlsx"):
            path = os.path.join(directory, table + ext)
            if os.path.exists(path):
                total += load_table_from_file(path, table)
                break
        else:
            logger.warning("No export found for %s in %s", table, directory)
    return total


def main() -> int:
    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) == 2:
        total = load_all(sys.argv[1])
    elif len(sys.argv) == 3:
        create_schema()
        total = load_table_from_file(sys.argv[1], sys.argv[2])
    else:
        print("Usage: python -m src.scripts.load_data <directory> | <file> <table>")
        return 2

    logger.info("Loaded %s rows in total", total)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

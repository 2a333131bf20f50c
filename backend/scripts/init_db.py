#!/usr/bin/env python3
"""
Create the database tables.

Usage:
    DATABASE_URL="postgresql://..." python scripts/init_db.py

    # Drop and recreate every table (destroys data)
    python scripts/init_db.py --drop
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from iqtest.core.logging_config import setup_logging  # noqa: E402
from iqtest.models import Database  # noqa: E402


async def init_db(drop: bool) -> None:
    database = Database()
    database.connect()
    try:
        if drop:
            await database.drop_all()
            print("Dropped existing tables")
        await database.create_all()
        print(f"Tables created at {database.url.split('@')[-1]}")
    finally:
        await database.dispose()


def main():
    parser = argparse.ArgumentParser(description="Create the IQ test database tables")
    parser.add_argument(
        "--drop", action="store_true", help="Drop existing tables before creating them"
    )
    args = parser.parse_args()

    setup_logging()
    asyncio.run(init_db(args.drop))


if __name__ == "__main__":
    main()

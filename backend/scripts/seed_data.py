#!/usr/bin/env python3
"""
Seed the sample question bank and norm groups.

Usage:
    DATABASE_URL="postgresql://..." python scripts/seed_data.py

    # Clear sessions, results, questions, norm groups and users first
    python scripts/seed_data.py --reset

    # Show what would be inserted without touching the database
    python scripts/seed_data.py --dry-run
"""

import argparse
import asyncio
import os
import sys
from collections import Counter

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from iqtest.core.logging_config import setup_logging  # noqa: E402
from iqtest.models import Database  # noqa: E402
from iqtest.seed import (  # noqa: E402
    NORM_GROUPS,
    SAMPLE_QUESTIONS,
    generated_questions,
    seed_database,
)


def print_plan(extra_questions: int) -> None:
    questions = SAMPLE_QUESTIONS + generated_questions(extra_questions)
    print("[DRY RUN] Would create:")
    print(f"  {len(NORM_GROUPS)} norm groups")
    for group in NORM_GROUPS:
        print(f"    - {group['name']} (n={group['sample_size']})")
    print(f"  {len(questions)} questions")
    for category, count in sorted(Counter(q["category"] for q in questions).items()):
        print(f"    - {category}: {count}")


async def seed(reset: bool, extra_questions: int) -> None:
    database = Database()
    database.connect()
    try:
        if reset:
            await database.create_all()
        counts = await seed_database(
            database, reset=reset, extra_questions=extra_questions
        )
    finally:
        await database.dispose()
    print(
        f"Seeded {counts['norm_groups']} norm groups and {counts['questions']} questions"
    )


def main():
    parser = argparse.ArgumentParser(description="Seed sample questions and norm groups")
    parser.add_argument("--reset", action="store_true", help="Delete existing data first")
    parser.add_argument(
        "--dry-run", action="store_true", help="Print the plan without writing"
    )
    parser.add_argument(
        "--extra-questions",
        type=int,
        default=50,
        help="Number of generated filler questions (default: 50)",
    )
    args = parser.parse_args()

    if args.extra_questions < 0:
        print("ERROR: --extra-questions must be non-negative")
        sys.exit(1)

    if args.dry_run:
        print_plan(args.extra_questions)
        return

    setup_logging()
    asyncio.run(seed(args.reset, args.extra_questions))


if __name__ == "__main__":
    main()

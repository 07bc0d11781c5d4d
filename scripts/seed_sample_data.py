#!/usr/bin/env python3
"""Script to seed sample prompts, test cases and results."""

import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from prompt_ops.config import get_settings
from prompt_ops.db.client import StoreClient
from prompt_ops.db.seed import seed_sample_data
from prompt_ops.utils.logging import setup_logging


def main():
    """Seed sample data and print a created/skipped/errored report."""
    settings = get_settings()
    setup_logging(settings.log_level)
    print("Seeding sample data...")

    with StoreClient(settings) as store:
        report = seed_sample_data(store)

    counts = report.counts
    print(
        f"Prompts: {counts['created']} created, {counts['skipped']} skipped, "
        f"{counts['errored']} errored"
    )
    for message in report.messages:
        print(f"  - {message}")
    for error in report.errors:
        print(f"  ! {error}")

    if report.errors:
        sys.exit(1)
    print("Sample data seeded.")


if __name__ == "__main__":
    main()

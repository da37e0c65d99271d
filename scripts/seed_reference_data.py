"""
Seed Reference Data — roles, departments, locations, severities and a
sample incident taxonomy.

Usage:
    python scripts/seed_reference_data.py              # Uses development DB
    python scripts/seed_reference_data.py --env production

This script is idempotent — safe to run multiple times.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from occurrence_tracker import create_app
from occurrence_tracker.models import db
from occurrence_tracker.models.auth import Department, Location, Role
from occurrence_tracker.models.taxonomy import Incident, Severity
from occurrence_tracker.services.seed import seed_reference_data


def main():
    parser = argparse.ArgumentParser(description="Seed occurrence tracker reference data")
    parser.add_argument("--env", default="development", help="App environment")
    parser.add_argument("--create-tables", action="store_true",
                        help="Run db.create_all() first (local SQLite without migrations)")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        if args.create_tables:
            db.create_all()

        print("=" * 60)
        print("  SEED: Reference data")
        print("=" * 60)

        counts = seed_reference_data()
        for table, created in counts.items():
            print(f"  {table:12s} {created:3d} created")

        print("\n" + "=" * 60)
        print("  SUMMARY")
        print("=" * 60)
        print(f"  Roles:       {Role.query.count()}")
        print(f"  Departments: {Department.query.count()}")
        print(f"  Locations:   {Location.query.count()}")
        print(f"  Severities:  {Severity.query.count()}")
        print(f"  Incidents:   {Incident.query.count()}")

        print("\n✅ Seed complete!")


if __name__ == "__main__":
    main()

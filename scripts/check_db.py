#!/usr/bin/env python3
import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from expense_tracker.db import parse_database_config
from expense_tracker.schema import get_db_health, init_schema


def main():
    parser = argparse.ArgumentParser(description="Check and print DB schema health")
    parser.add_argument("db_path", nargs="?", default="instance/expense_tracker.sqlite", help="Path to SQLite DB (ignored when DATABASE_URL is postgres)")
    parser.add_argument("--init", action="store_true", help="Create missing tables and seed default categorization rules")
    args = parser.parse_args()

    config = parse_database_config(args.db_path)
    if args.init:
        init_schema(config)

    health = get_db_health(config)
    print(json.dumps(health, indent=2, sort_keys=True))
    return 0 if health["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())

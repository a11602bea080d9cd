import argparse
import json

from .db import connect_db, parse_database_config


REQUIRED_TABLES = {
    "expenses": {
        "columns": {
            "id",
            "date",
            "category",
            "description",
            "amount",
            "vendor",
            "payment_method",
            "created_at",
            "updated_at",
        },
        "indexes": {"idx_expenses_date", "idx_expenses_category"},
    },
    "categorization_rules": {
        "columns": {"id", "category", "keyword", "case_sensitive", "created_at", "updated_at"},
        "indexes": {"idx_categorization_rules_category", "idx_categorization_rules_keyword"},
    },
}

DEFAULT_CATEGORY_RULES = [
    ("Transportation", "BUS"),
    ("Transportation", "MRT"),
    ("Transportation", "GRAB"),
    ("Transportation", "TAXI"),
    ("Transportation", "TRANSPORT"),
    ("Food & Dining", "MCDONALDS"),
    ("Food & Dining", "SUBWAY"),
    ("Food & Dining", "COFFEE"),
    ("Food & Dining", "RESTAURANT"),
    ("Food & Dining", "CAFE"),
    ("Food & Dining", "KITCHEN"),
    ("Food & Dining", "SUSHI"),
    ("Food & Dining", "RAMEN"),
    ("Food & Dining", "DINING"),
    ("Food & Dining", "FOOD"),
    ("Food & Dining", "MEAL"),
    ("Shopping", "SHOPPING"),
    ("Shopping", "STORE"),
    ("Shopping", "MART"),
    ("Shopping", "RETAIL"),
    ("Shopping", "PURCHASE"),
    ("Utilities", "UTILITIES"),
    ("Utilities", "ELECTRIC"),
    ("Utilities", "WATER"),
    ("Utilities", "GAS"),
    ("Healthcare", "PHARMACY"),
    ("Healthcare", "CLINIC"),
    ("Healthcare", "HOSPITAL"),
    ("Healthcare", "MEDICAL"),
]


def backend_name(conn):
    return getattr(conn, "backend", "sqlite")


def table_exists(conn, name):
    if backend_name(conn) == "postgres":
        row = conn.execute(
            "SELECT 1 FROM information_schema.tables WHERE table_schema = current_schema() AND table_name = ?",
            (name,),
        ).fetchone()
        return row is not None

    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type='table' AND name = ?", (name,)).fetchone()
    return row is not None


def index_exists(conn, index_name):
    if backend_name(conn) == "postgres":
        row = conn.execute(
            "SELECT 1 FROM pg_indexes WHERE schemaname = current_schema() AND indexname = ?",
            (index_name,),
        ).fetchone()
        return row is not None

    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type='index' AND name = ?", (index_name,)).fetchone()
    return row is not None


def get_table_columns(conn, table):
    if backend_name(conn) == "postgres":
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_schema = current_schema() AND table_name = ?",
            (table,),
        ).fetchall()
        return {row[0] for row in rows}

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row[1] for row in rows}


def ensure_table(conn, create_sql):
    if backend_name(conn) == "postgres":
        create_sql = create_sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "BIGSERIAL PRIMARY KEY")
    conn.execute(create_sql)


def seed_category_rules(conn, rules=None):
    count = conn.execute("SELECT COUNT(*) FROM categorization_rules").fetchone()[0]
    if count:
        return 0

    rules = DEFAULT_CATEGORY_RULES if rules is None else rules
    for category, keyword in rules:
        conn.execute(
            "INSERT INTO categorization_rules (category, keyword, case_sensitive) VALUES (?, ?, 0)",
            (category, keyword),
        )
    return len(rules)


def create_schema(conn, seed_rules=True):
    try:
        ensure_table(
            conn,
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                category TEXT NOT NULL,
                description TEXT,
                amount NUMERIC(10, 2) NOT NULL,
                vendor TEXT,
                payment_method TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
        )
        ensure_table(
            conn,
            """
            CREATE TABLE IF NOT EXISTS categorization_rules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                category TEXT NOT NULL,
                keyword TEXT NOT NULL,
                case_sensitive INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_expenses_category ON expenses(category)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_categorization_rules_category ON categorization_rules(category)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_categorization_rules_keyword ON categorization_rules(keyword)"
        )
        if seed_rules:
            seed_category_rules(conn)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_schema(db_or_config_or_path, seed_rules=True):
    if hasattr(db_or_config_or_path, "execute"):
        create_schema(db_or_config_or_path, seed_rules=seed_rules)
        return

    config = db_or_config_or_path if isinstance(db_or_config_or_path, dict) else parse_database_config(db_or_config_or_path)
    conn = connect_db(config)
    try:
        create_schema(conn, seed_rules=seed_rules)
    finally:
        conn.close()


def inspect_db_health(conn):
    missing_tables = []
    missing_columns = {}
    missing_indexes = []

    for table_name, table_spec in REQUIRED_TABLES.items():
        if not table_exists(conn, table_name):
            missing_tables.append(table_name)
            missing_columns[table_name] = sorted(table_spec["columns"])
            missing_indexes.extend(sorted(table_spec["indexes"]))
            continue

        table_cols = get_table_columns(conn, table_name)
        missing_columns[table_name] = sorted(col for col in table_spec["columns"] if col not in table_cols)

        for idx in sorted(table_spec["indexes"]):
            if not index_exists(conn, idx):
                missing_indexes.append(idx)

    return {
        "ok": not missing_tables and not any(missing_columns.values()) and not missing_indexes,
        "backend": backend_name(conn),
        "missing_tables": missing_tables,
        "missing_columns": missing_columns,
        "missing_indexes": sorted(set(missing_indexes)),
    }


def get_db_health(db_config_or_path):
    config = db_config_or_path if isinstance(db_config_or_path, dict) else parse_database_config(db_config_or_path)
    conn = connect_db(config)
    try:
        return inspect_db_health(conn)
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Create the expense tracker schema and print its health")
    parser.add_argument("db_path", nargs="?", default="instance/expense_tracker.sqlite", help="Path to SQLite DB (ignored when DATABASE_URL is postgres)")
    parser.add_argument("--init", action="store_true", help="Create missing tables and seed default rules first")
    parser.add_argument("--no-seed", action="store_true", help="Skip seeding default categorization rules")
    args = parser.parse_args()

    config = parse_database_config(args.db_path)
    if args.init:
        init_schema(config, seed_rules=not args.no_seed)
    print(json.dumps(get_db_health(config), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()

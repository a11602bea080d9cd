from decimal import Decimal

from .categorizer import CategoryRule
from .db import DB_ERRORS, insert_returning_id
from .errors import NotFoundError, StoreError

EXPENSE_COLUMNS = "id, date, category, description, amount, vendor, payment_method, created_at, updated_at"
RULE_COLUMNS = "id, category, keyword, case_sensitive, created_at, updated_at"


def db_amount(conn, amount):
    if getattr(conn, "backend", "sqlite") == "postgres":
        return Decimal(amount)
    return float(amount)


def text_or_none(value):
    return None if value is None else str(value)


def row_to_expense(row):
    return {
        "id": row["id"],
        "date": str(row["date"]),
        "category": row["category"],
        "description": row["description"] or "",
        "amount": Decimal(str(row["amount"])).quantize(Decimal("0.01")),
        "vendor": row["vendor"] or None,
        "payment_method": row["payment_method"] or None,
        "created_at": text_or_none(row["created_at"]),
        "updated_at": text_or_none(row["updated_at"]),
    }


def row_to_rule(row):
    return {
        "id": row["id"],
        "category": row["category"],
        "keyword": row["keyword"],
        "case_sensitive": bool(row["case_sensitive"]),
        "created_at": text_or_none(row["created_at"]),
        "updated_at": text_or_none(row["updated_at"]),
    }


def expense_params(conn, expense):
    expense_date = expense["date"]
    return (
        expense_date.isoformat() if hasattr(expense_date, "isoformat") else expense_date,
        expense["category"],
        expense["description"],
        db_amount(conn, expense["amount"]),
        expense.get("vendor"),
        expense.get("payment_method"),
    )


class ExpenseStore:
    """Durable storage for expenses: single inserts, the bulk import commit, and CRUD."""

    def __init__(self, conn):
        self.conn = conn

    def _insert(self, expense):
        expense_id = insert_returning_id(
            self.conn,
            """
            INSERT INTO expenses (date, category, description, amount, vendor, payment_method, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """,
            expense_params(self.conn, expense),
        )
        return expense_id

    def insert(self, expense):
        try:
            expense_id = self._insert(expense)
            self.conn.commit()
        except DB_ERRORS as exc:
            self.conn.rollback()
            raise StoreError(f"Failed to insert expense: {exc}") from exc
        return self.get(expense_id)

    def bulk_insert(self, expenses):
        """Insert every expense in one transaction; any failure persists nothing."""
        try:
            ids = [self._insert(expense) for expense in expenses]
            self.conn.commit()
        except DB_ERRORS as exc:
            self.conn.rollback()
            raise StoreError(f"Failed to import expenses: {exc}") from exc
        return [self.get(expense_id) for expense_id in ids]

    def get(self, expense_id):
        try:
            row = self.conn.execute(
                f"SELECT {EXPENSE_COLUMNS} FROM expenses WHERE id = ?", (expense_id,)
            ).fetchone()
        except DB_ERRORS as exc:
            raise StoreError(str(exc)) from exc
        if row is None:
            raise NotFoundError(f"Expense {expense_id} not found")
        return row_to_expense(row)

    def list(self, start_date=None, end_date=None, category=None):
        where_parts = ["1=1"]
        params = []
        if start_date:
            where_parts.append("date >= ?")
            params.append(start_date)
        if end_date:
            where_parts.append("date <= ?")
            params.append(end_date)
        if category:
            where_parts.append("category = ?")
            params.append(category)

        try:
            rows = self.conn.execute(
                f"SELECT {EXPENSE_COLUMNS} FROM expenses WHERE {' AND '.join(where_parts)} ORDER BY date DESC, id DESC",
                tuple(params),
            ).fetchall()
        except DB_ERRORS as exc:
            raise StoreError(str(exc)) from exc
        return [row_to_expense(row) for row in rows]

    def update(self, expense_id, expense):
        try:
            cur = self.conn.execute(
                """
                UPDATE expenses
                SET date = ?, category = ?, description = ?, amount = ?, vendor = ?, payment_method = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                expense_params(self.conn, expense) + (expense_id,),
            )
            self.conn.commit()
        except DB_ERRORS as exc:
            self.conn.rollback()
            raise StoreError(str(exc)) from exc
        if cur.rowcount == 0:
            raise NotFoundError(f"Expense {expense_id} not found")
        return self.get(expense_id)

    def delete(self, expense_id):
        try:
            cur = self.conn.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
            self.conn.commit()
        except DB_ERRORS as exc:
            self.conn.rollback()
            raise StoreError(str(exc)) from exc
        if cur.rowcount == 0:
            raise NotFoundError(f"Expense {expense_id} not found")


def validate_rule_payload(payload):
    if not isinstance(payload, dict):
        raise ValueError("rule must be a JSON object")
    category = str(payload.get("category") or "").strip()
    keyword = str(payload.get("keyword") or "").strip()
    if not category:
        raise ValueError("Category is required")
    if not keyword:
        raise ValueError("Keyword is required")
    return {"category": category, "keyword": keyword, "case_sensitive": bool(payload.get("case_sensitive"))}


class CategoryRuleStore:
    def __init__(self, conn):
        self.conn = conn

    def get_ordered_category_rules(self):
        try:
            rows = self.conn.execute(
                "SELECT category, keyword, case_sensitive FROM categorization_rules ORDER BY category, keyword"
            ).fetchall()
        except DB_ERRORS as exc:
            raise StoreError(f"Failed to load categorization rules: {exc}") from exc
        return [CategoryRule(row["category"], row["keyword"], bool(row["case_sensitive"])) for row in rows]

    def list_rules(self, category=None):
        sql = f"SELECT {RULE_COLUMNS} FROM categorization_rules"
        params = ()
        if category:
            sql += " WHERE category = ?"
            params = (category,)
        sql += " ORDER BY category, keyword"
        try:
            rows = self.conn.execute(sql, params).fetchall()
        except DB_ERRORS as exc:
            raise StoreError(str(exc)) from exc
        return [row_to_rule(row) for row in rows]

    def get_rule(self, rule_id):
        try:
            row = self.conn.execute(
                f"SELECT {RULE_COLUMNS} FROM categorization_rules WHERE id = ?", (rule_id,)
            ).fetchone()
        except DB_ERRORS as exc:
            raise StoreError(str(exc)) from exc
        if row is None:
            raise NotFoundError(f"Rule {rule_id} not found")
        return row_to_rule(row)

    def create_rule(self, rule):
        try:
            rule_id = insert_returning_id(
                self.conn,
                """
                INSERT INTO categorization_rules (category, keyword, case_sensitive, created_at, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                """,
                (rule["category"], rule["keyword"], 1 if rule["case_sensitive"] else 0),
            )
            self.conn.commit()
        except DB_ERRORS as exc:
            self.conn.rollback()
            raise StoreError(str(exc)) from exc
        return self.get_rule(rule_id)

    def update_rule(self, rule_id, rule):
        try:
            cur = self.conn.execute(
                """
                UPDATE categorization_rules
                SET category = ?, keyword = ?, case_sensitive = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (rule["category"], rule["keyword"], 1 if rule["case_sensitive"] else 0, rule_id),
            )
            self.conn.commit()
        except DB_ERRORS as exc:
            self.conn.rollback()
            raise StoreError(str(exc)) from exc
        if cur.rowcount == 0:
            raise NotFoundError(f"Rule {rule_id} not found")
        return self.get_rule(rule_id)

    def delete_rule(self, rule_id):
        try:
            cur = self.conn.execute("DELETE FROM categorization_rules WHERE id = ?", (rule_id,))
            self.conn.commit()
        except DB_ERRORS as exc:
            self.conn.rollback()
            raise StoreError(str(exc)) from exc
        if cur.rowcount == 0:
            raise NotFoundError(f"Rule {rule_id} not found")

    def list_categories(self):
        try:
            rows = self.conn.execute(
                "SELECT DISTINCT category FROM categorization_rules ORDER BY category"
            ).fetchall()
        except DB_ERRORS as exc:
            raise StoreError(str(exc)) from exc
        return [row[0] for row in rows]

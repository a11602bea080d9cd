import os
from decimal import Decimal

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename

from .categorizer import Categorizer
from .csv_import import (
    MAX_UPLOAD_BYTES,
    expense_from_payload,
    expense_to_json,
    parse_csv_upload,
    validate_upload,
)
from .db import DB_ERRORS, connect_db, parse_database_config
from .errors import CSVImportError, DatabaseInitError, NotFoundError, StoreError
from .repository import CategoryRuleStore, ExpenseStore, validate_rule_payload
from .schema import get_db_health, init_schema


def json_error(message, status):
    return jsonify({"success": False, "error": message}), status


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        SECRET_KEY="dev",
        DATABASE=os.path.join(app.instance_path, "expense_tracker.sqlite"),
        MAX_CONTENT_LENGTH=MAX_UPLOAD_BYTES,
        IMPORT_FORM_FIELD="csv",
        SEED_CATEGORY_RULES=True,
    )

    if test_config is not None:
        app.config.update(test_config)

    os.makedirs(app.instance_path, exist_ok=True)
    app.config.setdefault("DB_INIT_ERROR", None)

    def database_config():
        return parse_database_config(app.config["DATABASE"])

    @app.teardown_appcontext
    def close_db(_=None):
        db = g.pop("db", None)
        if db is not None:
            db.close()

    def get_db():
        if "db" not in g:
            try:
                g.db = connect_db(database_config())
            except DB_ERRORS as exc:
                message = f"Unable to open database {app.config['DATABASE']}: {exc}"
                app.logger.error(message)
                app.config["DB_INIT_ERROR"] = message
                raise DatabaseInitError(message) from exc
        return g.db

    def init_db():
        try:
            init_schema(database_config(), seed_rules=app.config["SEED_CATEGORY_RULES"])
            app.config["DB_INIT_ERROR"] = None
        except DB_ERRORS + (OSError, RuntimeError) as exc:
            message = f"Failed to initialize database {app.config['DATABASE']}: {exc}"
            app.logger.error(message)
            app.config["DB_INIT_ERROR"] = message
            raise DatabaseInitError(message) from exc

    def expense_store():
        return ExpenseStore(get_db())

    def rule_store():
        return CategoryRuleStore(get_db())

    def rule_snapshot():
        return Categorizer.from_provider(rule_store())

    @app.cli.command("init-db")
    def init_db_command():
        init_db()
        print("Initialized the database.")

    @app.before_request
    def check_db_ready():
        if app.config.get("DB_INIT_ERROR") and request.endpoint != "db_health":
            return json_error(app.config["DB_INIT_ERROR"], 500)

    @app.errorhandler(RequestEntityTooLarge)
    def upload_too_large(_exc):
        limit = app.config.get("MAX_CONTENT_LENGTH") or MAX_UPLOAD_BYTES
        return json_error(f"Failed to parse form: file too large (limit {limit} bytes)", 413)

    @app.get("/health/db")
    def db_health():
        try:
            return jsonify(get_db_health(database_config()))
        except DB_ERRORS as exc:
            return jsonify({
                "ok": False,
                "missing_tables": [],
                "missing_columns": {},
                "missing_indexes": [],
                "error": str(exc),
            }), 500

    @app.post("/api/import/csv")
    def import_csv():
        file = request.files.get(app.config["IMPORT_FORM_FIELD"])
        if file is None or not file.filename:
            return json_error("No CSV file provided", 400)

        file_bytes = file.read()
        app.logger.info("ImportFromCSV: received file %s (%d bytes)", file.filename, len(file_bytes))
        try:
            validate_upload(file.filename, len(file_bytes))
            expenses, row_errors = parse_csv_upload(file_bytes, rule_snapshot())
        except CSVImportError as exc:
            app.logger.warning("ImportFromCSV: failed to parse %s: %s", file.filename, exc)
            return json_error(f"Failed to parse CSV: {exc}", 400)

        app.logger.info(
            "ImportFromCSV: parsed %d expenses from %s (%d rows skipped)",
            len(expenses),
            file.filename,
            len(row_errors),
        )
        return jsonify({
            "success": True,
            "expenses": [expense_to_json(expense) for expense in expenses],
            "count": len(expenses),
            "filename": secure_filename(file.filename) or file.filename,
            "message": f"Successfully parsed {len(expenses)} transactions",
        })

    @app.post("/api/import/confirm")
    def confirm_import():
        payload = request.get_json(silent=True)
        if not isinstance(payload, list):
            return json_error("Invalid JSON data: expected a list of expenses", 400)
        if not payload:
            return json_error("No expenses to import", 400)

        try:
            expenses = [expense_from_payload(item) for item in payload]
        except ValueError as exc:
            return json_error(f"Invalid JSON data: {exc}", 400)

        try:
            saved = expense_store().bulk_insert(expenses)
        except StoreError as exc:
            app.logger.warning("ConfirmImport: bulk insert of %d expenses failed: %s", len(expenses), exc)
            return json_error(f"Failed to import expenses: {exc}", 500)

        total = sum((expense["amount"] for expense in saved), Decimal("0"))
        app.logger.info("ConfirmImport: saved %d expenses", len(saved))
        return jsonify({
            "success": True,
            "message": "Successfully imported expenses to database",
            "count": len(saved),
            "total": float(total),
            "expenses": [expense_to_json(expense) for expense in saved],
        })

    @app.get("/api/expenses")
    def list_expenses():
        start_date = (request.args.get("start_date") or "").strip()
        end_date = (request.args.get("end_date") or "").strip()
        category = (request.args.get("category") or "").strip()
        try:
            expenses = expense_store().list(start_date or None, end_date or None, category or None)
        except StoreError as exc:
            return json_error(str(exc), 500)
        return jsonify({"expenses": [expense_to_json(expense) for expense in expenses]})

    @app.post("/api/expenses")
    def create_expense():
        try:
            expense = expense_from_payload(
                request.get_json(silent=True), categorizer=rule_snapshot(), default_payment_method=None
            )
        except ValueError as exc:
            return json_error(str(exc), 400)
        try:
            saved = expense_store().insert(expense)
        except StoreError as exc:
            return json_error(str(exc), 500)
        return jsonify(expense_to_json(saved)), 201

    @app.get("/api/expenses/<int:expense_id>")
    def get_expense(expense_id):
        try:
            return jsonify(expense_to_json(expense_store().get(expense_id)))
        except NotFoundError:
            return json_error("Expense not found", 404)
        except StoreError as exc:
            return json_error(str(exc), 500)

    @app.put("/api/expenses/<int:expense_id>")
    def update_expense(expense_id):
        try:
            expense = expense_from_payload(request.get_json(silent=True), default_payment_method=None)
        except ValueError as exc:
            return json_error(str(exc), 400)
        try:
            updated = expense_store().update(expense_id, expense)
        except NotFoundError:
            return json_error("Expense not found", 404)
        except StoreError as exc:
            return json_error(str(exc), 500)
        return jsonify(expense_to_json(updated))

    @app.delete("/api/expenses/<int:expense_id>")
    def delete_expense(expense_id):
        try:
            expense_store().delete(expense_id)
        except NotFoundError:
            return json_error("Expense not found", 404)
        except StoreError as exc:
            return json_error(str(exc), 500)
        return "", 204

    @app.get("/api/categorization-rules")
    def list_rules():
        category = (request.args.get("category") or "").strip()
        try:
            return jsonify(rule_store().list_rules(category or None))
        except StoreError as exc:
            return json_error(str(exc), 500)

    @app.post("/api/categorization-rules")
    def create_rule():
        try:
            rule = validate_rule_payload(request.get_json(silent=True))
        except ValueError as exc:
            return json_error(str(exc), 400)
        try:
            return jsonify(rule_store().create_rule(rule)), 201
        except StoreError as exc:
            return json_error(str(exc), 500)

    @app.put("/api/categorization-rules/<int:rule_id>")
    def update_rule(rule_id):
        try:
            rule = validate_rule_payload(request.get_json(silent=True))
        except ValueError as exc:
            return json_error(str(exc), 400)
        try:
            return jsonify(rule_store().update_rule(rule_id, rule))
        except NotFoundError:
            return json_error("Rule not found", 404)
        except StoreError as exc:
            return json_error(str(exc), 500)

    @app.delete("/api/categorization-rules/<int:rule_id>")
    def delete_rule(rule_id):
        try:
            rule_store().delete_rule(rule_id)
        except NotFoundError:
            return json_error("Rule not found", 404)
        except StoreError as exc:
            return json_error(str(exc), 500)
        return "", 204

    @app.get("/api/categories")
    def list_categories():
        try:
            return jsonify(rule_store().list_categories())
        except StoreError as exc:
            return json_error(str(exc), 500)

    with app.app_context():
        try:
            init_db()
        except DatabaseInitError:
            pass

    app.get_db = get_db
    app.init_db = init_db
    return app

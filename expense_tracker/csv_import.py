import csv
import io
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from .categorizer import FALLBACK_CATEGORY, Categorizer
from .errors import (
    AmountOutOfRangeError,
    CSVImportError,
    EmptyDescriptionError,
    EmptyFileError,
    FileTooLargeError,
    InvalidAmountError,
    InvalidDateError,
    InvalidFileTypeError,
    MalformedRowError,
    MissingColumnError,
    NoValidRecordsError,
    RowError,
    UnreadableFileError,
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 << 20
REQUIRED_COLUMNS = ["TRANSACTION_DATE", "DESCRIPTION", "AMOUNT"]
LOCATION_COLUMN = "LOCATION"
CREDIT_CARD_COLUMN = "CREDIT_CARD"
CSV_PAYMENT_METHOD = "CSV Import"
MIN_AMOUNT = Decimal("-999999.99")
MAX_AMOUNT = Decimal("999999.99")

# Ambiguous inputs such as 03/04/2024 resolve to the first format that accepts them.
DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%d-%m-%Y",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
]


def is_csv_filename(filename):
    return (filename or "").lower().endswith(".csv")


def validate_upload(filename, size=None):
    if not is_csv_filename(filename):
        raise InvalidFileTypeError(filename)
    if size is not None and size > MAX_UPLOAD_BYTES:
        raise FileTooLargeError(size, MAX_UPLOAD_BYTES)


def decode_csv_bytes(file_bytes):
    for encoding in ["utf-8-sig", "cp1252"]:
        try:
            return file_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    return None


def normalize_header_name(value):
    return (value or "").strip().upper()


def build_header_map(header_row):
    header_map = {normalize_header_name(col): idx for idx, col in enumerate(header_row)}
    for column in REQUIRED_COLUMNS:
        if column not in header_map:
            raise MissingColumnError(column)
    return header_map


def is_blank_row(row):
    return len(row) == 0 or (len(row) == 1 and not row[0].strip())


def get_field_value(row, header_map, field):
    idx = header_map.get(field)
    if idx is None or idx >= len(row):
        return ""
    return row[idx].strip()


def parse_transaction_date(value):
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidDateError("empty transaction date")

    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        # strptime also takes unpadded fields such as 1/2/2024; every format here is fixed width.
        if parsed.strftime(fmt) == cleaned:
            return parsed.date()
    raise InvalidDateError(f"invalid date format '{cleaned}': unsupported date format")


def parse_amount(value):
    text = (value or "").strip()
    if not text:
        raise InvalidAmountError("empty amount")

    cleaned = text.replace("$", "").replace(",", "").strip()
    if not cleaned:
        raise InvalidAmountError(f"invalid amount '{text}': empty amount after cleaning")
    if "_" in cleaned:
        raise InvalidAmountError(f"invalid amount '{text}': invalid number format")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise InvalidAmountError(f"invalid amount '{text}': invalid number format") from None
    if not amount.is_finite():
        raise InvalidAmountError(f"invalid amount '{text}': invalid number format")

    if amount < MIN_AMOUNT:
        raise AmountOutOfRangeError(f"invalid amount '{text}': amount too small (below {MIN_AMOUNT})")
    if amount > MAX_AMOUNT:
        raise AmountOutOfRangeError(f"invalid amount '{text}': amount too large (above {MAX_AMOUNT})")
    return amount


def extract_optional_fields(header_map, row):
    vendor = get_field_value(row, header_map, LOCATION_COLUMN)
    payment_method = get_field_value(row, header_map, CREDIT_CARD_COLUMN)
    return {
        "vendor": vendor or None,
        "payment_method": payment_method or CSV_PAYMENT_METHOD,
    }


def parse_expense_row(row, header_map, categorizer):
    parsed_date = parse_transaction_date(get_field_value(row, header_map, "TRANSACTION_DATE"))

    description = get_field_value(row, header_map, "DESCRIPTION")
    if not description:
        raise EmptyDescriptionError("empty description")

    amount = parse_amount(get_field_value(row, header_map, "AMOUNT"))

    expense = {
        "date": parsed_date,
        "description": description,
        "amount": amount,
    }
    expense.update(extract_optional_fields(header_map, row))
    expense["category"] = categorizer(description)
    return expense


def read_header(reader):
    for row in reader:
        if not is_blank_row(row):
            return row
    return None


def parse_csv_transactions(text, categorizer=None):
    """Parse CSV text into ``(expenses, row_errors)``.

    Each data row either yields one expense dict or one ``RowError``; a bad
    row is recorded with its line number and parsing moves on to the next.
    Only a missing or unusable header aborts the file.
    """
    categorizer = categorizer or Categorizer()
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)

    try:
        header_row = read_header(reader)
    except csv.Error as exc:
        raise CSVImportError(f"failed to read header row: {exc}") from exc
    if header_row is None:
        raise EmptyFileError("failed to read header row: file is empty")
    header_map = build_header_map(header_row)

    expenses = []
    row_errors = []
    # Records are numbered from the header (line 1); empty lines are not counted.
    line = 1
    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            line += 1
            row_errors.append(MalformedRowError(f"failed to read record: {exc}", line=line))
            continue

        if row:
            line += 1
        if is_blank_row(row):
            continue

        if len(row) != len(header_row):
            row_errors.append(
                MalformedRowError(
                    f"failed to read record: wrong number of fields (expected {len(header_row)}, got {len(row)})",
                    line=line,
                )
            )
            continue

        try:
            expense = parse_expense_row(row, header_map, categorizer)
        except RowError as exc:
            row_errors.append(exc.at_line(line))
            continue
        expenses.append(expense)

    return expenses, row_errors


def parse_csv_upload(file_bytes, categorizer=None):
    text = decode_csv_bytes(file_bytes)
    if text is None:
        raise UnreadableFileError()

    expenses, row_errors = parse_csv_transactions(text, categorizer)
    if not expenses:
        if row_errors:
            raise NoValidRecordsError(row_errors)
        raise EmptyFileError()

    if row_errors:
        logger.warning(
            "Parsed %d valid expenses with %d errors: %s",
            len(expenses),
            len(row_errors),
            "; ".join(str(error) for error in row_errors),
        )
    return expenses, row_errors


def parse_payload_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValueError("date is required")
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"invalid date '{text}': expected YYYY-MM-DD") from None


def expense_from_payload(payload, categorizer=None, default_payment_method=CSV_PAYMENT_METHOD):
    if not isinstance(payload, dict):
        raise ValueError("expense must be a JSON object")

    raw_amount = payload.get("amount")
    if raw_amount is None or isinstance(raw_amount, bool):
        raise ValueError("amount is required")

    description = str(payload.get("description") or "").strip()
    if not description:
        raise ValueError("description is required")

    category = str(payload.get("category") or "").strip()
    if not category:
        category = categorizer(description) if categorizer else FALLBACK_CATEGORY

    return {
        "date": parse_payload_date(payload.get("date")),
        "category": category,
        "description": description,
        "amount": parse_amount(str(raw_amount)),
        "vendor": str(payload.get("vendor") or "").strip() or None,
        "payment_method": str(payload.get("payment_method") or "").strip() or default_payment_method,
    }


def expense_to_json(expense):
    expense_date = expense["date"]
    data = {
        "date": expense_date.isoformat() if isinstance(expense_date, date) else expense_date,
        "category": expense["category"],
        "description": expense["description"],
        "amount": float(expense["amount"]),
        "vendor": expense.get("vendor"),
        "payment_method": expense.get("payment_method"),
    }
    for key in ("id", "created_at", "updated_at"):
        if key in expense:
            data[key] = expense[key]
    return data

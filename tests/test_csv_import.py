from datetime import date
from decimal import Decimal

import pytest

from expense_tracker.categorizer import Categorizer, CategoryRule
from expense_tracker.csv_import import (
    MAX_UPLOAD_BYTES,
    build_header_map,
    decode_csv_bytes,
    expense_from_payload,
    expense_to_json,
    extract_optional_fields,
    is_blank_row,
    parse_amount,
    parse_csv_transactions,
    parse_csv_upload,
    parse_transaction_date,
    validate_upload,
)
from expense_tracker.errors import (
    AmountOutOfRangeError,
    EmptyDescriptionError,
    EmptyFileError,
    FileTooLargeError,
    InvalidAmountError,
    InvalidDateError,
    InvalidFileTypeError,
    MalformedRowError,
    MissingColumnError,
    NoValidRecordsError,
    UnreadableFileError,
)

HEADER = "TRANSACTION_DATE,DESCRIPTION,AMOUNT,LOCATION,CREDIT_CARD\n"


def make_categorizer():
    return Categorizer(
        [
            CategoryRule("Transportation", "GRAB", False),
            CategoryRule("Food & Dining", "COFFEE", False),
            CategoryRule("Shopping", "STORE", False),
        ]
    )


@pytest.mark.parametrize(
    "value",
    [
        "2024-03-15",
        "03/15/2024",
        "15/03/2024",
        "2024/03/15",
        "03-15-2024",
        "15-03-2024",
        "2024-03-15 10:30:00",
        "03/15/2024 23:59:59",
    ],
)
def test_every_supported_date_format_yields_the_same_calendar_date(value):
    assert parse_transaction_date(value) == date(2024, 3, 15)


def test_ambiguous_slash_date_is_read_month_first():
    assert parse_transaction_date("03/04/2024") == date(2024, 3, 4)


@pytest.mark.parametrize(
    "value", ["", "   ", "2024-13-45", "March 5th", "2024.03.15", "1/2/2024", "2024-3-5", "3-15-2024", "03/15/2024 9:05:00"]
)
def test_unparseable_dates_raise_invalid_date(value):
    with pytest.raises(InvalidDateError):
        parse_transaction_date(value)


@pytest.mark.parametrize("value", ["$1,234.56", "1234.56", " 1,234.56 ", "$ 1234.56", "$1234.56"])
def test_currency_formatting_does_not_change_amount(value):
    assert parse_amount(value) == Decimal("1234.56")


def test_negative_amounts_are_kept_as_refunds():
    assert parse_amount("-$42.10") == Decimal("-42.10")
    assert parse_amount("$-42.10") == Decimal("-42.10")


def test_amount_bounds_are_inclusive():
    assert parse_amount("999999.99") == Decimal("999999.99")
    assert parse_amount("-999,999.99") == Decimal("-999999.99")


@pytest.mark.parametrize("value", ["1000000", "999999.991", "$1,000,000.00", "-1000000.00", "-999999.995"])
def test_amounts_outside_bounds_are_rejected(value):
    with pytest.raises(AmountOutOfRangeError):
        parse_amount(value)


@pytest.mark.parametrize("value", ["", "$", " $, ", "abc", "12.3.4", "NaN", "Infinity", "1_000", "$1_234.50"])
def test_non_numeric_amounts_are_rejected(value):
    with pytest.raises(InvalidAmountError):
        parse_amount(value)


def test_header_map_normalizes_names():
    header_map = build_header_map([" transaction_date ", "Description", "amount ", "location"])

    assert header_map == {"TRANSACTION_DATE": 0, "DESCRIPTION": 1, "AMOUNT": 2, "LOCATION": 3}


def test_header_without_amount_is_fatal():
    with pytest.raises(MissingColumnError) as excinfo:
        build_header_map(["TRANSACTION_DATE", "DESCRIPTION", "LOCATION"])

    assert excinfo.value.column == "AMOUNT"
    assert "missing required column: AMOUNT" in str(excinfo.value)


def test_blank_row_detection():
    assert is_blank_row([])
    assert is_blank_row(["   "])
    assert not is_blank_row(["", ""])
    assert not is_blank_row(["x"])


def test_optional_fields_fall_back_when_columns_missing_or_blank():
    header_map = {"TRANSACTION_DATE": 0, "DESCRIPTION": 1, "AMOUNT": 2}
    assert extract_optional_fields(header_map, ["2024-01-01", "x", "1"]) == {
        "vendor": None,
        "payment_method": "CSV Import",
    }

    header_map = {"TRANSACTION_DATE": 0, "DESCRIPTION": 1, "AMOUNT": 2, "LOCATION": 3, "CREDIT_CARD": 4}
    assert extract_optional_fields(header_map, ["2024-01-01", "x", "1", "  ", ""]) == {
        "vendor": None,
        "payment_method": "CSV Import",
    }
    assert extract_optional_fields(header_map, ["2024-01-01", "x", "1", " Orchard ", "Visa 1234"]) == {
        "vendor": "Orchard",
        "payment_method": "Visa 1234",
    }


def test_parse_builds_categorized_expenses_in_source_order():
    text = HEADER + (
        "2024-01-05,Blue Bottle Coffee,$4.50,Downtown,Visa 1234\n"
        "01/06/2024,GRAB ride home,\"$1,012.00\",,\n"
        "2024/01/07,Bookshop,-15.00,Mall,\n"
    )

    expenses, errors = parse_csv_transactions(text, make_categorizer())

    assert errors == []
    assert expenses == [
        {
            "date": date(2024, 1, 5),
            "description": "Blue Bottle Coffee",
            "amount": Decimal("4.50"),
            "vendor": "Downtown",
            "payment_method": "Visa 1234",
            "category": "Food & Dining",
        },
        {
            "date": date(2024, 1, 6),
            "description": "GRAB ride home",
            "amount": Decimal("1012.00"),
            "vendor": None,
            "payment_method": "CSV Import",
            "category": "Transportation",
        },
        {
            "date": date(2024, 1, 7),
            "description": "Bookshop",
            "amount": Decimal("-15.00"),
            "vendor": "Mall",
            "payment_method": "CSV Import",
            "category": "Other",
        },
    ]


def test_bad_rows_are_collected_and_parsing_continues():
    text = HEADER + (
        "2024-01-01,Coffee,1.00,,\n"
        "not-a-date,Coffee,2.00,,\n"
        "2024-01-03,Coffee,3.00,,\n"
        "31/31/2024,Coffee,4.00,,\n"
        "2024-01-05,Coffee,5.00,,\n"
    )

    expenses, errors = parse_csv_transactions(text, make_categorizer())

    assert [expense["amount"] for expense in expenses] == [Decimal("1.00"), Decimal("3.00"), Decimal("5.00")]
    assert [type(error) for error in errors] == [InvalidDateError, InvalidDateError]
    assert [error.line for error in errors] == [3, 5]
    assert str(errors[0]).startswith("line 3: invalid date format 'not-a-date'")


def test_row_errors_report_the_first_failing_field():
    text = HEADER + (
        "bad,,bad,,\n"
        "2024-01-02,,bad,,\n"
        "2024-01-03,Lunch,abc,,\n"
        "2024-01-04,Lunch,2000000,,\n"
    )

    expenses, errors = parse_csv_transactions(text)

    assert expenses == []
    assert [error.kind for error in errors] == [
        "invalid_date",
        "empty_description",
        "invalid_amount",
        "amount_out_of_range",
    ]
    assert isinstance(errors[1], EmptyDescriptionError)


def test_blank_lines_are_skipped_silently():
    text = HEADER + "\n2024-01-01,Coffee,1.00,,\n   \n\n2024-01-02,Coffee,2.00,,\n"

    expenses, errors = parse_csv_transactions(text, make_categorizer())

    assert len(expenses) == 2
    assert errors == []


def test_wrong_field_count_is_a_malformed_row():
    text = HEADER + "2024-01-01,Coffee,1.00\n2024-01-02,Coffee,2.00,,\n"

    expenses, errors = parse_csv_transactions(text, make_categorizer())

    assert len(expenses) == 1
    assert isinstance(errors[0], MalformedRowError)
    assert errors[0].line == 2
    assert "wrong number of fields" in str(errors[0])


def test_broken_quoting_is_a_malformed_row_and_later_rows_still_parse():
    text = HEADER + '2024-01-01,"Coffee"x,1.00,,\n2024-01-02,Coffee,2.00,,\n'

    expenses, errors = parse_csv_transactions(text, make_categorizer())

    assert [expense["date"] for expense in expenses] == [date(2024, 1, 2)]
    assert len(errors) == 1
    assert isinstance(errors[0], MalformedRowError)


def test_quoted_fields_keep_embedded_commas_and_newlines():
    text = HEADER + (
        '2024-01-01,"Coffee, large\nextra shot",1.00,,\n'
        "2024-01-02,,2.00,,\n"
    )

    expenses, errors = parse_csv_transactions(text, make_categorizer())

    assert expenses[0]["description"] == "Coffee, large\nextra shot"
    assert errors[0].line == 3


def test_line_numbers_count_records_not_physical_lines():
    text = HEADER + (
        '2024-01-01,"Coffee\nrefill",1.00,,\n'
        "\n"
        "2024-01-02,Coffee,bad,,\n"
        "   \n"
        "2024-01-03,,1.00,,\n"
    )

    expenses, errors = parse_csv_transactions(text, make_categorizer())

    assert len(expenses) == 1
    assert [error.line for error in errors] == [3, 5]


def test_upload_with_only_invalid_rows_fails_with_all_row_errors():
    content = (HEADER + "2024-01-01,Coffee,abc,,\n").encode()

    with pytest.raises(NoValidRecordsError) as excinfo:
        parse_csv_upload(content, make_categorizer())

    assert len(excinfo.value.row_errors) == 1
    assert "failed to parse any valid expenses" in str(excinfo.value)
    assert "line 2: invalid amount 'abc'" in str(excinfo.value)


def test_upload_with_header_only_is_empty():
    with pytest.raises(EmptyFileError):
        parse_csv_upload(HEADER.encode())


def test_upload_with_no_bytes_is_empty():
    with pytest.raises(EmptyFileError):
        parse_csv_upload(b"")


def test_upload_missing_amount_column_is_fatal():
    with pytest.raises(MissingColumnError):
        parse_csv_upload(b"TRANSACTION_DATE,DESCRIPTION\n2024-01-01,Coffee\n")


def test_upload_partial_success_logs_row_errors(caplog):
    content = (HEADER + "2024-01-01,Coffee,1.00,,\nnope,Coffee,1.00,,\n").encode()

    with caplog.at_level("WARNING", logger="expense_tracker.csv_import"):
        expenses, errors = parse_csv_upload(content, make_categorizer())

    assert len(expenses) == 1
    assert len(errors) == 1
    assert "Parsed 1 valid expenses with 1 errors" in caplog.text


def test_parsing_is_repeatable():
    content = (HEADER + "2024-01-01,Coffee,1.00,,\n02/01/2024,Grab,$3.10,,Amex\nbad,x,1,,\n").encode()

    first = parse_csv_upload(content, make_categorizer())
    second = parse_csv_upload(content, make_categorizer())

    assert first[0] == second[0]
    assert [str(error) for error in first[1]] == [str(error) for error in second[1]]


def test_decode_handles_bom_and_cp1252():
    assert decode_csv_bytes(b"\xef\xbb\xbfTRANSACTION_DATE").startswith("TRANSACTION_DATE")
    assert decode_csv_bytes("Café".encode("cp1252")) == "Café"


def test_bytes_undefined_in_cp1252_are_unreadable():
    content = HEADER.encode() + b"2024-01-01,Caf\x81,1.00,,\n"

    assert decode_csv_bytes(content) is None
    with pytest.raises(UnreadableFileError):
        parse_csv_upload(content)


def test_bom_prefixed_header_is_recognized():
    content = b"\xef\xbb\xbf" + (HEADER + "2024-01-01,Coffee,1.00,,\n").encode()

    expenses, _ = parse_csv_upload(content, make_categorizer())

    assert expenses[0]["category"] == "Food & Dining"


def test_validate_upload_checks_extension_and_size():
    validate_upload("Statement.CSV", 100)
    validate_upload("statement.csv", MAX_UPLOAD_BYTES)

    with pytest.raises(InvalidFileTypeError):
        validate_upload("statement.xlsx", 100)
    with pytest.raises(FileTooLargeError):
        validate_upload("statement.csv", MAX_UPLOAD_BYTES + 1)


def test_expense_payload_round_trip_through_json_shape():
    expense = {
        "date": date(2024, 2, 29),
        "description": "Blue Bottle Coffee",
        "amount": Decimal("4.50"),
        "vendor": None,
        "payment_method": "CSV Import",
        "category": "Food & Dining",
    }

    payload = expense_to_json(expense)

    assert payload == {
        "date": "2024-02-29",
        "category": "Food & Dining",
        "description": "Blue Bottle Coffee",
        "amount": 4.5,
        "vendor": None,
        "payment_method": "CSV Import",
    }
    assert expense_from_payload(payload) == expense


def test_expense_payload_accepts_rfc3339_dates_and_fills_defaults():
    expense = expense_from_payload(
        {"date": "2024-02-29T00:00:00Z", "description": "Taxi", "amount": "12.00", "category": ""}
    )

    assert expense["date"] == date(2024, 2, 29)
    assert expense["category"] == "Other"
    assert expense["payment_method"] == "CSV Import"


def test_expense_payload_uses_categorizer_for_blank_category():
    expense = expense_from_payload(
        {"date": "2024-02-29", "description": "Grab to airport", "amount": 30},
        categorizer=make_categorizer(),
        default_payment_method=None,
    )

    assert expense["category"] == "Transportation"
    assert expense["payment_method"] is None


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"description": "x", "amount": 1},
        {"date": "2024-01-01", "description": "x"},
        {"date": "2024-01-01", "description": "x", "amount": True},
        {"date": "2024-01-01", "description": "  ", "amount": 1},
        {"date": "yesterday", "description": "x", "amount": 1},
        {"date": "2024-01-01", "description": "x", "amount": "lots"},
        {"date": "2024-01-01", "description": "x", "amount": 5000000},
    ],
)
def test_invalid_expense_payloads_raise_value_error(payload):
    with pytest.raises(ValueError):
        expense_from_payload(payload)

class DatabaseInitError(RuntimeError):
    """Raised when the database cannot be initialized."""


class StoreError(RuntimeError):
    """Raised when the expense or rule store cannot complete a query."""


class NotFoundError(StoreError):
    pass


class CSVImportError(ValueError):
    """File-level failure: the whole upload is rejected."""


class InvalidFileTypeError(CSVImportError):
    def __init__(self, filename):
        super().__init__("File must be a CSV")
        self.filename = filename


class FileTooLargeError(CSVImportError):
    def __init__(self, size, limit):
        super().__init__(f"File too large: {size} bytes (limit {limit} bytes)")
        self.size = size
        self.limit = limit


class UnreadableFileError(CSVImportError):
    def __init__(self):
        super().__init__("Could not read file encoding. Please re-save as CSV UTF-8.")


class MissingColumnError(CSVImportError):
    def __init__(self, column):
        super().__init__(f"missing required column: {column}")
        self.column = column


class EmptyFileError(CSVImportError):
    def __init__(self, message="No valid transactions found in CSV. Please check the file format."):
        super().__init__(message)


class NoValidRecordsError(CSVImportError):
    def __init__(self, row_errors):
        self.row_errors = list(row_errors)
        joined = "; ".join(str(error) for error in self.row_errors)
        super().__init__(f"failed to parse any valid expenses. Errors: {joined}")


class RowError(ValueError):
    """Row-scoped failure. Recorded with its line number, never aborts the file."""

    kind = "row_error"

    def __init__(self, reason, line=None):
        super().__init__(reason)
        self.reason = reason
        self.line = line

    def at_line(self, line):
        self.line = line
        return self

    def __str__(self):
        if self.line is None:
            return self.reason
        return f"line {self.line}: {self.reason}"


class MalformedRowError(RowError):
    kind = "malformed_row"


class InvalidDateError(RowError):
    kind = "invalid_date"


class EmptyDescriptionError(RowError):
    kind = "empty_description"


class InvalidAmountError(RowError):
    kind = "invalid_amount"


class AmountOutOfRangeError(RowError):
    kind = "amount_out_of_range"

"""Streaming reader for customer import files."""

import csv
import io
import re
from collections.abc import Iterator
from contextlib import contextmanager

from rolodex.core.exceptions import ImportFileError
from rolodex.core.storage import Storage
from rolodex.schemas.customer_import import ImportOptions

# Column order assumed when a file has no header row.
FIXED_COLUMNS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "organization",
    "job_title",
    "birthdate",
    "notes",
)

HEADER_ALIASES = {
    "firstname": "first_name",
    "first": "first_name",
    "given_name": "first_name",
    "lastname": "last_name",
    "last": "last_name",
    "surname": "last_name",
    "family_name": "last_name",
    "full_name": "name",
    "e_mail": "email",
    "email_address": "email",
    "phone_number": "phone",
    "telephone": "phone",
    "company": "organization",
    "organisation": "organization",
    "title": "job_title",
    "position": "job_title",
    "date_of_birth": "birthdate",
    "dob": "birthdate",
    "birthday": "birthdate",
    "note": "notes",
}

KNOWN_COLUMNS = frozenset(FIXED_COLUMNS) | {"name"}

PYTHON_ENCODINGS = {"UTF-8": "utf-8-sig", "ISO-8859-1": "latin-1"}


def normalize_header(cell: str) -> str:
    """Lowercase, strip BOM and punctuation, snake_case, then resolve aliases."""
    name = cell.replace("\ufeff", "").strip().lower()
    name = re.sub(r"[\s\-./]+", "_", name).strip("_")
    return HEADER_ALIASES.get(name, name)


def validate_columns(columns: list[str]) -> None:
    """Raise ImportFileError unless the header can produce a customer."""
    errors: list[str] = []
    if "email" not in columns:
        errors.append("Missing required column: email")
    if "first_name" not in columns and "name" not in columns:
        errors.append("Missing required column: first_name (or name)")
    if errors:
        raise ImportFileError("Invalid header row: " + "; ".join(errors), {"headers": errors})


def _is_blank(row: list[str]) -> bool:
    return not any(cell.strip() for cell in row)


class ImportFileReader:
    """Reads a stored import file row by row; never loads the whole file."""

    def __init__(self, storage: Storage, path: str, options: ImportOptions):
        self.storage = storage
        self.path = path
        self.options = options
        self._columns: list[str] | None = None

    @contextmanager
    def _reader(self) -> Iterator[Iterator[list[str]]]:
        raw = self.storage.open(self.path)
        text = io.TextIOWrapper(raw, encoding=PYTHON_ENCODINGS[self.options.encoding], newline="")
        try:
            yield csv.reader(text, delimiter=self.options.delimiter)
        finally:
            text.close()

    def columns(self) -> list[str]:
        """Field name for each column position, validated."""
        if self._columns is not None:
            return self._columns
        if not self.options.has_headers:
            self._columns = list(FIXED_COLUMNS)
            return self._columns

        header: list[str] | None = None
        with self._reader() as reader:
            for row in self._guarded(reader):
                if not _is_blank(row):
                    header = row
                    break
        if header is None:
            raise ImportFileError("The import file is empty", {"file": ["The import file is empty"]})

        columns = [normalize_header(cell) for cell in header]
        validate_columns(columns)
        self._columns = columns
        return columns

    def count_rows(self) -> int:
        return sum(1 for _ in self.rows())

    def rows(self) -> Iterator[tuple[int, dict[str, str]]]:
        """Yield ``(data row index, values)``; indexes start at 1 and skip blank lines."""
        columns = self.columns()
        index = 0
        with self._reader() as reader:
            records = self._guarded(reader)
            if self.options.has_headers:
                for row in records:
                    if not _is_blank(row):
                        break
            for row in records:
                if _is_blank(row):
                    continue
                index += 1
                yield index, self._map(columns, row)

    def _map(self, columns: list[str], row: list[str]) -> dict[str, str]:
        values: dict[str, str] = {}
        for position, name in enumerate(columns):
            if name not in KNOWN_COLUMNS or position >= len(row):
                continue
            values[name] = row[position].strip()
        if "name" in values:
            full = values.pop("name")
            if not values.get("first_name"):
                first, _, last = full.partition(" ")
                values["first_name"] = first
                if not values.get("last_name"):
                    values["last_name"] = last.strip()
        return values

    def _guarded(self, reader: Iterator[list[str]]) -> Iterator[list[str]]:
        try:
            yield from reader
        except UnicodeDecodeError as e:
            message = f"The import file is not valid {self.options.encoding}"
            raise ImportFileError(message, {"encoding": [message]}) from e
        except csv.Error as e:
            raise ImportFileError(f"Malformed CSV: {e}", {"file": [str(e)]}) from e

"""Row writers for the export file formats.

Every writer receives one flat record per customer and writes straight to a
binary stream, so an export never holds the whole result set in memory.
"""

import csv
import io
import json
from datetime import datetime
from typing import Any, BinaryIO, Protocol

from openpyxl import Workbook

from rolodex.models.customer import Customer
from rolodex.models.customer_export import ExportFormat
from rolodex.models.shared import utc_now

# (record key, column heading)
BASE_COLUMNS = [
    ("name", "Name"),
    ("email", "Email"),
    ("phone", "Phone"),
    ("organization", "Organization"),
    ("job_title", "Job Title"),
    ("birthdate", "Birthdate"),
]
NOTES_COLUMN = ("notes", "Notes")
CREATED_COLUMN = ("created_at", "Created At")
AUDIT_COLUMNS = [("activity_count", "Activity Count"), ("last_activity", "Last Activity")]

MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
    ExportFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def export_columns(include_notes: bool = False, include_audit_trail: bool = False) -> list[tuple[str, str]]:
    columns = list(BASE_COLUMNS)
    if include_notes:
        columns.append(NOTES_COLUMN)
    columns.append(CREATED_COLUMN)
    if include_audit_trail:
        columns.extend(AUDIT_COLUMNS)
    return columns


def _fmt_dt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def customer_record(
    customer: Customer,
    columns: list[tuple[str, str]],
    activity: tuple[int, datetime | None] | None = None,
) -> dict[str, Any]:
    """Flatten a customer into the values for ``columns``."""
    values: dict[str, Any] = {
        "name": customer.full_name,
        "email": customer.email,
        "phone": customer.phone or "",
        "organization": customer.organization or "",
        "job_title": customer.job_title or "",
        "birthdate": customer.birthdate.isoformat() if customer.birthdate else "",
        "notes": customer.notes or "",
        "created_at": _fmt_dt(customer.created_at),  # type: ignore[arg-type]
    }
    count, last = activity or (0, None)
    values["activity_count"] = count
    values["last_activity"] = _fmt_dt(last)
    return {key: values[key] for key, _ in columns}


class ExportWriter(Protocol):
    def write(self, record: dict[str, Any]) -> None: ...

    def finish(self) -> None: ...


class CsvExportWriter:
    def __init__(self, stream: BinaryIO, columns: list[tuple[str, str]]):
        self._text = io.TextIOWrapper(stream, encoding="utf-8", newline="")
        self._writer = csv.writer(self._text)
        self._writer.writerow([heading for _, heading in columns])

    def write(self, record: dict[str, Any]) -> None:
        self._writer.writerow(["" if value is None else value for value in record.values()])

    def finish(self) -> None:
        self._text.flush()
        # Leave the underlying stream open for the caller.
        self._text.detach()


class JsonExportWriter:
    """Writes ``{"export_date", "filters", "customers": [...], "total_records"}``."""

    def __init__(self, stream: BinaryIO, filters: dict[str, Any] | None = None):
        self._stream = stream
        self._count = 0
        header = json.dumps({"export_date": utc_now().isoformat(), "filters": filters or {}}, default=str)
        self._stream.write(header[:-1].encode() + b', "customers": [')

    def write(self, record: dict[str, Any]) -> None:
        prefix = b"," if self._count else b""
        self._stream.write(prefix + b"\n  " + json.dumps(record, default=str).encode())
        self._count += 1

    def finish(self) -> None:
        self._stream.write(f'\n], "total_records": {self._count}}}'.encode())
        self._stream.flush()


class XlsxExportWriter:
    def __init__(self, stream: BinaryIO, columns: list[tuple[str, str]]):
        self._stream = stream
        self._workbook = Workbook(write_only=True)
        self._sheet = self._workbook.create_sheet("Customers")
        self._sheet.append([heading for _, heading in columns])

    def write(self, record: dict[str, Any]) -> None:
        self._sheet.append(list(record.values()))

    def finish(self) -> None:
        self._workbook.save(self._stream)


def open_writer(
    export_format: ExportFormat,
    stream: BinaryIO,
    columns: list[tuple[str, str]],
    filters: dict[str, Any] | None = None,
) -> ExportWriter:
    if export_format == ExportFormat.CSV:
        return CsvExportWriter(stream, columns)
    if export_format == ExportFormat.JSON:
        return JsonExportWriter(stream, filters)
    if export_format == ExportFormat.XLSX:
        return XlsxExportWriter(stream, columns)
    raise ValueError(f"Unsupported export format: {export_format}")


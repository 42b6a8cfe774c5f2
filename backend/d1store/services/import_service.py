# Overview: Service-layer operations for imports; encapsulates business logic and database work.

"""
CSV import reconciliation.

Two phases per upload:

1. VALIDATE (no I/O): every row is resolved through the schema's field
   resolver and checked. Rows with errors are reported with their file line
   number and never reach the database.
2. PERSIST (sequential, file order): existing keys are loaded once into a
   ReconciliationAccumulator, then each candidate row is created, skipped as
   a duplicate, or (stock) created under a renumbered EAN. Each created row
   commits on its own; a failed save rolls back that row only.

The upload is rejected outright (ImportRejectedError) only when the file is
not a .csv or cannot be parsed. Otherwise the result always carries counts,
even if every row failed.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from d1store.time_utils import to_utc_z, utcnow
from .csv_reader import CsvParseError, parse_csv_records
from .import_schemas import SCHEMAS, BaseImportSchema, CandidateRow, ReconciliationAccumulator


DB_SAVE_FAILED = "Database save failed for this row"
PARSE_FAILED = "Unable to parse CSV. Check the file format and headers."


class ImportRejectedError(ValueError):
    """Raised when an upload is unusable before any row is processed."""

    def __init__(self, message: str, import_type: str | None = None):
        super().__init__(message)
        self.import_type = import_type

    def to_dict(self) -> dict[str, Any]:
        return ImportResult(import_type=self.import_type or "", file_name=None, errors=[str(self)]).to_dict()


@dataclass
class InvalidRow:
    row_number: int
    errors: list[str]
    row: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        return {"rowNumber": self.row_number, "errors": list(self.errors), "row": dict(self.row)}


@dataclass
class ImportResult:
    import_type: str
    file_name: str | None
    processed_at: datetime = field(default_factory=utcnow)
    total: int = 0
    valid: int = 0
    success: int = 0
    skipped: int = 0
    failed: int = 0
    invalid_rows: list[InvalidRow] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)
    errors: list[str] | None = None

    def add_invalid(self, row_number: int, errors: list[str], row: dict[str, str]) -> None:
        self.invalid_rows.append(InvalidRow(row_number=row_number, errors=errors, row=row))

    def summary(self) -> dict[str, Any]:
        return {
            "importType": self.import_type,
            "fileName": self.file_name,
            "processedAt": to_utc_z(self.processed_at),
            "total": self.total,
            "valid": self.valid,
            "success": self.success,
            "skipped": self.skipped,
            "failed": self.failed,
        }

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "importType": self.import_type,
            "summary": self.summary(),
            "invalidRows": [r.to_dict() for r in sorted(self.invalid_rows, key=lambda r: r.row_number)],
            "errors": self.errors if self.errors is not None else summarize_errors(self.invalid_rows),
        }
        if self.notices:
            payload["notices"] = list(self.notices)
        return payload


def summarize_errors(invalid_rows: list[InvalidRow]) -> list[str]:
    """
    One line per distinct message, in first-seen order.

    A message seen on one row renders as "Row 4: Missing store"; repeats
    collapse to "Missing store (3 rows: 4, 6, 9)".
    """
    grouped: "OrderedDict[str, list[int]]" = OrderedDict()
    for entry in sorted(invalid_rows, key=lambda r: r.row_number):
        for message in entry.errors:
            grouped.setdefault(message, []).append(entry.row_number)

    lines: list[str] = []
    for message, rows in grouped.items():
        if len(rows) == 1:
            lines.append(f"Row {rows[0]}: {message}")
        else:
            listed = ", ".join(str(n) for n in rows)
            lines.append(f"{message} ({len(rows)} rows: {listed})")
    return lines


def _schema_for(import_type: str) -> BaseImportSchema:
    schema = SCHEMAS.get((import_type or "").lower())
    if not schema:
        raise ImportRejectedError(f"Unsupported import_type: {import_type}", import_type)
    return schema


def check_upload_name(file_name: str | None, import_type: str | None = None) -> str:
    if not file_name:
        raise ImportRejectedError("No file uploaded", import_type)
    if not file_name.lower().endswith(".csv"):
        raise ImportRejectedError("Please upload a CSV file", import_type)
    return file_name


def _persist_rows(
    schema: BaseImportSchema,
    candidates: list[CandidateRow],
    result: ImportResult,
) -> None:
    acc = ReconciliationAccumulator()
    schema.load_existing(acc)

    for row in candidates:
        try:
            outcome = schema.post_row(row, acc)
            if outcome.created:
                db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            acc.revert()
            current_app.logger.warning(
                "%s import: row %s could not be saved", schema.import_type, row.row_number, exc_info=True
            )
            result.failed += 1
            result.add_invalid(row.row_number, [DB_SAVE_FAILED], row.raw)
            continue

        acc.confirm()
        if outcome.created:
            result.success += 1
            if outcome.notice:
                result.notices.append(outcome.notice)
        else:
            result.skipped += 1
            result.add_invalid(row.row_number, [outcome.reason or "Duplicate"], row.raw)


def run_import(import_type: str, file_name: str | None, text: str) -> ImportResult:
    """
    Validate and persist one CSV upload.

    Raises:
        ImportRejectedError: unsupported type, missing/non-.csv file, or
            unparsable CSV
    """
    schema = _schema_for(import_type)
    check_upload_name(file_name, schema.import_type)

    try:
        records = parse_csv_records(text)
    except CsvParseError as exc:
        raise ImportRejectedError(PARSE_FAILED, schema.import_type) from exc

    result = ImportResult(import_type=schema.import_type, file_name=file_name)
    result.total = len(records)

    candidates: list[CandidateRow] = []
    for record in records:
        values = schema.resolver.resolve(record.values)
        errors = schema.validate_row(values)
        if errors:
            result.failed += 1
            result.add_invalid(record.row_number, errors, record.values)
            continue
        candidates.append(CandidateRow(row_number=record.row_number, values=values, raw=record.values))

    result.valid = len(candidates)
    if candidates:
        _persist_rows(schema, candidates, result)

    result.processed_at = utcnow()
    current_app.logger.info(
        "%s import of %s: total=%s success=%s skipped=%s failed=%s",
        schema.import_type,
        file_name,
        result.total,
        result.success,
        result.skipped,
        result.failed,
    )
    return result

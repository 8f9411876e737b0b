"""Bulk ticket creation from a CSV file.

Reading a file yields an ``UploadPreview``: every row checked against the
cache, with errors that keep a row out of the upload and warnings that only
flag it. Submitting the preview creates the valid rows through
``MutationEngine.bulk_create``; ``upload_report`` then lines the bulk result
up with the rows of the file.

Recognized headers (case-insensitive, only ``summary`` is required)::

    summary,type,assignee_email,epic_key,labels,description

Labels are separated by ``|``.
"""

from __future__ import annotations

import csv
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ticketdeck.cache.models import same_email
from ticketdeck.mutation.exceptions import UploadError
from ticketdeck.mutation.models import NewTicket

if TYPE_CHECKING:
    from ticketdeck.cache.store import CacheViews
    from ticketdeck.mutation.engine import MutationEngine
    from ticketdeck.mutation.models import BulkOperation, BulkSummary

logger = logging.getLogger(__name__)

MAX_UPLOAD_ROWS = 500
ISSUE_TYPES = ("Task", "Bug", "Story", "Epic")

_JIRA_KEY = re.compile(r"^[A-Za-z0-9]+-[0-9]+$")


@dataclass(frozen=True)
class UploadRow:
    """One data row of an upload file.

    Attributes:
        row_number: Position of the row in the file, counting the header as
            row 1 and skipping blank lines.
        summary: Ticket summary.
        issue_type: Issue type, spelled as in ``ISSUE_TYPES`` when valid.
        assignee_email: Assignee, or None to leave the ticket unassigned.
        epic_key: Parent epic, or None.
        labels: Labels in file order.
        description: Ticket description, or None.
        errors: Problems that keep the row from being created.
        warnings: Possible duplicates; the row is still created.
    """

    row_number: int
    summary: str
    issue_type: str = "Task"
    assignee_email: str | None = None
    epic_key: str | None = None
    labels: tuple[str, ...] = ()
    description: str | None = None
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def ref(self) -> str:
        return f"row {self.row_number}"

    def to_new_ticket(self) -> NewTicket:
        return NewTicket(
            summary=self.summary,
            issue_type=self.issue_type,
            description=self.description,
            assignee_email=self.assignee_email,
            epic_key=self.epic_key,
            labels=frozenset(self.labels),
            ref=self.ref,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "summary": self.summary,
            "issue_type": self.issue_type,
            "assignee_email": self.assignee_email,
            "epic_key": self.epic_key,
            "labels": list(self.labels),
            "description": self.description,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class UploadPreview:
    """Validated content of an upload file, before anything is created."""

    source: str
    rows: tuple[UploadRow, ...] = ()

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def valid_rows(self) -> int:
        return sum(1 for row in self.rows if row.valid)

    @property
    def invalid_rows(self) -> int:
        return self.total_rows - self.valid_rows

    @property
    def warning_count(self) -> int:
        return sum(len(row.warnings) for row in self.rows)

    @property
    def can_submit(self) -> bool:
        """At least one row can be created; invalid rows are left out."""
        return self.valid_rows > 0


@dataclass(frozen=True)
class RowResult:
    """What became of one row after submitting an upload."""

    row_number: int
    summary: str
    key: str | None = None
    error: str | None = None
    skipped: bool = False

    @property
    def created(self) -> bool:
        return self.key is not None


def normalize_summary(summary: str) -> str:
    return summary.strip().casefold()


def read_upload(path: str | Path, views: CacheViews) -> UploadPreview:
    """Read and validate an upload file.

    Raises:
        UploadError: If the file cannot be read or has no usable header
    """
    path = Path(path).expanduser()
    try:
        with path.open(newline="", encoding="utf-8-sig") as f:
            return parse_upload(f, views, source=str(path))
    except OSError as e:
        raise UploadError(f"Failed to open CSV file {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise UploadError(f"CSV file {path} is not UTF-8 text: {e}") from e


def parse_upload(
    lines: Iterable[str], views: CacheViews, source: str = "<upload>"
) -> UploadPreview:
    """Validate CSV text against the cache.

    Known epics and the team roster come from ``views``; summaries already
    in the cache, or repeated within the file, are flagged as possible
    duplicates.

    Args:
        lines: CSV text, one line per item (an open file works)
        views: Cache the rows are checked against
        source: Name of the file, for the preview

    Returns:
        The preview; bad rows carry errors rather than raising

    Raises:
        UploadError: If the header is missing or unusable, a row cannot be
            parsed, or the file has more than ``MAX_UPLOAD_ROWS`` rows
    """
    reader = csv.reader(lines)
    try:
        header = next(reader, None)
    except csv.Error as e:
        raise UploadError(f"Failed to read CSV header: {e}") from e
    if not header or not any(cell.strip() for cell in header):
        raise UploadError("CSV file is empty")

    columns: dict[str, int] = {}
    for index, name in enumerate(header):
        columns.setdefault(name.strip().lower(), index)
    if "summary" not in columns:
        raise UploadError("Missing required 'summary' header")

    known_epics = {key.upper() for key in views.epics_by_key}
    existing = {normalize_summary(t.summary) for t in views.tickets_by_key.values()}
    existing.discard("")
    roster = list(views.members_by_email)
    seen: set[str] = set()

    rows: list[UploadRow] = []
    try:
        for record in reader:
            if not any(cell.strip() for cell in record):
                continue
            if len(rows) >= MAX_UPLOAD_ROWS:
                raise UploadError(
                    "Row limit exceeded. Maximum supported rows per upload "
                    f"is {MAX_UPLOAD_ROWS}"
                )
            row = _validate(
                record,
                columns,
                row_number=len(rows) + 2,
                known_epics=known_epics,
                roster=roster,
            )
            warnings = list(row.warnings)
            if row.summary:
                normalized = normalize_summary(row.summary)
                if normalized in existing:
                    warnings.append("possible duplicate: summary matches an existing ticket")
                if normalized in seen:
                    warnings.append("duplicate summary in this CSV")
                seen.add(normalized)
            rows.append(_with_warnings(row, warnings))
    except csv.Error as e:
        raise UploadError(
            f"Failed to parse CSV row {reader.line_num}. Check quoting and delimiters: {e}"
        ) from e

    preview = UploadPreview(source=source, rows=tuple(rows))
    logger.info(
        "Upload preview of %s: %d row(s), %d invalid, %d warning(s)",
        source,
        preview.total_rows,
        preview.invalid_rows,
        preview.warning_count,
    )
    return preview


def submit_upload(preview: UploadPreview, engine: MutationEngine) -> BulkOperation:
    """Create the valid rows of a preview; invalid rows are skipped.

    Raises:
        UploadError: If no row is valid
    """
    if not preview.can_submit:
        raise UploadError("No valid rows to upload")
    return engine.bulk_create(row.to_new_ticket() for row in preview.rows if row.valid)


def upload_report(preview: UploadPreview, summary: BulkSummary) -> list[RowResult]:
    """Per-row outcome of a submitted upload, in file order."""
    results = []
    for row in preview.rows:
        if not row.valid:
            results.append(
                RowResult(row.row_number, row.summary, error="; ".join(row.errors), skipped=True)
            )
        elif row.ref in summary.created:
            results.append(RowResult(row.row_number, row.summary, key=summary.created[row.ref]))
        else:
            error = summary.failed.get(row.ref, "not submitted")
            results.append(RowResult(row.row_number, row.summary, error=error))
    return results


def _validate(
    record: list[str],
    columns: dict[str, int],
    row_number: int,
    known_epics: set[str],
    roster: list[str],
) -> UploadRow:
    def value(name: str) -> str | None:
        index = columns.get(name)
        if index is None or index >= len(record):
            return None
        return record[index].strip() or None

    errors = []

    summary = value("summary") or ""
    if not summary:
        errors.append("summary is required")

    issue_type = "Task"
    typed = value("type")
    if typed:
        matched = next((t for t in ISSUE_TYPES if t.lower() == typed.lower()), None)
        if matched is None:
            errors.append(f"invalid type '{typed}'; expected one of {', '.join(ISSUE_TYPES)}")
            issue_type = typed
        else:
            issue_type = matched

    email = value("assignee_email")
    if email is not None:
        if not _is_valid_email(email):
            errors.append(f"invalid assignee_email '{email}'")
        else:
            member = next((m for m in roster if same_email(m, email)), None)
            if member is None:
                errors.append(f"assignee_email '{email}' is not a team member")
            else:
                email = member

    epic_key = value("epic_key")
    if epic_key is not None:
        if not _JIRA_KEY.match(epic_key):
            errors.append(f"invalid epic_key '{epic_key}'")
        elif epic_key.upper() not in known_epics:
            errors.append(f"unknown epic_key '{epic_key}'")
        else:
            epic_key = epic_key.upper()

    labels = tuple(
        label.strip() for label in (value("labels") or "").split("|") if label.strip()
    )

    return UploadRow(
        row_number=row_number,
        summary=summary,
        issue_type=issue_type,
        assignee_email=email,
        epic_key=epic_key,
        labels=labels,
        description=value("description"),
        errors=tuple(errors),
    )


def _with_warnings(row: UploadRow, warnings: list[str]) -> UploadRow:
    if not warnings:
        return row
    return replace(row, warnings=tuple(warnings))


def _is_valid_email(email: str) -> bool:
    local, at, domain = email.partition("@")
    return bool(local and at and domain) and "@" not in domain and "." in domain

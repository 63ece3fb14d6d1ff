"""Reconciliation of metadata records against the object store.

Finds metadata records whose backing object is gone. A record is only
reported as orphaned when the store confirmed the object is absent; any
check that fails for another reason is reported as inconclusive and kept
out of the remediation script.

The scanner never deletes anything. It produces a report, and
``render_remediation_script`` turns that report into SQL for an operator
to review and run.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from .errors import MalformedReferenceError
from .reference import Reference, decode
from .storage.errors import StorageError
from .types import SQL_IDENTIFIER_PATTERN, SqlIdentifier

if TYPE_CHECKING:
    from .storage import B2StorageClient

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "media_files"


class MetadataRecord(BaseModel):
    """A metadata row that may point at a stored object."""

    record_id: str
    table: SqlIdentifier = DEFAULT_TABLE
    storage_reference: str | None = None

    @field_validator("record_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        return str(value)


class OrphanedRecord(BaseModel):
    """Record whose object is confirmed absent."""

    record_id: str
    table: str
    reference: Reference


class InconclusiveRecord(BaseModel):
    """Record whose object could not be checked."""

    record_id: str
    table: str
    reference: str
    reason: str


class OrphanReport(BaseModel):
    """Result of one reconciliation pass."""

    scanned_count: int = 0
    skipped_count: int = 0
    orphaned: list[OrphanedRecord] = Field(default_factory=list)
    inconclusive: list[InconclusiveRecord] = Field(default_factory=list)

    @property
    def orphaned_references(self) -> list[Reference]:
        return [item.reference for item in self.orphaned]

    @property
    def ok_count(self) -> int:
        return self.scanned_count - len(self.orphaned) - len(self.inconclusive)


class ReconciliationScanner:
    """Checks each referenced object for existence, concurrently."""

    def __init__(
        self,
        client: B2StorageClient,
        *,
        concurrency: int = 8,
        item_timeout: float = 10.0,
    ):
        self._client = client
        self._semaphore = asyncio.Semaphore(concurrency)
        self._item_timeout = item_timeout

    async def _check(
        self, record: MetadataRecord
    ) -> OrphanedRecord | InconclusiveRecord | None:
        raw = record.storage_reference or ""
        try:
            ref = decode(raw)
        except MalformedReferenceError as e:
            return InconclusiveRecord(
                record_id=record.record_id, table=record.table, reference=raw, reason=str(e)
            )

        async with self._semaphore:
            try:
                # No retries here: a flaky check is recorded, not waited on
                exists = await asyncio.wait_for(
                    self._client.exists(ref.storage_id, retry=False),
                    timeout=self._item_timeout,
                )
            except asyncio.TimeoutError:
                reason = f"existence check timed out after {self._item_timeout}s"
            except StorageError as e:
                reason = f"existence check failed: {e}"
            except Exception as e:
                logger.exception(
                    "Unexpected error checking object",
                    extra={"record_id": record.record_id, "storage_id": ref.storage_id},
                )
                reason = f"unexpected error: {e!r}"
            else:
                if exists:
                    return None
                return OrphanedRecord(record_id=record.record_id, table=record.table, reference=ref)

        return InconclusiveRecord(
            record_id=record.record_id, table=record.table, reference=raw, reason=reason
        )

    async def scan(self, records: Iterable[MetadataRecord]) -> OrphanReport:
        """
        Classify every record that declares a storage reference.

        Records without a reference are skipped. Results keep input order.
        """
        candidates: list[MetadataRecord] = []
        skipped = 0
        for record in records:
            if record.storage_reference:
                candidates.append(record)
            else:
                skipped += 1

        logger.info(
            f"Reconciling {len(candidates)} records",
            extra={"scanned": len(candidates), "skipped": skipped},
        )
        outcomes = await asyncio.gather(*(self._check(record) for record in candidates))

        report = OrphanReport(scanned_count=len(candidates), skipped_count=skipped)
        for outcome in outcomes:
            if isinstance(outcome, OrphanedRecord):
                report.orphaned.append(outcome)
            elif isinstance(outcome, InconclusiveRecord):
                report.inconclusive.append(outcome)

        logger.info(
            "Reconciliation finished",
            extra={
                "scanned": report.scanned_count,
                "orphaned": len(report.orphaned),
                "inconclusive": len(report.inconclusive),
            },
        )
        return report


def _comment(text: str) -> str:
    # Keep untrusted values from ending the comment line
    return re.sub(r"[\r\n]+", " ", text)


def _literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_remediation_script(
    report: OrphanReport,
    *,
    id_column: str = "id",
    batch_size: int = 100,
    generated_at: datetime | None = None,
) -> str:
    """
    Render a reviewable SQL script deleting the orphaned records.

    All deletes run inside one explicit transaction, batched per table.
    Inconclusive records are listed as comments only.
    """
    if not re.match(SQL_IDENTIFIER_PATTERN, id_column):
        raise ValueError(f"Invalid column name: {id_column!r}")
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    generated_at = generated_at or datetime.now(timezone.utc)
    lines = [
        "-- Orphaned metadata records: remediation script",
        f"-- Generated: {generated_at.isoformat()}",
        f"-- Scanned: {report.scanned_count} records with storage references",
        f"-- Orphaned: {len(report.orphaned)}  Inconclusive: {len(report.inconclusive)}",
        "--",
        "-- REVIEW BEFORE RUNNING. Nothing in this script has been executed.",
    ]

    if report.inconclusive:
        lines.append("-- Inconclusive records (excluded from deletion):")
        for item in report.inconclusive:
            lines.append(
                _comment(
                    f"--   {item.table} {id_column}={item.record_id} "
                    f"{item.reference} ({item.reason})"
                )
            )

    if not report.orphaned:
        lines.append("-- No orphaned records found.")
        return "\n".join(lines) + "\n"

    by_table: dict[str, list[OrphanedRecord]] = {}
    for item in report.orphaned:
        by_table.setdefault(item.table, []).append(item)

    lines.append("")
    lines.append("BEGIN;")
    for table, items in by_table.items():
        lines.append("")
        lines.append(f"-- {table}: {len(items)} orphaned records")
        for item in items:
            lines.append(_comment(f"--   {id_column}={item.record_id} {item.reference}"))
        for start in range(0, len(items), batch_size):
            batch = items[start : start + batch_size]
            values = ", ".join(_literal(item.record_id) for item in batch)
            lines.append(f"DELETE FROM {table} WHERE {id_column} IN ({values});")
    lines.append("")
    lines.append("COMMIT;")
    return "\n".join(lines) + "\n"

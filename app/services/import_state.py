"""
In-process progress and failure-report store for CSV imports.

State is kept per table id.  Each import owns an ``ImportRun`` created by
``ImportStateStore.start_run``; starting a run while another one for the same
table is still active supersedes the older run: it is logged, and every
later update from the superseded run is discarded, so progress always
reflects the most recently started import.

The store lives in process memory.  Running several worker processes gives
each its own view of progress.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import pandas as pd

from app.schemas.imports import ProgressSnapshot
from app.utils.constants import (
    IMPORT_ACTIVE_STATUSES,
    IMPORT_STATUS_DONE,
    IMPORT_STATUS_ERROR,
    IMPORT_STATUS_IDLE,
    IMPORT_STATUS_INSERTING,
    IMPORT_STATUS_VALIDATING,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Import run state machine
# ---------------------------------------------------------------------------

_TRANSITIONS: dict[str, frozenset[str]] = {
    IMPORT_STATUS_IDLE: frozenset({IMPORT_STATUS_VALIDATING}),
    IMPORT_STATUS_VALIDATING: frozenset(
        {IMPORT_STATUS_INSERTING, IMPORT_STATUS_DONE, IMPORT_STATUS_ERROR}
    ),
    IMPORT_STATUS_INSERTING: frozenset(
        {IMPORT_STATUS_INSERTING, IMPORT_STATUS_DONE, IMPORT_STATUS_ERROR}
    ),
    IMPORT_STATUS_DONE: frozenset(),
    IMPORT_STATUS_ERROR: frozenset(),
}


@dataclass
class ImportRun:
    """Progress of one import.

    Status moves ``idle → validating → (inserting →) done | error``; any
    other move raises ``RuntimeError``.
    """

    table_id: int
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = IMPORT_STATUS_IDLE
    total: int = 0
    processed: int = 0
    message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def percent(self) -> int:
        if self.status == IMPORT_STATUS_DONE:
            return 100
        if self.total <= 0:
            return 0
        return max(0, min(100, round(self.processed * 100 / self.total)))

    @property
    def active(self) -> bool:
        return self.status in IMPORT_ACTIVE_STATUSES

    def transition(self, status: str) -> None:
        if status not in _TRANSITIONS.get(self.status, frozenset()):
            raise RuntimeError(f"Illegal import transition {self.status} -> {status}")
        self.status = status
        if status == IMPORT_STATUS_VALIDATING and self.started_at is None:
            self.started_at = _utcnow()
        if status in (IMPORT_STATUS_DONE, IMPORT_STATUS_ERROR):
            self.finished_at = _utcnow()

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            run_id=self.run_id,
            status=self.status,
            total=self.total,
            processed=self.processed,
            percent=self.percent,
            message=self.message,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


# ---------------------------------------------------------------------------
# Failure report
# ---------------------------------------------------------------------------


@dataclass
class FailedRow:
    row: int
    values: list[str]
    errors: list[str]


@dataclass
class FailureReport:
    """Rows that failed the last import (or dry run) of a table.

    Attributes:
        source: ``"dry_run"`` or ``"import"``.
        headers: Header row of the source file (real or synthesized).
        rows: Failing rows with their source cells and error messages.
        total_rows: Body rows in the source file.
        delimiter: Delimiter the file was parsed with.
        has_header: Whether the first row was a header.
        generated_at: When the report was produced.
    """

    source: str
    headers: list[str]
    rows: list[FailedRow]
    total_rows: int = 0
    delimiter: str = ","
    has_header: bool = True
    generated_at: datetime = field(default_factory=_utcnow)

    @property
    def failed_count(self) -> int:
        return len(self.rows)

    def to_dataframe(self) -> pd.DataFrame:
        width = len(self.headers)
        data: list[list[Any]] = []
        for failed in self.rows:
            cells = list(failed.values[:width]) + [""] * (width - len(failed.values))
            data.append([failed.row, *cells, "; ".join(failed.errors)])
        return pd.DataFrame(data, columns=["row", *self.headers, "errors"])

    def to_csv_bytes(self) -> bytes:
        """Render as CSV: ``row``, the source columns, then ``errors``."""
        return self.to_dataframe().to_csv(index=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ImportStateStore:
    """Thread-safe per-table progress and failure-report registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[int, ImportRun] = {}
        self._reports: dict[int, FailureReport] = {}

    # -- runs ---------------------------------------------------------------

    def start_run(self, table_id: int, total: int = 0) -> ImportRun:
        """Register a new run in ``validating`` state and make it current."""
        run = ImportRun(table_id=table_id, total=total)
        run.transition(IMPORT_STATUS_VALIDATING)
        with self._lock:
            previous = self._runs.get(table_id)
            if previous is not None and previous.active:
                logger.warning(
                    "import run %s on table_id=%d superseded by run %s",
                    previous.run_id, table_id, run.run_id,
                )
            self._runs[table_id] = run
        logger.debug("start_run: table_id=%d run_id=%s total=%d", table_id, run.run_id, total)
        return run

    def _owns(self, run: ImportRun) -> bool:
        """Whether *run* is still the current run of its table; lock held."""
        return self._runs.get(run.table_id) is run

    def update_run(
        self,
        run: ImportRun,
        status: str | None = None,
        total: int | None = None,
        processed: int | None = None,
        message: str | None = None,
    ) -> bool:
        """Apply an update to *run*.

        Returns False (and changes nothing visible) when *run* has been
        superseded by a newer run on the same table.
        """
        with self._lock:
            current = self._owns(run)
            if status is not None and status != run.status:
                run.transition(status)
            if total is not None:
                run.total = total
            if processed is not None:
                run.processed = processed
            if message is not None:
                run.message = message
        if not current:
            logger.debug(
                "update_run: discarded update from superseded run %s (table_id=%d)",
                run.run_id, run.table_id,
            )
        return current

    def get_progress(self, table_id: int) -> ProgressSnapshot:
        """Snapshot of the current run, or an idle snapshot if none exists."""
        with self._lock:
            run = self._runs.get(table_id)
            if run is None:
                return ProgressSnapshot()
            return run.snapshot()

    def set_progress(self, table_id: int, patch: dict[str, Any]) -> ProgressSnapshot:
        """Merge *patch* (``status``, ``total``, ``processed``, ``message``)
        into the table's progress and return the new snapshot.

        A plain merge: unlike ``update_run`` the status is overwritten without
        transition checks.  A table with no run gets one, started now.
        Reaching ``done`` or ``error`` stamps ``finished_at``.

        Raises:
            ValueError: Unknown key or unknown status value.
        """
        unknown = set(patch) - {"status", "total", "processed", "message"}
        if unknown:
            raise ValueError(f"Unknown progress keys: {sorted(unknown)}")
        status = patch.get("status")
        if status is not None and status not in _TRANSITIONS:
            raise ValueError(f"Unknown import status: {status!r}")

        with self._lock:
            run = self._runs.get(table_id)
            if run is None:
                run = ImportRun(table_id=table_id, started_at=_utcnow())
                self._runs[table_id] = run
            if status is not None:
                run.status = status
                if status in (IMPORT_STATUS_DONE, IMPORT_STATUS_ERROR):
                    run.finished_at = _utcnow()
            if "total" in patch:
                run.total = patch["total"]
            if "processed" in patch:
                run.processed = patch["processed"]
            if "message" in patch:
                run.message = patch["message"]
            return run.snapshot()

    # -- failure reports ----------------------------------------------------

    def get_last_failure_report(self, table_id: int) -> FailureReport | None:
        with self._lock:
            return self._reports.get(table_id)

    def set_last_failure_report(
        self,
        table_id: int,
        report: FailureReport | None,
        run: ImportRun | None = None,
    ) -> None:
        """Store *report*; ``None`` or a report without failed rows clears.

        When *run* is given and has been superseded, nothing changes.
        """
        with self._lock:
            if run is not None and (run.table_id != table_id or not self._owns(run)):
                logger.debug(
                    "set_last_failure_report: ignored report from superseded run %s",
                    run.run_id,
                )
                return
            if report is None or report.failed_count == 0:
                self._reports.pop(table_id, None)
            else:
                self._reports[table_id] = report

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()
            self._reports.clear()


import_state_store = ImportStateStore()


def get_import_state_store() -> ImportStateStore:
    """FastAPI dependency returning the process-wide store."""
    return import_state_store

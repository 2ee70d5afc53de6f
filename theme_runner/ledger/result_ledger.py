"""Result ledger — the append-only CSV of per-subject outcomes.

All reads and writes of the results file go through ``ResultLedger``. The
file is a header row followed by one row per finished job; a subject that was
re-run appears several times until ``compact()`` keeps only its last row.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import threading
from collections import Counter
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, Field

from theme_runner.models.job_result import LEDGER_COLUMNS, NO_PASS, PASS, JobResult, RunMode

logger = logging.getLogger(__name__)


class LedgerSummary(BaseModel):
    total: int = 0
    passed: int = 0
    no_pass: int = 0
    errored: int = 0  # rows without a verdict
    reasons: dict[str, int] = Field(default_factory=dict)


def format_row(values: list[str]) -> str:
    """Render one RFC4180 line (fields with , " or newlines are quoted)."""
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\n").writerow(values)
    return buf.getvalue()


def parse_line(line: str) -> list[str] | None:
    """Parse one physical ledger line, or None when its quoting is broken."""
    try:
        return next(csv.reader([line], strict=True), [])
    except csv.Error:
        return None


def first_field(line: str) -> str:
    """First field of a raw line, honouring a leading quote and doubled quotes."""
    if not line.startswith('"'):
        return line.split(",", 1)[0]
    out = []
    i = 1
    while i < len(line):
        if line[i] == '"':
            if line[i + 1:i + 2] != '"':
                break
            i += 1
        out.append(line[i])
        i += 1
    return "".join(out)


class ResultLedger:
    """Owns the results CSV: initialization, resume/fix reads, appends, compaction."""

    def __init__(self, path: str | Path, columns: tuple[str, ...] = LEDGER_COLUMNS):
        self.path = Path(path)
        self.columns = columns
        self._error_idx = columns.index("error") if "error" in columns else -1
        self._lock = threading.Lock()

    @property
    def header(self) -> str:
        return format_row(list(self.columns))

    def exists(self) -> bool:
        return self.path.exists()

    def initialize(self, mode: RunMode) -> None:
        """Truncate and write the header for fresh runs, otherwise keep appending."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if mode.truncates or not self.path.exists():
            with self._lock, open(self.path, "w", encoding="utf-8", newline="") as f:
                f.write(self.header)
            logger.info("Ledger initialized at %s (mode=%s)", self.path, mode.describe())
        else:
            logger.info("Appending to existing ledger %s (mode=%s)", self.path, mode.describe())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _iter_lines(self) -> Iterator[tuple[int, str]]:
        with open(self.path, encoding="utf-8", newline="") as f:
            for lineno, line in enumerate(f, start=1):
                yield lineno, line.rstrip("\r\n")

    def _iter_records(self) -> Iterator[list[str]]:
        """Yield parsed data rows, skipping ones that cannot be parsed.

        Every physical line is parsed on its own, so a broken quote costs
        only its own line.
        """
        if not self.path.exists():
            return
        for lineno, line in self._iter_lines():
            if lineno == 1 or not line.strip():
                continue
            record = parse_line(line)
            if record is None:
                logger.warning("Skipping unreadable ledger row at line %d: %.60r", lineno, line)
                continue
            if not record or not record[0].strip():
                logger.debug("Skipping ledger row without identity at line %d", lineno)
                continue
            yield record

    def load_completed_keys(self) -> set[str]:
        """Lower-cased identities of every subject with a prior row."""
        return {record[0].strip().lower() for record in self._iter_records()}

    def load_retry_keys(self, error_substring: str) -> set[str]:
        """Identities whose last recorded error contains ``error_substring`` verbatim.

        Works on uncompacted ledgers: a later row for the same identity
        supersedes an earlier failure.
        """
        if self._error_idx < 0:
            return set()
        latest: dict[str, list[str]] = {}
        for record in self._iter_records():
            if len(record) <= self._error_idx:
                logger.debug("Skipping short ledger row for %s", record[0])
                continue
            latest[record[0].strip().lower()] = record
        return {key for key, record in latest.items() if error_substring in record[self._error_idx]}

    def load_rows(self) -> list[dict[str, str]]:
        """All well-formed data rows as column -> value dicts."""
        rows = []
        for record in self._iter_records():
            if len(record) != len(self.columns):
                logger.warning("Skipping ledger row for %r: %d fields, expected %d",
                               record[0], len(record), len(self.columns))
                continue
            rows.append(dict(zip(self.columns, record)))
        return rows

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, row: JobResult) -> None:
        """Write one row and flush it. Safe to call from concurrent jobs."""
        line = format_row(row.to_row())
        with self._lock:
            with open(self.path, "a", encoding="utf-8", newline="") as f:
                f.write(line)
                f.flush()
        logger.debug("Ledger row written for %s (result=%s)", row.name, row.result or "-")

    def compact(self) -> int:
        """Keep one row per identity: last content, first-appearance order.

        Lines whose quoting is broken are kept verbatim under their
        minimally-quoted first field. The file is rewritten through a
        temporary sibling and swapped in with ``os.replace``. Returns the
        number of rows dropped; compacting a compact ledger leaves the file
        unchanged.
        """
        if not self.path.exists():
            return 0

        with self._lock:
            header: str | None = None
            latest: dict[str, str] = {}
            seen = 0
            for lineno, line in self._iter_lines():
                if header is None:
                    header = line
                    continue
                if not line.strip():
                    continue
                record = parse_line(line)
                if record is None:
                    logger.warning("Keeping unreadable ledger row at line %d as-is", lineno)
                    key, rendered = first_field(line).strip().lower(), line + "\n"
                elif record:
                    key, rendered = record[0].strip().lower(), format_row(record)
                else:
                    continue
                if not key:
                    continue
                seen += 1
                latest[key] = rendered

            if header is None:
                return 0

            tmp_path = self.path.with_name(self.path.name + ".tmp")
            with open(tmp_path, "w", encoding="utf-8", newline="") as f:
                f.write(header + "\n")
                f.writelines(latest.values())
            os.replace(tmp_path, self.path)

        dropped = seen - len(latest)
        logger.info("Compacted ledger %s: %d rows kept, %d superseded", self.path, len(latest), dropped)
        return dropped

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summarize(self) -> LedgerSummary:
        """Verdict totals and a histogram of reason-code prefixes."""
        summary = LedgerSummary()
        reasons: Counter[str] = Counter()
        for row in self.load_rows():
            summary.total += 1
            verdict = row.get("result", "")
            if verdict == PASS:
                summary.passed += 1
            elif verdict == NO_PASS:
                summary.no_pass += 1
            else:
                summary.errored += 1
            for code in filter(None, row.get("error", "").split(";")):
                reasons[code.split(":", 1)[0].strip()] += 1
        summary.reasons = dict(reasons.most_common())
        return summary

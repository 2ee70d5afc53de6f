"""Subjects (themes) under test and the CSV loader that produces them."""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

_NAME_COLUMNS = ("name", "theme")
_URL_COLUMNS = ("demo_store_url", "demo_url", "url", "entry_url")


class Subject(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    entry_url: str = ""
    popularity: float = 0.0
    is_free: bool = False

    @property
    def key(self) -> str:
        """Identity used by the ledger and the worklist filters."""
        return self.name.lower()


def _first(record: dict[str, str], columns: tuple[str, ...]) -> str:
    for col in columns:
        value = (record.get(col) or "").strip()
        if value:
            return value
    return ""


def _to_float(value: str) -> float:
    try:
        return float(value.replace(",", "")) if value else 0.0
    except ValueError:
        return 0.0


def subject_from_record(record: dict[str, str]) -> Subject | None:
    """Build a Subject from one CSV record, or None if it has no name."""
    name = _first(record, _NAME_COLUMNS)
    if not name:
        return None

    explicit_free = (record.get("is_free") or "").strip().lower()
    if explicit_free:
        is_free = explicit_free in ("1", "true", "yes")
    else:
        is_free = "free" in (record.get("price_text") or "").lower()

    return Subject(
        name=name,
        entry_url=_first(record, _URL_COLUMNS),
        popularity=_to_float((record.get("reviews_total") or record.get("popularity") or "").strip()),
        is_free=is_free,
    )


def load_subjects(path: str | Path) -> list[Subject]:
    """Load every subject from a CSV file, in file order.

    Raises FileNotFoundError when the source does not exist; rows without a
    name are skipped.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Subject source not found: {path}")

    subjects: list[Subject] = []
    with open(path, newline="", encoding="utf-8") as f:
        for record in csv.DictReader(f):
            subject = subject_from_record(record)
            if subject is None:
                logger.debug("Skipping subject row without a name: %s", record)
                continue
            subjects.append(subject)

    logger.info("Loaded %d subjects from %s", len(subjects), path)
    return subjects

"""Orders subjects by priority and filters them by run mode."""

from __future__ import annotations

import logging

from theme_runner.ledger.result_ledger import ResultLedger
from theme_runner.models.job_result import RunMode
from theme_runner.models.subject import Subject

logger = logging.getLogger(__name__)


def prioritize(subjects: list[Subject]) -> list[Subject]:
    """Free subjects first, then by popularity descending (stable)."""
    return sorted(subjects, key=lambda s: (not s.is_free, -s.popularity))


def build_worklist(
    subjects: list[Subject],
    mode: RunMode,
    ledger: ResultLedger,
    name_filter: str | None = None,
) -> list[Subject]:
    """Return the ordered list of subjects to run for this mode."""
    ordered = prioritize(subjects)
    needle = (name_filter or "").strip().lower()

    if mode.kind == "fix":
        retry_keys = ledger.load_retry_keys(mode.error_substring)
        logger.info("[FIX] error=%r matches %d subject(s) in the ledger",
                    mode.error_substring, len(retry_keys))
        # Previously completed subjects are re-run on purpose in fix mode
        work = [s for s in ordered if s.key in retry_keys]
    elif mode.kind == "resume":
        completed = ledger.load_completed_keys()
        logger.info("[RESUME] %d subject(s) already recorded", len(completed))
        work = [s for s in ordered if s.key not in completed]
    else:
        work = ordered

    if needle:
        work = [s for s in work if needle in s.key]

    logger.info("Worklist: %d of %d subjects (mode=%s%s)",
                len(work), len(subjects), mode.describe(),
                f", filter={needle!r}" if needle else "")
    return work

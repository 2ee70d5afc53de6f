"""Bounded-concurrency job scheduler.

A fixed number of asyncio workers pull the next unclaimed index from a shared
cursor until the worklist is exhausted, so a slow subject never holds up a
whole partition of the list.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Awaitable, Callable, NamedTuple

from theme_runner.models.subject import Subject

logger = logging.getLogger(__name__)

JobFn = Callable[[Subject, int], Awaitable[None]]


class ProgressSnapshot(NamedTuple):
    total: int
    completed: int
    active: int
    concurrency: int

    @property
    def percent(self) -> float:
        return (self.completed / self.total) * 100.0 if self.total else 100.0

    def format(self) -> str:
        return (f"[PROGRESS] {self.completed}/{self.total} ({self.percent:.1f}%) "
                f"active={self.active}/{self.concurrency}")


class ProgressCounter:
    """Lock-guarded total/completed/active counters shared by the workers."""

    def __init__(self, concurrency: int = 1):
        self._lock = threading.Lock()
        self._total = 0
        self._completed = 0
        self._active = 0
        self._concurrency = concurrency

    def start(self, total: int, concurrency: int | None = None) -> None:
        with self._lock:
            self._total = total
            self._completed = 0
            self._active = 0
            if concurrency is not None:
                self._concurrency = concurrency

    def job_started(self) -> None:
        with self._lock:
            self._active += 1

    def job_finished(self) -> ProgressSnapshot:
        with self._lock:
            self._active -= 1
            self._completed += 1
            return self._snapshot()

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(self._total, self._completed, self._active, self._concurrency)


class JobScheduler:
    """Runs one job per subject with at most ``concurrency`` jobs in flight."""

    def __init__(self, concurrency: int, progress: ProgressCounter | None = None):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency
        self.progress = progress or ProgressCounter(concurrency)

    async def run(self, worklist: list[Subject], job_fn: JobFn) -> None:
        total = len(worklist)
        self.progress.start(total, self.concurrency)
        logger.info("Total subjects to process: %d (concurrency=%d)", total, self.concurrency)
        if not total:
            return

        cursor = itertools.count()

        async def _worker(worker_id: int) -> None:
            while True:
                index = next(cursor)
                if index >= total:
                    return
                subject = worklist[index]
                self.progress.job_started()
                logger.debug("[POOL] worker %d start idx=%d %s", worker_id, index, subject.name)
                try:
                    await job_fn(subject, index)
                except Exception:
                    # The procedure records its own failures; this only
                    # guards the pool against a broken job function.
                    logger.exception("[POOL] job %d (%s) raised", index, subject.name)
                finally:
                    snap = self.progress.job_finished()
                    logger.info(snap.format())

        await asyncio.gather(*(_worker(i) for i in range(min(self.concurrency, total))))

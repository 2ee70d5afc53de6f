"""Drives one subject through the add-to-cart protocol.

The procedure is a fixed list of steps. Each step either returns ``None`` to
continue or a ``TerminalReason`` to stop; an exception inside a step is turned
into a ``<step>_error:<message>`` reason. Whatever happens, the dispatcher
writes exactly one ledger row per subject.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, NamedTuple, Optional

from playwright.async_api import BrowserContext, ElementHandle, Page
from playwright.async_api import Error as PlaywrightError

from theme_runner.errors import ErrorKind, NavigationError, RateLimitedError, describe_error
from theme_runner.executor.evidence_collector import EvidenceCollector, sanitize_name
from theme_runner.executor.image_diff import diff_images
from theme_runner.executor.navigation import Navigator, reset_site_state
from theme_runner.executor.page_scripts import (
    NEXT_ANIMATION_FRAME,
    READ_ORIGIN,
    READ_SETTLEMENT,
    RESET_SETTLEMENT,
)
from theme_runner.inspection.page_inspector import StorefrontInspector, TestableItem
from theme_runner.inspection.refresh import ScriptRefreshCapability
from theme_runner.ledger.result_ledger import ResultLedger
from theme_runner.models.config import RunnerConfig
from theme_runner.models.job_result import NO_PASS, PASS, DiffOutcome, JobResult
from theme_runner.models.subject import Subject

logger = logging.getLogger(__name__)

ContextFactory = Callable[[], Awaitable[BrowserContext]]
DiffFn = Callable[..., DiffOutcome]
Sleeper = Callable[[float], Awaitable[None]]

PRE_TRIGGER_PNG = "pre_trigger.png"
POST_TRIGGER_PNG = "post_trigger.png"
POST_REFRESH_PNG = "post_refresh.png"
BASE_DIFF_PNG = "base_diff.png"
REFRESH_DIFF_PNG = "refresh_diff.png"


class TerminalReason(NamedTuple):
    code: str
    verdict: str = ""  # empty: no verdict (counts as NO-PASS downstream)
    kind: str = ""


class _JobState:
    """Mutable state of one subject while its steps run."""

    def __init__(self, subject: Subject, index: int, evidence: EvidenceCollector):
        self.subject = subject
        self.index = index
        self.tag = evidence.job_dir.name
        self.evidence = evidence
        self.row = JobResult(name=subject.name, entry_url=subject.entry_url)
        self.page: Optional[Page] = None
        self.item: Optional[TestableItem] = None
        self.detail_url = ""
        self.trigger: Optional[ElementHandle] = None
        self.pre_trigger: Optional[Path] = None
        self.post_trigger: Optional[Path] = None
        self.post_refresh: Optional[Path] = None


class VerificationProcedure:
    """Scheduler job: ``await procedure(subject, index)``."""

    STEPS = (
        "navigate",
        "resolve_item",
        "baseline",
        "locate_trigger",
        "trigger",
        "base_diff",
        "reset_environment",
        "manual_trigger",
        "delegated_refresh",
        "post_refresh",
        "refresh_diff",
    )

    def __init__(
        self,
        config: RunnerConfig,
        ledger: ResultLedger,
        navigator: Navigator,
        inspector: StorefrontInspector,
        refresher: ScriptRefreshCapability,
        context_factory: ContextFactory,
        diff: DiffFn = diff_images,
        sleep: Sleeper | None = None,
    ):
        self.config = config
        self.ledger = ledger
        self.navigator = navigator
        self.inspector = inspector
        self.refresher = refresher
        self.context_factory = context_factory
        self.diff = diff
        self._sleep = sleep or asyncio.sleep
        self.out_root = config.output_path

    async def __call__(self, subject: Subject, index: int) -> None:
        await self.run(subject, index)

    async def run(self, subject: Subject, index: int) -> JobResult:
        """Run every step for ``subject`` and append its row to the ledger."""
        tag = sanitize_name(subject.name or f"job-{index}")
        evidence = EvidenceCollector(self.out_root, tag, job_index=index)
        job = _JobState(subject, index, evidence)
        row = job.row
        context: Optional[BrowserContext] = None
        start = time.time()

        try:
            if not subject.entry_url:
                row.add_reason("no_demo_url")
                return row

            try:
                context = await self.context_factory()
            except Exception as e:
                logger.error("[JOB %d] %s: no isolated context: %s", index, subject.name, e)
                row.add_reason(f"context_failure:{describe_error(e)}")
                return row

            evidence.prepare()
            job.page = await context.new_page()
            self._configure_page(job)
            logger.info("[JOB %d] %s -> %s", index, tag, subject.entry_url)

            await self._dispatch(job)
        except Exception as e:
            logger.error("[JOB %d] %s crashed: %s", index, subject.name, e)
            row.add_reason(f"job_error:{describe_error(e)}")
        finally:
            self.ledger.append(row)
            evidence.save_logs()
            logger.info("[JOB %d] %s: %s %s(%.1fs)", index, subject.name,
                        row.result or "ERROR", f"[{row.error}] " if row.error else "",
                        time.time() - start)
            await self._release(job, context)

        return row

    def _configure_page(self, job: _JobState) -> None:
        page = job.page
        page.set_default_navigation_timeout(self.config.timing.navigation_timeout_ms)
        page.set_default_timeout(self.config.timing.default_timeout_ms)
        job.evidence.setup_listeners(page)

    async def _release(self, job: _JobState, context: Optional[BrowserContext]) -> None:
        if context is None:
            return
        if self.config.debug and not self.config.hold_debug_slot:
            # Leave the window open for inspection
            return
        try:
            if self.config.debug and self.config.hold_debug_slot and job.page is not None:
                logger.info("[JOB %d] holding debug slot until the page is closed", job.index)
                await job.page.wait_for_event("close", timeout=0)
            elif job.page is not None:
                await job.page.close()
        except PlaywrightError as e:
            logger.debug("[JOB %d] page close failed: %s", job.index, e)
        try:
            await context.close()
        except PlaywrightError as e:
            logger.debug("[JOB %d] context close failed: %s", job.index, e)

    async def _dispatch(self, job: _JobState) -> None:
        for name in self.STEPS:
            step = getattr(self, f"_step_{name}")
            logger.debug("[JOB %d] step %s", job.index, name)
            try:
                outcome = await step(job)
            except Exception as e:
                logger.warning("[JOB %d] step %s failed: %s", job.index, name, e)
                job.row.add_reason(f"{name}_error:{describe_error(e)}")
                return
            if outcome is not None:
                job.row.add_reason(outcome.code)
                if outcome.verdict:
                    job.row.result = outcome.verdict
                logger.info("[JOB %d] stopped at %s: %s %s", job.index, name, outcome.code, outcome.kind)
                return

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _goto(self, job: _JobState, url: str, label: str) -> TerminalReason | None:
        try:
            await self.navigator.goto(job.page, url, f"{label} {job.tag}")
        except RateLimitedError:
            return TerminalReason("nav_rate_limited", kind=ErrorKind.RATE_LIMITED)
        except NavigationError as e:
            return TerminalReason(f"nav_failed:{describe_error(e)}", kind=ErrorKind.TRANSIENT_NETWORK)
        return None

    async def _settle(self, page: Page, ms: int) -> None:
        await self._sleep(ms / 1000)
        try:
            await page.evaluate(NEXT_ANIMATION_FRAME)
        except PlaywrightError as e:
            logger.debug("animation frame wait failed: %s", e)

    async def _settlement_score(self, page: Page) -> float:
        return float(await page.evaluate(READ_SETTLEMENT) or 0)

    async def _run_diff(self, before: Path, after: Path, name: str, job: _JobState) -> DiffOutcome:
        out = job.evidence.path_for(name)
        return await asyncio.to_thread(self.diff, before, after, out, self.config.diff_threshold)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _step_navigate(self, job: _JobState) -> TerminalReason | None:
        failed = await self._goto(job, job.subject.entry_url, "landing")
        if failed:
            return failed
        job.row.navigated = True

        try:
            job.row.schema_name, job.row.schema_id = await self.inspector.read_schema(job.page)
        except PlaywrightError as e:
            logger.debug("[JOB %d] schema unreadable: %s", job.index, e)

        if job.evidence.dialog_seen:
            job.row.dialog_alerted = True
            return TerminalReason("alert_dialog", NO_PASS, ErrorKind.INTERACTION_BLOCKED)
        return None

    async def _step_resolve_item(self, job: _JobState) -> TerminalReason | None:
        item = await self.inspector.resolve_testable_item(job.page)
        if item is None:
            return TerminalReason("no_variant_available", NO_PASS, ErrorKind.INTERACTION_BLOCKED)
        job.item = item
        job.row.resolved_item = True
        return None

    async def _step_baseline(self, job: _JobState) -> TerminalReason | None:
        origin = await job.page.evaluate(READ_ORIGIN)
        job.detail_url = f"{origin}{job.item.detail_path}"
        logger.info("[JOB %d] item %s (variant=%s, via %s)",
                    job.index, job.detail_url, job.item.identity, job.item.source)
        failed = await self._goto(job, job.detail_url, "product")
        if failed:
            return failed
        job.pre_trigger = await job.evidence.take_screenshot(job.page, PRE_TRIGGER_PNG)
        job.row.pre_trigger_png = job.evidence.relative(job.pre_trigger)
        return None

    async def _step_locate_trigger(self, job: _JobState) -> TerminalReason | None:
        job.trigger = await self.inspector.locate_trigger(job.page)
        job.row.found_trigger = job.trigger is not None
        if job.trigger is None:
            return TerminalReason("no_add_button", NO_PASS, ErrorKind.INTERACTION_BLOCKED)
        return None

    async def _step_trigger(self, job: _JobState) -> TerminalReason | None:
        await job.page.evaluate(RESET_SETTLEMENT)
        await job.trigger.click(delay=30)
        job.row.clicked_trigger = True
        await self._sleep(self.config.timing.post_trigger_settle_ms / 1000)

        job.post_trigger = await job.evidence.take_screenshot(job.page, POST_TRIGGER_PNG)
        job.row.post_trigger_png = job.evidence.relative(job.post_trigger)
        job.row.settle_after_trigger = await self._settlement_score(job.page)
        return None

    async def _step_base_diff(self, job: _JobState) -> TerminalReason | None:
        try:
            outcome = await self._run_diff(job.pre_trigger, job.post_trigger, BASE_DIFF_PNG, job)
        except Exception as e:
            logger.warning("[JOB %d] %s on base diff: %s", job.index, ErrorKind.DIFF_FAILURE, e)
            job.row.add_reason(f"base_diff_failed:{describe_error(e)}")
            return None

        job.row.base_diff_png = job.evidence.relative(Path(outcome.diff_path)) if outcome.diff_path else ""
        job.row.base_change_pct = outcome.percentage
        if outcome.pixels == 0:
            # Click changed nothing on screen
            job.row.skipped_no_change = True
            return TerminalReason("base_no_change", NO_PASS)
        return None

    async def _step_reset_environment(self, job: _JobState) -> TerminalReason | None:
        await reset_site_state(job.page, job.detail_url)
        return await self._goto(job, job.detail_url, "product reload")

    async def _step_manual_trigger(self, job: _JobState) -> TerminalReason | None:
        await job.page.evaluate(RESET_SETTLEMENT)
        job.row.manual_trigger_ok = await self.inspector.submit_item(job.page, job.item)
        if not job.row.manual_trigger_ok:
            logger.info("[JOB %d] manual add for variant %s failed", job.index, job.item.identity)
        await self._settle(job.page, self.config.timing.manual_trigger_settle_ms)
        return None

    async def _step_delegated_refresh(self, job: _JobState) -> TerminalReason | None:
        try:
            job.row.refresh_ok = await self.refresher.attempt_refresh(job.page, job.item.identity)
        except Exception as e:
            job.row.refresh_ok = False
            logger.warning("[JOB %d] %s: %s", job.index, ErrorKind.DELEGATE_FAILURE, e)
            job.row.add_reason(f"refresh_error:{describe_error(e)}")
        if not job.row.refresh_ok:
            logger.info("[JOB %d] refresh handler reported failure", job.index)
        return None

    async def _step_post_refresh(self, job: _JobState) -> TerminalReason | None:
        await self._sleep(self.config.timing.post_refresh_settle_ms / 1000)
        job.post_refresh = await job.evidence.take_screenshot(job.page, POST_REFRESH_PNG)
        job.row.post_refresh_png = job.evidence.relative(job.post_refresh)
        job.row.settle_after_refresh = await self._settlement_score(job.page)
        return None

    async def _step_refresh_diff(self, job: _JobState) -> TerminalReason | None:
        try:
            outcome = await self._run_diff(job.post_trigger, job.post_refresh, REFRESH_DIFF_PNG, job)
        except Exception as e:
            logger.warning("[JOB %d] %s on refresh diff: %s", job.index, ErrorKind.DIFF_FAILURE, e)
            job.row.add_reason(f"refresh_diff_failed:{describe_error(e)}")
            return None

        job.row.refresh_diff_png = job.evidence.relative(Path(outcome.diff_path)) if outcome.diff_path else ""
        job.row.refresh_change_pct = outcome.percentage
        if outcome.pixels > 0:
            return TerminalReason("refresh_nonzero_change", NO_PASS)
        job.row.result = PASS
        return None

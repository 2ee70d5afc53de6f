"""Run orchestrator — wires subjects, ledger, browser, scheduler and compaction."""

from __future__ import annotations

import asyncio
import logging
import time

from playwright.async_api import Browser, BrowserContext, async_playwright

from theme_runner.errors import ContextAcquisitionError, describe_error
from theme_runner.executor.backoff import BackoffPolicy
from theme_runner.executor.navigation import Navigator
from theme_runner.executor.page_scripts import build_init_script
from theme_runner.executor.procedure import VerificationProcedure
from theme_runner.executor.scheduler import JobScheduler, ProgressCounter
from theme_runner.inspection.page_inspector import StorefrontInspector
from theme_runner.inspection.refresh import ScriptRefreshCapability
from theme_runner.ledger.result_ledger import LedgerSummary, ResultLedger
from theme_runner.models.config import RunnerConfig
from theme_runner.models.job_result import RunMode
from theme_runner.models.subject import Subject, load_subjects
from theme_runner.utils.browser import create_isolated_context, launch_browser
from theme_runner.worklist import build_worklist

logger = logging.getLogger(__name__)


class Orchestrator:
    """Coordinates one batch run over the subject list."""

    def __init__(self, config: RunnerConfig, mode: RunMode | None = None, name_filter: str | None = None):
        self.config = config
        self.mode = mode or RunMode.fresh()
        self.name_filter = name_filter
        self.ledger = ResultLedger(config.ledger_path)
        self.progress = ProgressCounter(config.concurrency)

    def run(self) -> LedgerSummary:
        """Execute the whole batch and return the compacted ledger summary."""
        return asyncio.run(self.run_async())

    async def run_async(self) -> LedgerSummary:
        start = time.time()
        # Fatal on failure: nothing can run without a subject list
        subjects = load_subjects(self.config.subjects_csv)
        refresher = ScriptRefreshCapability.from_file(self.config.refresh_script)
        logger.info("Loaded %d subjects from %s", len(subjects), self.config.subjects_csv)

        self.config.output_path.mkdir(parents=True, exist_ok=True)
        self.ledger.initialize(self.mode)
        worklist = build_worklist(subjects, self.mode, self.ledger, self.name_filter)

        if worklist:
            await self._execute(worklist, refresher)
        else:
            logger.info("Nothing to do")

        dropped = self.ledger.compact()
        logger.info("Ledger compacted (%d duplicate rows dropped) -> %s", dropped, self.ledger.path)
        summary = self.ledger.summarize()
        logger.info("=== Run complete in %.1fs: %d PASS, %d NO-PASS, %d without verdict ===",
                    time.time() - start, summary.passed, summary.no_pass, summary.errored)
        return summary

    async def _execute(self, worklist: list[Subject], refresher: ScriptRefreshCapability) -> None:
        cfg = self.config
        async with async_playwright() as p:
            browser = await launch_browser(p, headless=cfg.headless, debug=cfg.debug)
            try:
                procedure = VerificationProcedure(
                    config=cfg,
                    ledger=self.ledger,
                    navigator=self.build_navigator(),
                    inspector=StorefrontInspector(
                        cfg.trigger_selector,
                        listing_max_pages=cfg.listing_max_pages,
                        trigger_timeout_ms=cfg.timing.trigger_lookup_timeout_ms,
                    ),
                    refresher=refresher,
                    context_factory=self.context_factory(browser),
                )
                scheduler = JobScheduler(cfg.concurrency, self.progress)
                await scheduler.run(worklist, procedure)
            finally:
                if cfg.debug:
                    logger.info("Debug mode: browser left open")
                else:
                    await browser.close()

    def build_navigator(self) -> Navigator:
        cfg = self.config
        return Navigator(
            max_attempts=cfg.nav_max_attempts,
            timeout_ms=cfg.timing.navigation_timeout_ms,
            rate_limit=BackoffPolicy.from_config(cfg.rate_limit_backoff),
            transient=BackoffPolicy.from_config(cfg.transient_backoff),
        )

    def context_factory(self, browser: Browser):
        """Return an async callable producing one isolated context per job."""
        cfg = self.config
        init_script = build_init_script(cfg.rate_limit_backoff, cfg.in_page_max_retries)
        viewport = None if cfg.debug else cfg.viewport.model_dump()

        async def _create() -> BrowserContext:
            try:
                return await create_isolated_context(browser, viewport, init_script, cfg.user_agent)
            except Exception as e:
                raise ContextAcquisitionError(describe_error(e)) from e

        return _create

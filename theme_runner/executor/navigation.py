"""Navigation with rate-limit aware retries, and per-origin state reset."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Response

from theme_runner.errors import NavigationError, RateLimitedError, describe_error
from theme_runner.executor.backoff import BackoffPolicy, parse_retry_after, rate_limit_policy, transient_policy

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


def _retry_after_header(response: Response) -> str | None:
    # Playwright lower-cases header names
    return (response.headers or {}).get("retry-after")


class Navigator:
    """``page.goto`` with bounded retries.

    HTTP 429 responses back off with the rate-limit policy (honouring
    Retry-After); timeouts and connection errors back off with the transient
    policy. Exhausting the attempt budget raises RateLimitedError or
    NavigationError respectively.
    """

    def __init__(
        self,
        max_attempts: int = 4,
        timeout_ms: int = 60_000,
        rate_limit: BackoffPolicy | None = None,
        transient: BackoffPolicy | None = None,
        sleep: Sleeper | None = None,
    ):
        self.max_attempts = max_attempts
        self.timeout_ms = timeout_ms
        self.rate_limit = rate_limit or rate_limit_policy()
        self.transient = transient or transient_policy()
        self._sleep = sleep or asyncio.sleep

    async def goto(self, page: Page, url: str, label: str = "") -> Response | None:
        label = label or url
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            except PlaywrightError as e:
                if attempt >= self.max_attempts:
                    logger.error("[goto] error on %s (attempt %d/%d), giving up: %s",
                                 label, attempt, self.max_attempts, e)
                    raise NavigationError(describe_error(e), url=url, attempts=attempt) from e
                delay = self.transient.delay(attempt)
                logger.warning("[goto] error on %s (attempt %d/%d), sleeping %.2fs: %s",
                               label, attempt, self.max_attempts, delay, describe_error(e))
                await self._sleep(delay)
                continue

            if response is not None and response.status == 429:
                if attempt >= self.max_attempts:
                    raise RateLimitedError(f"HTTP 429 after {attempt} attempts", url=url, attempts=attempt)
                retry_after = parse_retry_after(_retry_after_header(response))
                delay = self.rate_limit.delay(attempt, retry_after)
                logger.warning("[goto] 429 for %s (attempt %d/%d), sleeping %.2fs",
                               label, attempt, self.max_attempts, delay)
                await self._sleep(delay)
                continue

            return response

        raise NavigationError(f"navigation attempts exhausted for {label}", url=url, attempts=self.max_attempts)


async def reset_site_state(page: Page, url: str) -> None:
    """Clear cookies, HTTP cache and site storage for ``url``'s origin, and
    disable caching for subsequent loads.

    Each CDP command is best effort; a failing one is logged and skipped.
    """
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"

    try:
        await page.context.clear_cookies()
    except PlaywrightError as e:
        logger.debug("clear_cookies failed: %s", e)

    try:
        client = await page.context.new_cdp_session(page)
    except PlaywrightError as e:
        logger.warning("No CDP session for %s, storage not cleared: %s", origin, e)
        return
    commands: list[tuple[str, dict]] = [
        ("Network.enable", {}),
        ("Network.clearBrowserCookies", {}),
        ("Network.clearBrowserCache", {}),
        ("Network.setCacheDisabled", {"cacheDisabled": True}),
        ("Storage.clearDataForOrigin", {"origin": origin, "storageTypes": "all"}),
    ]
    for method, params in commands:
        try:
            await client.send(method, params)
        except PlaywrightError as e:
            logger.debug("CDP %s failed for %s: %s", method, origin, e)

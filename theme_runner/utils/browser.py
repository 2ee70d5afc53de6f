"""Browser launch and per-subject context helpers."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]


async def launch_browser(playwright: Playwright, headless: bool = True, debug: bool = False) -> Browser:
    """Launch the shared Chromium instance for a run.

    Debug mode forces a headed, maximized window with devtools open.
    """
    args = list(_LAUNCH_ARGS)
    if debug:
        args.append("--start-maximized")
    return await playwright.chromium.launch(
        headless=headless and not debug,
        devtools=debug,
        args=args,
    )


async def create_isolated_context(
    browser: Browser,
    viewport: Optional[dict],
    init_script: str = "",
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create a fresh context with its own cookie and storage partition.

    CSP is bypassed so the refresh bundle can be injected as a script tag;
    ``init_script`` runs in every document before the page's own scripts.
    """
    context = await browser.new_context(
        viewport=viewport,
        user_agent=user_agent or DEFAULT_USER_AGENT,
        locale="en-US",
        bypass_csp=True,
        extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
    )
    if init_script:
        await context.add_init_script(init_script)
    return context

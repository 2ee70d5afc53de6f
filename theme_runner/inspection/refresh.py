"""Refresh capability — makes a subject's cart UI reflect a state change.

The actual per-theme heuristics live in a user-supplied JavaScript bundle
(``refresh_script`` in the config). The bundle is expected to expose
``window.refreshCart`` as an object of named handlers and/or
``window.RC.refreshCart(key)`` as a generic router. This module only decides
which handler to call for a storefront and reports whether the call worked.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import NamedTuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

logger = logging.getLogger(__name__)


class RefreshVariant(NamedTuple):
    key: str  # handler name inside window.refreshCart
    aliases: tuple[str, ...] = ()


UNKNOWN_VARIANT = RefreshVariant(key="")

DEFAULT_VARIANTS: tuple[RefreshVariant, ...] = (
    RefreshVariant("dawn", ("sense", "craft", "studio", "taste", "taste2", "origin", "spotlight",
                            "refresh", "ride", "publisher", "colorblock")),
    RefreshVariant("mr parker", ("nest",)),
    RefreshVariant("impact", ()),
    RefreshVariant("impact theme shape", ()),
    RefreshVariant("balance", ()),
    RefreshVariant("hyper", ("pillar",)),
    RefreshVariant("grid", ("flora",)),
    RefreshVariant("sunrise", ("jellybean",)),
)

_READ_SCHEMA_NAME_JS = """
() => {
    const t = window.Shopify && window.Shopify.theme;
    return (t && (t.schema_name || t.name)) || '';
}
"""

_INVOKE_JS = """
async ([key, identity]) => {
    const g = window;
    try {
        if (key && g.refreshCart && typeof g.refreshCart === 'object'
                && typeof g.refreshCart[key] === 'function') {
            return !!(await g.refreshCart[key]());
        }
        if (g.RC && typeof g.RC.refreshCart === 'function') {
            await g.RC.refreshCart(key || identity);
            return true;
        }
        if (typeof g.refreshCart === 'function') {
            await g.refreshCart(key || identity);
            return true;
        }
    } catch (e) {
        console.error('[refreshCart] invocation failed', e);
    }
    return false;
}
"""

_CONTEXT_LOST_MARKERS = ("Execution context was destroyed", "Target closed", "navigation")


def normalize_key(name: str) -> str:
    return name.strip().lower()


def compact_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", normalize_key(name))


class RefreshRegistry:
    """Maps storefront schema names to refresh variants.

    Lookup tries the loose (lower-cased) name, then the compact form with
    punctuation and spaces removed. Anything else resolves to UNKNOWN_VARIANT.
    """

    def __init__(self, variants: tuple[RefreshVariant, ...] = DEFAULT_VARIANTS):
        self._lookup: dict[str, RefreshVariant] = {}
        for variant in variants:
            for name in (variant.key, *variant.aliases):
                self._lookup[normalize_key(name)] = variant
                self._lookup[compact_key(name)] = variant

    def resolve(self, schema_name: str) -> RefreshVariant:
        if not schema_name:
            return UNKNOWN_VARIANT
        return (self._lookup.get(normalize_key(schema_name))
                or self._lookup.get(compact_key(schema_name))
                or UNKNOWN_VARIANT)


class ScriptRefreshCapability:
    """Injects the refresh bundle into the page and calls the matching handler."""

    def __init__(self, bundle: str = "", registry: RefreshRegistry | None = None, attempts: int = 2):
        self.bundle = bundle
        self.registry = registry or RefreshRegistry()
        self.attempts = attempts

    @classmethod
    def from_file(cls, path: str | Path | None, registry: RefreshRegistry | None = None) -> "ScriptRefreshCapability":
        if not path:
            logger.warning("No refresh_script configured; refresh will rely on page globals only")
            return cls("", registry)
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Refresh script not found: {path}")
        return cls(path.read_text(encoding="utf-8"), registry)

    async def attempt_refresh(self, page: Page, identity: str) -> bool:
        """Run the refresh handler for this storefront; True if it reported success.

        A call that dies because the page navigated underneath it is retried
        once after the new document has loaded.
        """
        for attempt in range(1, self.attempts + 1):
            try:
                if self.bundle:
                    await page.add_script_tag(content=self.bundle)
                schema_name = await page.evaluate(_READ_SCHEMA_NAME_JS)
                variant = self.registry.resolve(schema_name)
                logger.debug("Refresh handler for schema %r: %s", schema_name, variant.key or "unknown")
                return bool(await page.evaluate(_INVOKE_JS, [variant.key, identity]))
            except PlaywrightError as e:
                message = str(e)
                if attempt < self.attempts and any(m in message for m in _CONTEXT_LOST_MARKERS):
                    logger.debug("Refresh context lost (attempt %d), waiting for reload: %s", attempt, e)
                    try:
                        await page.wait_for_load_state("domcontentloaded", timeout=15_000)
                    except PlaywrightError:
                        pass
                    continue
                raise
        return False

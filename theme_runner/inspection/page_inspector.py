"""Storefront page inspection — finds a purchasable item and the add-to-cart control."""

from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import ElementHandle, Page
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Paged /products.json scan, then /products/<handle>.js for the current page.
_RESOLVE_ITEM_JS = """
async (maxPages) => {
    const pickVariant = (variants) =>
        (variants || []).find((v) => v && v.available) || (variants || [])[0];
    try {
        for (let page = 1; page <= maxPages; page++) {
            const r = await fetch(`/products.json?page=${page}`, { credentials: 'same-origin' });
            if (!r.ok) break;
            const data = await r.json();
            const list = Array.isArray(data && data.products) ? data.products : [];
            if (list.length === 0) break;
            const pick = list.find((p) => Array.isArray(p && p.variants) && p.variants.some((v) => v && v.available))
                || list[0] || null;
            if (pick) {
                const v = pickVariant(pick.variants);
                if (v && v.id) {
                    return { handle: pick.handle || null, productId: pick.id || null,
                             variantId: v.id, source: `/products.json?page=${page}` };
                }
            }
        }
    } catch (e) {}
    try {
        const m = location.pathname.match(/\\/products\\/([^/?#]+)/);
        if (m && m[1]) {
            const r = await fetch(`/products/${m[1]}.js`, { credentials: 'same-origin' });
            if (r.ok) {
                const p = await r.json();
                const v = pickVariant(p && p.variants);
                if (v && v.id) {
                    return { handle: (p && p.handle) || m[1], productId: (p && p.id) || null,
                             variantId: v.id, source: 'product.js' };
                }
            }
        }
    } catch (e) {}
    return { handle: null, productId: null, variantId: null, source: 'none' };
}
"""

_READ_SCHEMA_JS = """
() => {
    const t = window.Shopify && window.Shopify.theme;
    if (!t) return { name: '', id: '' };
    return { name: t.schema_name || t.name || '', id: t.id != null ? String(t.id) : '' };
}
"""

_SUBMIT_ITEM_JS = """
async (variantId) => {
    try {
        const r = await fetch('/cart/add.js', {
            method: 'POST',
            credentials: 'same-origin',
            headers: { 'content-type': 'application/json', accept: 'application/json' },
            body: JSON.stringify({ id: variantId, quantity: 1 }),
        });
        return r.ok;
    } catch (e) {
        return false;
    }
}
"""


class TestableItem(BaseModel):
    """A concrete purchasable unit found on a subject's store."""

    __test__ = False  # not a pytest test class

    handle: str
    identity: str  # variant id
    product_id: Optional[str] = None
    source: str = ""

    @property
    def detail_path(self) -> str:
        return f"/products/{self.handle}"


class StorefrontInspector:
    """Page-inspection collaborator used by the verification procedure."""

    def __init__(
        self,
        trigger_selector: str = 'form[action*="/cart/add"] button',
        listing_max_pages: int = 20,
        trigger_timeout_ms: int = 8_000,
    ):
        self.trigger_selector = trigger_selector
        self.listing_max_pages = listing_max_pages
        self.trigger_timeout_ms = trigger_timeout_ms

    async def read_schema(self, page: Page) -> tuple[str, str]:
        """Return (schema_name, schema_id) of the storefront theme, if exposed."""
        info = await page.evaluate(_READ_SCHEMA_JS)
        return str(info.get("name") or ""), str(info.get("id") or "")

    async def resolve_testable_item(self, page: Page) -> TestableItem | None:
        pick = await page.evaluate(_RESOLVE_ITEM_JS, self.listing_max_pages)
        if not pick or not pick.get("handle") or not pick.get("variantId"):
            logger.debug("No testable item on %s (source=%s)", page.url, (pick or {}).get("source"))
            return None
        product_id = pick.get("productId")
        return TestableItem(
            handle=str(pick["handle"]),
            identity=str(pick["variantId"]),
            product_id=str(product_id) if product_id is not None else None,
            source=str(pick.get("source") or ""),
        )

    async def locate_trigger(self, page: Page) -> ElementHandle | None:
        handle = await page.query_selector(self.trigger_selector)
        if handle:
            return handle
        try:
            return await page.wait_for_selector(self.trigger_selector, timeout=self.trigger_timeout_ms)
        except Exception:
            return None

    async def submit_item(self, page: Page, item: TestableItem) -> bool:
        """Add the item to the cart directly, bypassing the UI."""
        return bool(await page.evaluate(_SUBMIT_ITEM_JS, item.identity))

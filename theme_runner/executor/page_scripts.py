"""JavaScript snippets evaluated inside subject pages."""

from __future__ import annotations

import json

from theme_runner.models.config import BackoffConfig

# Cumulative layout shift accumulator. Installed before any page script runs;
# ``__clsReset`` zeroes it right before an interaction we want to measure.
_SETTLEMENT_OBSERVER = """
(() => {
    try {
        window.__CLS = 0;
        window.__clsReset = () => { window.__CLS = 0; };
        new PerformanceObserver((list) => {
            for (const e of list.getEntries()) {
                if (!e.hadRecentInput) window.__CLS += e.value;
            }
        }).observe({ type: 'layout-shift', buffered: true });
    } catch (e) {}
})();
"""

# 429-aware fetch wrapper: retries in-page requests with the same exponential
# backoff shape as navigation retries. Parameters are substituted as JSON.
_FETCH_BACKOFF_TEMPLATE = """
(() => {
    const w = window;
    const orig = w.fetch && w.fetch.bind(window);
    if (!orig || w.__fetchWrapped) return;
    w.__fetchWrapped = true;
    const opts = __OPTIONS__;
    const sleep = (ms) => new Promise((res) => setTimeout(res, ms));
    w.fetch = async (...args) => {
        let lastErr = null;
        for (let attempt = 0; attempt < opts.maxRetries; attempt++) {
            try {
                const res = await orig(...args);
                if (res.status !== 429) return res;
                lastErr = new Error(`HTTP 429 (attempt ${attempt})`);
                throw lastErr;
            } catch (e) {
                lastErr = e;
                if (attempt >= opts.maxRetries - 1) throw lastErr;
                const delay = Math.min(
                    opts.capMs,
                    opts.baseMs * Math.pow(2, attempt) + Math.random() * opts.jitterMs,
                );
                console.warn(`[fetch-backoff] retry ${attempt + 1}/${opts.maxRetries} delay=${delay.toFixed(0)}ms`);
                await sleep(delay);
            }
        }
        throw lastErr || new Error('fetch failed');
    };
})();
"""

# Hides the most obvious automation flag; some demo stores gate bots.
_WEBDRIVER_PATCH = "Object.defineProperty(navigator, 'webdriver', { get: () => false });"

READ_SETTLEMENT = "() => window.__CLS || 0"
RESET_SETTLEMENT = "() => { if (window.__clsReset) window.__clsReset(); }"
NEXT_ANIMATION_FRAME = "() => new Promise(requestAnimationFrame)"
READ_ORIGIN = "() => location.origin"


def build_init_script(backoff: BackoffConfig, max_retries: int) -> str:
    """Everything a subject page needs installed before its own scripts run."""
    options = {
        "maxRetries": max_retries,
        "baseMs": backoff.base * 1000,
        "jitterMs": backoff.jitter * 1000,
        "capMs": backoff.cap * 1000,
    }
    fetch_wrapper = _FETCH_BACKOFF_TEMPLATE.replace("__OPTIONS__", json.dumps(options))
    return "\n".join([_WEBDRIVER_PATCH, _SETTLEMENT_OBSERVER, fetch_wrapper])

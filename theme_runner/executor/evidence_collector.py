"""Evidence collector — per-subject artifact dir, screenshots, page logs, dialogs."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from playwright.async_api import Dialog, Page

logger = logging.getLogger(__name__)


def sanitize_name(name: str) -> str:
    """Filesystem-safe, lower-cased tag for a subject's artifact directory."""
    return re.sub(r"[^a-z0-9_-]+", "-", str(name or "unknown").lower())[:80]


class EvidenceCollector:
    """Collects one job's screenshots and page output under ``out_root/<tag>``.

    Artifact paths handed back are relative to ``out_root`` so the ledger
    stays valid if the output directory is moved.
    """

    def __init__(self, out_root: Path, tag: str, job_index: int = 0):
        self.out_root = out_root
        self.job_dir = out_root / tag
        self.job_index = job_index
        self.console_logs: list[str] = []
        self.failed_requests: list[str] = []
        self.dialogs: list[str] = []

    def prepare(self) -> None:
        self.job_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.job_dir / name

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.out_root))
        except ValueError:
            return str(path)

    @property
    def dialog_seen(self) -> bool:
        return bool(self.dialogs)

    def setup_listeners(self, page: Page) -> None:
        """Forward page console output and failed requests; dismiss dialogs."""
        page.on("console", self._on_console)
        page.on("requestfailed", self._on_request_failed)
        page.on("dialog", self._on_dialog)

    def _on_console(self, msg) -> None:
        line = f"[{msg.type}] {msg.text}"
        self.console_logs.append(line)
        logger.debug("[JOB %d] %s", self.job_index, line)

    def _on_request_failed(self, request) -> None:
        failure = request.failure or ""
        line = f"{failure} {request.url}".strip()
        self.failed_requests.append(line)
        logger.debug("[JOB %d] request failed: %s", self.job_index, line)

    async def _on_dialog(self, dialog: Dialog) -> None:
        self.dialogs.append(f"{dialog.type}: {dialog.message}")
        logger.info("[JOB %d] %s dialog dismissed: %s", self.job_index, dialog.type, dialog.message)
        try:
            await dialog.dismiss()
        except Exception as e:
            logger.debug("[JOB %d] dialog dismiss failed: %s", self.job_index, e)

    async def take_screenshot(self, page: Page, name: str) -> Path:
        """Capture the viewport to ``job_dir/name`` and return the absolute path."""
        path = self.path_for(name)
        await page.screenshot(path=str(path), full_page=False)
        return path

    def save_logs(self) -> None:
        """Persist collected page output next to the screenshots."""
        if not self.job_dir.exists():
            return
        with open(self.job_dir / "console.log", "w", encoding="utf-8") as f:
            f.write("\n".join(self.console_logs))
        if self.failed_requests or self.dialogs:
            with open(self.job_dir / "page_events.log", "w", encoding="utf-8") as f:
                f.write("\n".join(
                    [f"requestfailed {r}" for r in self.failed_requests]
                    + [f"dialog {d}" for d in self.dialogs]
                ))

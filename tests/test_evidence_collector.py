"""Tests for the evidence collector module."""

from unittest.mock import AsyncMock, Mock

import pytest

from theme_runner.executor.evidence_collector import EvidenceCollector, sanitize_name


def _listen(collector):
    callbacks = {}
    mock_page = Mock()
    mock_page.on = Mock(side_effect=lambda event, cb: callbacks.update({event: cb}))
    collector.setup_listeners(mock_page)
    return callbacks


class TestSanitizeName:
    """Tests for sanitize_name."""

    def test_lowercases_and_replaces(self):
        assert sanitize_name("Mr. Parker") == "mr-parker"
        assert sanitize_name("Impact (Shape)") == "impact-shape-"

    def test_keeps_dash_and_underscore(self):
        assert sanitize_name("be_yours-2") == "be_yours-2"

    def test_empty_and_long(self):
        assert sanitize_name("") == "unknown"
        assert len(sanitize_name("x" * 200)) == 80


class TestEvidenceCollector:
    """Tests for EvidenceCollector."""

    def test_paths(self, tmp_path):
        collector = EvidenceCollector(tmp_path, "dawn")
        collector.prepare()
        assert collector.job_dir.is_dir()
        assert collector.relative(collector.path_for("a.png")) == "dawn/a.png"

    def test_relative_outside_root(self, tmp_path):
        collector = EvidenceCollector(tmp_path / "out", "dawn")
        assert collector.relative(tmp_path / "elsewhere.png") == str(tmp_path / "elsewhere.png")

    def test_captures_console_and_failed_requests(self, tmp_path):
        collector = EvidenceCollector(tmp_path, "dawn")
        callbacks = _listen(collector)

        msg = Mock()
        msg.type = "error"
        msg.text = "Uncaught TypeError: x is not a function"
        callbacks["console"](msg)

        request = Mock()
        request.failure = "net::ERR_BLOCKED_BY_CLIENT"
        request.url = "https://cdn.example.com/a.js"
        callbacks["requestfailed"](request)

        assert collector.console_logs == ["[error] Uncaught TypeError: x is not a function"]
        assert collector.failed_requests == ["net::ERR_BLOCKED_BY_CLIENT https://cdn.example.com/a.js"]

    @pytest.mark.asyncio
    async def test_dialog_dismissed_and_recorded(self, tmp_path):
        collector = EvidenceCollector(tmp_path, "dawn")
        callbacks = _listen(collector)
        dialog = AsyncMock()
        dialog.type = "alert"
        dialog.message = "Password required"

        assert not collector.dialog_seen
        await callbacks["dialog"](dialog)
        assert collector.dialog_seen
        dialog.dismiss.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_take_screenshot(self, tmp_path, mock_page):
        collector = EvidenceCollector(tmp_path, "dawn")
        collector.prepare()
        path = await collector.take_screenshot(mock_page, "pre_trigger.png")
        assert path == tmp_path / "dawn" / "pre_trigger.png"
        mock_page.screenshot.assert_awaited_once_with(path=str(path), full_page=False)

    def test_save_logs(self, tmp_path):
        collector = EvidenceCollector(tmp_path, "dawn")
        collector.prepare()
        collector.console_logs = ["[log] hi"]
        collector.dialogs = ["alert: closed"]
        collector.save_logs()
        assert (tmp_path / "dawn" / "console.log").read_text() == "[log] hi"
        assert "dialog alert: closed" in (tmp_path / "dawn" / "page_events.log").read_text()

    def test_save_logs_without_dir(self, tmp_path):
        collector = EvidenceCollector(tmp_path, "dawn")
        collector.save_logs()
        assert not (tmp_path / "dawn").exists()

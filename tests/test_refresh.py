"""Tests for the refresh variant registry and script capability."""

from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError

from theme_runner.inspection.refresh import (
    UNKNOWN_VARIANT,
    RefreshRegistry,
    RefreshVariant,
    ScriptRefreshCapability,
    compact_key,
)


class TestRefreshRegistry:
    """Tests for schema name resolution."""

    def test_exact_key(self):
        assert RefreshRegistry().resolve("Dawn").key == "dawn"

    def test_alias(self):
        registry = RefreshRegistry()
        assert registry.resolve("Sense").key == "dawn"
        assert registry.resolve("Nest").key == "mr parker"
        assert registry.resolve("Jellybean").key == "sunrise"
        assert registry.resolve("Taste2").key == "dawn"

    def test_compact_match(self):
        assert RefreshRegistry().resolve("Mr.Parker").key == "mr parker"
        assert RefreshRegistry().resolve("  IMPACT theme-shape ").key == "impact theme shape"

    def test_unknown(self):
        assert RefreshRegistry().resolve("Prestige") is UNKNOWN_VARIANT
        assert RefreshRegistry().resolve("") is UNKNOWN_VARIANT

    def test_custom_variants(self):
        registry = RefreshRegistry((RefreshVariant("boost", ("motion",)),))
        assert registry.resolve("Motion").key == "boost"
        assert registry.resolve("Dawn") is UNKNOWN_VARIANT

    def test_compact_key(self):
        assert compact_key(" Mr. Parker ") == "mrparker"


class TestScriptRefreshCapability:
    """Tests for ScriptRefreshCapability."""

    def test_from_file_reads_bundle(self, tmp_path):
        bundle = tmp_path / "refresh.js"
        bundle.write_text("window.refreshCart = {};")
        assert ScriptRefreshCapability.from_file(bundle).bundle == "window.refreshCart = {};"

    def test_from_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ScriptRefreshCapability.from_file(tmp_path / "missing.js")

    def test_from_file_none(self):
        assert ScriptRefreshCapability.from_file(None).bundle == ""

    @pytest.mark.asyncio
    async def test_injects_bundle_and_invokes_variant(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=["Sense", True])
        capability = ScriptRefreshCapability("window.refreshCart = {};")

        assert await capability.attempt_refresh(mock_page, "4411") is True
        mock_page.add_script_tag.assert_awaited_once_with(content="window.refreshCart = {};")
        assert mock_page.evaluate.call_args_list[-1].args[1] == ["dawn", "4411"]

    @pytest.mark.asyncio
    async def test_unknown_variant_passes_empty_key(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=["Prestige", False])
        assert await ScriptRefreshCapability().attempt_refresh(mock_page, "4411") is False
        mock_page.add_script_tag.assert_not_called()
        assert mock_page.evaluate.call_args_list[-1].args[1] == ["", "4411"]

    @pytest.mark.asyncio
    async def test_retries_after_context_destroyed(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=[
            PlaywrightError("Execution context was destroyed, most likely because of a navigation"),
            "Dawn",
            True,
        ])
        assert await ScriptRefreshCapability().attempt_refresh(mock_page, "1") is True
        mock_page.wait_for_load_state.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=PlaywrightError("SyntaxError: Unexpected token"))
        with pytest.raises(PlaywrightError):
            await ScriptRefreshCapability().attempt_refresh(mock_page, "1")

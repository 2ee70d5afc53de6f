"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image

from theme_runner.ledger.result_ledger import ResultLedger
from theme_runner.models.config import RunnerConfig, TimingConfig
from theme_runner.models.job_result import JobResult
from theme_runner.models.subject import Subject


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def runner_config(tmp_path: Path) -> RunnerConfig:
    """Config pointing at a temp output dir, with zero settle windows."""
    return RunnerConfig(
        subjects_csv=str(tmp_path / "themes.csv"),
        output_dir=str(tmp_path / "out"),
        concurrency=2,
        timing=TimingConfig(
            post_trigger_settle_ms=0,
            manual_trigger_settle_ms=0,
            post_refresh_settle_ms=0,
        ),
    )


# ============================================================================
# Subject / Ledger Fixtures
# ============================================================================


@pytest.fixture
def subjects() -> list[Subject]:
    return [
        Subject(name="Dawn", entry_url="https://dawn.example.com", popularity=0, is_free=True),
        Subject(name="Impact", entry_url="https://impact.example.com", popularity=900),
        Subject(name="Prestige", entry_url="https://prestige.example.com", popularity=1200),
        Subject(name="Sense", entry_url="https://sense.example.com", popularity=0, is_free=True),
    ]


@pytest.fixture
def ledger(tmp_path: Path) -> ResultLedger:
    return ResultLedger(tmp_path / "out" / "results.csv")


def make_row(name: str, result: str = "", error: str = "", **fields) -> JobResult:
    return JobResult(name=name, entry_url=f"https://{name.lower()}.example.com",
                     result=result, error=error, **fields)


# ============================================================================
# Image Fixtures
# ============================================================================


def write_png(path: Path, size=(40, 30), color=(255, 255, 255, 255), box=None, box_color=(0, 0, 0, 255)) -> Path:
    """Write a solid PNG, optionally with a filled rectangle ``box``."""
    img = Image.new("RGBA", size, color)
    if box:
        for x in range(box[0], box[2]):
            for y in range(box[1], box[3]):
                img.putpixel((x, y), box_color)
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)
    return path


# ============================================================================
# Playwright Mock Fixtures
# ============================================================================


def make_mock_page(url: str = "https://dawn.example.com/") -> AsyncMock:
    page = AsyncMock()
    page.url = url
    page.on = Mock()
    page.set_default_navigation_timeout = Mock()
    page.set_default_timeout = Mock()
    return page


@pytest.fixture
def mock_page() -> AsyncMock:
    return make_mock_page()


@pytest.fixture
def mock_context(mock_page: AsyncMock) -> AsyncMock:
    context = AsyncMock()
    context.new_page.return_value = mock_page
    return context


@pytest.fixture
def page_factory():
    return make_mock_page


@pytest.fixture
def row_factory():
    return make_row


@pytest.fixture
def png_writer():
    return write_png

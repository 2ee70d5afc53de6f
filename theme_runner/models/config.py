"""Configuration models for the theme runner."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ViewportConfig(BaseModel):
    width: int = 1280
    height: int = 720


class BackoffConfig(BaseModel):
    """Exponential backoff parameters, all in seconds."""

    base: float = 0.5
    jitter: float = 0.25
    cap: float = 60.0

    @field_validator("base", "jitter", "cap")
    @classmethod
    def non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("backoff values must be >= 0")
        return v


class TimingConfig(BaseModel):
    """Timeouts and settle windows, in milliseconds."""

    navigation_timeout_ms: int = 60_000
    default_timeout_ms: int = 15_000
    trigger_lookup_timeout_ms: int = 8_000
    post_trigger_settle_ms: int = 5_000
    manual_trigger_settle_ms: int = 2_000
    post_refresh_settle_ms: int = 5_000


class RunnerConfig(BaseModel):
    # Inputs / outputs
    subjects_csv: str = "themes.csv"
    output_dir: str = "out"
    refresh_script: Optional[str] = None

    # Pool
    concurrency: int = 3

    # Browser
    headless: bool = True
    debug: bool = False
    hold_debug_slot: bool = False
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    user_agent: Optional[str] = None

    # Navigation retries
    nav_max_attempts: int = 4
    rate_limit_backoff: BackoffConfig = Field(
        default_factory=lambda: BackoffConfig(base=1.0, jitter=1.0, cap=60.0)
    )
    transient_backoff: BackoffConfig = Field(
        default_factory=lambda: BackoffConfig(base=0.5, jitter=0.25, cap=60.0)
    )
    in_page_max_retries: int = 6

    timing: TimingConfig = Field(default_factory=TimingConfig)

    # Page inspection
    trigger_selector: str = 'form[action*="/cart/add"] button'
    listing_max_pages: int = 20

    # Image diff sensitivity (0-1 luminance delta scale)
    diff_threshold: float = 0.1

    @field_validator("concurrency", "nav_max_attempts", "in_page_max_retries", "listing_max_pages")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("diff_threshold")
    @classmethod
    def threshold_range(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("diff_threshold must be between 0 and 1")
        return v

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)

    @property
    def ledger_path(self) -> Path:
        return self.output_path / "results.csv"

    @classmethod
    def load(cls, path: str | Path) -> "RunnerConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)

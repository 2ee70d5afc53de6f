"""Per-subject outcome rows, diff outcomes and run modes."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, model_validator

PASS = "PASS"
NO_PASS = "NO-PASS"


class DiffOutcome(BaseModel):
    pixels: int
    percentage: float
    width: int
    height: int
    diff_path: str = ""


class RunMode(BaseModel):
    kind: str = "fresh"  # fresh, resume, fix
    error_substring: str = ""

    @model_validator(mode="after")
    def _check(self) -> "RunMode":
        if self.kind not in ("fresh", "resume", "fix"):
            raise ValueError(f"Unknown run mode: {self.kind}")
        if self.kind == "fix" and not self.error_substring:
            raise ValueError("fix mode needs an error substring")
        return self

    @classmethod
    def fresh(cls) -> "RunMode":
        return cls(kind="fresh")

    @classmethod
    def resume(cls) -> "RunMode":
        return cls(kind="resume")

    @classmethod
    def fix(cls, error_substring: str) -> "RunMode":
        return cls(kind="fix", error_substring=error_substring)

    @property
    def truncates(self) -> bool:
        return self.kind == "fresh"

    def describe(self) -> str:
        if self.kind == "fix":
            return f"fix(error={self.error_substring!r})"
        return self.kind


class JobResult(BaseModel):
    """One ledger row. Field order is the ledger column order."""

    name: str
    entry_url: str = ""
    navigated: bool = False
    resolved_item: bool = False
    found_trigger: bool = False
    clicked_trigger: bool = False
    manual_trigger_ok: bool = False
    refresh_ok: bool = False
    settle_after_trigger: Optional[float] = None
    settle_after_refresh: Optional[float] = None
    pre_trigger_png: str = ""
    post_trigger_png: str = ""
    post_refresh_png: str = ""
    base_diff_png: str = ""
    base_change_pct: Optional[float] = None
    refresh_diff_png: str = ""
    refresh_change_pct: Optional[float] = None
    skipped_no_change: bool = False
    dialog_alerted: bool = False
    result: str = ""  # PASS, NO-PASS, or empty when the job errored out
    error: str = ""
    schema_name: str = ""
    schema_id: str = ""

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def effective_verdict(self) -> str:
        """Verdict for consumers: a row without one counts as NO-PASS."""
        return self.result or NO_PASS

    @property
    def reasons(self) -> list[str]:
        return [r for r in self.error.split(";") if r]

    def add_reason(self, code: str) -> None:
        """Append a reason code; earlier reasons are kept."""
        code = " ".join(str(code).split())
        if not code:
            return
        self.error = f"{self.error};{code}" if self.error else code

    def to_row(self) -> list[str]:
        """Render the row as ledger field strings, with line breaks flattened."""
        out = []
        for field in LEDGER_COLUMNS:
            value = getattr(self, field)
            if value is None:
                out.append("")
            elif isinstance(value, bool):
                out.append("1" if value else "0")
            elif isinstance(value, float):
                out.append(str(round(value, 4)))
            else:
                # One ledger row per physical line
                out.append(str(value).replace("\r", " ").replace("\n", " "))
        return out


LEDGER_COLUMNS: tuple[str, ...] = tuple(JobResult.model_fields.keys())
